from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

import jsonschema
from jsonschema import Draft202012Validator
from jsonschema.exceptions import ValidationError

from .determinism import read_json, write_json, write_json_atomic
from .errors import DocumentError
from .validation import default_readiness, pending_status_layers, to_manual_validation_state


SCHEMAS_DIR = Path(__file__).resolve().parent / "schemas"

WORKSPACE_SCHEMA = "workspace.schema.json"
STATUS_SCHEMA = "status.schema.json"
CATALOG_V1_SCHEMA = "catalog_v1.schema.json"
CATALOG_V2_SCHEMA = "catalog_v2.schema.json"
MANIFEST_SCHEMA = "release_manifest_v1.schema.json"

WORKSPACE_SCHEMA_VERSION = "2.0.0"
STATUS_SCHEMA_VERSION = "1.0.0"


@lru_cache(maxsize=None)
def load_schema(name: str) -> dict[str, Any]:
    return json.loads((SCHEMAS_DIR / name).read_text(encoding="utf-8"))


def _validator(name: str) -> Draft202012Validator:
    return Draft202012Validator(load_schema(name), format_checker=jsonschema.FormatChecker())


def schema_errors(obj: object, schema_name: str) -> list[str]:
    """Every schema violation as `<json path>: <message>`, in stable order."""

    errors = sorted(_validator(schema_name).iter_errors(obj), key=lambda e: list(e.absolute_path))
    return [f"{e.json_path}: {e.message}" for e in errors]


def validate_document(obj: object, schema_name: str, *, label: str) -> None:
    """Raise DocumentError (wrapping the first jsonschema error) if obj is invalid."""

    try:
        _validator(schema_name).validate(obj)
    except ValidationError as exc:
        raise DocumentError(
            f"Invalid {label}: {exc.json_path}: {exc.message}",
            details={"errors": schema_errors(obj, schema_name)},
        ) from exc


def read_workspace(path: Path) -> dict[str, Any]:
    obj = read_json(path)
    validate_document(obj, WORKSPACE_SCHEMA, label=f"resort workspace ({path})")
    return obj  # type: ignore[return-value]


def write_workspace(path: Path, workspace: Mapping[str, Any]) -> None:
    validate_document(dict(workspace), WORKSPACE_SCHEMA, label=f"resort workspace ({path})")
    write_json(path, dict(workspace))


def normalize_status(raw: Mapping[str, Any]) -> dict[str, Any]:
    """Fill the blocks every consumer relies on; unknown keys are kept."""

    status = dict(raw)
    status.setdefault("schemaVersion", STATUS_SCHEMA_VERSION)
    if not isinstance(status.get("layers"), Mapping):
        status["layers"] = pending_status_layers()
    readiness = status.get("readiness")
    if not isinstance(readiness, Mapping):
        status["readiness"] = default_readiness()
    else:
        readiness = dict(readiness)
        readiness.setdefault("overall", "incomplete")
        readiness.setdefault("issues", [])
        status["readiness"] = readiness
    status["manualValidation"] = to_manual_validation_state(status.get("manualValidation")).to_json()
    return status


def read_status(path: Path) -> dict[str, Any]:
    obj = read_json(path)
    validate_document(obj, STATUS_SCHEMA, label=f"resort status ({path})")
    return normalize_status(obj)  # type: ignore[arg-type]


def write_status(path: Path, status: Mapping[str, Any]) -> bytes:
    validate_document(dict(status), STATUS_SCHEMA, label=f"resort status ({path})")
    return write_json_atomic(path, dict(status))
