from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from .determinism import read_json, utc_now_iso, write_json
from .documents import read_status, read_workspace
from .errors import DocumentError, PreconditionError
from .keys import canonicalize_resort_dir
from .types import EXPORT_LAYER_ORDER, ReadinessOverall
from .versions import checked_resort_key, list_version_numbers, version_layout

LOGGER = logging.getLogger(__name__)

EXPORT_SCHEMA_VERSION = "1.0.0"


@dataclass(frozen=True)
class ExportResult:
    resort_key: str
    version: str
    version_number: int
    version_path: Path
    validated_at: str | None
    exported_at: str
    bundle: Mapping[str, Any]

    @property
    def resort_name(self) -> str:
        workspace = self.bundle.get("workspace") or {}
        name = ((workspace.get("resort") or {}).get("query") or {}).get("name")
        return name.strip() if isinstance(name, str) and name.strip() else self.resort_key

    def to_json(self) -> dict[str, Any]:
        return {
            "resortKey": self.resort_key,
            "version": self.version,
            "versionPath": str(self.version_path),
            "validatedAt": self.validated_at,
            "exportedAt": self.exported_at,
        }


def read_layer_artifact(version_path: Path, artifact_path: object) -> Any | None:
    """Parsed layer artifact, or None when it is undeclared, missing or unreadable."""

    if not isinstance(artifact_path, str) or not artifact_path.strip():
        return None
    candidate = Path(artifact_path)
    if not candidate.is_absolute():
        candidate = version_path / candidate
    if not candidate.is_file():
        return None
    try:
        return read_json(candidate)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        LOGGER.warning("Unreadable layer artifact %s: %s", candidate, exc)
        return None


def _is_exportable(status: Mapping[str, Any]) -> bool:
    # Validation and readiness are independent gates; a validated but stale
    # version is never exported.
    if status["manualValidation"].get("validated") is not True:
        return False
    return status["readiness"].get("overall") == ReadinessOverall.READY.value


def export_latest_validated_resort_version(
    resorts_root: Path,
    resort_key: str,
    exported_at: str | None = None,
) -> ExportResult:
    """Bundle the newest version that is both manually validated and ready.

    Raises PreconditionError when no such version exists; an older or
    unvalidated version is never substituted.
    """

    key = checked_resort_key(resort_key)
    canonicalize_resort_dir(resorts_root, key)
    numbers = list_version_numbers(resorts_root / key)
    if not numbers:
        raise PreconditionError(f"No versions found for resort '{key}'.", code="NO_VERSIONS")

    for number in reversed(numbers):
        layout = version_layout(resorts_root, key, number)
        try:
            status = read_status(layout.status_path)
        except (OSError, ValueError, DocumentError) as exc:
            LOGGER.warning("Skipping %s/%s: unreadable status (%s)", key, layout.version, exc)
            continue
        if _is_exportable(status):
            break
    else:
        raise PreconditionError(
            f"No manually validated ready version found for resort '{key}'.",
            code="NO_VALIDATED_READY_VERSION",
            details={"resortKey": key, "versions": [f"v{n}" for n in numbers]},
        )

    workspace = read_workspace(layout.workspace_path)
    workspace_layers = workspace.get("layers") or {}
    layers = {
        layer.value: read_layer_artifact(
            layout.version_path, (workspace_layers.get(layer.value) or {}).get("artifactPath")
        )
        for layer in EXPORT_LAYER_ORDER
    }

    exported_at = exported_at or utc_now_iso()
    bundle = {
        "schemaVersion": EXPORT_SCHEMA_VERSION,
        "export": {"resortKey": key, "version": layout.version, "exportedAt": exported_at},
        "status": status,
        "workspace": workspace,
        "layers": layers,
    }
    LOGGER.info("Exported %s/%s", key, layout.version)
    return ExportResult(
        resort_key=key,
        version=layout.version,
        version_number=layout.version_number,
        version_path=layout.version_path,
        validated_at=status["manualValidation"].get("validatedAt"),
        exported_at=exported_at,
        bundle=bundle,
    )


def write_export_bundle(result: ExportResult, output_path: Path) -> bytes:
    return write_json(output_path, dict(result.bundle))
