from __future__ import annotations

import hashlib
import json
import sys
from pathlib import Path
from typing import Any, Callable

import pytest

_SRC = (Path(__file__).resolve().parents[1] / "src").as_posix()
if _SRC not in sys.path:
    sys.path.insert(0, _SRC)


RESORT_KEY = "CA_Golden_Kicking_Horse"
REAL_PMTILES_BYTES = b"PMTiles\x03" + bytes(range(256)) * 4
OFFLINE_STYLE = {
    "version": 8,
    "sources": {"basemap": {"type": "vector", "url": "pmtiles://base.pmtiles"}},
    "layers": [{"id": "background", "type": "background"}],
}


def _write_json(path: Path, obj: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(obj, indent=2) + "\n", encoding="utf-8")


def _feature_collection(count: int, kind: str) -> dict[str, Any]:
    return {
        "type": "FeatureCollection",
        "features": [
            {
                "type": "Feature",
                "properties": {"name": f"{kind}-{i}"},
                "geometry": {"type": "Point", "coordinates": [-117.05 + i / 100, 51.3]},
            }
            for i in range(count)
        ],
    }


def write_version(
    resorts_root: Path,
    resort_key: str = RESORT_KEY,
    version_number: int = 1,
    *,
    ready: bool = True,
    validated: bool = True,
    basemap: bool = True,
    pmtiles_bytes: bytes = REAL_PMTILES_BYTES,
    style: Any = None,
    name: str = "Kicking Horse",
) -> Path:
    """Write a complete on-disk version the way the extractor leaves it."""

    version_dir = resorts_root / resort_key / f"v{version_number}"
    version_dir.mkdir(parents=True, exist_ok=True)

    layers: dict[str, Any] = {}
    for layer, count in (("boundary", 1), ("runs", 3), ("lifts", 2)):
        artifact = version_dir / f"{layer}.geojson"
        _write_json(artifact, _feature_collection(count, layer))
        layers[layer] = {
            "status": "complete",
            "artifactPath": f"{layer}.geojson",
            "featureCount": count,
            "checksumSha256": hashlib.sha256(artifact.read_bytes()).hexdigest(),
            "updatedAt": "2026-02-01T10:00:00.000Z",
        }

    _write_json(
        version_dir / "resort.json",
        {
            "schemaVersion": "2.0.0",
            "resort": {"query": {"name": name, "country": "CA"}},
            "layers": layers,
        },
    )

    layer_validation = {
        layer: {
            "validated": validated,
            "validatedAt": "2026-02-02T09:00:00.000Z" if validated else None,
            "validatedBy": "patrol-lead" if validated else None,
            "notes": None,
        }
        for layer in ("boundary", "runs", "lifts")
    }
    _write_json(
        version_dir / "status.json",
        {
            "schemaVersion": "1.0.0",
            "resortKey": resort_key,
            "version": f"v{version_number}",
            "createdAt": "2026-02-01T09:00:00.000Z",
            "query": {"name": name, "countryCode": "CA", "town": "Golden"},
            "layers": {
                layer: {
                    "status": state["status"],
                    "featureCount": state["featureCount"],
                    "artifactPath": state["artifactPath"],
                    "checksumSha256": state["checksumSha256"],
                    "updatedAt": state["updatedAt"],
                }
                for layer, state in layers.items()
            },
            "readiness": {
                "overall": "ready" if ready else "incomplete",
                "issues": [] if ready else ["runs: featureCount must be >= 1"],
            },
            "manualValidation": {
                "validated": validated,
                "validatedAt": "2026-02-02T09:00:00.000Z" if validated else None,
                "validatedBy": "patrol-lead" if validated else None,
                "notes": None,
                "layers": layer_validation,
            },
        },
    )

    if basemap:
        basemap_dir = version_dir / "basemap"
        basemap_dir.mkdir(parents=True, exist_ok=True)
        (basemap_dir / "base.pmtiles").write_bytes(pmtiles_bytes)
        _write_json(basemap_dir / "style.json", OFFLINE_STYLE if style is None else style)

    return version_dir


@pytest.fixture()
def resorts_root(tmp_path: Path) -> Path:
    root = tmp_path / "resorts"
    root.mkdir()
    return root


@pytest.fixture()
def app_public_root(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    root = tmp_path / "app" / "public"
    root.mkdir(parents=True)
    _write_json(tmp_path / "app" / "package.json", {"name": "patrol-toolkit", "version": "0.4.2"})
    monkeypatch.delenv("PTK_APP_VERSION", raising=False)
    return root


@pytest.fixture()
def seed_version(resorts_root: Path) -> Callable[..., Path]:
    def _seed(*args: Any, **kwargs: Any) -> Path:
        return write_version(resorts_root, *args, **kwargs)

    return _seed
