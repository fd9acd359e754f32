"""Stable release manifest (`releases/stable-manifest.json`).

The manifest lists every file the app downloads for the stable channel, with
its size and sha256. Its content never includes its own checksum; the catalog
advertises that instead.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Mapping

from .catalog import RELEASE_CHANNEL, published_version_entry
from .determinism import file_size_bytes, is_non_empty_file, sha256_file, write_json_atomic
from .documents import MANIFEST_SCHEMA, validate_document
from .errors import DocumentError
from .layout import PublicLayout
from .types import ArtifactKind

LOGGER = logging.getLogger(__name__)

MANIFEST_SCHEMA_VERSION = "1.0.0"


def artifact_urls(public: PublicLayout, resort_key: str, version_entry: Mapping[str, Any]) -> list[tuple[ArtifactKind, str]]:
    """(kind, url) for each file published for one resort version, in manifest order."""

    return [
        (ArtifactKind.PACK, str(version_entry.get("packUrl") or public.pack_url(resort_key))),
        (ArtifactKind.PMTILES, public.pmtiles_url(resort_key)),
        (ArtifactKind.STYLE, public.style_url(resort_key)),
    ]


def build_release_manifest(
    public: PublicLayout,
    catalog: Mapping[str, Any],
    *,
    app_version: str,
    created_at: str,
) -> dict[str, Any]:
    """Scan the files on disk behind every published catalog entry.

    Files that are missing or empty are left out rather than recorded with a
    bogus size; the integrity audit reports them separately.
    """

    artifacts: list[dict[str, Any]] = []
    for resort in catalog.get("resorts", []):
        resort_key = resort["resortId"]
        entry = published_version_entry(catalog, resort_key)
        if entry is None:
            continue
        for kind, url in artifact_urls(public, resort_key, entry):
            path = public.path_for_url(url)
            if not is_non_empty_file(path):
                LOGGER.warning("Manifest skips missing %s for %s: %s", kind.value, resort_key, path)
                continue
            artifacts.append(
                {
                    "kind": kind.value,
                    "resortId": resort_key,
                    "version": entry["version"],
                    "url": url,
                    "sha256": sha256_file(path),
                    "bytes": file_size_bytes(path),
                }
            )

    return {
        "schemaVersion": MANIFEST_SCHEMA_VERSION,
        "release": {"channel": RELEASE_CHANNEL, "appVersion": app_version, "createdAt": created_at},
        "artifacts": artifacts,
    }


def write_release_manifest(path: Path, manifest: Mapping[str, Any]) -> str:
    """Write the manifest atomically; returns the sha256 of the bytes written."""

    validate_document(dict(manifest), MANIFEST_SCHEMA, label=f"release manifest ({path})")
    write_json_atomic(path, dict(manifest))
    # Hash what is on disk, which is what the gate later recomputes.
    return sha256_file(path)


def parse_release_manifest(data: bytes, path: Path) -> dict[str, Any]:
    """Parse and validate manifest bytes already read from `path`."""

    try:
        obj = json.loads(data)
    except ValueError as exc:
        raise DocumentError(f"Invalid release manifest JSON ({path}): {exc}") from exc
    validate_document(obj, MANIFEST_SCHEMA, label=f"release manifest ({path})")
    return obj  # type: ignore[return-value]


def load_release_manifest(path: Path) -> dict[str, Any]:
    return parse_release_manifest(path.read_bytes(), path)
