"""Published resort catalog (`resort-packs/index.json`).

Schema 2.0.0 is the only version ever written. Legacy 1.0.0 catalogs (no
`release` block) are still accepted on read and upgraded in memory the next
time a publish rewrites the file.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

from .app_version import is_semver, parse_semver
from .determinism import PLACEHOLDER_SHA256, iso_from_timestamp, read_json, write_json_atomic
from .documents import CATALOG_V1_SCHEMA, CATALOG_V2_SCHEMA, validate_document
from .errors import DocumentError
from .layout import MANIFEST_URL


CATALOG_SCHEMA_VERSION = "2.0.0"
LEGACY_CATALOG_SCHEMA_VERSION = "1.0.0"
RELEASE_CHANNEL = "stable"


def empty_catalog() -> dict[str, Any]:
    return {"schemaVersion": CATALOG_SCHEMA_VERSION, "resorts": []}


def load_catalog(path: Path) -> dict[str, Any] | None:
    """Parsed, schema-checked catalog; None when the file does not exist.

    Raises DocumentError for unparsable JSON or an unsupported/invalid shape,
    so a corrupt catalog is never silently replaced by an empty one.
    """

    if not path.exists():
        return None
    try:
        obj = read_json(path)
    except ValueError as exc:
        raise DocumentError(f"Invalid resort catalog JSON ({path}): {exc}") from exc

    schema_version = obj.get("schemaVersion") if isinstance(obj, Mapping) else None
    if schema_version == CATALOG_SCHEMA_VERSION:
        validate_document(obj, CATALOG_V2_SCHEMA, label=f"resort catalog ({path})")
        return obj  # type: ignore[return-value]
    if schema_version == LEGACY_CATALOG_SCHEMA_VERSION:
        validate_document(obj, CATALOG_V1_SCHEMA, label=f"legacy resort catalog ({path})")
        return _upgrade_legacy(obj, path)  # type: ignore[arg-type]
    raise DocumentError(f"Invalid resort catalog ({path}): unsupported schemaVersion {schema_version!r}")


def _upgrade_legacy(legacy: Mapping[str, Any], path: Path) -> dict[str, Any]:
    """Bring a 1.0.0 catalog into the 2.0.0 resort shape, in memory only.

    Version rows without `createdAt` take the legacy file's modification time;
    resorts without any version row are dropped.
    """

    fallback_created_at = iso_from_timestamp(path.stat().st_mtime)
    resorts: list[dict[str, Any]] = []
    for resort in legacy.get("resorts", []):
        versions = [
            {
                "version": v["version"],
                "approved": v["approved"],
                "packUrl": v["packUrl"],
                "createdAt": v.get("createdAt") or fallback_created_at,
            }
            for v in resort.get("versions", [])
        ]
        if versions:
            resorts.append({"resortId": resort["resortId"], "resortName": resort["resortName"], "versions": versions})

    upgraded = {"schemaVersion": LEGACY_CATALOG_SCHEMA_VERSION, "resorts": resorts}
    # Fail now, before a publish touches any file, if the rows can not be carried forward.
    probe = with_release(upgraded, app_version="0.0.1", created_at=fallback_created_at)
    validate_document(probe, CATALOG_V2_SCHEMA, label=f"legacy resort catalog ({path})")
    return upgraded


def find_resort(catalog: Mapping[str, Any] | None, resort_key: str) -> Mapping[str, Any] | None:
    for entry in (catalog or {}).get("resorts", []):
        if entry.get("resortId") == resort_key:
            return entry
    return None


def published_version_entry(catalog: Mapping[str, Any] | None, resort_key: str) -> Mapping[str, Any] | None:
    """The single published version row for a resort (latest approved if several)."""

    entry = find_resort(catalog, resort_key)
    if entry is None:
        return None
    approved = [v for v in entry.get("versions", []) if v.get("approved") is True]
    if not approved:
        return None
    return max(approved, key=lambda v: _version_number(v.get("version")))


def _version_number(value: object) -> int:
    if isinstance(value, str) and value.startswith("v") and value[1:].isdigit():
        return int(value[1:])
    return -1


def build_version_entry(
    *,
    version: str,
    pack_url: str,
    created_at: str,
    min_app_version: str,
    supported_pack_schema_versions: list[str],
    pack_sha256: str,
    pmtiles_sha256: str,
    style_sha256: str,
) -> dict[str, Any]:
    return {
        "version": version,
        "approved": True,
        "packUrl": pack_url,
        "createdAt": created_at,
        "compatibility": {
            "minAppVersion": min_app_version,
            "supportedPackSchemaVersions": list(supported_pack_schema_versions),
        },
        "checksums": {
            "packSha256": pack_sha256,
            "pmtilesSha256": pmtiles_sha256,
            "styleSha256": style_sha256,
        },
    }


def _sorted_resorts(resorts: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return sorted(resorts, key=lambda r: (r["resortName"].casefold(), r["resortId"]))


def upsert_resort(
    catalog: Mapping[str, Any] | None,
    *,
    resort_key: str,
    resort_name: str,
    version_entry: Mapping[str, Any],
) -> dict[str, Any]:
    """Replace the resort's entry entirely; one published version per resort."""

    resorts = [dict(r) for r in (catalog or {}).get("resorts", []) if r.get("resortId") != resort_key]
    resorts.append({"resortId": resort_key, "resortName": resort_name, "versions": [dict(version_entry)]})
    return {**_upgraded(catalog), "resorts": _sorted_resorts(resorts)}


def remove_resort(catalog: Mapping[str, Any] | None, resort_key: str) -> dict[str, Any]:
    resorts = [dict(r) for r in (catalog or {}).get("resorts", []) if r.get("resortId") != resort_key]
    return {**_upgraded(catalog), "resorts": _sorted_resorts(resorts)}


def _upgraded(catalog: Mapping[str, Any] | None) -> dict[str, Any]:
    upgraded = dict(catalog or empty_catalog())
    upgraded["schemaVersion"] = CATALOG_SCHEMA_VERSION
    return upgraded


def with_release(
    catalog: Mapping[str, Any],
    *,
    app_version: str,
    created_at: str,
    manifest_sha256: str = PLACEHOLDER_SHA256,
) -> dict[str, Any]:
    """Catalog with a `release` block; key order kept stable across both writes."""

    return {
        "schemaVersion": CATALOG_SCHEMA_VERSION,
        "release": {
            "channel": RELEASE_CHANNEL,
            "appVersion": app_version,
            "manifestUrl": MANIFEST_URL,
            "manifestSha256": manifest_sha256,
            "createdAt": created_at,
        },
        "resorts": list(catalog.get("resorts", [])),
    }


def write_catalog(path: Path, catalog: Mapping[str, Any]) -> bytes:
    validate_document(dict(catalog), CATALOG_V2_SCHEMA, label=f"resort catalog ({path})")
    return write_json_atomic(path, dict(catalog))


def compatibility_issues(version_entry: Mapping[str, Any], app_version: str) -> list[str]:
    """Problems with a version row's compatibility range for the given app version."""

    compatibility = version_entry.get("compatibility")
    if not isinstance(compatibility, Mapping) or not is_semver(app_version):
        return []
    issues: list[str] = []
    current = parse_semver(app_version)
    min_version = compatibility.get("minAppVersion")
    max_version = compatibility.get("maxAppVersion")
    if is_semver(min_version) and parse_semver(min_version) > current:
        issues.append(f"compatibility.minAppVersion {min_version} is newer than app version {app_version}")
    if is_semver(max_version) and parse_semver(max_version) < current:
        issues.append(f"compatibility.maxAppVersion {max_version} is older than app version {app_version}")
    return issues
