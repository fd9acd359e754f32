"""Publish the latest validated resort version into the app's public root.

Catalog and manifest are written in a fixed order:

1. catalog with a placeholder `release.manifestSha256`
2. manifest, built from the files the catalog now points at
3. catalog again, with the manifest's real sha256

The manifest never contains its own checksum, so one pass is always enough.
"""

from __future__ import annotations

import contextlib
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Mapping, Sequence

from .app_version import resolve_app_version
from .basemap import assert_offline_ready_basemap
from .catalog import (
    build_version_entry,
    find_resort,
    load_catalog,
    published_version_entry,
    remove_resort,
    upsert_resort,
    with_release,
    write_catalog,
)
from .determinism import copy_file_atomic, sha256_bytes, sha256_file, utc_now_iso, write_json_atomic
from .errors import PreconditionError
from .export import EXPORT_SCHEMA_VERSION, export_latest_validated_resort_version
from .layout import PublicLayout, resort_lock_path
from .locking import advisory_lock
from .manifest import build_release_manifest, write_release_manifest
from .versions import checked_resort_key, version_layout

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class PublishResult:
    resort_key: str
    resort_name: str
    version: str
    exported_at: str
    app_version: str
    pack_path: Path
    pack_url: str
    pmtiles_path: Path
    style_path: Path
    catalog_path: Path
    manifest_path: Path
    pack_sha256: str
    pmtiles_sha256: str
    style_sha256: str
    manifest_sha256: str

    def to_json(self) -> dict[str, Any]:
        return {
            "resortKey": self.resort_key,
            "resortName": self.resort_name,
            "version": self.version,
            "exportedAt": self.exported_at,
            "appVersion": self.app_version,
            "packUrl": self.pack_url,
            "paths": {
                "pack": str(self.pack_path),
                "pmtiles": str(self.pmtiles_path),
                "style": str(self.style_path),
                "catalog": str(self.catalog_path),
                "manifest": str(self.manifest_path),
            },
            "checksums": {
                "packSha256": self.pack_sha256,
                "pmtilesSha256": self.pmtiles_sha256,
                "styleSha256": self.style_sha256,
                "manifestSha256": self.manifest_sha256,
            },
        }


@dataclass(frozen=True)
class UnpublishResult:
    resort_key: str
    removed_version: str | None
    removed_paths: tuple[Path, ...]
    manifest_sha256: str

    def to_json(self) -> dict[str, Any]:
        return {
            "resortKey": self.resort_key,
            "removedVersion": self.removed_version,
            "removedPaths": [str(p) for p in self.removed_paths],
            "manifestSha256": self.manifest_sha256,
        }


@contextlib.contextmanager
def _release_locks(resorts_root: Path, public: PublicLayout, resort_key: str) -> Iterator[None]:
    # Always resort lock first, then the shared release lock.
    with advisory_lock(resort_lock_path(resorts_root, resort_key)):
        with advisory_lock(public.lock_path):
            yield None


@contextlib.contextmanager
def _restore_on_failure(paths: Sequence[Path]) -> Iterator[None]:
    """Put every path back the way it was if the block raises.

    Existing files are copied aside first; paths that did not exist are
    removed again. The copies are dropped once the block succeeds.
    """

    backups: dict[Path, Path | None] = {}
    for path in paths:
        if path.is_file():
            backup = path.with_name(f".{path.name}.{os.getpid()}.bak")
            shutil.copyfile(path, backup)
            backups[path] = backup
        else:
            backups[path] = None

    try:
        yield None
    except BaseException:
        for path, backup in backups.items():
            if backup is not None:
                os.replace(backup, path)
            else:
                path.unlink(missing_ok=True)
        LOGGER.warning("Release write failed; restored %d published file(s)", len(backups))
        raise

    for backup in backups.values():
        if backup is not None:
            backup.unlink(missing_ok=True)


def write_release(
    public: PublicLayout,
    catalog: Mapping[str, Any],
    *,
    app_version: str,
    created_at: str,
) -> tuple[dict[str, Any], str]:
    """Write catalog (placeholder), manifest, catalog (real sha). Exactly two catalog writes."""

    staged = with_release(catalog, app_version=app_version, created_at=created_at)
    write_catalog(public.catalog_path, staged)

    manifest = build_release_manifest(public, staged, app_version=app_version, created_at=created_at)
    manifest_sha256 = write_release_manifest(public.manifest_path, manifest)

    final = with_release(catalog, app_version=app_version, created_at=created_at, manifest_sha256=manifest_sha256)
    write_catalog(public.catalog_path, final)
    LOGGER.info(
        "Wrote release: %d resort(s), %d artifact(s), manifest sha256 %s",
        len(final["resorts"]),
        len(manifest["artifacts"]),
        manifest_sha256,
    )
    return final, manifest_sha256


def publish_latest_validated_resort_version(
    resorts_root: Path,
    app_public_root: Path,
    resort_key: str,
    exported_at: str | None = None,
    *,
    app_version: str | None = None,
) -> PublishResult:
    """Export, copy the offline basemap, and register the pack in catalog and manifest.

    Fails with PreconditionError when there is nothing validated and ready to
    publish, or when the basemap is missing, a placeholder, or network-backed.
    """

    key = checked_resort_key(resort_key)
    public = PublicLayout(app_public_root)

    with _release_locks(resorts_root, public, key):
        exported = export_latest_validated_resort_version(resorts_root, key, exported_at)
        source = version_layout(resorts_root, key, exported.version_number)
        assert_offline_ready_basemap(source.pmtiles_path, source.style_path)

        # Refuse to clobber a catalog we can not parse before touching any file.
        catalog = load_catalog(public.catalog_path)

        pmtiles_path = public.pmtiles_path(key)
        style_path = public.style_path(key)
        pack_path = public.pack_path(key)
        resolved_app_version = resolve_app_version(app_public_root, app_version)

        # Until the final catalog write lands, the previous release must stay intact.
        touched = (pmtiles_path, style_path, pack_path, public.catalog_path, public.manifest_path)
        with _restore_on_failure(touched):
            copy_file_atomic(source.pmtiles_path, pmtiles_path)
            copy_file_atomic(source.style_path, style_path)
            pack_bytes = write_json_atomic(pack_path, dict(exported.bundle))

            pack_sha256 = sha256_bytes(pack_bytes)
            pmtiles_sha256 = sha256_file(pmtiles_path)
            style_sha256 = sha256_file(style_path)

            entry = build_version_entry(
                version=exported.version,
                pack_url=public.pack_url(key),
                created_at=exported.exported_at,
                min_app_version=resolved_app_version,
                supported_pack_schema_versions=[EXPORT_SCHEMA_VERSION],
                pack_sha256=pack_sha256,
                pmtiles_sha256=pmtiles_sha256,
                style_sha256=style_sha256,
            )
            catalog = upsert_resort(catalog, resort_key=key, resort_name=exported.resort_name, version_entry=entry)
            _, manifest_sha256 = write_release(
                public, catalog, app_version=resolved_app_version, created_at=exported.exported_at
            )

    LOGGER.info("Published %s/%s to %s", key, exported.version, app_public_root)
    return PublishResult(
        resort_key=key,
        resort_name=exported.resort_name,
        version=exported.version,
        exported_at=exported.exported_at,
        app_version=resolved_app_version,
        pack_path=pack_path,
        pack_url=public.pack_url(key),
        pmtiles_path=pmtiles_path,
        style_path=style_path,
        catalog_path=public.catalog_path,
        manifest_path=public.manifest_path,
        pack_sha256=pack_sha256,
        pmtiles_sha256=pmtiles_sha256,
        style_sha256=style_sha256,
        manifest_sha256=manifest_sha256,
    )


def unpublish_resort(
    resorts_root: Path,
    app_public_root: Path,
    resort_key: str,
    *,
    app_version: str | None = None,
    created_at: str | None = None,
) -> UnpublishResult:
    """Drop a resort from the catalog and manifest, then delete its published files."""

    key = checked_resort_key(resort_key)
    public = PublicLayout(app_public_root)

    with _release_locks(resorts_root, public, key):
        catalog = load_catalog(public.catalog_path)
        if find_resort(catalog, key) is None:
            raise PreconditionError(
                f"Resort '{key}' is not published.",
                code="NOT_PUBLISHED",
                details={"resortKey": key},
            )
        entry = published_version_entry(catalog, key)
        removed_version = entry.get("version") if entry else None

        remaining = remove_resort(catalog, key)
        resolved_app_version = resolve_app_version(app_public_root, app_version)
        with _restore_on_failure((public.catalog_path, public.manifest_path)):
            _, manifest_sha256 = write_release(
                public, remaining, app_version=resolved_app_version, created_at=created_at or utc_now_iso()
            )

        # Files go only once nothing published points at them any more.
        removed: list[Path] = []
        pack_path = public.pack_path(key)
        if pack_path.exists():
            pack_path.unlink()
            removed.append(pack_path)
        basemap_dir = public.basemap_dir(key)
        if basemap_dir.is_dir():
            shutil.rmtree(basemap_dir)
            removed.append(basemap_dir)

    LOGGER.info("Unpublished %s (%s)", key, removed_version)
    return UnpublishResult(
        resort_key=key,
        removed_version=removed_version,
        removed_paths=tuple(removed),
        manifest_sha256=manifest_sha256,
    )
