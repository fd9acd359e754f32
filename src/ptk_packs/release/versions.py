"""On-disk version tree for each resort.

Layout: <resorts_root>/<ResortKey>/v<N>/{resort.json,status.json,...}

Versions are append-only. New content always lands in a fresh clone of the
latest version; a clone that fails before it is complete is removed again so
later reads never observe a half-built version.
"""

from __future__ import annotations

import logging
import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping

from .basemap import OfflineBasemapMetrics, assert_regular_file, read_offline_basemap_metrics
from .determinism import utc_now_iso
from .documents import (
    STATUS_SCHEMA_VERSION,
    WORKSPACE_SCHEMA_VERSION,
    read_status,
    read_workspace,
    write_status,
    write_workspace,
)
from .errors import CommandError, DocumentError, PreconditionError
from .keys import canonicalize_resort_dir, to_canonical_resort_key
from .layout import PMTILES_FILENAME, STYLE_FILENAME, PublicLayout, VersionLayout, resort_lock_path, version_name
from .locking import advisory_lock
from .readiness import ReadinessFn, compute_readiness
from .types import REQUIRED_LAYERS, LayerName, LayerStatus, parse_layer
from .validation import (
    ManualValidationState,
    default_readiness,
    pending_status_layers,
    set_layer_manual_validation,
    sync_status_from_workspace,
    to_manual_validation_state,
)

LOGGER = logging.getLogger(__name__)

_VERSION_DIR = re.compile(r"^v([1-9]\d*)$")
_RESORT_KEY = re.compile(r"^[A-Za-z0-9]+(_[A-Za-z0-9]+)+$")


@dataclass(frozen=True)
class VersionRecord:
    resort_key: str
    version: str
    version_number: int
    version_path: Path
    workspace_path: Path
    status_path: Path

    @classmethod
    def from_layout(cls, layout: VersionLayout) -> "VersionRecord":
        return cls(
            resort_key=layout.resort_key,
            version=layout.version,
            version_number=layout.version_number,
            version_path=layout.version_path,
            workspace_path=layout.workspace_path,
            status_path=layout.status_path,
        )

    def to_json(self) -> dict[str, Any]:
        return {
            "resortKey": self.resort_key,
            "version": self.version,
            "versionNumber": self.version_number,
            "versionPath": str(self.version_path),
            "workspacePath": str(self.workspace_path),
            "statusPath": str(self.status_path),
        }


def checked_resort_key(resort_key: str | None) -> str:
    """Canonicalize a caller-supplied key; reject anything that is not a plain name."""

    if resort_key is None or not resort_key.strip():
        raise CommandError("resort key is required", code="MISSING_ARGUMENT")
    key = resort_key.strip()
    if not _RESORT_KEY.match(key):
        raise CommandError(f"invalid resort key: {resort_key!r}", code="INVALID_RESORT_KEY")
    return to_canonical_resort_key(key)


def parse_version_folder(name: str) -> int | None:
    match = _VERSION_DIR.match(name)
    if not match:
        return None
    return int(match.group(1))


def list_version_numbers(resort_path: Path) -> list[int]:
    """Version numbers under a resort directory, ascending; non-version entries ignored."""

    if not resort_path.is_dir():
        return []
    numbers = [
        n
        for n in (parse_version_folder(p.name) for p in resort_path.iterdir() if p.is_dir())
        if n is not None
    ]
    return sorted(numbers)


def latest_version_number(resort_path: Path) -> int | None:
    numbers = list_version_numbers(resort_path)
    return numbers[-1] if numbers else None


def list_resort_keys(resorts_root: Path) -> list[str]:
    if not resorts_root.is_dir():
        return []
    return sorted(p.name for p in resorts_root.iterdir() if p.is_dir() and not p.name.startswith("."))


def version_layout(resorts_root: Path, resort_key: str, version_number: int) -> VersionLayout:
    return VersionLayout(resorts_root=resorts_root, resort_key=resort_key, version_number=version_number)


def resolve_version(resorts_root: Path, resort_key: str, version_number: int | None = None) -> VersionLayout:
    """Layout of an existing version (the latest one when no number is given)."""

    resort_path = resorts_root / resort_key
    numbers = list_version_numbers(resort_path)
    if not numbers:
        raise PreconditionError(f"No versions found for resort '{resort_key}'.", code="NO_VERSIONS")
    if version_number is None:
        version_number = numbers[-1]
    elif version_number not in numbers:
        raise PreconditionError(
            f"Version {version_name(version_number)} not found for resort '{resort_key}'.",
            code="VERSION_NOT_FOUND",
        )
    return version_layout(resorts_root, resort_key, version_number)


def _next_version_number(resort_path: Path) -> int:
    latest = latest_version_number(resort_path)
    return 1 if latest is None else latest + 1


def _remove_version_dir(path: Path) -> None:
    shutil.rmtree(path, ignore_errors=True)
    LOGGER.info("Rolled back partially created version: %s", path)


def create_resort_version(
    resorts_root: Path,
    resort_key: str,
    *,
    name: str,
    country_code: str,
    town: str,
    selection: Mapping[str, Any] | None = None,
    created_at: str | None = None,
) -> VersionRecord:
    """Persist a fresh version with every layer pending and nothing validated."""

    key = checked_resort_key(resort_key)
    with advisory_lock(resort_lock_path(resorts_root, key)):
        canonicalize_resort_dir(resorts_root, key)
        layout = version_layout(resorts_root, key, _next_version_number(resorts_root / key))
        created_at = created_at or utc_now_iso()

        resort: dict[str, Any] = {"query": {"name": name, "country": country_code}}
        if selection:
            resort["selection"] = {**dict(selection), "selectedAt": selection.get("selectedAt", created_at)}
        workspace = {
            "schemaVersion": WORKSPACE_SCHEMA_VERSION,
            "resort": resort,
            "layers": {layer.value: {"status": LayerStatus.PENDING.value} for layer in REQUIRED_LAYERS},
        }
        status: dict[str, Any] = {
            "schemaVersion": STATUS_SCHEMA_VERSION,
            "resortKey": key,
            "version": layout.version,
            "createdAt": created_at,
            "query": {"name": name, "countryCode": country_code, "town": town},
            "selection": {k: v for k, v in dict(selection or {}).items() if k != "selectedAt"},
            "layers": pending_status_layers(),
            "readiness": default_readiness(),
            "manualValidation": ManualValidationState().to_json(),
        }

        layout.version_path.mkdir(parents=True, exist_ok=False)
        try:
            write_workspace(layout.workspace_path, workspace)
            write_status(layout.status_path, status)
        except BaseException:
            _remove_version_dir(layout.version_path)
            raise

    LOGGER.info("Created resort version %s/%s", key, layout.version)
    return VersionRecord.from_layout(layout)


def _clone_next_version_unlocked(
    resorts_root: Path,
    resort_key: str,
    source_version_path: Path,
    created_at: str | None,
) -> VersionRecord:
    layout = version_layout(resorts_root, resort_key, _next_version_number(resorts_root / resort_key))
    if layout.version_path.exists():
        raise FileExistsError(f"version directory already exists: {layout.version_path}")

    try:
        shutil.copytree(source_version_path, layout.version_path)

        status = read_status(layout.status_path)
        status["version"] = layout.version
        status["createdAt"] = created_at or utc_now_iso()
        status["manualValidation"] = ManualValidationState().to_json()
        write_status(layout.status_path, status)

        # Re-validate the copied workspace so a corrupt source never yields a new version.
        write_workspace(layout.workspace_path, read_workspace(layout.workspace_path))
    except BaseException:
        _remove_version_dir(layout.version_path)
        raise

    LOGGER.info("Cloned %s -> %s/%s", source_version_path, resort_key, layout.version)
    return VersionRecord.from_layout(layout)


def clone_next_version(
    resorts_root: Path,
    resort_key: str,
    source_version_path: Path,
    *,
    created_at: str | None = None,
) -> VersionRecord:
    """Copy `source_version_path` into `v<max+1>` with manual validation reset.

    Workspace, artifacts and basemap are preserved byte-for-byte; the status
    document gets a new `version`, a new `createdAt` and an all-unvalidated
    `manualValidation` block.
    """

    key = checked_resort_key(resort_key)
    with advisory_lock(resort_lock_path(resorts_root, key)):
        renamed_from = canonicalize_resort_dir(resorts_root, key)
        if renamed_from is not None and source_version_path.parent == renamed_from:
            source_version_path = resorts_root / key / source_version_path.name
        return _clone_next_version_unlocked(resorts_root, key, source_version_path, created_at)


def _sync_status_file(version: VersionLayout, readiness_fn: ReadinessFn) -> dict[str, Any]:
    workspace = read_workspace(version.workspace_path)
    status = sync_status_from_workspace(read_status(version.status_path), workspace, readiness_fn(workspace))
    write_status(version.status_path, status)
    return status


def sync_version_status(
    resorts_root: Path,
    resort_key: str,
    version_number: int | None = None,
    *,
    readiness_fn: ReadinessFn = compute_readiness,
) -> dict[str, Any]:
    """Refresh a version's status layers and readiness from its workspace."""

    key = checked_resort_key(resort_key)
    with advisory_lock(resort_lock_path(resorts_root, key)):
        canonicalize_resort_dir(resorts_root, key)
        return _sync_status_file(resolve_version(resorts_root, key, version_number), readiness_fn)


def update_resort_in_new_version(
    resorts_root: Path,
    resort_key: str,
    mutate: Callable[[Path], object],
    *,
    readiness_fn: ReadinessFn = compute_readiness,
    created_at: str | None = None,
) -> VersionRecord:
    """Clone the latest version, let `mutate` update the clone's workspace, sync status.

    `mutate` is the layer-sync collaborator: it receives the new workspace
    path and writes artifacts plus workspace layer state. Any exception
    removes the clone before propagating.
    """

    key = checked_resort_key(resort_key)
    with advisory_lock(resort_lock_path(resorts_root, key)):
        canonicalize_resort_dir(resorts_root, key)
        source = resolve_version(resorts_root, key)
        cloned = _clone_next_version_unlocked(resorts_root, key, source.version_path, created_at)
        try:
            mutate(cloned.workspace_path)
            _sync_status_file(version_layout(resorts_root, key, cloned.version_number), readiness_fn)
        except BaseException:
            _remove_version_dir(cloned.version_path)
            raise
    return cloned


def set_version_layer_validation(
    resorts_root: Path,
    resort_key: str,
    layer: LayerName | str,
    *,
    validated: bool,
    validated_by: str | None = None,
    notes: str | None = None,
    validated_at: str | None = None,
    version_number: int | None = None,
) -> ManualValidationState:
    """Record a human sign-off (or its withdrawal) for one layer of a version."""

    key = checked_resort_key(resort_key)
    try:
        target = parse_layer(layer)
    except ValueError:
        raise CommandError(f"invalid layer: {layer!r}", code="INVALID_LAYER") from None

    with advisory_lock(resort_lock_path(resorts_root, key)):
        canonicalize_resort_dir(resorts_root, key)
        version = resolve_version(resorts_root, key, version_number)
        workspace = read_workspace(version.workspace_path)
        layer_state = workspace["layers"].get(target.value) or {}
        if validated and layer_state.get("status") != LayerStatus.COMPLETE.value:
            raise PreconditionError(
                f"Cannot validate {target.value}. Layer is not complete yet.",
                code="LAYER_NOT_COMPLETE",
                details={"layer": target.value, "status": layer_state.get("status")},
            )

        status = read_status(version.status_path)
        state = set_layer_manual_validation(
            status.get("manualValidation"),
            target,
            validated,
            (validated_at or utc_now_iso()) if validated else None,
            validated_by if validated else None,
            notes if validated else None,
        )
        status["manualValidation"] = state.to_json()
        write_status(version.status_path, status)

    LOGGER.info(
        "Set %s validation for %s/%s: %s (overall=%s)",
        target.value,
        key,
        version.version,
        validated,
        state.validated,
    )
    return state


def attach_basemap_assets_to_version(
    resorts_root: Path,
    resort_key: str,
    pmtiles_source: Path,
    style_source: Path,
    *,
    version_number: int | None = None,
) -> VersionLayout:
    """Copy a tile archive and style document into `<version>/basemap/`."""

    assert_regular_file(pmtiles_source, "Missing basemap PMTiles")
    assert_regular_file(style_source, "Missing basemap style")

    key = checked_resort_key(resort_key)
    with advisory_lock(resort_lock_path(resorts_root, key)):
        canonicalize_resort_dir(resorts_root, key)
        version = resolve_version(resorts_root, key, version_number)
        version.basemap_dir.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(pmtiles_source, version.basemap_dir / PMTILES_FILENAME)
        shutil.copyfile(style_source, version.basemap_dir / STYLE_FILENAME)
    LOGGER.info("Attached basemap assets to %s/%s", key, version.version)
    return version


@dataclass(frozen=True)
class KnownResortSummary:
    resort_key: str
    latest_version: str | None
    manually_validated: bool | None
    readiness_overall: str
    readiness_issue_count: int
    created_at: str | None
    layers: Mapping[str, Mapping[str, Any]]
    offline_basemap: OfflineBasemapMetrics | None = None

    def to_json(self) -> dict[str, Any]:
        return {
            "resortKey": self.resort_key,
            "latestVersion": self.latest_version,
            "manuallyValidated": self.manually_validated,
            "readinessOverall": self.readiness_overall,
            "readinessIssueCount": self.readiness_issue_count,
            "createdAt": self.created_at,
            "layers": {k: dict(v) for k, v in self.layers.items()},
            "offlineBasemap": self.offline_basemap.to_json() if self.offline_basemap else None,
        }


def _unknown_layers() -> dict[str, dict[str, Any]]:
    return {
        layer.value: {"status": "unknown", "featureCount": None, "checksumSha256": None, "updatedAt": None}
        for layer in REQUIRED_LAYERS
    }


def list_known_resorts(resorts_root: Path, app_public_root: Path | None = None) -> list[KnownResortSummary]:
    """One summary per resort, built from its latest version's status.

    With an app public root the summary also reports whether the basemap
    assets were generated into the version and published to the app.
    """

    public = PublicLayout(app_public_root) if app_public_root is not None else None
    summaries: list[KnownResortSummary] = []
    for key in list_resort_keys(resorts_root):
        latest = latest_version_number(resorts_root / key)
        if latest is None:
            summaries.append(KnownResortSummary(key, None, None, "unknown", 0, None, _unknown_layers()))
            continue

        layout = version_layout(resorts_root, key, latest)
        try:
            status = read_status(layout.status_path)
        except (OSError, ValueError, DocumentError) as exc:
            LOGGER.warning("Unreadable status for %s/%s: %s", key, layout.version, exc)
            summaries.append(KnownResortSummary(key, layout.version, None, "unknown", 0, None, _unknown_layers()))
            continue

        layers = _unknown_layers()
        for name, state in (status.get("layers") or {}).items():
            if name in layers and isinstance(state, Mapping):
                layers[name] = {
                    "status": state.get("status", "unknown"),
                    "featureCount": state.get("featureCount"),
                    "checksumSha256": state.get("checksumSha256"),
                    "updatedAt": state.get("updatedAt"),
                }
        readiness = status["readiness"]
        summaries.append(
            KnownResortSummary(
                resort_key=key,
                latest_version=layout.version,
                manually_validated=to_manual_validation_state(status["manualValidation"]).validated,
                readiness_overall=readiness.get("overall", "unknown"),
                readiness_issue_count=len(readiness.get("issues") or []),
                created_at=status.get("createdAt"),
                layers=layers,
                offline_basemap=read_offline_basemap_metrics(layout, public) if public else None,
            )
        )
    return summaries
