"""Integrity audit of what is actually published under the app public root.

Every problem is collected as an issue string; nothing here raises for a
broken artifact, so one run reports every resort's problems together.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Sequence

from .basemap import inspect_offline_style, inspect_pmtiles_archive
from .catalog import compatibility_issues, load_catalog, published_version_entry
from .determinism import read_json, sha256_file
from .errors import DocumentError
from .layout import PublicLayout
from .types import ArtifactKind

LOGGER = logging.getLogger(__name__)

_CHECKSUM_FIELDS = {
    ArtifactKind.PACK: "packSha256",
    ArtifactKind.PMTILES: "pmtilesSha256",
    ArtifactKind.STYLE: "styleSha256",
}


@dataclass(frozen=True)
class ResortAudit:
    resort_id: str
    version: str | None
    ok: bool
    issues: tuple[str, ...]

    def to_json(self) -> dict[str, Any]:
        return {"resortId": self.resort_id, "version": self.version, "ok": self.ok, "issues": list(self.issues)}


@dataclass(frozen=True)
class AuditResult:
    overall_ok: bool
    resorts: tuple[ResortAudit, ...]
    issues: tuple[str, ...] = ()

    @property
    def failures(self) -> int:
        return sum(1 for r in self.resorts if not r.ok)

    def to_json(self) -> dict[str, Any]:
        return {
            "overallOk": self.overall_ok,
            "resorts": [r.to_json() for r in self.resorts],
            "issues": list(self.issues),
        }


def _pack_issues(path: Path) -> list[str]:
    if not path.is_file():
        return [f"missing published pack JSON ({path})"]
    try:
        pack = read_json(path)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        return [f"missing published pack JSON ({path}): unparsable ({exc})"]
    if not isinstance(pack, Mapping) or not isinstance(pack.get("layers"), Mapping):
        return [f"missing published pack JSON ({path}): layers object missing"]
    return []


def _checksum_issues(paths: Mapping[ArtifactKind, Path], checksums: object) -> list[str]:
    if not isinstance(checksums, Mapping):
        return []
    issues: list[str] = []
    for kind, path in paths.items():
        expected = checksums.get(_CHECKSUM_FIELDS[kind])
        if not expected or not path.is_file():
            continue
        if sha256_file(path) != expected:
            issues.append(f"{kind.value} checksum mismatch ({path})")
    return issues


def audit_resort(
    public: PublicLayout,
    resort_key: str,
    version_entry: Mapping[str, Any] | None,
    *,
    app_version: str | None = None,
) -> ResortAudit:
    if version_entry is None:
        return ResortAudit(resort_key, None, False, ("no approved version in catalog",))

    paths = {
        ArtifactKind.PACK: public.path_for_url(str(version_entry.get("packUrl") or public.pack_url(resort_key))),
        ArtifactKind.PMTILES: public.pmtiles_path(resort_key),
        ArtifactKind.STYLE: public.style_path(resort_key),
    }

    issues = _pack_issues(paths[ArtifactKind.PACK])
    pmtiles_path = paths[ArtifactKind.PMTILES]
    issues.extend(
        f"missing PMTiles file ({pmtiles_path}): {issue}" for issue in inspect_pmtiles_archive(pmtiles_path).issues
    )
    style_path = paths[ArtifactKind.STYLE]
    issues.extend(
        f"Invalid basemap style JSON ({style_path}): {issue}" for issue in inspect_offline_style(style_path).issues
    )
    issues.extend(_checksum_issues(paths, version_entry.get("checksums")))
    if app_version:
        issues.extend(compatibility_issues(version_entry, app_version))

    return ResortAudit(resort_key, version_entry.get("version"), not issues, tuple(issues))


def load_published_catalog(public: PublicLayout) -> tuple[dict[str, Any] | None, tuple[str, ...]]:
    """The published catalog, or None plus the issue explaining why it is unusable."""

    try:
        catalog = load_catalog(public.catalog_path)
    except (OSError, DocumentError) as exc:
        return None, (str(exc),)
    if catalog is None:
        return None, (f"resort catalog missing ({public.catalog_path})",)
    return catalog, ()


def audit_catalog(
    public: PublicLayout,
    catalog: Mapping[str, Any] | None,
    catalog_issues: Sequence[str] = (),
) -> AuditResult:
    """Audit an already loaded catalog against the files under `public`."""

    if catalog is None:
        return AuditResult(overall_ok=False, resorts=(), issues=tuple(catalog_issues))

    app_version = (catalog.get("release") or {}).get("appVersion")
    resorts = tuple(
        audit_resort(
            public,
            resort["resortId"],
            published_version_entry(catalog, resort["resortId"]),
            app_version=app_version,
        )
        for resort in catalog.get("resorts", [])
    )
    result = AuditResult(overall_ok=all(r.ok for r in resorts), resorts=resorts)
    LOGGER.info("Audited %d published resort(s): %d failure(s)", len(resorts), result.failures)
    return result


def audit_published_resort_integrity(app_public_root: Path) -> AuditResult:
    """Check every catalog resort's published pack, tiles and style on disk."""

    public = PublicLayout(app_public_root)
    catalog, catalog_issues = load_published_catalog(public)
    return audit_catalog(public, catalog, catalog_issues)
