"""Release go/no-go gate and the operator dry-run.

The gate compares local version state with what is published; the dry-run
adds the published integrity audit on top. Both only read.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Sequence

from .audit import AuditResult, audit_catalog, load_published_catalog
from .catalog import published_version_entry
from .determinism import sha256_bytes
from .documents import read_status
from .errors import CommandError, DocumentError
from .layout import PublicLayout
from .manifest import parse_release_manifest
from .types import ReadinessOverall
from .versions import checked_resort_key, list_resort_keys, list_version_numbers, version_layout

LOGGER = logging.getLogger(__name__)


class ScopeKind(str, Enum):
    ALL = "all"
    PUBLISHED = "published"
    EXPLICIT = "explicit"


@dataclass(frozen=True)
class ReleaseScope:
    kind: ScopeKind = ScopeKind.ALL
    resort_keys: tuple[str, ...] = ()

    def to_json(self) -> dict[str, Any]:
        body: dict[str, Any] = {"kind": self.kind.value}
        if self.kind is ScopeKind.EXPLICIT:
            body["resortKeys"] = list(self.resort_keys)
        return body


def resolve_scope(scope: "ReleaseScope | str | Sequence[str] | None") -> ReleaseScope:
    """Accept `"all"`, `"published"`, an explicit key list, or a ReleaseScope."""

    if scope is None:
        return ReleaseScope()
    if isinstance(scope, ReleaseScope):
        return scope
    if isinstance(scope, str):
        try:
            kind = ScopeKind(scope)
        except ValueError:
            raise CommandError(f"invalid gate scope: {scope!r}", code="INVALID_SCOPE") from None
        if kind is ScopeKind.EXPLICIT:
            raise CommandError("explicit scope needs at least one resort key", code="INVALID_SCOPE")
        return ReleaseScope(kind=kind)

    keys = [checked_resort_key(key) for key in scope]
    if not keys:
        raise CommandError("explicit scope needs at least one resort key", code="INVALID_SCOPE")
    # De-duplicate, first occurrence wins.
    return ReleaseScope(kind=ScopeKind.EXPLICIT, resort_keys=tuple(dict.fromkeys(keys)))


@dataclass(frozen=True)
class ResortGateResult:
    resort_key: str
    latest_version: str | None
    published_version: str | None
    ready_validated: bool
    ok: bool
    issues: tuple[str, ...]

    def to_json(self) -> dict[str, Any]:
        return {
            "resortKey": self.resort_key,
            "latestVersion": self.latest_version,
            "publishedVersion": self.published_version,
            "readyValidated": self.ready_validated,
            "ok": self.ok,
            "issues": list(self.issues),
        }


@dataclass(frozen=True)
class ManifestCheck:
    sha_matches_catalog: bool
    expected_sha256: str | None
    actual_sha256: str | None
    issues: tuple[str, ...] = ()

    def to_json(self) -> dict[str, Any]:
        return {
            "shaMatchesCatalog": self.sha_matches_catalog,
            "expectedSha256": self.expected_sha256,
            "actualSha256": self.actual_sha256,
            "issues": list(self.issues),
        }


@dataclass(frozen=True)
class GateResult:
    overall_ok: bool
    scope: ReleaseScope
    global_issues: tuple[str, ...]
    manifest: ManifestCheck
    resorts: tuple[ResortGateResult, ...] = field(default_factory=tuple)

    @property
    def ready_validated_count(self) -> int:
        return sum(1 for r in self.resorts if r.ready_validated)

    @property
    def publish_ready_count(self) -> int:
        return sum(1 for r in self.resorts if r.ok)

    def summary(self) -> dict[str, int]:
        return {
            "resortsChecked": len(self.resorts),
            "readyValidatedCount": self.ready_validated_count,
            "publishReadyCount": self.publish_ready_count,
        }

    def to_json(self) -> dict[str, Any]:
        return {
            "overallOk": self.overall_ok,
            "scope": self.scope.to_json(),
            "globalIssues": list(self.global_issues),
            "manifest": self.manifest.to_json(),
            "summary": self.summary(),
            "resorts": [r.to_json() for r in self.resorts],
        }


def _check_resort(resorts_root: Path, resort_key: str, catalog: Mapping[str, Any] | None) -> ResortGateResult:
    published = published_version_entry(catalog, resort_key)
    published_version = published.get("version") if published else None

    numbers = list_version_numbers(resorts_root / resort_key)
    if not numbers:
        return ResortGateResult(resort_key, None, published_version, False, False, ("no local versions found",))

    layout = version_layout(resorts_root, resort_key, numbers[-1])
    latest = layout.version
    issues: list[str] = []
    try:
        status = read_status(layout.status_path)
    except (OSError, ValueError, DocumentError) as exc:
        status = None
        issues.append(f"latest version {latest} status is unreadable: {exc}")

    ready_validated = False
    if status is not None:
        ready = status["readiness"].get("overall") == ReadinessOverall.READY.value
        validated = status["manualValidation"].get("validated") is True
        if not ready:
            issues.append(f"latest version {latest} is not ready")
        if not validated:
            issues.append(f"latest version {latest} is not manually validated")
        ready_validated = ready and validated

    if published_version is None:
        issues.append("resort is not published")
    elif published_version != latest:
        issues.append(f"published version {published_version} does not match latest version {latest}")

    return ResortGateResult(resort_key, latest, published_version, ready_validated, not issues, tuple(issues))


def _check_manifest(public: PublicLayout, catalog: Mapping[str, Any] | None) -> ManifestCheck:
    issues: list[str] = []
    release = catalog.get("release") if catalog else None
    expected = release.get("manifestSha256") if isinstance(release, Mapping) else None
    if catalog is not None and expected is None:
        issues.append("catalog release metadata missing")

    actual: str | None = None
    if not public.manifest_path.is_file():
        issues.append(f"release manifest missing ({public.manifest_path})")
    else:
        # One read: the checksum and the schema check see the same bytes.
        data = public.manifest_path.read_bytes()
        actual = sha256_bytes(data)
        if expected is not None and actual != expected:
            issues.append(f"release manifest sha256 does not match catalog (expected {expected}, found {actual})")
        try:
            parse_release_manifest(data, public.manifest_path)
        except DocumentError as exc:
            issues.append(str(exc))

    return ManifestCheck(
        sha_matches_catalog=expected is not None and actual == expected,
        expected_sha256=expected,
        actual_sha256=actual,
        issues=tuple(issues),
    )


def _scope_keys(scope: ReleaseScope, resorts_root: Path, catalog: Mapping[str, Any] | None) -> list[str]:
    if scope.kind is ScopeKind.EXPLICIT:
        return list(scope.resort_keys)
    if scope.kind is ScopeKind.PUBLISHED:
        return sorted(r["resortId"] for r in (catalog or {}).get("resorts", []))
    return list_resort_keys(resorts_root)


def _gate(
    resorts_root: Path,
    public: PublicLayout,
    resolved_scope: ReleaseScope,
    catalog: Mapping[str, Any] | None,
    catalog_issues: Sequence[str],
) -> GateResult:
    global_issues = list(catalog_issues)
    keys = _scope_keys(resolved_scope, resorts_root, catalog)
    if not keys:
        global_issues.append(f"no resorts in scope ({resolved_scope.kind.value})")
    resorts = tuple(_check_resort(resorts_root, key, catalog) for key in keys)

    manifest = _check_manifest(public, catalog)
    global_issues.extend(manifest.issues)

    overall_ok = not global_issues and all(r.ok for r in resorts)
    LOGGER.info(
        "Release gate: %s (%d resort(s), %d global issue(s))",
        "GO" if overall_ok else "NO-GO",
        len(resorts),
        len(global_issues),
    )
    return GateResult(
        overall_ok=overall_ok,
        scope=resolved_scope,
        global_issues=tuple(global_issues),
        manifest=manifest,
        resorts=resorts,
    )


def run_release_go_no_go_gate(
    resorts_root: Path,
    app_public_root: Path,
    scope: "ReleaseScope | str | Sequence[str] | None" = None,
) -> GateResult:
    """Decide whether the published state matches every in-scope resort's latest local version."""

    resolved_scope = resolve_scope(scope)
    public = PublicLayout(app_public_root)
    catalog, catalog_issues = load_published_catalog(public)
    return _gate(resorts_root, public, resolved_scope, catalog, catalog_issues)


@dataclass(frozen=True)
class DryRunResult:
    overall_ok: bool
    go_no_go: GateResult
    published_audit: AuditResult

    def to_json(self) -> dict[str, Any]:
        return {
            "overallOk": self.overall_ok,
            "summary": {
                **self.go_no_go.summary(),
                "publishedAuditFailures": self.published_audit.failures,
            },
            "goNoGo": self.go_no_go.to_json(),
            "publishedAudit": self.published_audit.to_json(),
        }


def run_release_dry_run(
    resorts_root: Path,
    app_public_root: Path,
    scope: "ReleaseScope | str | Sequence[str] | None" = None,
) -> DryRunResult:
    resolved_scope = resolve_scope(scope)
    public = PublicLayout(app_public_root)
    # Gate and audit judge the same catalog snapshot.
    catalog, catalog_issues = load_published_catalog(public)
    go_no_go = _gate(resorts_root, public, resolved_scope, catalog, catalog_issues)
    published_audit = audit_catalog(public, catalog, catalog_issues)
    return DryRunResult(
        overall_ok=go_no_go.overall_ok and published_audit.overall_ok,
        go_no_go=go_no_go,
        published_audit=published_audit,
    )
