"""Versioned resort data packs and their release pipeline.

Resort data lives in append-only version folders under the resorts root.
A version becomes publishable only when its readiness is `ready` and a
human has validated every required layer. Publishing copies the pack and
its offline basemap into the app public root and rewrites the catalog and
release manifest; the audit and go/no-go gate check that published state
before a release goes live.
"""

from .audit import AuditResult, audit_published_resort_integrity
from .errors import CommandError, DocumentError, LockError, PreconditionError, ReleaseError
from .export import ExportResult, export_latest_validated_resort_version
from .gate import GateResult, ReleaseScope, run_release_dry_run, run_release_go_no_go_gate
from .layout import PublicLayout, VersionLayout, resolve_app_public_root, resolve_resorts_root
from .publish import PublishResult, publish_latest_validated_resort_version, unpublish_resort
from .types import LayerName
from .validation import set_layer_manual_validation, sync_status_from_workspace, to_manual_validation_state
from .versions import clone_next_version, list_version_numbers

__all__ = [
    "AuditResult",
    "CommandError",
    "DocumentError",
    "ExportResult",
    "GateResult",
    "LayerName",
    "LockError",
    "PreconditionError",
    "PublicLayout",
    "PublishResult",
    "ReleaseError",
    "ReleaseScope",
    "VersionLayout",
    "audit_published_resort_integrity",
    "clone_next_version",
    "export_latest_validated_resort_version",
    "list_version_numbers",
    "publish_latest_validated_resort_version",
    "resolve_app_public_root",
    "resolve_resorts_root",
    "run_release_dry_run",
    "run_release_go_no_go_gate",
    "set_layer_manual_validation",
    "sync_status_from_workspace",
    "to_manual_validation_state",
    "unpublish_resort",
]
