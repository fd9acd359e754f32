from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from .audit import audit_published_resort_integrity
from .basemap import OfflineBasemapMetrics
from .errors import CommandError, ReleaseError, format_command_error
from .export import export_latest_validated_resort_version, write_export_bundle
from .gate import GateResult, ReleaseScope, ScopeKind, run_release_dry_run, run_release_go_no_go_gate
from .keys import canonicalize_resort_keys
from .layout import resolve_app_public_root, resolve_resorts_root
from .publish import publish_latest_validated_resort_version, unpublish_resort
from .types import LayerName
from .versions import (
    attach_basemap_assets_to_version,
    checked_resort_key,
    clone_next_version,
    list_known_resorts,
    resolve_version,
    set_version_layer_validation,
    sync_version_status,
)

LOGGER = logging.getLogger("ptk_packs.release.cli")

LAYER_CHOICES = ", ".join(layer.value for layer in LayerName)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_NO_GO = 3


@contextmanager
def _timed(label: str) -> Iterator[None]:
    start = time.perf_counter()
    LOGGER.info("START %s", label)
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        LOGGER.info("DONE  %s (%.2fs)", label, elapsed)


def _emit(args: argparse.Namespace, payload: Any, lines: list[str]) -> None:
    if args.json:
        print(json.dumps(payload, indent=2, ensure_ascii=False))
        return
    for line in lines:
        print(line)


def _roots(args: argparse.Namespace) -> tuple[Path, Path]:
    return resolve_resorts_root(args.resorts_root), resolve_app_public_root(args.app_public_root)


def _resorts_root(args: argparse.Namespace) -> Path:
    resorts_root = resolve_resorts_root(args.resorts_root)
    # Older trees may still carry lower-case directory names.
    canonicalize_resort_keys(resorts_root)
    return resorts_root


def _issue_lines(issues: list[str] | tuple[str, ...], indent: str = "  - ") -> list[str]:
    return [f"{indent}{issue}" for issue in issues]


def _basemap_label(metrics: OfflineBasemapMetrics | None) -> str:
    if metrics is None:
        return "-"
    if metrics.published:
        return "published"
    return "local" if metrics.generated else "missing"


def resort_list_command(args: argparse.Namespace) -> int:
    summaries = list_known_resorts(_resorts_root(args), resolve_app_public_root(args.app_public_root))
    lines = [
        f"{s.resort_key}: {s.latest_version or '-'} readiness={s.readiness_overall} "
        f"validated={'yes' if s.manually_validated else 'no'} "
        f"basemap={_basemap_label(s.offline_basemap)}"
        for s in summaries
    ] or ["No resorts found."]
    _emit(args, {"ok": True, "resorts": [s.to_json() for s in summaries]}, lines)
    return EXIT_OK


def resort_canonicalize_command(args: argparse.Namespace) -> int:
    renamed = canonicalize_resort_keys(resolve_resorts_root(args.resorts_root))
    payload = {"ok": True, "renamed": [{"from": old, "to": new} for old, new in renamed]}
    _emit(args, payload, [f"{old} -> {new}" for old, new in renamed] or ["All resort keys are canonical."])
    return EXIT_OK


def resort_clone_command(args: argparse.Namespace) -> int:
    resorts_root = _resorts_root(args)
    key = checked_resort_key(args.resort_key)
    source = resolve_version(resorts_root, key, args.version)
    with _timed(f"clone {key}/{source.version}"):
        record = clone_next_version(resorts_root, key, source.version_path)
    _emit(args, {"ok": True, "version": record.to_json()}, [f"Created {key}/{record.version} from {source.version}"])
    return EXIT_OK


def resort_validate_layer_command(args: argparse.Namespace) -> int:
    if args.layer is None:
        raise CommandError("--layer is required", code="MISSING_ARGUMENT")
    state = set_version_layer_validation(
        _resorts_root(args),
        args.resort_key,
        args.layer,
        validated=args.validated,
        validated_by=args.by,
        notes=args.notes,
        version_number=args.version,
    )
    payload = {"ok": True, "manualValidation": state.to_json()}
    _emit(
        args,
        payload,
        [
            f"{args.layer}: {'validated' if args.validated else 'not validated'}",
            f"overall: {'validated' if state.validated else 'not validated'}",
        ],
    )
    return EXIT_OK


def resort_sync_status_command(args: argparse.Namespace) -> int:
    status = sync_version_status(_resorts_root(args), args.resort_key, args.version)
    readiness = status["readiness"]
    lines = [f"{status.get('resortKey', args.resort_key)}/{status.get('version')}: {readiness['overall']}"]
    lines.extend(_issue_lines(readiness.get("issues") or []))
    _emit(args, {"ok": True, "status": status}, lines)
    return EXIT_OK


def resort_attach_basemap_command(args: argparse.Namespace) -> int:
    if args.pmtiles is None or args.style is None:
        raise CommandError("--pmtiles and --style are required", code="MISSING_ARGUMENT")
    layout = attach_basemap_assets_to_version(
        _resorts_root(args),
        args.resort_key,
        Path(args.pmtiles),
        Path(args.style),
        version_number=args.version,
    )
    payload = {"ok": True, "pmtilesPath": str(layout.pmtiles_path), "stylePath": str(layout.style_path)}
    _emit(args, payload, [f"Attached basemap to {layout.resort_key}/{layout.version}"])
    return EXIT_OK


def resort_export_latest_command(args: argparse.Namespace) -> int:
    result = export_latest_validated_resort_version(_resorts_root(args), args.resort_key, args.exported_at)
    payload: dict[str, Any] = {"ok": True, "export": result.to_json()}
    if args.output:
        output = Path(args.output)
        write_export_bundle(result, output)
        payload["outputPath"] = str(output)
    _emit(args, payload, [f"Exported {result.resort_key}/{result.version}" + (f" to {args.output}" if args.output else "")])
    return EXIT_OK


def resort_publish_latest_command(args: argparse.Namespace) -> int:
    resorts_root = _resorts_root(args)
    app_public_root = resolve_app_public_root(args.app_public_root)
    with _timed(f"publish {args.resort_key}"):
        result = publish_latest_validated_resort_version(
            resorts_root,
            app_public_root,
            args.resort_key,
            args.exported_at,
            app_version=args.app_version,
        )
    lines = [
        f"Published {result.resort_key}/{result.version} ({result.pack_url})",
        f"  manifest sha256: {result.manifest_sha256}",
    ]
    _emit(args, {"ok": True, "publish": result.to_json()}, lines)
    return EXIT_OK


def resort_unpublish_command(args: argparse.Namespace) -> int:
    resorts_root = _resorts_root(args)
    app_public_root = resolve_app_public_root(args.app_public_root)
    result = unpublish_resort(resorts_root, app_public_root, args.resort_key, app_version=args.app_version)
    _emit(args, {"ok": True, "unpublish": result.to_json()}, [f"Unpublished {result.resort_key}"])
    return EXIT_OK


def release_audit_command(args: argparse.Namespace) -> int:
    result = audit_published_resort_integrity(resolve_app_public_root(args.app_public_root))
    lines = [f"Published audit: {'OK' if result.overall_ok else 'FAILED'}"]
    lines.extend(_issue_lines(result.issues))
    for resort in result.resorts:
        lines.append(f"{resort.resort_id} {resort.version or '-'}: {'ok' if resort.ok else 'FAILED'}")
        lines.extend(_issue_lines(resort.issues, indent="    - "))
    _emit(args, result.to_json(), lines)
    return EXIT_OK if result.overall_ok else EXIT_NO_GO


def _scope(args: argparse.Namespace) -> ReleaseScope:
    keys = list(args.resort_key or [])
    if args.published_only and keys:
        raise CommandError(
            "--published-only can not be combined with --resort-key",
            code="INVALID_FLAG_COMBINATION",
        )
    if args.published_only:
        return ReleaseScope(kind=ScopeKind.PUBLISHED)
    if keys:
        return ReleaseScope(kind=ScopeKind.EXPLICIT, resort_keys=tuple(checked_resort_key(k) for k in keys))
    return ReleaseScope()


def _gate_lines(gate: GateResult) -> list[str]:
    lines = [f"Release gate: {'GO' if gate.overall_ok else 'NO-GO'}"]
    lines.extend(_issue_lines(gate.global_issues))
    for resort in gate.resorts:
        lines.append(f"{resort.resort_key} {resort.latest_version or '-'}: {'ok' if resort.ok else 'blocked'}")
        lines.extend(_issue_lines(resort.issues, indent="    - "))
    return lines


def release_gate_command(args: argparse.Namespace) -> int:
    scope = _scope(args)
    resorts_root, app_public_root = _roots(args)
    gate = run_release_go_no_go_gate(resorts_root, app_public_root, scope)
    _emit(args, gate.to_json(), _gate_lines(gate))
    return EXIT_OK if gate.overall_ok else EXIT_NO_GO


def release_dry_run_command(args: argparse.Namespace) -> int:
    scope = _scope(args)
    resorts_root, app_public_root = _roots(args)
    with _timed("release dry-run"):
        result = run_release_dry_run(resorts_root, app_public_root, scope)
    lines = _gate_lines(result.go_no_go)
    lines.append(f"Published audit failures: {result.published_audit.failures}")
    lines.append(f"Dry run: {'GO' if result.overall_ok else 'NO-GO'}")
    _emit(args, result.to_json(), lines)
    return EXIT_OK if result.overall_ok else EXIT_NO_GO


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--resorts-root", help="Resorts root (defaults to PTK_RESORTS_ROOT or ./resorts).")
    common.add_argument("--app-public-root", help="App public root (defaults to PTK_APP_PUBLIC_ROOT or ./public).")
    common.add_argument("--json", action="store_true", help="Print machine-readable JSON.")
    common.add_argument("--verbose", action="store_true", help="Enable debug logging.")

    p = argparse.ArgumentParser(
        prog="python -m ptk_packs.release.cli",
        description="Version, validate, publish and audit offline resort packs.",
    )
    sub = p.add_subparsers(dest="command", required=True)

    ap_list = sub.add_parser("resort-list", parents=[common], help="List resorts with their latest version state.")
    ap_list.set_defaults(func=resort_list_command)

    ap_canon = sub.add_parser("resort-canonicalize", parents=[common], help="Rename non-canonical resort directories.")
    ap_canon.set_defaults(func=resort_canonicalize_command)

    ap_clone = sub.add_parser("resort-clone", parents=[common], help="Clone a version into the next version number.")
    ap_clone.add_argument("--resort-key", help="Resort key, e.g. CA_Golden_Kicking_Horse")
    ap_clone.add_argument("--version", type=int, help="Source version number (default: latest)")
    ap_clone.set_defaults(func=resort_clone_command)

    ap_validate = sub.add_parser("resort-validate-layer", parents=[common], help="Record manual validation for a layer.")
    ap_validate.add_argument("--resort-key", help="Resort key")
    ap_validate.add_argument("--layer", help=f"Layer to (un)validate: {LAYER_CHOICES}")
    g = ap_validate.add_mutually_exclusive_group()
    g.add_argument("--validated", dest="validated", action="store_true", help="Mark the layer validated (default).")
    g.add_argument("--unvalidated", dest="validated", action="store_false", help="Withdraw the layer's validation.")
    ap_validate.set_defaults(validated=True)
    ap_validate.add_argument("--by", help="Who validated the layer")
    ap_validate.add_argument("--notes", help="Free-form validation notes")
    ap_validate.add_argument("--version", type=int, help="Version number (default: latest)")
    ap_validate.set_defaults(func=resort_validate_layer_command)

    ap_sync = sub.add_parser("resort-sync-status", parents=[common], help="Recompute status layers and readiness.")
    ap_sync.add_argument("--resort-key", help="Resort key")
    ap_sync.add_argument("--version", type=int, help="Version number (default: latest)")
    ap_sync.set_defaults(func=resort_sync_status_command)

    ap_basemap = sub.add_parser("resort-attach-basemap", parents=[common], help="Copy basemap assets into a version.")
    ap_basemap.add_argument("--resort-key", help="Resort key")
    ap_basemap.add_argument("--pmtiles", help="Path to the PMTiles archive")
    ap_basemap.add_argument("--style", help="Path to the basemap style JSON")
    ap_basemap.add_argument("--version", type=int, help="Version number (default: latest)")
    ap_basemap.set_defaults(func=resort_attach_basemap_command)

    ap_export = sub.add_parser("resort-export-latest", parents=[common], help="Export the latest validated ready version.")
    ap_export.add_argument("--resort-key", help="Resort key")
    ap_export.add_argument("--output", help="Write the export bundle to this path")
    ap_export.add_argument("--exported-at", help="Override the export timestamp (ISO-8601)")
    ap_export.set_defaults(func=resort_export_latest_command)

    ap_publish = sub.add_parser("resort-publish-latest", parents=[common], help="Publish the latest validated ready version.")
    ap_publish.add_argument("--resort-key", help="Resort key")
    ap_publish.add_argument("--exported-at", help="Override the export timestamp (ISO-8601)")
    ap_publish.add_argument("--app-version", help="Override the app version (defaults to PTK_APP_VERSION or package.json)")
    ap_publish.set_defaults(func=resort_publish_latest_command)

    ap_unpublish = sub.add_parser("resort-unpublish", parents=[common], help="Remove a resort from the published release.")
    ap_unpublish.add_argument("--resort-key", help="Resort key")
    ap_unpublish.add_argument("--app-version", help="Override the app version")
    ap_unpublish.set_defaults(func=resort_unpublish_command)

    ap_audit = sub.add_parser("release-audit", parents=[common], help="Audit published pack integrity.")
    ap_audit.set_defaults(func=release_audit_command)

    for name, func, help_text in (
        ("release-gate", release_gate_command, "Run the release go/no-go gate."),
        ("release-dry-run", release_dry_run_command, "Run the gate and the published audit together."),
    ):
        ap_gate = sub.add_parser(name, parents=[common], help=help_text)
        ap_gate.add_argument("--published-only", action="store_true", help="Only check resorts in the catalog.")
        ap_gate.add_argument("--resort-key", action="append", default=[], help="Resort key to check (repeatable).")
        ap_gate.set_defaults(func=func)

    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        return args.func(args)
    except (ReleaseError, OSError) as exc:
        payload = format_command_error(exc, args.command)
        if args.json:
            print(json.dumps(payload, indent=2, ensure_ascii=False))
        else:
            error = payload["error"]
            print(f"error: [{error['code']}] {error['message']}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
