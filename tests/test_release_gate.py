from __future__ import annotations

import hashlib
from pathlib import Path

import pytest

from conftest import RESORT_KEY, write_version
from ptk_packs.release import audit as audit_module
from ptk_packs.release import gate as gate_module
from ptk_packs.release.errors import CommandError
from ptk_packs.release.gate import ScopeKind, resolve_scope, run_release_dry_run, run_release_go_no_go_gate
from ptk_packs.release.publish import publish_latest_validated_resort_version
from ptk_packs.release.versions import clone_next_version

EXPORTED_AT = "2026-02-10T12:00:00.000Z"


def _publish(resorts_root: Path, app_public_root: Path, key: str = RESORT_KEY) -> None:
    publish_latest_validated_resort_version(resorts_root, app_public_root, key, EXPORTED_AT)


def test_gate_passes_after_publish(resorts_root: Path, app_public_root: Path, seed_version) -> None:
    seed_version()
    _publish(resorts_root, app_public_root)

    gate = run_release_go_no_go_gate(resorts_root, app_public_root)

    assert gate.overall_ok is True
    assert gate.global_issues == ()
    assert gate.manifest.sha_matches_catalog is True
    assert gate.summary() == {"resortsChecked": 1, "readyValidatedCount": 1, "publishReadyCount": 1}
    payload = gate.to_json()
    assert payload["resorts"][0]["resortKey"] == RESORT_KEY
    assert payload["manifest"]["issues"] == []


def test_new_unpublished_version_blocks_resort(resorts_root: Path, app_public_root: Path, seed_version) -> None:
    source = seed_version()
    _publish(resorts_root, app_public_root)
    clone_next_version(resorts_root, RESORT_KEY, source)

    gate = run_release_go_no_go_gate(resorts_root, app_public_root)

    assert gate.overall_ok is False
    [resort] = gate.resorts
    assert resort.ok is False
    assert resort.latest_version == "v2"
    assert "published version v1 does not match latest version v2" in resort.issues
    assert "latest version v2 is not manually validated" in resort.issues
    # Per-resort problem only; the manifest itself is intact.
    assert gate.global_issues == ()


def test_tampered_manifest_is_a_global_issue(resorts_root: Path, app_public_root: Path, seed_version) -> None:
    seed_version()
    _publish(resorts_root, app_public_root)
    manifest = app_public_root / "releases" / "stable-manifest.json"
    manifest.write_text(manifest.read_text(encoding="utf-8") + " ", encoding="utf-8")

    gate = run_release_go_no_go_gate(resorts_root, app_public_root)

    assert gate.overall_ok is False
    assert gate.manifest.sha_matches_catalog is False
    assert all(r.ok for r in gate.resorts)
    assert any("release manifest sha256 does not match catalog" in issue for issue in gate.global_issues)


def test_unpublished_resort_in_all_scope(resorts_root: Path, app_public_root: Path, seed_version) -> None:
    seed_version()
    write_version(resorts_root, "US_Vail_Vail", name="Vail", ready=False)
    _publish(resorts_root, app_public_root)

    gate = run_release_go_no_go_gate(resorts_root, app_public_root, "all")
    by_key = {r.resort_key: r for r in gate.resorts}

    assert by_key[RESORT_KEY].ok is True
    assert set(by_key["US_Vail_Vail"].issues) == {"latest version v1 is not ready", "resort is not published"}
    assert gate.summary()["readyValidatedCount"] == 1

    published_only = run_release_go_no_go_gate(resorts_root, app_public_root, "published")
    assert [r.resort_key for r in published_only.resorts] == [RESORT_KEY]
    assert published_only.overall_ok is True

    explicit = run_release_go_no_go_gate(resorts_root, app_public_root, ["us_vail_vail"])
    assert [r.resort_key for r in explicit.resorts] == ["US_Vail_Vail"]
    assert explicit.overall_ok is False


def test_gate_without_catalog(resorts_root: Path, app_public_root: Path, seed_version) -> None:
    seed_version()

    gate = run_release_go_no_go_gate(resorts_root, app_public_root)

    assert gate.overall_ok is False
    assert any("resort catalog missing" in issue for issue in gate.global_issues)
    assert any("release manifest missing" in issue for issue in gate.global_issues)
    assert gate.resorts[0].issues[-1] == "resort is not published"


def test_empty_scope_is_a_global_issue(resorts_root: Path, app_public_root: Path) -> None:
    gate = run_release_go_no_go_gate(resorts_root, app_public_root, "published")

    assert gate.overall_ok is False
    assert "no resorts in scope (published)" in gate.global_issues


@pytest.mark.parametrize("scope", ["everything", "explicit", []])
def test_invalid_scope(scope: object) -> None:
    with pytest.raises(CommandError) as excinfo:
        resolve_scope(scope)  # type: ignore[arg-type]

    assert excinfo.value.code == "INVALID_SCOPE"


def test_resolve_scope_dedupes_explicit_keys() -> None:
    scope = resolve_scope(["CA_Golden_Kicking_Horse", "ca_golden_kicking_horse"])

    assert scope.kind is ScopeKind.EXPLICIT
    assert scope.resort_keys == (RESORT_KEY,)


def test_dry_run_combines_gate_and_audit(resorts_root: Path, app_public_root: Path, seed_version) -> None:
    seed_version()
    _publish(resorts_root, app_public_root)

    ok = run_release_dry_run(resorts_root, app_public_root)
    assert ok.overall_ok is True
    assert ok.to_json()["summary"]["publishedAuditFailures"] == 0

    (app_public_root / "packs" / RESORT_KEY / "style.json").unlink()
    broken = run_release_dry_run(resorts_root, app_public_root)

    assert broken.go_no_go.overall_ok is True
    assert broken.published_audit.overall_ok is False
    assert broken.overall_ok is False
    assert broken.to_json()["summary"]["publishedAuditFailures"] == 1


def test_dry_run_reads_catalog_and_manifest_once(
    resorts_root: Path, app_public_root: Path, seed_version, monkeypatch: pytest.MonkeyPatch
) -> None:
    seed_version()
    _publish(resorts_root, app_public_root)
    catalog_loads: list[Path] = []
    manifest_parses: list[bytes] = []
    real_load_catalog = audit_module.load_catalog
    real_parse = gate_module.parse_release_manifest

    def counting_load_catalog(path: Path):
        catalog_loads.append(path)
        return real_load_catalog(path)

    def recording_parse(data: bytes, path: Path):
        manifest_parses.append(data)
        return real_parse(data, path)

    monkeypatch.setattr("ptk_packs.release.audit.load_catalog", counting_load_catalog)
    monkeypatch.setattr("ptk_packs.release.gate.parse_release_manifest", recording_parse)

    result = run_release_dry_run(resorts_root, app_public_root)

    assert result.overall_ok is True
    assert len(catalog_loads) == 1
    [data] = manifest_parses
    assert hashlib.sha256(data).hexdigest() == result.go_no_go.manifest.actual_sha256
