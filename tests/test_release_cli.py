from __future__ import annotations

import json
import os
import subprocess
import sys
from pathlib import Path

import pytest

from conftest import RESORT_KEY
from ptk_packs.release.cli import main


def _run_cli(args: list[str], *, env: dict[str, str]) -> subprocess.CompletedProcess[str]:
    repo_root = Path(__file__).resolve().parents[1]
    src_path = str(repo_root / "src")
    env = dict(env)
    env["PYTHONPATH"] = src_path + (":" + env["PYTHONPATH"] if env.get("PYTHONPATH") else "")
    return subprocess.run(
        [sys.executable, "-m", "ptk_packs.release.cli", *args],
        check=False,
        text=True,
        capture_output=True,
        env=env,
    )


def _roots(resorts_root: Path, app_public_root: Path) -> list[str]:
    return ["--resorts-root", str(resorts_root), "--app-public-root", str(app_public_root)]


def _json_out(capsys: pytest.CaptureFixture[str]) -> dict:
    return json.loads(capsys.readouterr().out)


def test_cli_help() -> None:
    proc = _run_cli(["--help"], env=os.environ.copy())
    assert proc.returncode == 0
    assert "Version, validate, publish and audit offline resort packs" in proc.stdout


def test_cli_publish_then_gate_subprocess(resorts_root: Path, app_public_root: Path, seed_version) -> None:
    seed_version()
    env = os.environ.copy()
    env.pop("PTK_APP_VERSION", None)

    publish = _run_cli(
        ["resort-publish-latest", "--resort-key", RESORT_KEY, "--json", *_roots(resorts_root, app_public_root)],
        env=env,
    )
    assert publish.returncode == 0, publish.stderr
    assert json.loads(publish.stdout)["publish"]["version"] == "v1"

    gate = _run_cli(["release-gate", "--json", *_roots(resorts_root, app_public_root)], env=env)
    assert gate.returncode == 0, gate.stderr
    assert json.loads(gate.stdout)["overallOk"] is True


def test_gate_scope_flags_conflict(resorts_root: Path, app_public_root: Path, capsys) -> None:
    code = main(
        [
            "release-gate",
            "--published-only",
            "--resort-key",
            RESORT_KEY,
            "--json",
            *_roots(resorts_root, app_public_root),
        ]
    )

    assert code == 1
    payload = _json_out(capsys)
    assert payload == {
        "ok": False,
        "error": {
            "command": "release-gate",
            "code": "INVALID_FLAG_COMBINATION",
            "message": "--published-only can not be combined with --resort-key",
        },
    }


def test_export_without_validated_version_is_structured_error(
    resorts_root: Path, app_public_root: Path, seed_version, capsys
) -> None:
    seed_version(validated=False)

    code = main(["resort-export-latest", "--resort-key", RESORT_KEY, "--json", *_roots(resorts_root, app_public_root)])

    assert code == 1
    error = _json_out(capsys)["error"]
    assert error["code"] == "NO_VALIDATED_READY_VERSION"
    assert "No manually validated ready version found" in error["message"]


def test_missing_resort_key(resorts_root: Path, app_public_root: Path, capsys) -> None:
    code = main(["resort-publish-latest", "--json", *_roots(resorts_root, app_public_root)])

    assert code == 1
    assert _json_out(capsys)["error"]["code"] == "MISSING_ARGUMENT"


def test_gate_no_go_exit_code(resorts_root: Path, app_public_root: Path, seed_version, capsys) -> None:
    seed_version()

    code = main(["release-dry-run", "--json", *_roots(resorts_root, app_public_root)])

    assert code == 3
    payload = _json_out(capsys)
    assert payload["overallOk"] is False
    assert payload["goNoGo"]["resorts"][0]["issues"] == ["resort is not published"]


def test_validate_layer_and_list(resorts_root: Path, app_public_root: Path, seed_version, capsys) -> None:
    version_dir = seed_version(validated=False)

    for layer in ("boundary", "runs", "lifts"):
        args = ["resort-validate-layer", "--resort-key", RESORT_KEY, "--layer", layer, "--by", "lead"]
        assert main([*args, *_roots(resorts_root, app_public_root)]) == 0
    assert "overall: validated" in capsys.readouterr().out.splitlines()[-1]
    status = json.loads((version_dir / "status.json").read_text(encoding="utf-8"))
    assert status["manualValidation"]["validatedBy"] == "lead"

    assert main(["resort-list", "--json", *_roots(resorts_root, app_public_root)]) == 0
    [summary] = _json_out(capsys)["resorts"]
    assert summary["resortKey"] == RESORT_KEY
    assert summary["manuallyValidated"] is True


def test_canonicalize_runs_before_resort_commands(resorts_root: Path, app_public_root: Path, seed_version, capsys) -> None:
    seed_version(resort_key="ca_golden_kicking_horse")

    assert main(["resort-list", *_roots(resorts_root, app_public_root)]) == 0

    assert (resorts_root / RESORT_KEY / "v1").is_dir()
    assert RESORT_KEY in capsys.readouterr().out


def test_audit_text_output(resorts_root: Path, app_public_root: Path, seed_version, capsys) -> None:
    seed_version()
    assert main(["resort-publish-latest", "--resort-key", RESORT_KEY, *_roots(resorts_root, app_public_root)]) == 0
    capsys.readouterr()

    (app_public_root / "packs" / RESORT_KEY / "base.pmtiles").unlink()
    code = main(["release-audit", *_roots(resorts_root, app_public_root)])

    assert code == 3
    out = capsys.readouterr().out
    assert "Published audit: FAILED" in out
    assert "missing PMTiles file" in out
