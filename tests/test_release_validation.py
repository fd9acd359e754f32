from __future__ import annotations

import pytest

from ptk_packs.release.readiness import compute_readiness
from ptk_packs.release.types import LayerName
from ptk_packs.release.validation import (
    ManualValidationState,
    set_layer_manual_validation,
    sync_status_from_workspace,
    to_manual_validation_state,
    validated_and_ready,
)

TS = "2026-02-02T09:00:00.000Z"


def _validate_all(state: object) -> ManualValidationState:
    for layer in ("boundary", "runs", "lifts"):
        state = set_layer_manual_validation(state, layer, True, TS, "lead", None)
    return state  # type: ignore[return-value]


def test_missing_block_normalizes_to_all_false() -> None:
    state = to_manual_validation_state(None)

    assert state.validated is False
    assert set(state.layers) == {LayerName.BOUNDARY, LayerName.RUNS, LayerName.LIFTS}
    assert not any(v.validated for v in state.layers.values())


def test_explicit_overall_flag_is_kept() -> None:
    state = to_manual_validation_state({"validated": True, "layers": {}})

    assert state.validated is True


def test_overall_derived_from_required_layers_when_absent() -> None:
    raw = {"layers": {name: {"validated": True} for name in ("boundary", "runs", "lifts")}}

    assert to_manual_validation_state(raw).validated is True


def test_overall_requires_every_required_layer() -> None:
    state = set_layer_manual_validation(None, "boundary", True, TS, "lead", None)
    state = set_layer_manual_validation(state, "runs", True, TS, "lead", None)
    assert state.validated is False
    assert state.validated_at is None

    state = set_layer_manual_validation(state, "lifts", True, TS, "lead", "looks good")
    assert state.validated is True
    assert state.validated_by == "lead"
    assert state.notes == "looks good"


def test_set_layer_validation_is_idempotent() -> None:
    state = _validate_all(None)

    again = set_layer_manual_validation(state, "lifts", True, TS, "lead", None)

    assert again.to_json() == state.to_json()


def test_clearing_required_layer_clears_overall() -> None:
    state = set_layer_manual_validation(_validate_all(None), "runs", False, None, None, None)

    assert state.validated is False
    assert state.validated_at is None
    assert state.layer("boundary").validated is True


@pytest.mark.parametrize("validated", [True, False])
def test_optional_layer_never_moves_overall(validated: bool) -> None:
    base = _validate_all(None)
    toggled = set_layer_manual_validation(base, "peaks", validated, TS, "lead", None)
    assert toggled.validated is True
    assert toggled.layer("peaks").validated is validated

    unvalidated = set_layer_manual_validation(None, "contours", True, TS, "lead", None)
    assert unvalidated.validated is False


def test_sync_status_installs_readiness_and_keeps_validation() -> None:
    workspace = {
        "layers": {
            "boundary": {"status": "complete", "featureCount": 1},
            "runs": {"status": "pending"},
            "lifts": {"status": "running"},
            "peaks": {"status": "complete", "featureCount": 4},
        }
    }
    existing = {"resortKey": "CA_Golden_Kicking_Horse", "manualValidation": _validate_all(None).to_json()}

    status = sync_status_from_workspace(existing, workspace, {"overall": "incomplete", "issues": ["x"]})

    assert status["readiness"] == {"overall": "incomplete", "issues": ["x"]}
    assert set(status["layers"]) == {"boundary", "runs", "lifts", "peaks"}
    assert status["layers"]["runs"]["status"] == "pending"
    assert status["manualValidation"]["validated"] is True
    assert status["resortKey"] == "CA_Golden_Kicking_Horse"
    assert validated_and_ready(status) is False


def _complete(count: int) -> dict[str, object]:
    return {
        "status": "complete",
        "artifactPath": "x.geojson",
        "checksumSha256": "a" * 64,
        "featureCount": count,
        "updatedAt": TS,
    }


def test_compute_readiness_ready_and_incomplete() -> None:
    workspace = {"layers": {"boundary": _complete(1), "runs": _complete(5), "lifts": _complete(2)}}
    assert compute_readiness(workspace) == {"overall": "ready", "issues": []}

    workspace["layers"]["boundary"] = _complete(2)
    workspace["layers"]["lifts"] = {"status": "failed", "error": "timeout"}
    readiness = compute_readiness(workspace)

    assert readiness["overall"] == "incomplete"
    assert "boundary: boundary featureCount must be exactly 1" in readiness["issues"]
    assert "lifts: error is set: timeout" in readiness["issues"]
    assert all(issue.split(": ")[0] in {"boundary", "lifts"} for issue in readiness["issues"])
