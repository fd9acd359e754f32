from __future__ import annotations

from typing import Any, Callable, Mapping

from .types import REQUIRED_LAYERS, LayerName, LayerStatus, ReadinessOverall


ReadinessFn = Callable[[Mapping[str, Any]], dict[str, Any]]


def _layer_issues(layer: LayerName, state: Mapping[str, Any] | None) -> list[str]:
    if not isinstance(state, Mapping):
        return ["layer is missing from workspace"]

    issues: list[str] = []
    status = state.get("status")
    if status != LayerStatus.COMPLETE.value:
        issues.append(f"status is '{status}', expected 'complete'")
    if not state.get("artifactPath"):
        issues.append("artifactPath is missing")
    if not state.get("checksumSha256"):
        issues.append("checksumSha256 is missing")

    feature_count = state.get("featureCount")
    if feature_count is None:
        issues.append("featureCount is missing")
    elif feature_count < 1:
        issues.append("featureCount must be >= 1")

    if not state.get("updatedAt"):
        issues.append("updatedAt is missing")
    if state.get("error"):
        issues.append(f"error is set: {state['error']}")

    if layer is LayerName.BOUNDARY and feature_count is not None and feature_count != 1:
        issues.append("boundary featureCount must be exactly 1")
    return issues


def compute_readiness(workspace: Mapping[str, Any]) -> dict[str, Any]:
    """Default readiness collaborator: `{overall, issues}` for a workspace.

    Only the required layers are inspected. Issues are prefixed with the
    layer name so a status reader can tell them apart.
    """

    layers = workspace.get("layers") or {}
    issues: list[str] = []
    for layer in REQUIRED_LAYERS:
        issues.extend(f"{layer.value}: {issue}" for issue in _layer_issues(layer, layers.get(layer.value)))

    overall = ReadinessOverall.READY if not issues else ReadinessOverall.INCOMPLETE
    return {"overall": overall.value, "issues": issues}
