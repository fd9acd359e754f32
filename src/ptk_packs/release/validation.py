"""Pure state model for per-layer status, readiness and manual validation.

Nothing here touches the filesystem; callers read a document, run it through
these functions and write the result back.

Invariant kept by every function in this module: the overall manual
validation flag is the AND of the required layers (boundary, runs, lifts)
unless a raw document explicitly carries its own overall value. Optional
layers may be recorded but never gate the overall flag.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from .types import REQUIRED_LAYERS, LayerName, LayerStatus, ReadinessOverall, parse_layer


@dataclass(frozen=True)
class LayerManualValidation:
    validated: bool = False
    validated_at: str | None = None
    validated_by: str | None = None
    notes: str | None = None

    @classmethod
    def from_raw(cls, raw: object) -> "LayerManualValidation":
        if not isinstance(raw, Mapping):
            return cls()
        return cls(
            validated=raw.get("validated") is True,
            validated_at=_str_or_none(raw.get("validatedAt")),
            validated_by=_str_or_none(raw.get("validatedBy")),
            notes=_str_or_none(raw.get("notes")),
        )

    def to_json(self) -> dict[str, Any]:
        return {
            "validated": self.validated,
            "validatedAt": self.validated_at,
            "validatedBy": self.validated_by,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class ManualValidationState:
    validated: bool = False
    validated_at: str | None = None
    validated_by: str | None = None
    notes: str | None = None
    layers: Mapping[LayerName, LayerManualValidation] = field(
        default_factory=lambda: {layer: LayerManualValidation() for layer in REQUIRED_LAYERS}
    )

    def layer(self, layer: LayerName | str) -> LayerManualValidation:
        return self.layers.get(parse_layer(layer), LayerManualValidation())

    def to_json(self) -> dict[str, Any]:
        return {
            "validated": self.validated,
            "validatedAt": self.validated_at,
            "validatedBy": self.validated_by,
            "notes": self.notes,
            "layers": {layer.value: state.to_json() for layer, state in self.layers.items()},
        }


def _str_or_none(value: object) -> str | None:
    return value if isinstance(value, str) else None


def _required_layers_validated(layers: Mapping[LayerName, LayerManualValidation]) -> bool:
    return all(layers.get(layer, LayerManualValidation()).validated for layer in REQUIRED_LAYERS)


def to_manual_validation_state(raw: object) -> ManualValidationState:
    """Normalize a possibly missing or partial `manualValidation` block."""

    if isinstance(raw, ManualValidationState):
        return raw
    value: Mapping[str, Any] = raw if isinstance(raw, Mapping) else {}
    raw_layers = value.get("layers")
    raw_layers = raw_layers if isinstance(raw_layers, Mapping) else {}

    layers: dict[LayerName, LayerManualValidation] = {
        layer: LayerManualValidation.from_raw(raw_layers.get(layer.value)) for layer in REQUIRED_LAYERS
    }
    for name, layer_raw in raw_layers.items():
        try:
            layer = LayerName(name)
        except ValueError:
            continue
        if layer not in layers:
            layers[layer] = LayerManualValidation.from_raw(layer_raw)

    explicit = value.get("validated")
    return ManualValidationState(
        validated=explicit if isinstance(explicit, bool) else _required_layers_validated(layers),
        validated_at=_str_or_none(value.get("validatedAt")),
        validated_by=_str_or_none(value.get("validatedBy")),
        notes=_str_or_none(value.get("notes")),
        layers=layers,
    )


def set_layer_manual_validation(
    current: object,
    layer: LayerName | str,
    validated: bool,
    validated_at: str | None,
    validated_by: str | None,
    notes: str | None,
) -> ManualValidationState:
    """Replace one layer's validation and recompute the overall flag.

    Clearing a required layer flips the overall flag to false immediately.
    Overall attribution fields follow the layer that completed validation
    and are cleared whenever the overall flag is false.
    """

    state = to_manual_validation_state(current)
    target = parse_layer(layer)
    layers = dict(state.layers)
    layers[target] = LayerManualValidation(
        validated=validated,
        validated_at=validated_at,
        validated_by=validated_by,
        notes=notes,
    )
    overall = _required_layers_validated(layers)

    if target not in REQUIRED_LAYERS:
        # Optional layers never move the overall state in either direction.
        return ManualValidationState(
            validated=state.validated,
            validated_at=state.validated_at,
            validated_by=state.validated_by,
            notes=state.notes,
            layers=layers,
        )

    return ManualValidationState(
        validated=overall,
        validated_at=validated_at if overall else None,
        validated_by=validated_by if overall else None,
        notes=notes if overall else None,
        layers=layers,
    )


def default_readiness() -> dict[str, Any]:
    return {"overall": ReadinessOverall.INCOMPLETE.value, "issues": []}


def to_status_layer(layer_state: Mapping[str, Any] | None) -> dict[str, Any]:
    """Project one workspace layer state onto the status document shape."""

    state = layer_state or {}
    return {
        "status": state.get("status", LayerStatus.PENDING.value),
        "featureCount": state.get("featureCount"),
        "artifactPath": state.get("artifactPath"),
        "checksumSha256": state.get("checksumSha256"),
        "updatedAt": state.get("updatedAt"),
    }


def pending_status_layers() -> dict[str, Any]:
    return {layer.value: to_status_layer(None) for layer in REQUIRED_LAYERS}


def sync_status_from_workspace(
    existing_status: Mapping[str, Any],
    workspace: Mapping[str, Any],
    readiness: Mapping[str, Any],
) -> dict[str, Any]:
    """Rebuild a status document's layers and readiness from the workspace.

    `readiness` is installed as given; `manualValidation` is carried over
    (normalized, never re-derived), so a readiness sync can not validate or
    unvalidate anything.
    """

    workspace_layers = workspace.get("layers") or {}
    layers: dict[str, Any] = {
        layer.value: to_status_layer(workspace_layers.get(layer.value)) for layer in REQUIRED_LAYERS
    }
    for layer in LayerName:
        if layer not in REQUIRED_LAYERS and layer.value in workspace_layers:
            layers[layer.value] = to_status_layer(workspace_layers[layer.value])

    status = dict(existing_status)
    status["layers"] = layers
    status["readiness"] = dict(readiness)
    status["manualValidation"] = to_manual_validation_state(
        existing_status.get("manualValidation")
    ).to_json()
    return status


def validated_and_ready(status: Mapping[str, Any]) -> bool:
    readiness = status.get("readiness")
    overall = readiness.get("overall") if isinstance(readiness, Mapping) else None
    manual = status.get("manualValidation")
    validated = manual.get("validated") if isinstance(manual, Mapping) else None
    return validated is True and overall == ReadinessOverall.READY.value
