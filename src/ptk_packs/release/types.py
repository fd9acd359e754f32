from __future__ import annotations

from enum import Enum


class LayerName(str, Enum):
    """Resort data layers.

    Only the required layers gate readiness and manual validation; optional
    layers ride along in exports when present.
    """

    BOUNDARY = "boundary"
    RUNS = "runs"
    LIFTS = "lifts"
    AREAS = "areas"
    PEAKS = "peaks"
    CONTOURS = "contours"


REQUIRED_LAYERS: tuple[LayerName, ...] = (LayerName.BOUNDARY, LayerName.RUNS, LayerName.LIFTS)
OPTIONAL_LAYERS: tuple[LayerName, ...] = (LayerName.AREAS, LayerName.PEAKS, LayerName.CONTOURS)

# Order used by the export bundle `layers` block.
EXPORT_LAYER_ORDER: tuple[LayerName, ...] = (
    LayerName.BOUNDARY,
    LayerName.AREAS,
    LayerName.CONTOURS,
    LayerName.PEAKS,
    LayerName.RUNS,
    LayerName.LIFTS,
)


class LayerStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"


class ReadinessOverall(str, Enum):
    READY = "ready"
    INCOMPLETE = "incomplete"


class ArtifactKind(str, Enum):
    PACK = "pack"
    PMTILES = "pmtiles"
    STYLE = "style"


def parse_layer(value: str | LayerName) -> LayerName:
    """Accept `LayerName` members or their string values; ValueError otherwise."""

    if isinstance(value, LayerName):
        return value
    return LayerName(value.strip().lower())
