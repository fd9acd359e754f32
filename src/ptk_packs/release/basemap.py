from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from .determinism import is_regular_file
from .errors import PreconditionError
from .layout import PublicLayout, VersionLayout


# Three-byte stub the tooling writes when no real tiles exist yet.
PLACEHOLDER_PMTILES_BYTES = b"PTK"

_NETWORK_URL = re.compile(r"^https?://", re.IGNORECASE)


@dataclass(frozen=True)
class InspectionResult:
    ok: bool
    issues: tuple[str, ...] = ()


def _result(issues: list[str]) -> InspectionResult:
    return InspectionResult(ok=not issues, issues=tuple(issues))


def inspect_pmtiles_archive(path: Path) -> InspectionResult:
    if not path.exists():
        return _result(["file not found"])
    if not path.is_file():
        return _result(["not a regular file"])

    size = path.stat().st_size
    if size <= 0:
        return _result(["file is empty"])
    if size == len(PLACEHOLDER_PMTILES_BYTES) and path.read_bytes() == PLACEHOLDER_PMTILES_BYTES:
        return _result(["file is placeholder content"])
    return _result([])


def inspect_style_document(style: object) -> InspectionResult:
    """Check an already-parsed style: vector source present, nothing on the network."""

    if not isinstance(style, Mapping):
        return _result(["not a JSON object"])
    sources = style.get("sources")
    if not isinstance(sources, Mapping):
        return _result(["no sources"])

    issues: list[str] = []
    has_vector_source = False
    for name, source in sources.items():
        if not isinstance(source, Mapping):
            continue
        url = source.get("url")
        tiles = source.get("tiles")
        if source.get("type") == "vector":
            has_vector_source = True
        if isinstance(url, str) and _NETWORK_URL.match(url.strip()):
            issues.append(f"source '{name}' points to network URL")
        if isinstance(tiles, list) and any(
            isinstance(entry, str) and _NETWORK_URL.match(entry.strip()) for entry in tiles
        ):
            issues.append(f"source '{name}' points to network tile URLs")

    if not has_vector_source:
        issues.append("no vector source for local PMTiles")
    return _result(issues)


def inspect_offline_style(path: Path) -> InspectionResult:
    if not path.exists():
        return _result(["file not found"])
    try:
        style: Any = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        return _result([f"unparsable JSON: {exc}"])
    return inspect_style_document(style)


def assert_regular_file(path: Path, label: str, *, code: str = "BASEMAP_MISSING") -> None:
    if not is_regular_file(path):
        raise PreconditionError(f"{label}: {path}", code=code, details={"path": str(path)})


def assert_offline_ready_basemap(pmtiles_path: Path, style_path: Path) -> None:
    """Publishing a placeholder or network-backed basemap is a hard failure."""

    assert_regular_file(pmtiles_path, "Missing basemap PMTiles")
    assert_regular_file(style_path, "Missing basemap style")

    issues = [
        *(f"basemap PMTiles: {issue} ({pmtiles_path})" for issue in inspect_pmtiles_archive(pmtiles_path).issues),
        *(f"basemap style: {issue} ({style_path})" for issue in inspect_offline_style(style_path).issues),
    ]
    if issues:
        raise PreconditionError(
            "Basemap assets are not offline-ready: " + "; ".join(issues),
            code="BASEMAP_NOT_OFFLINE_READY",
            details={"issues": issues},
        )


@dataclass(frozen=True)
class OfflineBasemapMetrics:
    generated_pmtiles: bool
    generated_style: bool
    published_pmtiles: bool
    published_style: bool

    @property
    def generated(self) -> bool:
        return self.generated_pmtiles and self.generated_style

    @property
    def published(self) -> bool:
        return self.published_pmtiles and self.published_style

    def to_json(self) -> dict[str, bool]:
        return {
            "generated": self.generated,
            "published": self.published,
            "generatedPmtiles": self.generated_pmtiles,
            "generatedStyle": self.generated_style,
            "publishedPmtiles": self.published_pmtiles,
            "publishedStyle": self.published_style,
        }


def read_offline_basemap_metrics(version: VersionLayout, public: PublicLayout) -> OfflineBasemapMetrics:
    return OfflineBasemapMetrics(
        generated_pmtiles=is_regular_file(version.pmtiles_path),
        generated_style=is_regular_file(version.style_path),
        published_pmtiles=is_regular_file(public.pmtiles_path(version.resort_key)),
        published_style=is_regular_file(public.style_path(version.resort_key)),
    )
