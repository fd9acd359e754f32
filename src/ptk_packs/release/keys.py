from __future__ import annotations

import logging
import re
import unicodedata
from pathlib import Path

LOGGER = logging.getLogger(__name__)


def _normalize_segment(value: str) -> str:
    folded = unicodedata.normalize("NFD", value)
    folded = "".join(c for c in folded if not unicodedata.combining(c))
    ascii_value = re.sub(r"[^A-Za-z0-9]+", "_", folded).strip("_")
    if not ascii_value:
        return "Unknown"
    return "_".join(part[:1].upper() + part[1:].lower() for part in ascii_value.split("_") if part)


def build_resort_key(country_code: str, town: str, resort_name: str) -> str:
    """Build `COUNTRY_Town_Resort_Name` from free-form search inputs."""

    country = _normalize_segment(country_code).upper()
    return f"{country}_{_normalize_segment(town)}_{_normalize_segment(resort_name)}"


def to_canonical_resort_key(resort_key: str) -> str:
    """Uppercase the country segment and title-case the rest. Idempotent."""

    parts = [part for part in resort_key.split("_") if part]
    if not parts:
        return resort_key
    country = parts[0].upper()
    rest = [part[:1].upper() + part[1:].lower() for part in parts[1:]]
    return "_".join([country, *rest])


def canonicalize_resort_keys(resorts_root: Path) -> list[tuple[str, str]]:
    """Rename non-canonical resort directories in place.

    Returns the (old, new) pairs actually renamed. A rename whose target
    already exists is skipped and logged; the two directories need a human.
    """

    if not resorts_root.is_dir():
        return []

    renamed: list[tuple[str, str]] = []
    for entry in sorted(resorts_root.iterdir(), key=lambda p: p.name):
        if not entry.is_dir() or entry.name.startswith("."):
            continue
        canonical = to_canonical_resort_key(entry.name)
        if canonical == entry.name:
            continue
        target = resorts_root / canonical
        if target.exists():
            LOGGER.warning("Cannot rename %s -> %s: target already exists", entry.name, canonical)
            continue
        entry.rename(target)
        LOGGER.info("Renamed resort key: %s -> %s", entry.name, canonical)
        renamed.append((entry.name, canonical))
    return renamed


def canonicalize_resort_dir(resorts_root: Path, resort_key: str) -> Path | None:
    """Rename the one directory that canonicalizes to `resort_key`, if it is not named so yet.

    Returns the old path when a rename happened, otherwise None. Callers hold
    the resort lock.
    """

    target = resorts_root / resort_key
    if target.is_dir() or not resorts_root.is_dir():
        return None
    for entry in sorted(resorts_root.iterdir(), key=lambda p: p.name):
        if not entry.is_dir() or entry.name.startswith("."):
            continue
        if to_canonical_resort_key(entry.name) == resort_key:
            entry.rename(target)
            LOGGER.info("Renamed resort key: %s -> %s", entry.name, resort_key)
            return entry
    return None
