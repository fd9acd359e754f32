from __future__ import annotations

import json
import os
import re
from pathlib import Path


APP_VERSION_ENV = "PTK_APP_VERSION"
FALLBACK_APP_VERSION = "0.0.1"

_SEMVER = re.compile(r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)$")


def is_semver(value: object) -> bool:
    """Strict three-part MAJOR.MINOR.PATCH, no pre-release or build suffix."""

    return isinstance(value, str) and _SEMVER.match(value.strip()) is not None


def parse_semver(value: str) -> tuple[int, int, int]:
    match = _SEMVER.match(value.strip())
    if not match:
        raise ValueError(f"not a semantic version: {value!r}")
    major, minor, patch = (int(g) for g in match.groups())
    return major, minor, patch


def resolve_app_version(app_public_root: Path, explicit: str | None = None) -> str:
    """Version of the map application the published packs target.

    Resolution order: explicit argument, `PTK_APP_VERSION`, then the
    `version` of the app's package.json next to the public root. Anything
    unreadable or not strict semver falls back to 0.0.1.
    """

    for candidate in (explicit, os.environ.get(APP_VERSION_ENV)):
        if is_semver(candidate):
            return candidate.strip()  # type: ignore[union-attr]

    package_json = app_public_root.resolve().parent / "package.json"
    try:
        version = json.loads(package_json.read_text(encoding="utf-8")).get("version")
    except (OSError, ValueError, AttributeError):
        return FALLBACK_APP_VERSION
    return version.strip() if is_semver(version) else FALLBACK_APP_VERSION
