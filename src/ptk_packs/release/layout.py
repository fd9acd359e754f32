from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


RESORTS_ROOT_ENV = "PTK_RESORTS_ROOT"
DEFAULT_RESORTS_ROOT = Path("resorts")

APP_PUBLIC_ROOT_ENV = "PTK_APP_PUBLIC_ROOT"
DEFAULT_APP_PUBLIC_ROOT = Path("public")

WORKSPACE_FILENAME = "resort.json"
STATUS_FILENAME = "status.json"
BASEMAP_DIRNAME = "basemap"
PMTILES_FILENAME = "base.pmtiles"
STYLE_FILENAME = "style.json"
LOCKS_DIRNAME = ".locks"

MANIFEST_URL = "/releases/stable-manifest.json"


def resolve_resorts_root(explicit: str | os.PathLike[str] | None = None) -> Path:
    """Resolve the resorts root directory.

    Conventions:
    - an explicit argument wins
    - otherwise `PTK_RESORTS_ROOT`
    - otherwise the repo-relative `resorts/` folder

    Versions are written under: <root>/<ResortKey>/v<N>/
    """

    if explicit is not None:
        return Path(explicit)

    env_value = os.environ.get(RESORTS_ROOT_ENV)
    if env_value:
        return Path(env_value)

    return DEFAULT_RESORTS_ROOT


def resolve_app_public_root(explicit: str | os.PathLike[str] | None = None) -> Path:
    """Resolve the application public root (what the map app serves)."""

    if explicit is not None:
        return Path(explicit)

    env_value = os.environ.get(APP_PUBLIC_ROOT_ENV)
    if env_value:
        return Path(env_value)

    return DEFAULT_APP_PUBLIC_ROOT


def version_name(version_number: int) -> str:
    return f"v{version_number}"


@dataclass(frozen=True)
class VersionLayout:
    """Filesystem layout for one immutable resort version."""

    resorts_root: Path
    resort_key: str
    version_number: int

    @property
    def version(self) -> str:
        return version_name(self.version_number)

    @property
    def resort_path(self) -> Path:
        return self.resorts_root / self.resort_key

    @property
    def version_path(self) -> Path:
        return self.resort_path / self.version

    @property
    def workspace_path(self) -> Path:
        return self.version_path / WORKSPACE_FILENAME

    @property
    def status_path(self) -> Path:
        return self.version_path / STATUS_FILENAME

    @property
    def basemap_dir(self) -> Path:
        return self.version_path / BASEMAP_DIRNAME

    @property
    def pmtiles_path(self) -> Path:
        return self.basemap_dir / PMTILES_FILENAME

    @property
    def style_path(self) -> Path:
        return self.basemap_dir / STYLE_FILENAME


@dataclass(frozen=True)
class PublicLayout:
    """Filesystem layout for the published application assets."""

    app_public_root: Path

    @property
    def packs_dir(self) -> Path:
        return self.app_public_root / "packs"

    @property
    def catalog_path(self) -> Path:
        return self.app_public_root / "resort-packs" / "index.json"

    @property
    def manifest_path(self) -> Path:
        return self.app_public_root / "releases" / "stable-manifest.json"

    @property
    def lock_path(self) -> Path:
        # Beside the public root, never inside it: everything under it is served.
        root = self.app_public_root.resolve()
        return root.parent / LOCKS_DIRNAME / f"{root.name}.release.lock"

    def pack_filename(self, resort_key: str) -> str:
        return f"{resort_key}.latest.validated.json"

    def pack_path(self, resort_key: str) -> Path:
        return self.packs_dir / self.pack_filename(resort_key)

    def pack_url(self, resort_key: str) -> str:
        return f"/packs/{self.pack_filename(resort_key)}"

    def basemap_dir(self, resort_key: str) -> Path:
        return self.packs_dir / resort_key

    def pmtiles_path(self, resort_key: str) -> Path:
        return self.basemap_dir(resort_key) / PMTILES_FILENAME

    def pmtiles_url(self, resort_key: str) -> str:
        return f"/packs/{resort_key}/{PMTILES_FILENAME}"

    def style_path(self, resort_key: str) -> Path:
        return self.basemap_dir(resort_key) / STYLE_FILENAME

    def style_url(self, resort_key: str) -> str:
        return f"/packs/{resort_key}/{STYLE_FILENAME}"

    def path_for_url(self, url: str) -> Path:
        """Map an app-absolute URL (`/packs/...`) onto the public root."""

        return self.app_public_root.joinpath(*[p for p in url.split("/") if p])


def resort_lock_path(resorts_root: Path, resort_key: str) -> Path:
    return resorts_root / LOCKS_DIRNAME / f"{resort_key}.lock"
