"""Locating on-disk resources (tile config templates, downloaded artifacts).

This module lives in `core/` because it centralizes *where* things are
expected without coupling the CLI or adapters to path conventions.

The repository ships `config/isolation-segment/` (om product template,
default vars, feature ops files, per-size vars files). Tiles and the
Replicator are downloaded by the user; we only search for them.
"""

from __future__ import annotations

import os
import re
import sys
from pathlib import Path

from core.config import get_user_config_dir

TILE_GLOB = "p-isolation-segment-*.pivotal"
_TILE_VERSION_RE = re.compile(r"p-isolation-segment-(\d+\.\d+\.\d+)")


def _project_root() -> Path:
    # core/resources_loader.py -> core -> src -> <project_root>
    return Path(__file__).resolve().parents[2]


def default_config_dir() -> Path:
    """Directory holding the om configuration templates.

    Rules:
    - If ISOSEG_CONFIG_DIR is set, it is used as-is.
    - In "frozen" mode (PyInstaller), use the user's config directory.
    - Otherwise, <project_root>/config/isolation-segment.
    """

    override = (os.environ.get("ISOSEG_CONFIG_DIR") or "").strip()
    if override:
        return Path(override)

    if getattr(sys, "frozen", False):
        return get_user_config_dir() / "config" / "isolation-segment"

    return _project_root() / "config" / "isolation-segment"


def default_download_dir() -> Path:
    return Path.home() / "Downloads"


def _version_key(path: Path) -> tuple[int, ...]:
    version = tile_version_from_name(path.name)
    return tuple(int(part) for part in version.split(".")) if version else ()


def find_downloaded_tile(directory: Path, version: str | None = None) -> Path | None:
    """Newest `p-isolation-segment-<version>*.pivotal` in `directory` (any version when None)."""

    if not directory.is_dir():
        return None
    pattern = f"p-isolation-segment-{version}*.pivotal" if version else TILE_GLOB
    matches = sorted((p for p in directory.glob(pattern) if p.is_file()), key=lambda p: (_version_key(p), p.name))
    return matches[-1] if matches else None


def tile_version_from_name(filename: str) -> str | None:
    """`p-isolation-segment-10.2.5+LTS-T.pivotal` -> `10.2.5`."""

    match = _TILE_VERSION_RE.search(filename)
    return match.group(1) if match else None


def replicator_candidates(download_dir: Path | None = None) -> list[Path]:
    """Places a previously downloaded Replicator usually ends up in."""

    return [
        (download_dir or default_download_dir()) / "replicator",
        Path("./replicator"),
        Path("/tmp/replicator"),
    ]
