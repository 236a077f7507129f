"""Replicator binary discovery and invocation.

The Replicator (shipped with the Isolation Segment tile release) clones the
base tile under a new product name, one per additional segment.
"""

from __future__ import annotations

import os
import platform
from pathlib import Path

from core.errors import PreconditionError
from core.interfaces.runner import CommandRunner

_DEFAULT_LOCATIONS = (Path("./replicator"), Path("/tmp/replicator"))


def detect_platform(system: str | None = None) -> str:
    """Replicator platform suffix for the running OS."""

    name = (system or platform.system()).lower()
    if name == "darwin":
        return "darwin"
    if name == "linux":
        return "linux"
    if name == "windows" or name.startswith(("mingw", "msys", "cygwin")):
        return "windows"
    raise PreconditionError(f"Unsupported platform: {system or platform.system()}")


def binary_name(platform_name: str) -> str:
    """File name of the platform binary inside the Replicator ZIP."""

    return "replicator-windows.exe" if platform_name == "windows" else f"replicator-{platform_name}"


def installed_name(platform_name: str) -> str:
    return "replicator.exe" if platform_name == "windows" else "replicator"


def _is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


def locate_replicator(runner: CommandRunner, explicit: Path | None = None) -> Path:
    """Find the replicator: explicit path, ./replicator, /tmp/replicator, then PATH."""

    if explicit is not None:
        if not _is_executable(explicit):
            raise PreconditionError(f"Replicator not executable: {explicit}")
        return explicit

    for candidate in _DEFAULT_LOCATIONS:
        if _is_executable(candidate):
            return candidate

    found = runner.which("replicator")
    if found:
        return Path(found)

    raise PreconditionError("Replicator not found. Download it first: isoseg download-replicator --version VERSION")


def run_replicator(runner: CommandRunner, replicator: Path, *, name: str, source: Path, output: Path) -> bool:
    return runner.run(
        (str(replicator), "-name", name, "-path", str(source), "-output", str(output)),
        mutating=True,
    ).ok
