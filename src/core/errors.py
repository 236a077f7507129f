"""Error taxonomy.

Every failure the tool can report maps to one of these. Services raise them;
the CLI turns them into a red message and exit status 1.
"""

from __future__ import annotations

from collections.abc import Sequence


class IsoSegError(Exception):
    """Base class for expected, user-facing failures."""


class MissingToolError(IsoSegError):
    """A required external binary is not on PATH."""

    def __init__(self, tool: str) -> None:
        super().__init__(f"Required command '{tool}' not found. Please install it and try again.")
        self.tool = tool


class PreconditionError(IsoSegError):
    """Something that must hold before acting does not (missing object, bad connection, missing file)."""


class CommandFailedError(IsoSegError):
    """A mutating external command exited non-zero."""

    def __init__(self, message: str, *, args: Sequence[str] = (), returncode: int | None = None, stderr: str = "") -> None:
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else ""
        super().__init__(f"{message}: {detail}" if detail else message)
        self.command = list(args)
        self.returncode = returncode
        self.stderr = stderr
