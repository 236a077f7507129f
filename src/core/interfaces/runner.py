"""External command execution contract.

Why a Protocol:
- Services only need "run this argv, tell me what happened"; the subprocess
  details (env, dry-run, redaction) live in `adapters.shell`.
- Tests replace the runner with a scripted fake and never touch a real `cf`.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one external command."""

    args: tuple[str, ...]
    returncode: int = 0
    stdout: str = ""
    stderr: str = ""
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@runtime_checkable
class CommandRunner(Protocol):
    """Minimal contract for running CLIs.

    Rules:
    - `mutating=True` marks commands that change the platform; in dry-run
      mode they are reported and skipped, never executed.
    - `secrets` are replaced by `***` wherever the command line is logged.
    """

    dry_run: bool

    def run(
        self,
        args: Sequence[str],
        *,
        mutating: bool = False,
        cwd: Path | None = None,
        secrets: Sequence[str] = (),
    ) -> CommandResult:
        ...

    def which(self, name: str) -> str | None:
        ...
