"""Subprocess wrapper.

Why a wrapper:
- Standardizes how every external CLI is invoked (argv only, never a shell;
  captured text output; a shared environment carrying the configured
  credentials).
- Enforces dry-run in one place: mutating commands are logged and skipped.
"""

from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
from collections.abc import Mapping, Sequence
from pathlib import Path

from core.errors import MissingToolError
from core.interfaces.runner import CommandResult, CommandRunner

logger = logging.getLogger(__name__)


def redact(args: Sequence[str], secrets: Sequence[str] = ()) -> str:
    """Render a command line for logs with secret values masked."""

    rendered = shlex.join(args)
    for secret in secrets:
        if secret:
            rendered = rendered.replace(secret, "***")
    return rendered


class SubprocessRunner(CommandRunner):
    """Runs commands with `subprocess.run` and returns a `CommandResult`."""

    def __init__(self, *, dry_run: bool = False, env: Mapping[str, str] | None = None) -> None:
        self.dry_run = dry_run
        self._env = dict(env) if env is not None else None

    def run(
        self,
        args: Sequence[str],
        *,
        mutating: bool = False,
        cwd: Path | None = None,
        secrets: Sequence[str] = (),
    ) -> CommandResult:
        argv = tuple(str(a) for a in args)
        shown = redact(argv, secrets)

        if mutating and self.dry_run:
            logger.warning("DRY RUN: would run: %s", shown)
            return CommandResult(args=argv, skipped=True)

        logger.debug("$ %s", shown)
        try:
            proc = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                cwd=str(cwd) if cwd else None,
                env=self._env,
                check=False,
            )
        except FileNotFoundError as exc:
            raise MissingToolError(argv[0]) from exc

        if proc.returncode != 0:
            logger.debug("exit %s: %s", proc.returncode, (proc.stderr or proc.stdout).strip()[-500:])
        return CommandResult(
            args=argv,
            returncode=proc.returncode,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
        )

    def which(self, name: str) -> str | None:
        path = None
        if self._env is not None:
            path = self._env.get("PATH")
        return shutil.which(name, path=path)


def require_tools(runner: CommandRunner, *names: str) -> None:
    """Fail fast when a required binary is not installed."""

    for name in names:
        if runner.which(name) is None:
            raise MissingToolError(name)
