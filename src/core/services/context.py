"""Wiring shared by every service.

One `ServiceContext` per CLI invocation: settings, the command runner (which
owns the dry-run switch) and the CLI facades built on top of it. Tests build
it around a scripted runner and a no-op `sleep`.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field

from adapters.bosh_cli import BoshCLI
from adapters.cf_cli import CloudFoundryCLI
from adapters.om_cli import OpsManagerCLI, PivnetCLI
from adapters.shell import SubprocessRunner
from core.config import AppSettings
from core.interfaces.runner import CommandRunner


@dataclass
class ServiceContext:
    settings: AppSettings
    runner: CommandRunner
    sleep: Callable[[float], None] = time.sleep
    cf: CloudFoundryCLI = field(init=False)
    bosh: BoshCLI = field(init=False)
    om: OpsManagerCLI = field(init=False)
    pivnet: PivnetCLI = field(init=False)

    def __post_init__(self) -> None:
        self.cf = CloudFoundryCLI(self.runner)
        self.bosh = BoshCLI(self.runner, self.settings.bosh_environment)
        self.om = OpsManagerCLI(self.runner, self.settings.om_target)
        self.pivnet = PivnetCLI(self.runner)

    @property
    def dry_run(self) -> bool:
        return self.runner.dry_run

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "ServiceContext":
        runner = SubprocessRunner(dry_run=settings.dry_run, env=settings.subprocess_env())
        return cls(settings=settings, runner=runner)
