"""Option enums shared across the application.

Keeping them in the domain layer lets the CLI (Typer choices), the settings
and the services share a single source of truth without circular imports.
"""

from __future__ import annotations

from enum import Enum


class OutputFormat(str, Enum):
    """Output formats supported by `monitor`."""

    TEXT = "text"
    JSON = "json"
    CSV = "csv"


class DemoMode(str, Enum):
    """Presentation style for the live demo."""

    INTERACTIVE = "interactive"
    AUTOMATED = "automated"

    @property
    def pauses(self) -> bool:
        """Whether the demo waits for ENTER between phases."""

        return self is DemoMode.INTERACTIVE


class CleanupPolicy(str, Enum):
    """What the demo does with the resources it touched once it finishes."""

    ASK = "ask"
    ALWAYS = "always"
    NEVER = "never"


class CheckStatus(str, Enum):
    """Outcome of a single validation/preflight check."""

    PASS = "pass"
    FAIL = "fail"
    WARN = "warn"
    INFO = "info"
    SKIP = "skip"

    def label(self) -> str:
        """Human readable label for tables and logging."""

        return self.value.upper()


class StatePhase(str, Enum):
    """Slot of the demo state file a capture is written to."""

    BEFORE = "before"
    AFTER = "after"
