"""Core configuration.

Centralizes environment variables (pydantic-settings) so the CLI and the
adapters read credentials and tuning knobs the same way. Variable names are
the ones `cf`, `bosh` and `om` already understand (`CF_API`, `BOSH_CLIENT`,
`OM_TARGET`...), which lets us forward them untouched to child processes.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.domain.options import CleanupPolicy, DemoMode


def get_user_config_dir() -> Path:
    """Per-user configuration directory (cross-platform, no extra dependency)."""

    if sys.platform.startswith("win"):
        base = Path(os.environ.get("APPDATA", str(Path.home())))
        return base / "isoseg"
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "isoseg"

    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "isoseg"
    return Path.home() / ".config" / "isoseg"


def get_user_env_file() -> Path:
    return get_user_config_dir() / ".env"


def _parse_env_lines(text: str) -> dict[str, str]:
    data: dict[str, str] = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key:
            data[key] = value
    return data


def write_user_env_vars(values: dict[str, str | None], env_path: Path | None = None) -> Path:
    """Write/update variables in the user's global .env file.

    Empty values are skipped so re-running the setup never wipes a stored
    secret the user chose not to retype.
    """

    env_path = env_path or get_user_env_file()
    env_path.parent.mkdir(parents=True, exist_ok=True)

    existing: dict[str, str] = {}
    if env_path.exists():
        existing = _parse_env_lines(env_path.read_text(encoding="utf-8"))

    existing.update({k: v for k, v in values.items() if v})

    lines = ["# isoseg user config (.env)"]
    for key in sorted(existing.keys()):
        lines.append(f"{key}={existing[key]}")
    env_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    try:
        env_path.chmod(0o600)
    except OSError:
        # Some filesystems (e.g. mounted Windows drives) reject chmod.
        pass
    return env_path


# Settings forwarded verbatim to cf/bosh/om child processes.
_FORWARDED_ENV = (
    "CF_API",
    "CF_USERNAME",
    "CF_PASSWORD",
    "BOSH_ENVIRONMENT",
    "BOSH_CLIENT",
    "BOSH_CLIENT_SECRET",
    "BOSH_CA_CERT",
    "OM_TARGET",
    "OM_USERNAME",
    "OM_PASSWORD",
)


class AppSettings(BaseSettings):
    """Central application settings.

    No env prefix: operators already export bare names such as
    `BATCH_SIZE` and `MIGRATION_DELAY`.
    """

    model_config = SettingsConfigDict(
        env_prefix="",
        extra="ignore",
        case_sensitive=False,
        # Order: project first (dev), then the user's global config.
        env_file=(".env", str(get_user_env_file())),
        env_file_encoding="utf-8",
    )

    cf_api: str | None = Field(default=None, description="Cloud Foundry API endpoint.")
    cf_username: str | None = Field(default=None, description="Cloud Foundry username.")
    cf_password: str | None = Field(default=None, description="Cloud Foundry password.")

    bosh_environment: str | None = Field(default=None, description="BOSH Director environment (URL or alias).")
    bosh_client: str | None = Field(default=None, description="BOSH client ID.")
    bosh_client_secret: str | None = Field(default=None, description="BOSH client secret.")
    bosh_ca_cert: str | None = Field(default=None, description="BOSH CA certificate (path or PEM).")

    om_target: str | None = Field(default=None, description="Ops Manager URL.")
    om_username: str | None = Field(default=None, description="Ops Manager username.")
    om_password: str | None = Field(default=None, description="Ops Manager password.")
    om_skip_ssl_validation: bool = Field(default=False, description="Skip Ops Manager TLS validation.")

    pivnet_token: str | None = Field(default=None, description="Pivotal Network / Broadcom API token.")

    batch_size: int = Field(
        default=10,
        ge=1,
        description="Number of apps per migration batch (progress reporting unit).",
    )
    migration_delay: float = Field(
        default=30.0,
        ge=0,
        description="Seconds to wait between app restarts.",
    )

    dry_run: bool = Field(default=False, description="Show what would be done without executing.")
    verbose: bool = Field(default=False, description="Enable debug output.")
    log_file: Path | None = Field(
        default=Path("/tmp/isolation-segment-migration.log"),
        description="Log file path (append mode).",
    )
    manifest_dir: Path = Field(
        default=Path("/tmp"),
        description="Directory for generated BOSH manifests.",
    )
    http_timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        description="Timeout for direct HTTP probes (seconds).",
    )

    def subprocess_env(self, base: dict[str, str] | None = None) -> dict[str, str]:
        """Environment for child processes: the current env plus configured credentials."""

        env = dict(os.environ if base is None else base)
        for name in _FORWARDED_ENV:
            value = getattr(self, name.lower())
            if value:
                env[name] = str(value)
        if self.om_skip_ssl_validation:
            env["OM_SKIP_SSL_VALIDATION"] = "true"
        return env


class DemoSettings(BaseSettings):
    """Settings for the live migration demo (`DEMO_*` variables)."""

    model_config = SettingsConfigDict(
        env_prefix="DEMO_",
        extra="ignore",
        case_sensitive=False,
        env_file=(".env", str(get_user_env_file())),
        env_file_encoding="utf-8",
    )

    mode: DemoMode = Field(default=DemoMode.INTERACTIVE)
    segment: str = Field(default="shared-demo", min_length=1)
    org: str = Field(default="shared-isoseg-demo", min_length=1)
    space: str = Field(default="dev", min_length=1)
    app_name: str = Field(default="spring-music", min_length=1)
    cleanup: CleanupPolicy = Field(default=CleanupPolicy.ASK)
    skip_bosh: bool = Field(default=False)
    deployment: str | None = Field(
        default=None,
        description="BOSH deployment holding the segment's Diego cells (defaults to the segment name).",
    )
    state_dir: Path = Field(default=Path("/tmp"))
    restage: bool = Field(default=False, description="Restage instead of restart when moving the app.")

    @property
    def segment_deployment(self) -> str:
        return self.deployment or self.segment
