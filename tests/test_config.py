from __future__ import annotations

from pathlib import Path

from core.config import AppSettings, DemoSettings, write_user_env_vars
from core.domain.options import CleanupPolicy, DemoMode


def test_write_user_env_vars_merges_and_keeps_blank_secrets(tmp_path: Path):
    env_path = tmp_path / "isoseg" / ".env"
    write_user_env_vars({"OM_TARGET": "https://opsman", "OM_PASSWORD": "s3cret"}, env_path)
    write_user_env_vars({"OM_TARGET": "https://opsman-2", "OM_PASSWORD": ""}, env_path)

    lines = env_path.read_text(encoding="utf-8").splitlines()
    assert lines[0].startswith("#")
    assert "OM_TARGET=https://opsman-2" in lines
    assert "OM_PASSWORD=s3cret" in lines
    assert env_path.stat().st_mode & 0o777 == 0o600


def test_settings_read_bare_environment_names(monkeypatch):
    monkeypatch.setenv("BATCH_SIZE", "5")
    monkeypatch.setenv("MIGRATION_DELAY", "2.5")
    monkeypatch.setenv("CF_API", "https://api.example.com")
    settings = AppSettings(_env_file=None)
    assert settings.batch_size == 5
    assert settings.migration_delay == 2.5
    assert settings.cf_api == "https://api.example.com"


def test_subprocess_env_forwards_credentials():
    settings = AppSettings(
        _env_file=None,
        om_target="https://opsman",
        om_password="pw",
        om_skip_ssl_validation=True,
        bosh_client=None,
    )
    env = settings.subprocess_env(base={"PATH": "/usr/bin"})
    assert env["PATH"] == "/usr/bin"
    assert env["OM_TARGET"] == "https://opsman"
    assert env["OM_PASSWORD"] == "pw"
    assert env["OM_SKIP_SSL_VALIDATION"] == "true"
    assert "BOSH_CLIENT" not in env


def test_demo_settings_defaults_and_prefix(monkeypatch):
    monkeypatch.setenv("DEMO_MODE", "automated")
    monkeypatch.setenv("DEMO_CLEANUP", "never")
    monkeypatch.delenv("DEMO_DEPLOYMENT", raising=False)
    monkeypatch.delenv("DEMO_SEGMENT", raising=False)
    settings = DemoSettings(_env_file=None)
    assert settings.mode is DemoMode.AUTOMATED
    assert not settings.mode.pauses
    assert settings.cleanup is CleanupPolicy.NEVER
    assert settings.segment_deployment == settings.segment
