"""Doctor command for environment diagnostics."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from cli import common
from cli.ui_components import build_check_table, build_summary_panel, print_banner
from core.config import write_user_env_vars
from core.resources_loader import default_download_dir
from core.services.demo import RecordingParams
from core.services.preflight import run_preflight

app = typer.Typer(no_args_is_help=True, help="Environment diagnostics and configuration checks.")

_console = Console()


@app.command()
def run(
    ctx: typer.Context,
    org: str = typer.Option("demo-org", "--org", help="Demo organization."),
    dev_space: str = typer.Option("dev-space", "--dev-space", help="Developer space of the demo app."),
    validation_space: str = typer.Option("iso-validation", "--validation-space", help="Operator validation space."),
    app_name: str = typer.Option("spring-music", "--app", help="Pre-deployed demo app."),
    download_dir: Path = typer.Option(default_download_dir(), "--download-dir", help="Where tiles are downloaded."),
) -> None:
    """Run the pre-flight checklist and show recommended fixes."""

    settings = common.get_settings(ctx)
    params = RecordingParams(
        org=org,
        dev_space=dev_space,
        validation_space=validation_space,
        app=app_name,
        download_dir=download_dir.expanduser(),
    )
    with common.fatal_errors():
        report = run_preflight(common.build_context(settings), params)

    print_banner(_console, "isoseg doctor", "Pre-flight checklist")
    _console.print(build_check_table(report))
    _console.print(
        build_summary_panel(
            report,
            ready="Ready for recording!",
            not_ready="Please fix the failed checks before recording",
        )
    )
    if not report.ok:
        raise typer.Exit(code=1)


def _ask(label: str, current: str | None = None, *, secret: bool = False) -> str:
    if secret:
        return typer.prompt(f"{label} (blank keeps the stored value)", default="", show_default=False, hide_input=True)
    return typer.prompt(label, default=current or "", show_default=bool(current)).strip()


@app.command()
def setup(ctx: typer.Context) -> None:
    """Interactive credential setup (stored in the user config .env).

    Blank answers keep whatever is already stored, so secrets never have to
    be retyped just to change a URL.
    """

    settings = common.get_settings(ctx)

    values = {
        "OM_TARGET": _ask("Ops Manager URL", settings.om_target),
        "OM_USERNAME": _ask("Ops Manager username", settings.om_username),
        "OM_PASSWORD": _ask("Ops Manager password", secret=True),
        "CF_API": _ask("Cloud Foundry API", settings.cf_api),
        "CF_USERNAME": _ask("Cloud Foundry username", settings.cf_username),
        "CF_PASSWORD": _ask("Cloud Foundry password", secret=True),
        "BOSH_ENVIRONMENT": _ask("BOSH environment (optional)", settings.bosh_environment),
        "PIVNET_TOKEN": _ask("Pivnet API token (optional)", secret=True),
    }
    skip_tls = typer.confirm("Skip Ops Manager TLS validation?", default=settings.om_skip_ssl_validation)
    values["OM_SKIP_SSL_VALIDATION"] = "true" if skip_tls else "false"

    env_path = write_user_env_vars(values)
    _console.print(f"[green]Saved configuration to:[/green] {env_path}")
