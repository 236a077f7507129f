"""Environment checklist (`doctor run`).

Checks are grouped in sections and never raise: every problem becomes a
FAIL/WARN row so the operator sees the whole picture in one pass.
"""

from __future__ import annotations

import logging
import os
import shutil

from core.domain.models import CheckReport
from core.domain.options import CheckStatus
from core.resources_loader import find_downloaded_tile, replicator_candidates
from core.services.context import ServiceContext
from core.services.demo import RecordingParams

logger = logging.getLogger(__name__)

REQUIRED_TOOLS = ("cf", "bosh", "om", "pivnet")
MIN_COLUMNS = 120
MIN_LINES = 30


def _tool_version(ctx: ServiceContext, tool: str) -> str | None:
    if tool == "cf":
        return ctx.cf.version()
    if tool == "bosh":
        return ctx.bosh.version()
    if tool == "om":
        return ctx.om.version()
    return ctx.pivnet.version()


def check_cli_tools(ctx: ServiceContext, report: CheckReport) -> None:
    section = "CLI Tools"
    for tool in REQUIRED_TOOLS:
        if ctx.runner.which(tool) is None:
            report.add(tool, CheckStatus.FAIL, "not found", section=section)
            continue
        report.add(tool, CheckStatus.PASS, _tool_version(ctx, tool) or "available", section=section)


def check_environment(ctx: ServiceContext, report: CheckReport) -> None:
    section = "Environment Variables"
    s = ctx.settings

    for name, value in (("OM_TARGET", s.om_target), ("OM_USERNAME", s.om_username)):
        if value:
            report.add(name, CheckStatus.PASS, value, section=section)
        else:
            report.add(name, CheckStatus.FAIL, "not set", section=section)

    if s.om_password:
        report.add("OM_PASSWORD", CheckStatus.PASS, "(set, hidden)", section=section)
    else:
        report.add("OM_PASSWORD", CheckStatus.FAIL, "not set", section=section)

    if s.pivnet_token:
        report.add("PIVNET_TOKEN", CheckStatus.PASS, "(set, hidden)", section=section)
    else:
        report.add("PIVNET_TOKEN", CheckStatus.WARN, "not set (needed for tile download)", section=section)

    if s.cf_username:
        report.add("CF_USERNAME", CheckStatus.PASS, s.cf_username, section=section)
    else:
        report.add("CF_USERNAME", CheckStatus.INFO, "not set (using cf login session)", section=section)

    if s.bosh_environment:
        report.add("BOSH_ENVIRONMENT", CheckStatus.PASS, s.bosh_environment, section=section)
    else:
        report.add("BOSH_ENVIRONMENT", CheckStatus.INFO, "not set (BOSH checks are skipped)", section=section)


def check_ops_manager(ctx: ServiceContext, report: CheckReport) -> None:
    section = "Ops Manager Connection"
    if not ctx.settings.om_target:
        report.add("Ops Manager", CheckStatus.FAIL, "Cannot test - OM_TARGET not set", section=section)
        return
    if ctx.runner.which("om") is None:
        report.add("Ops Manager", CheckStatus.SKIP, "om CLI not installed", section=section)
        return
    if not ctx.om.is_reachable():
        report.add("Ops Manager", CheckStatus.FAIL, f"Cannot connect to {ctx.settings.om_target}", section=section)
        return
    report.add("Ops Manager", CheckStatus.PASS, "API accessible", section=section)
    names = [str(p.get("name")) for p in ctx.om.staged_products() if p.get("name")]
    report.add("Staged products", CheckStatus.INFO, ", ".join(names) or "none", section=section)


def check_cloud_foundry(ctx: ServiceContext, report: CheckReport) -> bool:
    section = "Cloud Foundry Connection"
    if ctx.runner.which("cf") is None:
        report.add("Cloud Foundry", CheckStatus.SKIP, "cf CLI not installed", section=section)
        return False
    info = ctx.cf.target_info()
    if not info:
        report.add("Cloud Foundry", CheckStatus.FAIL, "Not logged into Cloud Foundry", section=section)
        report.add("Hint", CheckStatus.INFO, "Run: cf login -a <API_URL>", section=section)
        return False
    report.add("CF API", CheckStatus.PASS, info.get("api endpoint") or "unknown", section=section)
    report.add("Org", CheckStatus.PASS, info.get("org") or "not targeted", section=section)
    report.add("Space", CheckStatus.PASS, info.get("space") or "not targeted", section=section)
    return True


def check_demo_prerequisites(ctx: ServiceContext, report: CheckReport, params: RecordingParams) -> None:
    section = "Demo Prerequisites"
    cf = ctx.cf

    if cf.org_exists(params.org):
        report.add(f"Org '{params.org}'", CheckStatus.PASS, "exists", section=section)
    else:
        report.add(f"Org '{params.org}'", CheckStatus.FAIL, f"not found (cf create-org {params.org})", section=section)

    if cf.target(params.org):
        spaces = cf.spaces()
        for space in (params.dev_space, params.validation_space):
            if space in spaces:
                report.add(f"Space '{space}'", CheckStatus.PASS, f"exists in {params.org}", section=section)
            else:
                report.add(
                    f"Space '{space}'",
                    CheckStatus.FAIL,
                    f"not found (cf create-space {space} -o {params.org})",
                    section=section,
                )
    else:
        report.add("Spaces", CheckStatus.WARN, f"Could not target {params.org} to check spaces", section=section)

    if not cf.target(params.org, params.dev_space):
        report.add(
            f"App '{params.app}'",
            CheckStatus.WARN,
            f"Could not target {params.org}/{params.dev_space} to check the app",
            section=section,
        )
        return
    details = cf.app_details(params.app)
    if not details:
        report.add(
            f"App '{params.app}'",
            CheckStatus.FAIL,
            f"not found in {params.dev_space} (cf push {params.app})",
            section=section,
        )
        return
    state = details.get("requested state") or "unknown"
    if state == "started":
        report.add(f"App '{params.app}'", CheckStatus.PASS, f"running in {params.dev_space}", section=section)
    else:
        report.add(f"App '{params.app}'", CheckStatus.WARN, f"exists but state is: {state}", section=section)


def check_tile_files(report: CheckReport, params: RecordingParams) -> None:
    section = "Tile Files"
    tile = find_downloaded_tile(params.download_dir)
    if tile is not None:
        report.add("Isolation segment tile", CheckStatus.PASS, tile.name, section=section)
    else:
        report.add(
            "Isolation segment tile",
            CheckStatus.INFO,
            f"none in {params.download_dir} (isoseg download-tile --version 6.0)",
            section=section,
        )

    if any(p.is_file() and os.access(p, os.X_OK) for p in replicator_candidates(params.download_dir)):
        report.add("Replicator", CheckStatus.PASS, "available", section=section)
    else:
        report.add(
            "Replicator",
            CheckStatus.INFO,
            "not found (isoseg download-replicator --version <release>)",
            section=section,
        )


def check_terminal(report: CheckReport, size: os.terminal_size | None = None) -> None:
    section = "Terminal Settings"
    size = size or shutil.get_terminal_size()
    if size.columns >= MIN_COLUMNS:
        report.add("Width", CheckStatus.PASS, f"{size.columns} columns", section=section)
    else:
        report.add("Width", CheckStatus.WARN, f"{size.columns} columns (recommend {MIN_COLUMNS}+)", section=section)
    if size.lines >= MIN_LINES:
        report.add("Height", CheckStatus.PASS, f"{size.lines} lines", section=section)
    else:
        report.add("Height", CheckStatus.WARN, f"{size.lines} lines (recommend {MIN_LINES}+)", section=section)
    report.add("Terminal", CheckStatus.INFO, os.environ.get("TERM_PROGRAM", "unknown"), section=section)


def run_preflight(
    ctx: ServiceContext,
    params: RecordingParams,
    *,
    terminal_size: os.terminal_size | None = None,
) -> CheckReport:
    report = CheckReport(title="Pre-Flight Checklist")
    check_cli_tools(ctx, report)
    check_environment(ctx, report)
    check_ops_manager(ctx, report)
    if check_cloud_foundry(ctx, report):
        check_demo_prerequisites(ctx, report, params)
    check_tile_files(report, params)
    check_terminal(report, terminal_size)
    logger.debug(
        "Preflight: %d passed, %d warnings, %d failed",
        report.count(CheckStatus.PASS),
        report.count(CheckStatus.WARN),
        report.count(CheckStatus.FAIL),
    )
    return report
