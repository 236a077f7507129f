"""Segment creation (BOSH cell pool) and validation."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

from adapters.manifest_renderer import DEFAULT_AZS, CellPoolSpec, write_manifest
from adapters.shell import require_tools
from core.domain.models import CheckReport
from core.domain.options import CheckStatus
from core.errors import CommandFailedError, PreconditionError
from core.log import success
from core.services.context import ServiceContext
from core.services.tiles import register_segment

logger = logging.getLogger(__name__)

_CELL_SIZE_RE = re.compile(r"^(\d+)/(\d+)$")

# vCPU/GB combinations with a ready-made vm_type in most foundations.
STANDARD_CELL_SIZES = frozenset({(4, 32), (8, 64), (4, 128), (8, 32)})


def parse_cell_size(value: str) -> tuple[int, int]:
    """`"8/64"` -> `(8, 64)`; raises ValueError for anything else."""

    match = _CELL_SIZE_RE.match(value.strip())
    if not match:
        raise ValueError(f"Invalid cell size format: {value}. Use format: vCPU/RAM (e.g., 8/64)")
    vcpu, memory_gb = int(match.group(1)), int(match.group(2))
    if vcpu < 1 or memory_gb < 1:
        raise ValueError(f"Invalid cell size: {value}. vCPU and RAM must be positive")
    return vcpu, memory_gb


def default_vm_type(vcpu: int, memory_gb: int) -> str:
    return f"diego-cell-{vcpu}cpu-{memory_gb}gb"


@dataclass
class CreateSegmentRequest:
    name: str
    cell_size: str
    count: int
    deployment: str | None = None
    azs: list[str] = field(default_factory=lambda: list(DEFAULT_AZS))
    network: str = "default"
    vm_type: str | None = None
    register: bool = False


def create_segment(ctx: ServiceContext, req: CreateSegmentRequest) -> Path:
    """Render the cell-pool manifest, deploy it, optionally register the segment.

    Returns the manifest path (written in dry-run too, for review).
    """

    vcpu, memory_gb = parse_cell_size(req.cell_size)
    if req.count < 1:
        raise PreconditionError("Cell count must be at least 1")

    deployment = req.deployment or req.name
    vm_type = req.vm_type or default_vm_type(vcpu, memory_gb)

    logger.info("Creating isolation segment: %s", req.name)
    logger.info("  Cell size: %s vCPU / %sGB RAM", vcpu, memory_gb)
    logger.info("  Cell count: %d", req.count)
    logger.info("  Deployment: %s", deployment)
    logger.info("  AZs: %s", ",".join(req.azs))
    logger.info("  Network: %s", req.network)

    if (vcpu, memory_gb) not in STANDARD_CELL_SIZES:
        logger.warning("Non-standard cell size %s. Recommended: 4/32, 8/64, 4/128, 8/32", req.cell_size)

    if not req.vm_type:
        logger.info("Using VM type: %s (override with --vm-type)", vm_type)

    spec = CellPoolSpec(
        deployment=deployment,
        segment=req.name,
        instances=req.count,
        vm_type=vm_type,
        network=req.network,
        azs=list(req.azs),
    )
    manifest = write_manifest(spec, ctx.settings.manifest_dir)
    success(logger, "Generated manifest: %s", manifest)

    if ctx.dry_run:
        logger.warning("DRY RUN: Would deploy %s with %d cells of %s", deployment, req.count, vm_type)
        logger.info("Review the manifest at: %s", manifest)
        return manifest

    require_tools(ctx.runner, "bosh")
    ctx.bosh.validate_connection()

    logger.info("Deploying isolation segment cells (this may take several minutes)...")
    if not ctx.bosh.deploy(deployment, str(manifest)):
        raise CommandFailedError("BOSH deployment failed. Check logs for details.")
    success(logger, "Diego cells deployed for segment %s", req.name)

    if req.register:
        logger.info("Registering isolation segment in Cloud Controller...")
        register_segment(ctx, req.name, fatal=False)

    success(logger, "Isolation segment %s created", req.name)
    return manifest


def _record(report: CheckReport, name: str, status: CheckStatus, detail: str = "") -> None:
    report.add(name, status, detail)
    message = f"{name}: {detail}" if detail else name
    if status is CheckStatus.PASS:
        success(logger, message)
    elif status is CheckStatus.FAIL:
        logger.error(message)
    elif status in (CheckStatus.WARN, CheckStatus.SKIP):
        logger.warning(message)
    else:
        logger.info(message)


def validate_segment(ctx: ServiceContext, segment: str, deployment: str | None = None) -> CheckReport:
    """Registration, BOSH deployment, Diego cells and placement tags of a segment.

    The report fails (`ok` is False) when the segment is not registered, when
    the deployment has no Diego cells, or when the deployed placement tags do
    not include the segment name.
    """

    deployment = deployment or segment
    report = CheckReport(title=f"Validation: {segment}")

    logger.info("Validating isolation segment: %s", segment)
    require_tools(ctx.runner, "cf")
    ctx.cf.validate_connection(ctx.settings)

    if ctx.cf.segment_exists(segment):
        _record(report, "Cloud Controller registration", CheckStatus.PASS, f"Segment {segment} registered")
    else:
        _record(report, "Cloud Controller registration", CheckStatus.FAIL, f"Segment {segment} not registered")
        return report

    if not ctx.bosh.configured:
        _record(report, "BOSH checks", CheckStatus.WARN, "BOSH_ENVIRONMENT not set, skipping BOSH validation")
        return report

    try:
        ctx.bosh.validate_connection()
    except PreconditionError as exc:
        _record(report, "BOSH connection", CheckStatus.FAIL, str(exc))
        return report
    report.add("BOSH connection", CheckStatus.PASS, ctx.bosh.environment or "")

    if not ctx.bosh.deployment_exists(deployment):
        _record(
            report,
            "BOSH deployment",
            CheckStatus.WARN,
            f"Deployment {deployment} not found (segment may be managed externally)",
        )
        return report
    _record(report, "BOSH deployment", CheckStatus.PASS, f"Deployment {deployment} exists")

    cells = ctx.bosh.diego_cells(deployment)
    if cells:
        _record(report, "Diego cells", CheckStatus.PASS, f"{len(cells)} Diego cells found")
    else:
        _record(report, "Diego cells", CheckStatus.FAIL, "No Diego cells found in deployment")
        return report

    tags = ctx.bosh.placement_tags(deployment)
    if segment in tags:
        _record(report, "Placement tags", CheckStatus.PASS, f"Placement tag matches: {segment}")
    else:
        found = ", ".join(tags) or "none"
        _record(
            report,
            "Placement tags",
            CheckStatus.FAIL,
            f"Placement tag mismatch! Expected: {segment}, Found: {found}",
        )

    if report.ok:
        success(logger, "Validation complete for segment %s", segment)
    return report
