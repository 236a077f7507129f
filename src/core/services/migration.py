"""Moving a space's apps onto (or off) an isolation segment.

Both `migrate` and `rollback` follow the same shape: validate, (re)assign the
space, then restart every app one at a time with a fixed pause so the
platform never restarts a whole space at once. The restart loop is
`run_batch`; it never raises for a single app, it counts.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field

from adapters.shell import require_tools
from core.domain.models import BatchResult
from core.errors import CommandFailedError, PreconditionError
from core.log import success
from core.services.context import ServiceContext

logger = logging.getLogger(__name__)


@dataclass
class MigrationRequest:
    org: str
    space: str
    segment: str
    batch_size: int = 10
    delay: float = 30.0
    apps: Sequence[str] | None = None
    exclude: Sequence[str] | None = None
    entitle: bool = False


@dataclass
class RollbackRequest:
    org: str
    space: str
    target_segment: str | None = None
    apps: Sequence[str] | None = None
    batch_size: int = 10
    delay: float = 30.0


@dataclass
class BatchOutcome:
    """What a migrate/rollback invocation did (or would do)."""

    apps: list[str] = field(default_factory=list)
    result: BatchResult | None = None
    dry_run: bool = False
    previous_segment: str | None = None

    @property
    def ok(self) -> bool:
        return self.result is None or self.result.ok


def select_apps(
    apps: Iterable[str],
    include: Sequence[str] | None = None,
    exclude: Sequence[str] | None = None,
) -> list[str]:
    """Filter by exact names, keeping the original order."""

    selected = [a for a in apps if a]
    if include:
        wanted = set(include)
        selected = [a for a in selected if a in wanted]
    if exclude:
        unwanted = set(exclude)
        selected = [a for a in selected if a not in unwanted]
    return selected


def run_batch(
    apps: Sequence[str],
    action: Callable[[str], bool],
    *,
    delay: float,
    batch_size: int,
    sleep: Callable[[float], None],
    verify: Callable[[str], bool] | None = None,
    verb: str = "Migrating",
    done: str = "migrated",
    failed_to: str = "migrate",
) -> BatchResult:
    """Restart apps sequentially, pausing `delay` seconds between two apps.

    `batch_size` only groups progress reports; pacing is per app.
    """

    total = len(apps)
    batch_size = max(batch_size, 1)
    batches = (total + batch_size - 1) // batch_size
    result = BatchResult(total=total)

    for index, app in enumerate(apps, start=1):
        logger.info("[%d/%d] %s app: %s", index, total, verb, app)

        if action(app):
            success(logger, "App %s %s successfully", app, done)
            result.succeeded_apps.append(app)
            if verify is not None and not verify(app):
                logger.warning("App %s restart succeeded but segment assignment unclear", app)
                result.unverified_apps.append(app)
        else:
            logger.error("Failed to %s app %s", failed_to, app)
            result.failed_apps.append(app)

        if index % batch_size == 0 or index == total:
            logger.info(
                "Batch %d/%d complete (%d %s, %d failed so far)",
                (index + batch_size - 1) // batch_size,
                batches,
                result.succeeded,
                done,
                result.failed,
            )

        if index < total:
            logger.info("Waiting %ss before next app...", f"{delay:g}")
            sleep(delay)

    return result


def _validate_org_and_space(ctx: ServiceContext, org: str, space: str) -> None:
    if not ctx.cf.org_exists(org):
        raise PreconditionError(f"Organization '{org}' not found")
    if not ctx.cf.space_exists(org, space):
        raise PreconditionError(f"Space '{space}' not found in org '{org}'")


def _log_summary(title: str, result: BatchResult, done: str) -> None:
    success(logger, title)
    logger.info("  Total apps: %d", result.total)
    logger.info("  %s: %d", done.capitalize(), result.succeeded)
    logger.info("  Failed: %d", result.failed)
    if result.unverified_apps:
        logger.info("  Unverified: %d (%s)", len(result.unverified_apps), ", ".join(result.unverified_apps))


def migrate(ctx: ServiceContext, req: MigrationRequest) -> BatchOutcome:
    require_tools(ctx.runner, "cf")
    cf = ctx.cf
    cf.validate_connection(ctx.settings)
    _validate_org_and_space(ctx, req.org, req.space)
    if not cf.segment_exists(req.segment):
        raise PreconditionError(f"Isolation segment '{req.segment}' not found")

    logger.info("Starting migration to isolation segment: %s", req.segment)
    logger.info("  Organization: %s", req.org)
    logger.info("  Space: %s", req.space)
    logger.info("  Batch size: %d", req.batch_size)
    logger.info("  Delay between restarts: %ss", f"{req.delay:g}")

    if req.entitle:
        logger.info("Entitling org %s to segment %s...", req.org, req.segment)
        if ctx.dry_run:
            logger.warning("DRY RUN: Would entitle org %s to segment %s", req.org, req.segment)
        elif cf.enable_org_isolation(req.org, req.segment):
            success(logger, "Org %s entitled to segment %s", req.org, req.segment)
        else:
            logger.error("Failed to entitle org. Continuing anyway...")

    cf.target(req.org, req.space)

    logger.info("Fetching app list from space %s...", req.space)
    apps = cf.list_apps()
    if not apps:
        logger.warning("No apps found in space %s", req.space)
        return BatchOutcome(result=BatchResult(), dry_run=ctx.dry_run)

    if req.apps:
        logger.info("Filtering to specific apps: %s", ",".join(req.apps))
    if req.exclude:
        logger.info("Excluding apps: %s", ",".join(req.exclude))
    apps = select_apps(apps, req.apps, req.exclude)
    if not apps:
        logger.warning("No apps in space %s match the requested filters", req.space)
        return BatchOutcome(result=BatchResult(), dry_run=ctx.dry_run)

    logger.info("Found %d apps to migrate", len(apps))

    if ctx.dry_run:
        logger.warning("DRY RUN: Would migrate the following apps:")
        return BatchOutcome(apps=apps, dry_run=True)

    logger.info("Assigning space %s to isolation segment %s...", req.space, req.segment)
    if not cf.set_space_isolation_segment(req.space, req.segment):
        raise CommandFailedError("Failed to assign space to segment")
    success(logger, "Space %s assigned to segment %s", req.space, req.segment)

    def verify(app: str) -> bool:
        reported = cf.app_isolation_segment(app) or cf.space_isolation_segment(req.space)
        if reported == req.segment:
            success(logger, "Verified app %s is in segment %s", app, req.segment)
            return True
        return False

    result = run_batch(
        apps,
        cf.restart,
        delay=req.delay,
        batch_size=req.batch_size,
        sleep=ctx.sleep,
        verify=verify,
    )

    _log_summary("Migration complete", result, "migrated")
    if not result.ok:
        logger.warning("Some apps failed to migrate. Review logs and consider rollback.")
    return BatchOutcome(apps=apps, result=result)


def rollback(ctx: ServiceContext, req: RollbackRequest) -> BatchOutcome:
    require_tools(ctx.runner, "cf")
    cf = ctx.cf
    cf.validate_connection(ctx.settings)
    _validate_org_and_space(ctx, req.org, req.space)

    logger.info("Starting rollback for space: %s", req.space)
    logger.info("  Organization: %s", req.org)
    if req.target_segment:
        logger.info("  Target segment: %s", req.target_segment)
        if not cf.segment_exists(req.target_segment):
            raise PreconditionError(f"Target segment '{req.target_segment}' not found")
    else:
        logger.info("  Target: Shared segment (default)")

    cf.target(req.org, req.space)

    current = cf.space_isolation_segment(req.space)
    if not current:
        logger.warning("Space %s is not assigned to any isolation segment", req.space)
        return BatchOutcome(result=BatchResult(), dry_run=ctx.dry_run)

    logger.info("Current space segment: %s", current)

    if ctx.dry_run:
        if req.target_segment:
            logger.warning("DRY RUN: Would move space %s from %s to %s", req.space, current, req.target_segment)
        else:
            logger.warning("DRY RUN: Would reset space %s from %s to shared segment", req.space, current)
        return BatchOutcome(dry_run=True, previous_segment=current)

    if req.target_segment:
        logger.info("Moving space to target segment %s...", req.target_segment)
        if not cf.set_space_isolation_segment(req.space, req.target_segment):
            raise CommandFailedError("Failed to move space to target segment")
        success(logger, "Space moved to segment %s", req.target_segment)
    else:
        logger.info("Resetting space to shared segment...")
        if not cf.reset_space_isolation_segment(req.space):
            raise CommandFailedError("Failed to reset space")
        success(logger, "Space reset to shared segment")

    logger.info("Fetching app list from space %s...", req.space)
    apps = cf.list_apps()
    if not apps:
        logger.warning("No apps found in space %s", req.space)
        return BatchOutcome(result=BatchResult(), previous_segment=current)

    if req.apps:
        logger.info("Filtering to specific apps: %s", ",".join(req.apps))
        apps = select_apps(apps, req.apps)

    logger.info("Found %d apps to rollback", len(apps))

    result = run_batch(
        apps,
        cf.restart,
        delay=req.delay,
        batch_size=req.batch_size,
        sleep=ctx.sleep,
        verb="Rolling back",
        done="rolled back",
        failed_to="rollback",
    )

    _log_summary("Rollback complete", result, "rolled back")
    if not result.ok:
        logger.warning("Some apps failed to rollback. Review logs for details.")
    return BatchOutcome(apps=apps, result=result, previous_segment=current)
