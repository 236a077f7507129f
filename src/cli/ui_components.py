"""CLI UI components (Rich).

Why separate components:
- Keeps command logic apart from visual details.
- Lets `monitor`, `validate`, `doctor` and `demo` share tables and panels.
"""

from __future__ import annotations

from typing import Any

from rich.align import Align
from rich.console import Console, Group
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from core.domain.models import CheckReport, DemoComparison, SegmentMetrics
from core.domain.options import CheckStatus, DemoMode
from core.services.demo import Scene, Step

_STATUS_STYLE = {
    CheckStatus.PASS: ("✓", "green"),
    CheckStatus.FAIL: ("✗", "red"),
    CheckStatus.WARN: ("⚠", "yellow"),
    CheckStatus.INFO: ("ℹ", "blue"),
    CheckStatus.SKIP: ("-", "dim"),
}


def print_banner(console: Console, title: str = "isoseg", subtitle: str | None = None) -> None:
    """Welcome banner.

    Why here:
    - Avoids circular imports (main <-> doctor/demo).
    - Machine-readable modes (JSON/CSV) simply never call it.
    """

    subtitle = subtitle or "Isolation segments • Migration • Capacity"
    body = Align.center(
        Text.assemble(Text(title, style="bold cyan"), "\n", Text(subtitle, style="dim")),
        vertical="middle",
    )
    console.print(Panel(body, border_style="cyan", padding=(1, 4)))


def status_text(status: CheckStatus) -> Text:
    symbol, style = _STATUS_STYLE[status]
    return Text(f"{symbol} {status.label()}", style=style)


def build_check_table(report: CheckReport) -> Table:
    """One row per check, grouped by section."""

    table = Table(title=report.title or None)
    show_section = any(c.section for c in report.checks)
    if show_section:
        table.add_column("Section", style="cyan", no_wrap=True)
    table.add_column("Check", style="bright_green", no_wrap=True)
    table.add_column("Status", no_wrap=True)
    table.add_column("Details", style="dim")

    previous = None
    for check in report.checks:
        row: list[Any] = []
        if show_section:
            row.append(check.section if check.section != previous else "")
            previous = check.section
        row += [check.name, status_text(check.status), check.detail]
        table.add_row(*row)
    return table


def build_summary_panel(report: CheckReport, *, ready: str, not_ready: str) -> Panel:
    body = Text()
    body.append(f"Passed:   {report.count(CheckStatus.PASS)}\n", style="green")
    body.append(f"Warnings: {report.count(CheckStatus.WARN)}\n", style="yellow")
    body.append(f"Failed:   {report.count(CheckStatus.FAIL)}\n\n", style="red")
    if report.ok:
        body.append(f"✓ {ready}", style="bold green")
        border = "green"
    else:
        body.append(f"✗ {not_ready}", style="bold red")
        border = "red"
    return Panel(body, title="Summary", border_style=border)


def build_metrics_panel(metrics: SegmentMetrics) -> Panel:
    """Text rendering of `monitor`."""

    cap = metrics.capacity
    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold")
    table.add_column(justify="right")

    table.add_row("Timestamp", metrics.timestamp.astimezone().strftime("%Y-%m-%d %H:%M:%S %Z"))
    table.add_row("", "")
    table.add_row("Apps in segment", str(metrics.apps.count))
    cells = str(metrics.cells.count)
    if metrics.cells.count and metrics.cells.reporting < metrics.cells.count:
        cells += f" ({metrics.cells.reporting} reporting)"
    table.add_row("Diego cells", cells)
    table.add_row("", "")
    table.add_row("Memory (MB)", "")
    table.add_row("  Total", str(cap.memory_mb.total))
    table.add_row("  Available", str(cap.memory_mb.available))
    table.add_row("  Used", str(cap.memory_mb.used))
    table.add_row("  Utilization", f"{cap.memory_mb.utilization_pct}%")
    table.add_row("Disk (MB)", "")
    table.add_row("  Total", str(cap.disk_mb.total))
    table.add_row("  Available", str(cap.disk_mb.available))
    table.add_row("Containers", "")
    table.add_row("  Total", str(cap.containers.total))
    table.add_row("  Available", str(cap.containers.available))

    parts: list[Any] = [table]
    if cap.estimated:
        parts.append(Text("\nCapacity is estimated: not every cell reported its full state.", style="yellow"))

    return Panel(
        Group(*parts),
        title=Text(f"Isolation Segment Metrics: {metrics.segment}", style="bold cyan"),
        border_style="cyan",
    )


def _fmt(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, list):
        return ", ".join(str(v) for v in value) or "-"
    return str(value)


def build_comparison_table(comparison: DemoComparison) -> Table:
    table = Table(title="Before / After")
    table.add_column("Layer", style="cyan", no_wrap=True)
    table.add_column("Field", style="white")
    table.add_column("Before", style="dim")
    table.add_column("After")
    table.add_column("", no_wrap=True)

    for change in comparison.changes:
        marker = Text("changed", style="yellow") if change.changed else Text("same", style="green")
        table.add_row(change.layer, change.field, _fmt(change.before), _fmt(change.after), marker)
    return table


def build_verdict_panel(comparison: DemoComparison, segment: str) -> Panel:
    body = Text()
    if comparison.isolation_applied:
        body.append(f"✓ Space now runs on isolation segment '{segment}'\n", style="green")
    else:
        body.append(f"✗ Space was not moved to '{segment}'\n", style="red")

    if comparison.placement_verified is None:
        body.append("- Cell placement not verified (BOSH skipped)\n", style="dim")
    elif comparison.placement_verified:
        body.append("✓ Every app instance runs on a segment cell\n", style="green")
    else:
        body.append("✗ App instances found outside the segment cells\n", style="red")

    if comparison.developer_impact:
        body.append(f"⚠ Developer-facing changes: {', '.join(comparison.developer_impact)}", style="yellow")
    else:
        body.append("✓ Zero developer impact: routes, state and instances unchanged", style="green")
    return Panel(body, title="Verdict", border_style="magenta")


def section_header(console: Console, mode: DemoMode, title: str) -> None:
    if mode.pauses:
        console.print(Panel(Text(title, style="bold"), border_style="bold", expand=False, padding=(0, 2)))
    else:
        console.log(f"=== {title} ===")


def phase_header(console: Console, mode: DemoMode, phase: str, title: str) -> None:
    if mode.pauses:
        console.print()
        console.print(Text(f"{phase}: {title}", style="bold magenta"))
        console.print("-" * 30)
    else:
        console.log(f"{phase}: {title}")


def scene_header(console: Console, scene: Scene) -> None:
    console.print()
    console.print(Panel(Text(scene.heading, style="bold green"), border_style="green"))


def render_step(console: Console, number: int, step: Step) -> None:
    if step.marker:
        console.print(Text(f"▶▶▶ {step.text}", style="yellow"))
        return
    console.print(Rule(style="cyan"))
    console.print(Text(f"Step {number}", style="green"))
    if step.note:
        console.print(Text(step.note, style="yellow"))
    console.print()
    console.print(Text(step.text, style="blue"))
    console.print()
    console.print(Rule(style="cyan"))
