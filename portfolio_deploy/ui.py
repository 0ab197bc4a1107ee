"""
Nord-themed terminal presentation: header, sections, configuration table and
the final status report.
"""

import shutil
from typing import Any, Dict, List, Optional

import pyfiglet
from rich import box
from rich.align import Align
from rich.console import Console, Group
from rich.markup import escape
from rich.panel import Panel
from rich.style import Style
from rich.table import Table
from rich.text import Text
from rich.theme import Theme


class NordColors:
    """Nord color palette for consistent theming throughout the application."""

    SNOW_STORM_1: str = "#D8DEE9"
    SNOW_STORM_2: str = "#E5E9F0"
    FROST_1: str = "#8FBCBB"
    FROST_2: str = "#88C0D0"
    FROST_3: str = "#81A1C1"
    FROST_4: str = "#5E81AC"
    RED: str = "#BF616A"
    YELLOW: str = "#EBCB8B"
    GREEN: str = "#A3BE8C"

    @classmethod
    def get_frost_gradient(cls, steps: int = 4) -> List[str]:
        frosts = [cls.FROST_1, cls.FROST_2, cls.FROST_3, cls.FROST_4]
        return frosts[: max(1, steps)]


console = Console(
    theme=Theme(
        {
            "info": f"bold {NordColors.FROST_2}",
            "warning": f"bold {NordColors.YELLOW}",
            "error": f"bold {NordColors.RED}",
            "success": f"bold {NordColors.GREEN}",
            "path": f"italic {NordColors.FROST_1}",
        }
    )
)

STATUS_STYLES: Dict[str, str] = {
    "completed": "success",
    "satisfied": "success",
    "planned": "info",
    "failed": "error",
    "skipped": "warning",
    "not run": "warning",
}
STATUS_ICONS: Dict[str, str] = {
    "completed": "✓",
    "satisfied": "✓",
    "planned": "→",
    "failed": "✗",
    "skipped": "⏭",
    "not run": "·",
}


def create_header(title: str, subtitle: str, version: str) -> Panel:
    """Create an ASCII art header using Pyfiglet with a frost gradient."""
    term_width, _ = shutil.get_terminal_size((80, 24))
    font = "slant" if term_width >= 60 else "small"
    try:
        fig = pyfiglet.Figlet(font=font, width=min(term_width - 10, 100))
        ascii_art = fig.renderText(title)
    except pyfiglet.FigletError:
        ascii_art = f"  {title}  "

    lines = [line for line in ascii_art.splitlines() if line.strip()]
    colors = NordColors.get_frost_gradient(len(lines))
    styled = Text()
    for i, line in enumerate(lines):
        styled.append(Text(line, style=f"bold {colors[i % len(colors)]}"))
        if i < len(lines) - 1:
            styled.append("\n")

    return Panel(
        Align.center(styled),
        border_style=Style(color=NordColors.FROST_1),
        padding=(1, 2),
        box=box.ROUNDED,
        title=f"[bold {NordColors.SNOW_STORM_2}]v{version}[/]",
        title_align="right",
        subtitle=f"[bold {NordColors.SNOW_STORM_1}]{subtitle}[/]",
        subtitle_align="center",
    )


def print_message(text: str, style: str = NordColors.FROST_2, prefix: str = "•") -> None:
    console.print(f"[{style}]{prefix} {escape(text)}[/{style}]")


def print_success(text: str) -> None:
    print_message(text, NordColors.GREEN, "✓")


def print_warning(text: str) -> None:
    print_message(text, NordColors.YELLOW, "⚠")


def print_error(text: str) -> None:
    print_message(text, NordColors.RED, "✗")


def print_section(title: str) -> None:
    console.print()
    console.print(f"[bold {NordColors.FROST_3}]{title}[/]")
    console.print(f"[{NordColors.FROST_3}]{'─' * max(len(title), 40)}[/]")


def config_table(rows: Dict[str, Any]) -> Table:
    table = Table(
        show_header=False,
        box=box.SIMPLE,
        border_style=NordColors.FROST_3,
        padding=(0, 1),
    )
    table.add_column("Setting", style=f"bold {NordColors.FROST_2}")
    table.add_column("Value", style=NordColors.SNOW_STORM_1)
    for key, value in rows.items():
        table.add_row(key, str(value))
    return table


def status_report(run: Any) -> None:
    """Display one row per step with its status, duration and message."""
    print_section("Deployment Status Report")

    table = Table(
        show_header=True,
        header_style=f"bold {NordColors.FROST_1}",
        border_style=NordColors.FROST_3,
        box=box.ROUNDED,
        expand=True,
    )
    table.add_column("Step", style=f"bold {NordColors.FROST_2}")
    table.add_column("Status", justify="center")
    table.add_column("Time", justify="right", style=NordColors.SNOW_STORM_1)
    table.add_column("Message", style=NordColors.SNOW_STORM_1, ratio=3)

    for record in run.records:
        st = record.status.value
        table.add_row(
            record.name,
            f"[{STATUS_STYLES.get(st, 'info')}]{STATUS_ICONS.get(st, '?')} {st.upper()}[/]",
            f"{record.duration:.1f}s",
            escape(record.message),
        )
    for name in run.pending:
        table.add_row(name, f"[warning]{STATUS_ICONS['not run']} NOT RUN[/]", "", "")

    summary = Text()
    summary.append("Summary: ", style=f"bold {NordColors.FROST_3}")
    summary.append(run.summary(), style=f"bold {NordColors.SNOW_STORM_2}")
    console.print(
        Panel(
            Group(table, Align.center(summary)),
            border_style=Style(color=NordColors.FROST_4),
            padding=(0, 1),
            box=box.ROUNDED,
        )
    )


def summary_panel(
    run: Any,
    urls: List[str],
    log_file: str,
    expiry: Optional[str] = None,
) -> Panel:
    """Final outcome panel; on abort it names the failed step and what did not run."""
    minutes, seconds = divmod(int(run.duration), 60)
    lines = [f"[bold {NordColors.FROST_3}]Duration:[/] {minutes}m {seconds}s"]

    if run.succeeded:
        title = "Dry Run Complete" if run.dry_run else "Deployment Complete"
        color = NordColors.GREEN
        lines.append(f"[bold {NordColors.FROST_3}]Result:[/] [success]{run.summary()}[/]")
        if not run.dry_run:
            lines.append(f"[bold {NordColors.FROST_3}]URLs:[/] " + escape("  ".join(urls)))
        if expiry:
            lines.append(f"[bold {NordColors.FROST_3}]Certificate expires:[/] {expiry}")
    else:
        title = "Deployment Aborted"
        color = NordColors.RED
        if run.failed_step:
            lines.append(f"[error]Failed step: {escape(run.failed_step)}[/]")
            if run.error:
                lines.append(f"[error]Reason: {escape(run.error)}[/]")
        if run.interrupted:
            lines.append("[warning]Run interrupted by signal[/]")
        if run.pending:
            lines.append(f"[warning]Did not run: {escape(', '.join(run.pending))}[/]")
        lines.append(
            "[warning]The server is partially configured; re-run to resume from the "
            "failed step.[/]"
        )

    for warning in run.warnings:
        lines.append(f"[warning]⚠ {escape(warning)}[/]")
    lines.append(f"[bold {NordColors.FROST_3}]Log file:[/] [path]{escape(log_file)}[/]")

    return Panel(
        Text.from_markup("\n".join(lines)),
        border_style=Style(color=color),
        box=box.ROUNDED,
        padding=(1, 2),
        title=f"[bold {color}]{title}[/]",
        title_align="center",
    )
