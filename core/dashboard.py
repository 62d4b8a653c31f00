"""Console status report.

Renders a rich table of every wallet's node state, points and referral
data from one read-only pass (no registration, start, stop or claim).
"""

import logging
from typing import Any, Dict, List, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from core.logging_setup import short_address
from core.orchestrator import Orchestrator
from nodes.session import probe_wallet

logger = logging.getLogger(__name__)


def build_status_table(rows: List[Dict[str, Any]]) -> Table:
    """Create the per-wallet status table.

    Args:
        rows: Dicts as returned by :func:`nodes.session.probe_wallet`.
    """
    table = Table(
        title="Light Node Status",
        box=box.ROUNDED,
        show_header=True,
        header_style="bold magenta",
    )
    table.add_column("#", justify="right", style="dim")
    table.add_column("Wallet", style="cyan", no_wrap=True)
    table.add_column("Node", justify="center")
    table.add_column("Points", justify="right")
    table.add_column("Referral Code", style="white")
    table.add_column("Referrals", justify="right")
    table.add_column("Proxy", style="dim")

    for i, row in enumerate(rows, 1):
        node = "[green]running[/green]" if row.get("running") else "[red]stopped[/red]"
        table.add_row(
            str(i),
            short_address(row["address"]),
            node,
            f"{row.get('points', 0):,}",
            row.get("referral_code") or "-",
            str(row.get("referral_count", 0)),
            row.get("proxy") or "direct",
        )
    return table


def build_totals_panel(rows: List[Dict[str, Any]]) -> Panel:
    running = sum(1 for r in rows if r.get("running"))
    points = sum(r.get("points", 0) for r in rows)
    content = (
        f"[white]Wallets:[/white] {len(rows)}\n"
        f"[white]Running:[/white] [green]{running}[/green] / {len(rows)}\n"
        f"[white]Total points:[/white] [bold]{points:,}[/bold]"
    )
    return Panel(content, title="[bold]Summary[/bold]", border_style="blue", box=box.ROUNDED)


async def show_status(orchestrator: Orchestrator, console: Optional[Console] = None) -> List[Dict[str, Any]]:
    """Probe every wallet once and print the report.

    Returns:
        The collected rows.
    """
    console = console or Console()
    console.print("\n[cyan]Querying node status...[/cyan]")
    rows = await orchestrator.map_sessions(probe_wallet)

    if not rows:
        console.print(Panel(
            "[red]No wallets configured[/red]",
            title="[bold red]Error[/bold red]",
            border_style="red",
        ))
        return rows

    console.print(build_status_table(rows))
    console.print(build_totals_panel(rows))
    return rows
