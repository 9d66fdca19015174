"""
Run Summary
===========
Structured results of a run and their console rendering.
"""

import json
from dataclasses import dataclass, field, asdict
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich import box

from logging_utils import StructuredLogger
from utils import format_address, format_duration

from .sender import WalletResult


@dataclass
class LoopFailure:
    """A sender loop that raised instead of returning a result."""
    wallet_id: int
    address: str
    quota: int
    error: str


@dataclass
class ExcludedWallet:
    """A key or wallet left out of the run, and why."""
    wallet_id: int
    stage: str  # "key" or "nonce"
    reason: str
    address: Optional[str] = None


@dataclass
class RunSummary:
    """Aggregate outcome of one run."""
    total_requested: int
    dry_run: bool = False
    results: List[WalletResult] = field(default_factory=list)
    loop_failures: List[LoopFailure] = field(default_factory=list)
    excluded: List[ExcludedWallet] = field(default_factory=list)
    dispatched: int = 0
    halt_reason: Optional[str] = None
    duration_seconds: float = 0.0
    finished_at: str = field(default_factory=lambda: datetime.now().isoformat())

    @property
    def successful(self) -> int:
        return sum(r.successful for r in self.results)

    @property
    def failed(self) -> int:
        # Loops that crashed are reported separately, not folded in here
        return sum(r.failed for r in self.results)

    @property
    def halted(self) -> bool:
        return self.halt_reason is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_requested': self.total_requested,
            'dispatched': self.dispatched,
            'successful': self.successful,
            'failed': self.failed,
            'dry_run': self.dry_run,
            'halt_reason': self.halt_reason,
            'duration_seconds': round(self.duration_seconds, 3),
            'finished_at': self.finished_at,
            'wallets': [r.to_dict() for r in self.results],
            'loop_failures': [asdict(f) for f in self.loop_failures],
            'excluded': [asdict(e) for e in self.excluded],
        }

    def save(self, filepath: str):
        Path(filepath).parent.mkdir(parents=True, exist_ok=True)
        with open(filepath, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)


def wallet_table(summary: RunSummary) -> Table:
    """Per-wallet results, crashed loops and exclusions."""
    table = Table(title="Overall Wallet Summary", box=box.ROUNDED)

    table.add_column("Wallet", style="cyan", justify="right")
    table.add_column("Address", style="dim")
    table.add_column("Quota", justify="right")
    table.add_column("Successful", style="green", justify="right")
    table.add_column("Failed", style="red", justify="right")
    table.add_column("Attempts", justify="right")
    table.add_column("Nonce", justify="right")
    table.add_column("Status")

    for r in sorted(summary.results, key=lambda r: r.wallet_id):
        table.add_row(
            str(r.wallet_id),
            format_address(r.address),
            str(r.quota),
            str(r.successful),
            str(r.failed),
            str(r.attempts),
            f"{r.initial_nonce} → {r.final_nonce}",
            "done" if r.failed == 0 else "[yellow]partial[/yellow]",
        )

    for f in summary.loop_failures:
        table.add_row(str(f.wallet_id), format_address(f.address), str(f.quota),
                      "-", "-", "-", "-", f"[red]loop failed: {f.error}[/red]")

    for e in summary.excluded:
        table.add_row(str(e.wallet_id), format_address(e.address) if e.address else "-", "0",
                      "-", "-", "-", "-", f"[dim]excluded ({e.stage}): {e.reason}[/dim]")

    return table


def totals_panel(summary: RunSummary) -> Panel:
    lines = [
        f"Total logical transactions targeted:  {summary.total_requested}",
        f"Dispatched to wallets:                {summary.dispatched}",
        f"Total successfully sent transactions: {summary.successful}",
        f"Total failed transactions:            {summary.failed}",
        f"Total execution time:                 {format_duration(summary.duration_seconds)}",
    ]
    if summary.loop_failures:
        lines.append(f"Sender loops that did not complete:   {len(summary.loop_failures)}")
    if summary.dry_run:
        lines.append("[yellow]DRY RUN: nothing was broadcast[/yellow]")
    if summary.halted:
        lines.append(f"[red]Run halted: {summary.halt_reason}[/red]")

    style = "red" if summary.halted else ("yellow" if summary.failed or summary.loop_failures else "green")
    return Panel("\n".join(lines), title="Final Transaction Summary", border_style=style)


def print_summary(summary: RunSummary, console: Optional[Console] = None,
                  events: Optional[StructuredLogger] = None):
    """Print the full run report."""
    console = console or Console()
    console.print()
    if summary.results or summary.loop_failures or summary.excluded:
        console.print(wallet_table(summary))
    if events is not None and events.metrics.metrics:
        console.print(events.metrics_table())
    console.print(totals_panel(summary))
