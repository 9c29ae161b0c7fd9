"""
Progress display and summary reporting

ProgressListener turns batch progress events into a tqdm bar.
ProgressReporter renders batch summaries, rollback reports and library
statistics as rich tables.
"""

import logging
import threading
from typing import Any, Dict, Optional

from rich import box
from rich.console import Console
from rich.table import Table
from tqdm import tqdm

from ..core.models import BatchSummary


class ProgressListener:
    """Progress bar for one batch job; register with OrganizationService.add_listener"""

    def __init__(self, job_id: Optional[str] = None, desc: str = "Organizing",
                 disable: bool = False):
        self.job_id = job_id
        self.desc = desc
        self.disable = disable
        self.pbar: Optional[tqdm] = None
        self.last_event: Optional[Dict[str, Any]] = None
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def __call__(self, event: Dict[str, Any]):
        if self.job_id is not None and event.get('jobId') != self.job_id:
            return

        with self._lock:
            self.last_event = event
            total = event.get('totalItems') or 0
            if self.pbar is None and total:
                self.pbar = tqdm(total=total, desc=self.desc, unit='albums',
                                 dynamic_ncols=True, disable=self.disable)
            if self.pbar is None:
                return

            if total and self.pbar.total != total:
                self.pbar.total = total
                self.pbar.refresh()

            delta = event.get('processedItems', 0) - self.pbar.n
            if delta > 0:
                self.pbar.update(delta)

            current = event.get('currentAlbum')
            if current:
                self.pbar.set_postfix_str(current[-40:])

    def close(self):
        with self._lock:
            if self.pbar is not None:
                self.pbar.close()
                self.pbar = None


class ProgressReporter:
    """Rich tables for the CLI"""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def batch_summary(self, job: Dict[str, Any], summary: BatchSummary, show_messages: int = 10):
        table = Table(title=f"Batch {job['jobId']}", box=box.ROUNDED)
        table.add_column("Result", style="cyan")
        table.add_column("Albums", style="yellow", justify="right")

        table.add_row("Status", job['status'])
        table.add_row("✅ Succeeded", str(summary.succeeded))
        table.add_row("❌ Failed", str(summary.failed))
        table.add_row("⏭️  Skipped", str(summary.skipped))
        table.add_row("📁 Unsorted", str(summary.unsorted))
        table.add_row("⚠️  Cancelled", str(summary.cancelled))
        table.add_row("Total", str(summary.total))
        self.console.print(table)

        for label, style, messages in (("Errors", "red", job['errors']), ("Warnings", "yellow", job['warnings'])):
            if not messages:
                continue
            self.console.print(f"[bold {style}]{label} ({len(messages)}):[/]")
            for message in messages[:show_messages]:
                self.console.print(f"  [{style}]{message}[/]")
            if len(messages) > show_messages:
                self.console.print(f"  ... {len(messages) - show_messages} more")

    def rollback_report(self, report: Dict[str, Any]):
        title = "Rollback preview" if report.get('dry_run') else "Rollback"
        table = Table(title=title, box=box.ROUNDED)
        table.add_column("Operation", style="cyan")
        table.add_column("Restored to")
        table.add_column("Result")

        for result in report['results']:
            outcome = "[green]ok[/]" if result['success'] else f"[red]{result['error']}[/]"
            table.add_row(result['operation_id'], result['source_path'], outcome)
        self.console.print(table)

        if report['halted']:
            self.console.print(f"[bold red]Rollback halted: {report['error']}[/]")
        else:
            self.console.print(f"[bold green]{report['restored']} files restored[/]")

    def organization_stats(self, stats: Dict[str, Any]):
        table = Table(title=f"Organized albums: {stats['total']}", box=box.ROUNDED)
        table.add_column("Group", style="cyan")
        table.add_column("Value", style="magenta")
        table.add_column("Albums", style="yellow", justify="right")

        for mode, count in sorted(stats['by_mode'].items()):
            table.add_row("mode", mode, str(count))
        for quality, count in sorted(stats['by_quality'].items()):
            table.add_row("quality", quality, str(count))
        self.console.print(table)

        batches = stats.get('batches') or []
        if batches:
            recent = Table(title="Recent batches", box=box.ROUNDED)
            recent.add_column("Batch", style="cyan")
            for column in ("Completed", "Failed", "Rolled back"):
                recent.add_column(column, justify="right")
            for batch in batches:
                recent.add_row(batch['batch_id'], str(batch['completed']), str(batch['failed']),
                               str(batch['rolled_back']))
            self.console.print(recent)
