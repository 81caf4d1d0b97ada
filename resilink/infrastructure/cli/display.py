import json
import logging
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.box import ROUNDED, SIMPLE
from rich.table import Table
from rich.text import Text

from resilink.domain.interfaces.user_interface import UserInterface
from resilink.domain.models.common import HealthSnapshot

logger = logging.getLogger(__name__)

STATE_STYLES = {
    'CLOSED': 'bold green',
    'HALF_OPEN': 'bold yellow',
    'OPEN': 'bold red',
}
LEVEL_STYLES = {
    'NORMAL': 'bold green',
    'REDUCED': 'bold yellow',
    'MINIMAL': 'bold dark_orange',
    'EMERGENCY': 'bold red',
}

class ConsoleDisplay(UserInterface):
    """Concrete implementation of UserInterface using the rich library for console output."""

    def __init__(self, console: Optional[Console] = None):
        """Initializes the rich Console."""
        self._console = console or Console()

    @property
    def console(self) -> Console:
        """Get the Rich console instance for direct operations."""
        return self._console

    def display_result(self, result: Any, **kwargs: Any) -> None:
        """Prints a result as pretty JSON inside a titled panel."""
        title = kwargs.get("title", "Result")
        count = len(result) if isinstance(result, (list, dict)) else None
        header = f"[bold white]{title}[/bold white]"
        if count is not None:
            header += f" [dim]({count} items)[/dim]"
        try:
            body = json.dumps(result, indent=2, default=str)
        except (TypeError, ValueError) as e:
            logger.error(f"Failed to serialize result for display: {e}")
            body = repr(result)
        self.console.print(Panel(Text(body), title=header, title_align="left", box=ROUNDED, padding=(0, 1)))

    def _breaker_table(self, snapshot: HealthSnapshot) -> Table:
        stats = snapshot['breaker']
        table = Table(title=f"Circuit breaker: {stats['name']}", box=SIMPLE, show_header=False)
        table.add_column("Metric", style="cyan")
        table.add_column("Value", justify="right")
        table.add_row("State", Text(stats['state'], style=STATE_STYLES.get(stats['state'], '')))
        table.add_row("Consecutive failures", str(stats['failure_count']))
        table.add_row("Requests", str(stats['total_requests']))
        table.add_row("Failures", str(stats['total_failures']))
        table.add_row("Fallbacks", str(stats['total_fallbacks']))
        table.add_row("Success rate", f"{stats['success_rate']:.2f}%")
        table.add_row("Fallback rate", f"{stats['fallback_rate']:.2f}%")
        return table

    def _quota_table(self, snapshot: HealthSnapshot) -> Table:
        table = Table(title="Daily quotas", box=SIMPLE)
        table.add_column("Resource", style="cyan")
        table.add_column("Used", justify="right")
        table.add_column("Limit", justify="right")
        table.add_column("Usage", justify="right")
        table.add_column("Remaining", justify="right")
        table.add_column("Resets in", justify="right")
        for resource, usage in snapshot['quotas'].items():
            percentage = usage['percentage']
            style = "red" if percentage >= 95 else "yellow" if percentage >= 80 else "green"
            minutes = usage['reset_in_ms'] // 60000
            table.add_row(
                resource,
                str(usage['used']),
                str(usage['limit']),
                Text(f"{percentage:.1f}%", style=style),
                str(usage['remaining']),
                f"{minutes // 60}h {minutes % 60:02d}m",
            )
        return table

    def display_health(self, snapshot: HealthSnapshot, recent_events: Optional[List[Dict[str, Any]]] = None) -> None:
        """Renders breaker, quota and degradation state, plus recent events if given."""
        degradation = snapshot['degradation']
        level = degradation['level']
        self.console.print(Panel(
            f"[{LEVEL_STYLES.get(level, 'bold')}]{level}[/] - {degradation['description']}\n"
            f"[dim]Cached results: {degradation['cache_size']}[/dim]",
            title="[bold white]Degradation[/bold white]",
            title_align="left",
            box=ROUNDED,
        ))
        self.console.print(self._breaker_table(snapshot))
        self.console.print(self._quota_table(snapshot))

        if recent_events:
            table = Table(title="Recent events", box=SIMPLE)
            table.add_column("Event", style="cyan")
            table.add_column("Details")
            for event in recent_events:
                details = ", ".join(f"{k}={v}" for k, v in event.items() if k not in ('event', 'timestamp'))
                table.add_row(event['event'], details)
            self.console.print(table)

    def display_error(self, error_message: str, **kwargs: Any) -> None:
        self.console.print(f"[bold red]Error:[/bold red] {error_message}")

    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        self.console.print(f"[bold yellow]Warning:[/bold yellow] {warning_message}")

    def display_info(self, info_message: str, **kwargs: Any) -> None:
        self.console.print(f"[cyan]{info_message}[/cyan]")
