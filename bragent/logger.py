"""
Logging for Bragent.

Keeps the in-memory log of a run, renders it with rich console output and
sets up module logging. Nothing is written to disk.
"""

import logging
from collections import deque
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .safety import RiskLevel
from .types import TaskResult


class LogType(str, Enum):
    INFO = "info"
    ACTION = "action"
    THOUGHT = "thought"
    ERROR = "error"
    SUCCESS = "success"
    WARNING = "warning"
    CONFIRM = "confirm"


LOG_STYLES = {
    LogType.INFO: "dim",
    LogType.ACTION: "cyan",
    LogType.THOUGHT: "magenta",
    LogType.ERROR: "bold red",
    LogType.SUCCESS: "green",
    LogType.WARNING: "yellow",
    LogType.CONFIRM: "bold yellow",
}

RISK_COLORS = {
    RiskLevel.LOW: "green",
    RiskLevel.MEDIUM: "yellow",
    RiskLevel.HIGH: "red",
    RiskLevel.CRITICAL: "bold red",
}


def configure_logging(debug: bool = False) -> None:
    """Route module loggers through rich.

    Args:
        debug: Log at DEBUG instead of WARNING
    """
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(name)s: %(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=debug)],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


class RunLogger:
    """Log of agent activity, kept as a bounded ring of entries.

    Each entry is ``{"time", "type", "message"}``. Listeners are called for
    every new entry, which is how the session streams logs to clients.
    """

    def __init__(
        self,
        enable_console: bool = True,
        max_entries: int = 100,
        console: Optional[Console] = None,
    ):
        """Initialize the run logger.

        Args:
            enable_console: Whether to print to console
            max_entries: Size of the in-memory ring
            console: Console to print to (a new one when omitted)
        """
        self.console = (console or Console()) if enable_console else None
        self._entries: deque[dict[str, str]] = deque(maxlen=max_entries)
        self._listeners: list[Callable[[dict[str, str]], Any]] = []
        self.step_count = 0

    def add_listener(self, listener: Callable[[dict[str, str]], Any]) -> None:
        self._listeners.append(listener)

    def log(self, message: str, log_type: LogType = LogType.INFO) -> dict[str, str]:
        """Record an entry, print it and notify listeners."""
        entry = {
            "time": datetime.now().isoformat(timespec="seconds"),
            "type": log_type.value,
            "message": message,
        }
        self._entries.append(entry)

        if self.console:
            style = LOG_STYLES[log_type]
            self.console.print(Text(message, style=style))

        for listener in self._listeners:
            listener(entry)
        return entry

    def entries(self, limit: Optional[int] = None) -> list[dict[str, str]]:
        """Most recent entries, oldest first."""
        items = list(self._entries)
        return items[-limit:] if limit else items

    def clear(self) -> None:
        self._entries.clear()
        self.step_count = 0

    # ------------------------------------------------------------------
    # Console rendering
    # ------------------------------------------------------------------

    def print_header(self, task: str, model: str) -> None:
        """Print the run header to console."""
        if not self.console:
            return

        self.console.print()
        self.console.print(Panel(
            f"[bold cyan]Task:[/bold cyan] {task}\n[dim]Model:[/dim] {model}",
            title="Bragent",
            border_style="cyan",
        ))
        self.console.print()

    def print_step(self, description: str, risk: RiskLevel = RiskLevel.LOW) -> None:
        """Print a dispatched step.

        Args:
            description: One-line description of the action
            risk: Classified risk level
        """
        self.step_count += 1
        if not self.console:
            return

        risk_color = RISK_COLORS[risk]
        step_text = Text()
        step_text.append(f"Step {self.step_count}: ", style="bold")
        step_text.append(description, style="bold cyan")
        if risk != RiskLevel.LOW:
            step_text.append(f"  [{risk.value}]", style=risk_color)
        self.console.print(step_text)

    def print_result(self, success: bool, message: str) -> None:
        """Print an action result to console."""
        if not self.console:
            return

        if success:
            self.console.print(f"  [green]✓[/green] {message}")
        else:
            self.console.print(f"  [red]✗[/red] {message}")

    def print_final_answer(self, result: TaskResult) -> None:
        """Print the final answer to console."""
        if not self.console:
            return

        self.console.print()
        self.console.print(Panel(
            result.summary,
            title="Final Answer" if result.success else f"Stopped: {result.status.value}",
            border_style="green" if result.success else "red",
        ))

    def print_summary(self, result: TaskResult) -> None:
        """Print the run summary to console."""
        if not self.console:
            return

        table = Table(title="Run Summary", show_header=False)
        table.add_column("Property", style="dim")
        table.add_column("Value")

        table.add_row("Status", result.status.value)
        table.add_row("Actions Executed", str(len(result.actions)))
        table.add_row("Errors", str(len(result.errors)))
        table.add_row("Duration", f"{result.duration:.1f}s")

        self.console.print()
        self.console.print(table)
