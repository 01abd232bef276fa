"""
Approval system abstraction for Bragent.

Provides a unified async interface for security confirmations and user
questions that works from the console and from the HTTP session.
"""

import asyncio
from abc import ABC, abstractmethod

from .safety import RiskLevel, SecurityVerdict


class Approver(ABC):
    """Abstract base class for confirmation and user-input handlers.

    Both methods suspend the agent loop until the user answers. Cancelling
    the awaiting task (task stop) must abort the wait.
    """

    @abstractmethod
    async def request_approval(self, verdict: SecurityVerdict) -> bool:
        """Ask the user to approve a risky action.

        Args:
            verdict: Classifier verdict, including the action

        Returns:
            True to dispatch the action, False to cancel it
        """

    @abstractmethod
    async def ask_user(self, question: str, confirmation: bool = False) -> str:
        """Ask the user a free-text question.

        Args:
            question: Question from the oracle
            confirmation: The oracle asks to confirm a step rather than for data

        Returns:
            The user's answer (may be empty)
        """


class ConsoleApprover(Approver):
    """CLI approval via Rich prompts.

    Used when running the agent from the command line.
    """

    def __init__(self):
        from rich.console import Console
        from rich.prompt import Prompt

        self.console = Console()
        self.Prompt = Prompt

    async def request_approval(self, verdict: SecurityVerdict) -> bool:
        """Request approval via Rich interactive prompt."""
        risk_color = {
            RiskLevel.LOW: "green",
            RiskLevel.MEDIUM: "yellow",
            RiskLevel.HIGH: "red",
            RiskLevel.CRITICAL: "bold red",
        }[verdict.risk_level]

        self.console.print()
        self.console.print(f"[{risk_color}]{verdict.format_warning()}[/{risk_color}]")
        self.console.print()

        # Prompt.ask blocks, keep it off the event loop
        response = await asyncio.to_thread(
            self.Prompt.ask,
            "[yellow]Approve action?[/yellow]",
            choices=["y", "n"],
            default="n",
        )
        return response == "y"

    async def ask_user(self, question: str, confirmation: bool = False) -> str:
        self.console.print()
        return await asyncio.to_thread(
            self.Prompt.ask,
            f"[cyan]Agent asks:[/cyan] {question}",
            default="",
        )


class AutoApprover(Approver):
    """Automatically approve all actions.

    Used when auto-approve mode is enabled and in tests.
    """

    def __init__(self, answer: str = ""):
        self.answer = answer

    async def request_approval(self, verdict: SecurityVerdict) -> bool:
        """Auto-approve without prompting."""
        return True

    async def ask_user(self, question: str, confirmation: bool = False) -> str:
        return self.answer


def get_approver(auto_approve: bool = False) -> Approver:
    """Get the approver for a console run.

    Args:
        auto_approve: If True, always return AutoApprover

    Returns:
        Appropriate Approver instance
    """
    if auto_approve:
        return AutoApprover()
    return ConsoleApprover()
