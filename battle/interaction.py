"""Operator decisions: the blocking human touch points of a run.

The engine only talks to the ``Operator`` interface; ``ConsoleOperator``
implements it with click prompts so tests can substitute scripted answers.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum

import click
from rich.console import Console

from battle.models import RunState

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

STEERING_SENTINEL = "END"


class EscalationChoice(str, Enum):
    RETRY = "r"
    SKIP = "s"
    ABORT = "q"


class StartupChoice(str, Enum):
    FRESH = "fresh"
    RESUME = "resume"
    CANCEL = "cancel"


class Operator(ABC):
    @abstractmethod
    def on_invocation_failure(self, label: str, error: Exception | None) -> EscalationChoice:
        """Decide what to do after a backend used up its retries."""
        ...

    @abstractmethod
    def solicit_steering(self, round_number: int) -> str:
        """Return moderator text for the next round ("" = none)."""
        ...

    @abstractmethod
    def decide_extension(self, completed_rounds: int, max_rounds: int) -> int:
        """Return how many rounds to add; 0 ends the run."""
        ...

    @abstractmethod
    def choose_startup(
        self,
        state: RunState | None,
        record_count: int,
        resume_refusal: str | None,
    ) -> StartupChoice:
        """Choose between a fresh start, resuming, or cancelling when history exists."""
        ...


class ConsoleOperator(Operator):
    """Interactive operator on the terminal."""

    def on_invocation_failure(self, label: str, error: Exception | None) -> EscalationChoice:
        console.print()
        console.rule(f"[bold red]{label} failed[/bold red]")
        if error is not None:
            console.print(f"  [dim]{error}[/dim]")
        console.print("  [bold]r)[/bold] retry")
        console.print("  [bold]s)[/bold] skip this agent's turn")
        console.print("  [bold]q)[/bold] abort the discussion")
        choice = click.prompt(
            "Choose",
            type=click.Choice(["r", "s", "q"], case_sensitive=False),
            default="r",
        )
        return EscalationChoice(choice.lower())

    def solicit_steering(self, round_number: int) -> str:
        console.print()
        console.rule(f"[cyan]Moderator input [end of round {round_number}][/cyan]")
        console.print(
            f"[cyan]Add information for the next round (Enter to skip; "
            f"finish multi-line input with a blank line or {STEERING_SENTINEL}):[/cyan]"
        )
        lines: list[str] = []
        while True:
            line = click.prompt(">", default="", show_default=False, prompt_suffix=" ")
            if not line.strip() or line.strip() == STEERING_SENTINEL:
                break
            lines.append(line)
        text = "\n".join(lines)
        if not text:
            console.print("[cyan]  (skipped)[/cyan]")
        return text

    def decide_extension(self, completed_rounds: int, max_rounds: int) -> int:
        console.print()
        console.print(f"[cyan]{completed_rounds} round(s) completed without consensus.[/cyan]")
        return click.prompt(
            "Rounds to add (0 or Enter ends the discussion)",
            type=click.IntRange(min=0),
            default=0,
            show_default=False,
        )

    def choose_startup(
        self,
        state: RunState | None,
        record_count: int,
        resume_refusal: str | None,
    ) -> StartupChoice:
        console.print("[yellow]Found a previous discussion in this directory[/yellow]")
        if state is not None:
            console.print(f"  Status: [bold]{state.status.value}[/bold]")
            console.print(f"  Round:  [bold]{state.current_round}/{state.max_rounds}[/bold]")
            console.print(f"  Agents: [bold]{', '.join(state.agents)}[/bold]")
        console.print(f"  Records: {record_count}")
        console.print()

        console.print("  [bold]1)[/bold] discard history and start fresh")
        if resume_refusal is None and state is not None:
            console.print(f"  [bold]2)[/bold] resume from round {state.current_round + 1}")
            console.print("  [bold]3)[/bold] cancel")
            choice = click.prompt("Choose", type=click.Choice(["1", "2", "3"]), default="3")
            return {"1": StartupChoice.FRESH, "2": StartupChoice.RESUME}.get(choice, StartupChoice.CANCEL)

        if resume_refusal:
            console.print(f"  [dim](resume unavailable: {resume_refusal})[/dim]")
        console.print("  [bold]2)[/bold] cancel")
        choice = click.prompt("Choose", type=click.Choice(["1", "2"]), default="2")
        return StartupChoice.FRESH if choice == "1" else StartupChoice.CANCEL
