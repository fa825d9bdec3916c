"""Rich console output for turns, referee documents and the run outcome."""

import logging

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule
from rich.text import Text

from battle.models import AgentIdentity, RunOutcome, RunStatus, Turn

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

_BASE_COLORS = {
    "claude": "blue",
    "codex": "green",
    "gemini": "magenta",
}
_FALLBACK_COLORS = ["cyan", "yellow", "bright_blue", "bright_green", "bright_magenta"]


def speaker_color(speaker: str, base_type: str = "") -> str:
    """Stable color per base type; instances of one base share a color."""
    if speaker == "referee":
        return "yellow"
    base = base_type or speaker
    if base in _BASE_COLORS:
        return _BASE_COLORS[base]
    return _FALLBACK_COLORS[sum(base.encode()) % len(_FALLBACK_COLORS)]


def _turn_title(turn: Turn) -> str:
    if turn.kind == "referee":
        return f"[bold]Referee[/bold] (round {turn.round_number})"
    label = " confirmation" if turn.kind == "confirm" else ""
    return f"[bold]{turn.speaker}[/bold]{label} (round {turn.round_number})"


def print_turn(turn: Turn) -> None:
    """Print one reply as a bordered panel."""
    console.print(
        Panel(
            Markdown(turn.text),
            title=_turn_title(turn),
            border_style=speaker_color(turn.speaker, turn.base_type),
        )
    )


def print_header(problem: str, roster: list[AgentIdentity], max_rounds: int, referee: str | None, steering: bool) -> None:
    console.print(Rule("[bold cyan]AI Battle[/bold cyan]"))
    console.print(f"Agents: {', '.join(a.display_name for a in roster)}")
    console.print(f"Max rounds: {max_rounds}")
    if referee:
        mode = "steering" if steering else "free"
        console.print(f"Referee: {referee} ({mode} mode)")
    if steering:
        console.print("Moderator steering: on")
    preview = problem if len(problem) <= 80 else problem[:80] + "..."
    console.print(f"Problem: [italic]{preview}[/italic]\n")


def print_outcome(outcome: RunOutcome) -> None:
    """Print the consensus banner or the no-consensus notice."""
    if outcome.status is RunStatus.CONSENSUS:
        console.print(Rule("[bold green]Consensus reached[/bold green]"))
        console.print(Text(outcome.conclusion or "", style="bold green"))
    else:
        console.print(Rule("[bold yellow]No consensus[/bold yellow]"))
        console.print(
            Text(f"{outcome.rounds_completed} round(s) completed without agreement.", style="yellow")
        )
    if outcome.summary_path:
        console.print(f"\n[dim]Final synthesis: {outcome.summary_path}[/dim]")
