"""Click CLI: startup prompt, config and problem loading, roster checks, the run."""

import asyncio
import logging
import sys
from dataclasses import dataclass
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler

from config.config_loader import AppConfig, load_config
from battle.errors import (
    BackendUnavailable,
    ProblemFileError,
    ResumeStateInconsistent,
    RosterInvalid,
    RunAborted,
)
from battle.executor import RoundExecutor
from battle.interaction import ConsoleOperator, Operator, StartupChoice
from battle.output import print_header, print_outcome, print_turn
from battle.persistence import ResumeSnapshot, RunStore, check_resumable, load_resume_snapshot
from battle.problem import Problem, load_problem
from battle.referee import Referee
from battle.registry import build_registry
from battle.roster import parse_roster, resolve_roster
from battle.session import DebateContext

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


@dataclass
class RunSettings:
    agents: str
    max_rounds: int
    steering: bool
    referee: str | None                 # base name, or None when no referee runs


def _setup_logging(verbose: bool, log_path: Path | None = None) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    handlers: list[logging.Handler] = [RichHandler(rich_tracebacks=True, show_path=False)]
    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        handlers.append(file_handler)
    logging.basicConfig(level=level, format="%(message)s", handlers=handlers, force=True)


def resolve_run_settings(
    config: AppConfig,
    problem: Problem | None,
    agents: str | None,
    rounds: int | None,
    steer: bool,
    referee: str | None,
) -> RunSettings:
    """Merge run parameters. Precedence: CLI flag > problem frontmatter > settings.yaml.

    ``referee`` is None when the flag was not given and "" when it was given
    without a name; "" resolves to the first roster member's base type.
    """
    meta_agents = problem.agents if problem else None
    meta_rounds = problem.rounds if problem else None
    meta_referee = problem.referee if problem else None

    effective_agents = agents or meta_agents or config.defaults.agents
    effective_rounds = (
        rounds if rounds is not None
        else meta_rounds if meta_rounds is not None
        else config.defaults.max_rounds
    )
    effective_steering = steer or (problem.steering if problem else False) or config.defaults.steering

    effective_referee = (
        referee if referee is not None
        else meta_referee if meta_referee is not None
        else config.defaults.referee
    )
    if effective_referee == "":
        names = parse_roster(effective_agents)
        effective_referee = names[0] if names else None

    return RunSettings(
        agents=effective_agents,
        max_rounds=effective_rounds,
        steering=effective_steering,
        referee=effective_referee,
    )


def _startup(store: RunStore, operator: Operator) -> ResumeSnapshot | None:
    """Offer fresh start / resume / cancel when a previous run exists.

    Returns a snapshot when resuming, None for a fresh run. Exits on cancel.
    """
    if not store.has_history():
        return None

    state = store.load_state()
    refusal: str | None = None
    try:
        check_resumable(store, state)
    except ResumeStateInconsistent as exc:
        refusal = str(exc)

    choice = operator.choose_startup(state, store.record_count(), refusal)
    if choice is StartupChoice.CANCEL:
        console.print("Cancelled.")
        sys.exit(0)
    if choice is StartupChoice.RESUME and refusal is None and state is not None:
        return load_resume_snapshot(store, state)

    store.reset()
    console.print("[green]Previous discussion cleared, starting fresh.[/green]")
    return None


def _load_referee_instructions(store: RunStore) -> str:
    if store.referee_prompt_path.exists():
        logger.info("Loaded custom referee instructions from %s", store.referee_prompt_path.name)
        return store.read_referee_instructions()
    console.print(f"[yellow]{store.referee_prompt_path.name} not found, the referee will use default prompts.[/yellow]")
    if not click.confirm("Continue?", default=True):
        sys.exit(0)
    return ""


async def _run(
    config: AppConfig,
    store: RunStore,
    problem_text: str,
    settings: RunSettings,
    operator: Operator,
    snapshot: ResumeSnapshot | None,
) -> None:
    registry = build_registry(config, capture_dir=store.sessions_dir)

    roster_spec = [agent.base_type for agent in snapshot.roster] if snapshot else settings.agents
    extra = [settings.referee] if settings.referee else []
    roster = await resolve_roster(roster_spec, registry, extra_backends=extra)
    if snapshot is not None:
        roster = snapshot.roster

    referee = None
    if settings.referee:
        referee = Referee(
            registry.get(settings.referee),
            config.prompts,
            steering=settings.steering,
            extra_instructions=_load_referee_instructions(store),
        )

    print_header(problem_text, roster, settings.max_rounds, settings.referee, settings.steering)

    ctx = DebateContext(
        problem=problem_text,
        roster=roster,
        backends={agent.base_type: registry.get(agent.base_type) for agent in roster},
        prompts=config.prompts,
        store=store,
        operator=operator,
        max_rounds=settings.max_rounds,
        steering=settings.steering,
        referee=referee,
        on_turn=print_turn,
    )
    outcome = await RoundExecutor(ctx).run(resume=snapshot)
    print_outcome(outcome)


@click.command()
@click.option("--agents", default=None, help="Comma-separated agents; repeat a name for self-debate (claude,claude)")
@click.option("--rounds", default=None, type=click.IntRange(min=1), help="Maximum rounds (default: from config)")
@click.option("--steer", is_flag=True, default=False, help="Ask the moderator for input after every round")
@click.option("--referee", default=None, is_flag=False, flag_value="",
              help="Enable the referee; NAME defaults to the first agent")
@click.option("--dir", "workdir", default=".", type=click.Path(file_okay=False, path_type=Path),
              help="Working directory holding problem.md and run artifacts")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
@click.version_option(package_name="ai-battle")
def main(
    agents: str | None,
    rounds: int | None,
    steer: bool,
    referee: str | None,
    workdir: Path,
    verbose: bool,
) -> None:
    """AI Battle -- let AI agents discuss problem.md until they agree.

    \b
    Examples:
      ai-battle
      ai-battle --agents claude,gemini --rounds 5
      ai-battle --agents claude,claude --referee codex
      ai-battle --steer --referee
    """
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")

    workdir = workdir.resolve()
    load_dotenv(workdir / ".env")
    load_dotenv()

    store = RunStore(workdir)
    operator = ConsoleOperator()
    snapshot = _startup(store, operator)
    _setup_logging(verbose, store.log_path)
    if snapshot is not None:
        logger.info(
            "Resuming at round %d with round %d replies from %s",
            snapshot.next_round,
            snapshot.state.current_round,
            ", ".join(agent.display_name for agent in snapshot.roster),
        )

    try:
        config = load_config()
    except FileNotFoundError as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)

    problem: Problem | None = None
    try:
        problem = load_problem(store.problem_path)
    except ProblemFileError as exc:
        if snapshot is None:
            console.print(f"[bold red]Error:[/bold red] {exc}")
            sys.exit(1)
        logger.warning("%s; continuing with the persisted problem", exc)

    settings = resolve_run_settings(config, problem, agents, rounds, steer, referee)
    problem_text = snapshot.state.problem if snapshot else problem.text

    try:
        asyncio.run(_run(config, store, problem_text, settings, operator, snapshot))
    except (RosterInvalid, BackendUnavailable) as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        sys.exit(1)
    except RunAborted as exc:
        console.print(f"[bold red]{exc}[/bold red] Progress is saved; run again to resume.")
        sys.exit(1)


if __name__ == "__main__":
    main()
