"""Shared pytest fixtures."""

from collections.abc import Callable
from contextvars import ContextVar
from pathlib import Path

import pytest

from config.config_loader import AppConfig, DefaultsConfig, ModelConfig, PromptsConfig
from battle.backends.base import Backend
from battle.errors import BackendError
from battle.interaction import EscalationChoice, Operator, StartupChoice
from battle.models import AgentIdentity, RunState
from battle.persistence import RunStore
from battle.referee import Referee
from battle.session import DebateContext


def scripted_model_config(name: str) -> ModelConfig:
    return ModelConfig(
        name=name,
        sdk="test",
        model=f"{name}-model",
        api_key_env=f"TEST_{name.upper()}_KEY",
        timeout_sec=30,
        max_tokens=1024,
        max_retries=1,
        retry_delay_sec=0,
    )


class ScriptedBackend(Backend):
    """Test double Backend answering from a script keyed by session tag.

    A script value may be a string, an exception instance (raised), or a list
    consumed one entry per call. Tags missing from the script get `default`.
    Every call is recorded as (system_prompt, user_message, session_tag).
    """

    def __init__(
        self,
        backend_name: str = "mock",
        script: dict | None = None,
        default: str | Callable[[str, str], str] = "Mock reply",
        available: bool = True,
        max_retries: int = 1,
    ) -> None:
        config = scripted_model_config(backend_name)
        config.max_retries = max_retries
        super().__init__(config)
        self.script = dict(script or {})
        self.default = default
        self.available = available
        self.calls: list[tuple[str, str, str | None]] = []
        self._current_tag: ContextVar[str | None] = ContextVar(f"{backend_name}_tag", default=None)

    async def invoke(self, system_prompt: str, user_message: str, session_tag: str | None = None) -> str:
        self._current_tag.set(session_tag)
        return await super().invoke(system_prompt, user_message, session_tag)

    async def availability_check(self) -> tuple[bool, str]:
        if self.available:
            return True, ""
        return False, f"{self.name()} is offline"

    async def _complete(self, system_prompt: str, user_message: str) -> tuple[str, str]:
        tag = self._current_tag.get()
        self.calls.append((system_prompt, user_message, tag))
        entry = self.script.get(tag, self.default)
        if isinstance(entry, list):
            entry = entry.pop(0) if entry else ""
        if isinstance(entry, Exception):
            raise entry
        if callable(entry):
            entry = entry(system_prompt, user_message)
        return entry, f'{{"text": {entry!r}}}'

    def tags(self) -> list[str | None]:
        return [tag for _, _, tag in self.calls]

    def prompt_for(self, tag: str) -> str:
        return next(user for _, user, t in self.calls if t == tag)


def failing(backend_name: str) -> BackendError:
    return BackendError(backend_name, "connection reset")


class ScriptedOperator(Operator):
    """Operator double answering from queues and recording every question."""

    def __init__(
        self,
        escalations: list[EscalationChoice] | None = None,
        steering: list[str] | None = None,
        extensions: list[int] | None = None,
        startup: StartupChoice = StartupChoice.FRESH,
    ) -> None:
        self.escalations = list(escalations or [])
        self.steering = list(steering or [])
        self.extensions = list(extensions or [])
        self.startup = startup
        self.failures: list[str] = []
        self.steering_rounds: list[int] = []
        self.extension_calls: list[tuple[int, int]] = []
        self.startup_calls: list[tuple[RunState | None, int, str | None]] = []

    def on_invocation_failure(self, label: str, error: Exception | None) -> EscalationChoice:
        self.failures.append(label)
        return self.escalations.pop(0) if self.escalations else EscalationChoice.SKIP

    def solicit_steering(self, round_number: int) -> str:
        self.steering_rounds.append(round_number)
        return self.steering.pop(0) if self.steering else ""

    def decide_extension(self, completed_rounds: int, max_rounds: int) -> int:
        self.extension_calls.append((completed_rounds, max_rounds))
        return self.extensions.pop(0) if self.extensions else 0

    def choose_startup(self, state, record_count, resume_refusal) -> StartupChoice:
        self.startup_calls.append((state, record_count, resume_refusal))
        return self.startup


@pytest.fixture
def sample_prompts_config() -> PromptsConfig:
    return PromptsConfig(
        system="You are in a discussion of at most {max_rounds} rounds.",
        opening="Problem: {problem}",
        followup="Other views:\n{peer_responses}Rounds left: {remaining}",
        confirm="{proposer} proposes: {conclusion}. Reply AGREED: <conclusion> if you agree.",
        referee_free="You are the referee. End with CONSENSUS: YES or NO.",
        referee_steering="You are the referee. Build a comparison table.",
        final_synthesis="Write the final summary.",
        instructions="# {agent}\nRounds: {max_rounds}\n{problem}\n",
    )


@pytest.fixture
def sample_model_config() -> ModelConfig:
    return ModelConfig(
        name="test_model",
        sdk="test",
        model="test-model-1",
        api_key_env="TEST_API_KEY",
        timeout_sec=30,
        max_tokens=1024,
        base_url=None,
        max_retries=3,
        retry_delay_sec=0,
    )


@pytest.fixture
def sample_app_config(sample_prompts_config: PromptsConfig) -> AppConfig:
    model_cfg = ModelConfig(
        name="claude",
        sdk="anthropic",
        model="claude-sonnet-4-5",
        api_key_env="ANTHROPIC_API_KEY",
        timeout_sec=60,
        max_tokens=4096,
    )
    return AppConfig(
        defaults=DefaultsConfig(agents="claude,codex", max_rounds=4),
        models={"claude": model_cfg},
        prompts=sample_prompts_config,
        available_providers={"claude"},
    )


@pytest.fixture
def store(tmp_path: Path) -> RunStore:
    store = RunStore(tmp_path)
    store.prepare()
    return store


def make_context(
    store: RunStore,
    prompts: PromptsConfig,
    backends: list[ScriptedBackend],
    roster: list[AgentIdentity] | None = None,
    operator: Operator | None = None,
    max_rounds: int = 3,
    steering: bool = False,
    referee: ScriptedBackend | None = None,
    problem: str = "Tabs or spaces?",
) -> DebateContext:
    """Build a DebateContext; the roster defaults to one seat per backend."""
    by_name = {backend.name(): backend for backend in backends}
    turns: list = []
    ctx = DebateContext(
        problem=problem,
        roster=roster or [AgentIdentity(name) for name in by_name],
        backends=by_name,
        prompts=prompts,
        store=store,
        operator=operator or ScriptedOperator(),
        max_rounds=max_rounds,
        steering=steering,
        referee=Referee(referee, prompts, steering=steering) if referee else None,
        on_turn=turns.append,
    )
    ctx.turns = turns  # type: ignore[attr-defined]
    return ctx
