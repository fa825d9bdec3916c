"""The explicit run context threaded through the executor and its helpers."""

from collections.abc import Callable
from dataclasses import dataclass

from config.config_loader import PromptsConfig
from battle.backends.base import Backend
from battle.interaction import Operator
from battle.models import AgentIdentity, Turn
from battle.persistence import RunStore
from battle.referee import Referee


@dataclass
class DebateContext:
    problem: str
    roster: list[AgentIdentity]
    backends: dict[str, Backend]        # keyed by base type; self-debate seats share one
    prompts: PromptsConfig
    store: RunStore
    operator: Operator
    max_rounds: int
    steering: bool = False
    referee: Referee | None = None
    on_turn: Callable[[Turn], None] | None = None

    def backend_for(self, agent: AgentIdentity) -> Backend:
        return self.backends[agent.base_type]

    def emit(self, turn: Turn) -> None:
        if self.on_turn:
            self.on_turn(turn)
