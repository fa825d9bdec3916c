"""Pure dataclasses for the discussion engine. No logic beyond naming, no deps."""

import re
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum

_INSTANCE_RE = re.compile(r"^(?P<base>.+)_(?P<suffix>[0-9]+)$")


class RunStatus(str, Enum):
    RUNNING = "running"
    CONSENSUS = "consensus"
    NO_CONSENSUS = "no_consensus"


@dataclass(frozen=True)
class AgentIdentity:
    base_type: str                      # registry name, e.g. "claude"
    instance_suffix: int | None = None  # 1..k when the base type repeats

    @property
    def display_name(self) -> str:
        if self.instance_suffix is None:
            return self.base_type
        return f"{self.base_type}_{self.instance_suffix}"

    def to_dict(self) -> dict:
        return {"base": self.base_type, "suffix": self.instance_suffix}

    @classmethod
    def from_dict(cls, data: dict) -> "AgentIdentity":
        suffix = data.get("suffix")
        return cls(str(data["base"]), int(suffix) if suffix is not None else None)

    def __str__(self) -> str:
        return self.display_name


def restore_identities(names: list[str]) -> list[AgentIdentity]:
    """Rebuild identities from display names alone.

    A trailing _<n> counts as an instance suffix only when the same base shows
    up more than once, so a lone registry name like "gpt_4" stays whole.
    """
    matches = [_INSTANCE_RE.match(name) for name in names]
    bases = Counter(m.group("base") for m in matches if m)
    identities: list[AgentIdentity] = []
    for name, match in zip(names, matches):
        if match and bases[match.group("base")] > 1:
            identities.append(AgentIdentity(match.group("base"), int(match.group("suffix"))))
        else:
            identities.append(AgentIdentity(name))
    return identities


@dataclass
class RunState:
    agents: list[str]                   # ordered display names
    max_rounds: int
    problem: str
    status: RunStatus = RunStatus.RUNNING
    current_round: int = 0
    conclusion: str | None = None
    roster: list[AgentIdentity] = field(default_factory=list)

    def identities(self) -> list[AgentIdentity]:
        """The roster in order, falling back to the display names for older state files."""
        if self.roster and [agent.display_name for agent in self.roster] == self.agents:
            return list(self.roster)
        return restore_identities(self.agents)

    def to_dict(self) -> dict:
        data = {
            "agents": list(self.agents),
            "max_rounds": self.max_rounds,
            "problem": self.problem,
            "status": self.status.value,
            "current_round": self.current_round,
        }
        if self.conclusion is not None:
            data["conclusion"] = self.conclusion
        if self.roster:
            data["roster"] = [agent.to_dict() for agent in self.roster]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "RunState":
        agents = data.get("agents", [])
        if isinstance(agents, str):
            agents = [a.strip() for a in agents.split(",") if a.strip()]
        return cls(
            agents=list(agents),
            max_rounds=int(data.get("max_rounds", 0)),
            problem=str(data.get("problem", "")),
            status=RunStatus(data.get("status", RunStatus.RUNNING.value)),
            current_round=int(data.get("current_round", 0)),
            conclusion=data.get("conclusion"),
            roster=[AgentIdentity.from_dict(item) for item in data.get("roster", [])],
        )


@dataclass(frozen=True)
class MarkerResult:
    has_marker: bool
    conclusion: str = ""


@dataclass(frozen=True)
class ConsensusProposal:
    proposer: AgentIdentity
    conclusion: str


@dataclass
class RefereeVerdict:
    summary: str
    consensus_decided: bool = False
    conclusion: str | None = None

    @property
    def finalizes(self) -> bool:
        return self.consensus_decided and bool(self.conclusion)


@dataclass
class PeerView:
    """Latest thing a peer said, as shown to the other participants."""

    text: str
    round_number: int                   # round that produced `text`
    skipped_round: int | None = None    # most recent round with no reply


@dataclass
class Turn:
    round_number: int
    speaker: str                        # display name, or "referee"
    text: str
    kind: str = "response"              # "response", "confirm", "referee"
    base_type: str = ""                 # registry name behind `speaker`


@dataclass
class RunOutcome:
    status: RunStatus
    conclusion: str | None
    rounds_completed: int
    summary_path: str | None = None
