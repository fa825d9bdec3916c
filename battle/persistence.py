"""Run artifacts on disk and the resume decision.

Layout under the working directory::

    problem.md                          discussion topic (read-only for the engine)
    rounds/round_<N>_<agent>.md         one reply per (round, agent)
    rounds/round_<N>_<agent>_confirm.md confirmation replies
    rounds/referee_round_<N>.md         referee documents
    rounds/steering_round_<N>.md        moderator injections (empty file = none)
    consensus.md                        final conclusion
    SUMMARY.md                          referee's final synthesis
    .sessions/                          raw backend captures (never read back)
    .debate.json                        RunState
    .debate.log                         run log
"""

import json
import logging
import os
import re
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from battle.errors import ResumeStateInconsistent
from battle.models import AgentIdentity, PeerView, RunState, RunStatus

logger = logging.getLogger(__name__)

PROBLEM_FILE = "problem.md"
ROUNDS_DIR = "rounds"
SESSIONS_DIR = ".sessions"
STATE_FILE = ".debate.json"
LOG_FILE = ".debate.log"
CONSENSUS_FILE = "consensus.md"
SUMMARY_FILE = "SUMMARY.md"
REFEREE_PROMPT_FILE = "referee.md"

_ROUND_DOC_RE = re.compile(r"^(?:round|referee_round|steering_round)_(?P<round>[0-9]+)")


def write_text_atomic(path: Path, text: str) -> None:
    """Atomic write: write to temp file, fsync, then rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except Exception:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


def _read_text(path: Path) -> str | None:
    return path.read_text(encoding="utf-8") if path.exists() else None


class RunStore:
    """Reads and writes every run artifact below one working directory."""

    def __init__(self, workdir: Path) -> None:
        self.workdir = workdir
        self.rounds_dir = workdir / ROUNDS_DIR
        self.sessions_dir = workdir / SESSIONS_DIR
        self.state_path = workdir / STATE_FILE
        self.log_path = workdir / LOG_FILE
        self.problem_path = workdir / PROBLEM_FILE
        self.consensus_path = workdir / CONSENSUS_FILE
        self.summary_path = workdir / SUMMARY_FILE
        self.referee_prompt_path = workdir / REFEREE_PROMPT_FILE

    # --- RunState ---

    def load_state(self) -> RunState | None:
        """Return the persisted RunState, or None when absent or unreadable."""
        raw = _read_text(self.state_path)
        if raw is None:
            return None
        try:
            return RunState.from_dict(json.loads(raw))
        except (json.JSONDecodeError, ValueError, TypeError) as exc:
            logger.warning("Invalid run state in %s: %s", self.state_path, exc)
            return None

    def save_state(self, state: RunState) -> None:
        write_text_atomic(self.state_path, json.dumps(state.to_dict(), indent=2, ensure_ascii=False))

    def has_history(self) -> bool:
        return self.state_path.exists() or (self.rounds_dir.exists() and any(self.rounds_dir.iterdir()))

    def record_count(self) -> int:
        if not self.rounds_dir.exists():
            return 0
        return len(list(self.rounds_dir.glob("*.md")))

    def reset(self) -> None:
        """Remove every artifact of a previous run (problem.md and referee.md stay)."""
        for directory in (self.rounds_dir, self.sessions_dir):
            shutil.rmtree(directory, ignore_errors=True)
        for path in (self.state_path, self.consensus_path, self.summary_path, self.log_path):
            path.unlink(missing_ok=True)

    def prepare(self) -> None:
        self.rounds_dir.mkdir(parents=True, exist_ok=True)
        self.sessions_dir.mkdir(parents=True, exist_ok=True)

    # --- round records ---

    def response_path(self, round_number: int, agent: AgentIdentity, confirm: bool = False) -> Path:
        suffix = "_confirm" if confirm else ""
        return self.rounds_dir / f"round_{round_number}_{agent.display_name}{suffix}.md"

    def write_response(self, round_number: int, agent: AgentIdentity, text: str, confirm: bool = False) -> Path:
        path = self.response_path(round_number, agent, confirm)
        if path.exists():
            logger.debug("Overwriting %s", path.name)
        write_text_atomic(path, text)
        return path

    def read_response(self, round_number: int, agent: AgentIdentity) -> str | None:
        return _read_text(self.response_path(round_number, agent))

    def referee_path(self, round_number: int) -> Path:
        return self.rounds_dir / f"referee_round_{round_number}.md"

    def write_referee(self, round_number: int, text: str) -> Path:
        path = self.referee_path(round_number)
        write_text_atomic(path, text)
        return path

    def steering_path(self, round_number: int) -> Path:
        return self.rounds_dir / f"steering_round_{round_number}.md"

    def write_steering(self, round_number: int, text: str) -> Path:
        path = self.steering_path(round_number)
        write_text_atomic(path, text)
        return path

    def read_steering(self, round_number: int) -> str | None:
        return _read_text(self.steering_path(round_number))

    # --- terminal documents ---

    def write_consensus(self, conclusion: str) -> Path:
        write_text_atomic(self.consensus_path, conclusion + "\n")
        return self.consensus_path

    def read_consensus(self) -> str | None:
        text = _read_text(self.consensus_path)
        return text.strip() if text is not None else None

    def write_summary(self, text: str) -> Path:
        write_text_atomic(self.summary_path, text)
        return self.summary_path

    def write_instructions(self, filename: str, text: str) -> Path:
        path = self.workdir / filename
        write_text_atomic(path, text)
        return path

    def read_referee_instructions(self) -> str:
        return (_read_text(self.referee_prompt_path) or "").strip()

    # --- transcript ---

    def round_documents(self) -> list[tuple[int, str, str]]:
        """Return (round, filename, text) for every round document, in round order."""
        if not self.rounds_dir.exists():
            return []
        docs: list[tuple[int, str, str]] = []
        for path in self.rounds_dir.glob("*.md"):
            match = _ROUND_DOC_RE.match(path.name)
            if not match:
                continue
            docs.append((int(match.group("round")), path.name, path.read_text(encoding="utf-8")))
        docs.sort(key=lambda d: (d[0], d[1]))
        return docs


def instruction_filename(base_file: str, agent: AgentIdentity) -> str:
    """CLAUDE.md -> CLAUDE_2.md for the second claude seat."""
    if agent.instance_suffix is None:
        return base_file
    stem, dot, ext = base_file.rpartition(".")
    if not dot:
        return f"{base_file}_{agent.instance_suffix}"
    return f"{stem}_{agent.instance_suffix}.{ext}"


# --- resume ---


@dataclass
class ResumeSnapshot:
    """State reloaded from disk to continue a run from `next_round`."""

    state: RunState
    roster: list[AgentIdentity]
    next_round: int
    peers: dict[str, PeerView] = field(default_factory=dict)
    steering: str = ""
    steering_missing: bool = False


def check_resumable(store: RunStore, state: RunState | None) -> None:
    """Validate that the persisted run can be resumed.

    Raises:
        ResumeStateInconsistent: With the reason the resume is refused.
    """
    if state is None:
        raise ResumeStateInconsistent("no readable run state")
    if state.current_round <= 0:
        raise ResumeStateInconsistent("no completed round recorded")
    if not state.agents:
        raise ResumeStateInconsistent("run state lists no agents")
    missing = [
        agent.display_name
        for agent in state.identities()
        if store.read_response(state.current_round, agent) is None
    ]
    if missing:
        raise ResumeStateInconsistent(
            f"round {state.current_round} has no reply from: {', '.join(missing)}"
        )


def load_resume_snapshot(store: RunStore, state: RunState) -> ResumeSnapshot:
    """Reload the last completed round as peer context. Call check_resumable first."""
    check_resumable(store, state)
    last = state.current_round
    roster = state.identities()
    peers = {
        agent.display_name: PeerView(text=store.read_response(last, agent) or "", round_number=last)
        for agent in roster
    }
    steering = store.read_steering(last)
    return ResumeSnapshot(
        state=state,
        roster=roster,
        next_round=last + 1,
        peers=peers,
        steering=(steering or "").strip(),
        steering_missing=steering is None,
    )
