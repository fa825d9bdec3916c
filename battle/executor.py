"""Round executor: parallel opening round, sequential follow-up rounds.

State machine::

    INIT -> ROUND1_PARALLEL -> ROUND_N_SEQUENTIAL (loop) -> CONSENSUS | NO_CONSENSUS | ABORTED

Abort is not a state of this class: ``RunAborted`` propagates to the caller
and the persisted RunState stays ``running`` so the run can be resumed.
"""

import asyncio
import logging

from battle.consensus import run_handshake
from battle.context import followup_prompt, opening_prompt, round_replies, system_prompt
from battle.errors import InvocationExhausted, RefereeSilent
from battle.escalation import invoke_with_escalation
from battle.markers import parse_agreement
from battle.models import (
    AgentIdentity,
    ConsensusProposal,
    PeerView,
    RefereeVerdict,
    RunOutcome,
    RunState,
    RunStatus,
    Turn,
)
from battle.persistence import ResumeSnapshot, instruction_filename
from battle.referee import format_transcript
from battle.session import DebateContext

logger = logging.getLogger(__name__)


class RoundExecutor:
    """Drives one discussion from its first (or resumed) round to termination."""

    def __init__(self, ctx: DebateContext) -> None:
        self.ctx = ctx
        self.peers: dict[str, PeerView] = {}
        self.steering_text = ""
        self.state = RunState(
            agents=[agent.display_name for agent in ctx.roster],
            max_rounds=ctx.max_rounds,
            problem=ctx.problem,
            roster=list(ctx.roster),
        )

    # --- entry point ---

    async def run(self, resume: ResumeSnapshot | None = None) -> RunOutcome:
        """Run the discussion to a terminal state.

        Args:
            resume: Snapshot from load_resume_snapshot to continue a previous run.

        Raises:
            RunAborted: If the operator aborts at an escalation prompt.
        """
        self.ctx.store.prepare()

        if resume is None:
            self.ctx.store.save_state(self.state)
            self._write_instructions()
            conclusion = await self._round_one()
            if conclusion is not None:
                return await self._finish_consensus(conclusion, 1)
            start_round = 2
        else:
            self._load_snapshot(resume)
            self._write_instructions()
            start_round = resume.next_round
            if self.ctx.steering and resume.steering_missing and resume.next_round <= self.state.max_rounds:
                self._solicit_steering(resume.next_round - 1)

        return await self._drive(start_round)

    async def _drive(self, start_round: int) -> RunOutcome:
        round_number = start_round
        while True:
            result = await self.run_rounds(round_number, self.state.max_rounds)
            if result is not None:
                conclusion, decided_in = result
                return await self._finish_consensus(conclusion, decided_in)

            completed = self.state.current_round
            extra = self.ctx.operator.decide_extension(completed, self.state.max_rounds)
            if extra <= 0:
                return await self._finish_no_consensus()

            self.state.max_rounds = completed + extra
            self.ctx.store.save_state(self.state)
            logger.info("Extended by %d round(s), new limit %d", extra, self.state.max_rounds)
            self._write_instructions()
            if self.ctx.steering and self.ctx.store.read_steering(completed) is None:
                self._solicit_steering(completed)
            round_number = completed + 1

    async def run_rounds(self, start_round: int, max_rounds: int) -> tuple[str, int] | None:
        """Run sequential rounds start_round..max_rounds.

        Returns:
            (conclusion, round) when consensus was reached, else None.
        """
        for round_number in range(start_round, max_rounds + 1):
            conclusion = await self._sequential_round(round_number)
            if conclusion is not None:
                return conclusion, round_number
        return None

    # --- rounds ---

    async def _round_one(self) -> str | None:
        system = system_prompt(self.ctx.prompts, self.state.max_rounds)
        prompt = opening_prompt(self.ctx.prompts, self.ctx.problem)
        roster = self.ctx.roster

        logger.info("Round 1: %d agents thinking independently", len(roster))

        async def attempt(agent: AgentIdentity) -> str | InvocationExhausted:
            try:
                return await self.ctx.backend_for(agent).invoke(system, prompt, f"round_1_{agent}")
            except InvocationExhausted as exc:
                return exc

        results = await asyncio.gather(*(attempt(agent) for agent in roster))

        replies: dict[AgentIdentity, str] = {}
        for agent, result in zip(roster, results):
            if isinstance(result, str) and result.strip():
                text = result
            else:
                logger.warning("%s failed in round 1 (%s), escalating", agent, result)
                text = await invoke_with_escalation(
                    self.ctx.backend_for(agent),
                    system,
                    prompt,
                    f"round_1_{agent}",
                    self.ctx.operator,
                    f"{agent} [round 1]",
                )
            replies[agent] = text
            if text:
                self._record(1, agent, text)
            else:
                self._mark_skipped(agent, 1)

        self._complete_round(1)

        if all(parse_agreement(replies[agent]).has_marker for agent in roster):
            conclusion = parse_agreement(replies[roster[0]]).conclusion
            logger.info("All agents agreed in round 1")
            return conclusion

        if self.ctx.steering and self.state.max_rounds > 1:
            self._solicit_steering(1)
        return None

    async def _sequential_round(self, round_number: int) -> str | None:
        remaining = self.state.max_rounds - round_number
        system = system_prompt(self.ctx.prompts, self.state.max_rounds)
        spoken: set[AgentIdentity] = set()

        logger.info("Round %d/%d", round_number, self.state.max_rounds)

        for agent in self.ctx.roster:
            if agent in spoken:
                continue

            prompt = followup_prompt(
                self.ctx.prompts,
                agent,
                self.ctx.roster,
                self.peers,
                remaining,
                self.steering_text,
            )
            logger.info("%s is thinking", agent)
            text = await invoke_with_escalation(
                self.ctx.backend_for(agent),
                system,
                prompt,
                f"round_{round_number}_{agent}",
                self.ctx.operator,
                f"{agent} [round {round_number}]",
            )
            spoken.add(agent)
            if not text:
                self._mark_skipped(agent, round_number)
                continue
            self._record(round_number, agent, text)

            marker = parse_agreement(text)
            if not marker.has_marker:
                continue

            proposal = ConsensusProposal(proposer=agent, conclusion=marker.conclusion)
            result = await run_handshake(self.ctx, proposal, round_number, system)
            if result.confirmed:
                return proposal.conclusion
            if result.dissenter is None:
                continue
            if result.reply:
                # The dissent stands as the peer's turn for this round.
                self._record(round_number, result.dissenter, result.reply, emit=False)
                spoken.add(result.dissenter)
            else:
                self._mark_skipped(result.dissenter, round_number)

        if self.ctx.referee is not None:
            verdict = await self._referee_round(round_number)
            if verdict is not None and verdict.finalizes:
                logger.info("Referee declared consensus in round %d", round_number)
                return verdict.conclusion

        self._complete_round(round_number)

        if self.ctx.steering and round_number < self.state.max_rounds:
            self._solicit_steering(round_number)
        return None

    async def _referee_round(self, round_number: int) -> RefereeVerdict | None:
        responses = round_replies(self.ctx.roster, self.peers, round_number)
        try:
            verdict = await self.ctx.referee.adjudicate(round_number, responses)
        except RefereeSilent as exc:
            logger.warning("Round %d referee skipped: %s", round_number, exc)
            return None

        self.ctx.store.write_referee(round_number, verdict.summary)
        self.ctx.emit(Turn(round_number, "referee", verdict.summary, kind="referee"))
        if verdict.consensus_decided and not verdict.conclusion:
            logger.warning("Referee answered CONSENSUS: YES without an AGREED line, not finalizing")
        return verdict

    # --- bookkeeping ---

    def _record(self, round_number: int, agent: AgentIdentity, text: str, emit: bool = True) -> None:
        self.ctx.store.write_response(round_number, agent, text)
        self.peers[agent.display_name] = PeerView(text=text, round_number=round_number)
        if emit:
            self.ctx.emit(Turn(round_number, agent.display_name, text, base_type=agent.base_type))

    def _mark_skipped(self, agent: AgentIdentity, round_number: int) -> None:
        previous = self.peers.get(agent.display_name)
        self.peers[agent.display_name] = PeerView(
            text=previous.text if previous else "",
            round_number=previous.round_number if previous else 0,
            skipped_round=round_number,
        )

    def _complete_round(self, round_number: int) -> None:
        self.state.current_round = max(self.state.current_round, round_number)
        self.state.status = RunStatus.RUNNING
        self.ctx.store.save_state(self.state)

    def _solicit_steering(self, round_number: int) -> None:
        text = self.ctx.operator.solicit_steering(round_number).strip()
        self.ctx.store.write_steering(round_number, text)
        self.steering_text = text
        if text:
            logger.info("Moderator note recorded for round %d", round_number + 1)

    def _write_instructions(self) -> None:
        for agent in self.ctx.roster:
            backend = self.ctx.backend_for(agent)
            text = backend.generate_instructions(self.state.max_rounds, self.ctx.problem, agent.display_name)
            self.ctx.store.write_instructions(instruction_filename(backend.instructions_file, agent), text)

    def _load_snapshot(self, snapshot: ResumeSnapshot) -> None:
        self.state = snapshot.state
        self.state.roster = list(snapshot.roster)
        self.state.status = RunStatus.RUNNING
        self.state.conclusion = None
        self.state.max_rounds = max(self.state.max_rounds, self.ctx.max_rounds)
        self.ctx.store.save_state(self.state)
        self.peers = dict(snapshot.peers)
        self.steering_text = snapshot.steering
        logger.info(
            "Resuming from round %d (limit %d)", snapshot.next_round, self.state.max_rounds
        )

    # --- termination ---

    async def _finish_consensus(self, conclusion: str, round_number: int) -> RunOutcome:
        self.state.status = RunStatus.CONSENSUS
        self.state.conclusion = conclusion
        self.state.current_round = max(self.state.current_round, round_number)
        self.ctx.store.save_state(self.state)
        self.ctx.store.write_consensus(conclusion)
        logger.info("Consensus reached in round %d: %s", round_number, conclusion)
        return await self._outcome()

    async def _finish_no_consensus(self) -> RunOutcome:
        self.state.status = RunStatus.NO_CONSENSUS
        self.ctx.store.save_state(self.state)
        logger.info("Ended without consensus after %d round(s)", self.state.current_round)
        return await self._outcome()

    async def _outcome(self) -> RunOutcome:
        summary_path = await self._final_synthesis()
        return RunOutcome(
            status=self.state.status,
            conclusion=self.state.conclusion,
            rounds_completed=self.state.current_round,
            summary_path=summary_path,
        )

    async def _final_synthesis(self) -> str | None:
        if self.ctx.referee is None:
            return None
        transcript = format_transcript(self.ctx.store.round_documents())
        try:
            text = await self.ctx.referee.synthesize(self.ctx.problem, transcript, self.state.conclusion)
        except RefereeSilent as exc:
            logger.error("Final synthesis failed: %s", exc)
            return None
        path = self.ctx.store.write_summary(text)
        logger.info("Final synthesis saved to %s", path)
        return str(path)
