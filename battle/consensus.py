"""Confirmation handshake run when a participant proposes agreement."""

import logging
from dataclasses import dataclass

from battle.context import confirm_prompt
from battle.escalation import invoke_with_escalation
from battle.markers import has_agreement
from battle.models import AgentIdentity, ConsensusProposal, Turn
from battle.session import DebateContext

logger = logging.getLogger(__name__)


@dataclass
class HandshakeResult:
    confirmed: bool
    dissenter: AgentIdentity | None = None
    reply: str = ""                     # dissenter's reply; "" when it was unreachable


async def run_handshake(
    ctx: DebateContext,
    proposal: ConsensusProposal,
    round_number: int,
    system_prompt: str,
) -> HandshakeResult:
    """Ask every other participant, in roster order, to confirm the proposal.

    Stops at the first participant that does not re-emit the agreement
    marker or cannot be reached. Confirmation replies are stored as
    ``(round, agent, confirm)`` records.
    """
    logger.info("%s proposed consensus, waiting for confirmation: %s", proposal.proposer, proposal.conclusion)
    prompt = confirm_prompt(ctx.prompts, proposal.proposer, proposal.conclusion)

    for other in ctx.roster:
        if other == proposal.proposer:
            continue

        reply = await invoke_with_escalation(
            ctx.backend_for(other),
            system_prompt,
            prompt,
            f"round_{round_number}_{other}_confirm",
            ctx.operator,
            f"{other} [confirm round {round_number}]",
        )
        if not reply:
            logger.warning("%s confirmation skipped, treated as disagreement", other)
            return HandshakeResult(confirmed=False, dissenter=other)

        ctx.store.write_response(round_number, other, reply, confirm=True)
        ctx.emit(Turn(round_number, other.display_name, reply, kind="confirm", base_type=other.base_type))

        if not has_agreement(reply):
            logger.info("%s disagrees, discussion continues", other)
            return HandshakeResult(confirmed=False, dissenter=other, reply=reply)
        logger.info("%s agrees", other)

    return HandshakeResult(confirmed=True)
