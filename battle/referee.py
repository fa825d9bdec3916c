"""Referee: per-round adjudication and the final synthesis document."""

import logging

from config.config_loader import PromptsConfig
from battle.backends.base import Backend
from battle.context import response_block
from battle.errors import InvocationExhausted, RefereeSilent
from battle.markers import parse_referee_verdict
from battle.models import RefereeVerdict

logger = logging.getLogger(__name__)

NO_CONSENSUS_TEXT = "No explicit consensus was reached."


def format_transcript(documents: list[tuple[int, str, str]]) -> str:
    """Format (round, name, text) documents into a single transcript string."""
    parts: list[str] = []
    current_round: int | None = None
    for round_number, name, text in documents:
        if round_number != current_round:
            parts.append(f"### Round {round_number}")
            current_round = round_number
        parts.append(f"--- {name} ---\n{text.strip()}")
    return "\n\n".join(parts)


class Referee:
    """An independent backend that adjudicates rounds without arguing a position.

    In free mode the referee may declare consensus; in steering mode it only
    prepares a comparison for the human moderator, who decides.
    """

    def __init__(
        self,
        backend: Backend,
        prompts: PromptsConfig,
        steering: bool = False,
        extra_instructions: str = "",
    ) -> None:
        self.backend = backend
        self._prompts = prompts
        self.steering = steering
        self._extra = extra_instructions.strip()

    def name(self) -> str:
        return self.backend.name()

    def _with_extra(self, prompt: str) -> str:
        if not self._extra:
            return prompt
        return f"{prompt}\n\n[Additional instructions]\n{self._extra}"

    def round_system_prompt(self) -> str:
        base = self._prompts.referee_steering if self.steering else self._prompts.referee_free
        return self._with_extra(base)

    async def _call(self, system_prompt: str, user_message: str, session_tag: str) -> str:
        try:
            text = await self.backend.invoke(system_prompt, user_message, session_tag)
        except InvocationExhausted as exc:
            raise RefereeSilent(f"Referee {self.name()} produced no text: {exc}") from exc
        if not text.strip():
            raise RefereeSilent(f"Referee {self.name()} returned empty content")
        return text

    async def adjudicate(self, round_number: int, responses: list[tuple[str, str]]) -> RefereeVerdict:
        """Summarise one round.

        Args:
            round_number: The round just completed.
            responses: (display name, reply) for every roster member, in order.

        Returns:
            RefereeVerdict. In steering mode consensus_decided is always False.

        Raises:
            RefereeSilent: If the referee produced no text.
        """
        all_responses = "".join(response_block(name, text) for name, text in responses)
        user_message = self._prompts.referee_round.format(round=round_number, all_responses=all_responses)

        logger.info("Referee %s reviewing round %d", self.name(), round_number)
        text = await self._call(self.round_system_prompt(), user_message, f"referee_round_{round_number}")

        if self.steering:
            return RefereeVerdict(summary=text)
        return parse_referee_verdict(text)

    async def synthesize(self, problem: str, transcript: str, conclusion: str | None) -> str:
        """Produce the closing document for the whole discussion.

        Raises:
            RefereeSilent: If the referee produced no text.
        """
        user_message = self._prompts.final_synthesis_input.format(
            problem=problem,
            conclusion=conclusion or NO_CONSENSUS_TEXT,
            transcript=transcript,
        )
        logger.info("Running final synthesis via %s", self.name())
        return await self._call(self._with_extra(self._prompts.final_synthesis), user_message, "final_summary")
