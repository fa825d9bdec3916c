"""Round-level retry wrapper around backend calls.

Backends retry on their own; once they give up, the operator decides
whether to try again, skip the turn or abort the run.
"""

import logging

from battle.backends.base import Backend
from battle.errors import InvocationExhausted, RunAborted
from battle.interaction import EscalationChoice, Operator

logger = logging.getLogger(__name__)


async def invoke_with_escalation(
    backend: Backend,
    system_prompt: str,
    user_message: str,
    session_tag: str,
    operator: Operator,
    label: str,
) -> str:
    """Call `backend` until it answers or the operator skips/aborts.

    Returns:
        The reply text, or "" when the operator chose to skip.

    Raises:
        RunAborted: If the operator chose to abort.
    """
    while True:
        error: Exception | None = None
        try:
            text = await backend.invoke(system_prompt, user_message, session_tag)
        except InvocationExhausted as exc:
            error = exc
            logger.warning("%s: %s", label, exc)
        else:
            if text.strip():
                return text
            logger.warning("%s returned an empty reply", label)

        choice = operator.on_invocation_failure(label, error)
        if choice is EscalationChoice.SKIP:
            logger.warning("Skipping %s", label)
            return ""
        if choice is EscalationChoice.ABORT:
            logger.error("Run aborted by operator at %s", label)
            raise RunAborted(f"Aborted by operator at {label}")
        logger.info("Retrying %s", label)
