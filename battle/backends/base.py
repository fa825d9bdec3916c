"""Abstract base for all agent backends.

A backend implements three operations consumed by the engine:
``availability_check``, ``invoke`` and ``generate_instructions``. Concrete
adapters only implement ``_complete``; bounded retry with exponential
backoff and the raw-capture artifact live here.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path

from config.config_loader import ModelConfig
from battle.errors import BackendError, InvocationExhausted

logger = logging.getLogger(__name__)

_PING_PROMPT = "Reply with the word OK only."
_PING_TIMEOUT_SEC = 15.0

_DEFAULT_INSTRUCTIONS = """# AI roundtable: {agent}

You are **{agent}**, taking part in a structured technical discussion with other AIs.

- Maximum rounds: **{max_rounds}**
- Problem: {problem}

When consensus is reached, write `AGREED: <conclusion>` as the last line of your reply.
"""


class Backend(ABC):
    """Abstract base for all agent backends."""

    def __init__(
        self,
        config: ModelConfig,
        capture_dir: Path | None = None,
        instructions_template: str = "",
    ) -> None:
        self._config = config
        self._capture_dir = capture_dir
        self._instructions_template = instructions_template or _DEFAULT_INSTRUCTIONS

    def name(self) -> str:
        """Return the registry name (e.g. 'claude', 'codex')."""
        return self._config.name

    def model_string(self) -> str:
        """Return the actual model identifier string."""
        return self._config.model

    @property
    def instructions_file(self) -> str:
        return self._config.instructions_file or f"{self.name().upper()}.md"

    @abstractmethod
    async def _complete(self, system_prompt: str, user_message: str) -> tuple[str, str]:
        """Perform one SDK call.

        Returns:
            (text, raw) where raw is the serialized SDK response.

        Raises:
            BackendError: On API failure, timeout, or empty response.
        """
        ...

    async def availability_check(self) -> tuple[bool, str]:
        """Issue a cheap real call. Returns (ok, diagnostic); diagnostic is "" when ok."""
        try:
            text, _ = await asyncio.wait_for(
                self._complete("", _PING_PROMPT),
                timeout=_PING_TIMEOUT_SEC,
            )
        except TimeoutError:
            return False, f"no reply within {_PING_TIMEOUT_SEC:.0f}s"
        except Exception as exc:
            return False, str(exc)
        if not text.strip():
            return False, "empty reply to availability check"
        return True, ""

    async def invoke(self, system_prompt: str, user_message: str, session_tag: str | None = None) -> str:
        """Call the backend with bounded retry and exponential backoff.

        Returns non-empty text on success.

        Raises:
            InvocationExhausted: When every attempt failed.
        """
        attempts = max(1, self._config.max_retries)
        delay = self._config.retry_delay_sec
        last_error = ""

        for attempt in range(1, attempts + 1):
            try:
                text, raw = await self._complete(system_prompt, user_message)
            except BackendError as exc:
                last_error = str(exc)
            except Exception as exc:
                last_error = f"Unexpected error: {exc}"
            else:
                if session_tag:
                    self._write_capture(session_tag, raw)
                if text.strip():
                    return text
                last_error = "empty reply"

            if attempt < attempts:
                logger.warning(
                    "%s attempt %d/%d failed (%s), retrying in %.0fs",
                    self.name(), attempt, attempts, last_error, delay,
                )
                await asyncio.sleep(delay)
                delay *= 2

        logger.error("%s failed after %d attempts", self.name(), attempts)
        raise InvocationExhausted(self.name(), attempts, last_error)

    def generate_instructions(self, max_rounds: int, problem: str, agent: str | None = None) -> str:
        """Render the static instruction document for one roster seat."""
        return self._instructions_template.format(
            agent=agent or self.name(),
            max_rounds=max_rounds,
            problem=problem,
        )

    def _write_capture(self, session_tag: str, raw: str) -> None:
        if self._capture_dir is None or not raw:
            return
        try:
            self._capture_dir.mkdir(parents=True, exist_ok=True)
            (self._capture_dir / f"{session_tag}_{self.name()}.json").write_text(raw, encoding="utf-8")
        except OSError as exc:
            logger.warning("Could not write raw capture for %s: %s", session_tag, exc)
