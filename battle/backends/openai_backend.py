"""OpenAI backend using openai SDK with native async.

Also serves any OpenAI-compatible endpoint (xAI, DeepSeek, local servers)
when ``base_url`` is set in the model config.
"""

import asyncio
import logging
import os
import time
from pathlib import Path

from openai import AsyncOpenAI

from config.config_loader import ModelConfig
from battle.backends.base import Backend
from battle.errors import BackendError

logger = logging.getLogger(__name__)


class OpenAIBackend(Backend):
    """OpenAI (or OpenAI-compatible) backend via openai SDK."""

    def __init__(
        self,
        config: ModelConfig,
        capture_dir: Path | None = None,
        instructions_template: str = "",
    ) -> None:
        super().__init__(config, capture_dir, instructions_template)
        api_key = os.environ.get(config.api_key_env, "").strip()
        if not api_key:
            raise BackendError(config.name, f"Missing API key: {config.api_key_env}")
        self._client = AsyncOpenAI(api_key=api_key, base_url=config.base_url)

    async def _complete(self, system_prompt: str, user_message: str) -> tuple[str, str]:
        start = time.monotonic()
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_message})
        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=self._config.model,
                    messages=messages,
                    max_completion_tokens=self._config.max_tokens,
                ),
                timeout=self._config.timeout_sec,
            )
        except TimeoutError as exc:
            raise BackendError(self._config.name, f"Request timed out after {self._config.timeout_sec}s") from exc
        except Exception as exc:
            raise BackendError(self._config.name, f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        choice = response.choices[0] if response.choices else None
        if not choice or not choice.message.content:
            raise BackendError(self._config.name, "Empty response content")

        token_count: int | None = None
        if response.usage:
            token_count = response.usage.total_tokens

        logger.info("OpenAI call (%s): %.2fs, %s tokens", self._config.model, latency, token_count)

        return choice.message.content, response.model_dump_json(indent=2)
