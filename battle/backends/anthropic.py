"""Anthropic Claude backend using anthropic SDK with native async."""

import asyncio
import logging
import os
import time
from pathlib import Path

import anthropic as anthropic_sdk

from config.config_loader import ModelConfig
from battle.backends.base import Backend
from battle.errors import BackendError

logger = logging.getLogger(__name__)


class AnthropicBackend(Backend):
    """Anthropic Claude backend via anthropic SDK."""

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
        kwargs = {"api_key": api_key}
        if config.base_url:
            kwargs["base_url"] = config.base_url
        self._client = anthropic_sdk.AsyncAnthropic(**kwargs)

    async def _complete(self, system_prompt: str, user_message: str) -> tuple[str, str]:
        start = time.monotonic()
        request = {
            "model": self._config.model,
            "max_tokens": self._config.max_tokens,
            "messages": [{"role": "user", "content": user_message}],
        }
        if system_prompt:
            request["system"] = system_prompt
        try:
            response = await asyncio.wait_for(
                self._client.messages.create(**request),
                timeout=self._config.timeout_sec,
            )
        except TimeoutError as exc:
            raise BackendError(self._config.name, f"Request timed out after {self._config.timeout_sec}s") from exc
        except Exception as exc:
            raise BackendError(self._config.name, f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        if not response.content:
            raise BackendError(self._config.name, "Empty response content")

        text_blocks = [b.text for b in response.content if b.type == "text"]
        if not text_blocks:
            raise BackendError(self._config.name, "No text blocks in response")

        token_count: int | None = None
        if response.usage:
            token_count = response.usage.input_tokens + response.usage.output_tokens

        logger.info("Anthropic call: %.2fs, %s tokens", latency, token_count)

        return "\n".join(text_blocks), response.model_dump_json(indent=2)
