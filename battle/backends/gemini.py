"""Gemini backend using google-genai SDK with native async."""

import asyncio
import logging
import os
import time
from pathlib import Path

from google import genai
from google.genai import types as genai_types

from config.config_loader import ModelConfig
from battle.backends.base import Backend
from battle.errors import BackendError

logger = logging.getLogger(__name__)


class GeminiBackend(Backend):
    """Google Gemini backend via google-genai SDK."""

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
        self._client = genai.Client(api_key=api_key)

    async def _complete(self, system_prompt: str, user_message: str) -> tuple[str, str]:
        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.aio.models.generate_content(
                    model=self._config.model,
                    contents=user_message,
                    config=genai_types.GenerateContentConfig(
                        system_instruction=system_prompt or None,
                        max_output_tokens=self._config.max_tokens,
                    ),
                ),
                timeout=self._config.timeout_sec,
            )
        except TimeoutError as exc:
            raise BackendError(self._config.name, f"Request timed out after {self._config.timeout_sec}s") from exc
        except Exception as exc:
            raise BackendError(self._config.name, f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        if not response.text:
            raise BackendError(self._config.name, "Empty response text")

        token_count: int | None = None
        if response.usage_metadata:
            token_count = response.usage_metadata.total_token_count

        logger.info("Gemini call: %.2fs, %s tokens", latency, token_count)

        return response.text, response.model_dump_json(indent=2)
