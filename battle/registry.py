"""Agent registry: backend name -> implementation, built once at startup."""

import logging
from collections.abc import Callable
from pathlib import Path

from config.config_loader import AppConfig
from battle.backends.anthropic import AnthropicBackend
from battle.backends.base import Backend
from battle.backends.gemini import GeminiBackend
from battle.backends.openai_backend import OpenAIBackend
from battle.errors import BackendError, BackendUnavailable, RosterInvalid

logger = logging.getLogger(__name__)

BACKEND_CLASSES: dict[str, type[Backend]] = {
    "anthropic": AnthropicBackend,
    "openai": OpenAIBackend,
    "gemini": GeminiBackend,
}


class AgentRegistry:
    """Maps registered agent names to backend factories.

    Backends are built lazily on first lookup so that a configured but
    key-less backend only fails when it is actually requested.
    """

    def __init__(self) -> None:
        self._factories: dict[str, Callable[[], Backend]] = {}
        self._instances: dict[str, Backend] = {}

    def register(self, name: str, factory: Callable[[], Backend]) -> None:
        self._factories[name] = factory

    def register_instance(self, backend: Backend) -> None:
        self._factories[backend.name()] = lambda: backend

    def names(self) -> list[str]:
        return sorted(self._factories)

    def __contains__(self, name: str) -> bool:
        return name in self._factories

    def ensure_registered(self, name: str) -> None:
        if name not in self._factories:
            raise RosterInvalid(
                f"Unregistered agent '{name}'. Registered: {', '.join(self.names()) or '(none)'}"
            )

    def get(self, name: str) -> Backend:
        """Return the backend for `name`.

        Raises:
            RosterInvalid: If the name is not registered.
            BackendUnavailable: If the backend cannot be constructed.
        """
        self.ensure_registered(name)
        if name not in self._instances:
            try:
                self._instances[name] = self._factories[name]()
            except BackendError as exc:
                raise BackendUnavailable(name, str(exc)) from exc
        return self._instances[name]


def build_registry(
    config: AppConfig,
    capture_dir: Path | None = None,
) -> AgentRegistry:
    """Register every configured model whose sdk has an adapter."""
    registry = AgentRegistry()
    for name, model_cfg in config.models.items():
        backend_cls = BACKEND_CLASSES.get(model_cfg.sdk)
        if backend_cls is None:
            logger.warning("Agent '%s' uses unknown sdk '%s', skipping", name, model_cfg.sdk)
            continue
        registry.register(
            name,
            lambda cls=backend_cls, cfg=model_cfg: cls(
                cfg,
                capture_dir=capture_dir,
                instructions_template=config.prompts.instructions,
            ),
        )
    return registry
