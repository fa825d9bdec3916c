"""Load settings.yaml into typed dataclasses. Reports which backends have API keys."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"


@dataclass
class ModelConfig:
    name: str
    sdk: str
    model: str
    api_key_env: str
    timeout_sec: int
    max_tokens: int
    base_url: str | None = None
    max_retries: int = 3
    retry_delay_sec: float = 10.0
    instructions_file: str | None = None


@dataclass
class PromptsConfig:
    system: str
    opening: str
    followup: str
    confirm: str
    steering: str = "\n\n[Moderator note - additional information]\n{steering}"
    referee_free: str = ""
    referee_steering: str = ""
    referee_round: str = "Replies from round {round}:\n\n{all_responses}Please give your referee summary."
    final_synthesis: str = ""
    final_synthesis_input: str = (
        "<discussion_topic>\n{problem}\n</discussion_topic>\n\n"
        "<consensus>\n{conclusion}\n</consensus>\n\n"
        "<discussion_records>\n{transcript}\n</discussion_records>"
    )
    instructions: str = ""


@dataclass
class DefaultsConfig:
    agents: str = "claude,codex"
    max_rounds: int = 10
    referee: str | None = None
    steering: bool = False


@dataclass
class AppConfig:
    defaults: DefaultsConfig
    models: dict[str, ModelConfig]
    prompts: PromptsConfig
    available_providers: set[str] = field(default_factory=set)


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing.
    Logs missing API keys but does not raise; the registry reports the
    backend as unavailable when it is actually requested.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    defaults_raw = raw.get("defaults", {})
    defaults = DefaultsConfig(
        agents=str(defaults_raw.get("agents", "claude,codex")),
        max_rounds=int(defaults_raw.get("max_rounds", 10)),
        referee=defaults_raw.get("referee"),
        steering=bool(defaults_raw.get("steering", False)),
    )

    prompts_raw = raw["prompts"]
    prompts = PromptsConfig(
        system=prompts_raw["system"],
        opening=prompts_raw["opening"],
        followup=prompts_raw["followup"],
        confirm=prompts_raw["confirm"],
        **{
            key: prompts_raw[key]
            for key in (
                "steering",
                "referee_free",
                "referee_steering",
                "referee_round",
                "final_synthesis",
                "final_synthesis_input",
                "instructions",
            )
            if key in prompts_raw
        },
    )

    models: dict[str, ModelConfig] = {}
    available_providers: set[str] = set()

    for agent_name, model_raw in raw["models"].items():
        model_cfg = ModelConfig(
            name=agent_name,
            sdk=model_raw["sdk"],
            model=model_raw["model"],
            api_key_env=model_raw["api_key_env"],
            timeout_sec=int(model_raw["timeout_sec"]),
            max_tokens=int(model_raw["max_tokens"]),
            base_url=model_raw.get("base_url"),
            max_retries=int(model_raw.get("max_retries", 3)),
            retry_delay_sec=float(model_raw.get("retry_delay_sec", 10.0)),
            instructions_file=model_raw.get("instructions_file"),
        )
        models[agent_name] = model_cfg

        api_key = os.environ.get(model_raw["api_key_env"], "").strip()
        if api_key:
            available_providers.add(agent_name)
            logger.info("Backend configured: %s", agent_name)
        else:
            logger.info(
                "Backend has no API key: %s — set %s in .env",
                agent_name,
                model_raw["api_key_env"],
            )

    return AppConfig(
        defaults=defaults,
        models=models,
        prompts=prompts,
        available_providers=available_providers,
    )
