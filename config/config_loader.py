"""Load settings.yaml into typed dataclasses. Reports which backends have credentials."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from roundtable.models import Persona

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"

# Local backends can be relocated without editing settings.yaml
_URL_OVERRIDES = {
    "ollama": "OLLAMA_URL",
    "lmstudio": "LMSTUDIO_URL",
    "openclaw": "OPENCLAW_URL",
}


@dataclass
class ProviderConfig:
    name: str
    base_url: str
    api_key_env: str | None = None
    timeout_sec: float | None = 120.0


@dataclass
class PromptsConfig:
    position: str = "\n\nYour position in this debate: {position}"
    conciseness: str = (
        "\n\nIMPORTANT: Keep your responses concise (2-3 paragraphs max). "
        "Be direct and engaging."
    )
    opening: str = 'You are discussing: "{topic}". Start the conversation with your perspective.'
    continuation: str = "It's your turn to respond. Continue the discussion."


@dataclass
class DefaultsConfig:
    output_dir: Path
    export_format: str = "markdown"


@dataclass
class AppConfig:
    defaults: DefaultsConfig
    providers: dict[str, ProviderConfig]
    personas: dict[str, Persona] = field(default_factory=dict)
    prompts: PromptsConfig = field(default_factory=PromptsConfig)
    available_providers: set[str] = field(default_factory=set)


def _parse_persona(persona_id: str, raw: dict) -> Persona:
    temperature = float(raw.get("temperature", 0.7))
    if not 0.0 <= temperature <= 2.0:
        raise ValueError(f"Persona '{persona_id}': temperature {temperature} outside 0.0-2.0")
    return Persona(
        id=persona_id,
        name=str(raw["name"]),
        system_prompt=str(raw["system_prompt"]).strip(),
        provider=str(raw["provider"]),
        model=str(raw["model"]),
        temperature=temperature,
        max_tokens=int(raw.get("max_tokens", 1024)),
        avatar=raw.get("avatar"),
        position=raw.get("position"),
    )


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing, ValueError if it
    configures no providers or a persona is out of range. Empty sections
    fall back to their defaults.
    Logs backends whose API key is not set but does not raise; a turn for
    such a backend fails later with AuthenticationError.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    defaults_raw = raw.get("defaults") or {}
    defaults = DefaultsConfig(
        output_dir=Path(defaults_raw.get("output_dir", "./output")),
        export_format=str(defaults_raw.get("export_format", "markdown")),
    )

    prompts = PromptsConfig(**(raw.get("prompts") or {}))

    providers: dict[str, ProviderConfig] = {}
    available_providers: set[str] = set()

    if not raw.get("providers"):
        raise ValueError(f"No providers configured in {settings_path}")
    for provider_name, provider_raw in raw["providers"].items():
        base_url = os.environ.get(_URL_OVERRIDES.get(provider_name, ""), "").strip()
        timeout = provider_raw.get("timeout_sec", 120)
        provider_cfg = ProviderConfig(
            name=provider_name,
            base_url=base_url or provider_raw["base_url"],
            api_key_env=provider_raw.get("api_key_env"),
            timeout_sec=float(timeout) if timeout is not None else None,
        )
        providers[provider_name] = provider_cfg

        if provider_cfg.api_key_env is None:
            available_providers.add(provider_name)
            logger.debug("Provider available (no key needed): %s", provider_name)
        elif os.environ.get(provider_cfg.api_key_env, "").strip():
            available_providers.add(provider_name)
            logger.info("Provider available: %s", provider_name)
        else:
            logger.info(
                "Provider has no API key: %s (set %s in .env)",
                provider_name,
                provider_cfg.api_key_env,
            )

    personas = {
        persona_id: _parse_persona(persona_id, persona_raw)
        for persona_id, persona_raw in (raw.get("personas") or {}).items()
    }

    return AppConfig(
        defaults=defaults,
        providers=providers,
        personas=personas,
        prompts=prompts,
        available_providers=available_providers,
    )
