"""
Completion Endpoint Provider Support

Provides a unified configuration for the OpenAI-compatible chat-completions
endpoints the agents can talk to:
- Zhipu GLM (default)
- OpenAI
- OpenRouter

All three accept the same request shape, so the only per-provider differences
are the base URL, the credential and the default model.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .core.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class LLMProvider(str, Enum):
    """Supported completion providers."""
    ZHIPU = "zhipu"
    OPENAI = "openai"
    OPENROUTER = "openrouter"


@dataclass
class ProviderConfig:
    """Configuration for a completion provider."""
    provider: LLMProvider
    model_name: str
    base_url: str
    api_key: Optional[str] = None


# Default model mappings for each provider
DEFAULT_MODELS = {
    LLMProvider.ZHIPU: "glm-4-flash",
    LLMProvider.OPENAI: "gpt-4o-mini",
    LLMProvider.OPENROUTER: "openai/gpt-4o-mini",
}


def _credentials(cfg: Settings, provider: LLMProvider) -> tuple[Optional[str], str]:
    if provider == LLMProvider.OPENAI:
        return cfg.OPENAI_API_KEY, cfg.OPENAI_BASE_URL
    if provider == LLMProvider.OPENROUTER:
        return cfg.OPENROUTER_API_KEY, cfg.OPENROUTER_BASE_URL
    return cfg.ZHIPU_API_KEY, cfg.ZHIPU_BASE_URL


def get_provider_config(
    provider: Optional[str] = None,
    model_name: Optional[str] = None,
    cfg: Optional[Settings] = None,
) -> ProviderConfig:
    """
    Get configuration for the specified provider.

    Args:
        provider: Provider name (defaults to COMPLETION_PROVIDER setting)
        model_name: Model name (defaults to COMPLETION_MODEL setting or provider default)
        cfg: Settings to read from (defaults to the process settings)

    Returns:
        ProviderConfig with all necessary settings
    """
    cfg = cfg or default_settings
    provider_str = (provider or cfg.COMPLETION_PROVIDER or "zhipu").lower()

    try:
        llm_provider = LLMProvider(provider_str)
    except ValueError:
        logger.warning(f"Unknown provider '{provider_str}', falling back to zhipu")
        llm_provider = LLMProvider.ZHIPU

    final_model = model_name or cfg.COMPLETION_MODEL or DEFAULT_MODELS[llm_provider]
    api_key, base_url = _credentials(cfg, llm_provider)

    return ProviderConfig(
        provider=llm_provider,
        model_name=final_model,
        base_url=base_url.rstrip("/"),
        api_key=api_key,
    )


def validate_provider_config(provider: str, cfg: Optional[Settings] = None) -> Dict[str, Any]:
    """
    Validate that the required configuration is present for a provider.

    Args:
        provider: Provider name to validate
        cfg: Settings to read from

    Returns:
        Dict with 'valid' bool and 'missing' list of missing config keys
    """
    cfg = cfg or default_settings
    provider_str = provider.lower()
    missing = []

    if provider_str == "zhipu":
        if not cfg.ZHIPU_API_KEY:
            missing.append("ZHIPU_API_KEY")

    elif provider_str == "openai":
        if not cfg.OPENAI_API_KEY:
            missing.append("OPENAI_API_KEY")

    elif provider_str == "openrouter":
        if not cfg.OPENROUTER_API_KEY:
            missing.append("OPENROUTER_API_KEY")

    else:
        missing.append("COMPLETION_PROVIDER")

    return {
        "valid": len(missing) == 0,
        "missing": missing,
        "provider": provider_str
    }


def list_available_providers(cfg: Optional[Settings] = None) -> Dict[str, Dict[str, Any]]:
    """
    List all providers and their configuration status.

    Returns:
        Dict mapping provider names to their validation status
    """
    providers = {}
    for p in LLMProvider:
        validation = validate_provider_config(p.value, cfg)
        providers[p.value] = {
            "configured": validation["valid"],
            "missing_config": validation["missing"],
            "default_model": DEFAULT_MODELS.get(p),
        }
    return providers
