"""
LLM Provider configuration for Bragent.

Provides provider-specific endpoints, default models and the model-string
prefixes that select a provider.
"""

import os
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Provider(str, Enum):
    """Supported LLM providers."""
    OPENROUTER = "openrouter"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    GROQ = "groq"
    ZHIPU = "zhipu"
    G4F = "g4f"
    LM_STUDIO = "lm_studio"


# Default endpoints for each provider
PROVIDER_ENDPOINTS = {
    Provider.OPENROUTER: "https://openrouter.ai/api/v1",
    Provider.OPENAI: "https://api.openai.com/v1",
    Provider.ANTHROPIC: "https://api.anthropic.com/v1",
    Provider.GEMINI: "https://generativelanguage.googleapis.com/v1beta/openai",
    Provider.GROQ: "https://api.groq.com/openai/v1",
    Provider.ZHIPU: "https://open.bigmodel.cn/api/paas/v4",
    Provider.G4F: "http://127.0.0.1:8080/v1",
    Provider.LM_STUDIO: "http://127.0.0.1:1234/v1",
}

# Default models for each provider
PROVIDER_DEFAULT_MODELS = {
    Provider.OPENROUTER: "google/gemini-2.0-flash-001",
    Provider.OPENAI: "gpt-4o-mini",
    Provider.ANTHROPIC: "claude-3-5-haiku-20241022",
    Provider.GEMINI: "gemini-2.0-flash",
    Provider.GROQ: "llama-3.3-70b-versatile",
    Provider.ZHIPU: "glm-4-flash",
    Provider.G4F: "gpt-4o-mini",
    Provider.LM_STUDIO: "qwen2.5:7b",
}

# Model string prefixes, e.g. "gemini/gemini-2.0-flash".
# Unprefixed model strings go to OpenRouter, whose own ids contain slashes.
MODEL_PREFIXES = {
    "claude/": Provider.ANTHROPIC,
    "gemini/": Provider.GEMINI,
    "groq/": Provider.GROQ,
    "zhipu/": Provider.ZHIPU,
    "g4f/": Provider.G4F,
    "lmstudio/": Provider.LM_STUDIO,
}

# Environment variable holding each provider's API key
PROVIDER_API_KEY_ENV = {
    Provider.OPENROUTER: "OPENROUTER_API_KEY",
    Provider.OPENAI: "OPENAI_API_KEY",
    Provider.ANTHROPIC: "ANTHROPIC_API_KEY",
    Provider.GEMINI: "GEMINI_API_KEY",
    Provider.GROQ: "GROQ_API_KEY",
    Provider.ZHIPU: "ZHIPU_API_KEY",
}

# Older variable names still honoured when the main one is unset
PROVIDER_API_KEY_ENV_ALIASES = {
    Provider.ZHIPU: ("ZHIPUAI_API_KEY",),
}


def api_key_from_env(provider: Provider) -> Optional[str]:
    """Read a provider's API key from its environment variable or an alias."""
    env_var = PROVIDER_API_KEY_ENV.get(provider)
    if env_var is None:
        return None
    for name in (env_var, *PROVIDER_API_KEY_ENV_ALIASES.get(provider, ())):
        value = os.getenv(name)
        if value:
            return value
    return None


# Provider display names
PROVIDER_DISPLAY_NAMES = {
    Provider.OPENROUTER: "OpenRouter",
    Provider.OPENAI: "OpenAI",
    Provider.ANTHROPIC: "Anthropic",
    Provider.GEMINI: "Google Gemini",
    Provider.GROQ: "Groq",
    Provider.ZHIPU: "ZhipuAI",
    Provider.G4F: "GPT4Free (Local)",
    Provider.LM_STUDIO: "LM Studio (Local)",
}

# Extra headers sent on every request
PROVIDER_EXTRA_HEADERS = {
    Provider.OPENROUTER: {
        "HTTP-Referer": "https://github.com/bragent",
        "X-Title": "Bragent - AI Browser Agent",
    },
}


@dataclass
class ProviderConfig:
    """Configuration for an LLM provider."""

    provider: Provider = Provider.OPENROUTER
    api_key: Optional[str] = None
    model: Optional[str] = None
    custom_endpoint: Optional[str] = None

    @property
    def endpoint(self) -> str:
        """Get the endpoint URL for this provider."""
        if self.custom_endpoint:
            return self.custom_endpoint.rstrip("/")
        return PROVIDER_ENDPOINTS[self.provider]

    @property
    def effective_model(self) -> str:
        """Get the effective model name."""
        if self.model:
            return self.model
        return PROVIDER_DEFAULT_MODELS[self.provider]

    @property
    def requires_api_key(self) -> bool:
        """Check if this provider requires an API key."""
        return self.provider in PROVIDER_API_KEY_ENV

    @property
    def display_name(self) -> str:
        return PROVIDER_DISPLAY_NAMES.get(self.provider, self.provider.value)

    @property
    def extra_headers(self) -> dict[str, str]:
        return dict(PROVIDER_EXTRA_HEADERS.get(self.provider, {}))

    def validate(self) -> tuple[bool, str]:
        """Validate the configuration.

        Returns:
            Tuple of (is_valid, error_message)
        """
        if self.requires_api_key and not self.api_key:
            env_var = PROVIDER_API_KEY_ENV[self.provider]
            return False, f"{self.display_name} requires an API key (set {env_var})"
        return True, ""

    @classmethod
    def from_model_string(
        cls,
        model: str,
        api_key: Optional[str] = None,
        custom_endpoint: Optional[str] = None,
    ) -> "ProviderConfig":
        """Create from a prefixed model string.

        Args:
            model: e.g. "gemini/gemini-2.0-flash" or "openai/gpt-4o" (OpenRouter)
            api_key: Explicit key, otherwise read from the provider's env var
            custom_endpoint: Override for the provider endpoint

        Returns:
            Config with the prefix stripped from the model name
        """
        provider = Provider.OPENROUTER
        name = model.strip()
        for prefix, candidate in MODEL_PREFIXES.items():
            if name.startswith(prefix):
                provider = candidate
                name = name[len(prefix):]
                break

        if api_key is None:
            api_key = api_key_from_env(provider)

        return cls(
            provider=provider,
            api_key=api_key,
            model=name or None,
            custom_endpoint=custom_endpoint,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary, without the API key."""
        return {
            "provider": self.provider.value,
            "model": self.effective_model,
            "endpoint": self.endpoint,
        }
