"""
Configuration management for Bragent.

Provides configuration dataclass and environment variable loading.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .providers import ProviderConfig

# Load environment variables from .env file if present
load_dotenv()

# Browsers driven through the extension instead of a local Playwright Chromium
EXTENSION_BROWSERS = ("chrome", "edge", "yandex")

MODE_EXTENSION = "extension"
MODE_PLAYWRIGHT = "playwright"


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


def _env_optional_float(name: str) -> Optional[float]:
    value = os.getenv(name)
    return float(value) if value else None


def mode_for_browser(browser_type: str) -> str:
    """Pick the execution mode for a BROWSER_TYPE value."""
    return MODE_EXTENSION if browser_type.lower() in EXTENSION_BROWSERS else MODE_PLAYWRIGHT


def get_base_dir() -> Path:
    """Get the base directory for bragent data."""
    return Path.home() / ".bragent"


@dataclass
class AgentConfig:
    """Configuration for the browser agent."""

    # LLM settings
    model: str = field(
        default_factory=lambda: os.getenv("AI_MODEL", "gemini/gemini-2.0-flash")
    )
    api_key: Optional[str] = None
    model_endpoint: Optional[str] = field(
        default_factory=lambda: os.getenv("AI_ENDPOINT")
    )
    oracle_timeout: float = 60.0
    oracle_max_tokens: int = 400
    temperature: float = 0.1
    rate_limit_backoff: float = 5.0

    # Agent settings
    max_iterations: int = field(
        default_factory=lambda: _env_int("MAX_ITERATIONS", 30)
    )
    max_tokens: int = 8000
    max_history_messages: int = 12
    auto_approve: bool = False

    # Browser settings
    mode: str = field(
        default_factory=lambda: mode_for_browser(os.getenv("BROWSER_TYPE", "chromium"))
    )
    headless: bool = field(default_factory=lambda: _env_bool("BROWSER_HEADLESS"))
    slow_mo: int = field(default_factory=lambda: _env_int("BROWSER_SLOW_MO", 50))
    user_data_dir: Optional[str] = field(
        default_factory=lambda: os.getenv("USER_DATA_DIR") or None
    )
    screenshots_dir: Path = field(
        default_factory=lambda: get_base_dir() / "screenshots"
    )

    # Relay settings (seconds)
    action_timeout: float = 30.0
    context_timeout: float = 15.0
    poll_wait: float = 25.0
    peer_timeout: Optional[float] = field(
        default_factory=lambda: _env_optional_float("PEER_TIMEOUT")
    )

    # Server settings
    host: str = field(default_factory=lambda: os.getenv("HOST", "127.0.0.1"))
    port: int = field(default_factory=lambda: _env_int("PORT", 3000))

    # Debug mode - enables verbose logging (off by default)
    debug: bool = field(default_factory=lambda: _env_bool("BRAGENT_DEBUG"))

    def __post_init__(self):
        if self.mode not in (MODE_EXTENSION, MODE_PLAYWRIGHT):
            raise ValueError(f"Unknown mode: {self.mode}")

    @property
    def provider_config(self) -> ProviderConfig:
        """Provider settings derived from the prefixed model string.

        The API key falls back to the provider's own environment variable.
        """
        return ProviderConfig.from_model_string(
            self.model,
            api_key=self.api_key,
            custom_endpoint=self.model_endpoint,
        )

    @property
    def uses_extension(self) -> bool:
        return self.mode == MODE_EXTENSION

    @classmethod
    def from_cli_args(
        cls,
        model: Optional[str] = None,
        max_iterations: Optional[int] = None,
        headless: Optional[bool] = None,
        mode: Optional[str] = None,
        host: Optional[str] = None,
        port: Optional[int] = None,
        auto_approve: bool = False,
        debug: Optional[bool] = None,
    ) -> "AgentConfig":
        """Create configuration from CLI arguments.

        Arguments left as None keep their environment or built-in default.
        """
        config = cls(auto_approve=auto_approve)
        if model:
            config.model = model
        if max_iterations is not None:
            config.max_iterations = max_iterations
        if headless is not None:
            config.headless = headless
        if mode:
            config.mode = mode
            config.__post_init__()
        if host:
            config.host = host
        if port is not None:
            config.port = port
        if debug is not None:
            config.debug = debug
        return config


# Default configuration values for documentation
DEFAULTS = {
    "model": "gemini/gemini-2.0-flash",
    "max_iterations": 30,
    "headless": False,
    "slow_mo": 50,
    "mode": MODE_PLAYWRIGHT,
    "host": "127.0.0.1",
    "port": 3000,
    "auto_approve": False,
    "oracle_timeout_s": 60,
    "action_timeout_s": 30,
    "poll_wait_s": 25,
    "max_tokens": 8000,
    "max_history_messages": 12,
}
