"""
Tests for the command-line interface and configuration.
"""

import pytest

from bragent.cli import create_parser, main
from bragent.config import AgentConfig, MODE_EXTENSION, MODE_PLAYWRIGHT, mode_for_browser


class TestParser:
    """Tests for argument parsing."""

    def test_run_arguments(self):
        args = create_parser().parse_args(
            ["run", "Open example.com", "--max-iterations", "5", "--headless", "--json"]
        )
        assert args.command == "run"
        assert args.task == "Open example.com"
        assert args.max_iterations == 5
        assert args.headless is True
        assert args.json is True
        assert args.auto_approve is False

    def test_headless_defaults_to_environment(self):
        """Without the flag headless is left to the configuration."""
        args = create_parser().parse_args(["run", "x"])
        assert args.headless is None

    def test_serve_arguments(self):
        args = create_parser().parse_args(["serve", "--port", "8080", "--mode", "playwright"])
        assert args.port == 8080
        assert args.mode == MODE_PLAYWRIGHT

    def test_unknown_mode_is_rejected(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["serve", "--mode", "firefox"])

    def test_version(self, capsys):
        with pytest.raises(SystemExit):
            main(["--version"])
        assert "Bragent" in capsys.readouterr().out


class TestMain:
    """Tests for exit codes that need no browser or network."""

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 0
        assert "serve" in capsys.readouterr().out

    def test_missing_api_key(self, monkeypatch):
        """A hosted provider without a key exits with 1 before starting."""
        monkeypatch.delenv("GROQ_API_KEY", raising=False)
        assert main(["serve", "--model", "groq/llama-3.3-70b-versatile"]) == 1
        assert main(["run", "Anything", "--model", "groq/llama-3.3-70b-versatile"]) == 1


class TestAgentConfig:
    """Tests for configuration defaults and overrides."""

    def test_mode_from_browser_type(self):
        assert mode_for_browser("Chrome") == MODE_EXTENSION
        assert mode_for_browser("chromium") == MODE_PLAYWRIGHT

    def test_environment_defaults(self, monkeypatch):
        monkeypatch.setenv("MAX_ITERATIONS", "7")
        monkeypatch.setenv("BROWSER_TYPE", "yandex")
        config = AgentConfig()
        assert config.max_iterations == 7
        assert config.mode == MODE_EXTENSION
        assert config.uses_extension

    def test_cli_overrides(self):
        config = AgentConfig.from_cli_args(model="claude/claude-3-5-haiku-20241022", port=9000, mode="playwright")
        assert config.model == "claude/claude-3-5-haiku-20241022"
        assert config.port == 9000
        assert not config.uses_extension

    def test_invalid_mode(self):
        with pytest.raises(ValueError):
            AgentConfig(mode="firefox")

    def test_provider_config_uses_explicit_key(self):
        config = AgentConfig(model="gemini/gemini-2.0-flash", api_key="explicit")
        provider = config.provider_config
        assert provider.api_key == "explicit"
        assert provider.effective_model == "gemini-2.0-flash"
