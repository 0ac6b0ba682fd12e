"""Tests for settings loading."""

import pytest

from corvid.config import ProviderConfig, Settings, load_settings
from corvid.core.approval import ApprovalMode


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    monkeypatch.setenv("CORVID_CONFIG_DIR", str(tmp_path / "config"))
    monkeypatch.setenv("CORVID_DATA_DIR", str(tmp_path / "data"))
    for name in ("CORVID_CONFIG", "CORVID_PROVIDER", "CORVID_MODEL", "CORVID_APPROVAL_MODE"):
        monkeypatch.delenv(name, raising=False)


class TestLoadSettings:
    def test_defaults(self):
        settings = load_settings()
        assert settings.approval_mode is ApprovalMode.DEFAULT
        assert settings.max_tokens == 2048
        assert settings.retry.max_attempts == 3
        assert not settings.checkpointing.enabled

    def test_yaml_file(self, tmp_path):
        config = tmp_path / "corvid.yaml"
        config.write_text(
            "provider: anthropic\n"
            "approval_mode: auto_edit\n"
            "providers:\n"
            "  anthropic:\n"
            "    model: claude-opus-4-20250514\n"
            "    timeout: 90\n"
            "retry:\n"
            "  max_attempts: 2\n"
        )
        settings = load_settings(config)
        assert settings.provider == "anthropic"
        assert settings.approval_mode is ApprovalMode.AUTO_EDIT
        assert settings.providers["anthropic"] == ProviderConfig(
            model="claude-opus-4-20250514", timeout=90
        )
        assert settings.retry.max_attempts == 2
        assert settings.retry.initial_delay == 1.0

    def test_default_config_location(self, tmp_path):
        (tmp_path / "config").mkdir()
        (tmp_path / "config" / "config.yaml").write_text("max_iterations: 7\n")
        assert load_settings().max_iterations == 7

    def test_env_vars(self, monkeypatch):
        monkeypatch.setenv("CORVID_PROVIDER", "ollama")
        monkeypatch.setenv("CORVID_RETRY__MAX_ATTEMPTS", "5")
        settings = load_settings()
        assert settings.provider == "ollama"
        assert settings.retry.max_attempts == 5

    def test_env_overrides_yaml(self, tmp_path, monkeypatch):
        config = tmp_path / "corvid.yaml"
        config.write_text("provider: anthropic\nretry:\n  max_attempts: 2\n  max_delay: 4\n")
        monkeypatch.setenv("CORVID_PROVIDER", "ollama")
        monkeypatch.setenv("CORVID_RETRY__MAX_ATTEMPTS", "6")
        settings = load_settings(config)
        assert settings.provider == "ollama"
        assert settings.retry.max_attempts == 6
        assert settings.retry.max_delay == 4

    def test_explicit_overrides_win(self, tmp_path):
        config = tmp_path / "corvid.yaml"
        config.write_text("log_level: INFO\n")
        assert load_settings(config, log_level="DEBUG").log_level == "DEBUG"
        assert load_settings(config, log_level=None).log_level == "INFO"


class TestSettingsHelpers:
    def test_top_level_model_applied(self):
        settings = Settings(model="grok-4", providers={"openai": {"model": "gpt-4o"}})
        assert settings.provider_config("xai").model == "grok-4"
        assert settings.provider_config("openai").model == "gpt-4o"

    def test_checkpoint_db_path(self, tmp_path):
        settings = Settings()
        assert settings.get_checkpoint_db() == tmp_path / "data" / "checkpoints.db"
        custom = Settings(checkpointing={"enabled": True, "db_path": str(tmp_path / "x.db")})
        assert custom.get_checkpoint_db() == tmp_path / "x.db"

    def test_provider_config_frozen(self):
        config = ProviderConfig(api_key="k")
        with pytest.raises(Exception):
            config.api_key = "other"
