"""
Test configuration system
"""
import dataclasses

import pytest

from docconfidence.core.unified_config import Environment, UnifiedConfig, get_config, reload_config


class TestUnifiedConfig:
    """Test configuration loading and environment detection"""

    def test_default_config_loads(self):
        """Test that default configuration loads successfully"""
        config = get_config()
        assert config is not None
        assert config.app_name == "docconfidence"
        assert config.app_version == "1.0"

    def test_testing_environment_selected(self):
        config = get_config()
        assert config.environment == Environment.TESTING
        assert config.enable_confidence_score is False
        assert config.confidence_strategy == "entropy_based"
        assert config.llm_provider == "openai"

    def test_config_is_immutable(self):
        config = get_config()
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.llm_provider = "groq_openai"

    def test_replace_produces_new_value(self):
        config = get_config()
        updated = dataclasses.replace(config, enable_confidence_score=True)
        assert updated.enable_confidence_score is True
        assert config.enable_confidence_score is False

    def test_extraction_defaults(self):
        """Worker cap, grace period and render DPI defaults"""
        extraction = UnifiedConfig().get_extraction_config()
        assert extraction["max_field_workers"] == 10
        assert extraction["shutdown_grace_period"] == 60
        assert extraction["extraction_timeout"] is None
        assert extraction["pdf_render_dpi"] == 300

    def test_calibration_config(self):
        calibration = get_config().get_calibration_config()
        assert set(calibration) == {"position_decay", "weighted_max_entropy", "max_expected_stddev", "log_prob_floor"}

    def test_llm_config(self):
        llm_config = get_config().get_llm_config()
        assert llm_config["provider"] == "openai"
        assert llm_config["top_logprobs"] == 5
        assert "model_path" in llm_config

    def test_api_key_follows_provider(self):
        config = UnifiedConfig(openai_api_key="sk-openai", groq_api_key="gsk-groq")
        assert config.get_api_key() == "sk-openai"
        assert dataclasses.replace(config, llm_provider="groq_openai").get_api_key() == "gsk-groq"

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("DOCCONF_ENV", "development")
        monkeypatch.setenv("MAX_FIELD_WORKERS", "4")
        monkeypatch.setenv("CONFIDENCE_STRATEGY", "Variance_Based")
        monkeypatch.setenv("ENABLE_CONFIDENCE_SCORE", "true")
        monkeypatch.setenv("EXTRACTION_TIMEOUT", "12.5")
        try:
            config = reload_config()
            assert config.environment == Environment.DEVELOPMENT
            assert config.max_field_workers == 4
            assert config.confidence_strategy == "variance_based"
            assert config.enable_confidence_score is True
            assert config.extraction_timeout == 12.5
        finally:
            monkeypatch.undo()
            reload_config()

    def test_invalid_numbers_fall_back(self, monkeypatch):
        monkeypatch.setenv("DOCCONF_ENV", "production")
        monkeypatch.setenv("MAX_FIELD_WORKERS", "lots")
        monkeypatch.setenv("TOP_LOGPROBS", "-3")
        try:
            config = reload_config()
            assert config.is_production()
            assert config.max_field_workers == 10
            assert config.top_logprobs == 0
        finally:
            monkeypatch.undo()
            reload_config()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
