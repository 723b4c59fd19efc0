import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from store_insights.config.settings import Settings

KEYS = ("OPENAI_API_KEY", "GEMINI_API_KEY", "ANTHROPIC_API_KEY", "AI_PROVIDER", "EMBEDDING_PROVIDER")


def make_settings(**env) -> Settings:
    clean = {k: v for k, v in os.environ.items() if k not in KEYS}
    with patch.dict(os.environ, {**clean, **env}, clear=True):
        return Settings(_env_file=None)


def test_defaults():
    settings = make_settings()
    assert settings.ai_provider == "gemini"
    assert settings.stage_retry_delays == [30.0, 60.0, 120.0]
    assert settings.analysis_period_days == 15
    assert settings.lite_analysis_period_days == 7
    assert settings.configured_providers() == []


def test_provider_names_are_normalized():
    settings = make_settings(AI_PROVIDER="  OpenAI ", EMBEDDING_PROVIDER="OPENAI")
    assert settings.ai_provider == "openai"
    assert settings.embedding_provider == "openai"


def test_provider_configuration():
    settings = make_settings(ANTHROPIC_API_KEY="sk-ant", OPENAI_API_KEY="sk-oa", GEMINI_API_KEY="")
    assert settings.provider_api_key("anthropic") == "sk-ant"
    assert settings.provider_api_key("gemini") is None
    assert settings.provider_api_key("mistral") is None
    assert settings.is_provider_configured("openai")
    assert not settings.is_provider_configured("gemini")
    assert settings.configured_providers() == ["openai", "anthropic"]


def test_api_keys_are_hidden():
    settings = make_settings(OPENAI_API_KEY="sk-secret")
    assert "sk-secret" not in repr(settings)


def test_list_settings_parse_json():
    settings = make_settings(STAGE_RETRY_DELAYS="[0, 0, 0]")
    assert settings.stage_retry_delays == [0.0, 0.0, 0.0]


@pytest.mark.parametrize("value", ["0", "1.5"])
def test_similarity_threshold_is_validated(value):
    with pytest.raises(ValidationError):
        make_settings(SIMILARITY_THRESHOLD=value)
