import json

import pytest
from pydantic import ValidationError

from models import CustomModel
from settings_manager import CoachingConfig, SettingsManager, get_model_type, mask_secret


def test_defaults():
    config = CoachingConfig(anthropic_api_key="", openai_api_key="", gemini_api_key="")
    assert config.ai_model == "claude-3-5-sonnet-20241022"
    assert config.dialogue_listen_duration == 30
    assert config.number_of_questions == 2
    assert config.auto_suggest_questions is True
    assert config.speech_language == "en-US"


def test_api_keys_come_from_environment(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-from-env")
    assert CoachingConfig().openai_api_key == "sk-from-env"


@pytest.mark.parametrize("field, value", [
    ("number_of_questions", 0),
    ("number_of_questions", 4),
    ("dialogue_listen_duration", 5),
    ("dialogue_listen_duration", 121),
])
def test_out_of_range_values(field, value):
    with pytest.raises(ValidationError):
        CoachingConfig(**{field: value})


@pytest.mark.parametrize("model, expected", [
    ("claude-3-opus-20240229", "anthropic"),
    ("gpt-4o-mini", "openai"),
    ("gemini-2.0-flash-exp", "gemini"),
    ("llama-local", "openai"),
])
def test_model_type(model, expected):
    assert get_model_type(model) == expected


def test_custom_model_type():
    custom = [CustomModel(value="llama-local", label="Llama", type="gemini")]
    assert get_model_type("llama-local", custom) == "gemini"


class TestSettingsManager:
    def test_creates_file_with_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        manager = SettingsManager(str(path))

        assert path.exists()
        assert manager.get_setting("number_of_questions") == 2
        assert manager.get_setting("missing", "fallback") == "fallback"

    def test_loads_existing_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"ai_model": "gpt-4o", "number_of_questions": 3}), encoding="utf-8")

        config = SettingsManager(str(path)).get_config()

        assert config.ai_model == "gpt-4o"
        assert config.number_of_questions == 3
        assert config.dialogue_listen_duration == 30

    def test_corrupt_file_falls_back_to_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json", encoding="utf-8")

        assert SettingsManager(str(path)).get_config().ai_model == "claude-3-5-sonnet-20241022"

    def test_update_merges_and_persists(self, tmp_path):
        path = tmp_path / "config.json"
        manager = SettingsManager(str(path))

        updated = manager.update_settings({"dialogue_listen_duration": 45, "style_guidelines": "Be brief"})

        assert updated.dialogue_listen_duration == 45
        assert updated.number_of_questions == 2
        reloaded = SettingsManager(str(path)).get_config()
        assert reloaded.dialogue_listen_duration == 45
        assert reloaded.style_guidelines == "Be brief"

    def test_invalid_update_keeps_previous_config(self, tmp_path):
        manager = SettingsManager(str(tmp_path / "config.json"))

        with pytest.raises(ValidationError):
            manager.update_settings({"number_of_questions": 9})

        assert manager.get_config().number_of_questions == 2


class TestSecrets:
    def test_keys_are_masked_for_clients(self, tmp_path):
        manager = SettingsManager(str(tmp_path / "config.json"))
        manager.update_settings({"openai_api_key": "sk-test-1234abcd", "anthropic_api_key": ""})

        public = manager.get_public_settings()

        assert public["openai_api_key"] == "********abcd"
        assert public["anthropic_api_key"] == ""
        assert manager.get_config().openai_api_key == "sk-test-1234abcd"

    def test_masked_value_sent_back_keeps_stored_key(self, tmp_path):
        manager = SettingsManager(str(tmp_path / "config.json"))
        manager.update_settings({"gemini_api_key": "gm-secret-9876"})

        manager.update_settings({"gemini_api_key": "********9876", "number_of_questions": 3})

        assert manager.get_config().gemini_api_key == "gm-secret-9876"
        assert manager.get_config().number_of_questions == 3

    def test_new_key_replaces_stored_key(self, tmp_path):
        manager = SettingsManager(str(tmp_path / "config.json"))
        manager.update_settings({"gemini_api_key": "gm-secret-9876"})
        manager.update_settings({"gemini_api_key": "gm-other-5555"})
        assert manager.get_config().gemini_api_key == "gm-other-5555"


@pytest.mark.parametrize("value, masked", [
    ("", ""),
    ("abc", "********"),
    ("sk-123456789", "********6789"),
])
def test_mask_secret(value, masked):
    assert mask_secret(value) == masked
