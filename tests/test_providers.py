"""Provider adapters with the SDK clients replaced by in-memory fakes."""

from types import SimpleNamespace

import pytest

import gemini_client
from anthropic_client import AnthropicClient
from gemini_client import GeminiClient
from llm_provider import ConfigurationError, ProviderError, create_provider
from models import CustomModel
from openai_client import OpenAIClient


class FakeCreate:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.kwargs = None

    async def __call__(self, **kwargs):
        self.kwargs = kwargs
        if self.error is not None:
            raise self.error
        return self.result


def _anthropic_sdk(create):
    return SimpleNamespace(messages=SimpleNamespace(create=create))


def _openai_sdk(create):
    return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))


def _openai_response(*contents):
    return SimpleNamespace(choices=[
        SimpleNamespace(message=SimpleNamespace(content=c)) for c in contents
    ])


class TestAnthropic:
    async def test_sends_system_and_user_prompt(self):
        create = FakeCreate(SimpleNamespace(content=[SimpleNamespace(text="1. What next?")]))
        client = AnthropicClient("key", "claude-3-5-haiku-20241022", client=_anthropic_sdk(create))

        text = await client.generate("system text", "user text", temperature=0.5, max_tokens=150)

        assert text == "1. What next?"
        assert create.kwargs["system"] == "system text"
        assert create.kwargs["messages"] == [{"role": "user", "content": "user text"}]
        assert create.kwargs["model"] == "claude-3-5-haiku-20241022"
        assert create.kwargs["max_tokens"] == 150
        assert create.kwargs["temperature"] == 0.5

    async def test_skips_non_text_blocks(self):
        content = [SimpleNamespace(type="tool_use"), SimpleNamespace(text="1. Q?")]
        create = FakeCreate(SimpleNamespace(content=content))
        client = AnthropicClient("key", client=_anthropic_sdk(create))
        assert await client.generate("s", "u") == "1. Q?"

    async def test_missing_key_fails_before_any_call(self):
        create = FakeCreate(SimpleNamespace(content=[]))
        client = AnthropicClient("", client=_anthropic_sdk(create))

        with pytest.raises(ConfigurationError, match="Anthropic API key required"):
            await client.generate("s", "u")
        assert create.kwargs is None

    async def test_api_error_becomes_provider_error(self):
        create = FakeCreate(error=RuntimeError("rate limited"))
        client = AnthropicClient("key", client=_anthropic_sdk(create))
        with pytest.raises(ProviderError, match="rate limited"):
            await client.generate("s", "u")

    async def test_no_text_content(self):
        create = FakeCreate(SimpleNamespace(content=[]))
        client = AnthropicClient("key", client=_anthropic_sdk(create))
        with pytest.raises(ProviderError):
            await client.generate("s", "u")


class TestOpenAI:
    async def test_system_message_comes_first(self):
        create = FakeCreate(_openai_response("1. What matters?"))
        client = OpenAIClient("key", "gpt-4o-mini", client=_openai_sdk(create))

        assert await client.generate("sys", "usr") == "1. What matters?"
        assert create.kwargs["messages"] == [
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "usr"},
        ]
        assert create.kwargs["model"] == "gpt-4o-mini"

    async def test_empty_choices(self):
        client = OpenAIClient("key", client=_openai_sdk(FakeCreate(_openai_response())))
        with pytest.raises(ProviderError):
            await client.generate("s", "u")

    async def test_blank_content(self):
        client = OpenAIClient("key", client=_openai_sdk(FakeCreate(_openai_response("   "))))
        with pytest.raises(ProviderError, match="empty response"):
            await client.generate("s", "u")

    async def test_missing_key(self):
        create = FakeCreate(_openai_response("x"))
        client = OpenAIClient(None, client=_openai_sdk(create))
        with pytest.raises(ConfigurationError, match="OpenAI API key required"):
            await client.generate("s", "u")
        assert create.kwargs is None


class FakeGeminiModel:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    async def generate_content_async(self, prompt, safety_settings=None):
        self.calls.append((prompt, safety_settings))
        if self.error is not None:
            raise self.error
        return self.response


class BlockedText:
    prompt_feedback = None

    @property
    def text(self):
        raise ValueError("no candidates")


class TestGemini:
    def _client(self, monkeypatch, model):
        client = GeminiClient("key", "gemini-1.5-flash")
        built = {}

        def _build(system_instruction, temperature, max_tokens):
            built.update(system=system_instruction, temperature=temperature, max_tokens=max_tokens)
            return model

        monkeypatch.setattr(client, "_build_model", _build)
        return client, built

    async def test_system_instruction_and_config(self, monkeypatch):
        model = FakeGeminiModel(SimpleNamespace(text=" 1. What now? \n", prompt_feedback=None))
        client, built = self._client(monkeypatch, model)

        assert await client.generate("sys", "usr", temperature=0.7, max_tokens=200) == "1. What now?"
        assert built == {"system": "sys", "temperature": 0.7, "max_tokens": 200}
        assert model.calls[0][0] == "usr"
        assert model.calls[0][1] == client.safety_settings

    async def test_blocked_prompt(self, monkeypatch):
        feedback = SimpleNamespace(block_reason="SAFETY")
        model = FakeGeminiModel(SimpleNamespace(text="", prompt_feedback=feedback))
        client, _ = self._client(monkeypatch, model)
        with pytest.raises(ProviderError, match="blocked"):
            await client.generate("s", "u")

    async def test_no_text(self, monkeypatch):
        client, _ = self._client(monkeypatch, FakeGeminiModel(BlockedText()))
        with pytest.raises(ProviderError, match="no text"):
            await client.generate("s", "u")

    async def test_api_error(self, monkeypatch):
        client, _ = self._client(monkeypatch, FakeGeminiModel(error=RuntimeError("quota")))
        with pytest.raises(ProviderError, match="quota"):
            await client.generate("s", "u")

    async def test_missing_key(self):
        with pytest.raises(ConfigurationError, match="Gemini API key required"):
            await GeminiClient("").generate("s", "u")


class TestCreateProvider:
    @pytest.mark.parametrize("model, expected", [
        ("claude-3-5-sonnet-20241022", AnthropicClient),
        ("gpt-4o", OpenAIClient),
        ("gemini-1.5-pro", GeminiClient),
        ("some-unknown-model", OpenAIClient),
    ])
    def test_selects_by_model_name(self, base_config, model, expected):
        config = base_config.model_copy(update={"ai_model": model})
        provider = create_provider(config)
        assert type(provider) is expected
        assert provider.model == model
        assert not provider.enabled

    def test_custom_model_type(self, base_config):
        config = base_config.model_copy(update={
            "ai_model": "my-tuned-model",
            "custom_models": [CustomModel(value="my-tuned-model", label="Mine", type="anthropic")],
        })
        assert isinstance(create_provider(config), AnthropicClient)

    def test_key_is_taken_from_matching_field(self, base_config):
        config = base_config.model_copy(update={
            "ai_model": "gpt-4o",
            "openai_api_key": "sk-openai",
            "anthropic_api_key": "sk-ant",
        })
        provider = create_provider(config)
        assert provider.api_key == "sk-openai"
        assert provider.enabled


async def test_gemini_configures_its_own_key_per_call(monkeypatch):
    keys = []
    model = FakeGeminiModel(SimpleNamespace(text="1. What now?", prompt_feedback=None))
    monkeypatch.setattr(gemini_client.genai, "configure", lambda api_key: keys.append(api_key))
    monkeypatch.setattr(gemini_client.genai, "GenerativeModel", lambda *args, **kwargs: model)

    old = GeminiClient("old-key")
    new = GeminiClient("new-key")
    assert keys == []

    await old.generate("s", "u")
    await new.generate("s", "u")
    await old.generate("s", "u")

    assert keys == ["old-key", "new-key", "old-key"]
