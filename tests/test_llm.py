"""Tests for the provider chatbot clients and factory."""

import sys
import pytest
from unittest.mock import MagicMock, patch

from chatbot.config import ConfigNode
from chatbot.errors import ApiError, ApiTimeoutError, AuthError, ConfigError
from chatbot.llm import (
    ChatbotClient,
    ClaudeChatbot,
    OpenAIChatbot,
    Provider,
    create_chatbot,
    get_chatbot,
)


class FakeAPIError(Exception):
    def __init__(self, message="error", body=None):
        super().__init__(message)
        self.body = body


class FakeAPIStatusError(FakeAPIError):
    def __init__(self, message="error", status_code=500, body=None):
        super().__init__(message, body)
        self.status_code = status_code


class FakeAPITimeoutError(FakeAPIError):
    pass


def _sdk_module():
    """Return a mock SDK module carrying real exception classes."""
    module = MagicMock()
    module.APIError = FakeAPIError
    module.APIStatusError = FakeAPIStatusError
    module.APITimeoutError = FakeAPITimeoutError
    return module


@pytest.fixture
def openai_sdk():
    """Patch the openai module; yield (module, client)."""
    client = MagicMock()
    choice = MagicMock()
    choice.message.content = "OpenAI response"
    client.chat.completions.create.return_value = MagicMock(choices=[choice])
    module = _sdk_module()
    module.OpenAI.return_value = client
    with patch.dict(sys.modules, {"openai": module}):
        yield module, client


@pytest.fixture
def anthropic_sdk():
    """Patch the anthropic module; yield (module, client)."""
    client = MagicMock()
    block = MagicMock()
    block.text = "Claude response"
    client.messages.create.return_value = MagicMock(content=[block])
    module = _sdk_module()
    module.Anthropic.return_value = client
    with patch.dict(sys.modules, {"anthropic": module}):
        yield module, client


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ("OPENAI_API_KEY", "ANTHROPIC_API_KEY", "CHATBOT_API_KEY"):
        monkeypatch.delenv(var, raising=False)


# ---------------------------------------------------------------------------
# Base class tests
# ---------------------------------------------------------------------------


def test_client_is_abstract():
    """ChatbotClient cannot be instantiated directly."""
    with pytest.raises(TypeError):
        ChatbotClient(api_key="k")


def test_reset_and_history():
    bot = OpenAIChatbot(api_key="k", system_prompt="S")
    bot.conversation.add_message("user", "hi")
    assert [m["role"] for m in bot.history()] == ["system", "user"]
    bot.reset()
    assert [m["content"] for m in bot.history()] == ["S"]


def test_describe():
    bot = ClaudeChatbot(api_key="k")
    text = bot.describe()
    assert "ClaudeChatbot" in text
    assert "0 messages" in text


def test_repr():
    bot = OpenAIChatbot(api_key="k", model="gpt-4")
    assert "OpenAIChatbot" in repr(bot)
    assert "gpt-4" in repr(bot)


# ---------------------------------------------------------------------------
# OpenAIChatbot tests
# ---------------------------------------------------------------------------


def test_openai_defaults():
    bot = OpenAIChatbot()
    assert bot.model == "gpt-3.5-turbo"
    assert bot.endpoint == "https://api.openai.com/v1"
    assert bot.conversation.max_history == 100


def test_openai_key_from_env(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "env-key")
    assert OpenAIChatbot().settings.api_key == "env-key"


def test_openai_payload_includes_system():
    """The generic payload keeps the system message inline."""
    bot = OpenAIChatbot(api_key="k", system_prompt="You are helpful.")
    payload = bot.build_payload(bot.conversation.get_api_messages(), temperature=0.2)
    assert payload["messages"][0] == {"role": "system", "content": "You are helpful."}
    assert payload["temperature"] == 0.2
    assert "max_tokens" not in payload


def test_openai_payload_options_at_top_level():
    bot = OpenAIChatbot(api_key="k", config={"options": {"top_p": 0.9}})
    payload = bot.build_payload([], max_tokens=50, presence_penalty=0.1)
    assert payload["max_tokens"] == 50
    assert payload["top_p"] == 0.9
    assert payload["presence_penalty"] == 0.1


def test_openai_chat(openai_sdk):
    """chat() records both turns and returns the reply."""
    module, client = openai_sdk
    bot = OpenAIChatbot(api_key="test-key", system_prompt="S")
    result = bot.chat("Hello")

    assert result == "OpenAI response"
    assert bot.conversation.get_api_messages() == [
        {"role": "system", "content": "S"},
        {"role": "user", "content": "Hello"},
        {"role": "assistant", "content": "OpenAI response"},
    ]
    module.OpenAI.assert_called_once_with(
        api_key="test-key",
        base_url="https://api.openai.com/v1",
        timeout=60.0,
        max_retries=0,
    )
    call_kwargs = client.chat.completions.create.call_args[1]
    assert call_kwargs["model"] == "gpt-3.5-turbo"
    assert call_kwargs["temperature"] == 0.7
    assert call_kwargs["messages"] == [
        {"role": "system", "content": "S"},
        {"role": "user", "content": "Hello"},
    ]
    assert "extra_body" not in call_kwargs


def test_openai_extra_options_go_to_extra_body(openai_sdk):
    _, client = openai_sdk
    bot = OpenAIChatbot(api_key="k")
    bot.chat("Hello", max_tokens=20, seed=7)
    call_kwargs = client.chat.completions.create.call_args[1]
    assert call_kwargs["max_tokens"] == 20
    assert call_kwargs["extra_body"] == {"seed": 7}


def test_openai_client_reused(openai_sdk):
    module, _ = openai_sdk
    bot = OpenAIChatbot(api_key="k")
    bot.chat("one")
    bot.chat("two")
    module.OpenAI.assert_called_once()


def test_openai_missing_api_key(openai_sdk):
    """AuthError is raised before any client is built, and history is untouched."""
    module, _ = openai_sdk
    bot = OpenAIChatbot()
    with pytest.raises(AuthError, match="OPENAI_API_KEY"):
        bot.chat("Hello")
    module.OpenAI.assert_not_called()
    assert len(bot.conversation) == 0


def test_openai_status_error_rolls_back(openai_sdk):
    """A failed call raises ApiError and leaves the history as it was."""
    _, client = openai_sdk
    client.chat.completions.create.side_effect = FakeAPIStatusError(
        "bad request", status_code=400, body={"error": {"message": "bad"}}
    )
    bot = OpenAIChatbot(api_key="k", system_prompt="S")
    with pytest.raises(ApiError) as exc_info:
        bot.chat("Hello")
    assert exc_info.value.status_code == 400
    assert exc_info.value.body == {"error": {"message": "bad"}}
    assert bot.conversation.get_api_messages() == [{"role": "system", "content": "S"}]


def test_openai_timeout(openai_sdk):
    _, client = openai_sdk
    client.chat.completions.create.side_effect = FakeAPITimeoutError("timed out")
    bot = OpenAIChatbot(api_key="k")
    with pytest.raises(ApiTimeoutError):
        bot.chat("Hello")


def test_openai_connection_error(openai_sdk):
    _, client = openai_sdk
    client.chat.completions.create.side_effect = FakeAPIError("connection reset")
    bot = OpenAIChatbot(api_key="k")
    with pytest.raises(ApiError, match="connection reset"):
        bot.ask("Hello")


def test_openai_empty_choices(openai_sdk):
    """A success response without choices is an ApiError."""
    _, client = openai_sdk
    client.chat.completions.create.return_value = MagicMock(choices=[])
    bot = OpenAIChatbot(api_key="k")
    with pytest.raises(ApiError, match="No response"):
        bot.chat("Hello")
    assert len(bot.conversation) == 0


def test_openai_ask_does_not_mutate(openai_sdk):
    """ask() sends history plus the question but records nothing."""
    _, client = openai_sdk
    bot = OpenAIChatbot(api_key="k", system_prompt="S")
    bot.conversation.add_message("user", "earlier")
    before = bot.conversation.get_api_messages()

    assert bot.ask("Question?") == "OpenAI response"

    assert bot.conversation.get_api_messages() == before
    sent = client.chat.completions.create.call_args[1]["messages"]
    assert sent == before + [{"role": "user", "content": "Question?"}]


# ---------------------------------------------------------------------------
# ClaudeChatbot tests
# ---------------------------------------------------------------------------


def test_claude_defaults():
    bot = ClaudeChatbot()
    assert bot.model == "claude-3-sonnet-20240229"
    assert bot.endpoint == "https://api.anthropic.com"
    assert bot.settings.max_tokens == 1024
    assert bot.settings.api_version == "2023-06-01"


def test_claude_key_from_env(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "ant-key")
    monkeypatch.setenv("OPENAI_API_KEY", "openai-key")
    assert ClaudeChatbot().settings.api_key == "ant-key"


def test_claude_payload_excludes_system():
    """The Claude payload moves the system prompt out of the message list."""
    bot = ClaudeChatbot(api_key="k", system_prompt="You are helpful.")
    bot.conversation.add_message("user", "Hello")
    payload = bot.build_payload(bot.conversation.get_api_messages())
    assert all(m["role"] != "system" for m in payload["messages"])
    assert payload["messages"] == [{"role": "user", "content": "Hello"}]
    assert payload["system"] == "You are helpful."
    assert payload["max_tokens"] == 1024
    assert payload["temperature"] == 0.7


def test_claude_payload_without_system():
    bot = ClaudeChatbot(api_key="k")
    payload = bot.build_payload([{"role": "user", "content": "Hello"}])
    assert "system" not in payload


def test_claude_chat(anthropic_sdk):
    module, client = anthropic_sdk
    bot = ClaudeChatbot(api_key="test-key", system_prompt="S")
    result = bot.chat("Hello", temperature=0.1, max_tokens=100)

    assert result == "Claude response"
    assert [m["role"] for m in bot.history()] == ["system", "user", "assistant"]
    module.Anthropic.assert_called_once_with(
        api_key="test-key",
        base_url="https://api.anthropic.com",
        timeout=60.0,
        max_retries=0,
        default_headers={"anthropic-version": "2023-06-01"},
    )
    call_kwargs = client.messages.create.call_args[1]
    assert call_kwargs["system"] == "S"
    assert call_kwargs["messages"] == [{"role": "user", "content": "Hello"}]
    assert call_kwargs["max_tokens"] == 100
    assert call_kwargs["temperature"] == 0.1


def test_claude_missing_api_key(anthropic_sdk):
    module, _ = anthropic_sdk
    bot = ClaudeChatbot(system_prompt="S")
    with pytest.raises(AuthError, match="ANTHROPIC_API_KEY"):
        bot.ask("Hello")
    module.Anthropic.assert_not_called()


def test_claude_status_error(anthropic_sdk):
    _, client = anthropic_sdk
    client.messages.create.side_effect = FakeAPIStatusError(
        "overloaded", status_code=529, body={"type": "error"}
    )
    bot = ClaudeChatbot(api_key="k")
    with pytest.raises(ApiError) as exc_info:
        bot.chat("Hello")
    assert exc_info.value.status_code == 529
    assert len(bot.conversation) == 0


def test_claude_empty_content(anthropic_sdk):
    _, client = anthropic_sdk
    client.messages.create.return_value = MagicMock(content=[])
    bot = ClaudeChatbot(api_key="k")
    with pytest.raises(ApiError, match="No response from Claude API"):
        bot.chat("Hello")


def test_claude_ask_does_not_mutate(anthropic_sdk):
    _, client = anthropic_sdk
    bot = ClaudeChatbot(api_key="k", system_prompt="S")
    bot.ask("Question?")
    assert len(bot.conversation) == 1
    call_kwargs = client.messages.create.call_args[1]
    assert call_kwargs["messages"] == [{"role": "user", "content": "Question?"}]


# ---------------------------------------------------------------------------
# Factory tests
# ---------------------------------------------------------------------------


def test_create_chatbot_openai():
    bot = create_chatbot("openai", api_key="k", system_prompt="S", max_history=5)
    assert isinstance(bot, OpenAIChatbot)
    assert bot.model == "gpt-3.5-turbo"
    assert bot.conversation.max_history == 5
    assert bot.conversation.system_prompt == "S"


def test_create_chatbot_claude_with_model():
    bot = create_chatbot(Provider.CLAUDE, api_key="k", model="claude-3-opus-20240229")
    assert isinstance(bot, ClaudeChatbot)
    assert bot.model == "claude-3-opus-20240229"


def test_create_chatbot_case_insensitive():
    assert isinstance(create_chatbot("Claude", api_key="k"), ClaudeChatbot)


def test_create_chatbot_unknown_provider():
    """Unknown provider tags fail instead of falling back to a default."""
    with pytest.raises(ConfigError, match="Unknown provider"):
        create_chatbot("opneai", api_key="k")


def test_create_chatbot_forwards_config():
    bot = create_chatbot("openai", api_key="k", config={"endpoint": "http://localhost:1234/v1"})
    assert bot.endpoint == "http://localhost:1234/v1"


def test_get_chatbot_from_config():
    config = ConfigNode({
        "llm": {"provider": "claude", "model": "claude-3-haiku-20240307", "api_key": "sk-test",
                "temperature": 0.3},
        "conversation": {"max_history": 8, "system_prompt": "Be brief."},
    })
    bot = get_chatbot(config)
    assert isinstance(bot, ClaudeChatbot)
    assert bot.model == "claude-3-haiku-20240307"
    assert bot.settings.api_key == "sk-test"
    assert bot.settings.temperature == 0.3
    assert bot.conversation.max_history == 8
    assert bot.conversation.system_prompt == "Be brief."


def test_get_chatbot_does_not_mutate_config():
    data = {"llm": {"provider": "openai", "model": "gpt-4"}}
    get_chatbot(ConfigNode(data), api_key="k")
    assert data["llm"] == {"provider": "openai", "model": "gpt-4"}


def test_get_chatbot_defaults_to_openai():
    assert isinstance(get_chatbot(ConfigNode({}), api_key="k"), OpenAIChatbot)


def test_get_chatbot_unknown_provider():
    with pytest.raises(ConfigError):
        get_chatbot(ConfigNode({"llm": {"provider": "unknown"}}))
