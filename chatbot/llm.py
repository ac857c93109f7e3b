"""Chatbot clients for OpenAI-style and Claude-style chat APIs.

Each client owns a :class:`~chatbot.history.ConversationManager` and exposes
the same ``chat`` / ``ask`` / ``reset`` / ``history`` interface.  The two
providers differ only in request/response shape and in where the system
prompt goes: inline in the message list (OpenAI) or as a separate top-level
``system`` field (Claude).

The provider SDKs are imported lazily so the package imports without them.
"""

from __future__ import annotations

import abc
import enum
from typing import Any

from loguru import logger

from chatbot.config import ClientSettings, ConfigNode, ProviderDefaults
from chatbot.errors import ApiError, ApiTimeoutError, AuthError, ConfigError
from chatbot.history import DEFAULT_MAX_HISTORY, ConversationManager
from chatbot.message import Role


class Provider(str, enum.Enum):
    """Supported API providers."""

    OPENAI = "openai"
    CLAUDE = "claude"

    @classmethod
    def parse(cls, value: Provider | str) -> Provider:
        """Return the matching provider (case-insensitive) or raise ConfigError."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ConfigError(
                f"Unknown provider: {value!r}. "
                f"Available: {', '.join(p.value for p in cls)}"
            ) from None


class ChatbotClient(abc.ABC):
    """Base class for provider clients.

    Parameters
    ----------
    api_key:
        API credential.  Defaults to the provider's environment variable,
        then ``CHATBOT_API_KEY``; read once, here.
    model:
        Model identifier.  Defaults to the provider default.
    system_prompt:
        Optional system prompt seeded into the conversation.
    max_history:
        Conversation window size (messages, system included).
    config:
        Extra client settings: ``endpoint``, ``temperature``, ``max_tokens``,
        ``timeout``, ``api_version``, ``options``.
    """

    provider: Provider
    label: str
    defaults: ProviderDefaults

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        system_prompt: str | None = None,
        max_history: int = DEFAULT_MAX_HISTORY,
        config: dict[str, Any] | None = None,
    ) -> None:
        self.settings = ClientSettings.resolve(
            self.defaults, api_key=api_key, model=model, config=config
        )
        self.conversation = ConversationManager(
            max_history=max_history, system_prompt=system_prompt
        )
        self._client: Any = None

    @property
    def model(self) -> str:
        return self.settings.model

    @property
    def endpoint(self) -> str:
        return self.settings.endpoint

    def chat(
        self,
        text: str,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
        **options: Any,
    ) -> str:
        """Send *text* as the next user turn and return the reply.

        Both the user message and the reply are recorded in the history.  If
        the call fails, the history is restored to its state before the call,
        so a failed ``chat`` never leaves an unanswered user message behind.
        """
        with self.conversation.rollback_on_error():
            self.conversation.add_message(Role.USER, text)
            reply = self._complete(
                self.conversation.get_api_messages(),
                temperature=temperature,
                max_tokens=max_tokens,
                **options,
            )
            self.conversation.add_message(Role.ASSISTANT, reply)
        return reply

    def ask(
        self,
        text: str,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
        **options: Any,
    ) -> str:
        """Send *text* with the current history as context, without recording it."""
        messages = self.conversation.get_api_messages()
        messages.append({"role": Role.USER.value, "content": text})
        return self._complete(
            messages, temperature=temperature, max_tokens=max_tokens, **options
        )

    def reset(self) -> None:
        """Clear the conversation, keeping the system prompt."""
        self.conversation.clear()

    def history(self) -> list[dict[str, Any]]:
        """Return the conversation as plain-data message records."""
        return self.conversation.get_messages()

    def describe(self) -> str:
        """Return the client class name and a conversation summary."""
        return f"Chatbot ({self.__class__.__name__})\n{self.conversation.summary()}"

    @abc.abstractmethod
    def build_payload(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
        **options: Any,
    ) -> dict[str, Any]:
        """Return the request body for *messages* in the provider's wire shape."""

    @abc.abstractmethod
    def _send(self, payload: dict[str, Any]) -> str:
        """Issue the API request and return the reply text."""

    def _complete(
        self,
        messages: list[dict[str, str]],
        **kwargs: Any,
    ) -> str:
        if not self.settings.api_key:
            raise AuthError(
                f"{self.label} API key not set. Set the "
                f"{self.defaults.api_key_env} environment variable or pass api_key."
            )
        payload = self.build_payload(messages, **kwargs)
        logger.debug(
            "{} request: model={} messages={}",
            self.provider.value,
            payload["model"],
            len(payload["messages"]),
        )
        reply = self._send(payload)
        logger.debug("{} reply: {} chars", self.provider.value, len(reply))
        return reply

    def _merge_options(self, options: dict[str, Any]) -> dict[str, Any]:
        merged = dict(self.settings.options)
        merged.update(options)
        return merged

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(model={self.model!r})"


def _split_payload(
    payload: dict[str, Any], named: tuple[str, ...]
) -> tuple[dict[str, Any], dict[str, Any]]:
    """Split *payload* into SDK keyword arguments and ``extra_body`` fields."""
    kwargs = {k: v for k, v in payload.items() if k in named}
    extra = {k: v for k, v in payload.items() if k not in named}
    return kwargs, extra


class OpenAIChatbot(ChatbotClient):
    """OpenAI chat completions client (and any OpenAI-compatible endpoint)."""

    provider = Provider.OPENAI
    label = "OpenAI"
    defaults = ProviderDefaults(
        model="gpt-3.5-turbo",
        endpoint="https://api.openai.com/v1",
        api_key_env="OPENAI_API_KEY",
    )

    _NAMED = ("model", "messages", "temperature", "max_tokens")

    def build_payload(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
        **options: Any,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [dict(m) for m in messages],
            "temperature": self.settings.temperature if temperature is None else temperature,
        }
        if max_tokens is None:
            max_tokens = self.settings.max_tokens
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        payload.update(self._merge_options(options))
        return payload

    def _get_client(self) -> Any:
        if self._client is None:
            from openai import OpenAI

            # No SDK retries; callers opt in via chatbot.retry.
            self._client = OpenAI(
                api_key=self.settings.api_key,
                base_url=self.endpoint,
                timeout=self.settings.timeout,
                max_retries=0,
            )
        return self._client

    def _send(self, payload: dict[str, Any]) -> str:
        import openai

        client = self._get_client()
        kwargs, extra = _split_payload(payload, self._NAMED)
        if extra:
            kwargs["extra_body"] = extra
        try:
            response = client.chat.completions.create(**kwargs)
        except openai.APITimeoutError as exc:
            raise ApiTimeoutError(f"OpenAI API request timed out: {exc}") from exc
        except openai.APIStatusError as exc:
            raise ApiError(
                f"OpenAI API error: {exc}", status_code=exc.status_code, body=exc.body
            ) from exc
        except openai.APIError as exc:
            raise ApiError(f"OpenAI API error: {exc}", body=exc.body) from exc

        choices = getattr(response, "choices", None)
        if not choices:
            raise ApiError("No response from OpenAI API", body=response)
        content = choices[0].message.content
        if content is None:
            raise ApiError("OpenAI API response has no message content", body=response)
        return content


class ClaudeChatbot(ChatbotClient):
    """Anthropic Claude messages client."""

    provider = Provider.CLAUDE
    label = "Claude"
    defaults = ProviderDefaults(
        model="claude-3-sonnet-20240229",
        endpoint="https://api.anthropic.com",
        api_key_env="ANTHROPIC_API_KEY",
        max_tokens=1024,
        api_version="2023-06-01",
    )

    _NAMED = ("model", "messages", "max_tokens", "temperature", "system")

    def build_payload(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
        **options: Any,
    ) -> dict[str, Any]:
        # Claude takes the system prompt as a top-level field, not a message.
        system_parts = [m["content"] for m in messages if m["role"] == Role.SYSTEM.value]
        conversation = [dict(m) for m in messages if m["role"] != Role.SYSTEM.value]

        payload: dict[str, Any] = {
            "model": self.model,
            "messages": conversation,
            "max_tokens": self.settings.max_tokens if max_tokens is None else max_tokens,
            "temperature": self.settings.temperature if temperature is None else temperature,
        }
        if system_parts:
            payload["system"] = "\n".join(system_parts)
        payload.update(self._merge_options(options))
        return payload

    def _get_client(self) -> Any:
        if self._client is None:
            import anthropic

            headers = {}
            if self.settings.api_version:
                headers["anthropic-version"] = self.settings.api_version
            self._client = anthropic.Anthropic(
                api_key=self.settings.api_key,
                base_url=self.endpoint,
                timeout=self.settings.timeout,
                max_retries=0,
                default_headers=headers,
            )
        return self._client

    def _send(self, payload: dict[str, Any]) -> str:
        import anthropic

        client = self._get_client()
        kwargs, extra = _split_payload(payload, self._NAMED)
        if extra:
            kwargs["extra_body"] = extra
        try:
            response = client.messages.create(**kwargs)
        except anthropic.APITimeoutError as exc:
            raise ApiTimeoutError(f"Claude API request timed out: {exc}") from exc
        except anthropic.APIStatusError as exc:
            raise ApiError(
                f"Claude API error: {exc}", status_code=exc.status_code, body=exc.body
            ) from exc
        except anthropic.APIError as exc:
            raise ApiError(f"Claude API error: {exc}", body=exc.body) from exc

        content = getattr(response, "content", None)
        if not content:
            raise ApiError("No response from Claude API", body=response)
        text = getattr(content[0], "text", None)
        if text is None:
            raise ApiError("Claude API response has no text block", body=response)
        return text


# ---------------------------------------------------------------------------
# Provider registry & factory
# ---------------------------------------------------------------------------

_CLIENTS: dict[Provider, type[ChatbotClient]] = {
    Provider.OPENAI: OpenAIChatbot,
    Provider.CLAUDE: ClaudeChatbot,
}


def create_chatbot(
    provider: Provider | str,
    api_key: str | None = None,
    model: str | None = None,
    system_prompt: str | None = None,
    max_history: int = DEFAULT_MAX_HISTORY,
    config: dict[str, Any] | None = None,
) -> ChatbotClient:
    """Build the client for *provider* with that provider's defaults.

    Raises
    ------
    ConfigError
        If *provider* is not ``openai`` or ``claude``.
    """
    cls = _CLIENTS[Provider.parse(provider)]
    logger.debug("Creating {} (model={})", cls.__name__, model or cls.defaults.model)
    return cls(
        api_key=api_key,
        model=model,
        system_prompt=system_prompt,
        max_history=max_history,
        config=config,
    )


def get_chatbot(config: ConfigNode, api_key: str | None = None) -> ChatbotClient:
    """Instantiate the client described by a loaded config.

    Reads ``config.llm`` (``provider``, ``model``, ``api_key`` and any client
    settings) and ``config.conversation`` (``system_prompt``,
    ``max_history``).
    """
    llm = dict(config.section("llm").to_dict())
    conversation = config.section("conversation")

    provider = llm.pop("provider", Provider.OPENAI.value)
    model = llm.pop("model", None)
    key = api_key if api_key is not None else llm.pop("api_key", None)
    llm.pop("api_key", None)

    return create_chatbot(
        provider,
        api_key=key,
        model=model,
        system_prompt=conversation.get("system_prompt"),
        max_history=conversation.get("max_history", DEFAULT_MAX_HISTORY),
        config=llm,
    )
