"""Configuration loader with dot-path access, and client defaults.

Loads chatbot_config.yml and exposes settings via attribute access,
e.g. config.llm.provider, config.conversation.max_history.

:class:`ClientSettings` resolves per-provider defaults (credential, model,
endpoint) once, when a client is built.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator

import yaml

from chatbot.errors import ConfigError

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "chatbot_config.yml"

# Fallback credential variable for any provider.
GENERIC_API_KEY_ENV = "CHATBOT_API_KEY"


class ConfigNode:
    """Recursive wrapper that turns a dict into an object with attribute access."""

    def __init__(self, data: dict[str, Any] | None) -> None:
        self._data = data or {}
        for key, value in self._data.items():
            if isinstance(value, dict):
                setattr(self, key, ConfigNode(value))
            else:
                setattr(self, key, value)

    def __repr__(self) -> str:
        return f"ConfigNode({self._data!r})"

    def __getattr__(self, name: str) -> Any:
        # Only reached for missing keys; raising AttributeError keeps
        # getattr(obj, key, default) working.
        if name.startswith("_"):
            raise AttributeError(name)
        raise AttributeError(
            f"Config has no attribute {name!r}. "
            f"Available keys: {', '.join(sorted(self._data)) or '(none)'}"
        )

    def get(self, key: str, default: Any = None) -> Any:
        """Return the value for *key* if present, else *default*."""
        return self._data.get(key, default)

    def section(self, key: str) -> ConfigNode:
        """Return the sub-section *key*, or an empty node if it is absent."""
        value = self._data.get(key)
        return ConfigNode(value if isinstance(value, dict) else {})

    def __getitem__(self, key: str) -> Any:
        return getattr(self, key)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def to_dict(self) -> dict[str, Any]:
        """Return the raw dictionary."""
        return self._data


def load_config(path: Path | str | None = None) -> ConfigNode:
    """Load YAML config and return a ConfigNode with dot-path access.

    Parameters
    ----------
    path:
        Path to the YAML config file.  Defaults to ``chatbot_config.yml``
        in the project root.

    Raises
    ------
    FileNotFoundError
        If the config file does not exist.
    """
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")
    with open(config_path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return ConfigNode(data)


# ---------------------------------------------------------------------------
# Client settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProviderDefaults:
    """Built-in defaults for one provider."""

    model: str
    endpoint: str
    api_key_env: str
    max_tokens: int | None = None
    api_version: str | None = None


@dataclass
class ClientSettings:
    """Fully resolved settings for one chatbot client.

    Build with :meth:`resolve`; every field is final after that.  The
    environment is consulted only during resolution, so a client keeps the
    same credential for its whole lifetime.

    ``options`` are extra request fields sent with every call (e.g.
    ``top_p``); per-call keyword arguments override them.
    """

    api_key: str
    model: str
    endpoint: str
    max_tokens: int | None = None
    temperature: float = 0.7
    timeout: float = 60.0
    api_version: str | None = None
    options: dict[str, Any] = field(default_factory=dict)

    CONFIG_KEYS = frozenset(
        {"model", "endpoint", "max_tokens", "temperature", "timeout", "api_version", "options"}
    )

    @classmethod
    def resolve(
        cls,
        defaults: ProviderDefaults,
        api_key: str | None = None,
        model: str | None = None,
        config: dict[str, Any] | None = None,
    ) -> ClientSettings:
        """Merge explicit values, *config* entries and provider defaults.

        Credential precedence: *api_key*, then the provider's environment
        variable, then ``CHATBOT_API_KEY``.  An unset credential resolves to
        an empty string; clients raise :class:`~chatbot.errors.AuthError` for
        it at call time.

        Raises
        ------
        ConfigError
            If *config* holds a key this client does not understand.
        """
        config = dict(config or {})
        unknown = set(config) - cls.CONFIG_KEYS
        if unknown:
            raise ConfigError(
                f"Unknown client config key(s): {', '.join(sorted(unknown))}. "
                f"Available: {', '.join(sorted(cls.CONFIG_KEYS))}"
            )
        if api_key is None:
            api_key = (
                os.environ.get(defaults.api_key_env)
                or os.environ.get(GENERIC_API_KEY_ENV)
                or ""
            )
        return cls(
            api_key=api_key,
            model=model or config.get("model") or defaults.model,
            endpoint=config.get("endpoint") or defaults.endpoint,
            max_tokens=config.get("max_tokens", defaults.max_tokens),
            temperature=float(config.get("temperature", 0.7)),
            timeout=float(config.get("timeout", 60.0)),
            api_version=config.get("api_version", defaults.api_version),
            options=dict(config.get("options") or {}),
        )

    def __repr__(self) -> str:
        # Never show the credential.
        return (
            f"ClientSettings(model={self.model!r}, endpoint={self.endpoint!r}, "
            f"api_key={'set' if self.api_key else 'unset'})"
        )
