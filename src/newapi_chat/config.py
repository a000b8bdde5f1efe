"""Configuration management for newapi-chat.

Config discovery (first match wins):
  1. ``--config`` flag
  2. ``./newapi_chat.yaml`` (or legacy ``./.newapi-chat-config.json``)
  3. ``~/.newapi_chat/config.yaml`` (or legacy ``~/.newapi-chat-config.json``)
  4. Built-in defaults

Legacy JSON files are read with the YAML loader, and their camelCase keys
(``apiKey``, ``baseUrl`` ...) are accepted as aliases.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping

import yaml
from pydantic import BaseModel, ConfigDict, Field

_logger = logging.getLogger(__name__)


class ProfileConfig(BaseModel):
    """A named endpoint profile; unset fields fall back to the top level."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    api_key: str | None = Field(default=None, alias="apiKey")
    base_url: str | None = Field(default=None, alias="baseUrl")
    model: str | None = None
    system_prompt: str | None = Field(default=None, alias="systemPrompt")


class ChatConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    api_key: str = Field(default="", alias="apiKey")
    base_url: str = Field(default="https://api.openai.com", alias="baseUrl")
    model: str = "gpt-4o"
    provider: str = ""
    system_prompt: str = Field(default="", alias="systemPrompt")
    show_thinking: bool = Field(default=True, alias="showThinking")

    # Engine tunables
    max_tokens: int = Field(default=8192, alias="maxTokens")
    timeout: float = 120.0
    max_retries: int = Field(default=3, alias="maxRetries")
    max_tool_depth: int = Field(default=15, alias="maxToolDepth")
    tools_enabled: bool = Field(default=True, alias="toolsEnabled")

    current_profile: str = Field(default="default", alias="currentProfile")
    profiles: dict[str, ProfileConfig] = Field(default_factory=dict)

    @property
    def active_profile(self) -> ProfileConfig:
        return self.profiles.get(self.current_profile, ProfileConfig())

    def snapshot(self, env: Mapping[str, str] | None = None) -> ConfigSnapshot:
        """Resolve env > profile > file values into a read-only snapshot."""
        env = os.environ if env is None else env
        profile = self.active_profile
        return ConfigSnapshot(
            api_key=env.get("NEWAPI_API_KEY") or profile.api_key or self.api_key,
            base_url=env.get("NEWAPI_BASE_URL") or profile.base_url or self.base_url,
            model=env.get("NEWAPI_MODEL") or profile.model or self.model,
            system_prompt=(
                profile.system_prompt
                or self.system_prompt
                or env.get("NEWAPI_SYSTEM_PROMPT", "")
            ),
            show_thinking=self.show_thinking,
            max_tokens=self.max_tokens,
            provider_name=env.get("NEWAPI_PROVIDER") or self.provider,
        )


@dataclass(frozen=True)
class ConfigSnapshot:
    """The configuration a single turn runs with."""

    api_key: str = ""
    base_url: str = ""
    model: str = ""
    system_prompt: str = ""
    show_thinking: bool = True
    max_tokens: int = 8192
    provider_name: str = ""


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

CONFIG_FILENAME = "newapi_chat.yaml"
LEGACY_FILENAME = ".newapi-chat-config.json"


def _search_paths() -> list[Path]:
    home = Path.home()
    return [
        Path.cwd() / CONFIG_FILENAME,
        Path.cwd() / LEGACY_FILENAME,
        home / ".newapi_chat" / "config.yaml",
        home / LEGACY_FILENAME,
    ]


def load_config(
    config_path: str | Path | None = None,
) -> tuple[ChatConfig, Path | None]:
    """Load configuration from a YAML (or legacy JSON) file.

    Returns ``(config, resolved_path)``; *resolved_path* is ``None`` when
    no file was found and built-in defaults are used.

    Raises ``FileNotFoundError`` if an explicit path does not exist.
    """
    if config_path is not None:
        resolved = Path(config_path).expanduser()
        if not resolved.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        resolved = next((p for p in _search_paths() if p.exists()), None)

    if resolved is None:
        _logger.info("No config file found, using defaults")
        return ChatConfig(), None

    _logger.info("Loading config from %s", resolved)
    with open(resolved, encoding="utf-8") as f:
        raw: dict[str, Any] = yaml.safe_load(f) or {}
    return ChatConfig.model_validate(raw), resolved.resolve()


# ---------------------------------------------------------------------------
# Hot-swap detection
# ---------------------------------------------------------------------------

def has_changed(prev: ConfigSnapshot | None, current: ConfigSnapshot | None) -> bool:
    """True when the endpoint identity differs between two snapshots."""
    if current is None:
        return False
    if prev is None:
        return True
    return (
        prev.provider_name != current.provider_name
        or prev.base_url != current.base_url
        or prev.api_key != current.api_key
        or prev.model != current.model
    )


class ConfigWatcher:
    """Detects configuration changes made outside the running process.

    *loader* is called on every :meth:`poll`; it may return ``None`` when
    no external configuration is available.
    """

    def __init__(
        self,
        loader: Callable[[], ConfigSnapshot | None],
        initial: ConfigSnapshot | None = None,
    ) -> None:
        self._loader = loader
        self._last = initial

    @property
    def last(self) -> ConfigSnapshot | None:
        return self._last

    def poll(self) -> ConfigSnapshot | None:
        """Return the new snapshot if it changed since the last poll."""
        try:
            current = self._loader()
        except Exception as e:
            _logger.warning("Failed to reload configuration: %s", e)
            return None
        if not has_changed(self._last, current):
            return None
        self._last = current
        return current
