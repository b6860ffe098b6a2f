"""Configuration for Completion Harness.

Config discovery (first match wins):
  1. ``--config`` flag
  2. ``./completion_harness.yaml``
  3. ``~/.config/completion-harness/config.yaml``
  4. Built-in defaults
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from completion_harness.errors import ConfigError
from completion_harness.types import (
    DEFAULT_CONTEXT_COUNT,
    Assistant,
    AssistantSettings,
    Model,
)

_logger = logging.getLogger(__name__)

DEFAULT_URL = "http://localhost:11434/v1"
DEFAULT_MODEL_ID = "qwen3-8b"
TOOL_RESULT_ROLES = ("tool", "user")


@dataclass
class ProfileSpec:
    """A named OpenAI-compatible endpoint.

    ``provider`` is the provider id used for provider-specific request
    quirks (``openrouter``, ``groq``, ``deepseek`` ...).
    """

    provider: str = "openai"
    url: str = DEFAULT_URL
    api_key: str = "no-key"
    keep_alive: str | int | None = None
    not_support_array_content: bool = False
    extra_params: dict[str, Any] = field(default_factory=dict)


@dataclass
class AssistantSpec:
    """Default assistant used when the caller does not supply one."""

    prompt: str = ""
    temperature: float | None = 0.7
    top_p: float | None = 1.0
    context_count: int = DEFAULT_CONTEXT_COUNT
    max_tokens: int | None = None
    stream_output: bool = True
    reasoning_effort: str | None = None
    enable_web_search: bool = False
    custom_parameters: dict[str, Any] = field(default_factory=dict)

    def build(self, model: Model | None = None) -> Assistant:
        return Assistant(
            prompt=self.prompt,
            model=model,
            enable_web_search=self.enable_web_search,
            settings=AssistantSettings(
                temperature=self.temperature,
                top_p=self.top_p,
                context_count=self.context_count,
                max_tokens=self.max_tokens,
                stream_output=self.stream_output,
                reasoning_effort=self.reasoning_effort,
                custom_parameters=dict(self.custom_parameters),
            ),
        )


_DEFAULT_TOPIC_PROMPT = (
    "Summarize the conversation into a title of at most 10 words. "
    "Reply with the title only, no punctuation or quotes."
)


@dataclass
class HarnessConfig:
    """Top-level config for Completion Harness."""

    # Active profile name
    profile: str = "local"

    # Named profiles
    profiles: dict[str, ProfileSpec] = field(
        default_factory=lambda: {"local": ProfileSpec()}
    )

    # Process-wide fallback model
    default_model: Model = field(
        default_factory=lambda: Model(id=DEFAULT_MODEL_ID, provider="openai")
    )

    assistant: AssistantSpec = field(default_factory=AssistantSpec)

    # Tool-call resumption
    max_rounds: int = 20  # 0 = unbounded
    tool_result_role: str = "tool"  # "tool" | "user"

    topic_naming_prompt: str = _DEFAULT_TOPIC_PROMPT
    request_timeout: float = 120

    @property
    def active_profile(self) -> ProfileSpec:
        return self.profiles.get(self.profile, ProfileSpec())


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

CONFIG_LOCATIONS = (
    Path("completion_harness.yaml"),
    Path.home() / ".config" / "completion-harness" / "config.yaml",
)


def find_config_file(explicit: str | Path | None = None) -> Path | None:
    """Locate the file to load, or ``None`` when defaults apply."""
    if explicit is not None:
        candidate = Path(explicit)
        if candidate.is_file():
            return candidate
        _logger.warning("Config file %s does not exist; using defaults", candidate)
        return None
    return next((p for p in CONFIG_LOCATIONS if p.is_file()), None)


def _profile_from(raw: dict[str, Any]) -> ProfileSpec:
    fields = {k: raw[k] for k in ("provider", "url", "api_key", "keep_alive") if k in raw}
    return ProfileSpec(
        **fields,
        not_support_array_content=bool(raw.get("not_support_array_content")),
        extra_params=dict(raw.get("extra_params") or {}),
    )


def _model_from(raw: dict[str, Any] | str | None) -> Model:
    if isinstance(raw, str):
        return Model(id=raw)
    if not raw:
        return Model(id=DEFAULT_MODEL_ID, provider="openai")
    return Model(
        id=raw["id"],
        provider=raw.get("provider", ""),
        name=raw.get("name", ""),
        capabilities=tuple(raw.get("capabilities") or ()),
    )


def _assistant_from(raw: dict[str, Any] | None) -> AssistantSpec:
    accepted = AssistantSpec.__dataclass_fields__
    unknown = sorted(set(raw or {}) - set(accepted))
    if unknown:
        _logger.debug("Ignoring unknown assistant keys: %s", ", ".join(unknown))
    return AssistantSpec(**{k: v for k, v in (raw or {}).items() if k in accepted})


def load_config(path: str | Path | None = None) -> HarnessConfig:
    """Read the YAML config at *path* (or the first default location).

    Missing files yield ``HarnessConfig()``.  Structural problems raise
    ``ConfigError`` naming the offending file.
    """
    source = find_config_file(path)
    if source is None:
        _logger.info("No config file found, using defaults")
        return HarnessConfig()

    _logger.info("Loading config from %s", source)
    raw = yaml.safe_load(source.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{source}: top level must be a mapping")

    profiles = {
        name: _profile_from(body or {})
        for name, body in (raw.get("profiles") or {}).items()
    } or {"local": ProfileSpec()}

    active = raw.get("profile") or next(iter(profiles))
    if active not in profiles:
        raise ConfigError(
            f"{source}: active profile {active!r} is not defined "
            f"(available: {', '.join(profiles)})"
        )

    role = raw.get("tool_result_role", "tool")
    if role not in TOOL_RESULT_ROLES:
        raise ConfigError(f"{source}: tool_result_role must be one of {TOOL_RESULT_ROLES}")

    defaults = HarnessConfig()
    return HarnessConfig(
        profile=active,
        profiles=profiles,
        default_model=_model_from(raw.get("default_model")),
        assistant=_assistant_from(raw.get("assistant")),
        max_rounds=int(raw.get("max_rounds", defaults.max_rounds)),
        tool_result_role=role,
        topic_naming_prompt=raw.get("topic_naming_prompt", defaults.topic_naming_prompt),
        request_timeout=float(raw.get("request_timeout", defaults.request_timeout)),
    )
