"""Request parameter derivation.

Parameters are assembled from ordered layers, later layers overwriting
same-named fields of earlier ones::

    base -> web search -> reasoning effort -> provider specific -> custom

A layer removes a field by mapping it to :data:`OMIT`.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Callable, Iterable, Mapping, Protocol

from completion_harness.config import ProfileSpec
from completion_harness.types import Assistant, AssistantSettings, Model

from .models import (
    is_claude_thinking_model,
    is_grok_reasoning_model,
    is_openai_o_series,
    is_openai_reasoning,
    is_openai_web_search,
    is_reasoning_model,
    web_search_params,
)

_logger = logging.getLogger(__name__)


class _Omit:
    """Marker for a field that must be absent from the request."""

    _instance: _Omit | None = None

    def __new__(cls) -> _Omit:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "OMIT"


OMIT: Any = _Omit()


def merge_layers(layers: Iterable[Mapping[str, Any]]) -> dict[str, Any]:
    """Merge partial records; the last layer defining a field wins."""
    merged: dict[str, Any] = {}
    for layer in layers:
        merged.update(layer)
    return {k: v for k, v in merged.items() if v is not OMIT}


@dataclass(frozen=True)
class RequestParameters:
    """Everything sent to ``/chat/completions`` for one round."""

    model: str
    messages: list[dict[str, Any]]
    stream: bool = True
    fields: dict[str, Any] = field(default_factory=dict)

    def with_messages(self, messages: list[dict[str, Any]]) -> RequestParameters:
        """Same generation controls, different message chain."""
        return dataclasses.replace(self, messages=list(messages))

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": self.messages,
            "stream": self.stream,
        }
        payload.update(self.fields)
        return payload


# ---------------------------------------------------------------------------
# Reasoning-effort strategies
# ---------------------------------------------------------------------------

class ReasoningStrategy(Protocol):
    """Maps assistant settings to a model family's reasoning controls."""

    def derive_parameters(self, settings: AssistantSettings) -> dict[str, Any]:
        ...


class NoReasoningControls:
    def derive_parameters(self, settings: AssistantSettings) -> dict[str, Any]:
        return {}


class EffortLabel:
    """Pass the effort label through under a family-specific field.

    ``path`` is the nested key path, e.g. ``("reasoning", "effort")``.
    """

    def __init__(self, *path: str) -> None:
        self._path = path

    def derive_parameters(self, settings: AssistantSettings) -> dict[str, Any]:
        effort = settings.reasoning_effort
        if effort is None:
            return {}
        value: Any = effort
        for key in reversed(self._path[1:]):
            value = {key: value}
        return {self._path[0]: value}


class ThinkingBudget:
    """Convert an effort label into a token budget for extended thinking."""

    def __init__(
        self,
        ratios: Mapping[str, float],
        minimum: int = 1024,
        maximum: int = 32000,
    ) -> None:
        self._ratios = dict(ratios)
        self._minimum = minimum
        self._maximum = maximum

    def derive_parameters(self, settings: AssistantSettings) -> dict[str, Any]:
        ratio = self._ratios.get(settings.reasoning_effort or "")
        if not ratio:
            return {}
        budget = settings.effective_max_tokens * ratio
        budget = int(max(min(budget, self._maximum), self._minimum))
        return {"thinking": {"type": "enabled", "budget_tokens": budget}}


REASONING_STRATEGIES: dict[str, ReasoningStrategy] = {
    "none": NoReasoningControls(),
    "openrouter": EffortLabel("reasoning", "effort"),
    "grok": EffortLabel("reasoning_effort"),
    "openai-o": EffortLabel("reasoning_effort"),
    "claude-thinking": ThinkingBudget({"high": 0.8, "medium": 0.5, "low": 0.2}),
}

# First matching rule decides the family of a reasoning model.
_FAMILY_RULES: list[tuple[Callable[[str, Model], bool], str]] = [
    (lambda provider, m: m.provider == "openrouter", "openrouter"),
    (lambda provider, m: is_grok_reasoning_model(m), "grok"),
    (lambda provider, m: is_openai_o_series(m), "openai-o"),
    (lambda provider, m: is_claude_thinking_model(m), "claude-thinking"),
]

# Providers that accept no reasoning controls at all.
_NO_REASONING_PROVIDERS = frozenset({"groq"})


@lru_cache(maxsize=256)
def resolve_family(provider_id: str, model: Model) -> str:
    """Family tag selecting the reasoning strategy for *model*."""
    if provider_id in _NO_REASONING_PROVIDERS or not is_reasoning_model(model):
        return "none"
    for matches, family in _FAMILY_RULES:
        if matches(provider_id, model):
            return family
    return "none"


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------

class RequestParameterBuilder:
    """Derives per-call parameters from an assistant and a model.

    Every method is a pure function of its arguments and the profile the
    builder was created with.
    """

    def __init__(self, profile: ProfileSpec) -> None:
        self._profile = profile

    @property
    def provider_id(self) -> str:
        return self._profile.provider

    def suppress_sampling(self, model: Model) -> bool:
        return is_reasoning_model(model) or is_openai_web_search(model)

    def base_params(
        self,
        assistant: Assistant,
        model: Model,
        messages: list[dict[str, Any]],
        stream: bool,
    ) -> dict[str, Any]:
        settings = assistant.settings
        layer: dict[str, Any] = {
            "model": model.id,
            "messages": messages,
            "stream": stream,
        }
        if not self.suppress_sampling(model):
            if settings.temperature is not None:
                layer["temperature"] = settings.temperature
            if settings.top_p is not None:
                layer["top_p"] = settings.top_p
        if settings.max_tokens is not None:
            layer["max_tokens"] = settings.max_tokens
        if self._profile.keep_alive is not None:
            layer["keep_alive"] = self._profile.keep_alive
        return layer

    def reasoning_params(self, assistant: Assistant, model: Model) -> dict[str, Any]:
        family = resolve_family(self.provider_id, model)
        return REASONING_STRATEGIES[family].derive_parameters(assistant.settings)

    def provider_params(self, assistant: Assistant, model: Model) -> dict[str, Any]:
        layer: dict[str, Any] = {}
        if self.provider_id == "openrouter" and "deepseek-r1" in model.id:
            layer["include_reasoning"] = True
        if is_openai_reasoning(model):
            layer["max_tokens"] = OMIT
            if assistant.settings.max_tokens is not None:
                layer["max_completion_tokens"] = assistant.settings.max_tokens
        layer.update(self._profile.extra_params)
        return layer

    def layers(
        self,
        assistant: Assistant,
        model: Model,
        messages: list[dict[str, Any]],
        stream: bool,
    ) -> list[dict[str, Any]]:
        return [
            self.base_params(assistant, model, messages, stream),
            web_search_params(assistant, model),
            self.reasoning_params(assistant, model),
            self.provider_params(assistant, model),
            dict(assistant.settings.custom_parameters),
        ]

    def build(
        self,
        assistant: Assistant,
        model: Model,
        messages: list[dict[str, Any]],
        stream: bool | None = None,
    ) -> RequestParameters:
        if stream is None:
            stream = assistant.settings.stream_output
        merged = merge_layers(self.layers(assistant, model, messages, stream))
        params = RequestParameters(
            model=merged.pop("model"),
            messages=list(merged.pop("messages")),
            stream=bool(merged.pop("stream", stream)),
            fields=merged,
        )
        _logger.debug(
            "Built parameters for %s (family=%s): %s",
            model.id, resolve_family(self.provider_id, model), sorted(params.fields),
        )
        return params
