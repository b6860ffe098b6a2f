"""Model capability lookup table.

Name-based detection of what a model can do.  Explicit
``Model.capabilities`` tags always win over the patterns below.
"""

from __future__ import annotations

import re
from typing import Any

from completion_harness.types import Assistant, Model

_REASONING_PATTERN = re.compile(
    r"^(o\d(?:-|$))"
    r"|deepseek-r1|deepseek-reasoner|qwq|qvq|reasoner|thinking"
    r"|claude-3[.-]7-sonnet|grok-3-mini|glm-zero",
    re.IGNORECASE,
)

_VISION_PATTERN = re.compile(
    r"gpt-4o|gpt-4\.1|gpt-4-turbo|gpt-4-vision|^o[134](?:-|$)"
    r"|claude-3|gemini|vision|-vl|llava|pixtral|minicpm-v|internvl"
    r"|qwen2\.5-vl|qwen-vl|glm-4v|grok-2-vision|moondream",
    re.IGNORECASE,
)

_NOT_VISION_PATTERN = re.compile(r"gpt-4o-(?:mini-)?search|embed|tts|whisper", re.IGNORECASE)

_OPENAI_WEB_SEARCH_MODELS = frozenset({
    "gpt-4o-search-preview",
    "gpt-4o-mini-search-preview",
})

_WEB_SEARCH_PROVIDERS = frozenset({"hunyuan", "zhipu", "dashscope", "openrouter", "grok"})

# Providers whose endpoints reject array-valued message content.
NOT_SUPPORT_ARRAY_CONTENT_PROVIDERS = frozenset({
    "deepseek",
    "baichuan",
    "minimax",
    "xirang",
})

# Models whose ``max_tokens`` must be sent as ``max_completion_tokens``.
OPENAI_REASONING_PREFIXES = ("o1", "o3", "o4")

_NON_CHAT_PATTERN = re.compile(
    r"embed|bge-|e5-|rerank|whisper|tts|dall-e|stable-diffusion|moderation",
    re.IGNORECASE,
)


def _has(model: Model, tag: str) -> bool:
    return tag in model.capabilities


def is_reasoning_model(model: Model) -> bool:
    return _has(model, "reasoning") or bool(_REASONING_PATTERN.search(model.id))


def is_vision_model(model: Model) -> bool:
    if _has(model, "vision"):
        return True
    if _NOT_VISION_PATTERN.search(model.id):
        return False
    return bool(_VISION_PATTERN.search(model.id))


def is_openai_o_series(model: Model) -> bool:
    return bool(re.match(r"^o[134](?:-|$)", model.id))


def is_openai_reasoning(model: Model) -> bool:
    return model.id.startswith(OPENAI_REASONING_PREFIXES)


def is_grok_reasoning_model(model: Model) -> bool:
    return "grok-3-mini" in model.id


def is_claude_thinking_model(model: Model) -> bool:
    return "claude-3.7-sonnet" in model.id or "claude-3-7-sonnet" in model.id


def is_openai_web_search(model: Model) -> bool:
    return model.id in _OPENAI_WEB_SEARCH_MODELS


def is_zhipu_model(model: Model) -> bool:
    return model.provider == "zhipu"


def is_hunyuan_search_model(model: Model) -> bool:
    return model.provider == "hunyuan" and model.id != "hunyuan-lite"


def is_web_search_model(model: Model) -> bool:
    if _has(model, "web_search") or is_openai_web_search(model):
        return True
    if model.provider == "hunyuan":
        return is_hunyuan_search_model(model)
    if model.provider == "zhipu":
        return model.id.startswith("glm-4-")
    return model.provider in _WEB_SEARCH_PROVIDERS


def is_chat_model_id(model_id: str) -> bool:
    """Whether a listed model id is usable for chat completions."""
    return bool(model_id) and not _NON_CHAT_PATTERN.search(model_id)


def web_search_params(assistant: Assistant, model: Model) -> dict[str, Any]:
    """Request fields that switch a provider's built-in web search on or off."""
    if not is_web_search_model(model):
        return {}

    if not assistant.enable_web_search:
        if model.provider == "hunyuan":
            return {"enable_enhancement": False}
        return {}

    if model.provider == "hunyuan":
        return {"enable_enhancement": True, "citation": True, "search_info": True}
    if model.provider == "dashscope":
        return {"enable_search": True, "search_options": {"forced_search": True}}
    if model.provider == "openrouter":
        return {"plugins": [{"id": "web"}]}
    if model.provider == "grok":
        return {"search_parameters": {"mode": "auto", "return_citations": True}}
    if is_openai_web_search(model):
        return {"web_search_options": {}}
    if model.provider == "zhipu":
        return {
            "tools": [{
                "type": "web_search",
                "web_search": {"enable": True, "search_result": True},
            }]
        }
    return {}
