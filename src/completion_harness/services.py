"""Auxiliary one-shot calls built on the same client as the sessions.

These do not go through the layered parameter builder: each sends a
small fixed request (system + user) and returns plain text.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, Sequence

from completion_harness.config import HarnessConfig
from completion_harness.errors import HarnessError
from completion_harness.llm.models import (
    is_chat_model_id,
    is_openai_reasoning,
    is_reasoning_model,
)
from completion_harness.llm.params import RequestParameters
from completion_harness.types import Assistant, ConversationMessage, Model, StreamDelta

_logger = logging.getLogger(__name__)

TOPIC_MAX_CHARS = 50
TOPIC_CONTEXT_MESSAGES = 5
SEARCH_SUMMARY_TIMEOUT = 20
AUXILIARY_MAX_TOKENS = 1000
SUGGESTIONS_PATH = "/advice_questions"

_LEADING_THINK = re.compile(r"^<think>.*?</think>", re.DOTALL)
_TOPIC_SPECIAL_CHARS = re.compile(r"[\"'`*#\r\n]")


def strip_leading_think(text: str) -> str:
    """Drop a ``<think>...</think>`` block at the very start of *text*."""
    return _LEADING_THINK.sub("", text, count=1)


def clean_topic_name(text: str) -> str:
    return _TOPIC_SPECIAL_CHARS.sub("", text).strip()


def _message_text(response: dict[str, Any]) -> str:
    choices = response.get("choices") or [{}]
    choice = choices[0] if isinstance(choices[0], dict) else {}
    return (choice.get("message") or {}).get("content") or ""


class AssistantService:
    """Translation, topic naming and other single-request helpers.

    Usage::

        service = AssistantService(client, config)
        title = await service.summarize(history, assistant)
    """

    def __init__(self, client: Any, config: HarnessConfig | None = None) -> None:
        self._client = client
        self._config = config or HarnessConfig()

    def _model(self, assistant: Assistant | None = None) -> Model:
        if assistant is not None and assistant.model is not None:
            return assistant.model
        return self._config.default_model

    def _params(
        self,
        model: Model,
        messages: list[dict[str, Any]],
        stream: bool = False,
        **fields: Any,
    ) -> RequestParameters:
        keep_alive = self._config.active_profile.keep_alive
        if keep_alive is not None:
            fields["keep_alive"] = keep_alive
        fields = {k: v for k, v in fields.items() if v is not None}
        return RequestParameters(model=model.id, messages=messages, stream=stream, fields=fields)

    async def translate(
        self,
        text: str,
        assistant: Assistant,
        on_response: Callable[[str], Any] | None = None,
    ) -> str:
        """Translate *text* using the assistant's prompt as instructions.

        With *on_response* the reply is streamed and the callback gets the
        accumulated text after every delta.  ``<think>`` sections of
        reasoning models are hidden from it.
        """
        model = self._model(assistant)
        if text:
            messages = [
                {"role": "system", "content": assistant.prompt},
                {"role": "user", "content": text},
            ]
        else:
            messages = [{"role": "user", "content": assistant.prompt}]

        stream = on_response is not None and not is_openai_reasoning(model)
        params = self._params(
            model, messages, stream=stream, temperature=assistant.settings.temperature,
        )
        response = await self._client.send_completion(params)
        if not stream:
            return _message_text(response)

        result = ""
        thinking = False
        hide_thinking = is_reasoning_model(model)
        async for chunk in response:
            content = StreamDelta.from_chunk(chunk).content
            if hide_thinking and "<think>" in content:
                thinking = True
            if not thinking:
                result += content
                on_response(result)
            if hide_thinking and "</think>" in content:
                thinking = False
        return result

    async def summarize(
        self,
        messages: Sequence[ConversationMessage],
        assistant: Assistant,
    ) -> str:
        """Name a topic from the last few messages of a conversation."""
        model = self._model(assistant)
        recent = [m for m in messages[-TOPIC_CONTEXT_MESSAGES:] if not m.is_preset]
        transcript = "\n".join(
            f"User: {m.text}" if m.role == "user" else f"Assistant: {m.text}"
            for m in recent
        )
        params = self._params(
            model,
            [
                {"role": "system", "content": self._config.topic_naming_prompt},
                {"role": "user", "content": transcript},
            ],
            max_tokens=AUXILIARY_MAX_TOKENS,
        )
        response = await self._client.send_completion(params)
        content = strip_leading_think(_message_text(response))
        return clean_topic_name(content[:TOPIC_MAX_CHARS])

    async def summarize_for_search(
        self,
        messages: Sequence[ConversationMessage],
        assistant: Assistant,
    ) -> str:
        """Condense *messages* into a search query using the assistant's prompt."""
        model = self._model(assistant)
        params = self._params(
            model,
            [
                {"role": "system", "content": assistant.prompt},
                {"role": "user", "content": "\n".join(m.text for m in messages)},
            ],
            max_tokens=AUXILIARY_MAX_TOKENS,
        )
        response = await self._client.send_completion(params, timeout=SEARCH_SUMMARY_TIMEOUT)
        return strip_leading_think(_message_text(response))

    async def generate_text(self, prompt: str, content: str) -> str:
        params = self._params(
            self._config.default_model,
            [
                {"role": "system", "content": prompt},
                {"role": "user", "content": content},
            ],
        )
        response = await self._client.send_completion(params)
        return _message_text(response)

    async def suggestions(
        self,
        messages: Sequence[ConversationMessage],
        assistant: Assistant,
    ) -> list[dict[str, str]]:
        """Follow-up questions from the endpoint's ``/advice_questions`` route.

        Only user messages are sent.  Without an assistant model there is
        nothing to ask and the result is empty.
        """
        if assistant.model is None:
            return []
        body = {
            "messages": [
                {"role": m.role, "content": m.text} for m in messages if m.role == "user"
            ],
            "model": assistant.model.id,
            "max_tokens": 0,
            "temperature": 0,
            "n": 0,
        }
        response = await self._client.post_json(SUGGESTIONS_PATH, body)
        questions = response.get("questions")
        if not isinstance(questions, list):
            return []
        return [{"content": q} for q in questions if q]

    async def check(self, model: Model | None) -> tuple[bool, Exception | None]:
        """Probe *model* with a one-word request.  Never raises."""
        if model is None:
            return False, HarnessError("No model found")
        params = RequestParameters(
            model=model.id,
            messages=[{"role": "user", "content": "hi"}],
            stream=False,
        )
        try:
            response = await self._client.send_completion(params)
        except HarnessError as e:
            _logger.info("Model check failed for %s: %s", model.id, e)
            return False, e
        choices = response.get("choices") or []
        valid = bool(choices and isinstance(choices[0], dict) and choices[0].get("message"))
        return valid, None

    async def list_models(self) -> list[dict[str, Any]]:
        """Chat-capable models offered by the endpoint.  Empty on failure."""
        try:
            entries = await self._client.list_models()
        except HarnessError as e:
            _logger.warning("Listing models failed: %s", e)
            return []
        return [e for e in entries if is_chat_model_id(str(e.get("id", "")))]
