"""Async OpenAI-compatible chat client.

Uses ``httpx.AsyncClient`` and exposes :meth:`AsyncLLMClient.send_completion`,
which returns the decoded response body for non-streaming requests and an
async iterator of decoded ``chat.completion.chunk`` objects for streaming
ones.  Transport failures raise :class:`TransportError` and are never
retried here.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

import httpx

from completion_harness.config import ProfileSpec
from completion_harness.core.cancellation import AbortHandle
from completion_harness.errors import TransportError

from .params import RequestParameters

_logger = logging.getLogger(__name__)


def _transport_error(exc: httpx.HTTPError) -> TransportError:
    status: int | None = None
    response = getattr(exc, "response", None) if isinstance(exc, httpx.HTTPStatusError) else None
    if response is not None:
        status = response.status_code
    err = TransportError(f"LLM API error: {exc}", status_code=status)
    err.__cause__ = exc
    return err


async def _next_line(lines: AsyncIterator[str]) -> str | None:
    try:
        return await lines.__anext__()
    except StopAsyncIteration:
        return None


class AsyncLLMClient:
    """Async client for OpenAI-compatible chat completion APIs."""

    def __init__(
        self,
        profile: ProfileSpec,
        timeout: float = 120,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.profile = profile

        headers = {
            "Authorization": f"Bearer {profile.api_key}",
            "Content-Type": "application/json",
        }
        base_url = profile.url.rstrip("/")

        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout, connect=30),
            transport=transport,
        )
        self._stream_client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout, connect=30, read=60),
            transport=transport,
        )

    # ------------------------------------------------------------------
    # Chat completions
    # ------------------------------------------------------------------

    async def send_completion(
        self,
        params: RequestParameters,
        abort: AbortHandle | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any] | AsyncIterator[dict[str, Any]]:
        """Send one chat completion request.

        Parameters
        ----------
        params:
            Fully merged request parameters.
        abort:
            Optional hard-cancellation handle.  An abort cancels the
            in-flight request and surfaces as ``SessionAborted``.
        timeout:
            Optional per-request timeout in seconds.
        """
        payload = params.to_payload()
        _logger.debug(
            "POST /chat/completions model=%s messages=%d stream=%s",
            params.model, len(params.messages), params.stream,
        )
        if params.stream:
            return self._iter_stream(payload, abort, timeout)
        return await self._post_json("/chat/completions", payload, abort, timeout)

    async def post_json(
        self,
        path: str,
        body: dict[str, Any],
        abort: AbortHandle | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """POST *body* to an endpoint-relative *path*; returns the decoded object."""
        return await self._post_json(path, body, abort, timeout)

    async def _post_json(
        self,
        path: str,
        payload: dict[str, Any],
        abort: AbortHandle | None,
        timeout: float | None,
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"json": payload}
        if timeout is not None:
            kwargs["timeout"] = timeout
        request = self._client.post(path, **kwargs)
        try:
            resp = await (abort.guard(request) if abort else request)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise _transport_error(e) from e

        try:
            data = resp.json()
        except (json.JSONDecodeError, ValueError):
            _logger.warning("LLM API returned a non-JSON body for %s", path)
            return {}
        if not isinstance(data, dict):
            _logger.warning("LLM API returned %s instead of an object", type(data).__name__)
            return {}
        return data

    async def _iter_stream(
        self,
        payload: dict[str, Any],
        abort: AbortHandle | None,
        timeout: float | None,
    ) -> AsyncIterator[dict[str, Any]]:
        kwargs: dict[str, Any] = {"json": payload}
        if timeout is not None:
            kwargs["timeout"] = timeout
        request = self._stream_client.build_request("POST", "/chat/completions", **kwargs)
        try:
            sending = self._stream_client.send(request, stream=True)
            resp = await (abort.guard(sending) if abort else sending)
            try:
                if resp.status_code >= 400:
                    body = (await resp.aread()).decode(errors="replace")
                    raise TransportError(
                        f"LLM API returned {resp.status_code}: {body[:500]}",
                        status_code=resp.status_code,
                    )

                lines = resp.aiter_lines()
                while True:
                    # Each read races the abort handle.
                    pending = _next_line(lines)
                    raw_line = await (abort.guard(pending) if abort else pending)
                    if raw_line is None:
                        break
                    if not raw_line.startswith("data:"):
                        continue
                    data_str = raw_line[5:].strip()
                    if data_str == "[DONE]":
                        break
                    try:
                        data = json.loads(data_str)
                    except json.JSONDecodeError:
                        _logger.debug("Skipping malformed SSE line: %r", data_str[:200])
                        continue
                    if isinstance(data, dict):
                        yield data
            finally:
                await resp.aclose()
        except httpx.HTTPError as e:
            raise _transport_error(e) from e

    # ------------------------------------------------------------------
    # Models
    # ------------------------------------------------------------------

    async def list_models(self) -> list[dict[str, Any]]:
        """``GET /models``; returns the raw model entries."""
        try:
            resp = await self._client.get("/models")
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as e:
            raise _transport_error(e) from e
        except (json.JSONDecodeError, ValueError):
            return []
        if isinstance(data, dict):
            entries = data.get("data") or data.get("body") or []
        else:
            entries = data
        return [e for e in entries if isinstance(e, dict)]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Close underlying HTTP clients."""
        await self._client.aclose()
        await self._stream_client.aclose()
