"""Async client for OpenAI-compatible chat endpoints.

``ChatClient.stream_chat()`` turns a conversation into one logical request:
it resolves the endpoint, walks the attempt ladder (with tools, without
tools, sibling endpoint) and decodes the first response the server accepts.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from newapi_chat.config import ConfigSnapshot
from newapi_chat.display import DisplaySink
from newapi_chat.errors import ClientError, ProtocolError, TransportError
from newapi_chat.events.bus import EventBus
from newapi_chat.types import (
    AttemptDescriptor,
    CancelFlag,
    EventType,
    Message,
    StreamResult,
    ToolDefinition,
)

from .attempts import AttemptSequencer, plan_attempts, strip_tool_history
from .endpoints import models_url, resolve_endpoint
from .stream import StreamDecoder
from .transport import RequestExecutor

_logger = logging.getLogger(__name__)


class ChatClient:
    """Builds payloads and drives the executor, sequencer and decoder."""

    def __init__(
        self,
        executor: RequestExecutor | None = None,
        event_bus: EventBus | None = None,
        *,
        timeout: float = 120.0,
        max_retries: int = 3,
    ) -> None:
        self._executor = executor or RequestExecutor(
            timeout=timeout, max_retries=max_retries,
        )
        self._bus = event_bus
        self._sequencer = AttemptSequencer(event_bus)

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    @staticmethod
    def headers(snapshot: ConfigSnapshot) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {snapshot.api_key}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }

    @staticmethod
    def prepare_messages(
        snapshot: ConfigSnapshot,
        messages: list[Message],
    ) -> list[dict[str, Any]]:
        """Serialize the conversation, putting the configured system prompt first.

        A configured system prompt replaces any system messages already in
        the conversation; the conversation itself is left untouched.
        """
        wire = [m.to_wire() for m in messages]
        if snapshot.system_prompt:
            wire = [{"role": "system", "content": snapshot.system_prompt}] + [
                m for m in wire if m["role"] != "system"
            ]
        return wire

    @staticmethod
    def build_payload(
        snapshot: ConfigSnapshot,
        wire_messages: list[dict[str, Any]],
        tools: list[ToolDefinition] | None = None,
        *,
        stream: bool = True,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": snapshot.model,
            "messages": wire_messages,
            "stream": stream,
            "max_tokens": snapshot.max_tokens,
        }
        if tools:
            payload["tools"] = [t.to_wire() for t in tools]
        return payload

    # ------------------------------------------------------------------
    # Streaming chat
    # ------------------------------------------------------------------

    async def stream_chat(
        self,
        snapshot: ConfigSnapshot,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
        sink: DisplaySink | None = None,
        cancel: CancelFlag | None = None,
    ) -> StreamResult:
        """Send the conversation and decode the streamed reply.

        Each attempt gets exactly one try (the proxy bypass aside); a
        failing attempt falls through to the next variant and only the
        last attempt's error propagates.
        """
        url = resolve_endpoint(snapshot.base_url, snapshot.model)
        wire = self.prepare_messages(snapshot, messages)
        attempts = plan_attempts(url)
        if not tools:
            attempts = [a for a in attempts if not a.include_tools]

        async def run_attempt(attempt: AttemptDescriptor) -> StreamResult:
            if attempt.include_tools:
                payload = self.build_payload(snapshot, wire, tools)
            else:
                payload = self.build_payload(snapshot, strip_tool_history(wire))
            result = await self._stream_once(attempt, payload, snapshot, sink, cancel)
            result.attempt = attempt
            return result

        result = await self._sequencer.run(attempts, run_attempt)
        if result.usage and self._bus is not None:
            await self._bus.publish(EventType.USAGE, **result.usage)
        return result

    async def _stream_once(
        self,
        attempt: AttemptDescriptor,
        payload: dict[str, Any],
        snapshot: ConfigSnapshot,
        sink: DisplaySink | None,
        cancel: CancelFlag | None,
    ) -> StreamResult:
        try:
            response = await self._executor.send(
                "POST", attempt.url,
                json=payload,
                headers=self.headers(snapshot),
                cancel=cancel,
                max_retries=0,
            )
        except ClientError as e:
            if e.status_code == 400:
                _log_bad_request(attempt.url, payload, e)
            raise

        decoder = StreamDecoder(sink, show_thinking=snapshot.show_thinking)
        content_type = response.headers.get("content-type", "").lower()
        try:
            if "text/html" in content_type:
                raise ProtocolError(
                    f"Received an HTML page from {attempt.url}; "
                    "the base URL is probably wrong"
                )
            if "application/json" in content_type:
                await response.aread()
                return decoder.decode_body(response.text)
            return await decoder.decode(response.aiter_text(), cancel)
        except httpx.HTTPError as e:
            raise TransportError(f"Stream interrupted: {type(e).__name__}: {e}") from e
        finally:
            await response.aclose()

    # ------------------------------------------------------------------
    # Non-streaming helpers
    # ------------------------------------------------------------------

    async def complete(
        self,
        snapshot: ConfigSnapshot,
        messages: list[Message],
        *,
        model: str | None = None,
        max_tokens: int = 4096,
        json_mode: bool = False,
        cancel: CancelFlag | None = None,
    ) -> str:
        """One non-streamed completion with the executor's full retry budget."""
        model = model or snapshot.model
        url = resolve_endpoint(snapshot.base_url, model)
        payload: dict[str, Any] = {
            "model": model,
            "messages": self.prepare_messages(snapshot, messages),
            "stream": False,
            "max_tokens": max_tokens,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        data = await self._request_json(
            "POST", url, snapshot, json=payload, cancel=cancel,
        )
        try:
            return data["choices"][0]["message"].get("content") or ""
        except (KeyError, IndexError, TypeError, AttributeError):
            return ""

    async def list_models(self, snapshot: ConfigSnapshot) -> list[Any]:
        """Fetch the model list from ``<base>/v1/models``."""
        data = await self._request_json("GET", models_url(snapshot.base_url), snapshot)
        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            for key in ("data", "models"):
                if isinstance(data.get(key), list):
                    return data[key]
        raise ProtocolError("unexpected model list format")

    async def _request_json(
        self,
        method: str,
        url: str,
        snapshot: ConfigSnapshot,
        *,
        json: Any = None,
        cancel: CancelFlag | None = None,
    ) -> Any:
        headers = self.headers(snapshot)
        headers["Accept"] = "application/json"
        response = await self._executor.send(
            method, url, json=json, headers=headers, cancel=cancel,
        )
        try:
            await response.aread()
            return response.json()
        except ValueError as e:
            raise ProtocolError(
                f"unparseable response: {response.text[:100]}"
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(f"{type(e).__name__}: {e}") from e
        finally:
            await response.aclose()

    async def aclose(self) -> None:
        await self._executor.aclose()


def _log_bad_request(url: str, payload: dict[str, Any], error: ClientError) -> None:
    """Log what was sent when the server rejects a request as malformed."""
    messages = payload.get("messages") or []
    roles = [m.get("role", "?") for m in messages]
    try:
        server_message = json.loads(error.body)["error"]["message"]
    except (ValueError, KeyError, TypeError):
        server_message = error.body
    _logger.warning(
        "Bad request (400) - endpoint=%s model=%s max_tokens=%s messages=%d "
        "roles(first 3)=%s roles(last 3)=%s server=%s",
        url, payload.get("model"), payload.get("max_tokens"), len(messages),
        ", ".join(roles[:3]), ", ".join(roles[-3:]), server_message,
    )
