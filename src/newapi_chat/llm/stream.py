"""Incremental decoder for OpenAI-style server-sent event streams.

Each ``data:`` line carries one JSON chunk whose ``choices[0].delta`` holds
content text and/or tool-call fragments; ``data: [DONE]`` ends the stream.
Content may embed a ``<think>...</think>`` block which is routed to the
display's thinking channel.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

from newapi_chat.display import DisplaySink
from newapi_chat.errors import CancellationError, ProtocolError
from newapi_chat.types import CancelFlag, StreamResult, is_cancelled

from .tool_calls import ToolCallAccumulator

_logger = logging.getLogger(__name__)

OPEN_TAG = "<think>"
CLOSE_TAG = "</think>"

_DATA_PREFIX = "data:"
_DONE_MARKER = "[DONE]"


def _partial_tag_suffix(text: str, tag: str) -> int:
    """Length of the longest suffix of *text* that is a proper prefix of *tag*."""
    for size in range(min(len(tag) - 1, len(text)), 0, -1):
        if text.endswith(tag[:size]):
            return size
    return 0


class ThinkingFilter:
    """Split content deltas into visible text and thought text.

    States are NORMAL and THINKING.  A delta ending in something that could
    be the start of the awaited tag is held back until the next delta
    arrives, so tags split across chunks are still recognised.
    """

    def __init__(self) -> None:
        self.in_thinking = False
        self.reply = ""
        self.content = ""
        self.thought = ""
        self._pending = ""

    def feed(self, text: str) -> list[tuple[str, str]]:
        """Return ``(kind, text)`` segments, kind being content or thinking."""
        segments: list[tuple[str, str]] = []
        buf = self._pending + text
        self._pending = ""
        while buf:
            tag = CLOSE_TAG if self.in_thinking else OPEN_TAG
            idx = buf.find(tag)
            if idx >= 0:
                self._emit(segments, buf[:idx])
                buf = buf[idx + len(tag):]
                self.in_thinking = not self.in_thinking
                continue
            held = _partial_tag_suffix(buf, tag)
            self._emit(segments, buf[:len(buf) - held])
            self._pending = buf[len(buf) - held:]
            break
        return segments

    def flush(self) -> list[tuple[str, str]]:
        """Release held-back text at end of stream."""
        segments: list[tuple[str, str]] = []
        pending, self._pending = self._pending, ""
        self._emit(segments, pending)
        return segments

    def _emit(self, segments: list[tuple[str, str]], text: str) -> None:
        if not text:
            return
        if self.in_thinking:
            self.thought += text
            segments.append(("thinking", text))
        else:
            self.content += text
            segments.append(("content", text))
        self.reply += text


def _error_message(error: Any) -> str:
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if isinstance(error, str):
        return error
    return json.dumps(error, ensure_ascii=False)


def _first_choice(obj: dict[str, Any]) -> dict[str, Any]:
    """``choices[0]`` when it is an object, else an empty dict."""
    choices = obj.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        return choices[0]
    return {}


class StreamDecoder:
    """Decode one streamed response; one instance per attempt.

    Call :meth:`feed` with text as it arrives and :meth:`finish` once the
    transport is exhausted, or let :meth:`decode` drive both.
    """

    def __init__(
        self,
        sink: DisplaySink | None = None,
        show_thinking: bool = True,
    ) -> None:
        self._sink = sink
        self._show_thinking = show_thinking
        self._buffer = ""
        self._filter = ThinkingFilter()
        self._tool_calls = ToolCallAccumulator()
        self._usage: dict[str, int] = {}
        self._raw = ""
        self._noise: list[str] = []
        self._received = False
        self._done = False

    async def decode(
        self,
        chunks: AsyncIterator[str],
        cancel: CancelFlag | None = None,
    ) -> StreamResult:
        async for chunk in chunks:
            self._check_cancel(cancel)
            if not self.feed(chunk, cancel):
                break
        self._check_cancel(cancel)
        return self.finish()

    def decode_body(self, text: str) -> StreamResult:
        """Decode a complete non-streamed JSON body."""
        self._noise.append(text)
        return self.finish()

    def feed(self, text: str, cancel: CancelFlag | None = None) -> bool:
        """Consume *text*; returns False once the terminator has been seen."""
        if self._done:
            return False
        self._buffer += text
        *lines, self._buffer = self._buffer.split("\n")
        for line in lines:
            self._check_cancel(cancel)
            if not self._handle_line(line):
                self._done = True
                return False
        return True

    def finish(self) -> StreamResult:
        tail, self._buffer = self._buffer, ""
        if tail.strip() and not self._done:
            if tail.lstrip().startswith(_DATA_PREFIX):
                self._handle_line(tail.lstrip())
            else:
                self._noise.append(tail)

        for kind, text in self._filter.flush():
            self._deliver(kind, text)

        if not self._received:
            self._fallback()

        return StreamResult(
            reply=self._filter.reply,
            content=self._filter.content,
            thinking=self._filter.thought,
            raw=self._raw,
            tool_calls=self._tool_calls.finalize(),
            usage=dict(self._usage),
        )

    # ------------------------------------------------------------------
    # Line handling
    # ------------------------------------------------------------------

    def _handle_line(self, line: str) -> bool:
        line = line.rstrip("\r")
        if not line.strip():
            return True
        if not line.startswith(_DATA_PREFIX):
            self._raise_error_envelope(line)
            self._noise.append(line)
            return True

        data = line[len(_DATA_PREFIX):].strip()
        if data == _DONE_MARKER:
            return False
        try:
            chunk = json.loads(data)
        except json.JSONDecodeError:
            _logger.debug("Skipping malformed stream line: %.200s", data)
            return True
        if isinstance(chunk, dict):
            self._handle_chunk(chunk)
        return True

    def _raise_error_envelope(self, line: str) -> None:
        """Raise if a non-event line is a JSON error envelope."""
        try:
            obj = json.loads(line)
        except json.JSONDecodeError:
            return
        if isinstance(obj, dict) and obj.get("error"):
            raise ProtocolError(_error_message(obj["error"]))

    def _handle_chunk(self, chunk: dict[str, Any]) -> None:
        if chunk.get("usage"):
            self._record_usage(chunk["usage"])
        delta = _first_choice(chunk).get("delta") or {}
        if not isinstance(delta, dict):
            _logger.debug("Skipping chunk with non-object delta: %.200r", delta)
            return
        content = delta.get("content")
        if isinstance(content, str) and content:
            self._on_content(content)
        elif content:
            _logger.debug("Skipping non-text content delta: %.200r", content)
        if delta.get("tool_calls") and self._tool_calls.feed(delta):
            self._received = True

    def _record_usage(self, usage: Any) -> None:
        if isinstance(usage, dict):
            self._usage.update(
                {k: v for k, v in usage.items() if isinstance(v, int)},
            )

    def _on_content(self, text: str) -> None:
        self._raw += text
        self._received = True
        for kind, segment in self._filter.feed(text):
            self._deliver(kind, segment)

    def _deliver(self, kind: str, text: str) -> None:
        if self._sink is None:
            return
        if kind == "content":
            self._sink.content(text)
        elif self._show_thinking:
            self._sink.thinking(text)

    # ------------------------------------------------------------------
    # Degraded responses
    # ------------------------------------------------------------------

    def _fallback(self) -> None:
        """Make sense of a stream that produced no content or tool calls."""
        leftover = "\n".join(self._noise).strip()
        if not leftover:
            raise ProtocolError("empty response")
        try:
            obj = json.loads(leftover)
        except json.JSONDecodeError:
            raise ProtocolError(f"unparseable response: {leftover[:100]}") from None

        if isinstance(obj, dict) and obj.get("error"):
            raise ProtocolError(_error_message(obj["error"]))
        if not isinstance(obj, dict) or not isinstance(obj.get("choices"), list):
            raise ProtocolError(f"unparseable response: {leftover[:100]}")

        self._apply_completion(obj)
        for kind, text in self._filter.flush():
            self._deliver(kind, text)
        if not self._received:
            raise ProtocolError("empty response")

    def _apply_completion(self, obj: dict[str, Any]) -> None:
        if obj.get("usage"):
            self._record_usage(obj["usage"])
        message = _first_choice(obj).get("message") or {}
        if not isinstance(message, dict):
            return
        content = message.get("content")
        if isinstance(content, str) and content:
            self._on_content(content)
        tool_calls = message.get("tool_calls") or []
        if isinstance(tool_calls, list) and tool_calls:
            merged = self._tool_calls.feed({
                "tool_calls": [
                    {**tc, "index": tc.get("index", i)}
                    for i, tc in enumerate(tool_calls)
                    if isinstance(tc, dict)
                ],
            })
            if merged:
                self._received = True

    @staticmethod
    def _check_cancel(cancel: CancelFlag | None) -> None:
        if is_cancelled(cancel):
            raise CancellationError("Stream cancelled")
