"""Merge streamed tool-call fragments and repair common model mistakes."""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable

from newapi_chat.types import ToolCallRef

_logger = logging.getLogger(__name__)


def _well_formed(tc: Any) -> bool:
    """A fragment is a dict whose id, name and arguments are strings if present."""
    if not isinstance(tc, dict):
        return False
    if tc.get("id") is not None and not isinstance(tc["id"], str):
        return False
    func = tc.get("function")
    if func is None:
        return True
    if not isinstance(func, dict):
        return False
    return all(
        func.get(key) is None or isinstance(func[key], str)
        for key in ("name", "arguments")
    )


class ToolCallAccumulator:
    """Accumulate native function-calling tool_calls from streaming deltas.

    OpenAI-compatible providers send tool calls as incremental chunks keyed
    by ``index``.  The first chunk for an index allocates the call; later
    chunks append to ``function.name`` and ``function.arguments``.  Some
    gateways omit ``index``; a new ``id`` then starts a new call and
    anything else continues the most recent one.
    """

    def __init__(self) -> None:
        self._calls: dict[int, ToolCallRef] = {}
        self._last_index: int | None = None

    def feed(self, delta: dict[str, Any]) -> int:
        """Process ``delta.tool_calls`` from a single SSE chunk.

        Returns the number of fragments merged.  Fragments of the wrong
        shape are skipped.
        """
        tool_calls = delta.get("tool_calls") or []
        if not isinstance(tool_calls, list):
            _logger.debug("Skipping non-list tool_calls: %.200r", tool_calls)
            return 0

        merged = 0
        for tc in tool_calls:
            if not _well_formed(tc):
                _logger.debug("Skipping malformed tool-call fragment: %.200r", tc)
                continue
            idx = self._resolve_index(tc)
            call = self._calls.get(idx)
            if call is None:
                call = self._calls[idx] = ToolCallRef(id=tc.get("id") or "")
            elif tc.get("id") and not call.id:
                call.id = tc["id"]

            func = tc.get("function") or {}
            if func.get("name"):
                call.name += func["name"]
            if func.get("arguments"):
                call.raw_arguments += func["arguments"]
            self._last_index = idx
            merged += 1
        return merged

    def finalize(self) -> list[ToolCallRef]:
        """Return the calls in index order, assigning ids where missing."""
        result: list[ToolCallRef] = []
        for idx in sorted(self._calls):
            call = self._calls[idx]
            if not call.id:
                call.id = f"call_{idx}"
            result.append(call)
        return result

    def _resolve_index(self, tc: dict[str, Any]) -> int:
        idx = tc.get("index")
        if isinstance(idx, int):
            return idx
        tc_id = tc.get("id")
        if tc_id:
            for known_idx, call in self._calls.items():
                if call.id == tc_id:
                    return known_idx
            return max(self._calls, default=-1) + 1
        return self._last_index if self._last_index is not None else 0


# ---------------------------------------------------------------------------
# Correction
# ---------------------------------------------------------------------------

def correct_tool_name(name: str, known: Iterable[str]) -> str:
    """Map a mangled tool name onto a registered one.

    Models occasionally emit names like ``read_fileread_file``.  An unknown
    name is matched against every known name it contains; the longest
    contained name wins.  Names with no match are returned unchanged.
    """
    known = list(known)
    if name in known:
        return name
    for candidate in sorted(known, key=len, reverse=True):
        if candidate and candidate in name:
            return candidate
    return name


def repair_arguments(raw: str) -> str:
    """Return a parseable argument string where a simple repair exists.

    Empty arguments become ``"{}"``.  Two JSON objects glued together
    (``{"a": 1}{"a": 1}``) are cut back to the first one.
    """
    if not raw or not raw.strip():
        return "{}"
    try:
        json.loads(raw)
        return raw
    except json.JSONDecodeError:
        pass

    text = raw.strip()
    try:
        obj, end = json.JSONDecoder().raw_decode(text)
    except json.JSONDecodeError:
        return raw
    if isinstance(obj, dict) and text[end:].lstrip().startswith("{"):
        return text[:end]
    return raw


def correct_tool_calls(
    calls: list[ToolCallRef],
    known: Iterable[str],
) -> list[tuple[str, str]]:
    """Fix names and arguments of *calls* in place.

    Returns ``(old_name, new_name)`` pairs for every renamed call.
    """
    known = list(known)
    renamed: list[tuple[str, str]] = []
    for call in calls:
        fixed = correct_tool_name(call.name, known)
        if fixed != call.name:
            _logger.info("Corrected tool name %r -> %r", call.name, fixed)
            renamed.append((call.name, fixed))
            call.name = fixed
        repaired = repair_arguments(call.raw_arguments)
        if repaired != call.raw_arguments:
            _logger.info("Repaired arguments for tool %s", call.name)
            call.raw_arguments = repaired
    return renamed
