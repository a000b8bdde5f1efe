"""Display sinks: where streamed content and thinking text end up."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from rich.console import Console
from rich.panel import Panel

from newapi_chat.types import ChatEvent, EventType


@runtime_checkable
class DisplaySink(Protocol):
    """Receives decoded text as it streams in."""

    def content(self, text: str) -> None: ...

    def thinking(self, text: str) -> None: ...


class BufferedDisplay:
    """Collects everything in memory; used for one-shot runs and tests.

    Subscribed to the event bus, it drops the text of attempts that fail so
    only the answer that was finally accepted remains.
    """

    def __init__(self) -> None:
        self.content_parts: list[str] = []
        self.thinking_parts: list[str] = []
        self._mark = (0, 0)

    def handle(self, event: ChatEvent) -> None:
        if event.type == EventType.ATTEMPT_STARTED:
            self._mark = (len(self.content_parts), len(self.thinking_parts))
        elif event.type == EventType.ATTEMPT_FAILED:
            del self.content_parts[self._mark[0]:]
            del self.thinking_parts[self._mark[1]:]

    def content(self, text: str) -> None:
        self.content_parts.append(text)

    def thinking(self, text: str) -> None:
        self.thinking_parts.append(text)

    @property
    def text(self) -> str:
        return "".join(self.content_parts)

    @property
    def thought(self) -> str:
        return "".join(self.thinking_parts)


class ConsoleDisplay:
    """Renders the stream and engine events to the terminal in real time."""

    def __init__(self, con: Console) -> None:
        self.con = con
        self._mode: str | None = None  # "content", "thinking" or None
        self._streamed = False  # output printed during the current attempt

    def content(self, text: str) -> None:
        if self._mode == "thinking":
            self.con.print()
            self.con.print()
        self._streamed = True
        self._mode = "content"
        self.con.print(text, end="", highlight=False, markup=False)

    def thinking(self, text: str) -> None:
        if self._mode != "thinking":
            self._flush()
            self.con.print("[dim]thinking:[/dim]")
            self._mode = "thinking"
        self._streamed = True
        self.con.print(text, end="", style="dim italic", highlight=False, markup=False)

    def handle(self, event: ChatEvent) -> None:
        """EventBus handler for tool activity, usage and fallbacks."""
        data = event.data
        if event.type == EventType.TOOL_EXECUTING:
            self._flush()
            args = data.get("arguments", "")
            if len(args) > 120:
                args = args[:120] + "..."
            self.con.print(f"[yellow]> {data.get('tool', '?')}[/yellow] [dim]{args}[/dim]")

        elif event.type == EventType.TOOL_EXECUTED:
            out = data.get("result", "")
            if len(out) > 600:
                out = out[:600] + "\n..."
            if out.strip():
                ok = not out.startswith("Error")
                icon = "[green]OK[/green]" if ok else "[red]FAIL[/red]"
                self.con.print(Panel(
                    out, title=f"{icon} {data.get('tool', '')}",
                    border_style="dim", expand=False,
                ))

        elif event.type == EventType.TOOL_NAME_CORRECTED:
            self._flush()
            self.con.print(
                f"[magenta]~ tool name {data.get('original')!r} "
                f"corrected to {data.get('corrected')!r}[/magenta]"
            )

        elif event.type == EventType.ATTEMPT_STARTED:
            self._streamed = False

        elif event.type == EventType.ATTEMPT_FAILED:
            self._flush()
            if self._streamed:
                self.con.rule("[dim]partial reply discarded[/dim]", style="dim")
                self._streamed = False
            if not data.get("last"):
                self.con.print(
                    f"[yellow]! {data.get('label', 'attempt')} failed: "
                    f"{data.get('error', '')}; trying next variant[/yellow]"
                )

        elif event.type == EventType.USAGE:
            self._flush()
            prompt = data.get("prompt_tokens", 0)
            completion = data.get("completion_tokens", 0)
            total = data.get("total_tokens", prompt + completion)
            self.con.print(f"[dim](Tokens: {prompt} + {completion} = {total})[/dim]")

        elif event.type in (EventType.TURN_DONE, EventType.TURN_CANCELLED):
            self._flush()

    def _flush(self) -> None:
        if self._mode is not None:
            self.con.print()
            self._mode = None
