"""CLI interface for newapi-chat with streaming output."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import signal
import sys
from pathlib import Path
from typing import Any

import click
from prompt_toolkit import PromptSession
from prompt_toolkit.history import FileHistory
from rich.console import Console
from rich.table import Table

from newapi_chat import __version__
from newapi_chat.config import ChatConfig, ConfigSnapshot, ConfigWatcher, load_config
from newapi_chat.core.turn import TurnContext, TurnController
from newapi_chat.display import ConsoleDisplay
from newapi_chat.errors import ChatError
from newapi_chat.events.bus import EventBus
from newapi_chat.llm.client import ChatClient
from newapi_chat.tools.builtin import register_builtins
from newapi_chat.tools.registry import ToolRegistry
from newapi_chat.types import CancelToken, TurnStatus

console = Console()

HISTORY_PATH = Path("~/.newapi_chat/history").expanduser()


class Session:
    """Wires config, client, tools and display for one CLI run."""

    def __init__(
        self,
        config: ChatConfig,
        config_path: str | None,
        overrides: dict[str, Any],
        tools_enabled: bool,
        verbose: bool,
    ) -> None:
        self._config_path = config_path
        self._overrides = overrides
        self.verbose = verbose
        self.bus = EventBus()
        self.display = ConsoleDisplay(console)
        self.bus.subscribe("*", self.display.handle)
        self.client = ChatClient(
            event_bus=self.bus,
            timeout=config.timeout,
            max_retries=config.max_retries,
        )
        self.registry = ToolRegistry()
        register_builtins(self.registry)
        self.cancel = CancelToken()

        snapshot = self._apply_overrides(config.snapshot())
        self.controller = TurnController(
            self.client,
            self.display,
            self.bus,
            max_depth=config.max_tool_depth,
            config_watcher=ConfigWatcher(self._reload, initial=snapshot),
        )
        self.ctx = TurnContext(
            messages=[],
            config=snapshot,
            registry=self.registry,
            cancel=self.cancel,
            tools_enabled=tools_enabled and config.tools_enabled,
        )

    def _apply_overrides(self, snapshot: ConfigSnapshot) -> ConfigSnapshot:
        return dataclasses.replace(snapshot, **self._overrides)

    def _reload(self) -> ConfigSnapshot:
        config, _ = load_config(self._config_path)
        return self._apply_overrides(config.snapshot())

    async def ask(self, text: str) -> None:
        """Run one turn; Ctrl-C sets the cancel token instead of killing us."""
        self.cancel.clear()
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, self.cancel.set)
            installed = True
        except (NotImplementedError, RuntimeError):
            installed = False
        try:
            result = await self.controller.run(self.ctx, text)
        except ChatError as e:
            console.print(f"\n[red]Error: {e}[/red]")
            if self.verbose:
                console.print_exception()
            return
        finally:
            if installed:
                loop.remove_signal_handler(signal.SIGINT)

        if result.status is TurnStatus.CANCELLED:
            console.print("\n[yellow]Cancelled.[/yellow]")
        elif result.status is TurnStatus.DEPTH_EXCEEDED:
            console.print(f"\n[yellow]{result.error}[/yellow]")
        else:
            console.print()

    async def show_models(self) -> None:
        try:
            models = await self.client.list_models(self.ctx.config)
        except (ChatError, ValueError) as e:
            console.print(f"[red]Failed to list models: {e}[/red]")
            return
        table = Table(title="Models", show_header=False, box=None)
        for m in models:
            name = m.get("id", m) if isinstance(m, dict) else m
            marker = " *" if name == self.ctx.config.model else ""
            table.add_row(f"{name}{marker}")
        console.print(table)

    async def handle_command(self, cmd: str) -> bool | str:
        """Handle /commands. Returns True if handled, 'quit' to exit."""
        command = cmd.strip().split(maxsplit=1)[0].lower()
        if command in ("/quit", "/exit", "/q"):
            return "quit"
        if command == "/clear":
            self.ctx.messages.clear()
            console.print("[dim]Conversation cleared.[/dim]")
            return True
        if command == "/models":
            await self.show_models()
            return True
        console.print(f"[yellow]Unknown command: {command}[/yellow]")
        return True

    async def repl(self) -> None:
        HISTORY_PATH.parent.mkdir(parents=True, exist_ok=True)
        session: PromptSession[str] = PromptSession(history=FileHistory(str(HISTORY_PATH)))
        while True:
            try:
                user_input = (await session.prompt_async("> ")).strip()
            except (EOFError, KeyboardInterrupt):
                console.print("\n[dim]Goodbye![/dim]")
                break
            if not user_input:
                continue
            if user_input.startswith("/"):
                if await self.handle_command(user_input) == "quit":
                    console.print("[dim]Goodbye![/dim]")
                    break
                continue
            await self.ask(user_input)

    async def aclose(self) -> None:
        await self.client.aclose()


async def _run(session: Session, prompt_text: str | None) -> None:
    try:
        if prompt_text:
            await session.ask(prompt_text)
        else:
            await session.repl()
    finally:
        await session.aclose()


@click.command()
@click.option("--config", "-c", "config_path", default=None,
              help="Path to newapi_chat.yaml (or legacy JSON config)")
@click.option("--model", "-m", default=None, help="Model name override")
@click.option("--base-url", default=None, help="API base URL override")
@click.option("--prompt", "-p", "prompt_text", default=None,
              help="Send one message non-interactively and exit")
@click.option("--no-tools", is_flag=True, help="Do not offer tools to the model")
@click.option("--no-thinking", is_flag=True, help="Hide <think> output")
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging")
@click.version_option(__version__, prog_name="newapi-chat")
def main(config_path: str | None, model: str | None, base_url: str | None,
         prompt_text: str | None, no_tools: bool, no_thinking: bool, verbose: bool):
    """newapi-chat - streaming chat client for OpenAI-compatible APIs."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)

    try:
        config, config_file = load_config(config_path)
    except FileNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    overrides: dict[str, Any] = {}
    if model:
        overrides["model"] = model
    if base_url:
        overrides["base_url"] = base_url
    if no_thinking:
        overrides["show_thinking"] = False

    session = Session(config, config_path, overrides, not no_tools, verbose)
    if not prompt_text:
        console.print(f"[bold cyan]newapi-chat[/bold cyan] [dim]v{__version__}[/dim]")
        console.print(f"[dim]Config: {config_file or 'defaults'}[/dim]")
        console.print(
            f"[dim]Model: {session.ctx.config.model} @ {session.ctx.config.base_url}[/dim]"
        )
        console.print("[dim]/clear, /models, /quit; Ctrl-C cancels a reply[/dim]\n")

    asyncio.run(_run(session, prompt_text))


if __name__ == "__main__":
    main()
