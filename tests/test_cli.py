"""Tests for the newapi-chat command line."""

from click.testing import CliRunner

from newapi_chat import __version__
from newapi_chat.cli import Session, main
from newapi_chat.config import ChatConfig
from newapi_chat.types import Message


def _session(**overrides) -> Session:
    return Session(ChatConfig(), None, overrides, tools_enabled=True, verbose=False)


class TestMain:
    def test_version(self):
        result = CliRunner().invoke(main, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_missing_config_file(self, tmp_path):
        result = CliRunner().invoke(main, ["--config", str(tmp_path / "nope.yaml")])
        assert result.exit_code == 1
        assert "Config file not found" in result.output


class TestSession:
    def test_overrides_applied(self):
        session = _session(model="gpt-4o-mini", show_thinking=False)
        assert session.ctx.config.model == "gpt-4o-mini"
        assert session.ctx.config.show_thinking is False

    def test_builtins_registered(self):
        assert "read_file" in _session().registry.names()

    async def test_quit_commands(self):
        session = _session()
        for cmd in ("/quit", "/exit", "/q"):
            assert await session.handle_command(cmd) == "quit"
        await session.aclose()

    async def test_clear(self):
        session = _session()
        session.ctx.messages.append(Message.user("hi"))
        assert await session.handle_command("/clear") is True
        assert session.ctx.messages == []
        await session.aclose()

    async def test_unknown_command(self):
        session = _session()
        assert await session.handle_command("/bogus") is True
        await session.aclose()
