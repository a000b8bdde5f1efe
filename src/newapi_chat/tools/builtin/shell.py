"""Shell command tool."""

from __future__ import annotations

import asyncio
import os
from typing import Any

from newapi_chat.tools.base import Tool, ToolParameter, ToolResult

# Environment variable prefixes that should not leak to child processes
_SENSITIVE_PREFIXES = (
    "NEWAPI_", "AWS_", "OPENAI_", "ANTHROPIC_", "GITHUB_", "GH_",
    "AZURE_", "GOOGLE_", "HF_", "HUGGING",
)

_SENSITIVE_NAMES = frozenset({
    "API_KEY", "SECRET", "TOKEN", "PASSWORD", "DATABASE_URL",
    "SECRET_KEY", "PRIVATE_KEY",
})


def _build_safe_env() -> dict[str, str]:
    """Copy of the environment without credentials."""
    return {
        k: v
        for k, v in os.environ.items()
        if not any(k.startswith(p) for p in _SENSITIVE_PREFIXES)
        and k not in _SENSITIVE_NAMES
    }


class RunCommandTool(Tool):
    """Run a shell command and capture its output."""

    name = "run_command"
    description = (
        "Execute a shell command in the terminal, e.g. to install "
        "dependencies, run tests or build the project. Use with care."
    )
    max_output = 8000
    parameters = [
        ToolParameter(
            name="command",
            type="string",
            description="The shell command to execute",
        ),
    ]

    def __init__(self, timeout: float = 120, cwd: str | None = None) -> None:
        self.timeout = timeout
        self.cwd = cwd

    async def execute(self, **kwargs: Any) -> ToolResult:
        command = kwargs.get("command", "")
        if not command:
            return ToolResult(success=False, output="", error="No command provided")

        proc = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=self.cwd,
            env=_build_safe_env(),
        )
        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            return ToolResult(
                success=False,
                output="",
                error=f"Command timed out after {self.timeout}s",
            )

        output = stdout.decode(errors="replace")
        stderr_text = stderr.decode(errors="replace")
        if stderr_text:
            output += f"\n[stderr]\n{stderr_text}" if output else stderr_text

        returncode = proc.returncode or 0
        return ToolResult(
            success=returncode == 0,
            output=output.strip(),
            error="" if returncode == 0 else f"Exit code: {returncode}",
            metadata={"returncode": returncode},
        )
