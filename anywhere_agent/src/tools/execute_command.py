# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import signal
import asyncio
import logging

from typing import TYPE_CHECKING, ClassVar, Literal
from pydantic import Field

from .base_tool import BaseTool
from ..types.common import ToolErrorKind
from ..types.tool_types import ToolError

if TYPE_CHECKING:
    from .tool_engine import ToolContext

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

DEFAULT_TIMEOUT_MS = 8000
MAX_TIMEOUT_MS = 20000
STDOUT_LIMIT = 8000
STDERR_LIMIT = 4000
TERMINATE_GRACE_SECONDS = 5.0


def clamp_timeout_ms(timeout_ms: int | None) -> int:
    if timeout_ms is None:
        return DEFAULT_TIMEOUT_MS
    return max(1, min(int(timeout_ms), MAX_TIMEOUT_MS))


def signal_name(returncode: int | None) -> str | None:
    if returncode is None or returncode >= 0:
        return None
    try:
        return signal.Signals(-returncode).name
    except ValueError:
        return f"SIG{-returncode}"


async def _drain(stream: asyncio.StreamReader, buffer: bytearray) -> None:
    while True:
        chunk = await stream.read(4096)
        if not chunk:
            return
        buffer.extend(chunk)


class RunCommand(BaseTool):
    """Tool for executing shell commands that are guaranteed to return."""

    TOOL_NAME: ClassVar[str] = "runCommand"
    TOOL_DESCRIPTION: ClassVar[
        str
    ] = """
Run a shell command inside the workspace and wait for it to finish.

This tool is for commands that complete and return control, such as running
tests, builds or linters. Servers and other long-running processes will be
killed when the timeout expires.

- `cwd` is a workspace-relative directory inside the allowed roots (optional)
- `timeoutMs` defaults to 8000 and is clamped to at most 20000
- stdout is truncated to 8000 characters and stderr to 4000
"""

    tool: Literal["runCommand"] = "runCommand"
    command: str = Field(..., description="A shell command to run", min_length=1)
    cwd: str | None = Field(
        default=None, description="Workspace-relative working directory"
    )
    timeout_ms: int | None = Field(
        default=None, alias="timeoutMs", description="Timeout in milliseconds"
    )

    async def run(self, ctx: "ToolContext") -> dict:
        rel_cwd, cwd = ctx.resolve(self.cwd if self.cwd is not None else ctx.default_cwd())
        if not cwd.is_dir():
            raise ToolError(ToolErrorKind.NOT_FOUND, f"Directory not found: {rel_cwd or '.'}")

        if ctx.require_command_approval:
            await ctx.confirm("runCommand", rel_cwd or ".", preview=self.command)

        timeout_ms = clamp_timeout_ms(self.timeout_ms)
        process = await asyncio.create_subprocess_shell(
            self.command,
            cwd=str(cwd),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

        timed_out = False
        stdout, stderr = bytearray(), bytearray()
        try:
            await asyncio.wait_for(
                asyncio.gather(
                    _drain(process.stdout, stdout),
                    _drain(process.stderr, stderr),
                    process.wait(),
                ),
                timeout=timeout_ms / 1000,
            )
        except asyncio.TimeoutError:
            # Whatever was read before the deadline stays in the buffers
            timed_out = True
            process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=TERMINATE_GRACE_SECONDS)
            except asyncio.TimeoutError:
                process.kill()  # Force kill if terminate didn't work
                await process.wait()
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
            raise

        detail = {
            "command": self.command,
            "cwd": rel_cwd or ".",
            "code": process.returncode,
            "signal": signal_name(process.returncode),
            "timedOut": timed_out,
            "stdout": stdout.decode(errors="replace")[:STDOUT_LIMIT],
            "stderr": stderr.decode(errors="replace")[:STDERR_LIMIT],
        }
        if timed_out:
            logger.warning(f"Command timed out after {timeout_ms}ms: {self.command}")
            raise ToolError(
                ToolErrorKind.COMMAND_TIMEOUT,
                f"Command timed out after {timeout_ms}ms",
                detail=detail,
            )
        return detail

    @classmethod
    def generate_examples(cls) -> list[dict]:
        return [
            {"tool": "runCommand", "command": "ls -la"},
            {"tool": "runCommand", "command": "pytest -q", "cwd": "src", "timeoutMs": 15000},
        ]
