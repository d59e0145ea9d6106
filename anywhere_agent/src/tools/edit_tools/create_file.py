# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import asyncio
import logging

from typing import TYPE_CHECKING, Literal
from pydantic import Field

from .utils import atomic_write, truncate_preview
from ..base_tool import BaseTool
from ...types.common import ToolErrorKind
from ...types.tool_types import ToolError

if TYPE_CHECKING:
    from ..tool_engine import ToolContext

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


class CreateFile(BaseTool):
    """Tool to create a new file with the given content."""

    TOOL_NAME = "createFile"
    TOOL_DESCRIPTION = """Create a new file with the given content.

- Fails with AlreadyExists if the file is already present; use editFile for existing files
- Parent directories are created as needed
- The user may be asked to approve the new file before it is written
"""
    MUTATES = True

    tool: Literal["createFile"] = "createFile"
    path: str = Field(..., description="Workspace-relative path of the new file")
    content: str = Field(..., description="The full content of the new file")

    async def run(self, ctx: "ToolContext") -> dict:
        rel, path = ctx.resolve(self.path)
        if path.exists():
            raise ToolError(ToolErrorKind.ALREADY_EXISTS, f"File already exists: {rel}")

        if ctx.require_approval:
            await ctx.confirm(
                "createFile", rel, preview=truncate_preview(self.content)
            )
            # The file may have appeared while the user was deciding
            if path.exists():
                raise ToolError(
                    ToolErrorKind.ALREADY_EXISTS, f"File already exists: {rel}"
                )

        await asyncio.to_thread(atomic_write, path, self.content)
        logger.info(f"Created {rel} ({len(self.content)} chars)")
        return {"path": rel, "bytes": len(self.content.encode("utf-8"))}

    @classmethod
    def generate_examples(cls) -> list[dict]:
        return [
            {
                "tool": "createFile",
                "path": "src/greeting.py",
                "content": 'def greet(name):\n    return f"Hello, {name}!"\n',
            }
        ]
