# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import asyncio
import logging

from typing import TYPE_CHECKING, Literal
from pydantic import Field

from .utils import atomic_write, unified_line_diff
from ..base_tool import BaseTool
from ...types.common import ToolErrorKind
from ...types.tool_types import ToolError

if TYPE_CHECKING:
    from ..tool_engine import ToolContext

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


class EditFile(BaseTool):
    """Tool to replace the whole content of an existing file."""

    TOOL_NAME = "editFile"
    TOOL_DESCRIPTION = """Replace the entire content of an existing file.

You MUST have read the file with readFiles before editing it. The content you
provide becomes the file's new content verbatim, so include everything that
should be kept; never elide sections. Fails with NotFound if the file does
not exist. The user may be shown a diff and asked to approve the edit.
"""
    MUTATES = True

    tool: Literal["editFile"] = "editFile"
    path: str = Field(..., description="Workspace-relative path of the file")
    content: str = Field(..., description="The full new content of the file")

    async def run(self, ctx: "ToolContext") -> dict:
        rel, path = ctx.resolve(self.path)
        if not path.is_file():
            raise ToolError(ToolErrorKind.NOT_FOUND, f"File not found: {rel}")

        if ctx.require_approval:
            old_content = await asyncio.to_thread(
                path.read_text, encoding="utf-8", errors="replace"
            )
            diff = await asyncio.to_thread(
                unified_line_diff, old_content, self.content, rel
            )
            await ctx.confirm("editFile", rel, diff=diff)

        await asyncio.to_thread(atomic_write, path, self.content)
        logger.info(f"Replaced {rel} ({len(self.content)} chars)")
        return {"path": rel, "mode": "replace"}

    @classmethod
    def generate_examples(cls) -> list[dict]:
        return [
            {
                "tool": "editFile",
                "path": "README.md",
                "content": "# Project\n\nUpdated description.\n",
            }
        ]
