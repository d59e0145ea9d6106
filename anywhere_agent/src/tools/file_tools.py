# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import os
import asyncio
import logging

from pathlib import Path
from typing import TYPE_CHECKING, Iterator, Literal
from pydantic import Field

from .base_tool import BaseTool
from ..types.common import ToolErrorKind
from ..types.tool_types import ToolError

if TYPE_CHECKING:
    from .tool_engine import ToolContext

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

DEFAULT_LIST_CAP = 200
MAX_LIST_CAP = 500


def iter_files(root: Path, base: Path) -> Iterator[str]:
    """Sorted recursive walk below root, yielding workspace-relative POSIX
    paths. Symlinked directories are not followed."""
    if not root.is_dir():
        return
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for name in sorted(filenames):
            yield (Path(dirpath) / name).relative_to(base).as_posix()


def _read_text(path: Path) -> str | None:
    """The file's text, or None when it is not a regular file"""
    if not path.is_file():
        return None
    return path.read_text(encoding="utf-8", errors="replace")


class ListFiles(BaseTool):
    TOOL_NAME = "listFiles"
    TOOL_DESCRIPTION = """List files below the allowed workspace roots.

- `glob` is an optional case-insensitive substring filter on the relative path
- `max` caps the number of entries returned (default 200, never more than 500)
- `truncated` is true in the result when the cap was reached
"""

    tool: Literal["listFiles"] = "listFiles"
    glob: str | None = Field(
        default=None, description="Case-insensitive substring to filter paths on"
    )
    max: int | None = Field(default=None, description="Maximum number of entries")

    def cap(self) -> int:
        requested = self.max if self.max and self.max > 0 else DEFAULT_LIST_CAP
        return min(requested, MAX_LIST_CAP)

    async def run(self, ctx: "ToolContext") -> dict:
        cap = self.cap()
        needle = (self.glob or "").lower()
        roots = [""] if ctx.allow_all else ctx.normalized_roots()

        def collect() -> list[str]:
            files: list[str] = []
            seen: set[str] = set()
            for root in roots:
                for rel in iter_files(ctx.workspace_root / root, ctx.workspace_root):
                    if rel in seen or (needle and needle not in rel.lower()):
                        continue
                    seen.add(rel)
                    files.append(rel)
                    if len(files) >= cap:
                        return files
            return files

        files = await asyncio.to_thread(collect)
        return {"files": files, "truncated": len(files) >= cap}

    @classmethod
    def generate_examples(cls) -> list[dict]:
        return [
            {"tool": "listFiles"},
            {"tool": "listFiles", "glob": "test", "max": 50},
        ]


class ReadFiles(BaseTool):
    TOOL_NAME = "readFiles"
    TOOL_DESCRIPTION = """Read the full text of one or more files.

Each file gets its own entry in the result: either its `content`, or an
`error` of NotFound, NotAllowed or Unknown (with a `message`). Always read
a file before editing it.
"""

    tool: Literal["readFiles"] = "readFiles"
    files: list[str] = Field(..., description="Workspace-relative file paths")

    async def run(self, ctx: "ToolContext") -> dict:
        entries = []
        for rel in self.files:
            try:
                normalized, path = ctx.resolve(rel)
            except ToolError as e:
                entries.append({"path": rel, "error": e.kind.value})
                continue
            try:
                content = await asyncio.to_thread(_read_text, path)
            except OSError as e:
                logger.info(f"Could not read {normalized}: {e}")
                entries.append(
                    {
                        "path": normalized,
                        "error": ToolErrorKind.UNKNOWN.value,
                        "message": str(e),
                    }
                )
                continue
            if content is None:
                entries.append({"path": normalized, "error": ToolErrorKind.NOT_FOUND.value})
                continue
            entries.append({"path": normalized, "content": content})
        return {"files": entries}

    @classmethod
    def generate_examples(cls) -> list[dict]:
        return [{"tool": "readFiles", "files": ["src/app.py", "README.md"]}]
