# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import os

from abc import ABC, abstractmethod
from typing import Any, ClassVar, TYPE_CHECKING
from pydantic import BaseModel, Field

from .common import ToolErrorKind

if TYPE_CHECKING:
    from ..tools.tool_engine import ToolContext


class ToolError(Exception):
    """Raised inside a tool to report a categorised, per-action failure."""

    def __init__(self, kind: ToolErrorKind, message: str, detail: dict | None = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.detail = detail


class ToolResult(BaseModel):
    """Represents the result of a single tool action."""

    tool: str
    success: bool
    detail: dict[str, Any] | None = None
    error: str | None = None
    error_kind: ToolErrorKind | None = None
    duration: float = 0.0  # on validation error paths, duration is 0
    invocation_id: str = Field(default_factory=lambda: os.urandom(4).hex())

    @classmethod
    def failure(
        cls,
        tool: str,
        kind: ToolErrorKind,
        error: str,
        detail: dict[str, Any] | None = None,
    ) -> "ToolResult":
        return cls(tool=tool, success=False, error=error, error_kind=kind, detail=detail)

    def to_feedback(self) -> dict[str, Any]:
        """The structured form fed back to the model on the next planning turn"""
        return self.model_dump(
            mode="json", exclude={"duration", "invocation_id"}, exclude_none=True
        )

    def summary(self) -> str:
        """A one-line, human-readable description of the outcome"""
        detail = self.detail or {}
        if not self.success:
            line = f"{self.tool} failed"
            if self.error:
                line += f": {self.error}"
            if self.error_kind is not None:
                line += f" [{self.error_kind.value}]"
            return line
        if self.tool == "readFiles":
            files = detail.get("files", [])
            names = ", ".join(f.get("path", "") for f in files)
            return f"read {len(files)} file(s): {names}"
        if self.tool == "listFiles":
            files = detail.get("files", [])
            more = " (truncated)" if detail.get("truncated") else ""
            return f"listed {len(files)} file(s){more}"
        if self.tool == "createFile":
            return f"created file {detail.get('path', '')}".strip()
        if self.tool == "editFile":
            return f"edited file {detail.get('path', '')}".strip()
        if self.tool == "runCommand":
            line = f"ran '{detail.get('command')}' exit={detail.get('code')}"
            if detail.get("timedOut"):
                line += " (timed out)"
            stdout = (detail.get("stdout") or "").strip()
            if stdout:
                first = "\n".join(stdout.splitlines()[:6])
                line += f"\n  [stdout]\n{first}"
            stderr = (detail.get("stderr") or "").strip()
            if stderr:
                first = "\n".join(stderr.splitlines()[:4])
                line += f"\n  [stderr]\n{first}"
            return line
        return f"{self.tool} ok"


class ToolInterface(BaseModel, ABC):
    """Abstract interface for all tool actions"""

    # Class variables
    TOOL_NAME: ClassVar[str]
    TOOL_DESCRIPTION: ClassVar[str]
    MUTATES: ClassVar[bool] = False

    class Config:
        extra = "ignore"
        populate_by_name = True

    @abstractmethod
    async def run(self, ctx: "ToolContext") -> dict[str, Any]:
        """Execute the action and return its result detail.

        Failures are raised as ToolError.
        """
        pass

    @classmethod
    @abstractmethod
    def generate_examples(cls) -> list[dict[str, Any]]:
        """Example wire-format invocations of the tool"""
        pass
