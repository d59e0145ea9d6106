# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
The tool engine: validates model-proposed actions against the closed action
union, checks them against the workspace allow-list and runs them one at a
time, in order.
"""

import re
import time
import logging

from pathlib import Path
from typing import Annotated, Any, Union
from dataclasses import dataclass
from pydantic import Field, TypeAdapter, ValidationError

from .approval import ApprovalGate
from .file_tools import ListFiles, ReadFiles
from .edit_tools import CreateFile, EditFile
from .execute_command import RunCommand
from ..types.common import ApprovalState, ToolErrorKind
from ..types.tool_types import ToolError, ToolInterface, ToolResult

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

ToolAction = Annotated[
    Union[ListFiles, ReadFiles, CreateFile, EditFile, RunCommand],
    Field(discriminator="tool"),
]
action_adapter: TypeAdapter = TypeAdapter(ToolAction)

_DRIVE_PATTERN = re.compile(r"^[A-Za-z]:")


def normalize_relative(rel: str) -> str | None:
    """Normalise a workspace-relative path to POSIX form.

    Returns None for absolute paths and for paths that climb out of the
    workspace.
    """
    rel = rel.replace("\\", "/").strip()
    if rel.startswith("/") or _DRIVE_PATTERN.match(rel):
        return None
    parts: list[str] = []
    for part in rel.split("/"):
        if part in ("", "."):
            continue
        if part == "..":
            if not parts:
                return None
            parts.pop()
        else:
            parts.append(part)
    return "/".join(parts)


@dataclass
class ToolContext:
    """Everything a tool needs to act on the workspace for one batch."""

    workspace_root: Path
    allowed_roots: list[str]
    approvals: ApprovalGate | None = None
    require_approval: bool = True
    require_command_approval: bool = False
    correlation_id: str | None = None

    @property
    def allow_all(self) -> bool:
        return "*" in self.allowed_roots

    def normalized_roots(self) -> list[str]:
        roots = []
        for root in self.allowed_roots:
            normalized = normalize_relative(root)
            if normalized is not None:
                roots.append(normalized)
        return roots

    def is_allowed(self, rel: str) -> bool:
        normalized = normalize_relative(rel)
        if normalized is None:
            return False
        if self.allow_all:
            return True
        for root in self.normalized_roots():
            if root == "" or normalized == root or normalized.startswith(root + "/"):
                return True
        return False

    def resolve(self, rel: str) -> tuple[str, Path]:
        """Check a path against the allow-list and map it into the workspace.

        Raises:
            ToolError: NotAllowed, before any I/O takes place
        """
        normalized = normalize_relative(rel)
        if normalized is None or not self.is_allowed(rel):
            raise ToolError(ToolErrorKind.NOT_ALLOWED, f"Not allowed: {rel}")
        return normalized, self.workspace_root / normalized

    def default_cwd(self) -> str:
        if self.allow_all:
            return ""
        roots = self.normalized_roots()
        return roots[0] if roots else ""

    async def confirm(
        self,
        action_kind: str,
        path: str,
        diff: str | None = None,
        preview: str | None = None,
    ) -> None:
        """Block until the action is approved.

        Raises:
            ToolError: UserRejected on an explicit rejection, ApprovalTimeout
            when no decision arrived in time
        """
        if self.approvals is None:
            raise ToolError(
                ToolErrorKind.UNKNOWN, "Approval is required but no approval gate is configured"
            )
        state = await self.approvals.request(
            self.correlation_id, action_kind, path, diff=diff, preview=preview
        )
        if state == ApprovalState.APPROVED:
            return
        if state == ApprovalState.TIMED_OUT:
            raise ToolError(
                ToolErrorKind.APPROVAL_TIMEOUT,
                f"Approval timed out after {self.approvals.timeout_seconds:g}s; "
                f"{action_kind} {path} was not applied",
            )
        raise ToolError(ToolErrorKind.USER_REJECTED, f"User rejected {action_kind} {path}")


class ToolEngine:
    """Runs batches of tool actions inside a capability-scoped workspace."""

    def __init__(
        self,
        workspace_root: str | Path,
        allowed_roots: list[str] | None = None,
        require_approval: bool = True,
        require_command_approval: bool = False,
        approvals: ApprovalGate | None = None,
    ):
        if (require_approval or require_command_approval) and approvals is None:
            raise ValueError("An ApprovalGate is needed when approvals are required")
        self.workspace_root = Path(workspace_root)
        self.allowed_roots = list(allowed_roots) if allowed_roots else ["*"]
        self.require_approval = require_approval
        self.require_command_approval = require_command_approval
        self.approvals = approvals

    def context(self, correlation_id: str | None = None) -> ToolContext:
        return ToolContext(
            workspace_root=self.workspace_root,
            allowed_roots=self.allowed_roots,
            approvals=self.approvals,
            require_approval=self.require_approval,
            require_command_approval=self.require_command_approval,
            correlation_id=correlation_id,
        )

    @staticmethod
    def validate_action(action: ToolInterface | dict[str, Any]) -> ToolInterface:
        """Validate one raw action against the closed action union.

        Raises:
            ValidationError: if the action names an unknown tool or is
            missing required fields
        """
        if isinstance(action, ToolInterface):
            return action
        return action_adapter.validate_python(action)

    async def execute_one(
        self, action: ToolInterface | dict[str, Any], ctx: ToolContext
    ) -> ToolResult:
        tool_name = (
            action.get("tool", "unknown") if isinstance(action, dict) else action.TOOL_NAME
        )
        if not isinstance(tool_name, str):
            tool_name = "unknown"

        try:
            validated = self.validate_action(action)
        except ValidationError as e:
            logger.info(f"Rejected invalid {tool_name} action: {e.error_count()} error(s)")
            return ToolResult.failure(
                tool_name,
                ToolErrorKind.UNKNOWN,
                f"Invalid action: {_format_validation_error(e)}",
            )

        start_time = time.time()
        try:
            detail = await validated.run(ctx)
            result = ToolResult(tool=validated.TOOL_NAME, success=True, detail=detail)
        except ToolError as e:
            result = ToolResult.failure(validated.TOOL_NAME, e.kind, e.message, e.detail)
        except Exception as e:
            logger.error(f"Error during {validated.TOOL_NAME} execution: {str(e)}")
            result = ToolResult.failure(validated.TOOL_NAME, ToolErrorKind.UNKNOWN, str(e))
        result.duration = time.time() - start_time
        return result

    async def execute(
        self,
        actions: list[ToolInterface | dict[str, Any]],
        correlation_id: str | None = None,
    ) -> list[ToolResult]:
        """Run every action sequentially, returning one result per action in
        input order, regardless of individual failures."""
        ctx = self.context(correlation_id)
        results: list[ToolResult] = []
        for action in actions:
            results.append(await self.execute_one(action, ctx))
        return results


def _format_validation_error(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(part) for part in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts)
