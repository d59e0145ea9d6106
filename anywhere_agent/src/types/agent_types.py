# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
from enum import Enum
from typing import Any, Optional
from datetime import datetime
from pydantic import BaseModel, Field, field_validator

from ..llm.base import TokenUsage


class RunState(str, Enum):
    """States of the planning/execution loop."""

    PLANNING = "planning"
    VALIDATING = "validating"
    EXECUTING = "executing"
    FINALIZING = "finalizing"
    TERMINATED = "terminated"


class RunStatus(str, Enum):
    """How a terminated run ended."""

    SUCCESS = "success"
    ABORTED = "aborted"
    MAX_STEPS = "max_steps"
    CANCELLED = "cancelled"


class PlanStep(BaseModel):
    """One structured planning output from the model.

    Actions are kept as raw dicts here; each one is validated against the
    closed action union by the tool engine before dispatch.
    """

    actions: list[dict[str, Any]] = Field(default_factory=list)
    commentary: str = ""
    done: bool = False
    final_summary: Optional[str] = Field(default=None, alias="finalSummary")

    @field_validator("actions", "commentary", "done", mode="before")
    @classmethod
    def null_as_default(cls, value, info):
        # Models often send null for fields they have nothing to say about
        if value is None:
            return {"actions": [], "commentary": "", "done": False}[info.field_name]
        return value

    class Config:
        extra = "ignore"
        populate_by_name = True


class RunResult(BaseModel):
    """The outcome of one agent run, returned to the caller of run()"""

    correlation_id: str
    goal: str
    status: RunStatus
    summary: str
    steps: int = 0
    provider_calls: int = 0
    changed_files: list[str] = Field(default_factory=list)
    usage: TokenUsage = Field(default_factory=TokenUsage)
    started_at: datetime = Field(default_factory=datetime.now)
    ended_at: Optional[datetime] = None

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.ended_at:
            return (self.ended_at - self.started_at).total_seconds()
        return None
