# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import os

from enum import Enum
from datetime import datetime
from dataclasses import field, dataclass


class EventType(Enum):
    INBOUND = "inbound"  # goal submissions
    OUTBOUND = "outbound"  # streamed output fragments
    APPROVAL_REQUEST = "approval_request"
    APPROVAL_DECISION = "approval_decision"
    HISTORY_CLEARED = "history_cleared"


def new_message_id() -> str:
    return f"{int(datetime.now().timestamp() * 1000)}-{os.urandom(3).hex()}"


@dataclass
class InboundMessage:
    """A goal (or chat message) submitted by a client"""

    text: str
    id: str = field(default_factory=new_message_id)
    source: str = "command"  # chat | http | sse | command
    session_id: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class OutboundFragment:
    """One chunk of a run's output, keyed by the run's correlation id"""

    id: str
    fragment: str
    done: bool = False
    model: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class ApprovalRequest:
    approval_id: str
    correlation_id: str | None
    action_kind: str
    path: str
    diff: str | None = None
    preview: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class ApprovalDecision:
    approval_id: str
    approved: bool
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class HistoryCleared:
    """Notice that a session's log (or every log, when session_id is None)
    should be truncated"""

    session_id: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)

