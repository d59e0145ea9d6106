# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
from enum import Enum


class ToolErrorKind(str, Enum):
    """Failure categories reported in a ToolResult"""

    NOT_ALLOWED = "NotAllowed"
    NOT_FOUND = "NotFound"
    ALREADY_EXISTS = "AlreadyExists"
    USER_REJECTED = "UserRejected"
    APPROVAL_TIMEOUT = "ApprovalTimeout"
    COMMAND_TIMEOUT = "CommandTimeout"
    UNKNOWN = "Unknown"


class ApprovalState(str, Enum):
    """Lifecycle of a single approval request"""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


class EntryKind(str, Enum):
    """Kinds of entry held in a session log"""

    INBOUND = "inbound"
    OUTBOUND = "outbound"
    FINAL = "final"
    APPROVAL_REQUEST = "approval_request"
    APPROVAL_DECISION = "approval_decision"
