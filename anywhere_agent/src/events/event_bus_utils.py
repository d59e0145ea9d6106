# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Utility functions for presenting routed bus events."""

from ..sessions.models import RoutedEvent
from ..types.event_types import (
    EventType,
    InboundMessage,
    OutboundFragment,
    ApprovalRequest,
    ApprovalDecision,
    HistoryCleared,
)

max_content_len = 200
prefix_width = 10


def truncate(text: str, length: int = max_content_len) -> str:
    """Helper to truncate text and handle newlines"""
    text = text.replace("\n", " ")
    return f"{text[:length]}..." if len(text) > length else text


def format_routed_event(routed: RoutedEvent) -> str:
    """Render one routed event as a single console line"""
    event = routed.event
    metadata = f"session: {routed.session_id}" if routed.session_id else ""

    if routed.event_type == EventType.INBOUND and isinstance(event, InboundMessage):
        content = truncate(event.text)
    elif routed.event_type == EventType.OUTBOUND and isinstance(event, OutboundFragment):
        # Fragments are the agent's actual output; keep them whole
        content = event.fragment
        if event.done:
            metadata = "done" + (f", {metadata}" if metadata else "")
    elif routed.event_type == EventType.APPROVAL_REQUEST and isinstance(
        event, ApprovalRequest
    ):
        content = f"{event.action_kind} {event.path}"
    elif routed.event_type == EventType.APPROVAL_DECISION and isinstance(
        event, ApprovalDecision
    ):
        content = f"{'approved' if event.approved else 'rejected'} {event.approval_id}"
    elif routed.event_type == EventType.HISTORY_CLEARED and isinstance(
        event, HistoryCleared
    ):
        content = f"cleared {event.session_id or 'all sessions'}"
    else:
        content = truncate(str(event))

    return f"{routed.event_type.value:<{prefix_width}s} => {content}{' | ' + metadata if metadata else ''}"


async def log_to_stdout(routed: RoutedEvent) -> None:
    """Print routed events to stdout with clear formatting."""
    print(format_routed_event(routed))
