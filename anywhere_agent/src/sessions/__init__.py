# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Session registry and event attribution."""

from .models import RoutedEvent, Session, SessionEntry
from .session_router import DEFAULT_SESSION_ID, SessionRouter

__all__ = [
    "DEFAULT_SESSION_ID",
    "RoutedEvent",
    "Session",
    "SessionEntry",
    "SessionRouter",
]
