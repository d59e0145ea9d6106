# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
from typing import Any
from datetime import datetime
from dataclasses import dataclass
from pydantic import BaseModel, Field

from ..types.common import EntryKind
from ..types.event_types import EventType


class SessionEntry(BaseModel):
    """One line of a session's log"""

    kind: EntryKind
    id: str
    text: str = ""
    timestamp: datetime = Field(default_factory=datetime.now)
    metadata: dict[str, Any] = Field(default_factory=dict)


class Session(BaseModel):
    """A logical bucket, usually one project, with an append-only log"""

    id: str
    name: str
    created_at: datetime = Field(default_factory=datetime.now)
    log: list[SessionEntry] = Field(default_factory=list)

    def inbound_ids(self) -> set[str]:
        return {e.id for e in self.log if e.kind == EntryKind.INBOUND}


@dataclass
class RoutedEvent:
    """A bus event together with the session it was attributed to, if any"""

    event_type: EventType
    event: Any
    session_id: str | None = None
