# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Event bus module for in-process event delivery."""

import inspect
import asyncio
import logging

from collections import defaultdict
from typing import Any, Awaitable, Callable, ClassVar, Dict, List, Optional
from pydantic import BaseModel, PrivateAttr

from ..types.event_types import (
    EventType,
    InboundMessage,
    OutboundFragment,
    ApprovalRequest,
    ApprovalDecision,
    HistoryCleared,
)

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

Listener = Callable[[Any], Optional[Awaitable[None]]]
Unsubscribe = Callable[[], None]


class EventBus(BaseModel):
    """
    Publish/subscribe hub shared by the controller, tool engine and router.

    Features:
    - One listener list per event kind
    - In-line delivery: the publisher awaits every listener in turn
    - Listener failures are logged and isolated from other listeners and
      from the publisher
    - No buffering and no persistence; late subscribers miss earlier events
    """

    _instance: ClassVar[Optional["EventBus"]] = None
    _lock: ClassVar[Optional[asyncio.Lock]] = None

    _subscribers: Dict[EventType, List[Listener]] = PrivateAttr(
        default_factory=lambda: defaultdict(list)
    )

    class Config:
        arbitrary_types_allowed = True

    def __new__(cls) -> "EventBus":
        raise TypeError(
            "EventBus should not be instantiated directly. "
            "Use 'await EventBus.get_instance()' instead."
        )

    @classmethod
    async def get_instance(cls) -> "EventBus":
        """Get or create the singleton instance.

        Returns:
            The global EventBus instance.
        """
        if not cls._lock:
            cls._lock = asyncio.Lock()

        async with cls._lock:
            if not cls._instance:
                instance = super(EventBus, cls).__new__(cls)
                instance.__init__()
                cls._instance = instance
            return cls._instance

    async def publish(self, event_type: EventType, event: Any) -> None:
        """Deliver an event to every listener currently registered for its kind.

        Args:
            event_type: The kind of event being published
            event: The event payload
        """
        logger.debug(f"Publishing {event_type.value} event")
        # Copy so that listeners may unsubscribe during delivery
        for callback in list(self._subscribers[event_type]):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Error in {event_type.value} subscriber {callback}: {e}")

    def subscribe(self, event_type: EventType, callback: Listener) -> Unsubscribe:
        """Subscribe to events of a specific type.

        Args:
            event_type: The EventType to subscribe to
            callback: Plain or async callback taking the event

        Returns:
            A handle which removes this subscription when called
        """
        logger.debug(f"Subscribing {callback} to {event_type}")
        self._subscribers[event_type].append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers[event_type]:
                self._subscribers[event_type].remove(callback)

        return unsubscribe

    def listener_count(self, event_type: EventType) -> int:
        return len(self._subscribers[event_type])

    def clear(self) -> None:
        """Remove all subscribers (mainly for testing)."""
        self._subscribers.clear()

    # Typed conveniences, one pair per event kind =============================

    async def publish_inbound(self, msg: InboundMessage) -> None:
        await self.publish(EventType.INBOUND, msg)

    def subscribe_inbound(self, callback: Callable[[InboundMessage], Any]) -> Unsubscribe:
        return self.subscribe(EventType.INBOUND, callback)

    async def publish_outbound(self, fragment: OutboundFragment) -> None:
        await self.publish(EventType.OUTBOUND, fragment)

    def subscribe_outbound(self, callback: Callable[[OutboundFragment], Any]) -> Unsubscribe:
        return self.subscribe(EventType.OUTBOUND, callback)

    async def publish_approval_request(self, request: ApprovalRequest) -> None:
        await self.publish(EventType.APPROVAL_REQUEST, request)

    def subscribe_approval_request(
        self, callback: Callable[[ApprovalRequest], Any]
    ) -> Unsubscribe:
        return self.subscribe(EventType.APPROVAL_REQUEST, callback)

    async def publish_approval_decision(self, decision: ApprovalDecision) -> None:
        await self.publish(EventType.APPROVAL_DECISION, decision)

    def subscribe_approval_decision(
        self, callback: Callable[[ApprovalDecision], Any]
    ) -> Unsubscribe:
        return self.subscribe(EventType.APPROVAL_DECISION, callback)

    async def publish_history_cleared(self, notice: HistoryCleared) -> None:
        await self.publish(EventType.HISTORY_CLEARED, notice)

    def subscribe_history_cleared(
        self, callback: Callable[[HistoryCleared], Any]
    ) -> Unsubscribe:
        return self.subscribe(EventType.HISTORY_CLEARED, callback)
