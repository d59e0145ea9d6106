# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
The approval gate: a synchronisation point between a mutating tool action and
an external decision delivered over the event bus.

Each request owns one future and one timeout. The future moves from PENDING
to exactly one of APPROVED, REJECTED, TIMED_OUT or CANCELLED, after which the
request is forgotten and any further decision for its id is ignored.
"""

import uuid
import asyncio
import logging

from dataclasses import dataclass, field

from ..events import EventBus
from ..events.event_bus import Unsubscribe
from ..types.common import ApprovalState
from ..types.event_types import ApprovalRequest, ApprovalDecision

logger = logging.getLogger(__name__)

DEFAULT_APPROVAL_TIMEOUT = 120.0


@dataclass
class PendingApproval:
    request: ApprovalRequest
    future: asyncio.Future
    state: ApprovalState = field(default=ApprovalState.PENDING)


class ApprovalGate:
    """Issues approval requests and resolves them from decision events."""

    def __init__(self, bus: EventBus, timeout_seconds: float = DEFAULT_APPROVAL_TIMEOUT):
        self.bus = bus
        self.timeout_seconds = timeout_seconds
        self._pending: dict[str, PendingApproval] = {}
        self._unsubscribe: Unsubscribe | None = None

    def attach(self) -> "ApprovalGate":
        """Start listening for decisions on the bus"""
        if self._unsubscribe is None:
            self._unsubscribe = self.bus.subscribe_approval_decision(self._on_decision)
        return self

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    @property
    def pending(self) -> list[ApprovalRequest]:
        return [p.request for p in self._pending.values()]

    def _on_decision(self, decision: ApprovalDecision) -> None:
        if not self.resolve(decision.approval_id, decision.approved):
            logger.info(
                f"Ignoring decision for unknown or settled approval {decision.approval_id}"
            )

    def resolve(self, approval_id: str, approved: bool) -> bool:
        """Settle a pending request.

        Returns:
            True if this call settled the request, False if the id is unknown
            or the request was already settled.
        """
        entry = self._pending.get(approval_id)
        if entry is None or entry.future.done():
            return False
        entry.state = ApprovalState.APPROVED if approved else ApprovalState.REJECTED
        entry.future.set_result(entry.state)
        return True

    async def request(
        self,
        correlation_id: str | None,
        action_kind: str,
        path: str,
        diff: str | None = None,
        preview: str | None = None,
        timeout_seconds: float | None = None,
    ) -> ApprovalState:
        """Publish an approval request and wait for its outcome.

        A missing decision within the timeout settles the request as
        TIMED_OUT. Cancelling the waiting task settles it as CANCELLED and
        re-raises.
        """
        timeout = self.timeout_seconds if timeout_seconds is None else timeout_seconds
        request = ApprovalRequest(
            approval_id=uuid.uuid4().hex,
            correlation_id=correlation_id,
            action_kind=action_kind,
            path=path,
            diff=diff,
            preview=preview,
        )
        entry = PendingApproval(
            request=request, future=asyncio.get_running_loop().create_future()
        )
        # Register before publishing: a listener may decide during delivery
        self._pending[request.approval_id] = entry
        try:
            await self.bus.publish_approval_request(request)
            try:
                return await asyncio.wait_for(entry.future, timeout=timeout)
            except asyncio.TimeoutError:
                entry.state = ApprovalState.TIMED_OUT
                logger.warning(
                    f"Approval {request.approval_id} for {action_kind} {path} "
                    f"timed out after {timeout:.1f}s"
                )
                return entry.state
            except asyncio.CancelledError:
                entry.state = ApprovalState.CANCELLED
                raise
        finally:
            self._pending.pop(request.approval_id, None)
