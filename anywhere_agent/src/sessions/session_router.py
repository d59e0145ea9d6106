# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Attributes every bus event to a session and fans it out to subscribers.

Events do not arrive in an order that guarantees the session is known in time:
a run's first fragments may be observed before its inbound message has been
indexed. Such fragments, and approval requests raised by the run, are held
back per correlation id and flushed into the session log as soon as the
session becomes known. A run submitted without a session while several
sessions exist is never attributed: its events reach unfiltered subscribers
only and nothing is held back for it.
"""

import inspect
import logging
import threading

from pathlib import Path
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

from .models import RoutedEvent, Session, SessionEntry
from ..events import EventBus
from ..events.event_bus import Unsubscribe
from ..types.common import EntryKind
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

DEFAULT_SESSION_ID = "default"

RouterListener = Callable[[RoutedEvent], Any]
PersistHook = Callable[[str, SessionEntry], Any]


@dataclass
class _Subscriber:
    callback: RouterListener
    session_id: str | None = None


@dataclass
class _PendingRun:
    """Events of a run whose session is not yet known"""

    fragments: list[OutboundFragment] = field(default_factory=list)
    approvals: list[ApprovalRequest] = field(default_factory=list)


class SessionRouter:
    """Session registry, correlation index and filtered fan-out."""

    def __init__(
        self,
        bus: EventBus,
        workspace_roots: Optional[Iterable[str | Path]] = None,
        persist: Optional[PersistHook] = None,
    ):
        self.bus = bus
        self.persist = persist

        self._lock = threading.RLock()
        self._sessions: dict[str, Session] = {}
        self._correlations: dict[str, str] = {}  # correlation id -> session id
        self._approvals: dict[str, str] = {}  # approval id -> session id
        self._pending: dict[str, _PendingRun] = {}
        # Runs submitted without a session while several exist; never attributed
        self._unattributed: set[str] = set()
        self._run_text: dict[str, list[str]] = {}
        self._subscribers: list[_Subscriber] = []
        self._unsubscribers: list[Unsubscribe] = []

        for root in workspace_roots or []:
            root_id = str(root)
            self._sessions[root_id] = Session(id=root_id, name=Path(root_id).name or root_id)
        if not self._sessions:
            self._sessions[DEFAULT_SESSION_ID] = Session(
                id=DEFAULT_SESSION_ID, name=DEFAULT_SESSION_ID
            )

    def attach(self) -> "SessionRouter":
        """Start consuming bus traffic"""
        if not self._unsubscribers:
            self._unsubscribers = [
                self.bus.subscribe_inbound(self._on_inbound),
                self.bus.subscribe_outbound(self._on_outbound),
                self.bus.subscribe_approval_request(self._on_approval_request),
                self.bus.subscribe_approval_decision(self._on_approval_decision),
                self.bus.subscribe_history_cleared(self._on_history_cleared),
            ]
        return self

    def detach(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    # Queries =================================================================

    @property
    def sessions(self) -> list[Session]:
        with self._lock:
            return list(self._sessions.values())

    def get_session(self, session_id: str) -> Session | None:
        with self._lock:
            return self._sessions.get(session_id)

    def session_for(self, correlation_id: str) -> str | None:
        with self._lock:
            return self._correlations.get(correlation_id)

    def session_for_approval(self, approval_id: str) -> str | None:
        with self._lock:
            return self._approvals.get(approval_id)

    def pending_correlations(self) -> list[str]:
        """Correlation ids with events still waiting for a session"""
        with self._lock:
            return list(self._pending)

    # Subscription ============================================================

    def subscribe(
        self, callback: RouterListener, session_id: str | None = None
    ) -> Unsubscribe:
        """Receive routed events.

        A subscriber with a session filter receives only events attributed to
        that session. A subscriber without one receives every event as it is
        observed, attributed or not.
        """
        subscriber = _Subscriber(callback=callback, session_id=session_id)
        with self._lock:
            self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            with self._lock:
                if subscriber in self._subscribers:
                    self._subscribers.remove(subscriber)

        return unsubscribe

    async def _deliver(self, events: list[RoutedEvent], flushed: bool = False) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for routed in events:
            for sub in subscribers:
                if sub.session_id is None:
                    # Flushed events already reached unfiltered subscribers
                    # when they were first observed
                    if flushed:
                        continue
                elif sub.session_id != routed.session_id:
                    continue
                try:
                    result = sub.callback(routed)
                    if inspect.isawaitable(result):
                        await result
                except Exception as e:
                    logger.error(f"Error in session subscriber {sub.callback}: {e}")

    def _persist(self, appended: list[tuple[str, SessionEntry]]) -> None:
        if self.persist is None:
            return
        for session_id, entry in appended:
            try:
                self.persist(session_id, entry)
            except Exception as e:
                logger.error(f"Failed to persist {entry.kind.value} entry for {session_id}: {e}")

    # State helpers; callers hold the lock =====================================

    def _ensure_session(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            session = Session(id=session_id, name=Path(session_id).name or session_id)
            self._sessions[session_id] = session
            logger.info(f"Created session {session_id}")
        return session

    def _sole_session(self) -> str | None:
        if len(self._sessions) == 1:
            return next(iter(self._sessions))
        return None

    def _append(
        self, session_id: str, entry: SessionEntry, appended: list[tuple[str, SessionEntry]]
    ) -> None:
        self._ensure_session(session_id).log.append(entry)
        appended.append((session_id, entry))

    def _log_fragment(
        self,
        session_id: str,
        fragment: OutboundFragment,
        appended: list[tuple[str, SessionEntry]],
    ) -> None:
        self._append(
            session_id,
            SessionEntry(
                kind=EntryKind.OUTBOUND,
                id=fragment.id,
                text=fragment.fragment,
                timestamp=fragment.timestamp,
                metadata={"done": fragment.done, "model": fragment.model},
            ),
            appended,
        )
        texts = self._run_text.setdefault(fragment.id, [])
        texts.append(fragment.fragment)
        if fragment.done:
            self._append(
                session_id,
                SessionEntry(
                    kind=EntryKind.FINAL,
                    id=fragment.id,
                    text="\n".join(texts),
                    metadata={"model": fragment.model},
                ),
                appended,
            )
            self._run_text.pop(fragment.id, None)

    def _log_approval_request(
        self,
        session_id: str,
        request: ApprovalRequest,
        appended: list[tuple[str, SessionEntry]],
    ) -> None:
        self._approvals[request.approval_id] = session_id
        self._append(
            session_id,
            SessionEntry(
                kind=EntryKind.APPROVAL_REQUEST,
                id=request.approval_id,
                text=f"{request.action_kind} {request.path}",
                timestamp=request.timestamp,
                metadata={
                    "correlation_id": request.correlation_id,
                    "action_kind": request.action_kind,
                    "path": request.path,
                    "diff": request.diff,
                    "preview": request.preview,
                },
            ),
            appended,
        )

    def _index(
        self, correlation_id: str, session_id: str, appended: list[tuple[str, SessionEntry]]
    ) -> list[RoutedEvent]:
        """Record the correlation and flush anything buffered for it.

        Returns the flushed events for delivery to the session's subscribers.
        """
        self._correlations[correlation_id] = session_id
        pending = self._pending.pop(correlation_id, None)
        if pending is None:
            return []

        flushed: list[RoutedEvent] = []
        for fragment in pending.fragments:
            self._log_fragment(session_id, fragment, appended)
            flushed.append(RoutedEvent(EventType.OUTBOUND, fragment, session_id))
        for request in pending.approvals:
            self._log_approval_request(session_id, request, appended)
            flushed.append(RoutedEvent(EventType.APPROVAL_REQUEST, request, session_id))
        logger.debug(
            f"Flushed {len(flushed)} buffered event(s) for {correlation_id} into {session_id}"
        )
        return flushed

    # Bus handlers ============================================================

    async def _on_inbound(self, msg: InboundMessage) -> None:
        appended: list[tuple[str, SessionEntry]] = []
        flushed: list[RoutedEvent] = []
        with self._lock:
            session_id = msg.session_id or self._sole_session()
            if session_id is not None:
                self._append(
                    session_id,
                    SessionEntry(
                        kind=EntryKind.INBOUND,
                        id=msg.id,
                        text=msg.text,
                        timestamp=msg.timestamp,
                        metadata={"source": msg.source},
                    ),
                    appended,
                )
                flushed = self._index(msg.id, session_id, appended)
            else:
                # Only unfiltered subscribers can see this run, and they
                # already saw anything buffered for it
                self._unattributed.add(msg.id)
                self._pending.pop(msg.id, None)
                logger.warning(
                    f"Inbound {msg.id} has no session id and {len(self._sessions)} "
                    f"sessions exist; its events will not be logged"
                )
        self._persist(appended)
        await self._deliver([RoutedEvent(EventType.INBOUND, msg, session_id)])
        await self._deliver(flushed, flushed=True)

    async def _on_outbound(self, fragment: OutboundFragment) -> None:
        appended: list[tuple[str, SessionEntry]] = []
        with self._lock:
            session_id = self._correlations.get(fragment.id)
            if session_id is None and fragment.id not in self._unattributed:
                session_id = self._sole_session()
                if session_id is not None:
                    self._correlations[fragment.id] = session_id
            if session_id is not None:
                self._log_fragment(session_id, fragment, appended)
            elif fragment.id in self._unattributed:
                if fragment.done:
                    self._unattributed.discard(fragment.id)
            else:
                pending = self._pending.setdefault(fragment.id, _PendingRun())
                pending.fragments.append(fragment)
        self._persist(appended)
        await self._deliver([RoutedEvent(EventType.OUTBOUND, fragment, session_id)])

    async def _on_approval_request(self, request: ApprovalRequest) -> None:
        appended: list[tuple[str, SessionEntry]] = []
        with self._lock:
            session_id = None
            if request.correlation_id is not None:
                session_id = self._correlations.get(request.correlation_id)
            if session_id is None:
                session_id = self._sole_session()
            if session_id is not None:
                self._log_approval_request(session_id, request, appended)
            elif request.correlation_id is None:
                logger.warning(
                    f"Approval {request.approval_id} has no correlation id and cannot be attributed"
                )
            elif request.correlation_id not in self._unattributed:
                pending = self._pending.setdefault(request.correlation_id, _PendingRun())
                pending.approvals.append(request)
        self._persist(appended)
        await self._deliver([RoutedEvent(EventType.APPROVAL_REQUEST, request, session_id)])

    async def _on_approval_decision(self, decision: ApprovalDecision) -> None:
        appended: list[tuple[str, SessionEntry]] = []
        with self._lock:
            session_id = self._approvals.pop(decision.approval_id, None)
            if session_id is not None:
                self._append(
                    session_id,
                    SessionEntry(
                        kind=EntryKind.APPROVAL_DECISION,
                        id=decision.approval_id,
                        text="approved" if decision.approved else "rejected",
                        timestamp=decision.timestamp,
                        metadata={"approved": decision.approved},
                    ),
                    appended,
                )
        self._persist(appended)
        await self._deliver([RoutedEvent(EventType.APPROVAL_DECISION, decision, session_id)])

    async def _on_history_cleared(self, notice: HistoryCleared) -> None:
        self.clear_history(notice.session_id)
        await self._deliver(
            [RoutedEvent(EventType.HISTORY_CLEARED, notice, notice.session_id)]
        )

    # History =================================================================

    def clear_history(self, session_id: str | None = None) -> None:
        """Truncate one session's log, or every log. Sessions are kept."""
        with self._lock:
            targets = (
                list(self._sessions.values())
                if session_id is None
                else [s for s in [self._sessions.get(session_id)] if s is not None]
            )
            for session in targets:
                session.log.clear()

    def load_history(
        self, session_id: str, records: Iterable[SessionEntry | dict[str, Any]]
    ) -> int:
        """Reseed a session's log from persisted records.

        Inbound entries already present are skipped, so loading the same tail
        twice does not duplicate them. Each inbound entry re-links its
        correlation id to the session.

        Returns:
            The number of entries appended.
        """
        added = 0
        with self._lock:
            session = self._ensure_session(session_id)
            seen = session.inbound_ids()
            for record in records:
                entry = (
                    record
                    if isinstance(record, SessionEntry)
                    else SessionEntry.model_validate(record)
                )
                if entry.kind == EntryKind.INBOUND:
                    if entry.id in seen:
                        continue
                    seen.add(entry.id)
                    self._correlations.setdefault(entry.id, session_id)
                session.log.append(entry)
                added += 1
        return added
