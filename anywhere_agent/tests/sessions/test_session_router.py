# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import logging

import pytest

from anywhere_agent.src.sessions import SessionRouter, SessionEntry
from anywhere_agent.src.sessions.session_router import DEFAULT_SESSION_ID
from anywhere_agent.src.types.common import EntryKind
from anywhere_agent.src.types.event_types import (
    EventType,
    InboundMessage,
    OutboundFragment,
    ApprovalRequest,
    ApprovalDecision,
    HistoryCleared,
)


@pytest.fixture
def router(bus):
    """A router over two projects, so nothing is attributed by default"""
    r = SessionRouter(bus, workspace_roots=["/work/alpha", "/work/beta"]).attach()
    yield r
    r.detach()


def kinds(session) -> list[EntryKind]:
    return [e.kind for e in session.log]


class TestSessionRegistry:
    def test_one_session_per_root(self, bus):
        router = SessionRouter(bus, workspace_roots=["/work/alpha", "/work/beta"])
        assert [(s.id, s.name) for s in router.sessions] == [
            ("/work/alpha", "alpha"),
            ("/work/beta", "beta"),
        ]

    def test_default_session_without_roots(self, bus):
        router = SessionRouter(bus)
        assert [s.id for s in router.sessions] == [DEFAULT_SESSION_ID]


class TestAttribution:
    async def test_inbound_indexes_correlation(self, bus, router):
        await bus.publish_inbound(
            InboundMessage(text="goal", id="m1", session_id="/work/alpha")
        )
        assert router.session_for("m1") == "/work/alpha"
        assert kinds(router.get_session("/work/alpha")) == [EntryKind.INBOUND]
        assert router.get_session("/work/beta").log == []

    async def test_early_fragments_are_buffered_then_flushed(self, bus, router):
        """Fragments seen before their inbound message land in the right log."""
        await bus.publish_outbound(OutboundFragment(id="m1", fragment="working"))
        await bus.publish_outbound(OutboundFragment(id="m1", fragment="all done", done=True))
        assert router.pending_correlations() == ["m1"]
        assert router.get_session("/work/alpha").log == []

        await bus.publish_inbound(
            InboundMessage(text="goal", id="m1", session_id="/work/alpha")
        )

        session = router.get_session("/work/alpha")
        assert router.pending_correlations() == []
        assert kinds(session) == [
            EntryKind.INBOUND,
            EntryKind.OUTBOUND,
            EntryKind.OUTBOUND,
            EntryKind.FINAL,
        ]
        assert session.log[-1].text == "working\nall done"

    async def test_late_fragments_follow_index(self, bus, router):
        await bus.publish_inbound(InboundMessage(text="goal", id="m2", session_id="/work/beta"))
        await bus.publish_outbound(OutboundFragment(id="m2", fragment="done", done=True))

        session = router.get_session("/work/beta")
        assert kinds(session) == [EntryKind.INBOUND, EntryKind.OUTBOUND, EntryKind.FINAL]
        assert session.log[-1].text == "done"

    async def test_sole_session_inference(self, bus):
        router = SessionRouter(bus, workspace_roots=["/work/only"]).attach()
        try:
            await bus.publish_outbound(OutboundFragment(id="x", fragment="hi"))
            assert router.session_for("x") == "/work/only"
            assert kinds(router.get_session("/work/only")) == [EntryKind.OUTBOUND]
        finally:
            router.detach()

    async def test_sessionless_runs_are_not_held_back(self, bus, router):
        """With several sessions, a run without a session id reaches only
        unfiltered subscribers and leaves nothing buffered."""
        everything, alpha = [], []
        router.subscribe(everything.append)
        router.subscribe(alpha.append, session_id="/work/alpha")

        # One early fragment arrives before its inbound message
        await bus.publish_outbound(OutboundFragment(id="m0", fragment="early"))
        for i in range(50):
            await bus.publish_inbound(InboundMessage(text="goal", id=f"m{i}"))
            await bus.publish_approval_request(
                ApprovalRequest(
                    approval_id=f"a{i}",
                    correlation_id=f"m{i}",
                    action_kind="createFile",
                    path="x.md",
                )
            )
            await bus.publish_outbound(OutboundFragment(id=f"m{i}", fragment="done", done=True))

        assert router.pending_correlations() == []
        assert [len(s.log) for s in router.sessions] == [0, 0]
        assert alpha == []
        assert len(everything) == 1 + 50 * 3
        assert all(r.session_id is None for r in everything)
        assert router._unattributed == set()

    async def test_unknown_session_is_created(self, bus, router):
        await bus.publish_inbound(InboundMessage(text="goal", id="m3", session_id="/work/gamma"))
        session = router.get_session("/work/gamma")
        assert session is not None
        assert session.name == "gamma"


class TestApprovals:
    async def test_approval_follows_its_run(self, bus, router):
        await bus.publish_inbound(InboundMessage(text="goal", id="m1", session_id="/work/beta"))
        await bus.publish_approval_request(
            ApprovalRequest(
                approval_id="a1",
                correlation_id="m1",
                action_kind="editFile",
                path="app.py",
                diff="--- a/app.py",
            )
        )
        assert router.session_for_approval("a1") == "/work/beta"

        await bus.publish_approval_decision(ApprovalDecision(approval_id="a1", approved=False))

        log = router.get_session("/work/beta").log
        assert [e.kind for e in log[-2:]] == [
            EntryKind.APPROVAL_REQUEST,
            EntryKind.APPROVAL_DECISION,
        ]
        assert log[-1].text == "rejected"
        assert router.session_for_approval("a1") is None

    async def test_buffered_approval_is_flushed(self, bus, router):
        await bus.publish_approval_request(
            ApprovalRequest(
                approval_id="a2", correlation_id="m9", action_kind="createFile", path="x.md"
            )
        )
        assert router.session_for_approval("a2") is None

        await bus.publish_inbound(InboundMessage(text="goal", id="m9", session_id="/work/alpha"))
        assert router.session_for_approval("a2") == "/work/alpha"

    async def test_unknown_decision_is_ignored(self, bus, router):
        await bus.publish_approval_decision(ApprovalDecision(approval_id="nope", approved=True))
        assert all(s.log == [] for s in router.sessions)


class TestFanOut:
    async def test_filtered_subscribers(self, bus, router):
        alpha, beta, everything = [], [], []
        router.subscribe(alpha.append, session_id="/work/alpha")
        router.subscribe(beta.append, session_id="/work/beta")
        router.subscribe(everything.append)

        await bus.publish_outbound(OutboundFragment(id="m1", fragment="early"))
        await bus.publish_inbound(InboundMessage(text="goal", id="m1", session_id="/work/alpha"))
        await bus.publish_outbound(OutboundFragment(id="m1", fragment="late", done=True))

        assert [(r.event_type, r.session_id) for r in alpha] == [
            (EventType.INBOUND, "/work/alpha"),
            (EventType.OUTBOUND, "/work/alpha"),
            (EventType.OUTBOUND, "/work/alpha"),
        ]
        assert [r.event.fragment for r in alpha[1:]] == ["early", "late"]
        assert beta == []
        # Unfiltered subscribers see each event exactly once, as observed
        assert [(r.event_type, r.session_id) for r in everything] == [
            (EventType.OUTBOUND, None),
            (EventType.INBOUND, "/work/alpha"),
            (EventType.OUTBOUND, "/work/alpha"),
        ]

    async def test_unsubscribe(self, bus, router):
        seen = []
        unsubscribe = router.subscribe(seen.append)
        unsubscribe()
        await bus.publish_inbound(InboundMessage(text="goal", session_id="/work/alpha"))
        assert seen == []

    async def test_failing_subscriber_does_not_block_others(self, bus, router, caplog):
        seen = []

        def broken(routed):
            raise RuntimeError("boom")

        router.subscribe(broken)
        router.subscribe(seen.append)
        with caplog.at_level(logging.ERROR):
            await bus.publish_inbound(InboundMessage(text="goal", session_id="/work/alpha"))
        assert len(seen) == 1
        assert "boom" in caplog.text


class TestHistory:
    async def test_history_cleared(self, bus, router):
        await bus.publish_inbound(InboundMessage(text="a", id="m1", session_id="/work/alpha"))
        await bus.publish_inbound(InboundMessage(text="b", id="m2", session_id="/work/beta"))

        await bus.publish_history_cleared(HistoryCleared(session_id="/work/alpha"))
        assert router.get_session("/work/alpha").log == []
        assert len(router.get_session("/work/beta").log) == 1

        await bus.publish_history_cleared(HistoryCleared())
        assert all(s.log == [] for s in router.sessions)
        assert len(router.sessions) == 2

    def test_load_history_dedupes_inbound(self, bus):
        router = SessionRouter(bus, workspace_roots=["/work/alpha"])
        records = [
            {"kind": "inbound", "id": "m1", "text": "goal"},
            {"kind": "final", "id": "m1", "text": "done"},
        ]
        assert router.load_history("/work/alpha", records) == 2
        assert router.load_history("/work/alpha", records[:1]) == 0
        assert router.session_for("m1") == "/work/alpha"

        entry = SessionEntry(kind=EntryKind.INBOUND, id="m2", text="next")
        assert router.load_history("/work/alpha", [entry, entry]) == 1
        assert [e.id for e in router.get_session("/work/alpha").log] == ["m1", "m1", "m2"]

    async def test_persist_failures_are_logged(self, bus, caplog):
        stored = []

        def persist(session_id, entry):
            stored.append((session_id, entry.kind))
            raise OSError("disk full")

        router = SessionRouter(bus, workspace_roots=["/work/alpha"], persist=persist).attach()
        try:
            with caplog.at_level(logging.ERROR):
                await bus.publish_inbound(InboundMessage(text="goal", id="m1"))
            assert stored == [("/work/alpha", EntryKind.INBOUND)]
            assert len(router.get_session("/work/alpha").log) == 1
            assert "disk full" in caplog.text
        finally:
            router.detach()
