# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
The composition root: wires the event bus, session router, approval gate, tool
engine and controller into one application object.
"""

import signal
import asyncio
import logging

from pathlib import Path

from .src.config import Settings
from .src.events import EventBus
from .src.llm import BaseProvider, get_provider
from .src.tools import ApprovalGate, ToolEngine
from .src.agents import AgentController
from .src.sessions import SessionRouter
from .src.types.agent_types import RunResult
from .src.types.event_types import (
    InboundMessage,
    ApprovalDecision,
    HistoryCleared,
    new_message_id,
)

logger = logging.getLogger(__name__)


class Agent:
    """
    The Agent class acts as the 'root' of the application state: every goal
    submitted through it becomes one controller run, attributed to a session
    by the router.
    """

    def __init__(
        self,
        bus: EventBus,
        settings: Settings,
        provider: BaseProvider | None = None,
    ):
        self.bus = bus
        self.settings = settings
        self.workspace_root = Path(settings.WORKSPACE_ROOT).resolve()

        self.router = SessionRouter(bus, workspace_roots=[str(self.workspace_root)]).attach()
        self.approvals = ApprovalGate(
            bus, timeout_seconds=settings.APPROVAL_TIMEOUT_SECONDS
        ).attach()
        self.tools = ToolEngine(
            workspace_root=self.workspace_root,
            allowed_roots=settings.ALLOWED_ROOTS,
            require_approval=settings.REQUIRE_APPROVAL,
            require_command_approval=settings.REQUIRE_COMMAND_APPROVAL,
            approvals=self.approvals,
        )
        self.provider = provider or get_provider(
            settings.PROVIDER,
            settings.MODEL,
            api_key=settings.API_KEY,
            base_url=settings.BASE_URL,
        )
        self.controller = AgentController(
            provider=self.provider,
            tools=self.tools,
            bus=bus,
            max_parse_retries=settings.MAX_PARSE_RETRIES,
            default_max_steps=settings.MAX_STEPS,
            provider_max_retries=settings.PROVIDER_MAX_RETRIES,
            provider_retry_base_delay=settings.PROVIDER_RETRY_BASE_DELAY,
        )

    @classmethod
    async def create(
        cls, settings: Settings, provider: BaseProvider | None = None
    ) -> "Agent":
        return cls(await EventBus.get_instance(), settings, provider=provider)

    @property
    def default_session_id(self) -> str:
        return str(self.workspace_root)

    async def submit(
        self,
        text: str,
        session_id: str | None = None,
        max_steps: int | None = None,
        source: str = "command",
    ) -> RunResult:
        """Run one goal to completion.

        The inbound message is published before the run starts, so the router
        can link the run's correlation id to its session.
        """
        correlation_id = new_message_id()
        await self.bus.publish_inbound(
            InboundMessage(
                text=text,
                id=correlation_id,
                source=source,
                session_id=session_id or self.default_session_id,
            )
        )
        return await self.controller.run(
            text, correlation_id=correlation_id, max_steps=max_steps
        )

    async def decide(self, approval_id: str, approved: bool) -> None:
        await self.bus.publish_approval_decision(
            ApprovalDecision(approval_id=approval_id, approved=approved)
        )

    async def clear_history(self, session_id: str | None = None) -> None:
        await self.bus.publish_history_cleared(HistoryCleared(session_id=session_id))

    def cancel_all(self) -> int:
        return sum(self.controller.cancel(cid) for cid in self.controller.active_runs)

    def register_signal_handlers(self) -> None:
        """Cancel active runs on SIGINT/SIGTERM"""
        try:
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                logger.debug(f"Agent registering handler for {sig.name}")
                loop.add_signal_handler(sig, lambda s=sig: self._signal_handler(s))
        except (NotImplementedError, RuntimeError) as e:
            logger.error(f"Error registering agent signal handlers: {e}")

    def _signal_handler(self, sig: signal.Signals) -> None:
        cancelled = self.cancel_all()
        logger.info(f"Agent received signal {sig.name}, cancelled {cancelled} run(s)")

    def close(self) -> None:
        self.approvals.detach()
        self.router.detach()
