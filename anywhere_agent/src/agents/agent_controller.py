# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
The planning/execution loop.

Each run asks the model for one JSON plan step at a time, executes the step's
actions through the tool engine, feeds the raw results back and repeats until
the model declares completion, the step ceiling is reached, or the run is
aborted or cancelled. Everything the user sees is published as outbound
fragments keyed by the run's correlation id, and every run ends with exactly
one fragment carrying done=True.
"""

import json
import uuid
import asyncio
import logging

from datetime import datetime

from ..events import EventBus
from ..llm import (
    Message,
    BaseProvider,
    TokenUsage,
    ProviderError,
    ProviderUnavailable,
    create_completion,
)
from ..schemas import ParseError, parse_plan_step, parse_diagnostic
from ..tools import ToolEngine, get_tool_documentation, tool_registry, toolkits
from ..types.agent_types import PlanStep, RunResult, RunState, RunStatus
from ..types.event_types import OutboundFragment
from ..types.tool_types import ToolResult

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

SYSTEM_PROMPT = """You are an autonomous coding assistant working inside a user's workspace.

IMPORTANT OUTPUT RULES:
1. Respond with EXACTLY ONE JSON OBJECT per turn. Do not wrap it in code fences and never write prose outside it.
2. Every non-final step MUST have at least ONE action in the "actions" array. If you are waiting to see file contents, include a readFiles action. Empty actions with done=false are INVALID.
3. For edits you MUST use readFiles on the file in an earlier step (createFile for brand new files needs no read).
4. Give concise "commentary" (at most 160 characters) explaining why you chose the actions.
5. FINAL step: {{"finalSummary": "...", "done": true}}
6. If you cannot proceed without clarification: {{"finalSummary": "Need clarification: <question>", "done": true}}
7. All paths are relative to the workspace root.

NON-FINAL EXAMPLE:
{{
  "actions": [{{"tool": "readFiles", "files": ["src/example.py"]}}],
  "commentary": "Reading the target file before editing.",
  "done": false
}}

FINAL EXAMPLE:
{{"finalSummary": "Created docs/notes.md and updated src/app.py", "done": true}}

After each step you receive the outcome of your actions as TOOL_RESULTS, a JSON
list with one entry per action, in order.

# Available tools

{tool_docs}
"""

RETRY_MESSAGE = "Previous output invalid. Respond ONLY with one JSON object following schema."
EMPTY_ACTIONS_MESSAGE = (
    "INVALID_EMPTY_ACTIONS: Provide at least one action (e.g., readFiles) "
    "or set done=true with a finalSummary."
)
MAX_CONSECUTIVE_EMPTY = 2


class RunAborted(Exception):
    """Ends a run early with a user-facing reason"""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ProtocolViolation(RunAborted):
    """The model kept breaking the output protocol"""


def summarize_actions(actions: list[dict]) -> str:
    lines = []
    for action in actions:
        tool = action.get("tool", "unknown")
        target = action.get("path") or action.get("command")
        lines.append(f"- {tool}: {target}" if target else f"- {tool}")
    return "Actions:\n" + "\n".join(lines)


def summarize_results(results: list[ToolResult]) -> str:
    return "Results:\n" + "\n".join(f"- {r.summary()}" for r in results)


class _Run:
    """Per-run state, owned by the controller for the lifetime of one run"""

    def __init__(self, correlation_id: str, goal: str, max_steps: int):
        self.correlation_id = correlation_id
        self.goal = goal
        self.max_steps = max_steps
        self.state = RunState.PLANNING
        self.step = 0
        self.provider_calls = 0
        self.parse_failures = 0
        self.empty_actions = 0
        self.history: list[Message] = []
        self.changed_files: list[str] = []
        self.usage = TokenUsage()
        self.model: str | None = None
        self.finished = False
        self.started_at = datetime.now()


class AgentController:
    """Drives plan, validate, execute cycles for individual goals."""

    def __init__(
        self,
        provider: BaseProvider,
        tools: ToolEngine,
        bus: EventBus,
        max_parse_retries: int = 3,
        default_max_steps: int = 12,
        provider_max_retries: int = 2,
        provider_retry_base_delay: float = 1.0,
    ):
        self.provider = provider
        self.tools = tools
        self.bus = bus
        self.max_parse_retries = max_parse_retries
        self.default_max_steps = default_max_steps
        self.provider_max_retries = provider_max_retries
        self.provider_retry_base_delay = provider_retry_base_delay
        self.system_prompt = SYSTEM_PROMPT.format(
            tool_docs=get_tool_documentation(toolkits["workspace"])
        )

        self._active_runs: dict[str, asyncio.Task] = {}
        self._cancel_requested: set[str] = set()

    @property
    def active_runs(self) -> list[str]:
        return list(self._active_runs)

    async def run(
        self,
        goal: str,
        correlation_id: str | None = None,
        max_steps: int | None = None,
    ) -> RunResult:
        """Run the loop for one goal to completion.

        Never raises for model, parse or tool failures: those end the run with
        an ABORTED status. Cancelling the calling task still propagates, after
        the run's final fragment has been published.
        """
        run = _Run(
            correlation_id=correlation_id or uuid.uuid4().hex,
            goal=goal,
            max_steps=max_steps if max_steps is not None else self.default_max_steps,
        )
        if run.correlation_id in self._active_runs:
            raise ValueError(f"A run with id {run.correlation_id} is already active")

        task = asyncio.create_task(self._execute(run))
        self._active_runs[run.correlation_id] = task
        try:
            return await task
        finally:
            self._active_runs.pop(run.correlation_id, None)
            self._cancel_requested.discard(run.correlation_id)

    def cancel(self, correlation_id: str) -> bool:
        """Request cancellation of an active run.

        Returns:
            False if no run with this id is active.
        """
        task = self._active_runs.get(correlation_id)
        if task is None or task.done():
            return False
        logger.info(f"Cancelling run {correlation_id}")
        self._cancel_requested.add(correlation_id)
        task.cancel()
        return True

    # Loop ====================================================================

    async def _execute(self, run: _Run) -> RunResult:
        run.history = [
            Message(role="system", content=self.system_prompt),
            Message(role="user", content=run.goal),
        ]
        try:
            while run.step < run.max_steps:
                result = await self._step(run)
                if result is not None:
                    return result
            return await self._finish(run, RunStatus.MAX_STEPS, "Agent reached max steps")
        except RunAborted as e:
            return await self._finish(run, RunStatus.ABORTED, e.reason)
        except asyncio.CancelledError:
            result = await self._finish(run, RunStatus.CANCELLED, "Agent run cancelled.")
            if run.correlation_id not in self._cancel_requested:
                raise
            return result
        except Exception as e:
            logger.exception(f"Unexpected error in run {run.correlation_id}")
            return await self._finish(run, RunStatus.ABORTED, f"Agent failed: {e}")

    async def _step(self, run: _Run) -> RunResult | None:
        """One planning call and, when it yields a valid plan, its execution.

        Returns a result when the run terminated, otherwise None.
        """
        run.state = RunState.PLANNING
        text = await self._plan(run)

        run.state = RunState.VALIDATING
        try:
            plan, raw_json = parse_plan_step(text)
        except ParseError:
            run.parse_failures += 1
            await self._emit(run, parse_diagnostic(text))
            if run.parse_failures > self.max_parse_retries:
                raise RunAborted(
                    f"Agent output was not valid JSON {run.parse_failures} times in a row. Aborting."
                )
            run.history.append(Message(role="assistant", content=text))
            run.history.append(Message(role="user", content=RETRY_MESSAGE))
            return None
        run.parse_failures = 0

        if plan.done:
            run.state = RunState.FINALIZING
            summary = plan.final_summary or "Agent finished."
            return await self._finish(run, RunStatus.SUCCESS, summary)

        if plan.commentary:
            await self._emit(run, plan.commentary)

        if not plan.actions:
            run.empty_actions += 1
            if run.empty_actions >= MAX_CONSECUTIVE_EMPTY:
                raise ProtocolViolation(
                    "Agent produced empty actions repeatedly. Aborting."
                )
            run.history.append(Message(role="assistant", content=raw_json))
            run.history.append(Message(role="user", content=EMPTY_ACTIONS_MESSAGE))
            return None
        run.empty_actions = 0

        run.state = RunState.EXECUTING
        await self._execute_actions(run, plan, raw_json)
        run.step += 1
        return None

    async def _plan(self, run: _Run) -> str:
        try:
            completion = await create_completion(
                self.provider,
                run.history,
                max_retries=self.provider_max_retries,
                base_delay=self.provider_retry_base_delay,
            )
        except ProviderUnavailable as e:
            logger.error(f"Provider unavailable for run {run.correlation_id}: {e}")
            raise RunAborted("No chat model available for agent.")
        except ProviderError as e:
            raise RunAborted(f"Model request failed: {e}")
        finally:
            run.provider_calls += 1
        run.model = completion.model
        run.usage = run.usage + completion.usage
        return completion.text

    async def _execute_actions(self, run: _Run, plan: PlanStep, raw_json: str) -> None:
        await self._emit(run, summarize_actions(plan.actions))
        results = await self.tools.execute(plan.actions, correlation_id=run.correlation_id)

        for result in results:
            tool = tool_registry.get(result.tool)
            if result.success and tool is not None and tool.MUTATES:
                path = (result.detail or {}).get("path")
                if path and path not in run.changed_files:
                    run.changed_files.append(path)

        await self._emit(run, summarize_results(results))

        feedback = json.dumps([r.to_feedback() for r in results])
        run.history.append(Message(role="assistant", content=raw_json))
        run.history.append(Message(role="user", content=f"TOOL_RESULTS:\n{feedback}"))

    # Output ==================================================================

    async def _emit(self, run: _Run, fragment: str) -> None:
        await self.bus.publish_outbound(
            OutboundFragment(id=run.correlation_id, fragment=fragment, model=run.model)
        )

    async def _finish(self, run: _Run, status: RunStatus, summary: str) -> RunResult:
        """Publish the single done fragment of the run and build its result"""
        if not run.finished:
            run.finished = True
            run.state = RunState.TERMINATED
            await self.bus.publish_outbound(
                OutboundFragment(
                    id=run.correlation_id, fragment=summary, done=True, model=run.model
                )
            )
            log = logger.info if status == RunStatus.SUCCESS else logger.warning
            log(f"Run {run.correlation_id} ended ({status.value}) after {run.step} step(s)")
        return RunResult(
            correlation_id=run.correlation_id,
            goal=run.goal,
            status=status,
            summary=summary,
            steps=run.step,
            provider_calls=run.provider_calls,
            changed_files=list(run.changed_files),
            usage=run.usage,
            started_at=run.started_at,
            ended_at=datetime.now(),
        )
