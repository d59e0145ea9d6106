# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Tests for the planning/execution loop."""
import json
import asyncio
import logging

import pytest

from anywhere_agent.src.agents import AgentController
from anywhere_agent.src.agents.agent_controller import (
    RETRY_MESSAGE,
    EMPTY_ACTIONS_MESSAGE,
)
from anywhere_agent.src.llm import (
    BaseProvider,
    Completion,
    ProviderError,
    ProviderUnavailable,
    TokenUsage,
)
from anywhere_agent.src.tools import ToolEngine
from anywhere_agent.src.types.agent_types import RunStatus

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

pytestmark = pytest.mark.asyncio


def step(actions, commentary="", done=False) -> str:
    return json.dumps({"actions": actions, "commentary": commentary, "done": done})


def final(summary: str) -> str:
    return json.dumps({"finalSummary": summary, "done": True})


class FragmentRecorder:
    def __init__(self, bus):
        self.fragments = []
        bus.subscribe_outbound(self.fragments.append)

    def texts(self, correlation_id=None):
        return [
            f.fragment
            for f in self.fragments
            if correlation_id is None or f.id == correlation_id
        ]

    def done(self):
        return [f for f in self.fragments if f.done]


class BlockingProvider(BaseProvider):
    """Never answers; signals when it has been called"""

    def __init__(self):
        self.model = "blocking-model"
        self.called = asyncio.Event()

    async def create_completion(self, messages, temperature=0.2, max_tokens=None):
        self.called.set()
        await asyncio.Event().wait()


@pytest.fixture
def engine(tmp_path):
    return ToolEngine(workspace_root=tmp_path, allowed_roots=["*"], require_approval=False)


def make_controller(provider, engine, bus, **kwargs) -> AgentController:
    kwargs.setdefault("provider_retry_base_delay", 0)
    return AgentController(provider=provider, tools=engine, bus=bus, **kwargs)


async def test_create_file_goal(bus, engine, tmp_path, scripted_provider):
    """A single createFile step followed by a final summary."""
    provider = scripted_provider(
        [
            step(
                [{"tool": "createFile", "path": "notes.md", "content": "hello"}],
                commentary="Creating the notes file.",
            ),
            final("Created notes.md containing hello"),
        ]
    )
    recorder = FragmentRecorder(bus)
    controller = make_controller(provider, engine, bus)

    result = await controller.run("create notes.md with hello", correlation_id="run-a")

    assert result.status == RunStatus.SUCCESS
    assert result.steps == 1
    assert result.provider_calls == 2
    assert result.changed_files == ["notes.md"]
    assert result.duration_seconds is not None
    assert (tmp_path / "notes.md").read_text() == "hello"

    assert recorder.texts() == [
        "Creating the notes file.",
        "Actions:\n- createFile: notes.md",
        "Results:\n- created file notes.md",
        "Created notes.md containing hello",
    ]
    assert len(recorder.done()) == 1
    assert recorder.fragments[-1].done
    assert "notes.md" in recorder.fragments[-1].fragment

    # The raw plan and the structured results are fed back to the model
    second_request = provider.requests[1]
    assert second_request[-2].role == "assistant"
    assert second_request[-1].content.startswith("TOOL_RESULTS:\n")
    feedback = json.loads(second_request[-1].content.split("\n", 1)[1])
    assert len(feedback) == 1
    assert feedback[0]["tool"] == "createFile"
    assert feedback[0]["success"] is True


async def test_system_prompt_documents_tools(bus, engine, scripted_provider):
    provider = scripted_provider([final("nothing to do")])
    await make_controller(provider, engine, bus).run("noop")

    system, goal = provider.requests[0]
    assert system.role == "system"
    for tool in ("listFiles", "readFiles", "createFile", "editFile", "runCommand"):
        assert tool in system.content
    assert goal.role == "user"
    assert goal.content == "noop"


async def test_two_empty_action_steps_abort(bus, engine, scripted_provider):
    """The second consecutive empty action list aborts; no third model call."""
    provider = scripted_provider([step([]), step([]), final("never reached")])
    recorder = FragmentRecorder(bus)

    result = await make_controller(provider, engine, bus).run("do something")

    assert result.status == RunStatus.ABORTED
    assert result.summary == "Agent produced empty actions repeatedly. Aborting."
    assert len(provider.requests) == 2
    assert provider.requests[1][-1].content == EMPTY_ACTIONS_MESSAGE
    assert len(recorder.done()) == 1
    assert recorder.fragments[-1].done


async def test_non_empty_step_resets_empty_counter(bus, engine, scripted_provider):
    provider = scripted_provider(
        [
            step([]),
            step([{"tool": "listFiles"}]),
            step([]),
            final("listed"),
        ]
    )
    result = await make_controller(provider, engine, bus).run("list files")

    assert result.status == RunStatus.SUCCESS
    assert result.steps == 1
    assert result.provider_calls == 4


async def test_parse_failure_retries_same_step(bus, engine, scripted_provider):
    provider = scripted_provider(["I think I should list the files first.", final("ok")])
    recorder = FragmentRecorder(bus)

    result = await make_controller(provider, engine, bus).run("goal")

    assert result.status == RunStatus.SUCCESS
    assert result.steps == 0
    assert result.provider_calls == 2
    assert recorder.texts()[0].startswith("Output not valid JSON (showing first 400 chars):")
    retry = provider.requests[1]
    assert retry[-2].content == "I think I should list the files first."
    assert retry[-1].content == RETRY_MESSAGE


async def test_parse_retries_are_capped(bus, engine, scripted_provider):
    provider = scripted_provider(["nope"] * 3 + [final("too late")])
    recorder = FragmentRecorder(bus)

    result = await make_controller(provider, engine, bus, max_parse_retries=2).run("goal")

    assert result.status == RunStatus.ABORTED
    assert len(provider.requests) == 3
    assert len(recorder.done()) == 1


async def test_max_steps(bus, engine, scripted_provider):
    provider = scripted_provider([step([{"tool": "listFiles"}])] * 3)
    recorder = FragmentRecorder(bus)

    result = await make_controller(provider, engine, bus).run("loop", max_steps=2)

    assert result.status == RunStatus.MAX_STEPS
    assert result.steps == 2
    assert len(provider.requests) == 2
    assert recorder.fragments[-1].fragment == "Agent reached max steps"
    assert len(recorder.done()) == 1


async def test_provider_unavailable(bus, engine, scripted_provider):
    provider = scripted_provider([ProviderUnavailable("no model")])
    recorder = FragmentRecorder(bus)

    result = await make_controller(provider, engine, bus).run("goal")

    assert result.status == RunStatus.ABORTED
    assert result.summary == "No chat model available for agent."
    assert [f.done for f in recorder.fragments] == [True]


async def test_transient_provider_error_is_retried(bus, engine, scripted_provider):
    provider = scripted_provider([ProviderError("blip"), final("done after retry")])
    result = await make_controller(provider, engine, bus).run("goal")

    assert result.status == RunStatus.SUCCESS
    assert len(provider.requests) == 2


async def test_provider_retries_exhausted(bus, engine, scripted_provider):
    provider = scripted_provider([ProviderError("down")] * 3)
    result = await make_controller(provider, engine, bus, provider_max_retries=2).run("goal")

    assert result.status == RunStatus.ABORTED
    assert len(provider.requests) == 3


async def test_tool_failures_do_not_end_run(bus, engine, scripted_provider):
    provider = scripted_provider(
        [
            step([{"tool": "editFile", "path": "missing.txt", "content": "x"}]),
            final("could not edit"),
        ]
    )
    recorder = FragmentRecorder(bus)
    result = await make_controller(provider, engine, bus).run("edit")

    assert result.status == RunStatus.SUCCESS
    assert result.changed_files == []
    assert "editFile failed: File not found: missing.txt [NotFound]" in recorder.texts()[1]


async def test_cancel_active_run(bus, engine):
    provider = BlockingProvider()
    recorder = FragmentRecorder(bus)
    controller = make_controller(provider, engine, bus)

    task = asyncio.create_task(controller.run("wait forever", correlation_id="run-c"))
    await provider.called.wait()
    assert controller.active_runs == ["run-c"]

    assert controller.cancel("run-c") is True
    result = await task

    assert result.status == RunStatus.CANCELLED
    assert len(recorder.done()) == 1
    assert controller.active_runs == []
    assert controller.cancel("run-c") is False


async def test_external_cancellation_still_finishes_run(bus, engine):
    provider = BlockingProvider()
    recorder = FragmentRecorder(bus)
    controller = make_controller(provider, engine, bus)

    task = asyncio.create_task(controller.run("wait forever", correlation_id="run-x"))
    await provider.called.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert [f.id for f in recorder.done()] == ["run-x"]


async def test_interleaved_runs_keep_their_own_streams(bus, engine, scripted_provider):
    recorder = FragmentRecorder(bus)
    first = make_controller(scripted_provider([final("first done")]), engine, bus)
    second = make_controller(scripted_provider([final("second done")]), engine, bus)

    await asyncio.gather(
        first.run("one", correlation_id="r1"), second.run("two", correlation_id="r2")
    )

    assert recorder.texts("r1") == ["first done"]
    assert recorder.texts("r2") == ["second done"]


async def test_token_usage_is_summed(bus, engine, scripted_provider):
    provider = scripted_provider(
        [
            Completion(
                text=step([{"tool": "listFiles"}]),
                model="scripted-model",
                usage=TokenUsage(prompt_tokens=100, completion_tokens=20),
            ),
            Completion(
                text=final("listed"),
                model="scripted-model",
                usage=TokenUsage(prompt_tokens=150, completion_tokens=5),
            ),
        ]
    )
    result = await make_controller(provider, engine, bus).run("list")

    assert result.usage.prompt_tokens == 250
    assert result.usage.total_tokens == 275
    # Listing files changes nothing
    assert result.changed_files == []
