# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import pytest

from anywhere_agent.src.events import EventBus
from anywhere_agent.src.llm import BaseProvider, Completion, Message


# Optional: Define custom command-line options for your markers
def pytest_addoption(parser):
    parser.addoption(
        "--run-llm",
        action="store_true",
        default=False,
        help="Run tests marked with 'uses_llm'",
    )
    parser.addoption(
        "--run-slow",
        action="store_true",
        default=False,
        help="Run tests marked with 'slow'",
    )


def pytest_configure(config):
    config.addinivalue_line("markers", "uses_llm: test calls a real model provider")
    config.addinivalue_line("markers", "slow: test takes several seconds")


# Skip tests based on markers unless the corresponding option is provided
def pytest_collection_modifyitems(config, items):
    if not config.getoption("--run-llm"):
        skip_llm = pytest.mark.skip(reason="need --run-llm option to run")
        for item in items:
            if "uses_llm" in item.keywords:
                item.add_marker(skip_llm)
    if not config.getoption("--run-slow"):
        skip_slow = pytest.mark.skip(reason="need --run-slow option to run")
        for item in items:
            if "slow" in item.keywords:
                item.add_marker(skip_slow)


class ScriptedProvider(BaseProvider):
    """A provider replaying canned responses, recording each request"""

    def __init__(self, responses: list, model: str = "scripted-model"):
        self.model = model
        self.responses = list(responses)
        self.requests: list[list[Message]] = []

    async def create_completion(self, messages, temperature=0.2, max_tokens=None):
        self.requests.append(list(messages))
        if not self.responses:
            raise AssertionError("ScriptedProvider ran out of responses")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, Completion):
            return response
        return Completion(text=response, model=self.model)


@pytest.fixture
async def bus():
    """The shared event bus, emptied of subscribers around each test"""
    event_bus = await EventBus.get_instance()
    event_bus.clear()
    yield event_bus
    event_bus.clear()


@pytest.fixture
def scripted_provider():
    return ScriptedProvider
