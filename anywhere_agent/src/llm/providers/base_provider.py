# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Base provider interface for LLM interactions."""

import logging

from abc import ABC, abstractmethod

from ..base import Message, Completion

logger = logging.getLogger(__name__)


class BaseProvider(ABC):
    """Abstract base class for LLM providers."""

    model: str | None = None

    @property
    def name(self) -> str:
        return self.model or "unknown"

    @abstractmethod
    async def create_completion(
        self,
        messages: list[Message],
        temperature: float = 0.2,
        max_tokens: int | None = None,
    ) -> Completion:
        """Send the conversation and wait for the complete response text.

        Raises:
            ProviderUnavailable: if no model can serve the request
            ProviderError: on transient failures
        """
        pass

    def split_system(self, messages: list[Message]) -> tuple[str | None, list[Message]]:
        """Separate system instructions from the turn messages, for APIs that
        take the system prompt as a distinct parameter."""
        system = "\n\n".join(m.content for m in messages if m.role == "system")
        return (system or None), [m for m in messages if m.role != "system"]
