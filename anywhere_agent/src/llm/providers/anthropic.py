# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Anthropic LLM provider implementation."""

import os
import logging
import anthropic

from anthropic import AsyncAnthropic
from datetime import datetime

from ..base import (
    Message,
    Completion,
    TimingInfo,
    TokenUsage,
    ProviderError,
    ProviderUnavailable,
)
from .base_provider import BaseProvider

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 4096


class AnthropicProvider(BaseProvider):
    """Provider implementation for Anthropic's messages API."""

    def __init__(
        self,
        model: str | None,
        api_key: str | None = None,
        client: AsyncAnthropic | None = None,
    ):
        self.model = model
        self.client = client
        if client is None:
            api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
            if api_key is not None:
                self.client = AsyncAnthropic(api_key=api_key)
            else:
                logger.warning("No Anthropic API key configured")

    async def create_completion(
        self,
        messages: list[Message],
        temperature: float = 0.2,
        max_tokens: int | None = None,
    ) -> Completion:
        if not self.model or self.client is None:
            raise ProviderUnavailable("No chat model available for agent.")

        start_time = datetime.now()
        system, turns = self.split_system(messages)
        args = {
            "model": self.model,
            "max_tokens": max_tokens or DEFAULT_MAX_TOKENS,
            "temperature": temperature,
            "messages": [{"role": m.role, "content": m.content} for m in turns],
        }
        if system:
            # Anthropic puts system separately
            args["system"] = system

        try:
            response = await self.client.messages.create(**args)
        except (
            anthropic.AuthenticationError,
            anthropic.PermissionDeniedError,
            anthropic.NotFoundError,
        ) as e:
            raise ProviderUnavailable(f"Model {self.model} unavailable: {e}") from e
        except (
            anthropic.APIConnectionError,
            anthropic.RateLimitError,
            anthropic.InternalServerError,
        ) as e:
            raise ProviderError(f"Transient error from {self.model}: {e}") from e

        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        usage = TokenUsage(
            prompt_tokens=response.usage.input_tokens,
            completion_tokens=response.usage.output_tokens,
        )
        return Completion(
            text=text,
            model=response.model or self.model,
            usage=usage,
            timing=TimingInfo.since(start_time),
            stop_reason=response.stop_reason,
        )
