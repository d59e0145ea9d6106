# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""OpenAI-compatible LLM provider implementation."""

import os
import logging
import openai

from openai import AsyncOpenAI
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


class OpenAIProvider(BaseProvider):
    """Provider for OpenAI and any server speaking the chat completions API."""

    def __init__(
        self,
        model: str | None,
        api_key: str | None = None,
        base_url: str | None = None,
        client: AsyncOpenAI | None = None,
    ):
        self.model = model
        self.client = client
        if client is None:
            api_key = api_key or os.environ.get("OPENAI_API_KEY")
            if api_key is None and base_url:
                # Local OpenAI-compatible servers usually accept any key
                api_key = "not-needed"
            if api_key is not None:
                self.client = AsyncOpenAI(api_key=api_key, base_url=base_url)
            else:
                logger.warning("No OpenAI API key configured")

    def _prepare_messages(self, messages: list[Message]) -> list[dict]:
        return [{"role": m.role, "content": m.content} for m in messages]

    async def create_completion(
        self,
        messages: list[Message],
        temperature: float = 0.2,
        max_tokens: int | None = None,
    ) -> Completion:
        if not self.model or self.client is None:
            raise ProviderUnavailable("No chat model available for agent.")

        start_time = datetime.now()
        first_token_time = None
        args = {
            "messages": self._prepare_messages(messages),
            "model": self.model,
            "temperature": temperature,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if max_tokens:
            args["max_tokens"] = max_tokens

        text_parts: list[str] = []
        usage = TokenUsage()
        stop_reason = None
        try:
            stream = await self.client.chat.completions.create(**args)
            async for chunk in stream:
                if chunk.usage:
                    usage = TokenUsage(
                        prompt_tokens=chunk.usage.prompt_tokens or 0,
                        completion_tokens=chunk.usage.completion_tokens or 0,
                    )
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                if choice.delta and choice.delta.content:
                    if first_token_time is None:
                        first_token_time = datetime.now()
                    text_parts.append(choice.delta.content)
                if choice.finish_reason:
                    stop_reason = choice.finish_reason
        except (openai.AuthenticationError, openai.PermissionDeniedError, openai.NotFoundError) as e:
            raise ProviderUnavailable(f"Model {self.model} unavailable: {e}") from e
        except (
            openai.APIConnectionError,
            openai.RateLimitError,
            openai.InternalServerError,
        ) as e:
            raise ProviderError(f"Transient error from {self.model}: {e}") from e

        return Completion(
            text="".join(text_parts),
            model=self.model,
            usage=usage,
            timing=TimingInfo.since(start_time, first_token_time),
            stop_reason=stop_reason,
        )
