# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Provider selection and the retrying completion entry point."""

import asyncio
import logging

from .base import Message, Completion, ProviderError, ProviderUnavailable
from .providers import AnthropicProvider, BaseProvider, OpenAIProvider

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


def get_provider(
    name: str,
    model: str | None,
    api_key: str | None = None,
    base_url: str | None = None,
) -> BaseProvider:
    """Build the named provider.

    Raises:
        ValueError: for an unknown provider name
    """
    name = name.lower()
    if name == "openai":
        return OpenAIProvider(model=model, api_key=api_key, base_url=base_url)
    if name == "anthropic":
        return AnthropicProvider(model=model, api_key=api_key)
    raise ValueError(f"Unknown provider: {name}")


async def create_completion(
    provider: BaseProvider,
    messages: list[Message],
    max_retries: int = 2,
    base_delay: float = 1.0,
    **kwargs,
) -> Completion:
    """Request a completion, retrying transient failures with exponential
    backoff.

    ProviderUnavailable is never retried. After max_retries further attempts
    the last ProviderError propagates.
    """
    attempt = 0
    while True:
        try:
            return await provider.create_completion(messages, **kwargs)
        except ProviderUnavailable:
            raise
        except ProviderError as e:
            if attempt >= max_retries:
                logger.error(f"Provider failed after {attempt + 1} attempt(s): {e}")
                raise
            delay = base_delay * (2**attempt)
            logger.warning(
                f"Provider error (attempt {attempt + 1}/{max_retries + 1}), "
                f"retrying in {delay:.1f}s: {e}"
            )
            await asyncio.sleep(delay)
            attempt += 1
