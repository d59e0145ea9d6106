# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""LLM integration module.

This module provides a unified interface for requesting completions from
OpenAI-compatible and Anthropic providers.
"""

import logging

from .base import (
    Message,
    Completion,
    TimingInfo,
    TokenUsage,
    ProviderError,
    ProviderUnavailable,
)
from .api import create_completion, get_provider
from .providers import BaseProvider, OpenAIProvider, AnthropicProvider

# Quieten LLM API call logs to make stdout more useful
logging.getLogger("httpx").setLevel(logging.WARNING)

__all__ = [
    "Message",
    "Completion",
    "TimingInfo",
    "TokenUsage",
    "ProviderError",
    "ProviderUnavailable",
    "create_completion",
    "get_provider",
    "BaseProvider",
    "OpenAIProvider",
    "AnthropicProvider",
]
