# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Base models and shared functionality for LLM interactions."""

from typing import Literal, Optional
from datetime import datetime, timedelta
from pydantic import BaseModel, Field


class ProviderError(Exception):
    """A transient provider failure (network, rate limit, server error) which
    may succeed on retry."""


class ProviderUnavailable(ProviderError):
    """No usable model: missing credentials, unknown model or no model
    configured. Never retried."""


class Message(BaseModel):
    """A message in a conversation with an LLM."""

    role: Literal["system", "user", "assistant"]
    content: str

    def __str__(self) -> str:
        return f"Message from role={self.role}\n{self.content}"


class TokenUsage(BaseModel):
    """Token counts reported by the provider, where available."""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
        )


class TimingInfo(BaseModel):
    """Timing information for LLM interactions."""

    start_time: datetime = Field(description="When the request started")
    end_time: datetime = Field(description="When the response completed")
    total_duration: timedelta = Field(description="Total duration of the request")
    first_token_time: Optional[datetime] = Field(
        None, description="When the first token was received"
    )

    @property
    def time_to_first_token(self) -> Optional[float]:
        if self.first_token_time is None:
            return None
        return (self.first_token_time - self.start_time).total_seconds()

    @classmethod
    def since(
        cls, start_time: datetime, first_token_time: Optional[datetime] = None
    ) -> "TimingInfo":
        end_time = datetime.now()
        return cls(
            start_time=start_time,
            end_time=end_time,
            total_duration=end_time - start_time,
            first_token_time=first_token_time,
        )

    def __str__(self) -> str:
        fmt = "%Y-%m-%d %H:%M:%S"
        parts = [
            f"- Start {self.start_time.strftime(fmt)}, End {self.end_time.strftime(fmt)}",
            f"- Duration: {self.total_duration}",
        ]
        if self.time_to_first_token is not None:
            parts.append(f"- TTFT: {self.time_to_first_token:.2f} sec")
        return "\n".join(parts)


class Completion(BaseModel):
    """The full text of a model response."""

    text: str
    model: str
    usage: TokenUsage = Field(default_factory=TokenUsage)
    timing: Optional[TimingInfo] = None
    stop_reason: Optional[str] = None

    def __str__(self) -> str:
        comp_str = f"{'='*80}\n{self.text}\n{'-'*80}\n"
        comp_str += f"Model: {self.model}\n"
        comp_str += (
            f"Tokens used: input {self.usage.prompt_tokens}, "
            f"completion {self.usage.completion_tokens}\n"
        )
        if self.stop_reason:
            comp_str += f"Stop reason: {self.stop_reason}\n"
        if self.timing:
            comp_str += f"Timing:\n{self.timing}\n"
        comp_str += f"{'='*80}\n"
        return comp_str
