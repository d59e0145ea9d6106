# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Runtime settings, read from ANYWHERE_* environment variables.

The entry point loads a .env file with python-dotenv before the settings are
read, so either source works.
"""

import os

from typing import Mapping
from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "ANYWHERE_"


def _env_list(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


class Settings(BaseModel):
    PROVIDER: str = "openai"
    MODEL: str | None = None
    API_KEY: str | None = None
    BASE_URL: str | None = None

    WORKSPACE_ROOT: str = Field(default_factory=os.getcwd)
    ALLOWED_ROOTS: list[str] = Field(default_factory=lambda: ["*"])
    REQUIRE_APPROVAL: bool = True
    REQUIRE_COMMAND_APPROVAL: bool = False
    APPROVAL_TIMEOUT_SECONDS: float = 120.0

    MAX_STEPS: int = 12
    MAX_PARSE_RETRIES: int = 3
    PROVIDER_MAX_RETRIES: int = 2
    PROVIDER_RETRY_BASE_DELAY: float = 1.0

    LOG_LEVEL: str = "INFO"

    @field_validator("ALLOWED_ROOTS", mode="before")
    @classmethod
    def split_roots(cls, value):
        if isinstance(value, str):
            return _env_list(value) or ["*"]
        return value

    @field_validator("LOG_LEVEL")
    @classmethod
    def upper_level(cls, value: str) -> str:
        return value.upper()

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        """Build settings from the environment; unset variables keep their
        defaults. Boolean and numeric strings are coerced by pydantic."""
        environ = os.environ if environ is None else environ
        values = {}
        for name in cls.model_fields:
            raw = environ.get(ENV_PREFIX + name)
            if raw is not None and raw != "":
                values[name] = raw
        return cls(**values)
