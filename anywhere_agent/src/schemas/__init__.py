# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
from .json_parsing import (
    ParseError,
    extract_json_candidates,
    parse_plan_step,
    parse_diagnostic,
)

__all__ = [
    "ParseError",
    "extract_json_candidates",
    "parse_plan_step",
    "parse_diagnostic",
]
