# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Utilities for pulling a structured plan step out of free-form model output.

Models wrap JSON in code fences, add prose around it, or emit several objects
in one reply. We gather every plausible object, prefer the later ones, and
accept the first that parses into a PlanStep: strictly with json.loads when
possible, otherwise through json_repair.
"""

import re
import json
import logging

from typing import Any
from pydantic import ValidationError
from json_repair import repair_json

from ..types.agent_types import PlanStep

logger = logging.getLogger(__name__)

FENCE_PATTERN = re.compile(r"```(?:json)?\s*\n(.*?)```", re.IGNORECASE | re.DOTALL)

# An object must carry at least one of these to count as a plan
PLAN_KEYS = ("actions", "done", "finalSummary")


class ParseError(Exception):
    """No candidate in the model output could be read as a plan step."""

    def __init__(self, raw: str, message: str = "Output not valid JSON"):
        super().__init__(message)
        self.raw = raw


def _top_level_objects(text: str) -> list[str]:
    """Substrings of text spanning balanced, top-level braces.

    Braces inside JSON string literals are ignored.
    """
    objects: list[str] = []
    depth = 0
    start = -1
    in_string = False
    escaped = False
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"' and depth > 0:
            in_string = True
        elif ch == "{":
            if depth == 0:
                start = i
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                objects.append(text[start : i + 1])
    return objects


def extract_json_candidates(text: str) -> list[str]:
    """Collect plausible JSON object strings from the model output.

    Fenced blocks come first, then every top-level brace-balanced span. The
    merged list is reversed, so later candidates are tried first, and
    deduplicated keeping the first occurrence.
    """
    candidates = [m.group(1).strip() for m in FENCE_PATTERN.finditer(text)]
    candidates.extend(obj.strip() for obj in _top_level_objects(text))
    return list(dict.fromkeys(c for c in reversed(candidates) if c))


def _strict_load(candidate: str) -> dict[str, Any] | None:
    try:
        obj = json.loads(candidate)
    except json.JSONDecodeError:
        return None
    return obj if isinstance(obj, dict) else None


def _repaired_load(candidate: str) -> dict[str, Any] | None:
    try:
        obj = repair_json(candidate, return_objects=True)
    except Exception as e:
        logger.debug(f"json_repair failed on candidate: {e}")
        return None
    return obj if isinstance(obj, dict) else None


def _to_plan(obj: dict[str, Any] | None) -> PlanStep | None:
    if obj is None or not any(key in obj for key in PLAN_KEYS):
        return None
    try:
        return PlanStep.model_validate(obj)
    except ValidationError:
        return None


def parse_plan_step(text: str) -> tuple[PlanStep, str]:
    """Parse one plan step from raw model output.

    Returns:
        The parsed step and the exact candidate text it came from.

    Raises:
        ParseError: if no candidate parses into a plan step
    """
    candidates = extract_json_candidates(text)
    for candidate in candidates:
        plan = _to_plan(_strict_load(candidate))
        if plan is not None:
            return plan, candidate
    # An unterminated object never forms a balanced span; let the repair pass
    # see everything from the first brace on
    repair_candidates = list(candidates)
    if "{" in text:
        repair_candidates.append(text[text.index("{") :])
    for candidate in repair_candidates:
        plan = _to_plan(_repaired_load(candidate))
        if plan is not None:
            logger.info("Recovered plan step from malformed JSON with json_repair")
            return plan, json.dumps(plan.model_dump(by_alias=True, exclude_none=True))
    raise ParseError(text)


def parse_diagnostic(raw: str, limit: int = 400) -> str:
    """The fragment shown to the user when model output could not be parsed"""
    return f"Output not valid JSON (showing first {limit} chars):\n{raw.strip()[:limit]}"
