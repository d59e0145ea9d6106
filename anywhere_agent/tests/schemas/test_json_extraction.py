# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Tests for extracting plan steps from raw model output."""
import json

import pytest

from anywhere_agent.src.schemas import (
    ParseError,
    extract_json_candidates,
    parse_plan_step,
    parse_diagnostic,
)


class TestCandidateExtraction:

    def test_bare_object(self):
        assert extract_json_candidates('{"done": true}') == ['{"done": true}']

    def test_fenced_and_brace_candidates_deduplicated(self):
        text = 'Sure!\n```json\n{"done": true, "finalSummary": "ok"}\n```\n'
        assert extract_json_candidates(text) == ['{"done": true, "finalSummary": "ok"}']

    def test_later_candidates_first(self):
        text = 'first {"a": 1} then {"b": 2}'
        assert extract_json_candidates(text) == ['{"b": 2}', '{"a": 1}']

    def test_nested_objects_yield_top_level_only(self):
        text = 'x {"actions": [{"tool": "listFiles"}], "done": false} y'
        assert extract_json_candidates(text) == [
            '{"actions": [{"tool": "listFiles"}], "done": false}'
        ]

    def test_braces_inside_strings(self):
        obj = {"actions": [{"tool": "createFile", "path": "a.py", "content": "def f():\n    return {'k': '}'}"}]}
        text = "Plan: " + json.dumps(obj)
        assert extract_json_candidates(text) == [json.dumps(obj)]

    def test_no_json(self):
        assert extract_json_candidates("I will now read the files.") == []


class TestParsePlanStep:

    def test_non_final_step(self):
        raw = json.dumps(
            {
                "actions": [{"tool": "readFiles", "files": ["a.py"]}],
                "commentary": "Reading first.",
                "done": False,
            }
        )
        plan, source = parse_plan_step(raw)
        assert plan.actions == [{"tool": "readFiles", "files": ["a.py"]}]
        assert plan.commentary == "Reading first."
        assert plan.done is False
        assert source == raw

    def test_final_step(self):
        plan, _ = parse_plan_step('{ "finalSummary": "Created notes.md", "done": true }')
        assert plan.done is True
        assert plan.final_summary == "Created notes.md"

    def test_prefers_later_plan(self):
        text = (
            'Draft: {"actions": [], "done": false}\n'
            'Final answer: {"finalSummary": "all good", "done": true}'
        )
        plan, _ = parse_plan_step(text)
        assert plan.done is True

    def test_ignores_non_plan_objects(self):
        text = '{"finalSummary": "done", "done": true} and a config {"port": 8080}'
        plan, _ = parse_plan_step(text)
        assert plan.final_summary == "done"

    def test_null_fields_take_defaults(self):
        raw = '{"actions": [{"tool": "listFiles"}], "commentary": null, "done": false}'
        plan, source = parse_plan_step(raw)
        assert plan.actions == [{"tool": "listFiles"}]
        assert plan.commentary == ""
        assert source == raw

        plan, _ = parse_plan_step('{"actions": null, "done": null}')
        assert plan.actions == []
        assert plan.done is False

    def test_repairs_malformed_json(self):
        text = "{'actions': [{'tool': 'listFiles'}], 'commentary': 'look', 'done': false,}"
        plan, source = parse_plan_step(text)
        assert plan.actions == [{"tool": "listFiles"}]
        assert json.loads(source)["commentary"] == "look"

    def test_repairs_unterminated_object(self):
        plan, _ = parse_plan_step('{"finalSummary": "finished", "done": true')
        assert plan.done is True
        assert plan.final_summary == "finished"

    @pytest.mark.parametrize(
        "text",
        [
            "",
            "no json here at all",
            "[1, 2, 3]",
            '{"actions": "not a list"}',
        ],
    )
    def test_unparseable(self, text):
        with pytest.raises(ParseError) as exc:
            parse_plan_step(text)
        assert exc.value.raw == text


def test_parse_diagnostic_is_bounded():
    raw = "  " + "y" * 1000
    note = parse_diagnostic(raw)
    assert note.startswith("Output not valid JSON (showing first 400 chars):\n")
    assert note.endswith("y" * 400)
    assert len(note.splitlines()[1]) == 400
