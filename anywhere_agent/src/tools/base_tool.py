# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import json
import logging

from typing import ClassVar

from ..types.tool_types import ToolInterface

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


def get_tool_instructions() -> str:
    example = {"tool": "tool_name", "arg1": "value1", "arg2": "value2"}
    return f"""Each action is a JSON object naming its tool in the "tool" field, with the tool's arguments as sibling fields:

{json.dumps(example, indent=2)}

Never invent tools. Only the tools documented below exist."""


# Create an empty registry dictionary.
tool_registry: dict[str, type[ToolInterface]] = {}


class BaseTool(ToolInterface):
    """Abstract base class for all tool actions"""

    # Class variables for tool metadata
    TOOL_NAME: ClassVar[str]
    TOOL_DESCRIPTION: ClassVar[str]

    # Tools that change the workspace are gated behind approval when the
    # engine requires it.
    MUTATES: ClassVar[bool] = False

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        # Skip registering the BaseTool class itself.
        if cls.__name__ != "BaseTool":
            tool_registry[cls.TOOL_NAME] = cls

    # run, generate_examples are still abstract...

    @classmethod
    def to_prompt_format(cls) -> str:
        """Render the tool's documentation for the planning prompt"""
        examples = "\n".join(
            json.dumps(example) for example in cls.generate_examples()
        )
        return f"""\n## `{cls.TOOL_NAME}`

{cls.TOOL_DESCRIPTION.strip()}

Examples:
{examples}
"""


def get_tool_documentation(tools: list[type[ToolInterface]] | None = None) -> str:
    """Documentation for every registered tool, in registration order"""
    selected = tools if tools is not None else list(tool_registry.values())
    parts = [get_tool_instructions()]
    parts.extend(tool.to_prompt_format() for tool in selected)
    return "\n".join(parts)
