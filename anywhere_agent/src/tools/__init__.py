# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
The workspace tools, the approval gate and the engine which runs them
"""

from .base_tool import BaseTool, tool_registry, get_tool_documentation
from .file_tools import ListFiles, ReadFiles
from .edit_tools import CreateFile, EditFile
from .execute_command import RunCommand
from .approval import ApprovalGate
from .tool_engine import ToolContext, ToolEngine

toolkits: dict[str, list[type[BaseTool]]] = dict(
    workspace=[ListFiles, ReadFiles, CreateFile, EditFile, RunCommand],
)

__all__ = [
    "BaseTool",
    "tool_registry",
    "get_tool_documentation",
    "ListFiles",
    "ReadFiles",
    "CreateFile",
    "EditFile",
    "RunCommand",
    "ApprovalGate",
    "ToolContext",
    "ToolEngine",
    "toolkits",
]
