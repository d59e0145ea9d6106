# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
The agents module holds the controller that turns a natural-language goal into
a bounded sequence of workspace operations.

The model's context is composed as follows:

- a system message carrying the output protocol (exactly one JSON object per
  turn) and the documentation of every available tool
- the first "user" message, which is the goal itself
- alternating pairs of the model's raw JSON plan step ("assistant") and the
  structured results of executing it ("user", prefixed with TOOL_RESULTS)

Corrective prompts for unparseable output or empty action lists are appended
as the same kind of pair, with the model's rejected output followed by the
correction, so the model always sees what it produced and why it was refused.

Everything a user should see (commentary, a summary of the actions taken,
human-readable results and the final summary) is published to the event bus
as outbound fragments keyed by the run's correlation id.
"""

from .agent_controller import AgentController, ProtocolViolation, RunAborted

__all__ = ["AgentController", "ProtocolViolation", "RunAborted"]
