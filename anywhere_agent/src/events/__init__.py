# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Event bus and helpers for consuming its traffic."""

from .event_bus import EventBus

__all__ = ["EventBus"]
