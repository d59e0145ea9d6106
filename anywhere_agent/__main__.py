# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Main entrypoint when running the agent defined in this directory with
`python -m anywhere_agent`.
"""

import sys
import logging
import asyncio
import argparse

from pathlib import Path
from dotenv import load_dotenv

from .agent import Agent
from .src.config import Settings
from .src.events.event_bus_utils import log_to_stdout
from .src.types.agent_types import RunStatus
from .src.types.event_types import ApprovalRequest

logger = logging.getLogger(__name__)


def setup_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="anywhere_agent")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run the agent on a goal")
    run_parser.add_argument(
        "--prompt",
        "-p",
        type=str,
        default=None,
        help="The goal for the agent. Read from stdin when omitted.",
    )
    run_parser.add_argument(
        "--workspace",
        "-w",
        type=str,
        default=None,
        help="Workspace root the agent may operate in (default: ANYWHERE_WORKSPACE_ROOT or cwd)",
    )
    run_parser.add_argument(
        "--allow",
        action="append",
        default=None,
        help="Allowed workspace-relative root; may be repeated. Use '*' for everything.",
    )
    run_parser.add_argument("--provider", type=str, default=None, help="openai or anthropic")
    run_parser.add_argument("--model", "-m", type=str, default=None, help="Model name")
    run_parser.add_argument(
        "--max-steps", type=int, default=None, help="Step ceiling for the run"
    )
    run_parser.add_argument(
        "--auto-approve",
        action="store_true",
        help="Approve every file change and command without asking",
    )
    run_parser.add_argument(
        "--no-approval",
        action="store_true",
        help="Apply file changes without requesting approval",
    )
    run_parser.add_argument(
        "--approve-commands",
        action="store_true",
        help="Also require approval before running shell commands",
    )
    run_parser.add_argument(
        "--debug", action="store_true", help="Output more verbose logs than usual."
    )
    return parser


def settings_from_args(args: argparse.Namespace) -> Settings:
    settings = Settings.from_env()
    overrides = {}
    if args.workspace:
        overrides["WORKSPACE_ROOT"] = str(Path(args.workspace).resolve())
    if args.allow:
        overrides["ALLOWED_ROOTS"] = args.allow
    if args.provider:
        overrides["PROVIDER"] = args.provider
    if args.model:
        overrides["MODEL"] = args.model
    if args.no_approval:
        overrides["REQUIRE_APPROVAL"] = False
    if args.approve_commands:
        overrides["REQUIRE_COMMAND_APPROVAL"] = True
    if args.debug:
        overrides["LOG_LEVEL"] = "DEBUG"
    return settings.model_copy(update=overrides)


class ConsoleApprover:
    """Answers approval requests by asking on the console"""

    def __init__(self, agent: Agent, auto_approve: bool = False):
        self.agent = agent
        self.auto_approve = auto_approve
        self._tasks: set[asyncio.Task] = set()

    def __call__(self, request: ApprovalRequest) -> None:
        # Ask in a separate task so the approval timeout runs meanwhile
        task = asyncio.create_task(self.ask(request))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def ask(self, request: ApprovalRequest) -> None:
        if self.auto_approve:
            await self.agent.decide(request.approval_id, True)
            return
        print(f"\nApproval requested: {request.action_kind} {request.path}")
        if request.diff:
            print(request.diff)
        elif request.preview:
            print(request.preview)
        answer = await asyncio.to_thread(input, "Apply? [y/N] ")
        await self.agent.decide(request.approval_id, answer.strip().lower() in ("y", "yes"))


async def run(args: argparse.Namespace) -> int:
    settings = settings_from_args(args)
    logging.getLogger().setLevel(settings.LOG_LEVEL)

    goal = args.prompt
    if goal is None:
        goal = sys.stdin.read().strip()
    if not goal:
        logger.error("No goal given")
        return 2

    agent = await Agent.create(settings)
    agent.register_signal_handlers()
    agent.router.subscribe(log_to_stdout)
    agent.bus.subscribe_approval_request(
        ConsoleApprover(agent, auto_approve=args.auto_approve)
    )
    try:
        result = await agent.submit(goal, max_steps=args.max_steps)
    finally:
        agent.close()

    logger.info(
        f"Run {result.correlation_id} finished: {result.status.value}, "
        f"{result.steps} step(s), {result.provider_calls} model call(s), "
        f"{result.usage.total_tokens} token(s) in {result.duration_seconds or 0:.1f}s"
    )
    if result.changed_files:
        print("Changed files:\n" + "\n".join(f"- {p}" for p in result.changed_files))
    return 0 if result.status == RunStatus.SUCCESS else 1


def main() -> None:
    load_dotenv()
    logging.captureWarnings(True)
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler()],
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("anthropic").setLevel(logging.WARNING)

    parser = setup_parser()
    args = parser.parse_args()
    if args.command == "run":
        sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
