"""
Command-line interface for reactree.

Usage:
    reactree validate workflow.json
    reactree run workflow.json --storage .reactree --set feature=auth
    reactree run workflow.json --resume
    reactree replay --storage .reactree
    reactree feedback --storage .reactree
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from reactree.config import DEFAULT_STORAGE_DIR
from reactree.errors import ReactreeError, WorkflowValidationError
from reactree.graph.executors import ScriptedExecutor
from reactree.graph.tree import WorkflowTree
from reactree.observability import configure_logging
from reactree.runtime.engine import FEEDBACK_FILE, STATE_FILE, WorkflowEngine
from reactree.runtime.replay import replay_events
from reactree.storage.feedback_queue import FeedbackQueue
from reactree.storage.state_log import StateLog


def register_commands(subparsers: argparse._SubParsersAction) -> None:
    """Register the reactree subcommands."""
    validate_parser = subparsers.add_parser("validate", help="Validate a workflow document")
    validate_parser.add_argument("workflow", type=Path, help="Path to the workflow JSON")
    validate_parser.set_defaults(func=cmd_validate)

    run_parser = subparsers.add_parser("run", help="Run a workflow with the scripted executor")
    run_parser.add_argument("workflow", type=Path, help="Path to the workflow JSON")
    run_parser.add_argument(
        "--storage",
        type=Path,
        default=None,
        help=f"Storage directory for the JSONL stores (default: {DEFAULT_STORAGE_DIR})",
    )
    run_parser.add_argument(
        "--set",
        dest="values",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Seed working memory (VALUE is parsed as JSON when possible)",
    )
    run_parser.add_argument(
        "--resume",
        action="store_true",
        help="Skip nodes that completed successfully in an earlier run",
    )
    run_parser.set_defaults(func=cmd_run)

    replay_parser = subparsers.add_parser("replay", help="Print the state derived from the log")
    replay_parser.add_argument("--storage", type=Path, default=Path(DEFAULT_STORAGE_DIR))
    replay_parser.set_defaults(func=cmd_replay)

    feedback_parser = subparsers.add_parser("feedback", help="List feedback messages")
    feedback_parser.add_argument("--storage", type=Path, default=Path(DEFAULT_STORAGE_DIR))
    feedback_parser.add_argument("--status", default="", help="Only show messages in this status")
    feedback_parser.set_defaults(func=cmd_feedback)


def cmd_validate(args: argparse.Namespace) -> int:
    try:
        tree = WorkflowTree.load(args.workflow)
    except (OSError, json.JSONDecodeError) as e:
        print(f"Cannot read {args.workflow}: {e}", file=sys.stderr)
        return 1
    except WorkflowValidationError as e:
        problems = e.problems
    else:
        problems = tree.validate()

    if problems:
        print(f"✗ {args.workflow}: {len(problems)} problem(s)")
        for problem in problems:
            print(f"  • {problem}")
        return 1
    print(f"✓ {args.workflow}: {len(tree)} node(s)")
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    try:
        input_data = _parse_values(args.values)
    except ValueError as e:
        print(str(e), file=sys.stderr)
        return 1

    try:
        engine = WorkflowEngine.load(args.workflow, ScriptedExecutor(), storage_dir=args.storage)
        engine.tree.ensure_valid()
        outcome = asyncio.run(engine.run(input_data, resume=args.resume))
    except (OSError, json.JSONDecodeError) as e:
        print(f"Cannot read {args.workflow}: {e}", file=sys.stderr)
        return 1
    except ReactreeError as e:
        print(json.dumps({"success": False, "error": str(e)}, indent=2))
        return 1

    output = {
        "run_id": outcome.run_id,
        "success": outcome.success,
        "status": str(outcome.result.status),
        "detail": outcome.result.detail,
        "memory": engine.memory.snapshot(),
    }
    print(json.dumps(output, indent=2, default=str))
    return 0 if outcome.success else 1


def cmd_replay(args: argparse.Namespace) -> int:
    path = args.storage / STATE_FILE
    if not path.exists():
        print(f"No state log at {path}", file=sys.stderr)
        return 1
    state = replay_events(StateLog(path).records())
    print(state.model_dump_json(indent=2))
    return 0


def cmd_feedback(args: argparse.Namespace) -> int:
    path = args.storage / FEEDBACK_FILE
    if not path.exists():
        print(f"No feedback queue at {path}", file=sys.stderr)
        return 1
    messages = FeedbackQueue(path).current()
    if args.status:
        messages = [m for m in messages if m.status == args.status]
    if not messages:
        print("No feedback messages.")
        return 0
    for msg in messages:
        error = f" ({msg.error})" if msg.error else ""
        print(
            f"{msg.message_id}  {msg.from_node} → {msg.to_node}  {msg.feedback_type}  "
            f"round {msg.round}  {msg.status}{error}"
        )
        if msg.message:
            print(f"    {msg.message}")
    return 0


def _parse_values(values: list[str]) -> dict:
    parsed = {}
    for item in values:
        key, sep, raw = item.partition("=")
        if not sep or not key:
            raise ValueError(f"Expected KEY=VALUE, got '{item}'")
        try:
            parsed[key] = json.loads(raw)
        except json.JSONDecodeError:
            parsed[key] = raw
    return parsed


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="reactree",
        description="reactree - Run hierarchical workflow trees with loops, branches and feedback",
    )
    parser.add_argument("--log-level", default="WARNING", help="Logging level (default: WARNING)")
    parser.add_argument(
        "--log-format",
        default="auto",
        choices=["auto", "human", "json"],
        help="Log output format",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    register_commands(subparsers)

    args = parser.parse_args(argv)
    configure_logging(level=args.log_level, format=args.log_format)

    if hasattr(args, "func"):
        sys.exit(args.func(args))


if __name__ == "__main__":
    main()
