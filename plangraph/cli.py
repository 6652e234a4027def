"""
Command-line interface for plangraph.

Usage:
    plangraph run "Tidy up the release notes" --thread notes --store ./plans
    plangraph show-plan --thread notes --store ./plans
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from plangraph.config import RuntimeConfig, get_storage_path
from plangraph.observability import configure_logging
from plangraph.runtime.agent_runtime import AgentRuntime
from plangraph.runtime.event_bus import AgentEvent, EventType
from plangraph.storage.plan_store import FilePlanStore


def _print_progress(event: AgentEvent) -> None:
    message = event.data.get("message") or event.data.get("title") or event.data.get("reason")
    suffix = f": {message}" if message else ""
    print(f"  [{event.phase}]{suffix}", file=sys.stderr)


async def _run(args: argparse.Namespace) -> int:
    config = RuntimeConfig()
    if args.model:
        config.model = args.model
    if args.store:
        config.storage_path = Path(args.store)

    runtime = AgentRuntime(config)

    async def on_progress(event: AgentEvent) -> None:
        _print_progress(event)

    if not args.quiet:
        runtime.event_bus.subscribe([EventType.PROGRESS], on_progress, filter_thread=args.thread)

    await runtime.start()
    try:
        state = await runtime.handle_message(args.thread, args.message)
    finally:
        await runtime.stop()

    print(state.response)
    if state.run.error:
        print(f"Error: {state.run.error}", file=sys.stderr)
        return 1
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    """Run one message through the workflow."""
    return asyncio.run(_run(args))


async def _show_plan(args: argparse.Namespace) -> int:
    store = FilePlanStore(Path(args.store) if args.store else get_storage_path())
    if args.plan is not None:
        plan_id = args.plan
    else:
        plan_id = await store.get_active_plan_id_for_thread(args.thread)
        if plan_id is None:
            plans = await store.list_plans(args.thread)
            plan_id = plans[0].id if plans else None
    if plan_id is None:
        print(f"No plans for thread '{args.thread}'")
        return 1

    loaded = await store.get_plan(plan_id)
    if loaded is None:
        print(f"Plan {plan_id} not found")
        return 1

    if args.json:
        print(json.dumps(loaded.model_dump(mode="json"), indent=2))
        return 0

    plan = loaded.plan
    print(f"Plan {plan.id} (revision {plan.revision}, {plan.status.value}): {plan.goal}")
    for todo in loaded.todos:
        print(f"  {todo.order_index:>2}. [{todo.status.value:<11}] {todo.title}")
    if args.events:
        print("Events:")
        for event in loaded.events:
            print(f"  {event.created_at.isoformat()} {event.type} {json.dumps(event.data)}")
    return 0


def cmd_show_plan(args: argparse.Namespace) -> int:
    """Print a thread's plan and todos."""
    return asyncio.run(_show_plan(args))


def register_commands(subparsers: argparse._SubParsersAction) -> None:
    run_parser = subparsers.add_parser("run", help="Send one message to a thread")
    run_parser.add_argument("message", help="User message")
    run_parser.add_argument("--thread", default="default", help="Thread id")
    run_parser.add_argument("--store", help="Plan storage directory")
    run_parser.add_argument("--model", help="Model string, e.g. 'ollama/llama3.1'")
    run_parser.add_argument("--quiet", action="store_true", help="Hide progress events")
    run_parser.set_defaults(func=cmd_run)

    show_parser = subparsers.add_parser("show-plan", help="Show a thread's plan")
    show_parser.add_argument("--thread", default="default", help="Thread id")
    show_parser.add_argument("--store", help="Plan storage directory")
    show_parser.add_argument("--plan", type=int, help="Plan id (default: active/latest)")
    show_parser.add_argument("--events", action="store_true", help="Include plan events")
    show_parser.add_argument("--json", action="store_true", help="Output as JSON")
    show_parser.set_defaults(func=cmd_show_plan)


def main():
    parser = argparse.ArgumentParser(
        prog="plangraph",
        description="plangraph - plan, execute and critique multi-step tasks",
    )
    parser.add_argument("--log-level", default="WARNING", help="Log level")
    parser.add_argument(
        "--log-format", default="auto", choices=["auto", "json", "human"], help="Log format"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    register_commands(subparsers)

    args = parser.parse_args()
    configure_logging(level=args.log_level, format=args.log_format)

    if hasattr(args, "func"):
        sys.exit(args.func(args))


if __name__ == "__main__":
    main()
