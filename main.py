"""
Entry point — runs one flow analysis directly from the command line.

This bypasses the MCP server and drives FlowAnalystAgent as a standalone
async operation.  Useful for trying the analyzer against a local checkout.

Usage:
    python main.py UserService createUser --workspace ../my-app
    python main.py UserService.createUser --depth 3 --model gpt-4o-mini
    python main.py --stats
    python main.py --clear-cache

For MCP server mode (SSE transport):
    python -m src.agents.flow_analyst.server
"""

import argparse
import asyncio
import json
import sys

from src.agents.flow_analyst.agent import FlowAnalystAgent
from src.agents.flow_analyst.config import FlowAnalystSettings
from src.agents.flow_analyst.models import FlowAnalysisConfig
from src.agents.flow_analyst.request_parser import parse_flow_request
from src.agents.flow_analyst.session import ProgressEvent
from src.shared.logging import setup_logging
from src.shared.observability import init_langfuse, shutdown_langfuse


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Step-by-step execution flow of a method.")
    parser.add_argument("target", nargs="*", help="'Type method' or 'Type.method'")
    parser.add_argument("--workspace", help="Source tree to analyze (default: current directory)")
    parser.add_argument("--model", help="Model used for this run")
    parser.add_argument("--depth", type=int, help="Maximum call depth below the root")
    parser.add_argument("--max-methods", type=int, help="Maximum distinct methods analyzed")
    parser.add_argument("--timeout", type=float, help="Seconds allowed per method analysis")
    parser.add_argument("--no-cache", action="store_true", help="Ignore cached analyses for this run")
    parser.add_argument("--stats", action="store_true", help="Print cache statistics and exit")
    parser.add_argument("--clear-cache", action="store_true", help="Drop all cached analyses and exit")
    parser.add_argument("--verbose", action="store_true", help="Print each method as it is analyzed")
    return parser.parse_args(argv)


def _print_progress(event: ProgressEvent) -> None:
    if event.kind == "method_start":
        print(f"{'  ' * event.depth}… {event.method}", file=sys.stderr)
    elif event.kind == "method_complete":
        print(f"{'  ' * event.depth}✓ {event.method} ({event.status})", file=sys.stderr)


async def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    overrides = {"workspace_root": args.workspace, "analysis_model": args.model}
    settings = FlowAnalystSettings(**{k: v for k, v in overrides.items() if v is not None})
    setup_logging("flow_analyst.cli", settings.log_level)
    agent = await FlowAnalystAgent.create(settings)

    if args.clear_cache:
        await agent.clear_cache()
        print("Flow analysis cache cleared.")
        return 0
    if args.stats:
        print(json.dumps(agent.cache_stats(), indent=2, default=str))
        return 0

    request = parse_flow_request(" ".join(args.target))
    if request.command != "analyze":
        print(request.error or "Usage: python main.py <TypeName> <methodName>", file=sys.stderr)
        return 2

    updates = {
        "max_depth": args.depth,
        "max_total_methods": args.max_methods,
        "per_call_timeout_s": args.timeout,
    }
    config = FlowAnalysisConfig(
        **{
            **agent.default_config().model_dump(),
            **{k: v for k, v in updates.items() if v is not None},
        }
    )
    if args.no_cache:
        config = config.model_copy(update={"enable_cache": False})

    result = await agent.run_flow_analysis(
        request.type_name,
        request.method_name,
        config,
        progress=_print_progress if args.verbose else None,
    )
    print(result.formatted_steps)
    return 1 if result.status == "error" else 0


if __name__ == "__main__":
    init_langfuse()
    try:
        exit_code = asyncio.run(main())
    finally:
        shutdown_langfuse()
    sys.exit(exit_code)
