"""
Command-line interface for reactloop.

Usage:
    reactloop run "summarize notes.md" --steps 5
    reactloop run "what tools do I have?" --mcp-config ~/.reactloop/mcp.json
    reactloop tools --mcp-config ~/.reactloop/mcp.json
"""

import argparse
import asyncio
import json
import signal
import sys
from pathlib import Path

from reactloop.config import RuntimeConfig
from reactloop.graph.context import CancellationToken
from reactloop.graph.flow import FlowStatus
from reactloop.llm.litellm import LiteLLMProvider
from reactloop.observability import configure_logging
from reactloop.runner.mcp_client import MCPToolProvider
from reactloop.runner.tool_provider import ToolProvider, ToolRegistry
from reactloop.runtime.agent import ReActAgent
from reactloop.runtime.progress import ProgressEvent, ProgressEventType
from reactloop.storage.media_store import MediaStore


def _build_tools(mcp_config: str | None) -> ToolProvider:
    if mcp_config:
        return MCPToolProvider.from_file(Path(mcp_config).expanduser())
    return ToolRegistry()


def _print_progress(event: ProgressEvent) -> None:
    payload = event.payload
    if event.event_type == ProgressEventType.STEP_START:
        print(f"→ {payload.get('progress', '')}", file=sys.stderr)
    elif event.event_type == ProgressEventType.ACTION_START:
        print(
            f"  ⚙ {payload.get('operation_name')} ({payload.get('provider_name')})",
            file=sys.stderr,
        )
    elif event.event_type == ProgressEventType.ACTION_COMPLETE:
        mark = "✓" if payload.get("success") else "✗"
        print(f"  {mark} {payload.get('history_id')}", file=sys.stderr)


async def _run(args: argparse.Namespace) -> int:
    config = RuntimeConfig()
    if args.media_dir:
        config.media_dir = Path(args.media_dir).expanduser()

    llm = LiteLLMProvider(
        model=args.model or config.model,
        api_key=config.api_key,
        api_base=config.api_base,
        temperature=config.temperature,
        max_tokens=config.max_tokens,
    )
    tools = _build_tools(args.mcp_config)
    agent = ReActAgent(llm=llm, tools=tools, media_store=MediaStore(config.media_dir), config=config)
    if not args.quiet:
        agent.progress.subscribe(_print_progress)

    cancellation = CancellationToken()
    interrupt_installed = _install_interrupt(cancellation)
    try:
        result = await agent.execute(args.goal, step_budget=args.steps, cancellation=cancellation)
    finally:
        if interrupt_installed:
            asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)
        if isinstance(tools, MCPToolProvider):
            await tools.close()

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print(result.final_result)
        for ref in result.media_asset_refs:
            print(f"📎 {config.media_dir / ref}")
    if result.status == FlowStatus.CANCELLED:
        return 130
    return 0 if result.success else 1


def _install_interrupt(cancellation: CancellationToken) -> bool:
    """Route Ctrl+C to the run's cancellation token."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancellation.cancel, "Interrupted by user")
    except (NotImplementedError, RuntimeError):
        # No loop signal support on this platform; KeyboardInterrupt still applies
        return False
    return True


async def _list_tools(args: argparse.Namespace) -> int:
    tools = _build_tools(args.mcp_config)
    try:
        catalogue = await tools.list_capabilities()
    finally:
        if isinstance(tools, MCPToolProvider):
            await tools.close()

    for provider_name, descriptors in catalogue.items():
        print(f"{provider_name}:")
        for tool in descriptors:
            params = ", ".join(tool.parameter_names)
            print(f"  - {tool.name}({params}): {tool.description}")
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    configure_logging(level=args.log_level)
    try:
        return asyncio.run(_run(args))
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return 130


def cmd_tools(args: argparse.Namespace) -> int:
    configure_logging(level=args.log_level)
    return asyncio.run(_list_tools(args))


def register_commands(subparsers: argparse._SubParsersAction) -> None:
    run_parser = subparsers.add_parser("run", help="Run a goal through the ReAct loop")
    run_parser.add_argument("goal", help="What the agent should accomplish")
    run_parser.add_argument("--steps", type=int, default=None, help="Maximum reasoning steps")
    run_parser.add_argument("--model", default=None, help="LiteLLM model name")
    run_parser.add_argument("--mcp-config", default=None, help="MCP servers JSON file")
    run_parser.add_argument("--media-dir", default=None, help="Where generated media is saved")
    run_parser.add_argument("--json", action="store_true", help="Print the full result as JSON")
    run_parser.add_argument("--quiet", action="store_true", help="Hide step progress")
    run_parser.add_argument("--log-level", default="WARNING", help="Logging level")
    run_parser.set_defaults(func=cmd_run)

    tools_parser = subparsers.add_parser("tools", help="List tools from configured providers")
    tools_parser.add_argument("--mcp-config", default=None, help="MCP servers JSON file")
    tools_parser.add_argument("--log-level", default="WARNING", help="Logging level")
    tools_parser.set_defaults(func=cmd_tools)


def main():
    parser = argparse.ArgumentParser(
        prog="reactloop",
        description="reactloop - Reason/Act/Observe task runner",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)
    register_commands(subparsers)

    args = parser.parse_args()

    if hasattr(args, "func"):
        sys.exit(args.func(args))


if __name__ == "__main__":
    main()
