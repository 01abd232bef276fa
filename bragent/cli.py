"""
CLI for Bragent.

Provides the command-line interface using argparse.
"""

import argparse
import asyncio
import json
import sys
from typing import Optional

from rich.console import Console

from . import __version__
from .adapters import OracleError, create_adapter
from .agent import OrchestrationLoop
from .approver import get_approver
from .browser import PlaywrightBrowserPort
from .config import AgentConfig, DEFAULTS, MODE_EXTENSION, MODE_PLAYWRIGHT
from .logger import RunLogger, configure_logging
from .types import TaskResult


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="bragent",
        description="Bragent - an LLM agent that completes tasks in your browser.",
        epilog="""
Examples:
  # Start the server the browser extension connects to
  bragent serve --port 3000

  # Run a task in a local Chromium
  bragent run "Open example.com and tell me the title"

  # Use a specific model
  bragent run "Find the weather in Paris" --model claude/claude-3-5-sonnet-latest

  # Run headless without confirmation prompts
  bragent run "Read the top story on news.ycombinator.com" --headless --auto-approve
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"Bragent {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Serve command
    serve_parser = subparsers.add_parser(
        "serve",
        help="Start the HTTP server for the extension and the control panel",
    )

    serve_parser.add_argument(
        "--host",
        type=str,
        default=None,
        help=f"Address to bind (default: {DEFAULTS['host']})",
    )

    serve_parser.add_argument(
        "--port",
        type=int,
        default=None,
        help=f"Port to listen on (default: {DEFAULTS['port']})",
    )

    serve_parser.add_argument(
        "--mode",
        choices=[MODE_EXTENSION, MODE_PLAYWRIGHT],
        default=None,
        help="Drive the browser extension or a local Playwright browser "
             "(default: derived from BROWSER_TYPE)",
    )

    serve_parser.add_argument(
        "--model",
        type=str,
        default=None,
        help=f"LLM model, optionally provider-prefixed (default: {DEFAULTS['model']})",
    )

    serve_parser.add_argument(
        "-d", "--debug",
        action="store_true",
        default=False,
        help="Enable verbose logging",
    )

    # Run command
    run_parser = subparsers.add_parser(
        "run",
        help="Run a single task in a local Playwright browser",
    )

    run_parser.add_argument(
        "task",
        type=str,
        help="The task to accomplish in natural language",
    )

    run_parser.add_argument(
        "--max-iterations",
        type=int,
        default=None,
        help=f"Maximum loop iterations (default: {DEFAULTS['max_iterations']})",
    )

    run_parser.add_argument(
        "--model",
        type=str,
        default=None,
        help=f"LLM model, optionally provider-prefixed (default: {DEFAULTS['model']})",
    )

    run_parser.add_argument(
        "--headless",
        action="store_true",
        default=None,
        help="Run browser in headless mode",
    )

    run_parser.add_argument(
        "--auto-approve",
        action="store_true",
        default=DEFAULTS["auto_approve"],
        help="Approve high-risk actions without asking",
    )

    run_parser.add_argument(
        "--json",
        action="store_true",
        default=False,
        help="Print the task result as JSON",
    )

    run_parser.add_argument(
        "-d", "--debug",
        action="store_true",
        default=False,
        help="Enable verbose logging",
    )

    return parser


def serve_command(args: argparse.Namespace) -> int:
    """Execute the serve command.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code
    """
    from .server import serve

    console = Console()
    config = AgentConfig.from_cli_args(
        model=args.model,
        mode=args.mode,
        host=args.host,
        port=args.port,
        debug=args.debug or None,
    )
    configure_logging(config.debug)

    is_valid, error = config.provider_config.validate()
    if not is_valid:
        console.print(f"[bold red]Configuration error: {error}[/bold red]")
        return 1

    console.print(f"[bold cyan]Bragent[/bold cyan] {__version__}")
    console.print(f"[dim]Mode:[/dim] {config.mode}  [dim]Model:[/dim] {config.model}")
    console.print(f"[dim]Control panel:[/dim] http://{config.host}:{config.port}")
    serve(config)
    return 0


def run_command(args: argparse.Namespace) -> int:
    """Execute the run command.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    console = Console()
    config = AgentConfig.from_cli_args(
        model=args.model,
        max_iterations=args.max_iterations,
        headless=args.headless,
        mode=MODE_PLAYWRIGHT,
        auto_approve=args.auto_approve,
        debug=args.debug or None,
    )
    configure_logging(config.debug)

    is_valid, error = config.provider_config.validate()
    if not is_valid:
        console.print(f"[bold red]Configuration error: {error}[/bold red]")
        return 1

    try:
        result = asyncio.run(_run_task(args.task, config, json_mode=args.json))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        return 130
    except (OracleError, OSError) as e:
        console.print(f"[bold red]Fatal error: {e}[/bold red]")
        return 1

    if args.json:
        print(json.dumps(result.to_dict(), ensure_ascii=False))
    return 0 if result.success else 1


async def _run_task(task: str, config: AgentConfig, json_mode: bool = False) -> TaskResult:
    run_logger = RunLogger(enable_console=not json_mode)
    oracle = create_adapter(
        config.provider_config,
        timeout=config.oracle_timeout,
        max_tokens=config.oracle_max_tokens,
        temperature=config.temperature,
    )
    run_logger.print_header(task, config.model)

    try:
        async with PlaywrightBrowserPort(config) as port:
            loop = OrchestrationLoop(
                port,
                oracle,
                get_approver(config.auto_approve),
                config=config,
                run_logger=run_logger,
            )
            result = await loop.run_task(task)
    finally:
        await oracle.close()

    run_logger.print_final_answer(result)
    run_logger.print_summary(result)
    return result


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point.

    Args:
        argv: Command line arguments (uses sys.argv if None)

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    if args.command == "serve":
        return serve_command(args)

    if args.command == "run":
        return run_command(args)

    # Unknown command
    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
