"""
Incognito — Entry Point

Usage:
    incognito demo               # Scripted session on the loopback driver
    incognito state <file>       # Show a saved storage-state snapshot
    incognito --verbose ...      # Debug logging to stderr
"""

import argparse
import asyncio
import sys
from pathlib import Path

from pydantic import ValidationError
from rich.console import Console

from incognito import __version__


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="incognito",
        description="Incognito — isolated browser sessions",
        epilog="Examples:\n"
               "  incognito demo                     Scripted session, no browser needed\n"
               "  incognito state auth.json          Inspect a saved storage state\n",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"incognito {__version__}")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("demo", help="Run a scripted session on the loopback driver")
    state_parser = subparsers.add_parser("state", help="Render a storage-state JSON file")
    state_parser.add_argument("path", type=Path, help="File written by storage_state(path=...)")
    return parser


def show_state(path: Path, console: Console) -> int:
    from incognito.models import StorageState
    from incognito.renderer import render_storage_state

    try:
        state = StorageState.model_validate_json(path.read_text(encoding="utf-8"))
    except OSError as e:
        console.print(f"[red][!] Cannot read {path}: {e}[/]")
        return 1
    except ValidationError as e:
        console.print(f"[red][!] {path} is not a storage-state file:[/]\n{e}")
        return 1
    render_storage_state(state, console)
    return 0


def main(argv: list[str] | None = None) -> int:
    """Sync entry point for console_scripts (pyproject.toml)."""
    args = build_parser().parse_args(argv)

    from incognito.config import load_config
    from incognito.logging_config import setup_logging

    config = load_config()
    logger = setup_logging(verbose=args.verbose, log_dir=config.log_dir)
    logger.info("Incognito CLI starting", extra={"event": args.command or "help"})

    console = Console()
    if args.command == "demo":
        from incognito.demo import run_demo
        try:
            asyncio.run(run_demo(console))
        except KeyboardInterrupt:
            console.print("\nInterrupted.")
            return 130
        return 0

    if args.command == "state":
        return show_state(args.path, console)

    build_parser().print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
