"""CLI entry point for static site generation."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.status import Status

from .catalog import BUSINESS_TYPES
from .config import Settings
from .errors import ConfigurationError
from .main import generate_site


class _Parser(argparse.ArgumentParser):
    """Usage errors exit with status 1 (argparse's default is 2)."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    parser = _Parser(
        prog="bizsite-generate",
        description="Generate the static website of one business.",
    )
    parser.add_argument(
        "--business-id",
        required=True,
        help="Business identifier (3-50 chars: a-z, 0-9, '-', '_')",
    )
    parser.add_argument(
        "--type",
        required=True,
        choices=BUSINESS_TYPES,
        help="Business type",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Output directory (default: <BIZSITE_OUTPUT_DIR>/site-<business-id>)",
    )
    parser.add_argument(
        "--profile",
        type=Path,
        default=None,
        help="Profile JSON document to render instead of fetching it from the store",
    )
    parser.add_argument(
        "--templates",
        type=Path,
        default=None,
        help="Template directory (default: the packaged templates)",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log debug output",
    )
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    console = Console(stderr=True)
    try:
        settings = Settings.from_env()
    except ConfigurationError as e:
        console.print(f"\n[bold red]Configuration error:[/] {e}\n")
        sys.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else settings.log_level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )

    status = Status("", console=console)
    status.start()

    def on_progress(msg: str):
        status.update(f"[bold cyan]{msg}[/]")

    try:
        result = asyncio.run(
            generate_site(
                business_id=args.business_id,
                business_type=args.type,
                output_dir=args.output,
                profile_path=args.profile,
                templates_dir=args.templates,
                settings=settings,
                on_progress=on_progress,
            )
        )
        status.stop()
        console.print(
            f"\n[bold green]Done![/] {len(result.files)} files written to [bold]{result.output_dir}[/]"
        )
        if result.degraded_pages:
            console.print(
                f"[yellow]Placeholder used for:[/] {', '.join(result.degraded_pages)}"
            )
        if not result.prerendered:
            console.print("[yellow]No profile found; pages will be filled at request time.[/]")
    except KeyboardInterrupt:
        status.stop()
        console.print("\n[yellow]Cancelled.[/]")
        sys.exit(1)
    except ConfigurationError as e:
        status.stop()
        console.print(f"\n[bold red]Configuration error:[/] {e}")
        console.print("Check --type and the template directory, then run again (see --help).\n")
        sys.exit(1)
    except Exception as e:
        status.stop()
        console.print(f"\n[bold red]Error:[/] {e}\n")
        sys.exit(1)


if __name__ == "__main__":
    main()
