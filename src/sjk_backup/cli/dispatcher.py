"""CLI dispatcher.

Routes subcommands to their handlers. Without a subcommand the ``run``
command is executed, so ``sjk-backup -m host`` keeps working from cron.
"""

import argparse
import sys
from typing import Callable

from .common import add_verbosity_args


class ArgumentParser(argparse.ArgumentParser):
    """Argument parser exiting with status 1 on usage errors."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\nType {self.prog} --help for help.\n")


def add_run_args(parser: argparse.ArgumentParser, suppress: bool = False) -> None:
    """Add run options.

    With ``suppress`` the options get no default, so a subcommand parser
    does not clobber values given before the subcommand.
    """
    parser.add_argument(
        "-m",
        "--machine",
        metavar="HOST",
        default=argparse.SUPPRESS if suppress else None,
        help="Back up only this host (must be listed in the config file)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=argparse.SUPPRESS if suppress else False,
        help="Show the rsync commands without running them",
    )


def create_subcommand_parser() -> argparse.ArgumentParser:
    """Create the main argument parser with subcommands."""
    parser = ArgumentParser(
        prog="sjk-backup",
        description="Incremental multi-host rsync backups with hard-linked generations",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    add_verbosity_args(parser)

    parser.add_argument(
        "-V",
        "--version",
        action="store_true",
        help="Show version and exit",
    )

    parser.add_argument(
        "-c",
        "--config",
        metavar="FILE",
        help="Path to configuration file",
    )

    add_run_args(parser)

    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        description="Available commands (use 'command --help' for details)",
        parser_class=ArgumentParser,
    )

    # run command
    run_parser = subparsers.add_parser(
        "run",
        help="Back up all configured hosts (default)",
        description="Back up every enabled host, or the one given with -m",
    )
    add_run_args(run_parser, suppress=True)

    # list command
    list_parser = subparsers.add_parser(
        "list",
        help="Show generations and locks",
        description="List generations, lock holders and unfinished backups per host",
    )
    list_parser.add_argument(
        "--json",
        action="store_true",
        help="Output in JSON format",
    )

    # prune command
    prune_parser = subparsers.add_parser(
        "prune",
        help="Apply retention depth",
        description="Delete generations beyond each host's number_of_backups",
    )
    prune_parser.add_argument(
        "--dry-run",
        action="store_true",
        default=argparse.SUPPRESS,
        help="Show what would be deleted without making changes",
    )

    # config command with subcommands
    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
        description="Validate or initialize configuration",
    )
    config_subs = config_parser.add_subparsers(dest="config_action")

    config_subs.add_parser(
        "validate",
        help="Validate configuration file",
    )

    init_parser = config_subs.add_parser(
        "init",
        help="Generate example configuration",
    )
    init_parser.add_argument(
        "-o",
        "--output",
        metavar="FILE",
        help="Output file (default: stdout)",
    )

    return parser


def run_subcommand(args: argparse.Namespace) -> int:
    """Run the specified subcommand.

    Args:
        args: Parsed arguments

    Returns:
        Exit code
    """
    from .. import __version__

    if args.version:
        print(f"sjk-backup version {__version__}")
        return 0

    # Route to appropriate command handler
    handlers: dict[str, Callable] = {
        "run": cmd_run,
        "list": cmd_list,
        "prune": cmd_prune,
        "config": cmd_config,
    }

    handler = handlers.get(args.command or "run")
    if handler:
        return handler(args)
    else:
        print(f"Unknown command: {args.command}")
        return 1


def cmd_run(args: argparse.Namespace) -> int:
    """Execute run command."""
    from .run import execute_run

    return execute_run(args)


def cmd_list(args: argparse.Namespace) -> int:
    """Execute list command."""
    from .list_cmd import execute_list

    return execute_list(args)


def cmd_prune(args: argparse.Namespace) -> int:
    """Execute prune command."""
    from .prune import execute_prune

    return execute_prune(args)


def cmd_config(args: argparse.Namespace) -> int:
    """Execute config command."""
    from .config_cmd import execute_config

    return execute_config(args)


def main(argv: list[str] | None = None) -> int:
    """Main entry point for sjk-backup CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    if argv is None:
        argv = sys.argv[1:]

    parser = create_subcommand_parser()
    args = parser.parse_args(argv)

    return run_subcommand(args)
