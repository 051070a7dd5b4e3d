from typing import Dict, List, Optional, Sequence
import argparse

from zertman.certstore import is_valid_filename


def add_all_arguments(parser: argparse.ArgumentParser) -> None:
    """Add all possible arguments to the parser"""

    parser.add_argument("--config", type=str, help="Path to YAML config file")
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Log each privileged step"
    )
    parser.add_argument("--name", help="Certificate filename for operations")
    parser.add_argument("--input", help="Certificate file to add to the user store")
    parser.add_argument(
        "--system",
        action="store_true",
        help="Operate on the system store instead of the user store",
    )


def create_subparser_commands(
    subparsers: argparse._SubParsersAction,
) -> Dict[str, argparse.ArgumentParser]:
    """Create all subparser commands"""
    commands: Dict[str, Dict[str, str]] = {
        "list": {"help": "List certificates in the user or system store"},
        "add": {"help": "Add a certificate file to the user store"},
        "delete": {"help": "Delete a certificate"},
        "move": {"help": "Move a user certificate to the system store"},
        "info": {"help": "Get detailed certificate information"},
    }

    parsers: Dict[str, argparse.ArgumentParser] = {}
    for cmd, attrs in commands.items():
        parser = subparsers.add_parser(cmd, help=attrs["help"])
        add_all_arguments(parser)
        parsers[cmd] = parser

    return parsers


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="zertman", description="Manage the certificate stores of a rooted device"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")
    create_subparser_commands(subparsers)
    return parser


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    args = build_parser().parse_args(argv)
    validate_args(args)
    return args


def validate_args(args: argparse.Namespace) -> None:
    """Validate required arguments based on command"""
    if not args.command:
        raise argparse.ArgumentError(None, "A command is required")

    # Define required arguments for each command
    required_args: Dict[str, List[str]] = {
        "add": ["input"],
        "delete": ["name"],
        "move": ["name"],
        "info": ["name"],
    }

    if args.command in required_args:
        missing = [
            arg
            for arg in required_args[args.command]
            if not getattr(args, arg.replace("-", "_"), None)
        ]
        if missing:
            raise argparse.ArgumentError(
                None,
                f"Command '{args.command}' requires these arguments: {', '.join(missing)}",
            )

    if getattr(args, "name", None) is not None and not is_valid_filename(args.name):
        raise argparse.ArgumentError(
            None, f"Certificate name must be a plain filename: {args.name!r}"
        )

    if args.command == "move" and args.system:
        raise argparse.ArgumentError(
            None, "Command 'move' only accepts user certificates"
        )
