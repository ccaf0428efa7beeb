#!/usr/bin/env python3
"""
Provisioning CLI entrypoint: argument parsing and command dispatch.
"""

import argparse
import logging
import os
import sys
import traceback

from rich.console import Console
from rich.logging import RichHandler

from .config import Config, ExitCode
from .client import PanelClient
from .commands import CLICommands
from .store import SessionFileStorage


err_console = Console(stderr=True)


def create_parser():
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        description='Provisioning task monitor for the VPS control panel',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    # Global options
    parser.add_argument('--profile', default='default', help='Configuration profile to use')
    parser.add_argument('--output', choices=['table', 'json'], default='table', help='Output format')
    parser.add_argument('--insecure', action='store_true', help='Disable SSL certificate verification (use with caution)')
    parser.add_argument('--debug', action='store_true', help='Enable debug output')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # Reinstall command
    reinstall_parser = subparsers.add_parser('reinstall', help='Reinstall the OS of a server')
    reinstall_parser.add_argument('server', help='Server ID')
    reinstall_parser.add_argument('--os-id', type=int, required=True, help='OS template ID')
    reinstall_parser.add_argument('--hostname', required=True, help='Hostname for the fresh install')
    reinstall_parser.add_argument('-y', '--yes', action='store_true', help='Skip confirmation')
    reinstall_parser.add_argument('--watch', action='store_true', help='Follow progress until the reinstall finishes')

    # Watch command
    watch_parser = subparsers.add_parser('watch', help='Resume following a tracked reinstall')
    watch_parser.add_argument('server', help='Server ID')

    # Status command
    status_parser = subparsers.add_parser('status', help='Show the tracked reinstall of a server')
    status_parser.add_argument('server', help='Server ID')

    # Reset command
    reset_parser = subparsers.add_parser('reset', help='Dismiss the tracked reinstall of a server')
    reset_parser.add_argument('server', help='Server ID')

    # Rescue mode commands
    rescue_parser = subparsers.add_parser('rescue', help='Rescue mode operations')
    rescue_sub = rescue_parser.add_subparsers(dest='rescue_action', required=True)
    for action, help_text in (
        ('enable', 'Boot the server into rescue mode'),
        ('disable', 'Leave rescue mode'),
        ('status', 'Show rescue mode status'),
    ):
        action_parser = rescue_sub.add_parser(action, help=help_text)
        action_parser.add_argument('server', help='Server ID')
        if action != 'status':
            action_parser.add_argument('-y', '--yes', action='store_true', help='Skip confirmation')
            action_parser.add_argument('--watch', action='store_true', help='Follow progress until the change finishes')

    return parser


def configure_logging(debug: bool = False):
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=debug, rich_tracebacks=debug)],
    )


def main():
    """Main entry point for the CLI application."""
    parser = create_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(ExitCode.SUCCESS.value)

    configure_logging(args.debug)

    # Handle --insecure flag
    if args.insecure:
        os.environ['PROVISION_VERIFY_SSL'] = 'false'
        err_console.print("[yellow]⚠ Warning: SSL verification disabled via --insecure flag[/yellow]")

    try:
        config = Config.from_env(args.profile)
        if not config.validate():
            err_console.print("[red]Invalid configuration: check base_url, api_token and poll settings[/red]")
            sys.exit(ExitCode.INVALID_INPUT.value)
        client = PanelClient(config)
        storage = SessionFileStorage(session=config.session)
        if args.debug:
            err_console.print(f"[dim]Session store: {storage.path}[/dim]")
        commands = CLICommands(client, storage, config, output_format=args.output)
    except Exception as e:
        err_console.print(f"[red]Initialization error: {e}[/red]")
        sys.exit(ExitCode.GENERAL_ERROR.value)

    command_map = {
        'reinstall': commands.reinstall,
        'watch': commands.watch,
        'status': commands.status,
        'reset': commands.reset,
        'rescue': commands.rescue,
    }

    handler = command_map.get(args.command)
    if handler:
        try:
            handler(args)
        except KeyboardInterrupt:
            err_console.print("\n[yellow]Detached; the task keeps running remotely[/yellow]")
            sys.exit(ExitCode.SUCCESS.value)
        except Exception as e:
            if args.debug:
                err_console.print("[red]Debug trace:[/red]")
                traceback.print_exc()
            err_console.print(f"[red]Error: {e}[/red]")
            sys.exit(ExitCode.GENERAL_ERROR.value)
    else:
        err_console.print(f"[red]Unknown command: {args.command}[/red]")
        parser.print_help()
        sys.exit(ExitCode.INVALID_INPUT.value)


if __name__ == "__main__":
    main()
