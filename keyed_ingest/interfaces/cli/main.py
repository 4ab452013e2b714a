#!/usr/bin/env python3
"""
keyed-ingest CLI management tool.
Entry point for every command under ``commands/``.
"""

import argparse
import importlib
import pkgutil
import sys
from typing import Any, Dict

from keyed_ingest.core.exceptions import AppException
from keyed_ingest.interfaces.cli import commands as commands_package


class CLIManager:
    def __init__(self):
        self.available_commands = self._discover_commands()

    def _discover_commands(self) -> Dict[str, Any]:
        """Discover every command module in the commands package"""
        commands = {}

        for module_info in pkgutil.iter_modules(commands_package.__path__):
            module_name = module_info.name
            if module_name.startswith("_") or module_name == "base":
                continue

            module = importlib.import_module(f"{commands_package.__name__}.{module_name}")
            if hasattr(module, "Command"):
                commands[module_name] = module.Command

        return commands

    def list_commands(self):
        """Print every available command"""
        print("Available commands:")
        print("=" * 40)

        if not self.available_commands:
            print("No commands found.")
            return

        for name, command_class in sorted(self.available_commands.items()):
            description = getattr(command_class, "description", "No description")
            print(f"  {name:<20} {description}")

    def run_command(self, command_name: str, args: list) -> int:
        """Run one command and return its exit code"""
        if command_name not in self.available_commands:
            print(f"Unknown command: {command_name}")
            print("Use 'keyed-ingest help' to see available commands.")
            return 1

        command_instance = self.available_commands[command_name]()

        try:
            return command_instance.run(args) or 0
        except AppException as e:
            command_instance.print_error(f"{e.error_code}: {e.message}")
            return 1


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="keyed-ingest CLI Management Tool",
        add_help=False
    )
    parser.add_argument('command', nargs='?', help='Command to run')
    parser.add_argument('args', nargs=argparse.REMAINDER, help='Arguments for the command')

    args = parser.parse_args(argv)
    cli_manager = CLIManager()

    if not args.command or args.command == 'help':
        if args.args:
            command_name = args.args[0]
            if command_name in cli_manager.available_commands:
                cli_manager.available_commands[command_name]().help()
            else:
                print(f"Unknown command: {command_name}")
        else:
            print("keyed-ingest CLI Management Tool")
            print("Usage: keyed-ingest <command> [args...]")
            print()
            cli_manager.list_commands()
            print()
            print("Use 'keyed-ingest help <command>' for help on a specific command.")
        return 0

    return cli_manager.run_command(args.command, args.args)


if __name__ == "__main__":
    sys.exit(main())
