"""Commands for git-lab."""

from git_lab.commands.base import Command, Invocation, get_command_registry, register_command

# Import all commands to register them
from git_lab.commands.project import AttachCommand, DetachCommand, InfoCommand, RefreshCommand
from git_lab.commands.reference import LabelsCommand, MembersCommand, MilestonesCommand
from git_lab.commands.setup import (
    ConfigGetCommand,
    ConfigSetCommand,
    ConfigShowCommand,
    ConfigUnsetCommand,
    InitCommand,
)

__all__ = [
    "Command",
    "Invocation",
    "register_command",
    "get_command_registry",
    "AttachCommand",
    "DetachCommand",
    "InfoCommand",
    "RefreshCommand",
    "LabelsCommand",
    "MembersCommand",
    "MilestonesCommand",
    "ConfigGetCommand",
    "ConfigSetCommand",
    "ConfigShowCommand",
    "ConfigUnsetCommand",
    "InitCommand",
]
