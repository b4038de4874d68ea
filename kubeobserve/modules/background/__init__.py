"""
Background Module - Black Box Interface

Purpose: Run commands in the background and capture their streaming output
Interface: start(), BackgroundCommand.output()/cancel()/wait(), CommandScope,
           active_commands(), cancel_all()
Hidden: Consumer tasks, buffer synchronisation, process termination
"""

from .command import (
    DEFAULT_GRACE_PERIOD,
    BackgroundCommand,
    CommandScope,
    CommandState,
    active_commands,
    cancel_all,
    start,
)

__all__ = [
    "DEFAULT_GRACE_PERIOD",
    "BackgroundCommand",
    "CommandScope",
    "CommandState",
    "active_commands",
    "cancel_all",
    "start",
]
