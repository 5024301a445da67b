"""
driversign_compliance.dispatch

Action Dispatcher package: action handlers, retry policy, idempotent dispatch.
"""

from driversign_compliance.dispatch.actions import (
    ACTION_NOTIFY,
    ACTION_QUARANTINE,
    ACTION_TICKET,
    default_handlers,
)
from driversign_compliance.dispatch.dispatcher import ActionDispatcher, SideEffect

__all__ = [
    "ACTION_NOTIFY",
    "ACTION_QUARANTINE",
    "ACTION_TICKET",
    "ActionDispatcher",
    "SideEffect",
    "default_handlers",
]
