"""Compose environment lifecycle using the ``transitions`` library.

stopped -> starting -> discovering -> waiting_ready
    -> [ambassador_starting] -> running -> stopping -> stopped

``begin_teardown`` is accepted from every state so failures anywhere in
startup can funnel into the same teardown path.
"""

from __future__ import annotations

import logging
from typing import Any

from transitions.extensions.asyncio import AsyncMachine, AsyncState

logger = logging.getLogger(__name__)

STATES: list[AsyncState] = [
    AsyncState("stopped"),
    AsyncState("starting"),
    AsyncState("discovering"),
    AsyncState("waiting_ready"),
    AsyncState("ambassador_starting"),
    AsyncState("running"),
    AsyncState("stopping"),
]

STATE_NAMES: list[str] = [s.name for s in STATES]

TRANSITIONS: list[dict[str, Any]] = [
    {"trigger": "begin_startup", "source": "stopped", "dest": "starting"},
    {"trigger": "begin_discovery", "source": "starting", "dest": "discovering"},
    {"trigger": "begin_waiting", "source": "discovering", "dest": "waiting_ready"},
    {
        "trigger": "begin_ambassador",
        "source": "waiting_ready",
        "dest": "ambassador_starting",
        "conditions": ["has_port_mappings"],
    },
    {
        "trigger": "mark_running",
        "source": ["waiting_ready", "ambassador_starting"],
        "dest": "running",
    },
    {"trigger": "begin_teardown", "source": STATE_NAMES, "dest": "stopping"},
    {"trigger": "finish_teardown", "source": "stopping", "dest": "stopped"},
]


class EnvironmentLifecycle:
    """Model object the machine drives; one per compose environment."""

    state: str

    def __init__(self, project: str, port_mappings: Any = None) -> None:
        self.project = project
        self._port_mappings = port_mappings

    def has_port_mappings(self, *args: Any, **kwargs: Any) -> bool:
        return self._port_mappings is not None and not self._port_mappings.is_empty()

    async def on_enter_state(self, *args: Any, **kwargs: Any) -> None:
        logger.debug("Environment %s entered %s", self.project, self.state)


def create_environment_machine(
    model: Any, initial_state: str = "stopped"
) -> AsyncMachine:
    """Create and return an ``AsyncMachine`` bound to *model*.

    Args:
        model: Usually an :class:`EnvironmentLifecycle`.
        initial_state: The initial state for the machine.

    Returns:
        Configured ``AsyncMachine`` instance.
    """
    machine = AsyncMachine(
        model=model,
        states=STATES,
        transitions=TRANSITIONS,
        initial=initial_state,
        auto_transitions=False,
        queued=True,
        ignore_invalid_triggers=True,
        after_state_change="on_enter_state",
    )
    return machine
