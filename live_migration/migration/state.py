"""
Explicit migration state machine.

Source: Idle -> Iterating <-> Stopping -> FinalDump -> HandOff -> Restoring -> Done
Target: Idle -> Iterating <-> Stopping -> [HandOff ->] Restoring -> Done
Failed is reachable from every state except Done.
"""

import logging
from contextlib import contextmanager
from enum import Enum
from typing import Dict, FrozenSet, Iterator, List

from live_migration.errors import InvalidTransition


class MigrationState(Enum):
    """Migration state enumeration."""
    IDLE = "idle"
    ITERATING = "iterating"
    STOPPING = "stopping"
    FINAL_DUMP = "final_dump"
    HAND_OFF = "hand_off"
    RESTORING = "restoring"
    DONE = "done"
    FAILED = "failed"


TRANSITIONS: Dict[MigrationState, FrozenSet[MigrationState]] = {
    MigrationState.IDLE: frozenset({MigrationState.ITERATING}),
    MigrationState.ITERATING: frozenset({MigrationState.STOPPING}),
    MigrationState.STOPPING: frozenset({
        MigrationState.ITERATING,
        MigrationState.FINAL_DUMP,
        MigrationState.HAND_OFF,
        MigrationState.RESTORING,
    }),
    MigrationState.FINAL_DUMP: frozenset({MigrationState.HAND_OFF}),
    MigrationState.HAND_OFF: frozenset({MigrationState.RESTORING}),
    MigrationState.RESTORING: frozenset({MigrationState.DONE}),
    MigrationState.DONE: frozenset(),
    MigrationState.FAILED: frozenset(),
}


class MigrationStateMachine:
    """Guarded state holder for one side of one migration."""

    def __init__(self, name: str = "migration"):
        self.name = name
        self.state = MigrationState.IDLE
        self.history: List[MigrationState] = [self.state]
        self.logger = logging.getLogger(__name__)

    def can_advance(self, new_state: MigrationState) -> bool:
        return new_state in TRANSITIONS[self.state]

    def advance(self, new_state: MigrationState) -> None:
        """
        Move to a new state.

        Raises:
            InvalidTransition: If the move is not allowed from the current state
        """
        if not self.can_advance(new_state):
            raise InvalidTransition(self.state, new_state)
        self.logger.debug(f"{self.name}: {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)

    def fail(self) -> None:
        """Mark the migration failed; a finished migration stays done."""
        if self.state in (MigrationState.DONE, MigrationState.FAILED):
            return
        self.logger.debug(f"{self.name}: {self.state.value} -> failed")
        self.state = MigrationState.FAILED
        self.history.append(MigrationState.FAILED)

    @contextmanager
    def guard(self) -> Iterator[None]:
        """Mark the migration failed if the enclosed step raises."""
        try:
            yield
        except Exception:
            self.fail()
            raise
