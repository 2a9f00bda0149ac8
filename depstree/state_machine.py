"""
Depstree - Tree State Machine.

============================================================
RESPONSIBILITY
============================================================
Tracks the lifecycle state of the whole tree.

- Enforces valid tree-level transitions
- Keeps a bounded transition history
- Notifies a single owner callback on every change

============================================================
STATE MACHINE
============================================================

    OFF ──► INITIALIZING ──► UP
     │            │           │
     │            ▼           ▼
     │        DEINITIALIZING ◄┘
     │            │
     └──────────► DOWN ──► INITIALIZING (re-init only)

ERROR is never entered by the tree itself; it exists so
init()/deinit() gating covers every State value.

============================================================
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set

from .models import State
from .exceptions import InvalidStateError


logger = logging.getLogger(__name__)


# ============================================================
# STATE TRANSITIONS
# ============================================================

VALID_TRANSITIONS: Dict[State, Set[State]] = {
    State.OFF: {
        State.INITIALIZING,
        State.DOWN,
    },
    State.INITIALIZING: {
        State.UP,
        State.DEINITIALIZING,
    },
    State.UP: {
        State.DEINITIALIZING,
    },
    State.DEINITIALIZING: {
        State.DOWN,
    },
    State.DOWN: {
        State.INITIALIZING,
    },
    State.ERROR: set(),
}


@dataclass
class StateTransition:
    """Record of a tree state transition."""

    from_state: State
    to_state: State
    reason: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "from_state": self.from_state.value,
            "to_state": self.to_state.value,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
        }


# ============================================================
# TREE STATE MACHINE
# ============================================================

class TreeStateMachine:
    """Tree-level state holder with transition validation."""

    def __init__(
        self,
        on_change: Optional[Callable[[StateTransition], None]] = None,
        max_history: int = 100,
    ):
        """
        Initialize state machine.

        Args:
            on_change: Called after every applied transition
            max_history: Number of transitions kept
        """
        self._state = State.OFF
        self._on_change = on_change
        self._history: List[StateTransition] = []
        self._max_history = max_history

    @property
    def state(self) -> State:
        """Get current tree state."""
        return self._state

    def get_history(self, limit: int = 10) -> List[StateTransition]:
        """Get transition history."""
        return self._history[-limit:]

    def can_transition_to(self, target_state: State) -> bool:
        """Check if transition to target state is valid."""
        return target_state in VALID_TRANSITIONS.get(self._state, set())

    def transition_to(self, target_state: State, reason: str, operation: str = "transition") -> StateTransition:
        """
        Transition to a new state.

        Raises:
            InvalidStateError: If the transition is not allowed
        """
        if not self.can_transition_to(target_state):
            raise InvalidStateError(operation=operation, state=self._state)

        transition = StateTransition(
            from_state=self._state,
            to_state=target_state,
            reason=reason,
        )
        self._state = target_state

        self._history.append(transition)
        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]

        logger.info(
            f"Tree state: {transition.from_state.value} -> {target_state.value} | reason={reason}"
        )

        if self._on_change is not None:
            self._on_change(transition)

        return transition


# ============================================================
# EXPORTS
# ============================================================

__all__ = [
    "VALID_TRANSITIONS",
    "StateTransition",
    "TreeStateMachine",
]
