"""
Bounded undo/redo history built from durable-state snapshots.

The history system works via snapshots:
- A checkpoint stores a deep copy of the durable state before an edit
- Undo swaps the current state for the newest checkpoint
- Redo swaps it back from the redo stack

Stored snapshots are never handed out directly; callers always receive a
fresh deep copy, so a snapshot cannot change after it was captured.
"""

from typing import Optional

from .config import UNDO_STACK_LIMIT
from .models import DurableState


class History:
    """Undo and redo stacks of `DurableState` snapshots, oldest first."""

    def __init__(self, max_history: int = UNDO_STACK_LIMIT):
        if max_history < 1:
            raise ValueError("max_history must be at least 1")
        self._max_history = max_history
        self._undo: list[DurableState] = []  # Past states
        self._redo: list[DurableState] = []  # Future states

    # --- Properties ---

    @property
    def max_history(self) -> int:
        return self._max_history

    @property
    def can_undo(self) -> bool:
        return len(self._undo) > 0

    @property
    def can_redo(self) -> bool:
        return len(self._redo) > 0

    @property
    def undo_depth(self) -> int:
        return len(self._undo)

    @property
    def redo_depth(self) -> int:
        return len(self._redo)

    # --- Stack Operations ---

    def _push(self, stack: list[DurableState], state: DurableState):
        stack.append(state.model_copy(deep=True))
        # Trim oldest entries once over capacity
        while len(stack) > self._max_history:
            stack.pop(0)

    def checkpoint(self, state: DurableState):
        """Record `state` as the newest undo point and drop the redo path."""
        self._push(self._undo, state)
        self._redo.clear()

    def undo(self, current: DurableState) -> Optional[DurableState]:
        """
        Step back one checkpoint.

        `current` is kept on the redo stack. Returns the state to restore, or
        None when there is nothing to undo.
        """
        if not self._undo:
            return None
        snapshot = self._undo.pop()
        self._push(self._redo, current)
        return snapshot.model_copy(deep=True)

    def redo(self, current: DurableState) -> Optional[DurableState]:
        """Step forward again; the mirror image of `undo`."""
        if not self._redo:
            return None
        snapshot = self._redo.pop()
        self._push(self._undo, current)
        return snapshot.model_copy(deep=True)

    def clear_redo(self):
        self._redo.clear()

    def clear(self):
        self._undo.clear()
        self._redo.clear()

    def peek_undo(self) -> Optional[DurableState]:
        """Copy of the checkpoint `undo` would restore next."""
        if not self._undo:
            return None
        return self._undo[-1].model_copy(deep=True)
