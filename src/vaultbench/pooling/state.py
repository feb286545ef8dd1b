# src/vaultbench/pooling/state.py
"""Per-sub-batch state machine and single-writer outcome slots.

    pending -> in_flight -> succeeded
                         -> retrying -> succeeded | failed
                         -> failed
    pending -> failed          (cancelled before dispatch)

Terminal states never change. Cancellation races with late workers are
settled here: whoever finalizes a slot first wins, the loser is told so.
"""

from __future__ import annotations

import time
from threading import Lock

from vaultbench.contracts import CallOutcome, SubBatchState

_ALLOWED_TRANSITIONS: dict[SubBatchState, frozenset[SubBatchState]] = {
    SubBatchState.PENDING: frozenset({SubBatchState.IN_FLIGHT, SubBatchState.FAILED}),
    SubBatchState.IN_FLIGHT: frozenset({SubBatchState.RETRYING, SubBatchState.SUCCEEDED, SubBatchState.FAILED}),
    SubBatchState.RETRYING: frozenset({SubBatchState.RETRYING, SubBatchState.SUCCEEDED, SubBatchState.FAILED}),
    SubBatchState.SUCCEEDED: frozenset(),
    SubBatchState.FAILED: frozenset(),
}


class InvalidTransitionError(RuntimeError):
    """A sub-batch was moved along an edge the state machine does not have."""

    def __init__(self, index: int, current: SubBatchState, target: SubBatchState) -> None:
        super().__init__(f"sub-batch {index}: illegal transition {current} -> {target}")
        self.index = index
        self.current = current
        self.target = target


class SubBatchTracker:
    """Thread-safe state and outcome slots for one dispatch.

    Slots are pre-sized and indexed by sub-batch number. Only the lock
    holder mutates a slot, and a terminal slot is never written again.
    """

    def __init__(self, count: int) -> None:
        self._states: list[SubBatchState] = [SubBatchState.PENDING] * count
        self._outcomes: list[CallOutcome | None] = [None] * count
        self._started_at: list[float | None] = [None] * count
        self._lock = Lock()

    def __len__(self) -> int:
        return len(self._states)

    def _transition(self, index: int, target: SubBatchState) -> None:
        current = self._states[index]
        if target not in _ALLOWED_TRANSITIONS[current]:
            raise InvalidTransitionError(index, current, target)
        self._states[index] = target

    def state(self, index: int) -> SubBatchState:
        with self._lock:
            return self._states[index]

    def start(self, index: int) -> bool:
        """Move pending -> in_flight.

        Returns:
            False if the slot was already finalized (cancelled before dispatch)
        """
        with self._lock:
            if self._states[index].is_terminal:
                return False
            self._transition(index, SubBatchState.IN_FLIGHT)
            self._started_at[index] = time.perf_counter()
            return True

    def mark_retrying(self, index: int) -> None:
        """Move in_flight -> retrying. No-op once the slot is terminal."""
        with self._lock:
            if self._states[index].is_terminal:
                return
            self._transition(index, SubBatchState.RETRYING)

    def finalize(self, index: int, outcome: CallOutcome) -> bool:
        """Record the terminal outcome for a slot.

        Returns:
            True if this call finalized the slot, False if it was already terminal
        """
        if not outcome.state.is_terminal:
            raise ValueError(f"outcome for sub-batch {index} is not terminal: {outcome.state}")
        with self._lock:
            if self._states[index].is_terminal:
                return False
            self._transition(index, outcome.state)
            self._outcomes[index] = outcome
            return True

    def elapsed_ms(self, index: int) -> float:
        """Milliseconds since the slot went in flight, 0.0 if it never did."""
        with self._lock:
            started = self._started_at[index]
        if started is None:
            return 0.0
        return (time.perf_counter() - started) * 1000

    def unfinished(self) -> list[int]:
        with self._lock:
            return [i for i, s in enumerate(self._states) if not s.is_terminal]

    def outcomes(self) -> tuple[CallOutcome, ...]:
        """All outcomes in sub-batch order.

        Raises:
            RuntimeError: If any slot has not been finalized
        """
        with self._lock:
            missing = [i for i, o in enumerate(self._outcomes) if o is None]
            if missing:
                raise RuntimeError(f"Sub-batches never finalized: {missing}")
            return tuple(o for o in self._outcomes if o is not None)
