from __future__ import annotations

import threading
from dataclasses import dataclass
from time import monotonic

from ._shared import compute_backoff


@dataclass(frozen=True)
class BackoffSnapshot:
    """A consistent view of a node's health at one point in time.

    Attributes:
        backoff_until: Monotonic time before which the node should be avoided,
            or None if it is not backed off.
        retries: Number of consecutive failures.
        last_error: The most recent failure, or None after a success.
        version: Incremented on every recorded outcome.
    """

    backoff_until: float | None
    retries: int
    last_error: Exception | None
    version: int


@dataclass(frozen=True)
class Outcome:
    """The result of recording a request outcome.

    Attributes:
        error: The error that was recorded, None for a success.
        delay: The backoff applied to the node, 0 for a success.
        retries: Consecutive failures including this one.
    """

    error: Exception | None
    delay: float
    retries: int

    @property
    def ok(self) -> bool:
        return self.error is None


class BackoffState:
    """Per-node backoff bookkeeping.

    The state is shared by every request going through a pool, so updates
    happen under a lock and readers get immutable snapshots.
    """

    _lock: threading.Lock
    _snapshot: BackoffSnapshot

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._snapshot = BackoffSnapshot(None, 0, None, 0)

    def snapshot(self) -> BackoffSnapshot:
        return self._snapshot

    def time_until_available(self) -> float:
        """Returns how long until the node should be tried again, 0 if now."""
        backoff_until = self._snapshot.backoff_until
        if backoff_until is None:
            return 0.0
        return max(0.0, backoff_until - monotonic())

    def record_outcome(
        self,
        error: Exception | None,
        max_backoff: float,
        suggested_delay: float | None = None,
    ) -> Outcome:
        """Records the outcome of a request to the node.

        A success clears the backoff. A failure backs the node off for a
        delay that doubles with every consecutive failure, never longer than
        max_backoff.

        Args:
            error: The failure, or None if the request succeeded.
            max_backoff: Ceiling for the backoff delay in seconds.
            suggested_delay: A delay requested by the node itself, used when
                it is longer than the computed one.
        """
        with self._lock:
            current = self._snapshot
            if error is None:
                self._snapshot = BackoffSnapshot(None, 0, None, current.version + 1)
                return Outcome(None, 0.0, 0)

            delay = compute_backoff(current.retries, max_backoff, suggested_delay)
            backoff_until = monotonic() + delay
            if current.backoff_until is not None:
                backoff_until = max(backoff_until, current.backoff_until)
            retries = current.retries + 1
            self._snapshot = BackoffSnapshot(
                backoff_until, retries, error, current.version + 1
            )
            return Outcome(error, delay, retries)
