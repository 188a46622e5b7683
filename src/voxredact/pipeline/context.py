"""Run contexts: cooperative cancellation tokens tagged with a policy version."""

from __future__ import annotations

import threading

from voxredact.errors import RunCancelled
from voxredact.policy import ActivePolicy


class RunContext:
    """One execution of the coordinator under a fixed policy snapshot."""

    def __init__(self, policy: ActivePolicy) -> None:
        self.policy = policy
        self._cancelled = threading.Event()

    @property
    def sequence(self) -> int:
        return self.policy.sequence

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def check(self) -> None:
        """Raise :class:`RunCancelled` if this run has been superseded."""
        if self._cancelled.is_set():
            raise RunCancelled(f"run {self.sequence} superseded")

    def __repr__(self) -> str:
        state = "cancelled" if self.cancelled else "active"
        return f"RunContext(sequence={self.sequence}, {state})"


__all__ = ["RunContext"]
