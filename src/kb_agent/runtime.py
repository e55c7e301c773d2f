"""Cancellation and deadline propagation for request-scoped work."""

from __future__ import annotations

import threading
import time

from kb_agent.errors import OperationCancelled


class CancellationToken:
    """Cooperative cancel flag with an optional monotonic deadline.

    One token is created per query and passed to every blocking call. Stages
    call `raise_if_cancelled` before going to the network and use
    `timeout(default)` to bound their transport timeouts by the time left.
    """

    def __init__(self, *, deadline_seconds: float | None = None) -> None:
        self._event = threading.Event()
        self._deadline = (
            time.monotonic() + deadline_seconds if deadline_seconds is not None else None
        )

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set() or self.expired

    @property
    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining(self) -> float | None:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def timeout(self, default: float) -> float:
        remaining = self.remaining()
        if remaining is None:
            return default
        return min(default, remaining)

    def raise_if_cancelled(self, stage: str) -> None:
        if self._event.is_set():
            raise OperationCancelled(f"Cancelled before {stage}", details={"stage": stage})
        if self.expired:
            raise OperationCancelled(
                f"Deadline exceeded before {stage}",
                details={"stage": stage, "deadline_exceeded": True},
            )


def check_cancelled(cancel: CancellationToken | None, stage: str) -> None:
    if cancel is not None:
        cancel.raise_if_cancelled(stage)
