"""Run-level cancellation token."""

import threading


class CancellationToken:
    """
    Thread-safe cancellation flag shared by a run.

    Once set, the executor dispatches no further changes; changes already
    talking to a provider run to completion.
    """

    def __init__(self):
        self._event = threading.Event()
        self.reason = None

    def cancel(self, reason: str = "cancelled") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()
