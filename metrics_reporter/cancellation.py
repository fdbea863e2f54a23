"""Cooperative cancellation.

A single token is created per command and passed down explicitly to the
parsers, the pipeline and the process runner.
"""

import threading

from metrics_reporter.errors import OperationCancelledError


class CancellationToken:
    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError("Operation was cancelled.")


#: Token that is never cancelled, for callers that do not need cancellation.
NEVER = CancellationToken()
