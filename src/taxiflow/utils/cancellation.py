# ========================
# src/taxiflow/utils/cancellation.py
# ========================

"""
Cancellation Tokens

Cooperative cancellation shared between the caller and a pipeline run.
"""

import threading
import time
from typing import Optional

from .exceptions import Cancelled


class CancellationToken:
    """
    A thread-safe cancel flag with an optional deadline.

    Readers, writers and the pipeline call ``check()`` at safe points; once the
    token is cancelled or its timeout has elapsed, ``check()`` raises Cancelled.
    """

    def __init__(self, timeout: Optional[float] = None):
        """
        Args:
            timeout (float): Seconds from now after which the token expires
        """
        self._event = threading.Event()
        self.deadline = time.monotonic() + timeout if timeout else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    def check(self) -> None:
        """Raise Cancelled if the run should stop."""
        if self._event.is_set():
            raise Cancelled("Run cancelled by caller")
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise Cancelled("Run exceeded its timeout")
