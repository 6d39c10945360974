"""Run-wide deadline threaded through every external call."""

import time
from typing import Optional

from docfiling.exceptions import DeadlineExceededError


class Deadline:
    """A monotonic deadline; ``seconds=None`` means unbounded.

    Example:
        >>> deadline = Deadline(30)
        >>> await asyncio.wait_for(call(), timeout=deadline.remaining())
    """

    def __init__(self, seconds: Optional[float] = None):
        self.seconds = seconds
        self._expires_at = None if seconds is None else time.monotonic() + seconds

    @property
    def expired(self) -> bool:
        return self._expires_at is not None and time.monotonic() >= self._expires_at

    def remaining(self) -> Optional[float]:
        """Seconds left, or None when unbounded.

        Raises:
            DeadlineExceededError: If the deadline has already passed
        """
        if self._expires_at is None:
            return None
        left = self._expires_at - time.monotonic()
        if left <= 0:
            raise DeadlineExceededError()
        return left
