"""
Time sources and deadlines.

Expiry bookkeeping for the in-progress set and the bounded waits in the
scheduler. The clock is injectable so tests can drive time explicitly
instead of sleeping.
"""

import time
from typing import Callable, Optional

Clock = Callable[[], float]


def monotonic_clock() -> float:
    """Default clock: seconds from time.monotonic()."""
    return time.monotonic()


class Deadline:
    """
    Represents a point in time after which something is considered expired.
    """

    def __init__(self, deadline: float, clock: Optional[Clock] = None) -> None:
        """
        Create a deadline at an absolute clock reading.

        :param deadline: Clock reading at which the deadline passes.
        :param clock: Clock used to read the current time.
        """
        self._deadline = deadline
        self._clock = clock or monotonic_clock

    @classmethod
    def after(cls, seconds: float, clock: Optional[Clock] = None) -> "Deadline":
        """
        Create a deadline relative to now.

        :param seconds: Offset from the current clock reading; must be >= 0.
        :raises ValueError: If seconds is negative.
        """
        if seconds < 0:
            raise ValueError("Deadline offset cannot be negative")
        clock = clock or monotonic_clock
        return cls(clock() + seconds, clock)

    def is_expired(self) -> bool:
        """
        Check if the deadline has passed.

        :return: True if expired, False otherwise.
        """
        return self._clock() >= self._deadline

    def remaining(self) -> float:
        """
        Seconds left until the deadline, never negative.
        """
        return max(0.0, self._deadline - self._clock())

    @property
    def deadline(self) -> float:
        """
        Access the deadline's absolute clock reading.
        """
        return self._deadline

    def __repr__(self) -> str:
        return f"Deadline({self._deadline:.3f})"
