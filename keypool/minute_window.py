"""Sliding one-minute admission log per credential."""

from bisect import insort
from collections import deque
from typing import Deque, Dict

WINDOW_SECONDS = 60.0


class MinuteUsageTracker:
    """In-memory log of recent admissions, pruned lazily on read.

    Not thread-safe; the scheduler serializes access.
    """

    def __init__(self, window_seconds: float = WINDOW_SECONDS):
        self.window_seconds = window_seconds
        self._windows: Dict[str, Deque[float]] = {}

    def count_in_window(self, credential: str, now: float) -> int:
        window = self._windows.get(credential)
        if not window:
            return 0
        cutoff = now - self.window_seconds
        while window and window[0] < cutoff:
            window.popleft()
        return len(window)

    def record(self, credential: str, now: float) -> None:
        window = self._windows.setdefault(credential, deque())
        if window and now < window[-1]:
            # keep sorted so pruning from the left stays correct
            insort(window, now)
        else:
            window.append(now)
