"""Per-credential cooldowns after provider quota rejections."""

from typing import Dict


class CooldownRegistry:
    """Tracks until when each credential is ineligible.

    Expiry is lazy: an entry simply stops mattering once ``now >= until``.
    """

    def __init__(self):
        self._until: Dict[str, float] = {}

    def is_eligible(self, credential: str, now: float) -> bool:
        until = self._until.get(credential)
        return until is None or now >= until

    def penalize(self, credential: str, now: float, duration: float) -> None:
        """Start or restart a cooldown; the last penalty wins."""
        self._until[credential] = now + duration

    def remaining(self, credential: str, now: float) -> float:
        until = self._until.get(credential)
        if until is None:
            return 0.0
        return max(0.0, until - now)
