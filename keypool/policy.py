"""Static quota limits per model tier."""

from typing import Dict, List, Mapping, Optional

from keypool.models import QuotaLimits

# Free-tier Gemini limits, one request per minute and a few per day under
# the published numbers.
DEFAULT_LIMITS: Dict[str, QuotaLimits] = {
    "gemini-2.5-flash": QuotaLimits(rpm=9, rpd=240),
    "gemini-2.5-pro": QuotaLimits(rpm=4, rpd=90),
    "gemini-2.5-flash-lite": QuotaLimits(rpm=14, rpd=900),
    "imagen-3.0-generate-002": QuotaLimits(rpm=9, rpd=240),
}

# Which model each kind of request runs on.
DEFAULT_ALIASES: Dict[str, str] = {
    "fast": "gemini-2.5-flash",
    "pro": "gemini-2.5-pro",
    "topic_analysis": "gemini-2.5-flash",
    "reading_layout_generation": "gemini-2.5-flash",
    "quiz_generation": "gemini-2.5-flash",
    "exam_grading": "gemini-2.5-pro",
    "exam_prediction": "gemini-2.5-pro",
    "study_guide_generation": "gemini-2.5-flash",
    "feedback_generation": "gemini-2.5-flash",
    "fib_validation": "gemini-2.5-flash-lite",
    "visual_aid": "imagen-3.0-generate-002",
}


class UnknownTierError(KeyError):
    """Raised when a caller asks for a tier that is not configured."""

    def __init__(self, tier: str):
        super().__init__(tier)
        self.tier = tier

    def __str__(self) -> str:
        return f"Unknown model tier: {self.tier!r}"


class QuotaPolicyTable:
    """Maps a model tier name to its QuotaLimits.

    Aliases name a kind of request ("exam_grading") and resolve to the model
    tier it runs on; they share that tier's limits.
    """

    def __init__(
        self,
        limits: Mapping[str, QuotaLimits],
        aliases: Optional[Mapping[str, str]] = None,
    ):
        self._limits: Dict[str, QuotaLimits] = dict(limits)
        self._aliases: Dict[str, str] = dict(aliases or {})
        for alias, model in self._aliases.items():
            if model not in self._limits:
                raise ValueError(f"Alias {alias!r} points to unknown tier {model!r}")

    @classmethod
    def default(cls) -> "QuotaPolicyTable":
        return cls(DEFAULT_LIMITS, DEFAULT_ALIASES)

    @classmethod
    def from_mapping(
        cls,
        raw: Mapping[str, Mapping[str, object]],
        aliases: Optional[Mapping[str, str]] = None,
    ) -> "QuotaPolicyTable":
        """Build a table from ``{tier: {"rpm": int, "rpd": int}}``.

        Raises:
            ValueError: If a tier entry is malformed, a limit is not positive
                or an alias points to a tier that is not in ``raw``
        """
        limits: Dict[str, QuotaLimits] = {}
        for tier, entry in raw.items():
            if not isinstance(entry, Mapping):
                raise ValueError(f"Tier {tier!r} must map to an object")
            rpm = entry.get("rpm")
            rpd = entry.get("rpd")
            if not isinstance(rpm, int) or not isinstance(rpd, int):
                raise ValueError(f"Tier {tier!r} needs integer rpm and rpd")
            limits[tier] = QuotaLimits(rpm=rpm, rpd=rpd)
        if not limits:
            raise ValueError("Quota policy must define at least one tier")
        return cls(limits, aliases)

    def resolve(self, tier: str) -> str:
        """Return the model name ``tier`` runs on."""
        if tier in self._limits:
            return tier
        try:
            return self._aliases[tier]
        except KeyError:
            raise UnknownTierError(tier) from None

    def limits_for(self, tier: str) -> QuotaLimits:
        return self._limits[self.resolve(tier)]

    def tiers(self) -> List[str]:
        return list(self._limits)

    def aliases(self) -> Dict[str, str]:
        return dict(self._aliases)

    def as_dict(self) -> Dict[str, Dict[str, int]]:
        return {
            tier: {"rpm": limits.rpm, "rpd": limits.rpd}
            for tier, limits in self._limits.items()
        }
