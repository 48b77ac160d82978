"""Admission scheduling over the credential pool."""

import asyncio
import logging
import random
import time
import uuid
from datetime import date, datetime, timedelta
from typing import Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

from keypool.config import Config
from keypool.cooldowns import CooldownRegistry
from keypool.daily_usage import DailyUsageStore
from keypool.minute_window import MinuteUsageTracker
from keypool.models import (
    Credential,
    CredentialHandle,
    FailureKind,
    Lease,
    QuotaLimits,
)
from keypool.policy import QuotaPolicyTable

logger = logging.getLogger(__name__)


class KeyScheduler:
    """Hands out credentials within per-tier RPM/RPD limits.

    ``acquire`` takes a lease on the chosen credential before returning, so
    concurrent callers cannot both claim the last free slot. The lease is
    settled by ``record_success``/``record_failure``/``release`` or expires
    after ``config.lease_ttl_seconds``. Only the first report for a pending
    lease is counted; a report for an expired lease is ignored.
    """

    def __init__(
        self,
        config: Config,
        policy: Optional[QuotaPolicyTable] = None,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
        daily_store: Optional[DailyUsageStore] = None,
    ):
        self.config = config
        self.policy = policy or config.quota_policy
        self._clock = clock
        self._rng = rng or random.Random()
        self._lock = asyncio.Lock()

        self.keys: Dict[str, Credential] = {}
        for index, api_key in enumerate(config.api_keys, start=1):
            key_id = f"key_{index}"
            self.keys[key_id] = Credential(id=key_id, key=api_key)

        self.daily = daily_store or DailyUsageStore(
            config.usage_file, tz=ZoneInfo(config.day_boundary_tz), clock=clock
        )
        self.minute = MinuteUsageTracker()
        self.cooldowns = CooldownRegistry()
        self._leases: Dict[str, Lease] = {}

    async def load(self) -> None:
        async with self._lock:
            await self.daily.load()

    async def acquire(self, tier: str) -> Optional[CredentialHandle]:
        """Pick a random eligible credential for ``tier``.

        Returns:
            A handle holding a fresh lease, or None when no credential has
            capacity right now.

        Raises:
            UnknownTierError: If ``tier`` is not in the quota policy
        """
        model = self.policy.resolve(tier)
        limits = self.policy.limits_for(model)

        async with self._lock:
            now = self._clock()
            self._expire_leases(now)

            candidates = list(self.keys.values())
            self._rng.shuffle(candidates)
            eligible = [c for c in candidates if self._admissible(c, limits, now)]
            if not eligible:
                logger.info("No capacity for tier %s", tier)
                return None

            credential = eligible[0]
            lease = Lease(
                lease_id=uuid.uuid4().hex,
                key_id=credential.id,
                tier=tier,
                created_at=now,
            )
            self._leases[lease.lease_id] = lease
            logger.debug(
                "Leased %s for tier %s (lease=%s)",
                credential.key_prefix(),
                tier,
                lease.lease_id,
            )
            return CredentialHandle(
                key_id=credential.id,
                api_key=credential.key,
                tier=tier,
                lease_id=lease.lease_id,
                model=model,
            )

    async def record_success(self, handle: CredentialHandle) -> bool:
        """Turn the handle's lease into a counted request.

        Returns:
            False if the lease was already reported or has expired. Nothing
            is counted then: its slot may have gone to another caller.
        """
        async with self._lock:
            credential = self._credential(handle.key_id)
            now = self._clock()
            self._expire_leases(now)
            if not self._settle(handle):
                logger.warning(
                    "Ignoring success for lease %s on %s: not pending",
                    handle.lease_id,
                    credential.key_prefix(),
                )
                return False

            self.minute.record(credential.id, now)
            credential.last_used = self._timestamp(now)
            credential.consecutive_failures = 0
            self.daily.add(credential.fingerprint)

        await self.daily.save()
        return True

    async def record_failure(
        self, handle: CredentialHandle, kind: FailureKind
    ) -> bool:
        """Roll back the handle's lease; a quota rejection starts a cooldown.

        Returns:
            False if the lease was already reported or has expired.
        """
        kind = FailureKind(kind)
        async with self._lock:
            credential = self._credential(handle.key_id)
            now = self._clock()
            self._expire_leases(now)
            if not self._settle(handle):
                logger.warning(
                    "Ignoring %s failure for lease %s on %s: not pending",
                    kind.value,
                    handle.lease_id,
                    credential.key_prefix(),
                )
                return False

            credential.last_error = self._timestamp(now)
            credential.consecutive_failures += 1

            if kind is FailureKind.QUOTA_EXCEEDED:
                self.cooldowns.penalize(
                    credential.id, now, self.config.cooldown_seconds
                )
                logger.warning(
                    "Key %s placed on a %ss cooldown after a quota rejection",
                    credential.key_prefix(),
                    self.config.cooldown_seconds,
                )
            else:
                logger.info(
                    "Key %s failed (%s), eligibility unchanged",
                    credential.key_prefix(),
                    kind.value,
                )
            return True

    async def release(self, handle: CredentialHandle) -> bool:
        """Give a lease back without recording an outcome."""
        async with self._lock:
            self._credential(handle.key_id)
            return self._settle(handle)

    async def force_reset(self) -> None:
        async with self._lock:
            for credential in self.keys.values():
                credential.consecutive_failures = 0
            self.daily.clear()
        await self.daily.save()
        logger.info("Daily counters reset")

    async def get_status(self) -> Dict[str, object]:
        async with self._lock:
            now = self._clock()
            self._expire_leases(now)

            available = {
                tier: sum(
                    1
                    for c in self.keys.values()
                    if self._admissible(c, self.policy.limits_for(tier), now)
                )
                for tier in self.policy.tiers()
            }
            cooling_down = sum(
                1
                for c in self.keys.values()
                if not self.cooldowns.is_eligible(c.id, now)
            )

            day = self.daily.today()
            next_date = date.fromisoformat(day) + timedelta(days=1)
            next_reset = datetime(
                next_date.year, next_date.month, next_date.day, tzinfo=self.daily.tz
            ).isoformat()

            return {
                "total_keys": len(self.keys),
                "cooling_down": cooling_down,
                "pending_leases": len(self._leases),
                "day": day,
                "next_reset": next_reset,
                "available": available,
                "keys": [self._format_key_status(c, now) for c in self.keys.values()],
            }

    async def get_key_status(self, key_id: str) -> Optional[Dict[str, object]]:
        async with self._lock:
            credential = self.keys.get(key_id)
            if not credential:
                return None
            now = self._clock()
            self._expire_leases(now)
            return self._format_key_status(credential, now)

    def _admissible(
        self, credential: Credential, limits: QuotaLimits, now: float
    ) -> bool:
        pending = self._pending(credential.id)
        if self.daily.get(credential.fingerprint) + pending >= limits.rpd:
            return False
        if not self.cooldowns.is_eligible(credential.id, now):
            return False
        if self.minute.count_in_window(credential.id, now) + pending >= limits.rpm:
            return False
        return True

    def _pending(self, key_id: str) -> int:
        return sum(1 for lease in self._leases.values() if lease.key_id == key_id)

    def _expire_leases(self, now: float) -> None:
        ttl = self.config.lease_ttl_seconds
        expired: List[str] = [
            lease_id
            for lease_id, lease in self._leases.items()
            if lease.expired(now, ttl)
        ]
        for lease_id in expired:
            lease = self._leases.pop(lease_id)
            logger.debug(
                "Lease %s on %s expired without an outcome", lease_id, lease.key_id
            )

    def _settle(self, handle: CredentialHandle) -> bool:
        lease = self._leases.get(handle.lease_id)
        if lease is None or lease.key_id != handle.key_id:
            return False
        del self._leases[handle.lease_id]
        return True

    def _timestamp(self, now: float) -> datetime:
        return datetime.fromtimestamp(now, self.daily.tz)

    def _credential(self, key_id: str) -> Credential:
        credential = self.keys.get(key_id)
        if credential is None:
            raise KeyError(key_id)
        return credential

    def _format_key_status(
        self, credential: Credential, now: float
    ) -> Dict[str, object]:
        return {
            "id": credential.id,
            "key_prefix": credential.key_prefix(),
            "rpd_used": self.daily.get(credential.fingerprint),
            "rpm_current": self.minute.count_in_window(credential.id, now),
            "pending_leases": self._pending(credential.id),
            "cooldown_remaining": self.cooldowns.remaining(credential.id, now),
            "last_used": credential.last_used,
            "last_error": credential.last_error,
            "consecutive_failures": credential.consecutive_failures,
        }
