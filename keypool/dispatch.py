import asyncio
import logging
from typing import Awaitable, Callable, Optional, Protocol

import httpx

from keypool.classify import classify_response
from keypool.config import Config
from keypool.models import CredentialHandle, FailureKind

logger = logging.getLogger(__name__)

Sender = Callable[[str], Awaitable[httpx.Response]]


class NoCapacityError(RuntimeError):
    """Raised when every attempt found the pool without capacity."""

    def __init__(self, tier: str, attempts: int):
        super().__init__(
            f"No API key available for tier {tier!r} after {attempts} attempts"
        )
        self.tier = tier
        self.attempts = attempts


class Scheduler(Protocol):
    async def acquire(self, tier: str) -> Optional[CredentialHandle]: ...

    async def record_success(self, handle: CredentialHandle) -> bool: ...

    async def record_failure(
        self, handle: CredentialHandle, kind: FailureKind
    ) -> bool: ...

    async def release(self, handle: CredentialHandle) -> bool: ...


async def dispatch(
    scheduler: Scheduler,
    tier: str,
    send: Sender,
    config: Config,
) -> httpx.Response:
    """
    Run ``send`` with a pooled key, retrying across the pool.

    Flow, for up to config.max_retries attempts:
    1. acquire() a key for ``tier``
       - none available -> sleep retry_delay_seconds * attempt, try again
    2. await send(api_key)
       - transport error -> record_failure(OTHER), try again
    3. response 2xx -> record_success(), return it
    4. response classified as quota -> record_failure(QUOTA_EXCEEDED),
       try again (the key is now cooling down)
    5. any other error response -> record_failure(OTHER), return it

    Raises:
        UnknownTierError: If ``tier`` is not configured
        NoCapacityError: If no attempt got both a key and a non-quota answer
        httpx.RequestError: The last transport error, when that ended the loop
    """
    last_error: Optional[httpx.RequestError] = None

    for attempt in range(1, config.max_retries + 1):
        handle = await scheduler.acquire(tier)

        if handle is None:
            last_error = None
            logger.info(
                "No key for tier %s (attempt %s/%s)", tier, attempt, config.max_retries
            )
            if attempt < config.max_retries:
                await asyncio.sleep(config.retry_delay_seconds * attempt)
            continue

        try:
            response = await send(handle.api_key)
        except httpx.RequestError as exc:
            logger.error("Request error on %s: %s", handle.key_id, exc)
            await scheduler.record_failure(handle, FailureKind.OTHER)
            last_error = exc
            continue
        except BaseException:
            await scheduler.release(handle)
            raise

        if response.is_success:
            await scheduler.record_success(handle)
            return response

        kind = classify_response(response)
        await scheduler.record_failure(handle, kind)

        if kind is FailureKind.QUOTA_EXCEEDED:
            logger.warning(
                "Quota rejection (key=%s, tier=%s, attempt=%s)",
                handle.key_id,
                tier,
                attempt,
            )
            last_error = None
            continue

        return response

    if last_error is not None:
        raise last_error
    raise NoCapacityError(tier, config.max_retries)
