"""Lease endpoints for callers outside this process.

A caller borrows a real API key for one call, makes the call itself, and
reports how it went:

    POST   /leases                      {"tier": "fast"}
    POST   /leases/{lease_id}/success   {"key_id": "key_1"}
    POST   /leases/{lease_id}/failure   {"key_id": "key_1", "kind": "quota_exceeded"}
    DELETE /leases/{lease_id}?key_id=key_1

A lease that is never reported expires after LEASE_TTL_SECONDS. Reporting on
a lease that has expired or was already reported answers 404.
"""

from typing import Dict, NoReturn

from fastapi import APIRouter, Request, HTTPException
from starlette.responses import JSONResponse, Response

from keypool.models import CredentialHandle, FailureKind
from keypool.policy import UnknownTierError

lease_router = APIRouter(prefix="/leases", tags=["leases"])


async def _json_body(request: Request) -> Dict[str, object]:
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Request body must be JSON")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Request body must be an object")
    return body


def _handle(request: Request, lease_id: str, key_id: object) -> CredentialHandle:
    if not key_id or not isinstance(key_id, str):
        raise HTTPException(status_code=400, detail="key_id is required")
    credential = request.app.state.scheduler.keys.get(key_id)
    if credential is None:
        raise HTTPException(status_code=404, detail=f"Key {key_id} not found")
    return CredentialHandle(
        key_id=key_id, api_key=credential.key, tier="", lease_id=lease_id
    )


def _lease_not_pending(lease_id: str) -> NoReturn:
    raise HTTPException(status_code=404, detail=f"Lease {lease_id} is not pending")


@lease_router.post("")
async def acquire_lease(request: Request) -> JSONResponse:
    """Lease an available API key for one call to ``tier``."""
    scheduler = request.app.state.scheduler
    body = await _json_body(request)
    tier = body.get("tier")

    if not tier or not isinstance(tier, str):
        raise HTTPException(status_code=400, detail="tier is required")

    try:
        handle = await scheduler.acquire(tier)
    except UnknownTierError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if handle is None:
        raise HTTPException(
            status_code=503,
            detail="All API keys exhausted",
            headers={"Retry-After": "60"},
        )

    return JSONResponse(
        content={
            "key_id": handle.key_id,
            "api_key": handle.api_key,
            "tier": handle.tier,
            "model": handle.model,
            "lease_id": handle.lease_id,
        },
        status_code=201,
    )


@lease_router.post("/{lease_id}/success")
async def report_success(request: Request, lease_id: str) -> Dict[str, str]:
    """Report a successful call made with a leased key."""
    body = await _json_body(request)
    handle = _handle(request, lease_id, body.get("key_id"))
    if not await request.app.state.scheduler.record_success(handle):
        _lease_not_pending(lease_id)
    return {"status": "recorded"}


@lease_router.post("/{lease_id}/failure")
async def report_failure(request: Request, lease_id: str) -> Dict[str, str]:
    """Report a failed call; ``kind`` is "quota_exceeded" or "other"."""
    body = await _json_body(request)
    handle = _handle(request, lease_id, body.get("key_id"))
    try:
        kind = FailureKind(body.get("kind", FailureKind.OTHER.value))
    except ValueError:
        raise HTTPException(
            status_code=400, detail="kind must be 'quota_exceeded' or 'other'"
        )
    if not await request.app.state.scheduler.record_failure(handle, kind):
        _lease_not_pending(lease_id)
    return {"status": "recorded"}


@lease_router.delete("/{lease_id}")
async def release_lease(request: Request, lease_id: str, key_id: str) -> Response:
    """Return a lease without reporting an outcome."""
    handle = _handle(request, lease_id, key_id)
    if not await request.app.state.scheduler.release(handle):
        _lease_not_pending(lease_id)
    return Response(status_code=204)
