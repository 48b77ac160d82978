"""Turn provider responses and transport errors into a FailureKind."""

from typing import Dict, cast

import httpx

from keypool.models import FailureKind

QUOTA_STATUS_CODES = frozenset({429})
QUOTA_ERROR_STATUSES = frozenset({"RESOURCE_EXHAUSTED"})


def classify_response(response: httpx.Response) -> FailureKind:
    """Classify a failed provider response.

    Gemini signals quota exhaustion with HTTP 429 and, in the JSON error
    body, ``"status": "RESOURCE_EXHAUSTED"``.
    """
    if response.status_code in QUOTA_STATUS_CODES:
        return FailureKind.QUOTA_EXCEEDED
    if _error_status(response) in QUOTA_ERROR_STATUSES:
        return FailureKind.QUOTA_EXCEEDED
    return FailureKind.OTHER


def classify_exception(exc: BaseException) -> FailureKind:
    if isinstance(exc, httpx.HTTPStatusError):
        return classify_response(exc.response)
    return FailureKind.OTHER


def _error_status(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return ""
    if not isinstance(data, dict):
        return ""
    error_obj = cast(Dict[str, object], data).get("error")
    if not isinstance(error_obj, dict):
        return ""
    return str(cast(Dict[str, object], error_obj).get("status", "")).upper()
