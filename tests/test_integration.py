"""Integration tests: lease API + real scheduler + mocked Gemini API."""

import asyncio
from collections import Counter

import pytest
import httpx
import respx
from httpx import AsyncClient, ASGITransport, Response
from keypool.main import app as main_app
from keypool.classify import classify_response
from keypool.config import load_config
from keypool.dispatch import NoCapacityError, dispatch
from keypool.scheduler import KeyScheduler

GEMINI_URL = (
    "https://generativelanguage.googleapis.com/v1beta/models/"
    "gemini-2.5-flash:generateContent"
)


@pytest.fixture
async def app(monkeypatch, tmp_path):
    """Set up app with test configuration."""
    monkeypatch.setenv("API_KEY_POOL", "test_key_1,test_key_2,test_key_3")
    monkeypatch.setenv("USAGE_FILE", str(tmp_path / "usage.json"))
    monkeypatch.setenv(
        "QUOTA_POLICY", '{"gemini-2.5-flash": {"rpm": 2, "rpd": 100}}'
    )

    config = load_config(use_dotenv=False)
    scheduler = KeyScheduler(config)
    await scheduler.load()

    main_app.state.config = config
    main_app.state.scheduler = scheduler

    yield main_app

    if hasattr(main_app.state, "config"):
        del main_app.state.config
    if hasattr(main_app.state, "scheduler"):
        del main_app.state.scheduler


async def call_gemini(gemini: httpx.AsyncClient, api_key: str) -> httpx.Response:
    return await gemini.post(
        GEMINI_URL,
        json={"contents": [{"parts": [{"text": "Hello"}]}]},
        headers={"x-goog-api-key": api_key},
    )


async def leased_call(
    client: AsyncClient, gemini: httpx.AsyncClient
) -> httpx.Response:
    """What an out-of-process caller does: lease, call, report."""
    lease = await client.post("/leases", json={"tier": "gemini-2.5-flash"})
    if lease.status_code != 201:
        return lease
    data = lease.json()

    response = await call_gemini(gemini, data["api_key"])

    if response.is_success:
        await client.post(
            f"/leases/{data['lease_id']}/success", json={"key_id": data["key_id"]}
        )
    else:
        await client.post(
            f"/leases/{data['lease_id']}/failure",
            json={"key_id": data["key_id"], "kind": classify_response(response).value},
        )
    return response


@pytest.mark.asyncio
async def test_complete_lease_flow(app):
    """Lease a key, call Gemini (mocked) with it, report success."""
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as client, httpx.AsyncClient() as gemini:
        with respx.mock:
            gemini_mock = respx.post(GEMINI_URL).mock(
                return_value=Response(
                    200,
                    json={"candidates": [{"content": {"parts": [{"text": "Hello!"}]}}]},
                )
            )

            response = await leased_call(client, gemini)

            assert response.status_code == 200
            assert gemini_mock.called
            sent_key = gemini_mock.calls[0].request.headers["x-goog-api-key"]
            assert sent_key in ["test_key_1", "test_key_2", "test_key_3"]

        status = (await client.get("/admin/status")).json()
        assert sum(k["rpd_used"] for k in status["keys"]) == 1
        assert status["pending_leases"] == 0


@pytest.mark.asyncio
async def test_rpm_limit_spreads_load_then_rejects(app):
    """Three keys at rpm=2 admit six calls, then the pool is saturated."""
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as client, httpx.AsyncClient() as gemini:
        with respx.mock:
            mock_route = respx.post(GEMINI_URL).mock(
                return_value=Response(200, json={"candidates": []})
            )

            for _ in range(6):
                response = await leased_call(client, gemini)
                assert response.status_code == 200

            response = await leased_call(client, gemini)
            assert response.status_code == 503

            used = Counter(
                call.request.headers["x-goog-api-key"] for call in mock_route.calls
            )
            assert used == {"test_key_1": 2, "test_key_2": 2, "test_key_3": 2}


@pytest.mark.asyncio
async def test_concurrent_leases_respect_rpm(app):
    """Many simultaneous lease requests never over-admit a key."""
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as client:
        responses = await asyncio.gather(
            *[
                client.post("/leases", json={"tier": "gemini-2.5-flash"})
                for _ in range(12)
            ]
        )

    granted = [r.json() for r in responses if r.status_code == 201]
    assert len(granted) == 6
    assert max(Counter(g["key_id"] for g in granted).values()) == 2
    assert sum(1 for r in responses if r.status_code == 503) == 6


@pytest.mark.asyncio
async def test_quota_rejection_cools_key_down(app):
    """A 429 from Gemini takes that key out of rotation."""
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as client, httpx.AsyncClient() as gemini:
        with respx.mock:
            respx.post(GEMINI_URL).mock(
                return_value=Response(
                    429,
                    json={"error": {"code": 429, "status": "RESOURCE_EXHAUSTED"}},
                )
            )
            response = await leased_call(client, gemini)
            assert response.status_code == 429

        status = (await client.get("/admin/status")).json()
        assert status["cooling_down"] == 1
        assert status["available"] == {"gemini-2.5-flash": 2}


@pytest.mark.asyncio
async def test_dispatch_against_real_scheduler(app):
    """In-process callers use dispatch(); 429s move on to another key."""
    scheduler = app.state.scheduler
    config = app.state.config

    async with httpx.AsyncClient() as gemini:
        with respx.mock:
            route = respx.post(GEMINI_URL).mock(
                side_effect=[
                    Response(429, json={"error": {"status": "RESOURCE_EXHAUSTED"}}),
                    Response(200, json={"candidates": []}),
                ]
            )

            response = await dispatch(
                scheduler,
                "gemini-2.5-flash",
                lambda api_key: call_gemini(gemini, api_key),
                config,
            )

    assert response.status_code == 200
    keys = [call.request.headers["x-goog-api-key"] for call in route.calls]
    assert len(keys) == 2
    assert keys[0] != keys[1]
    status = await scheduler.get_status()
    assert status["cooling_down"] == 1


@pytest.mark.asyncio
async def test_dispatch_raises_when_pool_cools_down(app, monkeypatch):
    scheduler = app.state.scheduler
    config = app.state.config
    monkeypatch.setattr(config, "retry_delay_seconds", 0)

    async with httpx.AsyncClient() as gemini:
        with respx.mock:
            respx.post(GEMINI_URL).mock(return_value=Response(429))

            with pytest.raises(NoCapacityError):
                await dispatch(
                    scheduler,
                    "gemini-2.5-flash",
                    lambda api_key: call_gemini(gemini, api_key),
                    config,
                )

    status = await scheduler.get_status()
    assert status["cooling_down"] == 3
