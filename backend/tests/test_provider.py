"""
TheSports connector over a mocked transport: how each transport outcome is
classified, and that a slow request only costs its own match.
"""
from __future__ import annotations

from typing import Callable

import httpx
import pytest

from shared.config import Settings
from shared.errors import ProviderError, ProviderUnavailableError
from shared.models.domain import MatchSnapshot
from shared.models.enums import MatchStatus, RefreshStatus
from shared.utils.http_client import ProviderHTTPClient

from conftest import NOW
from ingest.providers.thesports import TheSportsClient
from reconciler.config import ReconcilerSettings
from reconciler.jobs.refresh import MatchRefresher
from reconciler.jobs.stuck import StuckMatchDetector
from reconciler.memory_store import InMemoryReconciliationStore
from reconciler.pipeline import ReconcilePipeline

Handler = Callable[[httpx.Request], httpx.Response]


def live_body(match_id: str, status_id: int) -> dict:
    zeros = [0, 0, 0, 0, 0, 0, 0]
    return {"code": 0, "results": [{"id": match_id, "score": [match_id, status_id, zeros, zeros, NOW - 600]}]}


async def started_client(settings: Settings, handler: Handler) -> TheSportsClient:
    http = ProviderHTTPClient(
        provider_name="thesports",
        base_url="https://provider.test/v1/football",
        timeout_s=1.0,
        max_retries=1,
        transport=httpx.MockTransport(handler),
    )
    client = TheSportsClient(settings, http_client=http)
    await client.start()
    return client


# ── Error classification ────────────────────────────────────────────────

class TestTransportErrors:

    @pytest.mark.asyncio
    async def test_timeout_is_a_request_error(self, settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("read timed out", request=request)

        client = await started_client(settings, handler)
        try:
            with pytest.raises(ProviderError) as info:
                await client.fetch_live_detail("a")
        finally:
            await client.close()
        assert not isinstance(info.value, ProviderUnavailableError)

    @pytest.mark.asyncio
    async def test_connect_failure_is_unavailable(self, settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = await started_client(settings, handler)
        try:
            with pytest.raises(ProviderUnavailableError):
                await client.fetch_live_detail("a")
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_server_error_carries_status(self, settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, request=request)

        client = await started_client(settings, handler)
        try:
            with pytest.raises(ProviderError) as info:
                await client.fetch_live_detail("a")
        finally:
            await client.close()
        assert info.value.status == 502
        assert not isinstance(info.value, ProviderUnavailableError)

    @pytest.mark.asyncio
    async def test_error_body(self, settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"code": 1, "err": "IP not whitelisted"}, request=request)

        client = await started_client(settings, handler)
        try:
            with pytest.raises(ProviderError, match="IP not whitelisted"):
                await client.fetch_diary("20251009")
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_live_detail_filters_to_requested(self, settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["match_id"] == "b"
            assert "secret" in request.url.params
            body = live_body("b", 2)
            body["results"] += live_body("zz", 4)["results"]
            return httpx.Response(200, json=body, request=request)

        client = await started_client(settings, handler)
        try:
            match = await client.fetch_live_detail("b")
        finally:
            await client.close()
        assert match is not None
        assert match.status == MatchStatus.FIRST_HALF


# ── Stuck run over the real connector ───────────────────────────────────

@pytest.mark.asyncio
async def test_timeout_on_one_candidate_spares_the_rest(
    settings: Settings,
    rsettings: ReconcilerSettings,
    store: InMemoryReconciliationStore,
    pipeline: ReconcilePipeline,
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params["match_id"] == "a":
            raise httpx.ReadTimeout("read timed out", request=request)
        return httpx.Response(200, json=live_body("b", 2), request=request)

    store.add(MatchSnapshot(external_id="a", status_id=1, match_time=NOW - 600))
    store.add(MatchSnapshot(external_id="b", status_id=1, match_time=NOW - 700))
    client = await started_client(settings, handler)
    stuck = StuckMatchDetector(
        store, MatchRefresher(client, pipeline, clock=lambda: NOW), rsettings, clock=lambda: NOW
    )
    try:
        report = await stuck.run()
    finally:
        await client.close()

    by_id = {o.match_id: o.status for o in report.results}
    assert by_id == {"a": RefreshStatus.ERROR, "b": RefreshStatus.UPDATED}
    row = await store.get("b")
    assert row is not None
    assert row.status_id == 2
