"""
TheSports football connector.

Authenticates with `user`/`secret` query parameters. Every call goes through a
circuit breaker so a downed upstream fails fast instead of stalling each
candidate of a job run for the full retry budget.
"""
from __future__ import annotations

from typing import Any, Optional

import httpx

from shared.config import Settings, get_settings
from shared.errors import ProviderError, ProviderUnavailableError
from shared.models.domain import ProviderMatch
from shared.utils.circuit_breaker import CircuitBreaker, CircuitBreakerOpen
from shared.utils.http_client import ProviderHTTPClient
from shared.utils.logging import get_logger

from ingest.normalization.payload import parse_results
from ingest.providers.base import ProviderClient

logger = get_logger(__name__)

DETAIL_LIVE_PATH = "/match/detail_live"
DIARY_PATH = "/match/diary"
LINEUP_PATH = "/match/lineup/detail"


class _ClientError(Exception):
    """4xx for a single request; not a provider health signal."""

    def __init__(self, status: int) -> None:
        self.status = status
        super().__init__(f"HTTP {status}")


class TheSportsClient(ProviderClient):
    """TheSports REST connector (detail_live, diary, lineup)."""

    name = "thesports"

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: ProviderHTTPClient | None = None,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._http = http_client or ProviderHTTPClient(
            provider_name=self.name,
            base_url=self._settings.thesports_base_url,
            default_params={
                "user": self._settings.thesports_user,
                "secret": self._settings.thesports_secret,
            },
            timeout_s=self._settings.provider_request_timeout_s,
            max_retries=self._settings.provider_max_retries,
        )
        self._breaker = breaker or CircuitBreaker(
            name=f"{self.name}_api",
            failure_threshold=self._settings.provider_breaker_threshold,
            recovery_timeout_s=self._settings.provider_breaker_recovery_s,
            ignore=(_ClientError,),
        )

    async def start(self) -> None:
        await self._http.start()
        logger.info("provider_client_started", provider=self.name)

    async def close(self) -> None:
        await self._http.close()

    @property
    def health(self) -> dict[str, Any]:
        return {"name": self.name, "circuit": self._breaker.stats}

    # ── Endpoints ───────────────────────────────────────────────────────

    async def fetch_live_details(self, match_ids: Optional[list[str]] = None) -> list[ProviderMatch]:
        params = {"match_id": ",".join(match_ids)} if match_ids else None
        body = await self._get_json(DETAIL_LIVE_PATH, params)
        matches = parse_results(body)
        if match_ids:
            wanted = set(match_ids)
            matches = [m for m in matches if m.external_id in wanted]
        logger.debug("provider_detail_live", requested=len(match_ids or []), returned=len(matches))
        return matches

    async def fetch_diary(self, date: str) -> list[ProviderMatch]:
        body = await self._get_json(DIARY_PATH, {"date": date})
        matches = parse_results(body)
        logger.info("provider_diary_fetched", date=date, matches=len(matches))
        return matches

    async def fetch_lineup(self, match_id: str) -> Optional[dict[str, Any]]:
        body = await self._get_json(LINEUP_PATH, {"match_id": match_id})
        results = body.get("results")
        if isinstance(results, list):
            results = results[0] if results else None
        if not isinstance(results, dict) or not results:
            return None
        return results

    # ── Transport ───────────────────────────────────────────────────────

    async def _get_json(self, path: str, params: dict[str, Any] | None) -> dict[str, Any]:
        if not self._http.started:
            raise RuntimeError("TheSportsClient not started. Call start() first.")
        try:
            resp = await self._breaker.call(self._request, path, params)
        except CircuitBreakerOpen as exc:
            raise ProviderUnavailableError(str(exc), endpoint=path) from exc
        except _ClientError as exc:
            raise ProviderError(f"{path} rejected the request", endpoint=path, status=exc.status) from exc
        except httpx.HTTPStatusError as exc:
            raise ProviderError(
                f"{path} failed with {exc.response.status_code}",
                endpoint=path,
                status=exc.response.status_code,
            ) from exc
        except httpx.TimeoutException as exc:
            # slow for this request; the breaker decides when slowness means down
            raise ProviderError(f"{path} timed out: {exc!r}", endpoint=path) from exc
        except httpx.TransportError as exc:
            raise ProviderUnavailableError(f"{path} unreachable: {exc!r}", endpoint=path) from exc

        try:
            body = resp.json()
        except ValueError as exc:
            raise ProviderError(f"{path} returned invalid JSON", endpoint=path) from exc
        if not isinstance(body, dict):
            raise ProviderError(f"{path} returned a non-object body", endpoint=path)
        if body.get("err"):
            raise ProviderError(f"{path} error: {body['err']}", endpoint=path)
        return body

    async def _request(self, path: str, params: dict[str, Any] | None) -> httpx.Response:
        try:
            return await self._http.get(path, params=params)
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if 400 <= status < 500 and status != 429:
                raise _ClientError(status) from exc
            raise
