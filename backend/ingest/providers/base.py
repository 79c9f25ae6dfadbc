"""
Abstract pull contract every upstream provider connector implements.
Reconciliation jobs depend on this interface only.
"""
from __future__ import annotations

import abc
from typing import Any, Optional

from shared.models.domain import ProviderMatch


class ProviderClient(abc.ABC):
    """
    Thin pull adapter over an upstream match feed.

    Implementations return validated ProviderMatch records; raw payloads never
    leave the connector. Transport failures surface as ProviderError (one
    request) or ProviderUnavailableError (provider down, fail fast).
    """

    name: str = "provider"

    async def start(self) -> None:
        """Open network resources."""

    async def close(self) -> None:
        """Release network resources."""

    @abc.abstractmethod
    async def fetch_live_details(self, match_ids: Optional[list[str]] = None) -> list[ProviderMatch]:
        """Current state of live matches, optionally restricted to the given ids."""

    async def fetch_live_detail(self, match_id: str) -> Optional[ProviderMatch]:
        """Current state of one match, or None when the provider does not report it."""
        for match in await self.fetch_live_details([match_id]):
            if match.external_id == match_id:
                return match
        return None

    @abc.abstractmethod
    async def fetch_diary(self, date: str) -> list[ProviderMatch]:
        """Full schedule for one provider-timezone day (YYYYMMDD)."""

    @abc.abstractmethod
    async def fetch_lineup(self, match_id: str) -> Optional[dict[str, Any]]:
        """Lineup payload for one match, or None when not yet published."""

    @property
    def health(self) -> dict[str, Any]:
        return {"name": self.name}
