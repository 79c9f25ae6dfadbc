"""Lineup pre-sync for matches about to kick off."""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from shared.errors import ProviderError, ProviderUnavailableError
from shared.models.domain import PreSyncReport
from shared.utils.logging import get_logger

from ingest.providers.base import ProviderClient
from reconciler.config import ReconcilerSettings
from reconciler.store import PreSyncCriteria, ReconciliationStore, unix_now

logger = get_logger(__name__)


class LineupPreSync:
    name = "lineup_pre_sync"

    def __init__(
        self,
        store: ReconciliationStore,
        provider: ProviderClient,
        settings: ReconcilerSettings,
        clock: Callable[[], int] = unix_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._provider = provider
        self._settings = settings
        self._clock = clock
        self._sleep = sleep

    async def run(self) -> PreSyncReport:
        now = self._clock()
        criteria = PreSyncCriteria(now=now, lookahead_s=self._settings.presync_lookahead_s)
        candidates = await self._store.find_candidates_needing_reconciliation(criteria)
        report = PreSyncReport(candidates=len(candidates))

        for index, snap in enumerate(candidates):
            if index:
                await self._sleep(self._settings.candidate_delay_s)
            try:
                lineup = await self._provider.fetch_lineup(snap.external_id)
            except ProviderUnavailableError:
                raise
            except ProviderError as exc:
                report.failed += 1
                logger.warning("lineup_fetch_failed", match_id=snap.external_id, error=str(exc))
                continue
            if lineup is None:
                report.missing += 1
                continue
            if await self._store.save_lineup(snap.external_id, lineup, now):
                report.synced += 1

        if candidates:
            logger.info("lineup_pre_sync_completed", **report.log_fields())
        return report
