"""
Periodic diary sync.

The provider's diary is keyed by calendar day in its own timezone, which does
not line up with the canonical local day. Both provider dates overlapping the
local day are pulled, merged by external id, and trimmed to the local day
before a bulk upsert.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Iterable

from shared.errors import ProviderError, ProviderUnavailableError
from shared.models.domain import DiarySyncReport, ProviderMatch
from shared.models.enums import SourceTag
from shared.utils.logging import get_logger

from ingest.providers.base import ProviderClient
from reconciler.config import ReconcilerSettings
from reconciler.store import ReconciliationStore, unix_now

logger = get_logger(__name__)

DAY_S = 86400


def local_day_bounds(now: int, utc_offset_h: int) -> tuple[int, int]:
    """Inclusive [start, end] unix seconds of the local day containing `now`."""
    offset = utc_offset_h * 3600
    local = now + offset
    start = local - local % DAY_S - offset
    return start, start + DAY_S - 1


def provider_date(ts: int, utc_offset_h: int) -> str:
    return datetime.fromtimestamp(ts + utc_offset_h * 3600, tz=timezone.utc).strftime("%Y%m%d")


def provider_dates_for_local_day(now: int, local_offset_h: int, provider_offset_h: int) -> list[str]:
    start, end = local_day_bounds(now, local_offset_h)
    return sorted({provider_date(start, provider_offset_h), provider_date(end, provider_offset_h)})


def merge_day_window(batches: Iterable[list[ProviderMatch]], start: int, end: int) -> list[ProviderMatch]:
    """Dedup by external id (first pull wins), keep kickoffs inside [start, end]."""
    merged: dict[str, ProviderMatch] = {}
    for batch in batches:
        for match in batch:
            merged.setdefault(match.external_id, match)
    return [
        m for m in merged.values()
        if m.match_time is not None and start <= m.match_time <= end
    ]


class DiarySync:
    name = "diary_sync"

    def __init__(
        self,
        store: ReconciliationStore,
        provider: ProviderClient,
        settings: ReconcilerSettings,
        clock: Callable[[], int] = unix_now,
    ) -> None:
        self._store = store
        self._provider = provider
        self._settings = settings
        self._clock = clock

    async def run(self) -> DiarySyncReport:
        now = self._clock()
        start, end = local_day_bounds(now, self._settings.local_utc_offset_h)
        dates = provider_dates_for_local_day(
            now, self._settings.local_utc_offset_h, self._settings.provider_utc_offset_h
        )
        report = DiarySyncReport(dates=dates)

        batches: list[list[ProviderMatch]] = []
        for date in dates:
            try:
                batch = await self._provider.fetch_diary(date)
            except ProviderUnavailableError:
                raise
            except ProviderError as exc:
                report.failed += 1
                logger.warning("diary_fetch_failed", date=date, error=str(exc))
                continue
            report.fetched += len(batch)
            batches.append(batch)

        if not batches:
            raise ProviderUnavailableError(f"diary unavailable for {', '.join(dates)}", endpoint="diary")

        kept = merge_day_window(batches, start, end)
        report.kept = len(kept)
        for match in kept:
            if await self._store.upsert_match(match, SourceTag.DIARY_SYNC, now):
                report.upserted += 1

        logger.info("diary_sync_completed", **report.log_fields())
        return report
