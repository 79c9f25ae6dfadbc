"""
Stuck-match detector.

Finds live matches the provider appears to have abandoned (far past full time,
or past full time with a stale score, or no minute data hours after kickoff)
plus matches still NOT_STARTED well after kickoff, and re-reads each from the
provider. An overdue match missing from the provider is closed by time.
"""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from shared.errors import ProviderUnavailableError
from shared.models.domain import RefreshOutcome, RefreshReport
from shared.models.enums import RefreshStatus, SourceTag
from shared.utils.logging import get_logger
from shared.utils.metrics import STUCK_CANDIDATES

from reconciler.config import ReconcilerSettings
from reconciler.jobs.refresh import MatchRefresher
from reconciler.store import ReconciliationStore, StuckCriteria, unix_now

logger = get_logger(__name__)


class StuckMatchDetector:
    name = "stuck_match_detector"

    def __init__(
        self,
        store: ReconciliationStore,
        refresher: MatchRefresher,
        settings: ReconcilerSettings,
        clock: Callable[[], int] = unix_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._refresher = refresher
        self._settings = settings
        self._clock = clock
        self._sleep = sleep
        # match id -> unix time of the last provider check
        self._last_checked: dict[str, int] = {}

    async def run(self) -> RefreshReport:
        """Scheduled run: stuck-detector source, conditional writes, cooldown applies."""
        return await self.reconcile(SourceTag.STUCK_DETECTOR, allow_override=False, respect_cooldown=True)

    async def reconcile(
        self, source: SourceTag, allow_override: bool, respect_cooldown: bool
    ) -> RefreshReport:
        now = self._clock()
        criteria = StuckCriteria.from_settings(self._settings, now)
        candidates = await self._store.find_candidates_needing_reconciliation(criteria)
        STUCK_CANDIDATES.set(len(candidates))

        cooldown = self._settings.reconcile_cooldown_s
        if respect_cooldown:
            candidates = [
                c for c in candidates
                if now - self._last_checked.get(c.external_id, now - cooldown) >= cooldown
            ]
        if not candidates:
            logger.debug("stuck_scan_empty")
            return RefreshReport()

        logger.info("stuck_scan_started", candidates=len(candidates), source=source.value)
        outcomes: list[RefreshOutcome] = []
        for index, snap in enumerate(candidates):
            if index:
                await self._sleep(self._settings.candidate_delay_s)
            self._last_checked[snap.external_id] = now
            outcome = await self._refresher.refresh(
                snap, source, allow_override, finish_if_missing=criteria.is_overdue(snap)
            )
            outcomes.append(outcome)

        self._prune(now)
        report = RefreshReport.from_outcomes(outcomes)
        # a lone failing candidate is not an outage
        if len(outcomes) > 1 and all(o.status == RefreshStatus.ERROR for o in outcomes):
            raise ProviderUnavailableError(
                f"all {len(outcomes)} provider requests failed", endpoint="stuck_match_detector"
            )
        logger.info("stuck_scan_completed", source=source.value, **report.log_fields())
        return report

    def _prune(self, now: int) -> None:
        horizon = now - self._settings.reconcile_cooldown_s
        for match_id in [m for m, ts in self._last_checked.items() if ts < horizon]:
            del self._last_checked[match_id]
