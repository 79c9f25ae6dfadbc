"""Operator-triggered refresh of one match or of everything currently stuck."""
from __future__ import annotations

from shared.errors import MatchNotFoundError
from shared.models.domain import RefreshReport
from shared.models.enums import SourceTag
from shared.utils.logging import get_logger

from reconciler.jobs.refresh import MatchRefresher
from reconciler.jobs.stuck import StuckMatchDetector
from reconciler.store import ReconciliationStore

logger = get_logger(__name__)


class ForceRefresh:
    """
    Same cycle as the stuck-match detector, but writes as overrides and always
    hands a per-match outcome list back to the waiting caller.
    """

    def __init__(
        self,
        store: ReconciliationStore,
        refresher: MatchRefresher,
        stuck: StuckMatchDetector,
    ) -> None:
        self._store = store
        self._refresher = refresher
        self._stuck = stuck

    async def refresh_one(self, match_id: str) -> RefreshReport:
        snap = await self._store.get(match_id)
        if snap is None:
            raise MatchNotFoundError(match_id)
        outcome = await self._refresher.refresh(snap, SourceTag.MANUAL, allow_override=True)
        report = RefreshReport.from_outcomes([outcome])
        logger.info("force_refresh_one", match_id=match_id, status=outcome.status.value)
        return report

    async def refresh_stuck(self) -> RefreshReport:
        report = await self._stuck.reconcile(
            SourceTag.API_FORCE_REFRESH, allow_override=True, respect_cooldown=False
        )
        logger.info("force_refresh_stuck", **report.log_fields())
        return report
