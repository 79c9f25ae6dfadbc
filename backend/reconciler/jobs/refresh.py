"""
Per-match fetch -> diff -> conditional write -> broadcast cycle shared by the
stuck-match detector and forced refresh.
"""
from __future__ import annotations

from typing import Callable

from shared.errors import ProviderError, ProviderUnavailableError
from shared.models.domain import MatchSnapshot, RefreshOutcome
from shared.models.enums import RefreshStatus, SourceTag
from shared.utils.logging import get_logger

from ingest.providers.base import ProviderClient
from reconciler.pipeline import ReconcilePipeline
from reconciler.store import unix_now

logger = get_logger(__name__)


class MatchRefresher:
    def __init__(
        self,
        provider: ProviderClient,
        pipeline: ReconcilePipeline,
        clock: Callable[[], int] = unix_now,
    ) -> None:
        self._provider = provider
        self._pipeline = pipeline
        self._clock = clock

    async def refresh(
        self,
        snap: MatchSnapshot,
        source: SourceTag,
        allow_override: bool,
        finish_if_missing: bool = False,
    ) -> RefreshOutcome:
        """
        Reconcile one stored match against the provider.

        ProviderUnavailableError propagates (the whole run is pointless);
        any other ProviderError becomes an ERROR outcome for this match only.
        When the provider no longer reports the match and `finish_if_missing`
        is set, the match is closed with source auto-finish.
        """
        match_id = snap.external_id
        if snap.is_terminal:
            return RefreshOutcome(match_id=match_id, status=RefreshStatus.TERMINAL, message="already finished")

        try:
            observed = await self._provider.fetch_live_detail(match_id)
        except ProviderUnavailableError:
            raise
        except ProviderError as exc:
            logger.warning("provider_fetch_failed", match_id=match_id, error=str(exc), status=exc.status)
            return RefreshOutcome(match_id=match_id, status=RefreshStatus.ERROR, message=str(exc))

        now = self._clock()
        if observed is None:
            if not finish_if_missing:
                return RefreshOutcome(
                    match_id=match_id, status=RefreshStatus.NOT_FOUND, message="not in provider response"
                )
            changes = await self._pipeline.finish(snap, SourceTag.AUTO_FINISH, now)
            status = RefreshStatus.FINISHED if changes.status else RefreshStatus.UNCHANGED
            return RefreshOutcome(match_id=match_id, status=status, message="auto-finished", changes=changes)

        changes = await self._pipeline.apply(snap, observed, source, allow_override, now)
        if changes.finished and changes.status:
            status = RefreshStatus.FINISHED
        elif changes.any:
            status = RefreshStatus.UPDATED
        else:
            status = RefreshStatus.UNCHANGED
        return RefreshOutcome(match_id=match_id, status=status, changes=changes)
