"""
Reconciliation store contract.

Every mutation of status, minute or score goes through conditional_update().
A write is applied iff it is an override, or the field group has no stored
timestamp, or the new timestamp is not older than the stored one. The status
group additionally refuses non-override writes that would leave FINISHED or
move backwards in the lifecycle. A refused write is a normal outcome meaning a
newer writer already won; only connectivity failures raise (PersistenceError).
"""
from __future__ import annotations

import abc
import time
from dataclasses import dataclass
from typing import Any, Optional, Union

from shared.models.domain import FieldValue, MatchSnapshot, ProviderMatch
from shared.models.enums import FieldGroup, MatchStatus, SourceTag
from shared.utils.logging import get_logger
from shared.utils.metrics import CONDITIONAL_WRITES

from reconciler.config import ReconcilerSettings

logger = get_logger(__name__)


def unix_now() -> int:
    return int(time.time())


# ── Authority rules ─────────────────────────────────────────────────────


def authority_permits(stored_ts: Optional[int], new_ts: int, allow_override: bool) -> bool:
    """Last writer by timestamp wins per field group; overrides always win."""
    return allow_override or stored_ts is None or new_ts >= stored_ts


def status_transition_permits(stored_status: Optional[int], new_status: int, allow_override: bool) -> bool:
    """FINISHED is absorbing, even for overrides; otherwise the lifecycle only moves forward."""
    if stored_status == MatchStatus.FINISHED.value:
        return False
    if allow_override:
        return True
    stored = MatchStatus.coerce(stored_status)
    new = MatchStatus.coerce(new_status)
    if stored is None or new is None or stored.rank is None or new.rank is None:
        return True
    return new.rank >= stored.rank


def terminal_minute(final_minute: Optional[int], full_time_minute: int = 90) -> int:
    """A match finished past full time keeps its minute; anything else shows full time."""
    if final_minute is not None and final_minute >= full_time_minute:
        return final_minute
    return full_time_minute


# ── Scan criteria ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class StuckCriteria:
    """Live matches that look abandoned by the provider, plus late starts."""

    now: int
    high_minute: int = 105
    full_time_minute: int = 90
    score_stale_after_s: int = 900
    no_minute_after_s: int = 14400
    late_start_grace_s: int = 300
    late_start_lookback_s: int = 86400
    limit: int = 50

    @classmethod
    def from_settings(cls, settings: ReconcilerSettings, now: int) -> "StuckCriteria":
        return cls(
            now=now,
            high_minute=settings.high_minute_threshold,
            full_time_minute=settings.full_time_minute,
            score_stale_after_s=settings.score_stale_after_s,
            no_minute_after_s=settings.no_minute_finish_after_s,
            late_start_grace_s=settings.late_start_grace_s,
            late_start_lookback_s=settings.late_start_lookback_s,
            limit=settings.stuck_scan_limit,
        )

    def reason(self, snap: MatchSnapshot) -> Optional[str]:
        """Why a snapshot qualifies, or None. Mirrors the SQL scan predicate."""
        status = snap.status
        if status is not None and status.is_live:
            if snap.minute is not None:
                if snap.minute >= self.high_minute:
                    return "high_minute"
                last_score = snap.score_timestamp if snap.score_timestamp is not None else snap.match_time
                if (
                    snap.minute >= self.full_time_minute
                    and last_score is not None
                    and self.now - last_score > self.score_stale_after_s
                ):
                    return "stale_score"
            elif snap.match_time is not None and snap.match_time < self.now - self.no_minute_after_s:
                return "no_minute"
            return None

        if (
            snap.status_id == MatchStatus.NOT_STARTED.value
            and snap.match_time is not None
            and self.now - self.late_start_lookback_s <= snap.match_time <= self.now - self.late_start_grace_s
        ):
            return "late_start"
        return None

    def is_overdue(self, snap: MatchSnapshot) -> bool:
        """Qualifies on a criterion that justifies time-based closure."""
        reason = self.reason(snap)
        return reason is not None and reason != "late_start"


@dataclass(frozen=True)
class PreSyncCriteria:
    """Upcoming matches still lacking a lineup."""

    now: int
    lookahead_s: int = 3600
    limit: int = 100

    def matches(self, snap: MatchSnapshot) -> bool:
        return (
            snap.status_id == MatchStatus.NOT_STARTED.value
            and snap.lineup_synced_at is None
            and snap.match_time is not None
            and self.now <= snap.match_time <= self.now + self.lookahead_s
        )


Criteria = Union[StuckCriteria, PreSyncCriteria]


# ── Contract ────────────────────────────────────────────────────────────


class ReconciliationStore(abc.ABC):
    """Authoritative match rows with per-field-group provenance."""

    full_time_minute: int = 90

    async def close(self) -> None:
        """Release backend resources."""

    @abc.abstractmethod
    async def get(self, external_id: str) -> Optional[MatchSnapshot]:
        ...

    @abc.abstractmethod
    async def find_candidates_needing_reconciliation(self, criteria: Criteria) -> list[MatchSnapshot]:
        """Single indexed query: status-set filter first, then a timestamp comparison."""

    async def conditional_update(
        self,
        external_id: str,
        group: FieldGroup,
        value: FieldValue,
        source: SourceTag,
        timestamp: int,
        allow_override: bool = False,
    ) -> bool:
        applied = await self._conditional_update(external_id, group, value, source, timestamp, allow_override)
        CONDITIONAL_WRITES.labels(
            field_group=group.value, result="applied" if applied else "rejected"
        ).inc()
        if not applied:
            logger.debug(
                "conditional_write_rejected",
                match_id=external_id,
                field_group=group.value,
                source=source.value,
                timestamp=timestamp,
                override=allow_override,
            )
        return applied

    @abc.abstractmethod
    async def _conditional_update(
        self,
        external_id: str,
        group: FieldGroup,
        value: FieldValue,
        source: SourceTag,
        timestamp: int,
        allow_override: bool,
    ) -> bool:
        ...

    async def mark_terminal(
        self,
        external_id: str,
        final_minute: Optional[int],
        source: SourceTag,
        timestamp: int,
        allow_override: bool = False,
    ) -> bool:
        """Write status FINISHED, then the clamped final minute if the status write won."""
        applied = await self.conditional_update(
            external_id, FieldGroup.STATUS, MatchStatus.FINISHED, source, timestamp, allow_override
        )
        if not applied:
            return False
        minute = terminal_minute(final_minute, self.full_time_minute)
        await self.conditional_update(external_id, FieldGroup.MINUTE, minute, source, timestamp, allow_override)
        logger.info("match_marked_terminal", match_id=external_id, minute=minute, source=source.value)
        return True

    @abc.abstractmethod
    async def upsert_match(self, match: ProviderMatch, source: SourceTag, timestamp: int) -> bool:
        """Idempotent insert-or-update keyed by external id; never moves a FINISHED status."""

    @abc.abstractmethod
    async def save_lineup(self, external_id: str, lineup: dict[str, Any], timestamp: int) -> bool:
        ...

    async def ping(self) -> bool:
        return True
