"""
PostgreSQL-backed reconciliation store.

Conditional writes are single UPDATE statements whose WHERE clause carries the
authority rule, so concurrent writers race on the row itself and no explicit
locking is needed. rowcount tells whether the write won.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from sqlalchemy import Select, and_, case, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import InterfaceError, OperationalError

from shared.errors import PersistenceError
from shared.models.domain import FieldValue, MatchSnapshot, ProviderMatch, ScoreValue
from shared.models.enums import STATUS_ORDER, FieldGroup, MatchStatus, SourceTag
from shared.models.orm import MatchORM
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger
from shared.utils.metrics import STORE_LATENCY, atrack_latency

from reconciler.store import Criteria, PreSyncCriteria, ReconciliationStore, StuckCriteria

logger = get_logger(__name__)

_LIVE_IDS = [
    MatchStatus.FIRST_HALF.value,
    MatchStatus.HALF_TIME.value,
    MatchStatus.SECOND_HALF.value,
    MatchStatus.OVERTIME.value,
    MatchStatus.PENALTY_SHOOTOUT.value,
]


def _to_snapshot(row: MatchORM) -> MatchSnapshot:
    return MatchSnapshot.model_validate(row)


def _score_values(value: ScoreValue) -> dict[str, Any]:
    home, away = value.home, value.away
    return {
        "home_score_display": value.home_display,
        "away_score_display": value.away_display,
        "home_score_regular": home.regular if home else None,
        "home_score_overtime": home.overtime if home else None,
        "home_score_penalties": home.penalty if home else None,
        "away_score_regular": away.regular if away else None,
        "away_score_overtime": away.overtime if away else None,
        "away_score_penalties": away.penalty if away else None,
        "home_scores": value.home_raw,
        "away_scores": value.away_raw,
    }


class SqlReconciliationStore(ReconciliationStore):
    def __init__(self, db: DatabaseManager, full_time_minute: int = 90) -> None:
        self._db = db
        self.full_time_minute = full_time_minute

    @asynccontextmanager
    async def _guard(self, operation: str) -> AsyncIterator[None]:
        try:
            async with atrack_latency(STORE_LATENCY, operation=operation):
                yield
        except (OperationalError, InterfaceError, OSError) as exc:
            logger.error("store_unreachable", operation=operation, error=str(exc))
            raise PersistenceError(f"{operation} failed: {exc}") from exc

    async def ping(self) -> bool:
        return await self._db.ping()

    async def get(self, external_id: str) -> Optional[MatchSnapshot]:
        async with self._guard("get"), self._db.read_session() as session:
            row = await session.get(MatchORM, external_id)
            return _to_snapshot(row) if row else None

    async def find_candidates_needing_reconciliation(self, criteria: Criteria) -> list[MatchSnapshot]:
        if isinstance(criteria, StuckCriteria):
            stmt = self._stuck_query(criteria)
        elif isinstance(criteria, PreSyncCriteria):
            stmt = (
                select(MatchORM)
                .where(
                    MatchORM.status_id == MatchStatus.NOT_STARTED.value,
                    MatchORM.match_time.between(criteria.now, criteria.now + criteria.lookahead_s),
                    MatchORM.lineup_synced_at.is_(None),
                )
                .order_by(MatchORM.match_time.asc())
                .limit(criteria.limit)
            )
        else:
            raise TypeError(f"Unsupported criteria: {type(criteria).__name__}")

        async with self._guard("find_candidates"), self._db.read_session() as session:
            result = await session.execute(stmt)
            return [_to_snapshot(r) for r in result.scalars().all()]

    @staticmethod
    def _stuck_query(c: StuckCriteria) -> Select[tuple[MatchORM]]:
        last_score = func.coalesce(
            func.greatest(MatchORM.home_score_timestamp, MatchORM.away_score_timestamp),
            MatchORM.match_time,
        )
        live = and_(
            MatchORM.status_id.in_(_LIVE_IDS),
            or_(
                MatchORM.minute >= c.high_minute,
                and_(MatchORM.minute >= c.full_time_minute, c.now - last_score > c.score_stale_after_s),
                and_(MatchORM.minute.is_(None), MatchORM.match_time < c.now - c.no_minute_after_s),
            ),
        )
        late_start = and_(
            MatchORM.status_id == MatchStatus.NOT_STARTED.value,
            MatchORM.match_time <= c.now - c.late_start_grace_s,
            MatchORM.match_time >= c.now - c.late_start_lookback_s,
        )
        return (
            select(MatchORM)
            .where(or_(live, late_start))
            .order_by(MatchORM.minute.desc().nulls_last())
            .limit(c.limit)
        )

    async def _conditional_update(
        self,
        external_id: str,
        group: FieldGroup,
        value: FieldValue,
        source: SourceTag,
        timestamp: int,
        allow_override: bool,
    ) -> bool:
        conditions = [MatchORM.external_id == external_id]

        if group == FieldGroup.STATUS:
            if not isinstance(value, int):
                raise TypeError("status write requires a status id")
            values: dict[str, Any] = {
                "status_id": int(value),
                "status_source": source.value,
                "status_timestamp": timestamp,
            }
            conditions.append(MatchORM.status_id != MatchStatus.FINISHED.value)
            if not allow_override:
                conditions.append(
                    or_(MatchORM.status_timestamp.is_(None), MatchORM.status_timestamp <= timestamp)
                )
                rank = MatchStatus.coerce(int(value))
                if rank is not None and rank.rank is not None:
                    ahead = [s.value for s in STATUS_ORDER[rank.rank + 1 :]]
                    if ahead:
                        conditions.append(MatchORM.status_id.notin_(ahead))

        elif group == FieldGroup.MINUTE:
            values = {"minute": value, "minute_source": source.value, "minute_timestamp": timestamp}
            if not allow_override:
                conditions.append(
                    or_(MatchORM.minute_timestamp.is_(None), MatchORM.minute_timestamp <= timestamp)
                )

        else:
            if not isinstance(value, ScoreValue):
                raise TypeError("score write requires a ScoreValue")
            values = _score_values(value)
            values.update(
                home_score_source=source.value,
                home_score_timestamp=timestamp,
                away_score_source=source.value,
                away_score_timestamp=timestamp,
            )
            if not allow_override:
                conditions.append(
                    or_(
                        and_(
                            MatchORM.home_score_timestamp.is_(None),
                            MatchORM.away_score_timestamp.is_(None),
                        ),
                        func.greatest(MatchORM.home_score_timestamp, MatchORM.away_score_timestamp)
                        <= timestamp,
                    )
                )

        stmt = update(MatchORM).where(*conditions).values(**values)
        async with self._guard("conditional_update"), self._db.write_session() as session:
            result = await session.execute(stmt)
            return (result.rowcount or 0) > 0

    async def upsert_match(self, match: ProviderMatch, source: SourceTag, timestamp: int) -> bool:
        values: dict[str, Any] = {
            "external_id": match.external_id,
            "match_time": match.match_time,
            "competition_id": match.competition_id,
            "season_id": match.season_id,
            "home_team_id": match.home_team_id,
            "away_team_id": match.away_team_id,
        }
        if match.status is not None:
            values.update(
                status_id=match.status.value, status_source=source.value, status_timestamp=timestamp
            )
        if match.minute is not None:
            values.update(minute=match.minute, minute_source=source.value, minute_timestamp=timestamp)
        if match.has_score:
            values.update(_score_values(match.score))
            values.update(
                home_score_source=source.value,
                home_score_timestamp=timestamp,
                away_score_source=source.value,
                away_score_timestamp=timestamp,
            )

        stmt = pg_insert(MatchORM).values(**values)
        excluded = stmt.excluded
        finished = MatchORM.status_id == MatchStatus.FINISHED.value
        # provenance of an existing row only advances when the value itself moved
        changed = {
            "status": MatchORM.status_id.is_distinct_from(excluded.status_id),
            "minute": MatchORM.minute.is_distinct_from(excluded.minute),
            "home_score": or_(
                MatchORM.home_score_display.is_distinct_from(excluded.home_score_display),
                MatchORM.away_score_display.is_distinct_from(excluded.away_score_display),
            ),
        }
        changed["away_score"] = changed["home_score"]
        set_: dict[str, Any] = {}
        for key in values:
            if key == "external_id":
                continue
            column = getattr(MatchORM, key)
            group, _, suffix = key.rpartition("_")
            if key == "status_id":
                # FINISHED is absorbing
                set_[key] = case((finished, column), else_=excluded.status_id)
            elif suffix in ("source", "timestamp"):
                whens = [(changed[group], getattr(excluded, key))]
                if group == "status":
                    whens.insert(0, (finished, column))
                set_[key] = case(*whens, else_=column)
            elif key in ("match_time", "competition_id", "season_id", "home_team_id", "away_team_id"):
                set_[key] = func.coalesce(getattr(excluded, key), column)
            else:
                set_[key] = getattr(excluded, key)
        set_["updated_at"] = func.now()
        stmt = stmt.on_conflict_do_update(index_elements=[MatchORM.external_id], set_=set_)

        async with self._guard("upsert_match"), self._db.write_session() as session:
            await session.execute(stmt)
        return True

    async def save_lineup(self, external_id: str, lineup: dict[str, Any], timestamp: int) -> bool:
        stmt = (
            update(MatchORM)
            .where(MatchORM.external_id == external_id)
            .values(lineup=lineup, lineup_synced_at=timestamp)
        )
        async with self._guard("save_lineup"), self._db.write_session() as session:
            result = await session.execute(stmt)
            return (result.rowcount or 0) > 0
