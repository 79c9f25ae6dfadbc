"""In-process store for tests and local runs without Postgres."""
from __future__ import annotations

import asyncio
from typing import Any, Optional

from shared.models.domain import FieldValue, MatchSnapshot, ProviderMatch, ScoreValue
from shared.models.enums import FieldGroup, SourceTag

from reconciler.store import (
    Criteria,
    PreSyncCriteria,
    ReconciliationStore,
    StuckCriteria,
    authority_permits,
    status_transition_permits,
)


class InMemoryReconciliationStore(ReconciliationStore):
    def __init__(self, full_time_minute: int = 90) -> None:
        self.full_time_minute = full_time_minute
        self._rows: dict[str, MatchSnapshot] = {}
        self.lineups: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    def add(self, snapshot: MatchSnapshot) -> None:
        self._rows[snapshot.external_id] = snapshot.model_copy()

    async def get(self, external_id: str) -> Optional[MatchSnapshot]:
        row = self._rows.get(external_id)
        return row.model_copy() if row else None

    async def find_candidates_needing_reconciliation(self, criteria: Criteria) -> list[MatchSnapshot]:
        if isinstance(criteria, StuckCriteria):
            found = [r for r in self._rows.values() if criteria.reason(r) is not None]
            # Highest minute first, no-minute rows last
            found.sort(key=lambda r: r.minute if r.minute is not None else -1, reverse=True)
        elif isinstance(criteria, PreSyncCriteria):
            found = [r for r in self._rows.values() if criteria.matches(r)]
            found.sort(key=lambda r: r.match_time or 0)
        else:
            raise TypeError(f"Unsupported criteria: {type(criteria).__name__}")
        return [r.model_copy() for r in found[: criteria.limit]]

    async def _conditional_update(
        self,
        external_id: str,
        group: FieldGroup,
        value: FieldValue,
        source: SourceTag,
        timestamp: int,
        allow_override: bool,
    ) -> bool:
        async with self._lock:
            row = self._rows.get(external_id)
            if row is None:
                return False
            if not authority_permits(row.stored_timestamp(group), timestamp, allow_override):
                return False

            if group == FieldGroup.STATUS:
                if not isinstance(value, int):
                    raise TypeError("status write requires a status id")
                if not status_transition_permits(row.status_id, int(value), allow_override):
                    return False
                updates: dict[str, Any] = {
                    "status_id": int(value),
                    "status_source": source.value,
                    "status_timestamp": timestamp,
                }
            elif group == FieldGroup.MINUTE:
                if value is not None and not isinstance(value, int):
                    raise TypeError("minute write requires an int or None")
                updates = {"minute": value, "minute_source": source.value, "minute_timestamp": timestamp}
            else:
                if not isinstance(value, ScoreValue):
                    raise TypeError("score write requires a ScoreValue")
                updates = _score_columns(value)
                updates.update(
                    home_score_source=source.value,
                    home_score_timestamp=timestamp,
                    away_score_source=source.value,
                    away_score_timestamp=timestamp,
                )

            self._rows[external_id] = row.model_copy(update=updates)
            return True

    async def upsert_match(self, match: ProviderMatch, source: SourceTag, timestamp: int) -> bool:
        """Bulk-sync write. Provenance only advances for a new row or a changed value."""
        async with self._lock:
            existing = self._rows.get(match.external_id)
            row = existing or MatchSnapshot(external_id=match.external_id)
            updates: dict[str, Any] = {
                "match_time": match.match_time if match.match_time is not None else row.match_time,
                "competition_id": match.competition_id or row.competition_id,
                "season_id": match.season_id or row.season_id,
                "home_team_id": match.home_team_id or row.home_team_id,
                "away_team_id": match.away_team_id or row.away_team_id,
            }
            if match.status is not None and not row.is_terminal:
                updates["status_id"] = match.status.value
                if existing is None or row.status_id != match.status.value:
                    updates.update(status_source=source.value, status_timestamp=timestamp)
            if match.minute is not None:
                updates["minute"] = match.minute
                if existing is None or row.minute != match.minute:
                    updates.update(minute_source=source.value, minute_timestamp=timestamp)
            if match.has_score:
                updates.update(_score_columns(match.score))
                if existing is None or row.score != match.score.line:
                    updates.update(
                        home_score_source=source.value,
                        home_score_timestamp=timestamp,
                        away_score_source=source.value,
                        away_score_timestamp=timestamp,
                    )
            self._rows[match.external_id] = row.model_copy(update=updates)
            return True

    async def save_lineup(self, external_id: str, lineup: dict[str, Any], timestamp: int) -> bool:
        async with self._lock:
            row = self._rows.get(external_id)
            if row is None:
                return False
            self.lineups[external_id] = lineup
            self._rows[external_id] = row.model_copy(update={"lineup_synced_at": timestamp})
            return True


def _score_columns(value: ScoreValue) -> dict[str, Any]:
    home = value.home
    away = value.away
    return {
        "home_score_display": value.home_display,
        "away_score_display": value.away_display,
        "home_score_regular": home.regular if home else None,
        "home_score_overtime": home.overtime if home else None,
        "home_score_penalties": home.penalty if home else None,
        "away_score_regular": away.regular if away else None,
        "away_score_overtime": away.overtime if away else None,
        "away_score_penalties": away.penalty if away else None,
    }
