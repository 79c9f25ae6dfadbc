"""
SQLAlchemy 2.0 ORM models for the reconciler.
One row per match; status, minute and score each carry their own source and timestamp.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import BigInteger, DateTime, Index, SmallInteger, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class MatchORM(Base):
    __tablename__ = "matches"
    __table_args__ = (
        # Candidate scans filter by status first, then by a timestamp comparison
        Index("ix_matches_status_match_time", "status_id", "match_time"),
        Index("ix_matches_status_minute", "status_id", "minute"),
    )

    external_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    status_id: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=1)
    status_source: Mapped[Optional[str]] = mapped_column(String(32))
    status_timestamp: Mapped[Optional[int]] = mapped_column(BigInteger)

    minute: Mapped[Optional[int]] = mapped_column(SmallInteger)
    minute_source: Mapped[Optional[str]] = mapped_column(String(32))
    minute_timestamp: Mapped[Optional[int]] = mapped_column(BigInteger)

    home_score_display: Mapped[Optional[int]] = mapped_column(SmallInteger)
    away_score_display: Mapped[Optional[int]] = mapped_column(SmallInteger)
    home_score_source: Mapped[Optional[str]] = mapped_column(String(32))
    home_score_timestamp: Mapped[Optional[int]] = mapped_column(BigInteger)
    away_score_source: Mapped[Optional[str]] = mapped_column(String(32))
    away_score_timestamp: Mapped[Optional[int]] = mapped_column(BigInteger)
    home_score_regular: Mapped[Optional[int]] = mapped_column(SmallInteger)
    home_score_overtime: Mapped[Optional[int]] = mapped_column(SmallInteger)
    home_score_penalties: Mapped[Optional[int]] = mapped_column(SmallInteger)
    away_score_regular: Mapped[Optional[int]] = mapped_column(SmallInteger)
    away_score_overtime: Mapped[Optional[int]] = mapped_column(SmallInteger)
    away_score_penalties: Mapped[Optional[int]] = mapped_column(SmallInteger)
    home_scores: Mapped[Optional[list[Any]]] = mapped_column(JSONB)
    away_scores: Mapped[Optional[list[Any]]] = mapped_column(JSONB)

    match_time: Mapped[Optional[int]] = mapped_column(BigInteger)
    competition_id: Mapped[Optional[str]] = mapped_column(String(64))
    season_id: Mapped[Optional[str]] = mapped_column(String(64))
    home_team_id: Mapped[Optional[str]] = mapped_column(String(64))
    away_team_id: Mapped[Optional[str]] = mapped_column(String(64))

    lineup: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONB)
    lineup_synced_at: Mapped[Optional[int]] = mapped_column(BigInteger)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
