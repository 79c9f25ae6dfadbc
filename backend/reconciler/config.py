"""
Reconciler configuration.
Uses LR_RECONCILER_ prefix; Redis/DB/provider come from shared.config.
"""
from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ReconcilerSettings(BaseSettings):
    """Stuck heuristics, job schedule and in-memory buffer sizes."""

    model_config = SettingsConfigDict(
        env_prefix="LR_RECONCILER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Stuck-match heuristic
    high_minute_threshold: int = Field(default=105, description="Live match at or past this minute is stuck")
    full_time_minute: int = Field(default=90, description="Normal full-time minute; also the terminal minute floor")
    score_stale_after_s: int = Field(default=900, description="Past full time with no score write for this long is stuck")
    no_minute_finish_after_s: int = Field(default=14400, description="Live with no minute data this long after kickoff")
    late_start_grace_s: int = Field(default=300, description="NOT_STARTED this long after kickoff gets re-checked")
    late_start_lookback_s: int = Field(default=86400, description="Ignore late starts older than this")
    stuck_scan_limit: int = Field(default=50, description="Max candidates per stuck scan")
    reconcile_cooldown_s: int = Field(default=300, description="Min seconds between provider checks of one match")
    candidate_delay_s: float = Field(default=0.2, description="Delay between per-candidate provider calls")

    # Job schedule (seconds)
    stuck_interval_s: float = Field(default=30.0, description="Stuck-match detector interval")
    stuck_timeout_s: float = Field(default=120.0, description="Stuck-match detector timeout")
    diary_interval_s: float = Field(default=600.0, description="Diary sync interval")
    diary_timeout_s: float = Field(default=180.0, description="Diary sync timeout")
    presync_interval_s: float = Field(default=300.0, description="Lineup pre-sync interval")
    presync_timeout_s: float = Field(default=120.0, description="Lineup pre-sync timeout")
    presync_lookahead_s: int = Field(default=3600, description="Pre-sync matches kicking off within this window")
    dedup_cleanup_interval_s: float = Field(default=300.0, description="Dedup map sweep interval")
    latency_summary_interval_s: float = Field(default=60.0, description="Latency summary log interval")

    # Event detector
    dedup_window_s: float = Field(default=5.0, description="Identical events inside this window are suppressed")
    dedup_max_age_s: float = Field(default=300.0, description="Dedup entries older than this are swept")

    # Latency monitor
    latency_capacity: int = Field(default=1000, description="Ring buffer size for latency measurements")
    latency_warn_ms: float = Field(default=100.0, description="Warn when ingest to broadcast exceeds this")

    # Day windows (hours east of UTC)
    local_utc_offset_h: int = Field(default=3, description="Canonical local day boundary offset")
    provider_utc_offset_h: int = Field(default=8, description="Provider diary day boundary offset")


def get_reconciler_settings() -> ReconcilerSettings:
    return ReconcilerSettings()
