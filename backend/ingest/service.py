"""
Push-feed consumer.
Listens for provider push frames relayed onto a Redis pub/sub channel, parses
them at the boundary and hands each affected match to the reconcile pipeline
as a non-override live-feed write.
"""
from __future__ import annotations

import asyncio
import json
from typing import Any, Callable

from shared.config import Settings, get_settings
from shared.models.domain import Incident, ProviderMatch
from shared.models.enums import SourceTag
from shared.utils.logging import get_logger
from shared.utils.metrics import FEED_MESSAGES
from shared.utils.redis_manager import RedisManager

from ingest.normalization.payload import ScoreTuple, parse_push_message
from reconciler.pipeline import ReconcilePipeline
from reconciler.store import ReconciliationStore, unix_now

logger = get_logger(__name__)


class LiveFeedConsumer:
    """Turns push frames into conditional writes and live events."""

    def __init__(
        self,
        redis: RedisManager,
        store: ReconciliationStore,
        pipeline: ReconcilePipeline,
        settings: Settings | None = None,
        clock: Callable[[], int] = unix_now,
    ) -> None:
        self._redis = redis
        self._store = store
        self._pipeline = pipeline
        self._settings = settings or get_settings()
        self._clock = clock
        self._shutdown = asyncio.Event()

    async def handle_frame(self, raw: Any) -> int:
        """
        Reconcile every known match named in one frame. Returns how many were applied.

        Writes carry the frame's provider update time, or the receipt time when
        the frame has none.
        """
        frame = parse_push_message(raw)
        if frame.empty:
            FEED_MESSAGES.labels(kind="ignored").inc()
            return 0

        scores: dict[str, ScoreTuple] = {}
        for score in frame.scores:
            scores[score.match_id] = score
        incidents: dict[str, list[Incident]] = {}
        for batch in frame.incidents:
            incidents.setdefault(batch.match_id, []).extend(batch.incidents)
        FEED_MESSAGES.labels(kind="score").inc(len(frame.scores))
        FEED_MESSAGES.labels(kind="incidents").inc(len(frame.incidents))

        now = self._clock()
        write_ts = frame.update_time if frame.update_time is not None else now
        applied = 0
        for match_id in list(dict.fromkeys([*scores, *incidents])):
            snap = await self._store.get(match_id)
            if snap is None:
                FEED_MESSAGES.labels(kind="unknown_match").inc()
                continue
            score = scores.get(match_id)
            kickoff_ts = score.kickoff_ts if score else None
            observed = ProviderMatch(
                external_id=match_id,
                status=score.status if score else None,
                home=score.home if score else None,
                away=score.away if score else None,
                home_scores_raw=score.home_raw if score else None,
                away_scores_raw=score.away_raw if score else None,
                kickoff_ts=kickoff_ts if kickoff_ts and kickoff_ts > 0 else None,
                incidents=incidents.get(match_id, []),
            )
            await self._pipeline.apply(
                snap,
                observed,
                SourceTag.LIVE_FEED,
                allow_override=False,
                now=now,
                write_ts=write_ts,
            )
            applied += 1
        return applied

    async def listen(self) -> None:
        """Subscribe to the feed channel and process frames until shutdown."""
        channel = self._settings.feed_channel
        pubsub = await self._redis.subscribe_channel(channel)
        logger.info("feed_listening", channel=channel)

        try:
            while not self._shutdown.is_set():
                try:
                    message = await asyncio.wait_for(
                        pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0),
                        timeout=2.0,
                    )
                    if message and message.get("type") == "message":
                        data = message.get("data", "")
                        await self.handle_frame(json.loads(data))
                except asyncio.TimeoutError:
                    continue
                except json.JSONDecodeError as exc:
                    FEED_MESSAGES.labels(kind="invalid_json").inc()
                    logger.warning("feed_invalid_json", error=str(exc))
                except Exception as exc:
                    logger.error("feed_frame_error", error=str(exc), exc_info=True)
                    await asyncio.sleep(1.0)
        finally:
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()
            logger.info("feed_stopped", channel=channel)

    def request_shutdown(self) -> None:
        self._shutdown.set()
