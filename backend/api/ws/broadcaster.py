"""
WebSocket broadcaster for live match events.

Every connected client receives every event, best effort:
- CONNECTED acknowledgement with the connection id on subscribe
- Server PING on a fixed interval; client PING answered with PONG
- Clients whose socket is no longer writable are dropped during fan-out
- Sent/error counters and uptime for the observability endpoint
No replay and no retry: clients reconcile true state from snapshot reads.
"""
from __future__ import annotations

import asyncio
import json
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Optional

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from shared.config import Settings, get_settings
from shared.models.domain import BroadcastHealth
from shared.models.enums import WSClientOp, WSServerMsgType
from shared.models.events import MatchEvent, now_ms, to_envelope
from shared.utils.latency import LatencyMonitor
from shared.utils.logging import get_logger
from shared.utils.metrics import BROADCAST_MESSAGES, WS_CONNECTIONS

logger = get_logger(__name__)

_SEND_ERRORS = (WebSocketDisconnect, RuntimeError, OSError)


@dataclass
class WSConnection:
    """A single subscribed WebSocket client."""

    ws: WebSocket
    connection_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    created_at: float = field(default_factory=time.monotonic)
    remote_addr: str = ""

    @property
    def alive_seconds(self) -> float:
        return time.monotonic() - self.created_at

    @property
    def writable(self) -> bool:
        return self.ws.client_state == WebSocketState.CONNECTED


class Broadcaster:
    """Fan-out of detected events to every open subscriber of this process."""

    def __init__(
        self,
        latency: LatencyMonitor,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._latency = latency
        self._settings = settings or get_settings()
        self._clock = clock
        self._connections: dict[str, WSConnection] = {}
        self._started_at = clock()
        self._total_connected = 0
        self._total_disconnected = 0
        self._messages_sent = 0
        self._send_errors = 0
        self._heartbeat_task: Optional[asyncio.Task[None]] = None
        self._shutdown = asyncio.Event()

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def start(self) -> None:
        self._heartbeat_task = asyncio.create_task(self._run_heartbeat())
        logger.info("broadcaster_started", ping_interval_s=self._settings.ws_ping_interval_s)

    async def stop(self) -> None:
        self._shutdown.set()
        if self._heartbeat_task:
            self._heartbeat_task.cancel()
        for conn in list(self._connections.values()):
            if conn.writable:
                try:
                    await conn.ws.close(code=1001, reason="server_shutdown")
                except _SEND_ERRORS as exc:
                    logger.debug("ws_close_error", connection_id=conn.connection_id, error=str(exc))
            await self.unsubscribe(conn)
        logger.info("broadcaster_stopped", total_connections_served=self._total_connected)

    # ── Membership ──────────────────────────────────────────────────────

    async def subscribe(self, ws: WebSocket) -> WSConnection:
        """Accept and register a client, then acknowledge with CONNECTED."""
        await ws.accept()
        conn = WSConnection(
            ws=ws,
            remote_addr=f"{ws.client.host}:{ws.client.port}" if ws.client else "unknown",
        )
        self._connections[conn.connection_id] = conn
        self._total_connected += 1
        WS_CONNECTIONS.inc()
        logger.info("ws_connected", connection_id=conn.connection_id, remote_addr=conn.remote_addr)

        await self._send(conn, json.dumps({
            "type": WSServerMsgType.CONNECTED.value,
            "connectionId": conn.connection_id,
            "timestamp": now_ms(),
        }))
        return conn

    async def unsubscribe(self, conn: WSConnection) -> None:
        """Remove a client; calling it twice is harmless."""
        if self._connections.pop(conn.connection_id, None) is None:
            return
        self._total_disconnected += 1
        WS_CONNECTIONS.dec()
        logger.info(
            "ws_disconnected",
            connection_id=conn.connection_id,
            alive_seconds=round(conn.alive_seconds, 1),
        )

    async def handle_connection(self, ws: WebSocket) -> None:
        """Serve one client until it disconnects or the server shuts down."""
        conn = await self.subscribe(ws)
        try:
            while not self._shutdown.is_set():
                try:
                    raw = await asyncio.wait_for(
                        ws.receive_text(), timeout=self._settings.ws_receive_timeout_s
                    )
                except asyncio.TimeoutError:
                    continue
                await self._handle_message(conn, raw)
        except WebSocketDisconnect:
            pass
        except RuntimeError as exc:
            logger.warning("ws_connection_error", connection_id=conn.connection_id, error=str(exc))
        finally:
            await self.unsubscribe(conn)

    async def _handle_message(self, conn: WSConnection, raw: str) -> None:
        """Only PING is understood; anything else is ignored."""
        try:
            msg = json.loads(raw)
        except json.JSONDecodeError:
            return
        if not isinstance(msg, dict):
            return
        op = msg.get("type") or msg.get("op")
        if op == WSClientOp.PING.value:
            await self._send(conn, json.dumps({
                "type": WSServerMsgType.PONG.value,
                "timestamp": now_ms(),
            }))

    # ── Fan-out ─────────────────────────────────────────────────────────

    async def fan_out(self, event: MatchEvent, ingest_ts: Optional[float] = None) -> int:
        """
        Serialize once and deliver to every open subscriber.

        Returns the number of successful deliveries. Raises TypeError for an
        event type without a wire model.
        """
        envelope = to_envelope(event)
        if ingest_ts is not None:
            self._latency.record_broadcast_sent(envelope["type"], event.match_id, ingest_ts)

        if not self._connections:
            return 0

        text = json.dumps(envelope, default=str)
        conns = list(self._connections.values())
        results = await asyncio.gather(*(self._send(c, text) for c in conns))

        delivered = 0
        for conn, ok in zip(conns, results):
            if ok:
                delivered += 1
            else:
                await self.unsubscribe(conn)

        logger.debug(
            "event_broadcast",
            event_type=envelope["type"],
            match_id=event.match_id,
            delivered=delivered,
            dropped=len(conns) - delivered,
        )
        return delivered

    async def _send(self, conn: WSConnection, text: str) -> bool:
        if not conn.writable:
            self._send_errors += 1
            BROADCAST_MESSAGES.labels(result="dropped").inc()
            return False
        try:
            await conn.ws.send_text(text)
        except _SEND_ERRORS as exc:
            self._send_errors += 1
            BROADCAST_MESSAGES.labels(result="error").inc()
            logger.debug("ws_send_error", connection_id=conn.connection_id, error=str(exc))
            return False
        self._messages_sent += 1
        BROADCAST_MESSAGES.labels(result="sent").inc()
        return True

    async def _run_heartbeat(self) -> None:
        interval = self._settings.ws_ping_interval_s
        while not self._shutdown.is_set():
            try:
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                break
            ping = json.dumps({"type": WSServerMsgType.PING.value, "timestamp": now_ms()})
            for conn in list(self._connections.values()):
                if not await self._send(conn, ping):
                    await self.unsubscribe(conn)

    # ── Health ──────────────────────────────────────────────────────────

    def health(self) -> BroadcastHealth:
        uptime_s = self._clock() - self._started_at
        return BroadcastHealth(
            active_connections=len(self._connections),
            total_connections=self._total_connected,
            total_disconnections=self._total_disconnected,
            messages_sent=self._messages_sent,
            send_errors=self._send_errors,
            uptime_ms=int(uptime_s * 1000),
            uptime_seconds=int(uptime_s),
        )

