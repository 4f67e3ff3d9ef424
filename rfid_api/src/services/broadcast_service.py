"""
Live feed broadcaster.

Tracks the WebSocket clients connected to the live feed and pushes named
events to all of them. Broadcasts are instantaneous only: nothing is stored
and clients that connect later see nothing that was sent before.
"""

from typing import Any, Dict, Optional, Set

from fastapi import WebSocket, WebSocketDisconnect

from shared.logging import get_logger
from shared.metrics import ScanMetrics

logger = get_logger(__name__)


class LiveFeedBroadcaster:
    """Fans events out to connected live feed clients."""

    def __init__(self, metrics: Optional[ScanMetrics] = None):
        self._clients: Set[WebSocket] = set()
        self.metrics = metrics

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def connect(self, websocket: WebSocket) -> None:
        """Accept a client and start sending it events."""
        await websocket.accept()
        self._clients.add(websocket)
        self._update_gauge()
        logger.info("live_feed_client_connected", clients=self.client_count)

    def disconnect(self, websocket: WebSocket) -> None:
        """Stop sending events to a client."""
        if websocket in self._clients:
            self._clients.discard(websocket)
            self._update_gauge()
            logger.info("live_feed_client_disconnected", clients=self.client_count)

    async def broadcast(self, event: str, data: Dict[str, Any]) -> int:
        """
        Send one event to every connected client.

        Clients whose connection fails are dropped.

        Args:
            event: Event name
            data: JSON-serializable payload

        Returns:
            Number of clients the event was delivered to
        """
        message = {"event": event, "data": data}
        delivered = 0

        for websocket in list(self._clients):
            try:
                await websocket.send_json(message)
                delivered += 1
            except (WebSocketDisconnect, RuntimeError, OSError) as e:
                logger.warning(
                    "live_feed_delivery_failed",
                    live_event=event,
                    error=str(e) or type(e).__name__
                )
                self.disconnect(websocket)

        if self.metrics is not None:
            self.metrics.live_feed_events.labels(event=event).inc()

        logger.debug("live_feed_event_broadcast", live_event=event, delivered=delivered)
        return delivered

    async def close(self) -> None:
        """Close every client connection."""
        for websocket in list(self._clients):
            try:
                await websocket.close()
            except (RuntimeError, OSError) as e:
                logger.debug("live_feed_close_failed", error=str(e))
        self._clients.clear()
        self._update_gauge()

    def _update_gauge(self) -> None:
        if self.metrics is not None:
            self.metrics.live_feed_clients.set(self.client_count)
