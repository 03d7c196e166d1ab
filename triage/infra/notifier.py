import asyncio
import logging
from typing import Any, Final

from fastapi import WebSocket

from triage.domain.models import ProcessingOutcome
from triage.domain.ports import CompletionNotifier

logger = logging.getLogger(__name__)

EVENT_NAME: Final[str] = "ticket_processed"
_SEND_TIMEOUT_SECONDS: Final[float] = 2.0


class WebSocketNotifier(CompletionNotifier):
    """
    Best-effort broadcast of completion events to connected WebSocket observers.

    No persistence and no replay: observers that connect later miss earlier
    events, and a socket that fails a send is dropped.
    """

    def __init__(self, send_timeout: float = _SEND_TIMEOUT_SECONDS) -> None:
        self._connections: set[WebSocket] = set()
        self._send_timeout = send_timeout

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self._connections.add(websocket)
        logger.info("Observer connected (%d total)", len(self._connections))

    def disconnect(self, websocket: WebSocket) -> None:
        self._connections.discard(websocket)
        logger.info("Observer disconnected (%d total)", len(self._connections))

    async def publish(self, outcome: ProcessingOutcome) -> None:
        if not self._connections:
            return

        message = {"event": EVENT_NAME, "data": outcome.to_event()}
        # snapshot, observers may (dis)connect while we await
        targets = list(self._connections)
        results = await asyncio.gather(*(self._send(ws, message) for ws in targets))
        for ws, delivered in zip(targets, results):
            if not delivered:
                self.disconnect(ws)

    async def _send(self, websocket: WebSocket, message: dict[str, Any]) -> bool:
        try:
            await asyncio.wait_for(websocket.send_json(message), timeout=self._send_timeout)
            return True
        except Exception as e:
            logger.warning("Dropping observer after failed send: %s: %s", type(e).__name__, e)
            return False


class LoggingNotifier(CompletionNotifier):
    """Used by the standalone worker, which has no observers to talk to."""

    async def publish(self, outcome: ProcessingOutcome) -> None:
        logger.info("Ticket #%s finished with status %s", outcome.ticket_id, outcome.status.value)
