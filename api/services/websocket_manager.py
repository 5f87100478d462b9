"""
WebSocket Manager with sequence numbers and channel subscriptions.

Clients hold one connection and subscribe to channels named after
change types (e.g. "territory_control_changed", "prices_updated").
Every outgoing message carries a monotonically increasing sequence
number; a client that sees a gap sends RESYNC and receives a full
world snapshot.
"""

from datetime import datetime, timezone
from itertools import count
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from fastapi import WebSocket, WebSocketDisconnect
import structlog

logger = structlog.get_logger(__name__)

SnapshotProvider = Callable[[], Awaitable[dict]]


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class WebSocketClient:
    """Represents a connected WebSocket client."""

    def __init__(self, client_id: str, websocket: WebSocket):
        self.client_id = client_id
        self.websocket = websocket
        self.subscriptions: Set[str] = set()
        self.last_seq_sent = 0

    async def send(self, message: dict):
        try:
            await self.websocket.send_json(message)
            if "seq" in message:
                self.last_seq_sent = message["seq"]
        except Exception as e:
            logger.error("websocket_send_error", client_id=self.client_id, error=str(e))
            raise


class WebSocketManager:
    """
    Fans change notifications out to subscribed WebSocket clients.

    - Single global sequence counter
    - Last payload per channel is cached for late subscribers
    - A channel of "*" receives everything
    """

    WILDCARD = "*"

    def __init__(self, snapshot_provider: Optional[SnapshotProvider] = None):
        self.snapshot_provider = snapshot_provider
        self.clients: Dict[str, WebSocketClient] = {}
        self.sequence = 0
        self.last_broadcast_data: Dict[str, Any] = {}
        self._client_ids = count(1)
        logger.info("websocket_manager_initialized")

    def _next_seq(self) -> int:
        self.sequence += 1
        return self.sequence

    async def connect(self, websocket: WebSocket):
        """Accept a connection and serve it until it disconnects."""
        await websocket.accept()

        client_id = f"client_{next(self._client_ids)}"
        client = WebSocketClient(client_id, websocket)
        self.clients[client_id] = client

        logger.info("websocket_client_connected", client_id=client_id)

        await client.send({
            "type": "HANDSHAKE",
            "session_id": client_id,
            "server_time": _utc_now(),
            "seq": self.sequence,
        })

        try:
            while True:
                data = await websocket.receive_json()
                await self._handle_message(client, data)
        except WebSocketDisconnect:
            logger.info("websocket_client_disconnected", client_id=client_id)
        except Exception as e:
            logger.error("websocket_error", client_id=client_id, error=str(e))
        finally:
            self.clients.pop(client_id, None)

    async def _handle_message(self, client: WebSocketClient, data: dict):
        msg_type = data.get("type")

        if msg_type == "SUBSCRIBE":
            channels = data.get("channels", [])
            client.subscriptions.update(channels)
            logger.debug("client_subscribed", client_id=client.client_id, channels=channels)

            await client.send({
                "type": "SUBSCRIBED",
                "channels": sorted(client.subscriptions),
                "seq": self.sequence,
            })

            for channel in channels:
                if channel in self.last_broadcast_data:
                    await self._send_to_client(client, channel, self.last_broadcast_data[channel])

        elif msg_type == "UNSUBSCRIBE":
            channels = data.get("channels", [])
            client.subscriptions.difference_update(channels)
            logger.debug("client_unsubscribed", client_id=client.client_id, channels=channels)

        elif msg_type == "RESYNC":
            await self._send_snapshot(client)

        else:
            logger.warning("unknown_message_type", type=msg_type, client_id=client.client_id)

    async def _send_snapshot(self, client: WebSocketClient):
        """Send the full world snapshot to a client."""
        logger.info("sending_snapshot", client_id=client.client_id)

        snapshot: dict = {}
        if self.snapshot_provider is not None:
            try:
                snapshot = await self.snapshot_provider()
            except Exception as e:
                logger.error("snapshot_build_error", error=str(e))

        await client.send({
            "type": "SNAPSHOT",
            "seq": self._next_seq(),
            "ts": _utc_now(),
            "payload": snapshot,
        })

    async def broadcast(self, channel: str, payload: Any):
        """
        Send payload to every client subscribed to channel.

        Args:
            channel: Channel name, normally a change type value
            payload: JSON-serializable data
        """
        self.last_broadcast_data[channel] = payload

        if not self.clients:
            return

        message = {
            "type": "DATA",
            "seq": self._next_seq(),
            "ts": _utc_now(),
            "channel": channel,
            "payload": payload,
        }

        disconnected = []
        for client_id, client in list(self.clients.items()):
            if channel in client.subscriptions or self.WILDCARD in client.subscriptions:
                try:
                    await client.send(message)
                except Exception:
                    disconnected.append(client_id)

        for client_id in disconnected:
            self.clients.pop(client_id, None)
            logger.warning("client_removed_due_to_send_error", client_id=client_id)

    async def _send_to_client(self, client: WebSocketClient, channel: str, payload: Any):
        await client.send({
            "type": "DATA",
            "seq": self._next_seq(),
            "ts": _utc_now(),
            "channel": channel,
            "payload": payload,
        })

    async def close_all(self):
        """Close every open connection (used on shutdown)."""
        for client_id, client in list(self.clients.items()):
            try:
                await client.websocket.close()
            except Exception as e:
                logger.warning("websocket_close_error", client_id=client_id, error=str(e))
        self.clients.clear()
