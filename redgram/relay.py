"""
redgram.relay - WebSocket relay hub for RedGram

Holds the roster of registered profiles and fans every inbound event out to
all *other* connected clients. It has no notion of chats or recipients;
clients filter what they receive.

Environment variables:
    PORT              - Server port (default: 8080)
    REDGRAM_SETTINGS  - Path to a settings yaml (default: ./settings.local.yaml)
    REDGRAM_LOG_LEVEL - Log level (default: INFO)

Usage:
    redgram-relay
    redgram-relay --port 9000 --log-level DEBUG
"""

import argparse
import asyncio
import logging
import time
from collections import Counter
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional

from aiohttp import web, WSCloseCode, WSMsgType

from .protocol import (
    ClientEvent,
    MessageRead,
    MessageStatus,
    NewMessage,
    InitState,
    Presence,
    ProtocolError,
    ReadReceipt,
    Register,
    SendMessage,
    UserJoined,
    decode_client_event,
    encode,
)
from .roster import Roster
from .settings import (
    configure_logging,
    get_heartbeat,
    get_listen_host,
    get_listen_port,
    get_log_level,
    get_outbox_size,
    get_settings,
)

logger = logging.getLogger(__name__)


# === DATA STRUCTURES ===

class PeerState(str, Enum):
    CONNECTING = "CONNECTING"
    OPEN = "OPEN"
    CLOSED = "CLOSED"


@dataclass(eq=False)
class Peer:
    """One client connection and its outbound buffer."""
    ws: web.WebSocketResponse
    outbox: asyncio.Queue
    remote: str = "?"
    state: PeerState = PeerState.CONNECTING
    connected_at: float = field(default_factory=time.time)

    def push(self, frame: str) -> bool:
        """Queue a frame without waiting. False if the buffer is full."""
        try:
            self.outbox.put_nowait(frame)
        except asyncio.QueueFull:
            return False
        return True

    async def drain(self):
        """Write queued frames until the connection goes away."""
        while True:
            frame = await self.outbox.get()
            try:
                await self.ws.send_str(frame)
            except ConnectionError as e:
                logger.debug("Stopped writing to %s: %s", self.remote, e)
                return


class RelayHub:
    """Owns the roster and the set of open peers."""

    def __init__(self, outbox_size: int = 256, heartbeat: float = 30.0):
        self.outbox_size = outbox_size
        self.heartbeat = heartbeat
        self.roster = Roster()
        self.peers: list[Peer] = []
        self.received: Counter = Counter()
        self._closing: set[asyncio.Task] = set()  # eviction closes still in flight

    # --- connection lifecycle ---

    def open(self, peer: Peer):
        """Mark a peer open and queue its INIT_STATE snapshot."""
        peer.state = PeerState.OPEN
        self.peers.append(peer)
        peer.push(encode(InitState(tuple(self.roster.snapshot()))))
        logger.info("New client connected: %s (%d open)", peer.remote, len(self.peers))

    def close(self, peer: Peer):
        if peer.state is PeerState.CLOSED:
            return
        peer.state = PeerState.CLOSED
        if peer in self.peers:
            self.peers.remove(peer)
        logger.info("Client disconnected: %s (%d open)", peer.remote, len(self.peers))

    def _evict(self, peer: Peer):
        logger.warning("Dropping slow client %s: outbound buffer full", peer.remote)
        self.close(peer)
        task = asyncio.create_task(peer.ws.close(code=WSCloseCode.TRY_AGAIN_LATER, message=b"Slow consumer"))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    # --- event processing ---

    def handle_frame(self, peer: Peer, raw):
        """Decode and dispatch one inbound frame; malformed frames are dropped."""
        try:
            event = decode_client_event(raw)
        except ProtocolError as e:
            logger.warning("Invalid message from %s: %s", peer.remote, e)
            return
        self.received[event.TYPE] += 1
        self.dispatch(peer, event)

    def dispatch(self, peer: Peer, event: ClientEvent):
        if isinstance(event, Register):
            self.roster.upsert(event.profile)
            logger.info("User registered: %s", event.profile.username)
            self.broadcast(UserJoined(event.profile), exclude=peer)

        elif isinstance(event, SendMessage):
            message = replace(event.message, status=MessageStatus.SENT, sender="them")
            logger.info("Message from %s to %s", message.sender_id, message.chat_id)
            self.broadcast(NewMessage(message), exclude=peer)

        elif isinstance(event, ReadReceipt):
            logger.info("Messages read in chat %s by %s", event.chat_id, event.reader_id)
            self.broadcast(
                MessageRead(event.chat_id, event.message_ids, event.reader_id),
                exclude=peer,
            )

        elif isinstance(event, Presence):
            logger.debug("Presence from %s", event.user_id)

        else:
            raise TypeError(f"Unhandled client event: {event!r}")

    def broadcast(self, event, exclude: Optional[Peer] = None):
        """Queue one event for every open peer except `exclude`."""
        frame = encode(event)
        for peer in list(self.peers):
            if peer is exclude or peer.state is not PeerState.OPEN:
                continue
            if not peer.push(frame):
                self._evict(peer)

    # --- HTTP handlers ---

    async def handle_status(self, request: web.Request) -> web.Response:
        """Return relay status."""
        return web.json_response({
            "status": "ok",
            "connections": len(self.peers),
            "users": self.roster.usernames(),
            "received": dict(self.received),
        })

    async def handle_root(self, request: web.Request) -> web.StreamResponse:
        """Websocket upgrade on the bare URL, status otherwise."""
        if web.WebSocketResponse().can_prepare(request).ok:
            return await self.handle_websocket(request)
        return await self.handle_status(request)

    async def handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        """Handle WebSocket connections."""
        ws = web.WebSocketResponse(heartbeat=self.heartbeat)
        await ws.prepare(request)

        peer = Peer(ws=ws, outbox=asyncio.Queue(self.outbox_size), remote=request.remote or "?")
        self.open(peer)
        writer = asyncio.create_task(peer.drain())

        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    self.handle_frame(peer, msg.data)
                elif msg.type == WSMsgType.BINARY:
                    logger.warning("Discarding binary frame from %s", peer.remote)
                elif msg.type == WSMsgType.ERROR:
                    logger.warning("WebSocket error from %s: %s", peer.remote, ws.exception())
        finally:
            self.close(peer)
            writer.cancel()

        return ws

    async def shutdown(self, app: web.Application):
        for peer in list(self.peers):
            await peer.ws.close(code=WSCloseCode.GOING_AWAY, message=b"Server shutdown")


HUB_KEY = web.AppKey("hub", RelayHub)


# === APP ===

def create_app(conf: Optional[dict] = None, hub: Optional[RelayHub] = None) -> web.Application:
    """Create aiohttp application."""
    conf = conf or get_settings()
    hub = hub or RelayHub(outbox_size=get_outbox_size(conf), heartbeat=get_heartbeat(conf))

    app = web.Application()
    app[HUB_KEY] = hub

    app.router.add_get("/", hub.handle_root)
    app.router.add_get("/ws", hub.handle_websocket)
    app.router.add_get("/status", hub.handle_status)
    app.on_shutdown.append(hub.shutdown)

    return app


def main(argv=None):
    """Run the relay server."""
    ap = argparse.ArgumentParser(description="RedGram relay server")
    ap.add_argument("--host", help="Listen address (default 0.0.0.0)")
    ap.add_argument("--port", type=int, help="Listen port (default $PORT or 8080)")
    ap.add_argument("--settings", help="Path to settings yaml")
    ap.add_argument("--log-level", help="DEBUG, INFO, WARNING, ...")
    args = ap.parse_args(argv)

    conf = get_settings(args.settings)
    configure_logging(args.log_level or get_log_level(conf))

    host = args.host or get_listen_host(conf)
    port = args.port or get_listen_port(conf)

    app = create_app(conf)
    logger.info("RedGram relay starting on %s:%d", host, port)
    web.run_app(app, host=host, port=port, print=None)


if __name__ == "__main__":
    main()
