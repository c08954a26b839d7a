"""
redgram.agent - Client side of the RedGram relay

A ChatAgent owns one websocket connection to the relay, keeps a cached copy
of the roster, and republishes relay traffic as local events to whatever
subscribed (normally the chat UI).

    agent = ChatAgent("ws://localhost:8080")
    agent.subscribe(print)
    agent.start()
    agent.register(Profile(id="u1", username="alice", name="Alice"))
    agent.send_message("bob", "hi", recipient_id="u2")

Nothing here blocks on the network. Outgoing frames are queued on the live
connection, or dropped if there is none. After a disconnect the agent retries
every `reconnect_interval` seconds and re-announces itself once connected.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, ClassVar, Optional, Union

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from .protocol import (
    ChatMessage,
    InitState,
    MessageRead,
    MessageStatus,
    NewMessage,
    Presence,
    Profile,
    ProtocolError,
    ReadReceipt,
    Register,
    SendMessage,
    UserJoined,
    decode_hub_event,
    encode,
)
from .roster import Roster
from .settings import get_reconnect_interval, get_relay_url

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"


# === LOCAL EVENTS ===

@dataclass(frozen=True)
class UserSync:
    """Full roster as the relay saw it when we connected."""
    TYPE: ClassVar[str] = "USER_SYNC"
    users: tuple


@dataclass(frozen=True)
class StatusChanged:
    TYPE: ClassVar[str] = "STATUS"
    status: ConnectionState


# USER_JOINED, NEW_MESSAGE and MESSAGE_READ reach listeners as the wire
# event objects themselves.
LocalEvent = Union[UserSync, UserJoined, NewMessage, MessageRead, StatusChanged]
Listener = Callable[[LocalEvent], None]


class Subscription:
    """Handle returned by ChatAgent.subscribe; cancel() or exit to unsubscribe."""

    def __init__(self, agent: "ChatAgent", listener: Listener):
        self._agent = agent
        self.listener = listener

    @property
    def active(self) -> bool:
        return self.listener in self._agent._listeners

    def cancel(self):
        if self.active:
            self._agent._listeners.remove(self.listener)

    def __call__(self):
        self.cancel()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.cancel()


class ChatAgent:
    """One client's connection to the relay."""

    def __init__(self, url: Optional[str] = None, reconnect_interval: Optional[float] = None,
                 conf: Optional[dict] = None):
        self.url = url or get_relay_url(conf)
        if reconnect_interval is None:
            reconnect_interval = get_reconnect_interval(conf)
        self.reconnect_interval = reconnect_interval

        self.user_id: Optional[str] = None
        self.profile: Optional[Profile] = None
        self.roster = Roster()
        self.state = ConnectionState.DISCONNECTED

        self._listeners: list[Listener] = []
        self._outbox: Optional[asyncio.Queue] = None
        self._task: Optional[asyncio.Task] = None
        self._closed = False
        self._last_id = 0

    @property
    def connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    # --- lifecycle ---

    def start(self) -> asyncio.Task:
        """Begin connecting. Calling again while already running does nothing."""
        if self._task is not None and not self._task.done():
            return self._task
        self._closed = False
        self._task = asyncio.create_task(self._run())
        return self._task

    async def close(self):
        """Close the connection and stop retrying."""
        self._closed = True
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def __aenter__(self):
        self.start()
        return self

    async def __aexit__(self, *exc):
        await self.close()

    async def _run(self):
        while not self._closed:
            self._set_state(ConnectionState.CONNECTING)
            try:
                async with websockets.connect(self.url) as ws:
                    await self._serve(ws)
            except (OSError, asyncio.TimeoutError, WebSocketException) as e:
                logger.warning("Relay connection to %s failed: %s", self.url, e)
            finally:
                self._outbox = None
                self._set_state(ConnectionState.DISCONNECTED)

            if self._closed:
                break
            logger.info("Disconnected. Retrying in %ss...", self.reconnect_interval)
            await asyncio.sleep(self.reconnect_interval)

    async def _serve(self, ws):
        outbox: asyncio.Queue = asyncio.Queue()
        self._outbox = outbox
        writer = asyncio.create_task(self._pump(ws, outbox))
        try:
            self.state = ConnectionState.CONNECTED
            logger.info("Connected to RedGram relay at %s", self.url)
            self._announce()
            self._notify(StatusChanged(ConnectionState.CONNECTED))

            async for raw in ws:
                self.feed(raw)
        finally:
            self._outbox = None
            writer.cancel()

    async def _pump(self, ws, outbox: asyncio.Queue):
        while True:
            frame = await outbox.get()
            try:
                await ws.send(frame)
            except ConnectionClosed:
                return

    def _announce(self):
        # Every (re)connect repeats the latest registration.
        if self.profile is not None:
            self._transmit(Register(self.profile))
        elif self.user_id:
            self._transmit(Presence(self.user_id))

    def _set_state(self, state: ConnectionState):
        if state is self.state:
            return
        self.state = state
        self._notify(StatusChanged(state))

    # --- inbound ---

    def feed(self, raw):
        """Process one frame received from the relay."""
        try:
            event = decode_hub_event(raw)
        except ProtocolError as e:
            logger.warning("Failed to parse relay message: %s", e)
            return

        if isinstance(event, InitState):
            self.roster.replace(event.users)
            self._notify(UserSync(event.users))
        elif isinstance(event, UserJoined):
            self.roster.upsert(event.profile)
            if event.profile.id != self.user_id:
                self._notify(event)
        elif isinstance(event, (NewMessage, MessageRead)):
            self._notify(event)
        else:
            raise TypeError(f"Unhandled relay event: {event!r}")

    # --- local bus ---

    def subscribe(self, listener: Listener) -> Subscription:
        self._listeners.append(listener)
        return Subscription(self, listener)

    def _notify(self, event: LocalEvent):
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Listener failed on %s event", event.TYPE)

    # --- outbound ---

    def _transmit(self, event) -> bool:
        if self.state is not ConnectionState.CONNECTED or self._outbox is None:
            logger.debug("Not connected, dropping %s", event.TYPE)
            return False
        self._outbox.put_nowait(encode(event))
        return True

    def _next_message_id(self) -> str:
        self._last_id = max(int(time.time() * 1000), self._last_id + 1)
        return str(self._last_id)

    def set_user_id(self, user_id: str):
        """Set a bare identity before a full profile exists."""
        self.user_id = user_id

    def announce_presence(self):
        if self.user_id:
            self._transmit(Presence(self.user_id))

    def register(self, profile: Profile):
        """Remember our profile and announce it if connected."""
        self.user_id = profile.id
        self.profile = profile
        self._transmit(Register(profile))

    def send_message(self, chat_id: str, text: str, recipient_id: Optional[str] = None,
                     is_group: bool = False) -> ChatMessage:
        """Echo a new message locally, then hand it to the relay if connected.

        Direct messages travel with chat_id set to the recipient's id so the
        receiving side can match them to its own chat with us.
        """
        message = ChatMessage(
            id=self._next_message_id(),
            chat_id=chat_id,
            text=text,
            sender_id=self.user_id or "me",
            timestamp=int(time.time() * 1000),
            status=MessageStatus.SENT,
            sender="me",
        )

        self._notify(NewMessage(message))

        routed_to = chat_id if is_group else (recipient_id or chat_id)
        outgoing = replace(message, chat_id=routed_to, sender_id=self.user_id)
        self._transmit(SendMessage(outgoing, is_group=is_group))
        return message

    def send_read_receipt(self, chat_id: str, message_ids):
        self._transmit(ReadReceipt(chat_id, tuple(message_ids), self.user_id))
