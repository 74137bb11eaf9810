"""
WebSocket client for the token-launch feed.

Features:
    - Explicit connection state machine with a transition table
    - Auto-reconnect with exponential backoff and an attempt ceiling
    - Sticky manual disconnect (suppresses reconnect until connect())
    - Pending outbound queue flushed on open
    - Fan-out of accepted events to isolated subscriber callbacks

The connection also owns the set of mints it believes are subscribed for
trades. The SubscriptionManager reads and updates that set after each
batched send.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

import websockets
from websockets.exceptions import (
    ConnectionClosed,
    ConnectionClosedError,
    ConnectionClosedOK,
)

from pumpwatch.storage.models import AppSettings

from .models import (
    CreatedEvent,
    DomainEvent,
    MalformedEventError,
    ReceiptClock,
    SubscriptionMethod,
    TradeEvent,
    UnrecognizedEvent,
    build_message,
    parse_event,
)

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    """Feed connection state."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    ERRORED = "errored"


TRANSITIONS: dict[ConnectionState, frozenset[ConnectionState]] = {
    ConnectionState.DISCONNECTED: frozenset({ConnectionState.CONNECTING}),
    ConnectionState.CONNECTING: frozenset(
        {ConnectionState.OPEN, ConnectionState.ERRORED, ConnectionState.CLOSING}
    ),
    ConnectionState.OPEN: frozenset({ConnectionState.CLOSING, ConnectionState.ERRORED}),
    ConnectionState.CLOSING: frozenset({ConnectionState.DISCONNECTED}),
    ConnectionState.ERRORED: frozenset({ConnectionState.DISCONNECTED}),
}


# Type aliases for callbacks
EventHandler = Callable[[DomainEvent], Awaitable[bool]]
EventCallback = Callable[[DomainEvent], Union[None, Awaitable[None]]]
RestoreHook = Callable[[], Awaitable[Any]]
Connector = Callable[[str], Awaitable[Any]]
Sleeper = Callable[[float], Awaitable[None]]


def _describe(event: DomainEvent) -> str:
    if isinstance(event, (CreatedEvent, TradeEvent)):
        return f"{event.kind} {event.mint}"
    return f"unrecognized '{event.kind}'"


class FeedConnection:
    """
    Resilient WebSocket client for the launch feed.

    Usage:
        conn = FeedConnection(settings=AppSettings(), handler=processor.process)
        conn.subscribe(on_event)
        await conn.connect()

        await conn.send(build_message(SubscriptionMethod.SUBSCRIBE_TOKEN_TRADE, [mint]))

        # ... later
        await conn.disconnect()

    Reconnect delays grow as base x 2^attempt, with the counter incremented
    before each delay. Once ``max_reconnect_attempts`` reconnects have been
    scheduled without reaching OPEN, the client stays disconnected.
    """

    WS_URL = "wss://pumpportal.fun/api/data"

    def __init__(
        self,
        settings: Optional[AppSettings] = None,
        handler: Optional[EventHandler] = None,
        url: Optional[str] = None,
        reconnect_base_delay: float = 1.0,
        max_reconnect_attempts: int = 5,
        connector: Optional[Connector] = None,
        sleep: Optional[Sleeper] = None,
        clock: Optional[ReceiptClock] = None,
    ) -> None:
        """
        Initialize the feed client.

        Args:
            settings: Live user settings (auto_resubscribe is read on open)
            handler: Persists each parsed event; returns True if accepted
            url: Optional WebSocket URL override
            reconnect_base_delay: Base of the exponential backoff, seconds
            max_reconnect_attempts: Reconnects to schedule before giving up
            connector: Opens a transport for a URL (defaults to websockets.connect)
            sleep: Awaitable delay used between reconnect attempts
            clock: Receipt clock stamping parsed events
        """
        self._settings = settings or AppSettings()
        self._handler = handler
        self._url = url or self.WS_URL
        self._base_delay = reconnect_base_delay
        self._max_attempts = max_reconnect_attempts
        self._connector = connector or websockets.connect
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or ReceiptClock()

        # Connection state
        self._state = ConnectionState.DISCONNECTED
        self._ws: Any = None
        self._manual_disconnect = False
        self._active: set[str] = set()
        self._pending: list[str] = []

        # Reconnection state
        self._reconnect_attempts = 0
        self._reconnect_task: Optional[asyncio.Task] = None
        self._receive_task: Optional[asyncio.Task] = None

        self._subscribers: list[EventCallback] = []
        self._restore_hook: Optional[RestoreHook] = None
        self._last_message_at: Optional[int] = None

    # -------------------------------------------------------------------------
    # Diagnostics
    # -------------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def is_open(self) -> bool:
        """Whether the transport is open."""
        return self._state == ConnectionState.OPEN

    @property
    def reconnect_attempts(self) -> int:
        """Reconnects scheduled since the last successful open."""
        return self._reconnect_attempts

    @property
    def active_subscriptions(self) -> frozenset[str]:
        """Mints currently believed subscribed for trades."""
        return frozenset(self._active)

    @property
    def last_message_at(self) -> Optional[int]:
        """Epoch ms of the last received frame."""
        return self._last_message_at

    @property
    def manually_disconnected(self) -> bool:
        return self._manual_disconnect

    @property
    def url(self) -> str:
        return self._url

    # -------------------------------------------------------------------------
    # Wiring
    # -------------------------------------------------------------------------

    def set_handler(self, handler: Optional[EventHandler]) -> None:
        self._handler = handler

    def set_restore_hook(self, hook: Optional[RestoreHook]) -> None:
        """Register the coroutine that re-queues subscriptions on open."""
        self._restore_hook = hook

    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        """
        Register a callback for accepted events.

        Callbacks may be plain functions or coroutines. Returns a function
        that removes the callback.
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    # -------------------------------------------------------------------------
    # Active subscription set
    # -------------------------------------------------------------------------

    def is_active(self, mint: str) -> bool:
        return mint in self._active

    def mark_active(self, mints: Iterable[str]) -> None:
        self._active.update(mints)

    def mark_inactive(self, mints: Iterable[str]) -> None:
        self._active.difference_update(mints)

    def clear_active(self) -> None:
        self._active.clear()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def _set_state(self, state: ConnectionState) -> bool:
        """Apply a transition if the table allows it."""
        if state == self._state:
            return True
        if state not in TRANSITIONS[self._state]:
            logger.warning(
                f"Refusing illegal connection transition: "
                f"{self._state.value} -> {state.value}"
            )
            return False
        old_state = self._state
        self._state = state
        logger.info(f"Feed connection: {old_state.value} -> {state.value}")
        return True

    async def connect(self) -> None:
        """
        Open the feed connection.

        Clears a previous manual disconnect. No-op while already open or
        connecting.
        """
        self._manual_disconnect = False
        if self._state in (ConnectionState.OPEN, ConnectionState.CONNECTING):
            return
        self._cancel_reconnect()
        await self._open()

    async def disconnect(self) -> None:
        """
        Close the connection and stay closed.

        Cancels any pending reconnect, clears the active subscription set
        and drops queued outbound messages.
        """
        self._manual_disconnect = True
        self._cancel_reconnect()

        task = self._receive_task
        self._receive_task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        ws = self._ws
        self._ws = None
        if self._state != ConnectionState.DISCONNECTED:
            self._set_state(ConnectionState.CLOSING)
            if ws is not None:
                try:
                    await ws.close()
                except Exception as e:
                    logger.warning(f"Error closing feed connection: {e}")
            self._set_state(ConnectionState.DISCONNECTED)

        self._active.clear()
        self._pending.clear()
        logger.info("Feed connection closed by user")

    def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def _open(self) -> None:
        """Establish the transport and run the on-open sequence."""
        if not self._set_state(ConnectionState.CONNECTING):
            return

        try:
            ws = await self._connector(self._url)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Failed to connect to {self._url}: {e}")
            if self._state == ConnectionState.CONNECTING:
                self._set_state(ConnectionState.ERRORED)
                self._set_state(ConnectionState.DISCONNECTED)
                self._schedule_reconnect()
            return

        # disconnect() ran while the handshake was in flight
        if self._manual_disconnect or self._state != ConnectionState.CONNECTING:
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f"Error closing abandoned connection: {e}")
            return

        self._ws = ws
        self._set_state(ConnectionState.OPEN)
        self._reconnect_attempts = 0
        logger.info(f"Connected to {self._url}")

        await self._write(build_message(SubscriptionMethod.SUBSCRIBE_NEW_TOKEN))
        await self._flush_pending()

        if self._settings.auto_resubscribe and self._restore_hook is not None:
            try:
                await self._restore_hook()
            except Exception as e:
                logger.error(f"Failed to restore subscriptions: {e}")

        self._receive_task = asyncio.create_task(
            self._receive_loop(ws), name="feed_receive"
        )

    async def _receive_loop(self, ws: Any) -> None:
        """Read frames until the transport closes."""
        errored = False
        try:
            while True:
                message = await ws.recv()
                self._last_message_at = int(time.time() * 1000)
                await self._handle_message(message)

        except ConnectionClosedOK:
            logger.info("Feed connection closed normally")

        except ConnectionClosedError as e:
            logger.warning(f"Feed connection closed with error: {e}")
            errored = True

        except ConnectionClosed as e:
            logger.warning(f"Feed connection closed: {e}")

        except asyncio.CancelledError:
            logger.debug("Receive loop cancelled")
            raise

        except Exception as e:
            logger.error(f"Error in receive loop: {e}")
            errored = True

        if self._ws is not ws:
            return
        self._ws = None
        self._receive_task = None
        self._set_state(ConnectionState.ERRORED if errored else ConnectionState.CLOSING)
        self._set_state(ConnectionState.DISCONNECTED)

        # A new transport starts with no per-token subscriptions
        self._active.clear()

        if not self._manual_disconnect:
            self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        """Schedule the next reconnect with exponential backoff."""
        if self._manual_disconnect:
            return

        if self._reconnect_attempts >= self._max_attempts:
            logger.error(
                f"Giving up on {self._url} after {self._reconnect_attempts} reconnect attempts"
            )
            return

        self._reconnect_attempts += 1
        delay = self._base_delay * (2 ** self._reconnect_attempts)
        logger.info(
            f"Reconnecting in {delay:.1f}s (attempt #{self._reconnect_attempts})..."
        )
        self._reconnect_task = asyncio.create_task(
            self._reconnect_after(delay), name="feed_reconnect"
        )

    async def _reconnect_after(self, delay: float) -> None:
        await self._sleep(delay)
        if self._manual_disconnect or self._state != ConnectionState.DISCONNECTED:
            return
        await self._open()

    # -------------------------------------------------------------------------
    # Outbound
    # -------------------------------------------------------------------------

    async def send(self, message: dict[str, Any]) -> bool:
        """
        Send a message to the feed.

        When the connection is not open the message is queued (once) and
        flushed on the next open. Transport errors are logged, not raised.
        Returns True only if the message was written to an open transport.
        """
        if self.is_open and self._ws is not None:
            return await self._write(message)

        encoded = json.dumps(message, sort_keys=True)
        if encoded not in self._pending:
            self._pending.append(encoded)
            logger.debug(f"Queued outbound message until open: {encoded}")
        return False

    async def _write(self, message: Union[dict[str, Any], str]) -> bool:
        ws = self._ws
        if ws is None:
            return False
        payload = message if isinstance(message, str) else json.dumps(message)
        try:
            await ws.send(payload)
            return True
        except Exception as e:
            logger.error(f"Failed to send message: {e}")
            return False

    async def _flush_pending(self) -> None:
        pending = self._pending
        self._pending = []
        for encoded in pending:
            if not await self._write(encoded):
                self._pending.append(encoded)

    async def subscribe_accounts(self, keys: Iterable[str]) -> bool:
        """Subscribe to trades made by the given accounts."""
        return await self.send(
            build_message(SubscriptionMethod.SUBSCRIBE_ACCOUNT_TRADE, keys)
        )

    async def unsubscribe_accounts(self, keys: Iterable[str]) -> bool:
        """Stop receiving trades for the given accounts."""
        return await self.send(
            build_message(SubscriptionMethod.UNSUBSCRIBE_ACCOUNT_TRADE, keys)
        )

    # -------------------------------------------------------------------------
    # Inbound
    # -------------------------------------------------------------------------

    async def _handle_message(self, raw_message: Union[str, bytes]) -> None:
        """Parse a frame and dispatch every event in it."""
        try:
            data = json.loads(raw_message)
        except (json.JSONDecodeError, TypeError, UnicodeDecodeError) as e:
            logger.warning(f"Discarding malformed frame: {e}")
            return

        items = data if isinstance(data, list) else [data]
        for item in items:
            if not isinstance(item, dict):
                logger.warning(f"Discarding non-object frame element: {str(item)[:200]}")
                continue
            try:
                event = parse_event(item, self._clock.now())
            except MalformedEventError as e:
                logger.warning(f"Discarding malformed event: {e}")
                continue
            await self._dispatch(event)

    async def _dispatch(self, event: DomainEvent) -> None:
        """Persist an event, then fan it out to subscribers if accepted."""
        if isinstance(event, UnrecognizedEvent):
            logger.debug(f"Unrecognized frame '{event.kind}': {str(event.payload)[:200]}")
            return

        if self._handler is not None:
            try:
                accepted = await self._handler(event)
            except Exception as e:
                logger.error(f"Failed to process {_describe(event)}: {e}")
                return
            if not accepted:
                return

        for callback in list(self._subscribers):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Error in event callback for {_describe(event)}: {e}")
