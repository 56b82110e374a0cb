"""
Connection supervisor.

One supervisor owns one session's connection lifecycle:

    idle -> connecting -> open
    connecting | open -> closed -> connecting   (transient close, reconnect)
                                -> stopped      (logged out, or stop())

A single task per session consumes the connection's event queue in order.
Credential updates are persisted and the session directory is re-archived
before the next event is looked at. Reconnecting is a loop iteration, so any
number of reconnects keeps a constant stack depth.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

from pair_app.config import settings
from pair_app.core.exceptions import BridgeError, ConnectionClosed, IOFailure
from pair_app.core.log import log, error_log
from pair_app.models.session import ConnectionState, Session, is_terminal_close
from pair_app.services.archiver import apack
from pair_app.services.auth_state import AuthState, load_auth_state
from pair_app.services.whatsapp_bridge import BridgeConnection, BridgeEvent, CONNECTION_UPDATE, CREDS_UPDATE

# Caps 2 ** n; 2 ** 30 seconds is already decades
MAX_BACKOFF_EXPONENT = 30


class WhatsAppClient(Protocol):
    async def open_connection(self, session_id: str, auth_state: AuthState) -> BridgeConnection:
        ...


class SessionCache:
    """Per-session record of recent connection activity"""

    def __init__(self):
        self.last_disconnect: Optional[Dict[str, Any]] = None

    def record(self, event: BridgeEvent):
        if event.type == CONNECTION_UPDATE and event.connection == "close":
            self.last_disconnect = {
                "status_code": event.status_code,
                "reason": event.reason,
                "at": datetime.now(timezone.utc).isoformat()
            }


class ConnectionSupervisor:
    def __init__(
        self,
        session: Session,
        client: WhatsAppClient,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        archive: Callable[..., Awaitable[Any]] = apack,
        load_state: Callable[..., Awaitable[Any]] = load_auth_state,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None
    ):
        self.session = session
        self.client = client
        self.sleep = sleep
        self.archive = archive
        self.load_state = load_state
        self.base_delay = settings.reconnect_base_delay if base_delay is None else base_delay
        self.max_delay = settings.reconnect_max_delay if max_delay is None else max_delay

        self.state = ConnectionState.IDLE
        self.connection: Optional[BridgeConnection] = None
        self.auth_state: Optional[AuthState] = None
        self.persist: Optional[Callable[[], Awaitable[None]]] = None
        self.cache: Optional[SessionCache] = None
        self.awaiting_pairing = False
        self.failed_reconnects = 0

        self._task: Optional[asyncio.Task] = None
        self._ready = asyncio.Event()
        self._stopping = False

    @property
    def session_id(self) -> str:
        return self.session.session_id

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _set_state(self, state: ConnectionState):
        self.state = state
        self.session.connection_state = state

    # ==================== LIFECYCLE ====================

    async def start(self) -> Optional[BridgeConnection]:
        """Open the first connection and start the supervising task"""
        if self._task is not None:
            return self.connection

        self.cache = SessionCache()
        await self._try_open()
        self._task = asyncio.create_task(self._run(), name=f"supervisor:{self.session_id}")
        return self.connection

    async def stop(self):
        """Stop supervising: close the connection, no further reconnects"""
        self._stopping = True
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if self.connection is not None:
            try:
                await self.connection.close()
            finally:
                self.connection = None

        self._finish()

    def _finish(self):
        if self.state != ConnectionState.STOPPED:
            log("SUPERVISOR", f"Session {self.session_id} stopped")
        self._set_state(ConnectionState.STOPPED)
        self.cache = None
        self._ready.set()

    async def _try_open(self) -> bool:
        self._set_state(ConnectionState.CONNECTING)
        self._ready.clear()
        self.awaiting_pairing = False
        try:
            self.auth_state, self.persist = await self.load_state(self.session.directory_path)
            self.session.registered = self.auth_state.registered
            self.connection = await self.client.open_connection(self.session_id, self.auth_state)
        except Exception as e:
            error_log("SUPERVISOR", f"Could not open connection for {self.session_id}: {e}")
            self.connection = None
            self._set_state(ConnectionState.CLOSED)
            return False
        return True

    async def _backoff(self):
        exponent = min(self.failed_reconnects, MAX_BACKOFF_EXPONENT)
        delay = min(self.base_delay * (2 ** exponent), self.max_delay)
        self.failed_reconnects += 1
        if delay > 0:
            log("SUPERVISOR", f"Reconnecting {self.session_id} in {delay:.1f}s")
        await self.sleep(delay)

    async def _run(self):
        try:
            while not self._stopping:
                if self.connection is None:
                    await self._backoff()
                    await self._try_open()
                    continue

                event = await self.connection.events.get()
                try:
                    closed = await self.handle_event(event)
                except Exception as e:
                    error_log("SUPERVISOR", f"Error handling {event.type} for {self.session_id}: {e}")
                    continue
                if closed is None:
                    continue

                self.connection.detach()
                self.connection = None
                if closed.terminal:
                    error_log("SUPERVISOR", f"Connection closed for {self.session_id}. Logged out, not reconnecting")
                    break
                error_log("SUPERVISOR", f"Connection closed for {self.session_id}. Reconnecting: True ({closed.status_code})")
        finally:
            if not self._stopping:
                self._finish()

    # ==================== EVENTS ====================

    async def handle_event(self, event: BridgeEvent) -> Optional[ConnectionClosed]:
        """Process one event. Returns the classified close when the connection ended."""
        if self.cache is not None:
            self.cache.record(event)

        if event.type == CREDS_UPDATE:
            await self._on_creds_update(event)
            return None

        if event.type == CONNECTION_UPDATE:
            return self._on_connection_update(event)

        log("SUPERVISOR", f"Ignoring unknown event {event.type!r} for {self.session_id}")
        return None

    async def _on_creds_update(self, event: BridgeEvent):
        self.auth_state.apply_update(creds=event.creds, keys=event.keys)
        try:
            await self.persist()
            await self.archive(self.session.directory_path, self.session.archive_path)
        except (IOFailure, OSError) as e:
            error_log("SUPERVISOR", f"Failed to save session {self.session_id}: {e}")
            return
        log("SUPERVISOR", f"Session saved and zipped for {self.session_id}")

    def _on_connection_update(self, event: BridgeEvent) -> Optional[ConnectionClosed]:
        if event.connection == "close":
            self._set_state(ConnectionState.CLOSED)
            self._ready.clear()
            self.awaiting_pairing = False
            return ConnectionClosed(
                event.status_code,
                terminal=is_terminal_close(event.status_code),
                reason=event.reason
            )

        if event.connection == "open":
            self._set_state(ConnectionState.OPEN)
            self.session.registered = self.auth_state.registered
            self.session.last_connected_at = datetime.now(timezone.utc)
            self.failed_reconnects = 0
            self.awaiting_pairing = False
            self._ready.set()
            log("SUPERVISOR", f"Successfully connected for session {self.session_id}")
        elif event.connection == "connecting":
            self._set_state(ConnectionState.CONNECTING)

        if event.qr and self.state == ConnectionState.CONNECTING:
            self.awaiting_pairing = True
            self._ready.set()

        return None

    # ==================== PAIRING ====================

    async def wait_ready(self, timeout: Optional[float] = None):
        """Wait until the connection is open or waiting to be paired"""
        if self.state == ConnectionState.STOPPED:
            raise ConnectionClosed(None, terminal=True, reason="stopped")
        await asyncio.wait_for(self._ready.wait(), timeout)
        if self.state == ConnectionState.STOPPED:
            raise ConnectionClosed(None, terminal=True, reason="stopped")

    async def request_pairing_code(self, phone_number: str) -> str:
        if self.connection is None:
            raise BridgeError(f"No active connection for {self.session_id}")
        return await self.connection.request_pairing_code(phone_number)
