"""
Godot Connection - Manages the WebSocket link to the Godot avatar scene.

This module owns the socket lifecycle and the request/response correlation
on top of it, keeping the transport concerns away from the MCP tool layer.

Features:
- Explicit connection state machine (disconnected/connecting/open/closing)
- Sequential connect retries with a bounded wait per attempt
- Command ID tracking for correlating asynchronous responses
- Per-command timeouts, purge of pending commands on disconnect

Everything runs on a single asyncio event loop. The pending command table
and the connection state are only touched from coroutines and callbacks on
that loop, so no locking is needed around them.
"""

import asyncio
import itertools
import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

from websockets.asyncio.client import ClientConnection
from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed
from websockets.protocol import State

from .config import DEFAULT_SERVER_URL, EndpointAddress, RetryPolicy
from .logger import log_connection

logger = logging.getLogger(__name__)


class BridgeError(Exception):
    """Base class for errors raised by the Godot connection."""

    pass


class ConnectionFailed(BridgeError):
    """Raised when the socket could not be opened after exhausting retries."""

    def __init__(self, message: str, attempts: int = 0, last_error: Optional[BaseException] = None):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class CommandTimeout(BridgeError, TimeoutError):
    """Raised when a command's response did not arrive in time."""

    def __init__(self, command_id: str, kind: str, timeout: float):
        super().__init__(f"Command timed out: {kind} ({command_id}) after {timeout}s")
        self.command_id = command_id
        self.kind = kind
        self.timeout = timeout


class RemoteError(BridgeError):
    """Raised when Godot reports a command failure."""

    pass


class ConnectionLost(BridgeError):
    """Raised when the link drops while a command is outstanding."""

    pass


class MalformedMessage(BridgeError):
    """Incoming data that is not a JSON object. Never surfaced to callers."""

    pass


class ConnectionState(str, Enum):
    """Connection state."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"


class ConnectionEvent(str, Enum):
    """Events driving connection state transitions."""

    CONNECT_REQUESTED = "connect_requested"
    OPENED = "opened"
    ATTEMPT_FAILED = "attempt_failed"
    GAVE_UP = "gave_up"
    CLOSE_REQUESTED = "close_requested"
    CLOSED = "closed"


_S = ConnectionState
_E = ConnectionEvent

# Every (state, event) pair is listed. Mapping to the same state means the event is ignored.
TRANSITIONS: Dict[ConnectionState, Dict[ConnectionEvent, ConnectionState]] = {
    _S.DISCONNECTED: {
        _E.CONNECT_REQUESTED: _S.CONNECTING,
        _E.OPENED: _S.DISCONNECTED,
        _E.ATTEMPT_FAILED: _S.DISCONNECTED,
        _E.GAVE_UP: _S.DISCONNECTED,
        _E.CLOSE_REQUESTED: _S.DISCONNECTED,
        _E.CLOSED: _S.DISCONNECTED,
    },
    _S.CONNECTING: {
        _E.CONNECT_REQUESTED: _S.CONNECTING,
        _E.OPENED: _S.OPEN,
        _E.ATTEMPT_FAILED: _S.CONNECTING,
        _E.GAVE_UP: _S.DISCONNECTED,
        _E.CLOSE_REQUESTED: _S.CLOSING,
        _E.CLOSED: _S.DISCONNECTED,
    },
    _S.OPEN: {
        _E.CONNECT_REQUESTED: _S.OPEN,
        _E.OPENED: _S.OPEN,
        _E.ATTEMPT_FAILED: _S.OPEN,
        _E.GAVE_UP: _S.OPEN,
        _E.CLOSE_REQUESTED: _S.CLOSING,
        _E.CLOSED: _S.DISCONNECTED,
    },
    _S.CLOSING: {
        _E.CONNECT_REQUESTED: _S.CLOSING,
        _E.OPENED: _S.CLOSING,
        _E.ATTEMPT_FAILED: _S.CLOSING,
        _E.GAVE_UP: _S.CLOSING,
        _E.CLOSE_REQUESTED: _S.CLOSING,
        _E.CLOSED: _S.DISCONNECTED,
    },
}


@dataclass
class PendingRequest:
    """A dispatched command awaiting its response."""

    command_id: str
    kind: str
    created_at: float
    future: asyncio.Future
    timer: asyncio.TimerHandle
    timeout: float


def parse_response(raw: Union[str, bytes]) -> Dict[str, Any]:
    """Decode a message received from Godot.

    Args:
        raw: Text or binary WebSocket frame payload

    Returns:
        The decoded JSON object

    Raises:
        MalformedMessage: If the payload is not UTF-8 JSON or not an object
    """
    try:
        text = raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else raw
        message = json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedMessage(f"Received non-JSON message: {raw!r:.200}") from e

    if not isinstance(message, dict):
        raise MalformedMessage(f"Expected a JSON object, got {type(message).__name__}")
    return message


def _now_ms() -> int:
    return int(time.time() * 1000)


class GodotConnection:
    """
    Manages the WebSocket connection to the Godot engine.

    Lifecycle:
    1. Created once at process start with the endpoint and retry policy
    2. connect() opens the socket (also done lazily by send_request)
    3. send_request() dispatches commands and awaits correlated responses
    4. disconnect() at shutdown fails anything still outstanding

    A socket closed by the peer is not reopened automatically; the next
    send_request() or send_message() reconnects.
    """

    def __init__(
        self,
        endpoint: Union[EndpointAddress, str] = DEFAULT_SERVER_URL,
        policy: Optional[RetryPolicy] = None,
        heartbeat_interval: Optional[float] = 20.0,
    ):
        """Initialize the connection manager.

        Args:
            endpoint: Endpoint address or ws:// URL of the Godot server
            policy: Retry and timeout settings
            heartbeat_interval: WebSocket ping interval in seconds, None disables pings
        """
        if isinstance(endpoint, str):
            endpoint = EndpointAddress.parse(endpoint)
        self.endpoint = endpoint
        self.policy = policy or RetryPolicy()
        self.heartbeat_interval = heartbeat_interval

        self._ws: Optional[ClientConnection] = None
        self._state = ConnectionState.DISCONNECTED
        self._reader_task: Optional[asyncio.Task] = None
        self._connect_lock = asyncio.Lock()
        self._pending: Dict[str, PendingRequest] = {}
        self._command_ids = itertools.count()

        logger.info(f"GodotConnection created with URL: {self.endpoint.url}")

    @property
    def state(self) -> ConnectionState:
        """Get current connection state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        """Check if the socket is open."""
        return self._state is ConnectionState.OPEN and self._ws is not None and self._ws.state is State.OPEN

    @property
    def pending_count(self) -> int:
        """Number of commands awaiting a response."""
        return len(self._pending)

    def get_status(self) -> Dict[str, Any]:
        """Gets connection status details."""
        return {
            "connected": self.is_connected,
            "url": self.endpoint.url,
            "pendingCommands": len(self._pending),
        }

    def _fire(self, event: ConnectionEvent) -> ConnectionState:
        previous = self._state
        self._state = TRANSITIONS[previous][event]
        if self._state is not previous:
            logger.debug(f"State {previous.value} -> {self._state.value} on {event.value}")
        return self._state

    # ==================== Connect ====================

    async def connect(self) -> None:
        """Connect to the Godot WebSocket server.

        No-op when already open. Concurrent callers share one attempt
        sequence, so at most one socket is ever being opened.

        Raises:
            ConnectionFailed: If every attempt failed
        """
        if self._state is ConnectionState.OPEN:
            return

        async with self._connect_lock:
            if self._state is ConnectionState.OPEN:
                return

            self._fire(ConnectionEvent.CONNECT_REQUESTED)
            try:
                await self._connect_with_retries()
            finally:
                if self._state is ConnectionState.CONNECTING:
                    self._fire(ConnectionEvent.GAVE_UP)

    async def _connect_with_retries(self) -> None:
        total_attempts = self.policy.max_retries + 1
        last_error: Optional[BaseException] = None

        for attempt in range(1, total_attempts + 1):
            logger.info(
                f"Connecting to Godot WebSocket server at {self.endpoint.url}... (Attempt {attempt}/{total_attempts})"
            )
            try:
                ws = await asyncio.wait_for(self._open_socket(), timeout=self.policy.connect_timeout)
            except asyncio.TimeoutError as e:
                last_error = e
                logger.warning(f"Connection attempt timed out after {self.policy.connect_timeout}s")
            except Exception as e:
                last_error = e
                logger.warning(f"Connection attempt failed: {e}")
            else:
                await self._on_opened(ws, attempt)
                return

            if self._fire(ConnectionEvent.ATTEMPT_FAILED) is not ConnectionState.CONNECTING:
                raise ConnectionFailed("Connection attempt aborted by disconnect", attempt, last_error)

            if attempt < total_attempts:
                logger.info(f"Retrying in {self.policy.retry_delay}s...")
                await asyncio.sleep(self.policy.retry_delay)
                if self._state is not ConnectionState.CONNECTING:
                    raise ConnectionFailed("Connection attempt aborted by disconnect", attempt, last_error)

        log_connection("FAILED", f"{self.endpoint.url} after {total_attempts} attempts")
        raise ConnectionFailed(
            f"Failed to connect after {self.policy.max_retries} retries: {last_error or 'unknown error'}",
            attempts=total_attempts,
            last_error=last_error,
        ) from last_error

    async def _open_socket(self) -> ClientConnection:
        # The attempt deadline is enforced by the caller, so websockets' own open timeout is off.
        return await ws_connect(
            self.endpoint.url,
            open_timeout=None,
            ping_interval=self.heartbeat_interval,
        )

    async def _on_opened(self, ws: ClientConnection, attempt: int) -> None:
        if self._fire(ConnectionEvent.OPENED) is not ConnectionState.OPEN:
            # disconnect() was called while the handshake was in flight
            await ws.close()
            raise ConnectionFailed("Connection attempt aborted by disconnect", attempt)

        self._ws = ws
        self._reader_task = asyncio.create_task(self._read_loop(ws))
        log_connection("OPEN", f"Connected to Godot WebSocket server at {self.endpoint.url}")
        await self._send_ping(ws)

    async def _send_ping(self, ws: ClientConnection) -> None:
        """Sends an application-level liveness probe. Godot does not have to answer it."""
        try:
            await ws.send(json.dumps({"type": "ping", "timestamp": _now_ms()}))
        except ConnectionClosed as e:
            logger.debug(f"Liveness probe not sent: {e}")

    # ==================== Commands ====================

    async def send_request(self, kind: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Send a command to Godot and wait for its response.

        Args:
            kind: Command type (e.g. "avatar_control")
            params: JSON-serializable command parameters

        Returns:
            The ``result`` field of the success response

        Raises:
            ValueError: If kind is empty or params cannot be serialized
            ConnectionFailed: If the connection could not be (re)opened
            CommandTimeout: If no response arrived within the command timeout
            RemoteError: If Godot answered with an error status
            ConnectionLost: If the link closed while the command was outstanding
        """
        if not kind:
            raise ValueError("Command kind must be a non-empty string")
        params = params if params is not None else {}
        try:
            json.dumps(params)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Command params are not JSON serializable: {e}") from e

        if self._state is not ConnectionState.OPEN:
            logger.info("Not connected, attempting to connect...")
            await self.connect()

        ws = self._ws
        if ws is None or self._state is not ConnectionState.OPEN:
            raise ConnectionLost("Connection closed before the command could be sent")

        command_id = self._next_command_id()
        payload = json.dumps({"type": kind, "params": params, "commandId": command_id})

        loop = asyncio.get_running_loop()
        future = loop.create_future()
        timeout = self.policy.command_timeout
        timer = loop.call_later(timeout, self._expire, command_id)
        self._pending[command_id] = PendingRequest(
            command_id=command_id,
            kind=kind,
            created_at=loop.time(),
            future=future,
            timer=timer,
            timeout=timeout,
        )

        try:
            logger.debug(f"Sending command: {payload}")
            try:
                await ws.send(payload)
            except ConnectionClosed as e:
                self._resolve(command_id, error=ConnectionLost(f"Connection closed while sending {kind}: {e}"))
            return await future
        finally:
            # Only does anything when the caller was cancelled before resolution
            self._discard(command_id)

    async def send_message(self, message: Dict[str, Any]) -> None:
        """Send a raw message without expecting a response.

        Raises:
            ValueError: If the message cannot be serialized
            ConnectionFailed: If the connection could not be (re)opened
            ConnectionLost: If the socket closed before or during the write
        """
        try:
            data = json.dumps(message)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Message is not JSON serializable: {e}") from e

        if self._state is not ConnectionState.OPEN:
            await self.connect()

        ws = self._ws
        if ws is None:
            raise ConnectionLost("WebSocket not connected")
        try:
            await ws.send(data)
        except ConnectionClosed as e:
            raise ConnectionLost(f"Connection closed while sending: {e}") from e
        logger.debug(f"Sent message: {data}")

    def _next_command_id(self) -> str:
        while True:
            command_id = f"cmd_{next(self._command_ids)}"
            if command_id not in self._pending:
                return command_id

    def _resolve(
        self,
        command_id: str,
        result: Any = None,
        error: Optional[BaseException] = None,
    ) -> bool:
        """Complete a pending command and remove it from the table.

        Returns:
            False if the command was already resolved or purged
        """
        pending = self._pending.pop(command_id, None)
        if pending is None:
            return False

        pending.timer.cancel()
        if not pending.future.done():
            if error is not None:
                pending.future.set_exception(error)
            else:
                pending.future.set_result(result)
        return True

    def _discard(self, command_id: str) -> None:
        pending = self._pending.pop(command_id, None)
        if pending is not None:
            pending.timer.cancel()

    def _expire(self, command_id: str) -> None:
        pending = self._pending.get(command_id)
        if pending is None:
            return
        logger.warning(f"Command timed out: {pending.kind} ({command_id})")
        self._resolve(command_id, error=CommandTimeout(command_id, pending.kind, pending.timeout))

    def _fail_pending(self, reason: str) -> int:
        count = 0
        for command_id in list(self._pending):
            if self._resolve(command_id, error=ConnectionLost(reason)):
                count += 1
        if count:
            logger.warning(f"Failed {count} pending command(s): {reason}")
        return count

    # ==================== Incoming ====================

    def dispatch_incoming(self, raw: Union[str, bytes]) -> None:
        """Route a message from Godot to the pending command it answers.

        Malformed payloads and messages without a ``commandId`` are logged
        and dropped; they never affect pending commands.
        """
        try:
            response = parse_response(raw)
        except MalformedMessage as e:
            logger.warning(str(e))
            return

        if "commandId" not in response:
            logger.debug(f"Received informational message: {response}")
            return

        command_id = response["commandId"]
        if not isinstance(command_id, str) or command_id not in self._pending:
            logger.debug(f"Discarding response for unknown command: {command_id}")
            return

        if response.get("status") == "success":
            self._resolve(command_id, result=response.get("result"))
        else:
            self._resolve(command_id, error=RemoteError(response.get("message") or "Unknown error"))

    async def _read_loop(self, ws: ClientConnection) -> None:
        reason = "connection closed"
        try:
            async for message in ws:
                try:
                    self.dispatch_incoming(message)
                except Exception as e:
                    logger.error(f"Error processing message: {e}")
            reason = f"code: {ws.close_code}, reason: {ws.close_reason or 'none'}"
        except ConnectionClosed as e:
            reason = str(e)
        self._handle_closed(ws, reason)

    def _handle_closed(self, ws: ClientConnection, reason: str) -> None:
        """Transport closed without a disconnect() call."""
        if ws is not self._ws:
            # Already torn down by disconnect()
            return

        self._ws = None
        self._reader_task = None
        self._fire(ConnectionEvent.CLOSED)
        log_connection("CLOSED", f"Disconnected from Godot WebSocket server ({reason})")
        self._fail_pending("Connection closed")

    # ==================== Disconnect ====================

    async def disconnect(self) -> None:
        """Disconnect from the Godot WebSocket server.

        Idempotent. Every pending command fails with ConnectionLost.
        """
        if self._state is ConnectionState.DISCONNECTED and self._ws is None:
            return

        self._fire(ConnectionEvent.CLOSE_REQUESTED)
        ws, self._ws = self._ws, None
        reader, self._reader_task = self._reader_task, None

        self._fail_pending("Connection closed")

        if ws is not None:
            if ws.state is State.OPEN:
                await ws.close(code=1000, reason="Client disconnect")
            else:
                ws.transport.abort()
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()

        self._fire(ConnectionEvent.CLOSED)
        log_connection("CLOSED", "Disconnected from Godot WebSocket server")
