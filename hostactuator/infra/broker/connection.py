"""Broker connection: WebSocket lifecycle, inbound dispatch, reconnection."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from enum import Enum
from typing import TYPE_CHECKING, Any

import aiohttp

from hostactuator.infra.backoff import ReconnectScheduler
from hostactuator.infra.broker.protocol import (
    BrokerError,
    CommandDelivery,
    CommandResult,
    Outbound,
    Ping,
    Pong,
    ProtocolError,
    Wake,
    build_socket_url,
    decode,
    encode,
)

if TYPE_CHECKING:
    from hostactuator.infra.webhook import WakeNotifier
    from hostactuator.services.dispatch import CommandRouter

logger = logging.getLogger(__name__)

SHUTDOWN_REASON = b"actuator shutting down"

CancelAction = Callable[[], None]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    SHUTTING_DOWN = "shutting_down"


def _noop() -> None:
    return None


class BrokerConnection:
    """Owns the socket to the broker and routes everything that arrives on it.

    Commands run on their own tasks and survive reconnects; results produced
    while disconnected are dropped.
    """

    def __init__(
        self,
        broker_url: str,
        token: str,
        actuator_id: str,
        router: CommandRouter,
        wake: WakeNotifier | None = None,
        backoff: ReconnectScheduler | None = None,
    ) -> None:
        self._broker_url = broker_url.rstrip("/")
        self._url = build_socket_url(broker_url, token, actuator_id)
        self._actuator_id = actuator_id
        self._router = router
        self._wake = wake
        self._backoff = backoff or ReconnectScheduler()
        self._state = ConnectionState.DISCONNECTED
        self._http: aiohttp.ClientSession | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._conn_task: asyncio.Task | None = None
        self._in_flight: dict[str, CancelAction] = {}
        self._tasks: set[asyncio.Task] = set()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def url(self) -> str:
        return self._url

    @property
    def in_flight(self) -> list[str]:
        return list(self._in_flight)

    async def start(self) -> None:
        """Open the first connection. Reconnects happen on their own."""
        if self._state is ConnectionState.SHUTTING_DOWN:
            raise RuntimeError("Connection has been stopped")
        if self._http is None:
            self._http = aiohttp.ClientSession()
        self._connect_soon()

    async def stop(self) -> None:
        """Cancel in-flight commands, close the socket, disable reconnection."""
        if self._state is ConnectionState.SHUTTING_DOWN:
            return
        self._state = ConnectionState.SHUTTING_DOWN
        logger.info("Shutting down broker connection")
        self._backoff.destroy()

        for cancel in list(self._in_flight.values()):
            cancel()
        self._in_flight.clear()

        ws, self._ws = self._ws, None
        if ws is not None and not ws.closed:
            await ws.close(code=aiohttp.WSCloseCode.OK, message=SHUTDOWN_REASON)

        tasks = list(self._tasks)
        if self._conn_task is not None:
            tasks.append(self._conn_task)
            self._conn_task = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        if self._http is not None:
            await self._http.close()
            self._http = None

    async def send(self, msg: Outbound) -> bool:
        """Send a message if the socket is open. Returns False if dropped."""
        ws = self._ws
        if ws is None or ws.closed:
            logger.debug("Not connected, dropping %s", type(msg).__name__)
            return False
        try:
            await ws.send_str(encode(msg))
        except (ConnectionError, aiohttp.ClientError, RuntimeError) as e:
            logger.error("Failed to send %s: %s", type(msg).__name__, e)
            return False
        return True

    def _connect_soon(self) -> None:
        if self._state is ConnectionState.SHUTTING_DOWN:
            return
        self._conn_task = asyncio.create_task(self._connect())

    async def _connect(self) -> None:
        assert self._http is not None
        self._state = ConnectionState.CONNECTING
        logger.info("Connecting to %s/ws as %s", self._broker_url, self._actuator_id)

        try:
            ws = await self._http.ws_connect(self._url)
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
            logger.error("Failed to connect to broker: %s", e)
            self._on_disconnect()
            return

        self._ws = ws
        self._state = ConnectionState.CONNECTED
        self._backoff.reset()
        logger.info("Connected and authenticated as %s", self._actuator_id)

        try:
            await self._read_loop(ws)
        finally:
            if self._ws is ws:
                self._ws = None
            if self._state is not ConnectionState.SHUTTING_DOWN:
                logger.info("Disconnected: %s", ws.close_code)
                self._on_disconnect()

    def _on_disconnect(self) -> None:
        if self._state is ConnectionState.SHUTTING_DOWN:
            return
        self._state = ConnectionState.DISCONNECTED
        if not self._backoff.schedule(self._connect_soon):
            logger.error("Max reconnection attempts reached")

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        async for msg in ws:
            if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                await self._on_frame(msg.data)
            elif msg.type == aiohttp.WSMsgType.ERROR:
                logger.error("WebSocket error: %s", ws.exception())
                break

    async def _on_frame(self, data: str | bytes) -> None:
        try:
            msg = decode(data)
        except ProtocolError as e:
            logger.error("Invalid message: %s", e)
            return

        if isinstance(msg, CommandDelivery):
            self._spawn(self._handle_command(msg))
        elif isinstance(msg, Ping):
            await self.send(Pong(ts=msg.ts))
        elif isinstance(msg, BrokerError):
            logger.error("Broker error [%s]: %s", msg.code, msg.message)
        elif isinstance(msg, Wake):
            if self._wake is None:
                logger.warning("Received wake but no webhook configured, dropping")
            else:
                self._spawn(self._wake.deliver(msg.text, msg.source, msg.ts))
        else:
            logger.warning("Unknown message type: %s", msg.type)

    async def _handle_command(self, delivery: CommandDelivery) -> None:
        if delivery.id in self._in_flight:
            logger.warning("Command %s is already running, refusing redelivery", delivery.id)
            await self.send(
                CommandResult.failed(delivery.id, f"Command {delivery.id} is already running")
            )
            return

        logger.info("Command %s: %s", delivery.id, delivery.capability)
        self._in_flight[delivery.id] = _noop
        try:
            async for result in self._router.route(delivery, self._in_flight):
                await self.send(result)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Error handling command %s", delivery.id)
            await self.send(CommandResult.failed(delivery.id, f"Failed to execute command: {e}"))
        finally:
            self._in_flight.pop(delivery.id, None)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
