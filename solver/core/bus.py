"""Solver bus WebSocket client."""

import asyncio
import json
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Set
import websockets
from loguru import logger

from .types import BusConnectionError

EventHandler = Callable[[Dict[str, Any]], Awaitable[None]]

SUBSCRIPTIONS = ("quote", "quote_status")


class BusState(Enum):
    """Connection state."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class SolverBusClient:
    """JSON-RPC client for the solver relay.

    Subscribes to quote requests and quote status changes on every fresh
    connection and dispatches each event as its own task so slow pricing
    for one quote does not hold up the socket. An unexpected close
    schedules exactly one reconnect after `reconnect_delay_s`.
    """

    def __init__(self, ws_url: str, enabled: bool = False, reconnect_delay_s: float = 5.0,
                 ping_interval: float = 30, ping_timeout: float = 10,
                 connector: Callable[..., Any] = websockets.connect):
        self.ws_url = ws_url
        self.enabled = enabled
        self.reconnect_delay_s = reconnect_delay_s
        self.ping_interval = ping_interval
        self.ping_timeout = ping_timeout
        self._connector = connector

        self.on_quote_request: Optional[EventHandler] = None
        self.on_quote_status: Optional[EventHandler] = None

        self.state = BusState.DISCONNECTED
        self.ws = None
        self._listener_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._event_tasks: Set[asyncio.Task] = set()
        self._last_request_id = 0

    @property
    def connected(self) -> bool:
        return self.state == BusState.CONNECTED and self.ws is not None

    def _next_request_id(self) -> int:
        self._last_request_id = max(int(time.time() * 1000), self._last_request_id + 1)
        return self._last_request_id

    async def start(self):
        if not self.enabled:
            logger.info("Solver bus is disabled. Set bus.enabled to connect")
            return
        logger.info("Solver bus enabled, connecting to WebSocket...")
        await self.connect()

    async def stop(self):
        await self.disconnect()
        for task in list(self._event_tasks):
            task.cancel()
        self._event_tasks.clear()

    async def connect(self) -> bool:
        """Open the socket and subscribe. Schedules a reconnect on failure."""
        if self.state != BusState.DISCONNECTED:
            return self.connected

        self.state = BusState.CONNECTING
        logger.info(f"Connecting to solver bus at {self.ws_url}")
        try:
            ws = await self._connector(
                self.ws_url,
                ping_interval=self.ping_interval,
                ping_timeout=self.ping_timeout,
                close_timeout=5,
            )
        except Exception as e:
            logger.error(f"Failed to connect to solver bus: {e}")
            self.state = BusState.DISCONNECTED
            self.schedule_reconnect()
            return False

        self.ws = ws
        self.state = BusState.CONNECTED
        logger.info("Connected to solver bus WebSocket")
        try:
            await self._subscribe()
        except Exception as e:
            logger.error(f"Failed to subscribe on solver bus: {e}")
            self.ws = None
            self.state = BusState.DISCONNECTED
            try:
                await ws.close()
            except Exception as close_error:
                logger.debug(f"Error closing solver bus socket: {close_error}")
            self.schedule_reconnect()
            return False

        self._listener_task = asyncio.create_task(self._listen(ws))
        return True

    async def disconnect(self):
        self._cancel_reconnect()

        ws, self.ws = self.ws, None
        self.state = BusState.DISCONNECTED
        if self._listener_task is not None and self._listener_task is not asyncio.current_task():
            self._listener_task.cancel()
        self._listener_task = None
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f"Error closing solver bus socket: {e}")

    async def reconnect(self) -> bool:
        """Force-close and reconnect now. Works even when the bus is disabled."""
        logger.info("Manual reconnection triggered")
        await self.disconnect()
        return await self.connect()

    def schedule_reconnect(self):
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        logger.info(f"Reconnecting to solver bus in {self.reconnect_delay_s}s")
        self._reconnect_task = asyncio.create_task(self._reconnect_after_delay())

    def _cancel_reconnect(self):
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _reconnect_after_delay(self):
        await asyncio.sleep(self.reconnect_delay_s)
        self._reconnect_task = None
        await self.connect()

    async def _send(self, payload: Dict[str, Any]):
        if not self.connected:
            raise BusConnectionError("WebSocket not connected")
        await self.ws.send(json.dumps(payload))

    async def _subscribe(self):
        for topic in SUBSCRIPTIONS:
            await self._send({
                "jsonrpc": "2.0",
                "id": self._next_request_id(),
                "method": "subscribe",
                "params": [topic],
            })
            logger.info(f"Subscribed to {topic} events")

    async def send_quote_response(self, signed_quote: Dict[str, Any]):
        await self._send({
            "jsonrpc": "2.0",
            "id": self._next_request_id(),
            "method": "respond_quote",
            "params": signed_quote,
        })

    async def _listen(self, ws):
        try:
            async for message in ws:
                task = asyncio.create_task(self.handle_message(message))
                self._event_tasks.add(task)
                task.add_done_callback(self._event_tasks.discard)
        except websockets.exceptions.ConnectionClosed:
            logger.warning("Solver bus connection closed")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Solver bus listener error: {e}")
        finally:
            # Only an unexpected close reconnects; disconnect() clears self.ws first
            if self.ws is ws:
                self.ws = None
                self.state = BusState.DISCONNECTED
                self.schedule_reconnect()

    async def handle_message(self, raw: Any):
        """Parse one inbound frame and route it to the matching handler."""
        try:
            message = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"Invalid JSON message from solver bus: {raw!r}")
            return

        try:
            if message.get("method") == "event" and isinstance(message.get("params"), dict):
                data = message["params"].get("data") or {}
                if data.get("quote_id") and data.get("defuse_asset_identifier_in"):
                    if self.on_quote_request is not None:
                        await self.on_quote_request(data)
                elif data.get("status"):
                    if self.on_quote_status is not None:
                        await self.on_quote_status(data)
                else:
                    logger.debug(f"Unrouted event: {message}")
            elif "result" in message:
                logger.info(f"Subscription confirmed: {message['result']}")
            elif "error" in message:
                logger.error(f"Solver bus error: {message['error']}")
            else:
                logger.debug(f"Received unknown message: {message}")
        except Exception as e:
            logger.exception(f"Failed to handle solver bus message: {e}")

    def get_status(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "connected": self.connected,
            "url": self.ws_url,
        }
