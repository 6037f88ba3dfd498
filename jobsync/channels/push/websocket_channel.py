"""WebSocket push channel (aiohttp client).

Protocol:
  -> {"action": "subscribe" | "unsubscribe", "jobId": "..."}
  <- {"type": "job.update", "jobId": "...", "status", "progress", "outputs", "error"}
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

import aiohttp

from jobsync.channels.push.base import MessageHandler, PushChannel

logger = logging.getLogger(__name__)


class WebSocketPushChannel(PushChannel):
    """Reconnects with a linearly growing delay and re-sends subscriptions."""

    def __init__(
        self,
        url: str,
        max_reconnect_attempts: int = 5,
        reconnect_delay: float = 2.0,
        heartbeat: float = 30.0,
    ):
        self._url = url
        self._max_reconnect_attempts = max_reconnect_attempts
        self._reconnect_delay = reconnect_delay
        self._heartbeat = heartbeat
        self._session: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._reader: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._handlers: Dict[str, MessageHandler] = {}
        self._reconnect_attempts = 0
        self._connecting = False
        self._closing = False

    def is_connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def connect(self) -> None:
        if self.is_connected() or self._connecting:
            return
        self._connecting = True
        self._closing = False
        try:
            if self._session is None or self._session.closed:
                self._session = aiohttp.ClientSession()
            logger.info(f"Connecting to push channel: {self._url}")
            self._ws = await self._session.ws_connect(self._url, heartbeat=self._heartbeat)
        finally:
            self._connecting = False

        logger.info("Push channel connected")
        self._reconnect_attempts = 0
        for job_id in list(self._handlers):
            await self._send({"action": "subscribe", "jobId": job_id})
        self._reader = asyncio.create_task(self._read_loop(self._ws))

    async def disconnect(self) -> None:
        self._closing = True
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            try:
                await self._reconnect_task
            except asyncio.CancelledError:
                pass
            self._reconnect_task = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None
        if self._session is not None:
            await self._session.close()
            self._session = None
        self._handlers.clear()

    async def subscribe(self, job_id: str, handler: MessageHandler) -> None:
        self._handlers[job_id] = handler
        if self.is_connected():
            await self._send({"action": "subscribe", "jobId": job_id})

    async def unsubscribe(self, job_id: str) -> None:
        self._handlers.pop(job_id, None)
        if self.is_connected():
            await self._send({"action": "unsubscribe", "jobId": job_id})

    async def _send(self, payload: Dict[str, Any]) -> None:
        try:
            await self._ws.send_json(payload)
        except (aiohttp.ClientError, ConnectionResetError, RuntimeError) as e:
            # Delivery is best-effort; polling covers the gap.
            logger.warning(f"Push channel send failed ({payload.get('action')}): {e}")

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                await self._handle_message(msg.data)
            elif msg.type == aiohttp.WSMsgType.ERROR:
                logger.error(f"Push channel error: {ws.exception()}")
                break

        logger.info("Push channel disconnected")
        if not self._closing:
            self._ws = None
            self._reconnect_task = asyncio.create_task(self._reconnect())

    async def _handle_message(self, data: str) -> None:
        try:
            message = json.loads(data)
        except ValueError as e:
            logger.error(f"Failed to parse push message: {e}")
            return

        if message.get("type") != "job.update":
            return
        handler = self._handlers.get(message.get("jobId"))
        if handler is None:
            return
        try:
            await handler(message)
        except Exception:
            logger.exception(f"Push handler for {message.get('jobId')} failed")

    async def _reconnect(self) -> None:
        while self._reconnect_attempts < self._max_reconnect_attempts and not self._closing:
            self._reconnect_attempts += 1
            delay = self._reconnect_delay * self._reconnect_attempts
            logger.info(
                f"Attempting to reconnect ({self._reconnect_attempts}/"
                f"{self._max_reconnect_attempts}) in {delay:.1f}s"
            )
            await asyncio.sleep(delay)
            try:
                await self.connect()
                return
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                logger.warning(f"Reconnect attempt {self._reconnect_attempts} failed: {e}")
        if not self._closing:
            logger.error("Max reconnection attempts reached; relying on polling")
