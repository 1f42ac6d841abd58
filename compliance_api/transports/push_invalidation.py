"""Listener de invalidación push por WebSocket.

Mensajes aceptados:
    {"buildingId": "14"}
    {"type": "invalidate", "buildingId": "14"}
    {"type": "invalidate", "buildingIds": ["14", "21"]}

Corre en su propio thread con un event loop asyncio; reconecta cada
PUSH_RECONNECT_SECONDS si la conexión cae.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Callable, List, Optional

import orjson
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

logger = logging.getLogger(__name__)


def parse_invalidation(message) -> List[str]:
    """Ids de edificio a invalidar en un mensaje, [] si no aplica."""
    try:
        data = orjson.loads(message)
    except orjson.JSONDecodeError:
        logger.warning("[PUSH] invalid JSON message=%s", str(message)[:150])
        return []
    if not isinstance(data, dict):
        return []
    msg_type = data.get("type", "invalidate")
    if msg_type != "invalidate":
        return []
    ids: List[str] = []
    if data.get("buildingId") is not None:
        ids.append(str(data["buildingId"]))
    for building_id in data.get("buildingIds") or []:
        ids.append(str(building_id))
    return ids


class PushInvalidationListener:
    """Cliente WebSocket que traduce mensajes en invalidaciones."""

    def __init__(
        self,
        url: str,
        on_invalidate: Callable[[str], object],
        reconnect_seconds: float = 5.0,
    ):
        self._url = url
        self._on_invalidate = on_invalidate
        self._reconnect_seconds = reconnect_seconds
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stop: Optional[asyncio.Event] = None
        self._running = False
        self.messages_received = 0
        self.invalidations = 0
        self.reconnects = 0

    @property
    def running(self) -> bool:
        return self._running

    def handle_message(self, message) -> int:
        """Procesa un mensaje. Returns: cantidad de invalidaciones disparadas."""
        self.messages_received += 1
        count = 0
        for building_id in parse_invalidation(message):
            try:
                self._on_invalidate(building_id)
                count += 1
            except KeyError:
                logger.warning("[PUSH] unknown building=%s", building_id)
        self.invalidations += count
        return count

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._thread = threading.Thread(target=self._run, name="push-invalidation", daemon=True)
        self._thread.start()
        logger.info("[PUSH] listener started url=%s", self._url)

    def stop(self, timeout: float = 5.0) -> None:
        if not self._running:
            return
        self._running = False
        if self._loop is not None and self._stop is not None:
            self._loop.call_soon_threadsafe(self._stop.set)
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("[PUSH] listener stopped")

    def _run(self) -> None:
        self._loop = asyncio.new_event_loop()
        try:
            self._loop.run_until_complete(self._main())
        finally:
            self._loop.close()
            self._loop = None

    async def _main(self) -> None:
        self._stop = asyncio.Event()
        while self._running:
            try:
                async with websockets.connect(self._url, ping_interval=25, ping_timeout=20) as ws:
                    logger.info("[PUSH] connected url=%s", self._url)
                    await self._consume(ws)
            except (ConnectionClosed, WebSocketException, OSError, asyncio.TimeoutError) as e:
                logger.warning("[PUSH] connection error: %s", e)
            if not self._running:
                break
            self.reconnects += 1
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self._reconnect_seconds)
            except asyncio.TimeoutError:
                pass

    async def _consume(self, ws) -> None:
        stop_task = asyncio.ensure_future(self._stop.wait())
        try:
            while self._running:
                recv_task = asyncio.ensure_future(ws.recv())
                done, _ = await asyncio.wait(
                    {recv_task, stop_task}, return_when=asyncio.FIRST_COMPLETED
                )
                if stop_task in done:
                    recv_task.cancel()
                    return
                self.handle_message(recv_task.result())
        finally:
            stop_task.cancel()
