#===========================================================================
# possync/connectivity.py
# Online/offline signal for the sync engine. Providers expose the current
# state plus a "became online" transition that listeners can subscribe to.
#===========================================================================

from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional

import httpx

logger = logging.getLogger("uvicorn.error")

OnlineListener = Callable[[], None]


class ConnectivityProvider:
    """Base provider; holds the flag and fans out offline → online transitions."""

    def __init__(self, online: bool = True):
        self._online = online
        self._listeners: List[OnlineListener] = []

    def is_online(self) -> bool:
        return self._online

    def add_online_listener(self, listener: OnlineListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_online_listener(self, listener: OnlineListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _set(self, online: bool) -> None:
        was_online = self._online
        self._online = online
        if online and not was_online:
            logger.info("[CONNECTIVITY] back online")
            for listener in list(self._listeners):
                try:
                    listener()
                except Exception:
                    logger.exception("[CONNECTIVITY] online listener failed")
        elif was_online and not online:
            logger.warning("[CONNECTIVITY] went offline")


class StaticConnectivity(ConnectivityProvider):
    """Manually driven provider (tests, or terminals with no probe configured)."""

    def set_online(self, online: bool) -> None:
        self._set(online)


class HttpConnectivityProbe(ConnectivityProvider):
    """Polls a URL; any HTTP response counts as online, transport errors as offline."""

    def __init__(
        self,
        url: str,
        interval: float = 5.0,
        timeout: float = 3.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(online=True)
        self.url = url
        self.interval = interval
        self.timeout = timeout
        self._client = client

    async def probe(self) -> bool:
        try:
            if self._client is not None:
                await self._client.head(self.url, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    await client.head(self.url)
            online = True
        except httpx.HTTPError as e:
            logger.debug("[CONNECTIVITY] probe %s failed: %s", self.url, e)
            online = False
        self._set(online)
        return online

    async def run(self, stop_event: asyncio.Event) -> None:
        logger.info("[CONNECTIVITY] probing %s every %.1fs", self.url, self.interval)
        while not stop_event.is_set():
            await self.probe()
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                continue
        logger.info("[CONNECTIVITY] probe stopped")
