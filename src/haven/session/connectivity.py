"""HTTP connectivity probe feeding online/offline transitions to HostEvents."""

import asyncio
import logging

import httpx

from .events import HostEvents

logger = logging.getLogger(__name__)


class ConnectivityProbe:
    """Polls an HTTP endpoint and publishes the result as connectivity.

    Any response below 500 counts as online; transport errors and 5xx
    responses count as offline. HostEvents only emits on a transition, so
    polling the same state repeatedly is quiet.
    """

    def __init__(
        self,
        events: HostEvents,
        url: str,
        *,
        interval: float = 15.0,
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.events = events
        self.url = url
        self.interval = interval
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._poll_task: asyncio.Task | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)
        return self._client

    async def check(self) -> bool:
        """Probe once and publish the result."""
        try:
            response = await self._get_client().head(self.url, timeout=self.timeout)
            online = response.status_code < 500
            if not online:
                logger.debug("Connectivity probe got HTTP %d", response.status_code)
        except httpx.TimeoutException:
            logger.debug("Connectivity probe timed out after %ss", self.timeout)
            online = False
        except httpx.RequestError as e:
            logger.debug("Connectivity probe failed: %s", e)
            online = False

        if await self.events.set_online(online):
            logger.info("Connectivity changed: %s", "online" if online else "offline")
        return online

    async def _poll_loop(self) -> None:
        """Background task for periodic probing."""
        while True:
            try:
                await self.check()
                await asyncio.sleep(self.interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.warning("Connectivity poll failed: %s", e)
                await asyncio.sleep(self.interval)

    def start(self) -> None:
        """Start the background polling task."""
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.create_task(self._poll_loop())

    def stop(self) -> None:
        """Stop the background polling task."""
        if self._poll_task and not self._poll_task.done():
            self._poll_task.cancel()

    @property
    def running(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    async def aclose(self) -> None:
        """Stop polling and close the HTTP client if this probe created it."""
        self.stop()
        if self._poll_task is not None:
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
