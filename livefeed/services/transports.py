"""
Feed transports.
WebSocketTransport streams frames over one socket; HttpPollingTransport issues GET requests.
Both run their I/O in supervised asyncio tasks and report back through a ChannelListener.
"""

import asyncio
import logging
import uuid
from typing import Callable, Dict, Optional, Set, Union

import httpx
import websockets

from livefeed.config import DeliveryMode, FeedConfig
from livefeed.errors import TransportError
from livefeed.protocols.feed_transport import ChannelListener, PollTransport, StreamTransport
from livefeed.util.async_tools import create_supervised_task

logger = logging.getLogger("feed_transport")

# Body handed to the listener when the poll endpoint answers 404
NOT_FOUND_BODY = "404"


def _is_current(task: asyncio.Task) -> bool:
    """True when called from inside the task itself (a listener closing its own channel)."""
    try:
        return asyncio.current_task() is task
    except RuntimeError:
        return False


class WebSocketTransport:
    """One WebSocket connection attempt."""

    def __init__(self, url: str, headers: Optional[Dict[str, str]] = None, open_timeout: float = 10.0):
        self.url = url
        self.headers = headers or {}
        self.open_timeout = open_timeout
        self.transport_id = uuid.uuid4().hex[:8]
        self.ws = None
        self._reader: Optional[asyncio.Task] = None
        self._pending_sends: Set[asyncio.Task] = set()
        self._closed = False

    def open(self, listener: ChannelListener) -> None:
        if self._reader is not None:
            raise RuntimeError("WebSocketTransport can only be opened once")
        self._reader = create_supervised_task(
            self._run(listener),
            name=f"feed_ws_reader:{self.transport_id}"
        )

    async def _run(self, listener: ChannelListener) -> None:
        """Connect and pump frames to the listener until the socket ends."""
        try:
            async with websockets.connect(
                self.url,
                additional_headers=self.headers or None,
                open_timeout=self.open_timeout,
                ping_interval=None,  # Heartbeat is handled by the supervisor
                close_timeout=5
            ) as ws:
                self.ws = ws
                logger.info(f"[feed_ws] Connected to {self.url} ({self.transport_id})")
                listener.on_open()

                async for raw_message in ws:
                    if self._closed:
                        break
                    listener.on_message(raw_message)

            if not self._closed:
                listener.on_close("closed by peer")

        except asyncio.CancelledError:
            raise
        except Exception as e:
            if not self._closed:
                listener.on_error(TransportError(f"WebSocket failure: {e}", details={"url": self.url}))
        finally:
            self.ws = None

    def send(self, message: str) -> bool:
        """Queue an outbound frame on the open socket."""
        ws = self.ws
        if ws is None or self._closed:
            return False
        task = asyncio.get_running_loop().create_task(ws.send(message))
        self._pending_sends.add(task)
        task.add_done_callback(self._send_done)
        return True

    def _send_done(self, task: asyncio.Task) -> None:
        self._pending_sends.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            # The reader sees the broken socket and reports it
            logger.warning(f"[feed_ws] Send failed ({self.transport_id}): {error}")

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for task in list(self._pending_sends):
            task.cancel()
        if self._reader is not None and not self._reader.done() and not _is_current(self._reader):
            self._reader.cancel()
        logger.debug(f"[feed_ws] Transport {self.transport_id} closed")


class HttpPollingTransport:
    """Request/response transport: each poll is one GET to the feed resource."""

    def __init__(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.headers = headers or {}
        self.timeout = timeout
        self.transport_id = uuid.uuid4().hex[:8]
        self.client: Optional[httpx.AsyncClient] = None
        self._http_transport = transport
        self._listener: Optional[ChannelListener] = None
        self._inflight: Optional[asyncio.Task] = None
        self._opened = False
        self._closed = False

    def open(self, listener: ChannelListener) -> None:
        """Create the client and issue the first request; success opens the channel."""
        if self.client is not None:
            raise RuntimeError("HttpPollingTransport can only be opened once")
        self._listener = listener
        self.client = httpx.AsyncClient(
            headers=self.headers,
            timeout=self.timeout,
            follow_redirects=True,
            transport=self._http_transport,
        )
        self.poll()

    def poll(self) -> None:
        if self._closed or self.client is None:
            return
        if self._inflight is not None and not self._inflight.done():
            logger.debug(f"[feed_poll] Poll skipped, request in flight ({self.transport_id})")
            return
        self._inflight = create_supervised_task(
            self._request(),
            name=f"feed_poll:{self.transport_id}"
        )

    async def _fetch(self) -> str:
        try:
            response = await self.client.get(self.url)
        except httpx.HTTPError as e:
            raise TransportError(f"Poll request failed: {e}", details={"url": self.url})

        if response.status_code == 404:
            return NOT_FOUND_BODY
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError:
            raise TransportError(
                f"Poll returned HTTP {response.status_code}",
                details={"url": self.url, "status": response.status_code}
            )
        return response.text

    async def _request(self) -> None:
        try:
            body = await self._fetch()
        except TransportError as e:
            if not self._closed:
                self._listener.on_error(e)
            return
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if not self._closed:
                self._listener.on_error(TransportError(f"Poll request failed: {e}", details={"url": self.url}))
            return

        if self._closed:
            return
        if not self._opened:
            self._opened = True
            logger.info(f"[feed_poll] Polling {self.url} ({self.transport_id})")
            self._listener.on_open()
            if self._closed:
                return
        self._listener.on_message(body)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._inflight is not None and not self._inflight.done() and not _is_current(self._inflight):
            self._inflight.cancel()
        if self.client is not None:
            create_supervised_task(
                self.client.aclose(),
                name=f"feed_poll_close:{self.transport_id}"
            )
        logger.debug(f"[feed_poll] Transport {self.transport_id} closed")


# Anything the supervisor can drive
Transport = Union[StreamTransport, PollTransport]


def default_transport_factory(config: FeedConfig) -> Callable[[], Transport]:
    """Factory producing a fresh transport per connection attempt."""
    timeout = config.timeout_ms / 1000.0

    if config.mode == DeliveryMode.POLL:
        return lambda: HttpPollingTransport(config.poll_url, headers=config.headers, timeout=timeout)
    return lambda: WebSocketTransport(config.endpoint, headers=config.headers, open_timeout=timeout)
