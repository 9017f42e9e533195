"""Persistent telemetry stream with type-keyed fan-out."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import urlparse, urlunparse

import aiohttp

from .. import constants
from ..config import DeviceConfig
from ..core.protocols import CallbackType
from ..errors import DeviceAddressMissing, ProtocolDecodeError
from ..telemetry.codec import decode_frame

LOGGER = logging.getLogger(__name__)

DEFAULT_RECONNECT_DELAY_SECONDS = 2.0


@dataclass(eq=False, slots=True)
class Subscription:
    channel_type: str
    callback: CallbackType


class TelemetryChannel:
    """Owns one websocket to the device and the subscriber table behind it.

    Constructed once and handed to consumers. Transport problems are logged
    and turned into a reconnect attempt; nothing is raised to callers.
    """

    def __init__(
        self,
        config: DeviceConfig,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY_SECONDS,
    ) -> None:
        self.config = config
        self.reconnect_delay = reconnect_delay

        self._session: Optional[aiohttp.ClientSession] = session
        self._owns_session = session is None
        self._subscriptions: Dict[str, List[Subscription]] = {}
        self._connection_task: Optional[asyncio.Task[None]] = None
        self._reconnect_handle: Optional[asyncio.TimerHandle] = None
        self._active_ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._closed = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def connected(self) -> bool:
        ws = self._active_ws
        return ws is not None and not ws.closed

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    @property
    def subscriber_count(self) -> int:
        return sum(len(items) for items in self._subscriptions.values())

    def subscribe(
        self, channel_type: str, callback: CallbackType
    ) -> Callable[[], None]:
        """Register ``callback`` for messages tagged ``channel_type``.

        Returns a callable that removes exactly this registration.
        """

        subscription = Subscription(channel_type, callback)
        self._subscriptions.setdefault(channel_type, []).append(subscription)

        def _unsubscribe() -> None:
            registrations = self._subscriptions.get(channel_type)
            if not registrations:
                return
            for index, existing in enumerate(registrations):
                if existing is subscription:
                    del registrations[index]
                    break
            if not registrations:
                self._subscriptions.pop(channel_type, None)

        return _unsubscribe

    async def connect(self) -> None:
        """Open the stream unless one is already open or being opened."""

        if self._connection_task is not None and not self._connection_task.done():
            return

        self._closed = False
        self._cancel_reconnect()
        self._connection_task = asyncio.create_task(self._run_connection())
        await asyncio.sleep(0)

    async def close(self) -> None:
        """Stop reconnecting and close the stream and owned session."""

        self._closed = True
        self._cancel_reconnect()

        task = self._connection_task
        self._connection_task = None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        self._active_ws = None
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=None)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session

    def _stream_target(self) -> Tuple[str, Dict[str, str]]:
        params: Dict[str, str] = {}
        if self.config.bridge_url:
            address = (self.config.address or "").strip()
            if not address:
                raise DeviceAddressMissing("Bridge mode requires a device address")
            params[constants.BRIDGE_ADDRESS_QUERY_PARAM] = address
        return _build_ws_url(self.config.base_url), params

    async def _run_connection(self) -> None:
        try:
            url, params = self._stream_target()
            session = await self._ensure_session()
            async with session.ws_connect(url, params=params or None) as ws:
                self._active_ws = ws
                self._cancel_reconnect()
                LOGGER.info("Connected to telemetry stream at %s", url)

                async for message in ws:
                    if message.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                        await self._handle_frame(message.data)
                    elif message.type == aiohttp.WSMsgType.ERROR:
                        LOGGER.warning("Telemetry stream error: %s", ws.exception())
                        break

            LOGGER.info("Telemetry stream disconnected")
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            LOGGER.warning("Telemetry stream failure: %s", exc)
        finally:
            self._active_ws = None

        self._schedule_reconnect()

    async def _handle_frame(self, payload: Any) -> None:
        try:
            message = decode_frame(payload)
        except ProtocolDecodeError as exc:
            LOGGER.warning("Dropping telemetry frame: %s", exc)
            return

        if message is None:
            LOGGER.debug("Ignoring non-JSON telemetry frame")
            return

        await self._dispatch(message)

    async def _dispatch(self, message: dict[str, Any]) -> None:
        channel_type = message.get("type")
        if not isinstance(channel_type, str):
            LOGGER.debug("Ignoring telemetry message without a type tag")
            return

        for subscription in list(self._subscriptions.get(channel_type, ())):
            try:
                result = subscription.callback(message)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                LOGGER.exception("Telemetry subscriber for %r failed", channel_type)

    def _schedule_reconnect(self) -> None:
        if self._closed or self._reconnect_handle is not None:
            return
        if not self.subscriber_count:
            LOGGER.debug("No telemetry subscribers; not reconnecting")
            return

        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(self.reconnect_delay, self._reconnect)
        LOGGER.debug("Telemetry reconnect scheduled in %.1fs", self.reconnect_delay)

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    def _reconnect(self) -> None:
        self._reconnect_handle = None
        if self._closed or not self.subscriber_count:
            return
        if self._connection_task is not None and not self._connection_task.done():
            return

        LOGGER.info("Attempting telemetry reconnect")
        self._connection_task = asyncio.get_running_loop().create_task(
            self._run_connection()
        )


def _build_ws_url(http_url: str) -> str:
    parsed = urlparse(http_url)
    scheme = "ws"
    if parsed.scheme == "https":
        scheme = "wss"

    path = parsed.path.rstrip("/") + constants.STREAM_PATH
    return urlunparse((scheme, parsed.netloc, path, "", "", ""))
