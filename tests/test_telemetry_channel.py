"""Tests for the telemetry stream channel."""

import asyncio
from typing import Any, List

import pytest
import pytest_asyncio
from aiohttp import web

from suspension_tuner.adapters import TelemetryChannel
from suspension_tuner.config import DeviceConfig


class _StreamServer:
    def __init__(self, port: int) -> None:
        self.port = port
        self.frames: List[str] = []
        self.connections = 0
        self.queries: List[dict[str, str]] = []
        self.hold_open = False

    @property
    def address(self) -> str:
        return "127.0.0.1"

    def make_url(self, path: str = "/") -> str:
        if not path.startswith("/"):
            path = "/" + path
        return f"http://127.0.0.1:{self.port}{path}"


@pytest_asyncio.fixture
async def stream_server(unused_tcp_port_factory):
    port = unused_tcp_port_factory()
    server = _StreamServer(port)

    async def websocket_handler(request: web.Request):
        server.connections += 1
        server.queries.append(dict(request.query))
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        for frame in server.frames:
            await ws.send_str(frame)
        if server.hold_open:
            async for _ in ws:
                pass
        else:
            await asyncio.sleep(0)
            await ws.close()
        return ws

    app = web.Application()
    app.router.add_get("/ws", websocket_handler)
    app.router.add_get("/bridge/ws", websocket_handler)

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", port)
    await site.start()

    try:
        yield server
    finally:
        await runner.cleanup()


def _direct_config(server: _StreamServer) -> DeviceConfig:
    return DeviceConfig(address=server.address, port=server.port)


@pytest.mark.asyncio
async def test_frames_fan_out_by_type_in_registration_order(stream_server):
    stream_server.frames = [
        '{"type":"telemetry","roll":nan,"pitch":1.0}',
        "Starting recalibration...",
        '{"type":"telemetry","roll":',
        '{"type":"battery","voltages":[11.1,-inf]}',
        '{"type":"telemetry","roll":2.0,"pitch":inf}',
    ]
    stream_server.hold_open = True
    channel = TelemetryChannel(_direct_config(stream_server), reconnect_delay=60)

    received: List[tuple[str, Any]] = []
    done = asyncio.Event()

    def first(message):
        received.append(("first", message.get("roll")))

    def broken(message):
        raise RuntimeError("subscriber bug")

    async def second(message):
        received.append(("second", message.get("roll")))
        if message.get("roll") == 2.0:
            done.set()

    def battery(message):
        received.append(("battery", message["voltages"]))

    channel.subscribe("telemetry", first)
    channel.subscribe("telemetry", broken)
    channel.subscribe("telemetry", second)
    channel.subscribe("battery", battery)

    try:
        await channel.connect()
        await asyncio.wait_for(done.wait(), timeout=2)
    finally:
        await channel.close()

    assert received == [
        ("first", None),
        ("second", None),
        ("battery", [11.1, None]),
        ("first", 2.0),
        ("second", 2.0),
    ]


@pytest.mark.asyncio
async def test_unsubscribe_removes_only_its_own_registration():
    channel = TelemetryChannel(DeviceConfig(address="127.0.0.1"))
    calls: List[str] = []

    def callback(message):
        calls.append(message["type"])

    remove_first = channel.subscribe("sensor", callback)
    channel.subscribe("sensor", callback)
    assert channel.subscriber_count == 2

    remove_first()
    remove_first()
    assert channel.subscriber_count == 1

    await channel._dispatch({"type": "sensor"})
    assert calls == ["sensor"]


@pytest.mark.asyncio
async def test_connect_is_idempotent_while_stream_open(stream_server):
    stream_server.hold_open = True
    channel = TelemetryChannel(_direct_config(stream_server))
    channel.subscribe("telemetry", lambda message: None)

    try:
        await channel.connect()
        for _ in range(50):
            if channel.connected:
                break
            await asyncio.sleep(0.01)
        await channel.connect()
        await channel.connect()
        assert channel.connected
    finally:
        await channel.close()

    assert stream_server.connections == 1
    assert not channel.reconnect_pending


@pytest.mark.asyncio
async def test_dropped_stream_reconnects_after_delay(stream_server):
    stream_server.frames = ['{"type":"telemetry","roll":1.0}']
    channel = TelemetryChannel(_direct_config(stream_server), reconnect_delay=0.05)

    seen = asyncio.Queue()
    channel.subscribe("telemetry", seen.put_nowait)

    try:
        await channel.connect()
        await asyncio.wait_for(seen.get(), timeout=2)
        await asyncio.wait_for(seen.get(), timeout=2)
    finally:
        await channel.close()

    assert stream_server.connections >= 2
    assert not channel.reconnect_pending


@pytest.mark.asyncio
async def test_only_one_reconnect_is_ever_pending():
    channel = TelemetryChannel(DeviceConfig(address="127.0.0.1"), reconnect_delay=2.0)
    channel.subscribe("telemetry", lambda message: None)

    channel._schedule_reconnect()
    handle = channel._reconnect_handle
    channel._schedule_reconnect()
    channel._schedule_reconnect()

    try:
        assert channel.reconnect_pending
        assert channel._reconnect_handle is handle
        loop = asyncio.get_running_loop()
        assert handle.when() - loop.time() == pytest.approx(2.0, abs=0.1)
    finally:
        await channel.close()

    assert not channel.reconnect_pending


@pytest.mark.asyncio
async def test_no_reconnect_without_subscribers(stream_server):
    channel = TelemetryChannel(_direct_config(stream_server), reconnect_delay=0.01)

    try:
        await channel.connect()
        await asyncio.wait_for(channel._connection_task, timeout=2)
        assert not channel.reconnect_pending
    finally:
        await channel.close()

    assert stream_server.connections == 1


@pytest.mark.asyncio
async def test_bridge_mode_passes_device_address_as_query(stream_server):
    stream_server.hold_open = True
    config = DeviceConfig(
        address="10.1.2.3", bridge_url=stream_server.make_url("/bridge/")
    )
    channel = TelemetryChannel(config)

    try:
        await channel.connect()
        for _ in range(50):
            if channel.connected:
                break
            await asyncio.sleep(0.01)
    finally:
        await channel.close()

    assert stream_server.queries == [{"ip": "10.1.2.3"}]


@pytest.mark.asyncio
async def test_bridge_mode_without_address_does_not_raise():
    channel = TelemetryChannel(
        DeviceConfig(address="", bridge_url="http://127.0.0.1:9/"),
        reconnect_delay=60,
    )
    channel.subscribe("telemetry", lambda message: None)

    try:
        await channel.connect()
        await asyncio.wait_for(channel._connection_task, timeout=2)
        assert not channel.connected
        assert channel.reconnect_pending
    finally:
        await channel.close()
