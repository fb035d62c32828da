"""Tests for Tunnel and TunnelSupervisor."""

import asyncio
import socket
from collections.abc import Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from sshore.errors import AuthFailed, BindFailed, NetworkError
from sshore.models import SSHHost, TunnelDirection, TunnelSpec, TunnelState, TunnelStatus
from sshore.services.channels import ChannelKind
from sshore.services.tunnels import Tunnel, TunnelSupervisor


class FakeChannelWriter:
    def __init__(self) -> None:
        self.data = bytearray()
        self.eof = False

    def write(self, data: bytes) -> None:
        self.data.extend(data)

    async def drain(self) -> None:
        pass

    def can_write_eof(self) -> bool:
        return True

    def write_eof(self) -> None:
        self.eof = True

    def close(self) -> None:
        pass


class FakeHandle:
    def __init__(self, reader: asyncio.StreamReader, writer: FakeChannelWriter) -> None:
        self.channel = (reader, writer)
        self.closed = False

    async def close(self) -> None:
        self.closed = True


class FakeShared:
    """A host connection whose loss the test controls."""

    def __init__(self) -> None:
        self.lost = asyncio.Event()
        self.connection = MagicMock()
        self.connection.wait_closed = AsyncMock(side_effect=self.lost.wait)
        self.listener = MagicMock()
        self.connection.forward_remote_port = AsyncMock(return_value=self.listener)
        self.chan_reader = asyncio.StreamReader()
        self.chan_writer = FakeChannelWriter()
        self.opened: list[tuple[ChannelKind, dict]] = []
        self.handles: list[FakeHandle] = []

    async def open_channel(self, kind: ChannelKind, **options) -> FakeHandle:
        self.opened.append((kind, options))
        handle = FakeHandle(self.chan_reader, self.chan_writer)
        self.handles.append(handle)
        return handle


async def eventually(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


def free_port() -> int:
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def host() -> SSHHost:
    return SSHHost(name="bastion", hostname="bastion.example.com")


@pytest.fixture
def supervisor() -> MagicMock:
    supervisor = MagicMock()
    supervisor.connect = AsyncMock()
    return supervisor


@pytest.fixture
def tunnels(supervisor: MagicMock) -> TunnelSupervisor:
    return TunnelSupervisor(supervisor, initial_delay=0.01, max_delay=0.05)


@pytest.fixture
def events(tunnels: TunnelSupervisor) -> list[TunnelState]:
    recorded: list[TunnelState] = []
    tunnels.add_listener(lambda tunnel_id, state: recorded.append(state))
    return recorded


def local_spec(persist: bool = True) -> TunnelSpec:
    return TunnelSpec(
        direction=TunnelDirection.LOCAL,
        bind_port=free_port(),
        target_host="db.internal",
        target_port=5432,
        persist=persist,
    )


def statuses(events: list[TunnelState]) -> list[TunnelStatus]:
    return [e.status for e in events]


def test_backoff_is_exponential_and_capped(host: SSHHost, supervisor: MagicMock) -> None:
    tunnel = Tunnel(1, host, local_spec(), supervisor, initial_delay=1.0, max_delay=60.0)
    assert [tunnel.backoff(n) for n in range(1, 9)] == [1, 2, 4, 8, 16, 32, 60, 60]


@pytest.mark.asyncio
async def test_persistent_tunnel_reconnects_once_and_keeps_clients(
    tunnels: TunnelSupervisor,
    supervisor: MagicMock,
    host: SSHHost,
    events: list[TunnelState],
) -> None:
    """One Reconnecting interval, and a client accepted in the gap is served."""
    first, second = FakeShared(), FakeShared()
    gate = asyncio.Event()

    async def connect(host: SSHHost, keepalive: bool = False) -> FakeShared:
        assert keepalive
        if supervisor.connect.await_count == 1:
            return first
        await gate.wait()
        return second

    supervisor.connect.side_effect = connect
    spec = local_spec(persist=True)
    tunnel = await tunnels.start(host, spec)
    await eventually(lambda: tunnel.state.status is TunnelStatus.ACTIVE)

    first.lost.set()
    await eventually(lambda: supervisor.connect.await_count == 2)

    reader, writer = await asyncio.open_connection("127.0.0.1", spec.bind_port)
    writer.write(b"ping")
    writer.write_eof()
    await eventually(lambda: len(tunnel._clients) == 1)
    await asyncio.sleep(0.05)
    assert not reader.at_eof()
    assert first.opened == []

    second.chan_reader.feed_data(b"pong")
    second.chan_reader.feed_eof()
    gate.set()

    assert await asyncio.wait_for(reader.read(), 2) == b"pong"
    assert bytes(second.chan_writer.data) == b"ping"
    assert second.opened == [
        (ChannelKind.DIRECT_TCPIP, {"host": "db.internal", "port": 5432})
    ]
    writer.close()

    assert statuses(events) == [
        TunnelStatus.CONNECTING,
        TunnelStatus.ACTIVE,
        TunnelStatus.RECONNECTING,
        TunnelStatus.CONNECTING,
        TunnelStatus.ACTIVE,
    ]
    assert events[2].attempt == 1
    assert events[2].next_retry is not None
    assert tunnel.reconnects == 1

    await tunnels.stop(tunnel.id)
    assert tunnel.state.status is TunnelStatus.STOPPED


@pytest.mark.asyncio
async def test_non_persistent_tunnel_fails_on_loss(
    tunnels: TunnelSupervisor,
    supervisor: MagicMock,
    host: SSHHost,
    events: list[TunnelState],
) -> None:
    shared = FakeShared()
    supervisor.connect.return_value = shared
    spec = local_spec(persist=False)

    tunnel = await tunnels.start(host, spec)
    await eventually(lambda: tunnel.state.status is TunnelStatus.ACTIVE)
    shared.lost.set()

    state = await asyncio.wait_for(tunnel.wait(), 2)

    assert state.status is TunnelStatus.FAILED
    assert state.reason == "connection lost"
    assert TunnelStatus.RECONNECTING not in statuses(events)
    assert supervisor.connect.await_count == 1
    with pytest.raises(OSError):
        await asyncio.open_connection("127.0.0.1", spec.bind_port)


@pytest.mark.asyncio
async def test_stop_preempts_pending_reconnect(
    supervisor: MagicMock, host: SSHHost
) -> None:
    tunnels = TunnelSupervisor(supervisor, initial_delay=30, max_delay=60)
    shared = FakeShared()
    supervisor.connect.return_value = shared

    tunnel = await tunnels.start(host, local_spec(persist=True))
    await eventually(lambda: tunnel.state.status is TunnelStatus.ACTIVE)
    shared.lost.set()
    await eventually(lambda: tunnel.state.status is TunnelStatus.RECONNECTING)

    await asyncio.wait_for(tunnels.stop(tunnel.id), 1)

    assert tunnel.state.status is TunnelStatus.STOPPED
    assert supervisor.connect.await_count == 1
    assert tunnels.get(tunnel.id) is None


@pytest.mark.asyncio
async def test_stop_while_connecting_does_not_wait_for_connect(
    tunnels: TunnelSupervisor,
    supervisor: MagicMock,
    host: SSHHost,
    events: list[TunnelState],
) -> None:
    gate = asyncio.Event()
    cancelled = asyncio.Event()

    async def stalled_connect(*args, **kwargs) -> FakeShared:
        try:
            await gate.wait()
        except asyncio.CancelledError:
            cancelled.set()
            raise
        return FakeShared()

    supervisor.connect.side_effect = stalled_connect
    spec = local_spec(persist=True)

    tunnel = await tunnels.start(host, spec)
    await eventually(lambda: supervisor.connect.await_count == 1)

    await asyncio.wait_for(tunnels.stop(tunnel.id), 0.5)

    assert tunnel.state.status is TunnelStatus.STOPPED
    assert cancelled.is_set()
    assert TunnelStatus.ACTIVE not in statuses(events)
    with pytest.raises(OSError):
        await asyncio.open_connection("127.0.0.1", spec.bind_port)


@pytest.mark.asyncio
async def test_stop_during_remote_forward_request(
    tunnels: TunnelSupervisor,
    supervisor: MagicMock,
    host: SSHHost,
    events: list[TunnelState],
) -> None:
    shared = FakeShared()
    gate = asyncio.Event()

    async def forward_then_wait(*args) -> MagicMock:
        await gate.wait()
        return shared.listener

    shared.connection.forward_remote_port = AsyncMock(side_effect=forward_then_wait)
    supervisor.connect.return_value = shared
    spec = TunnelSpec(TunnelDirection.REMOTE, 8080, "localhost", 3000, persist=True)

    tunnel = await tunnels.start(host, spec)
    await eventually(lambda: shared.connection.forward_remote_port.await_count == 1)

    await asyncio.wait_for(tunnels.stop(tunnel.id), 0.5)

    assert tunnel.state.status is TunnelStatus.STOPPED
    assert TunnelStatus.ACTIVE not in statuses(events)
    shared.listener.close.assert_not_called()


@pytest.mark.asyncio
async def test_connect_failure_retries_when_persistent(
    tunnels: TunnelSupervisor,
    supervisor: MagicMock,
    host: SSHHost,
    events: list[TunnelState],
) -> None:
    supervisor.connect.side_effect = [NetworkError("bastion", "refused"), FakeShared()]

    tunnel = await tunnels.start(host, local_spec(persist=True))
    await eventually(lambda: tunnel.state.status is TunnelStatus.ACTIVE)

    assert statuses(events) == [
        TunnelStatus.CONNECTING,
        TunnelStatus.RECONNECTING,
        TunnelStatus.CONNECTING,
        TunnelStatus.ACTIVE,
    ]
    await tunnels.stop_all()


@pytest.mark.asyncio
async def test_connect_failure_fails_when_not_persistent(
    tunnels: TunnelSupervisor, supervisor: MagicMock, host: SSHHost
) -> None:
    supervisor.connect.side_effect = NetworkError("bastion", "refused")

    tunnel = await tunnels.start(host, local_spec(persist=False))
    state = await asyncio.wait_for(tunnel.wait(), 2)

    assert state.status is TunnelStatus.FAILED
    assert "refused" in state.reason


@pytest.mark.asyncio
async def test_auth_failure_is_terminal_even_when_persistent(
    tunnels: TunnelSupervisor, supervisor: MagicMock, host: SSHHost
) -> None:
    supervisor.connect.side_effect = AuthFailed("bastion", ["publickey (/k)"])

    tunnel = await tunnels.start(host, local_spec(persist=True))
    state = await asyncio.wait_for(tunnel.wait(), 2)

    assert state.status is TunnelStatus.FAILED
    assert supervisor.connect.await_count == 1


@pytest.mark.asyncio
async def test_bind_failure(tunnels: TunnelSupervisor, host: SSHHost) -> None:
    with socket.socket() as busy:
        busy.bind(("127.0.0.1", 0))
        busy.listen()
        port = busy.getsockname()[1]
        spec = TunnelSpec(TunnelDirection.LOCAL, port, "db.internal", 5432)

        with pytest.raises(BindFailed):
            await tunnels.start(host, spec)

    assert tunnels.states() == {}


@pytest.mark.asyncio
async def test_remote_forward_is_requested_again_after_reconnect(
    tunnels: TunnelSupervisor, supervisor: MagicMock, host: SSHHost
) -> None:
    first, second = FakeShared(), FakeShared()
    supervisor.connect.side_effect = [first, second]
    spec = TunnelSpec(TunnelDirection.REMOTE, 8080, "localhost", 3000, persist=True)

    tunnel = await tunnels.start(host, spec)
    await eventually(lambda: tunnel.state.status is TunnelStatus.ACTIVE)
    first.lost.set()
    await eventually(lambda: second.connection.forward_remote_port.await_count == 1)
    await eventually(lambda: tunnel.state.status is TunnelStatus.ACTIVE)

    first.connection.forward_remote_port.assert_awaited_once_with("127.0.0.1", 8080, "localhost", 3000)
    second.connection.forward_remote_port.assert_awaited_once_with("127.0.0.1", 8080, "localhost", 3000)
    first.listener.close.assert_called_once()

    await tunnels.stop(tunnel.id)
    second.listener.close.assert_called_once()


@pytest.mark.asyncio
async def test_supervisor_tracks_many_tunnels(
    tunnels: TunnelSupervisor, supervisor: MagicMock, host: SSHHost
) -> None:
    supervisor.connect.return_value = FakeShared()

    one = await tunnels.start(host, local_spec())
    two = await tunnels.start(host, local_spec())
    await eventually(lambda: tunnels.active_count == 2)

    assert set(tunnels.states()) == {one.id, two.id}

    await tunnels.stop(one.id)
    assert set(tunnels.states()) == {two.id}
    assert two.state.status is TunnelStatus.ACTIVE

    await tunnels.stop_all()
    assert tunnels.states() == {}
    assert two.state.status is TunnelStatus.STOPPED
