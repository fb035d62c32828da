"""Tests for the per-connection channel registry."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import asyncssh
import pytest

from sshore.errors import ChannelClosed, ChannelError, ProtocolViolation
from sshore.models import SSHHost
from sshore.services.channels import ChannelKind, HostConnection


@pytest.fixture
def conn() -> MagicMock:
    conn = MagicMock()
    conn.is_closed.return_value = False
    conn.create_process = AsyncMock(
        side_effect=lambda *args, **kwargs: MagicMock(wait_closed=AsyncMock())
    )
    conn.start_sftp_client = AsyncMock(return_value=MagicMock(wait_closed=AsyncMock()))
    conn.open_connection = AsyncMock(return_value=(MagicMock(), MagicMock()))
    return conn


@pytest.fixture
def shared(conn: MagicMock) -> HostConnection:
    return HostConnection(SSHHost(name="web1", hostname="web1"), conn)


@pytest.mark.asyncio
async def test_channels_get_distinct_ids(shared: HostConnection) -> None:
    shell = await shared.open_channel(ChannelKind.SHELL)
    sftp = await shared.open_channel(ChannelKind.SFTP)
    fwd = await shared.open_channel(ChannelKind.DIRECT_TCPIP, host="db", port=5432)

    assert len({shell.id, sftp.id, fwd.id}) == 3
    assert shared.get(sftp.id) is sftp
    assert shared.channels_of(ChannelKind.SHELL) == [shell]


@pytest.mark.asyncio
async def test_one_shell_per_connection(shared: HostConnection) -> None:
    await shared.open_channel(ChannelKind.SHELL)

    with pytest.raises(ProtocolViolation):
        await shared.open_channel(ChannelKind.SHELL)


@pytest.mark.asyncio
async def test_shell_can_reopen_after_close(shared: HostConnection) -> None:
    shell = await shared.open_channel(ChannelKind.SHELL)
    await shell.close()

    again = await shared.open_channel(ChannelKind.SHELL)
    assert again.id != shell.id


@pytest.mark.asyncio
async def test_closing_sftp_leaves_shell_and_transport(
    shared: HostConnection, conn: MagicMock
) -> None:
    shell = await shared.open_channel(ChannelKind.SHELL)
    sftp = await shared.open_channel(ChannelKind.SFTP)

    await sftp.close()

    sftp.channel.exit.assert_called_once()
    assert shared.channels == [shell]
    assert not shell.closed
    shell.channel.close.assert_not_called()
    conn.close.assert_not_called()


@pytest.mark.asyncio
async def test_closing_shell_leaves_forwards(shared: HostConnection, conn: MagicMock) -> None:
    shell = await shared.open_channel(ChannelKind.SHELL)
    fwd = await shared.open_channel(ChannelKind.DIRECT_TCPIP, host="db", port=5432)

    await shell.close()

    assert shared.channels == [fwd]
    fwd.channel[1].close.assert_not_called()
    conn.close.assert_not_called()


@pytest.mark.asyncio
async def test_close_is_idempotent_and_tolerates_errors(shared: HostConnection) -> None:
    sftp = await shared.open_channel(ChannelKind.SFTP)
    sftp.channel.wait_closed.side_effect = asyncssh.ConnectionLost("gone")

    await sftp.close()
    await sftp.close()

    sftp.channel.exit.assert_called_once()
    assert shared.channels == []


@pytest.mark.asyncio
async def test_open_on_closed_transport(shared: HostConnection, conn: MagicMock) -> None:
    conn.is_closed.return_value = True

    with pytest.raises(ChannelClosed):
        await shared.open_channel(ChannelKind.SFTP)


@pytest.mark.asyncio
async def test_refused_channel(shared: HostConnection, conn: MagicMock) -> None:
    conn.open_connection.side_effect = asyncssh.ChannelOpenError(
        asyncssh.OPEN_CONNECT_FAILED, "Connection refused"
    )

    with pytest.raises(ChannelError, match="refused direct-tcpip channel"):
        await shared.open_channel(ChannelKind.DIRECT_TCPIP, host="db", port=5432)
    assert shared.channels == []


@pytest.mark.asyncio
async def test_exec_channel_passes_command(shared: HostConnection, conn: MagicMock) -> None:
    await shared.open_channel(ChannelKind.EXEC, command="uptime")
    conn.create_process.assert_awaited_once_with("uptime", encoding=None)


def test_close_transport_marks_all_channels(shared: HostConnection, conn: MagicMock) -> None:
    shared.close()
    conn.close.assert_called_once()
    assert shared.channels == []


@pytest.mark.asyncio
async def test_stalled_open_does_not_block_other_channels(
    shared: HostConnection, conn: MagicMock
) -> None:
    """A forward to an unresponsive target leaves SFTP and exec opens alone."""
    release = asyncio.Event()

    async def stalled(host: str, port: int):
        await release.wait()
        return MagicMock(), MagicMock()

    conn.open_connection.side_effect = stalled
    forward = asyncio.create_task(
        shared.open_channel(ChannelKind.DIRECT_TCPIP, host="blackhole", port=9)
    )
    await asyncio.sleep(0)

    sftp = await asyncio.wait_for(shared.open_channel(ChannelKind.SFTP), 0.5)
    shell = await asyncio.wait_for(shared.open_channel(ChannelKind.SHELL), 0.5)

    assert not forward.done()
    assert shared.channels == [sftp, shell]

    release.set()
    fwd = await forward
    assert shared.get(fwd.id) is fwd


@pytest.mark.asyncio
async def test_concurrent_shell_opens_allow_only_one(
    shared: HostConnection, conn: MagicMock
) -> None:
    release = asyncio.Event()

    async def slow_shell(*args, **kwargs):
        await release.wait()
        return MagicMock(wait_closed=AsyncMock())

    conn.create_process.side_effect = slow_shell
    first = asyncio.create_task(shared.open_channel(ChannelKind.SHELL))
    await asyncio.sleep(0)

    with pytest.raises(ProtocolViolation):
        await shared.open_channel(ChannelKind.SHELL)

    release.set()
    assert (await first).kind is ChannelKind.SHELL


@pytest.mark.asyncio
async def test_failed_shell_open_frees_the_slot(shared: HostConnection, conn: MagicMock) -> None:
    conn.create_process.side_effect = [
        asyncssh.ChannelOpenError(asyncssh.OPEN_ADMINISTRATIVELY_PROHIBITED, "no shells"),
        MagicMock(wait_closed=AsyncMock()),
    ]

    with pytest.raises(ChannelError):
        await shared.open_channel(ChannelKind.SHELL)

    shell = await shared.open_channel(ChannelKind.SHELL)
    assert shared.channels == [shell]
