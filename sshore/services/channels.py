"""Per-connection channel registry.

Every logical channel opened on a host connection gets an id and a handle.
Closing a handle tears down only that channel; siblings and the transport
are left alone.
"""

import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

import asyncssh

from sshore.errors import ChannelClosed, ChannelError, ProtocolViolation

if TYPE_CHECKING:
    from sshore.models import SSHHost

logger = logging.getLogger(__name__)


class ChannelKind(Enum):
    """Channel capability."""

    SHELL = "shell"
    EXEC = "exec"
    SFTP = "sftp"
    DIRECT_TCPIP = "direct-tcpip"


@dataclass
class ChannelHandle:
    """A registered channel and the asyncssh object behind it."""

    id: int
    kind: ChannelKind
    channel: Any
    owner: "HostConnection"
    opened_at: datetime = field(default_factory=datetime.now)
    closed: bool = False

    async def close(self) -> None:
        """Close this channel only. Safe to call more than once."""
        if self.closed:
            return
        self.closed = True
        try:
            if self.kind is ChannelKind.SFTP:
                self.channel.exit()
                await self.channel.wait_closed()
            elif self.kind is ChannelKind.DIRECT_TCPIP:
                _reader, writer = self.channel
                writer.close()
            else:
                self.channel.close()
                await self.channel.wait_closed()
        except (OSError, asyncssh.Error) as e:
            logger.debug("Error closing %s channel %d: %s", self.kind.value, self.id, e)
        finally:
            self.owner.release(self)


class HostConnection:
    """One authenticated transport to a host plus its open channels."""

    def __init__(
        self,
        host: "SSHHost",
        connection: asyncssh.SSHClientConnection,
    ) -> None:
        self.host = host
        self.connection = connection
        self._channels: dict[int, ChannelHandle] = {}
        self._ids = itertools.count(1)
        self._shell_pending = False

    @property
    def is_closed(self) -> bool:
        is_closed: bool = self.connection.is_closed()
        return is_closed

    @property
    def channels(self) -> list[ChannelHandle]:
        return list(self._channels.values())

    def channels_of(self, kind: ChannelKind) -> list[ChannelHandle]:
        return [h for h in self._channels.values() if h.kind is kind]

    def get(self, channel_id: int) -> ChannelHandle | None:
        return self._channels.get(channel_id)

    async def open_channel(self, kind: ChannelKind, **options: Any) -> ChannelHandle:
        """Open and register a new channel.

        Options by kind:
            SHELL: term_type, term_size
            EXEC: command
            DIRECT_TCPIP: host, port

        Raises:
            ProtocolViolation: A shell is already open on this connection
            ChannelClosed: The transport is gone
            ChannelError: The server refused the channel
        """
        if self.is_closed:
            raise ChannelClosed(f"Connection to {self.host.name} is closed")

        is_shell = kind is ChannelKind.SHELL
        if is_shell:
            if self._shell_pending or self.channels_of(ChannelKind.SHELL):
                raise ProtocolViolation(
                    f"An interactive shell is already open on {self.host.name}"
                )
            # Held until the shell is registered or its open fails
            self._shell_pending = True
        try:
            channel = await self._open(kind, options)
            handle = ChannelHandle(id=next(self._ids), kind=kind, channel=channel, owner=self)
            self._channels[handle.id] = handle
        finally:
            if is_shell:
                self._shell_pending = False

        logger.debug(
            "Opened %s channel %d on %s (channels=%d)",
            kind.value,
            handle.id,
            self.host.name,
            len(self._channels),
        )
        return handle

    async def _open(self, kind: ChannelKind, options: dict[str, Any]) -> Any:
        conn = self.connection
        try:
            if kind is ChannelKind.SHELL:
                return await conn.create_process(
                    term_type=options.get("term_type", "xterm-256color"),
                    term_size=options.get("term_size"),
                    encoding=None,
                )
            if kind is ChannelKind.EXEC:
                return await conn.create_process(options["command"], encoding=None)
            if kind is ChannelKind.SFTP:
                return await conn.start_sftp_client()
            return await conn.open_connection(options["host"], options["port"])
        except asyncssh.ChannelOpenError as e:
            raise ChannelError(
                f"{self.host.name} refused {kind.value} channel: {e.reason}"
            ) from e
        except (asyncssh.ConnectionLost, asyncssh.DisconnectError, BrokenPipeError) as e:
            raise ChannelClosed(f"Connection to {self.host.name} lost: {e}") from e

    def release(self, handle: ChannelHandle) -> None:
        """Forget a channel that has been closed."""
        if self._channels.pop(handle.id, None) is not None:
            logger.debug(
                "Released %s channel %d on %s (channels=%d)",
                handle.kind.value,
                handle.id,
                self.host.name,
                len(self._channels),
            )

    def close(self) -> None:
        """Close the transport and with it every channel."""
        for handle in list(self._channels.values()):
            handle.closed = True
        self._channels.clear()
        self.connection.close()
