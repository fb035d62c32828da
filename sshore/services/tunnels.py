"""Supervised port forwarding with automatic reconnection.

Each tunnel runs a loop: connect, open the forward, wait for loss, then
either fail (non-persistent) or back off exponentially and reconnect
(persistent). Local forwards own their listening socket for the tunnel's
whole life, so clients accepted while reconnecting wait for the tunnel to
become active again instead of being refused.
"""

import asyncio
import itertools
import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

import asyncssh

from sshore.errors import (
    AuthFailed,
    BindFailed,
    ChannelError,
    ConnectError,
    HostKeyRejected,
    TunnelLost,
)
from sshore.models import TunnelDirection, TunnelSpec, TunnelState, TunnelStatus
from sshore.services.channels import ChannelKind, HostConnection

if TYPE_CHECKING:
    from sshore.models import SSHHost
    from sshore.services.supervisor import ConnectionSupervisor

logger = logging.getLogger(__name__)

READ_SIZE = 32 * 1024

StateListener = Callable[[int, TunnelState], None]


async def _pipe(reader: Any, writer: Any) -> None:
    """Copy one direction of a forwarded stream until EOF."""
    try:
        while True:
            data = await reader.read(READ_SIZE)
            if not data:
                break
            writer.write(data)
            await writer.drain()
    finally:
        try:
            if writer.can_write_eof():
                writer.write_eof()
        except (OSError, asyncssh.Error):
            pass


class Tunnel:
    """One supervised forward."""

    def __init__(
        self,
        tunnel_id: int,
        host: "SSHHost",
        spec: TunnelSpec,
        supervisor: "ConnectionSupervisor",
        initial_delay: float = 1.0,
        max_delay: float = 60.0,
        on_state: StateListener | None = None,
    ) -> None:
        self.id = tunnel_id
        self.host = host
        self.spec = spec
        self.supervisor = supervisor
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.on_state = on_state

        self.state = TunnelState.connecting()
        self.reconnects = 0
        self._stop = asyncio.Event()
        self._active = asyncio.Event()
        self._shared: HostConnection | None = None
        self._server: asyncio.AbstractServer | None = None
        self._remote_listener: asyncssh.SSHListener | None = None
        self._clients: set[asyncio.Task[None]] = set()
        self._task: asyncio.Task[None] | None = None

    def _set_state(self, state: TunnelState) -> None:
        self.state = state
        logger.info(
            "Tunnel %d (%s on %s): %s",
            self.id,
            self.spec.describe(),
            self.host.name,
            state.status.value,
        )
        if self.on_state is not None:
            self.on_state(self.id, state)

    def backoff(self, attempt: int) -> float:
        """Delay before reconnect attempt N (1-based)."""
        return min(self.initial_delay * (2 ** (attempt - 1)), self.max_delay)

    async def start(self) -> None:
        """Bind the local listener (local forwards) and start supervising.

        Raises:
            BindFailed: The local port could not be bound
        """
        if self.spec.direction is TunnelDirection.LOCAL:
            try:
                self._server = await asyncio.start_server(
                    self._accept, self.spec.bind_address, self.spec.bind_port
                )
            except OSError as e:
                self._set_state(TunnelState.failed(str(e)))
                raise BindFailed(
                    f"Failed to bind {self.spec.bind_address}:{self.spec.bind_port}: {e}"
                ) from e
        self._task = asyncio.create_task(self._supervise(), name=f"tunnel-{self.id}")

    async def wait(self) -> TunnelState:
        """Wait until the tunnel reaches Stopped or Failed."""
        if self._task is not None:
            await asyncio.shield(self._task)
        return self.state

    async def stop(self) -> None:
        """Stop the tunnel from any state. A pending reconnect is cancelled."""
        self._stop.set()
        if self._task is not None:
            await self._task
        else:
            await self._teardown()
            self._set_state(TunnelState.stopped())

    async def _supervise(self) -> None:
        attempt = 0
        try:
            while not self._stop.is_set():
                self._set_state(TunnelState.connecting())
                try:
                    if not await self._open_unless_stopped():
                        break
                except (AuthFailed, HostKeyRejected, BindFailed) as e:
                    self._set_state(TunnelState.failed(str(e)))
                    return
                except (ConnectError, ChannelError, OSError, asyncssh.Error) as e:
                    logger.warning("Tunnel %d could not connect: %s", self.id, e)
                    if not self.spec.persist:
                        self._set_state(TunnelState.failed(str(e)))
                        return
                else:
                    attempt = 0
                    self._active.set()
                    self._set_state(TunnelState.active())
                    try:
                        await self._wait_for_loss()
                    except TunnelLost as e:
                        if not self.spec.persist:
                            self._set_state(TunnelState.failed(str(e)))
                            return
                    finally:
                        self._active.clear()
                        self._close_remote_listener()
                    if self._stop.is_set():
                        break

                attempt += 1
                self.reconnects += 1
                delay = self.backoff(attempt)
                self._set_state(
                    TunnelState.reconnecting(attempt, datetime.now() + timedelta(seconds=delay))
                )
                try:
                    await asyncio.wait_for(self._stop.wait(), delay)
                except TimeoutError:
                    pass

            self._set_state(TunnelState.stopped())
        finally:
            await self._teardown()

    async def _open_unless_stopped(self) -> bool:
        """Open the forward. Returns False if stop() won the race."""
        opening = asyncio.create_task(self._open_forward())
        stopped = asyncio.create_task(self._stop.wait())
        try:
            await asyncio.wait({opening, stopped}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopped.cancel()
            if not opening.done():
                opening.cancel()
        if self._stop.is_set():
            await asyncio.gather(opening, return_exceptions=True)
            self._close_remote_listener()
            return False
        opening.result()
        return True

    async def _open_forward(self) -> None:
        self._shared = await self.supervisor.connect(self.host, keepalive=True)
        if self.spec.direction is TunnelDirection.REMOTE:
            try:
                self._remote_listener = await self._shared.connection.forward_remote_port(
                    self.spec.bind_address,
                    self.spec.bind_port,
                    self.spec.target_host,
                    self.spec.target_port,
                )
            except asyncssh.ChannelListenError as e:
                raise BindFailed(
                    f"Server refused to listen on "
                    f"{self.spec.bind_address}:{self.spec.bind_port}: {e}"
                ) from e

    async def _wait_for_loss(self) -> None:
        assert self._shared is not None
        lost = asyncio.create_task(self._shared.connection.wait_closed())
        stopped = asyncio.create_task(self._stop.wait())
        try:
            await asyncio.wait({lost, stopped}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            lost.cancel()
            stopped.cancel()
        if not self._stop.is_set():
            logger.warning("Tunnel %d lost its connection to %s", self.id, self.host.name)
            raise TunnelLost("connection lost")

    def _close_remote_listener(self) -> None:
        if self._remote_listener is not None:
            self._remote_listener.close()
            self._remote_listener = None

    async def _teardown(self) -> None:
        self._active.clear()
        self._close_remote_listener()
        if self._server is not None:
            self._server.close()
        # wait_closed() also waits for accepted connections, so drop those first
        for task in list(self._clients):
            task.cancel()
        if self._clients:
            await asyncio.gather(*self._clients, return_exceptions=True)
        if self._server is not None:
            await self._server.wait_closed()
            self._server = None

    async def _accept(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        task = asyncio.current_task()
        assert task is not None
        self._clients.add(task)
        try:
            await self._serve_client(reader, writer)
        finally:
            self._clients.discard(task)
            writer.close()

    async def _serve_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        # Queue until the tunnel is active (or stopped)
        active = asyncio.create_task(self._active.wait())
        stopped = asyncio.create_task(self._stop.wait())
        try:
            await asyncio.wait({active, stopped}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            active.cancel()
            stopped.cancel()
        if self._stop.is_set() or self._shared is None:
            return

        try:
            handle = await self._shared.open_channel(
                ChannelKind.DIRECT_TCPIP,
                host=self.spec.target_host,
                port=self.spec.target_port,
            )
        except ChannelError as e:
            logger.warning("Tunnel %d could not open forward channel: %s", self.id, e)
            return

        chan_reader, chan_writer = handle.channel
        try:
            await asyncio.gather(_pipe(reader, chan_writer), _pipe(chan_reader, writer))
        except (OSError, asyncssh.Error) as e:
            # Normal when either side closes
            logger.debug("Tunnel %d client closed: %s", self.id, e)
        finally:
            await handle.close()


class TunnelSupervisor:
    """Holds many tunnels keyed by id and fans out state events."""

    def __init__(
        self,
        supervisor: "ConnectionSupervisor",
        initial_delay: float = 1.0,
        max_delay: float = 60.0,
    ) -> None:
        self.supervisor = supervisor
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self._tunnels: dict[int, Tunnel] = {}
        self._ids = itertools.count(1)
        self._listeners: list[StateListener] = []

    def add_listener(self, listener: StateListener) -> None:
        """Register a callback for (tunnel_id, state) transitions."""
        self._listeners.append(listener)

    def _emit(self, tunnel_id: int, state: TunnelState) -> None:
        for listener in self._listeners:
            listener(tunnel_id, state)

    async def start(self, host: "SSHHost", spec: TunnelSpec) -> Tunnel:
        """Create and start a tunnel.

        Raises:
            BindFailed: A local forward could not bind its port
        """
        tunnel = Tunnel(
            next(self._ids),
            host,
            spec,
            self.supervisor,
            initial_delay=self.initial_delay,
            max_delay=self.max_delay,
            on_state=self._emit,
        )
        self._tunnels[tunnel.id] = tunnel
        logger.info("Starting tunnel %d: %s via %s", tunnel.id, spec.describe(), host.name)
        try:
            await tunnel.start()
        except BindFailed:
            del self._tunnels[tunnel.id]
            raise
        return tunnel

    def get(self, tunnel_id: int) -> Tunnel | None:
        return self._tunnels.get(tunnel_id)

    def states(self) -> dict[int, TunnelState]:
        return {tid: t.state for tid, t in self._tunnels.items()}

    async def stop(self, tunnel_id: int) -> None:
        tunnel = self._tunnels.pop(tunnel_id, None)
        if tunnel is None:
            logger.debug("No tunnel %d to stop", tunnel_id)
            return
        await tunnel.stop()

    async def stop_all(self) -> None:
        for tunnel_id in list(self._tunnels):
            await self.stop(tunnel_id)

    async def wait_all(self) -> None:
        """Wait until every tunnel is Stopped or Failed."""
        await asyncio.gather(*(t.wait() for t in list(self._tunnels.values())))

    @property
    def active_count(self) -> int:
        return sum(1 for t in self._tunnels.values() if t.state.status is TunnelStatus.ACTIVE)
