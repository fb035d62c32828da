"""Resumable SFTP file transfers.

Every transfer runs on its own SFTP channel of the shared host connection,
so a failing transfer never disturbs an interactive shell on the same host.
"""

import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any

import asyncssh

from sshore.errors import (
    ResumeMismatch,
    TransferInterrupted,
    TransferIOError,
)
from sshore.models import TransferProgress, TransferState
from sshore.services.channels import ChannelKind
from sshore.utils.progress import RateMeter, format_bytes
from sshore.utils.transfer import TransferDirection, TransferPath, resolve_transfer

if TYPE_CHECKING:
    from sshore.models import SSHHost
    from sshore.services.supervisor import ConnectionSupervisor

logger = logging.getLogger(__name__)

CHUNK_SIZE = 32 * 1024
PROGRESS_INTERVAL = 0.1

ProgressCallback = Callable[[TransferProgress], None]


class SftpEngine:
    """Uploads and downloads with resume support."""

    def __init__(
        self,
        supervisor: "ConnectionSupervisor",
        host_lookup: Callable[[str], "SSHHost"],
        chunk_size: int = CHUNK_SIZE,
        progress_interval: float = PROGRESS_INTERVAL,
    ) -> None:
        """Initialize the engine.

        Args:
            supervisor: Source of shared host connections
            host_lookup: Resolves the host part of ``host:path``
            chunk_size: Bytes per read/write
            progress_interval: Minimum seconds between progress reports
        """
        self.supervisor = supervisor
        self.host_lookup = host_lookup
        self.chunk_size = chunk_size
        self.progress_interval = progress_interval

    async def transfer(
        self,
        source: str,
        destination: str,
        resume: bool = False,
        progress: ProgressCallback | None = None,
    ) -> TransferState:
        """Copy a file between this machine and a host.

        Exactly one side is written ``host:path``. With resume, an existing
        destination no larger than the source is continued from its current
        size; a larger one is an error and is left untouched.

        Returns:
            Final TransferState

        Raises:
            ValueError: Both or neither side is remote
            ResumeMismatch: Destination larger than source
            TransferIOError: Local or remote I/O failed (partial data kept)
            TransferInterrupted: The channel went away (partial data kept)
        """
        path = resolve_transfer(source, destination)
        host = self.host_lookup(path.host)

        handle = await self.supervisor.open_channel(host, ChannelKind.SFTP)
        sftp = handle.channel
        try:
            return await self._run(sftp, path, resume, progress)
        finally:
            await handle.close()

    async def _run(
        self,
        sftp: Any,
        path: TransferPath,
        resume: bool,
        progress: ProgressCallback | None,
    ) -> TransferState:
        try:
            if path.direction is TransferDirection.DOWNLOAD:
                total = (await sftp.stat(path.remote_path)).size or 0
                dest_size = _local_size(path.local_path)
            else:
                total = os.stat(path.local_path).st_size
                dest_size = await _remote_size(sftp, path.remote_path)
        except (OSError, asyncssh.SFTPError) as e:
            raise TransferIOError(f"Cannot stat {path.source}: {e}") from e

        offset = 0
        if resume and dest_size is not None:
            if dest_size > total:
                raise ResumeMismatch(
                    f"{path.destination} is larger than {path.source} "
                    f"({format_bytes(dest_size)} > {format_bytes(total)}), "
                    "refusing to resume",
                    TransferState(path.source, path.destination, total),
                )
            offset = dest_size

        state = TransferState(
            source=path.source,
            destination=path.destination,
            total_bytes=total,
            bytes_transferred=offset,
            resume_offset=offset,
        )
        if offset:
            logger.info(
                "Resuming %s -> %s from %s", path.source, path.destination, format_bytes(offset)
            )

        meter = RateMeter(self.progress_interval)

        def report(final: bool = False) -> None:
            if progress is None:
                return
            if final or meter.due():
                progress(
                    TransferProgress(
                        bytes_transferred=state.bytes_transferred,
                        total=state.total_bytes,
                        rate=meter.rate(state.bytes_transferred - offset),
                    )
                )

        if state.complete:
            report(final=True)
            return state

        try:
            if path.direction is TransferDirection.DOWNLOAD:
                await self._download(sftp, path, state, report)
            else:
                await self._upload(sftp, path, state, report)
        except (asyncssh.SFTPConnectionLost, asyncssh.ConnectionLost, asyncssh.DisconnectError, BrokenPipeError) as e:
            raise TransferInterrupted(
                f"Transfer {path.source} -> {path.destination} interrupted at "
                f"{format_bytes(state.bytes_transferred)}: {e}",
                state,
            ) from e
        except (OSError, asyncssh.SFTPError) as e:
            raise TransferIOError(
                f"Transfer {path.source} -> {path.destination} failed at "
                f"{format_bytes(state.bytes_transferred)}: {e}",
                state,
            ) from e

        if not state.complete:
            # Source hit EOF before its stat size
            raise TransferInterrupted(
                f"Transfer {path.source} -> {path.destination} ended early at "
                f"{format_bytes(state.bytes_transferred)} of {format_bytes(state.total_bytes)}",
                state,
            )

        report(final=True)
        logger.info(
            "Transferred %s -> %s (%s)",
            path.source,
            path.destination,
            format_bytes(state.bytes_transferred - offset),
        )
        return state

    async def _download(
        self,
        sftp: Any,
        path: TransferPath,
        state: TransferState,
        report: Callable[[], None],
    ) -> None:
        mode = "r+b" if state.resume_offset else "wb"
        remote = await sftp.open(path.remote_path, "rb")
        try:
            with open(path.local_path, mode) as local:
                local.seek(state.resume_offset)
                while state.bytes_transferred < state.total_bytes:
                    size = min(self.chunk_size, state.total_bytes - state.bytes_transferred)
                    data = await remote.read(size, state.bytes_transferred)
                    if not data:
                        break
                    local.write(data)
                    local.flush()
                    state.bytes_transferred += len(data)
                    report()
        finally:
            await remote.close()

    async def _upload(
        self,
        sftp: Any,
        path: TransferPath,
        state: TransferState,
        report: Callable[[], None],
    ) -> None:
        mode = "r+b" if state.resume_offset else "wb"
        remote = await sftp.open(path.remote_path, mode)
        try:
            with open(path.local_path, "rb") as local:
                local.seek(state.resume_offset)
                while state.bytes_transferred < state.total_bytes:
                    size = min(self.chunk_size, state.total_bytes - state.bytes_transferred)
                    data = local.read(size)
                    if not data:
                        break
                    await remote.write(data, state.bytes_transferred)
                    state.bytes_transferred += len(data)
                    report()
        finally:
            await remote.close()


def _local_size(path: str) -> int | None:
    local = Path(path)
    return local.stat().st_size if local.is_file() else None


async def _remote_size(sftp: Any, path: str) -> int | None:
    try:
        attrs = await sftp.stat(path)
    except asyncssh.SFTPNoSuchFile:
        return None
    return attrs.size or 0
