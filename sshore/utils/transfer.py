"""Transfer endpoint parsing and direction detection."""

from dataclasses import dataclass
from enum import Enum


class TransferDirection(Enum):
    """Which way bytes flow relative to this machine."""

    UPLOAD = "upload"
    DOWNLOAD = "download"


@dataclass
class TransferPath:
    """Resolved transfer endpoints."""

    direction: TransferDirection
    host: str
    remote_path: str
    local_path: str

    @property
    def source(self) -> str:
        if self.direction is TransferDirection.UPLOAD:
            return self.local_path
        return f"{self.host}:{self.remote_path}"

    @property
    def destination(self) -> str:
        if self.direction is TransferDirection.UPLOAD:
            return f"{self.host}:{self.remote_path}"
        return self.local_path


def parse_remote_spec(spec: str) -> tuple[str, str] | None:
    """Split ``host:path`` into its parts.

    Paths starting with ``/`` or ``.`` are always local, as is anything
    without a colon or with an empty host part.

    Examples:
        >>> parse_remote_spec("prod-web:/var/log/app.log")
        ('prod-web', '/var/log/app.log')
        >>> parse_remote_spec("./notes:today") is None
        True
    """
    if spec.startswith(("/", ".")):
        return None

    host, sep, path = spec.partition(":")
    if not sep or not host:
        return None
    return host, path


def resolve_transfer(source: str, destination: str) -> TransferPath:
    """Work out the transfer direction from two endpoint specs.

    Exactly one side must be remote.

    Raises:
        ValueError: If both or neither side is remote.
    """
    src_remote = parse_remote_spec(source)
    dst_remote = parse_remote_spec(destination)

    if src_remote and dst_remote:
        raise ValueError(
            "Both source and destination are remote. Only one can be remote."
        )
    if src_remote is None and dst_remote is None:
        raise ValueError(
            "Neither source nor destination is remote. "
            "Use host:path syntax for the remote side."
        )

    if src_remote is not None:
        host, remote_path = src_remote
        return TransferPath(
            direction=TransferDirection.DOWNLOAD,
            host=host,
            remote_path=remote_path,
            local_path=destination,
        )

    assert dst_remote is not None
    host, remote_path = dst_remote
    return TransferPath(
        direction=TransferDirection.UPLOAD,
        host=host,
        remote_path=remote_path,
        local_path=source,
    )
