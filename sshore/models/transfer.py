"""File transfer models."""

from dataclasses import dataclass


@dataclass
class TransferState:
    """Checkpoint of a transfer.

    ``bytes_transferred`` counts bytes present at the destination, including
    the ``resume_offset`` bytes that were already there when it started.
    """

    source: str
    destination: str
    total_bytes: int
    bytes_transferred: int = 0
    resume_offset: int = 0

    @property
    def remaining(self) -> int:
        return self.total_bytes - self.bytes_transferred

    @property
    def complete(self) -> bool:
        return self.bytes_transferred >= self.total_bytes


@dataclass(frozen=True)
class TransferProgress:
    """Progress report handed to transfer callbacks."""

    bytes_transferred: int
    total: int
    rate: float

    @property
    def percent(self) -> float:
        if self.total == 0:
            return 100.0
        return self.bytes_transferred * 100.0 / self.total
