"""Human readable sizes, rates and a stderr progress bar."""

import sys
import time
from typing import TextIO

from sshore.models import TransferProgress

KB = 1024
MB = 1024 * KB
GB = 1024 * MB

BAR_WIDTH = 30


def format_bytes(n: int) -> str:
    """Format a byte count (1024 based)."""
    if n >= GB:
        return f"{n / GB:.1f}GB"
    if n >= MB:
        return f"{n / MB:.1f}MB"
    if n >= KB:
        return f"{n / KB:.1f}KB"
    return f"{n}B"


def format_rate(bps: float) -> str:
    """Format a transfer rate in bytes per second."""
    if bps >= MB:
        return f"{bps / MB:.1f}MB/s"
    if bps >= KB:
        return f"{bps / KB:.0f}KB/s"
    return f"{bps:.0f}B/s"


def format_duration(secs: int) -> str:
    """Format whole seconds as ``1h 2m``, ``3m 4s`` or ``5s``."""
    if secs >= 3600:
        return f"{secs // 3600}h {(secs % 3600) // 60}m"
    if secs >= 60:
        return f"{secs // 60}m {secs % 60}s"
    return f"{secs}s"


class ProgressBar:
    """Single-line progress display fed by transfer callbacks."""

    def __init__(self, label: str, stream: TextIO | None = None) -> None:
        self.label = label
        self.stream = stream or sys.stderr
        self._started = False

    def __call__(self, progress: TransferProgress) -> None:
        if not self._started:
            self.stream.write(f"{self.label}\n")
            self._started = True

        total = progress.total
        done = progress.bytes_transferred
        filled = BAR_WIDTH if total == 0 else int(BAR_WIDTH * done / total)
        if progress.rate > 0 and done < total:
            eta = format_duration(int((total - done) / progress.rate))
        else:
            eta = "-"

        self.stream.write(
            f"\r[{'=' * filled}>{' ' * (BAR_WIDTH - filled)}] "
            f"{min(progress.percent, 100.0):.0f}% "
            f"{format_bytes(done)}/{format_bytes(total)} "
            f"{format_rate(progress.rate)} ETA: {eta}    "
        )
        self.stream.flush()

    def finish(self) -> None:
        if self._started:
            self.stream.write("\n")
            self.stream.flush()


class RateMeter:
    """Tracks elapsed time and decides when a progress report is due."""

    def __init__(self, interval: float = 0.1, clock=time.monotonic) -> None:
        self.interval = interval
        self._clock = clock
        self._start = clock()
        self._last_report = self._start

    def due(self) -> bool:
        now = self._clock()
        if now - self._last_report >= self.interval:
            self._last_report = now
            return True
        return False

    def rate(self, nbytes: int) -> float:
        elapsed = self._clock() - self._start
        return nbytes / elapsed if elapsed > 0 else 0.0
