"""Tests for size/rate formatting and progress reporting."""

import io

from sshore.models import TransferProgress
from sshore.utils.progress import (
    ProgressBar,
    RateMeter,
    format_bytes,
    format_duration,
    format_rate,
)


def test_format_bytes() -> None:
    assert format_bytes(0) == "0B"
    assert format_bytes(1023) == "1023B"
    assert format_bytes(1536) == "1.5KB"
    assert format_bytes(5 * 1024 * 1024) == "5.0MB"
    assert format_bytes(3 * 1024**3) == "3.0GB"


def test_format_rate() -> None:
    assert format_rate(512) == "512B/s"
    assert format_rate(2048) == "2KB/s"
    assert format_rate(1.5 * 1024 * 1024) == "1.5MB/s"


def test_format_duration() -> None:
    assert format_duration(5) == "5s"
    assert format_duration(125) == "2m 5s"
    assert format_duration(3720) == "1h 2m"


def test_rate_meter_throttles() -> None:
    now = [0.0]
    meter = RateMeter(interval=0.1, clock=lambda: now[0])

    assert not meter.due()
    now[0] = 0.05
    assert not meter.due()
    now[0] = 0.15
    assert meter.due()
    assert not meter.due()
    now[0] = 2.0
    assert meter.rate(1000) == 500.0


def test_rate_meter_zero_elapsed() -> None:
    meter = RateMeter(clock=lambda: 1.0)
    assert meter.rate(100) == 0.0


def test_progress_bar_output() -> None:
    stream = io.StringIO()
    bar = ProgressBar("a -> b", stream=stream)

    bar(TransferProgress(bytes_transferred=50, total=100, rate=10.0))
    bar(TransferProgress(bytes_transferred=100, total=100, rate=10.0))
    bar.finish()

    output = stream.getvalue()
    assert output.startswith("a -> b\n")
    assert "50%" in output
    assert "100%" in output
    assert "ETA: 5s" in output
    assert output.endswith("\n")
