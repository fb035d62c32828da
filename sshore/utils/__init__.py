"""Utilities for sshore."""

from sshore.utils.console import ColorfulFormatter
from sshore.utils.progress import ProgressBar, format_bytes, format_duration, format_rate
from sshore.utils.transfer import TransferDirection, parse_remote_spec, resolve_transfer
from sshore.utils.validation import parse_forward_spec, validate_host, validate_port

__all__ = [
    "ColorfulFormatter",
    "format_bytes",
    "format_duration",
    "format_rate",
    "parse_forward_spec",
    "parse_remote_spec",
    "ProgressBar",
    "resolve_transfer",
    "TransferDirection",
    "validate_host",
    "validate_port",
]
