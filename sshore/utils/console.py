"""Colorful console logging formatter."""

import logging
import re
from datetime import datetime

# ANSI color codes
COLORS = {
    "reset": "\033[0m",
    "bold": "\033[1m",
    "dim": "\033[2m",
    "red": "\033[31m",
    "green": "\033[32m",
    "yellow": "\033[33m",
    "blue": "\033[34m",
    "magenta": "\033[35m",
    "cyan": "\033[36m",
    "white": "\033[37m",
    "bright_black": "\033[90m",
    "bright_red": "\033[91m",
    "bright_green": "\033[92m",
    "bright_yellow": "\033[93m",
    "bright_blue": "\033[94m",
    "bright_magenta": "\033[95m",
    "bright_cyan": "\033[96m",
    "bg_red": "\033[41m",
}

# Log level colors
LEVEL_COLORS = {
    "DEBUG": COLORS["bright_black"],
    "INFO": COLORS["bright_green"],
    "WARNING": COLORS["bright_yellow"],
    "ERROR": COLORS["bright_red"],
    "CRITICAL": COLORS["bg_red"] + COLORS["white"] + COLORS["bold"],
}

# Component colors for logger names
COMPONENT_COLORS = {
    "sshore.services.supervisor": COLORS["bright_magenta"],
    "sshore.services.session": COLORS["bright_cyan"],
    "sshore.services.tunnels": COLORS["bright_blue"],
    "sshore.services.sftp": COLORS["cyan"],
    "sshore.services.exec_runner": COLORS["yellow"],
    "sshore.config": COLORS["green"],
    "default": COLORS["white"],
}

SSH_TARGET_PATTERN = re.compile(r"(\w[\w.\-]*@[\w.\-]+:\d+)")
TUNNEL_PATTERN = re.compile(r"(-[LR] [\w.\-]+:\d+:[\w.\-]+:\d+)")
FINGERPRINT_PATTERN = re.compile(r"(SHA256:[A-Za-z0-9+/]+)")


class ColorfulFormatter(logging.Formatter):
    """Colorful log formatter with component highlighting."""

    def __init__(self, use_colors: bool = True) -> None:
        """Initialize the formatter.

        Args:
            use_colors: Whether to use ANSI colors.
        """
        super().__init__()
        self.use_colors = use_colors

    def _colorize(self, text: str, color: str) -> str:
        """Apply color to text if colors are enabled."""
        if not self.use_colors:
            return text
        return f"{color}{text}{COLORS['reset']}"

    def _get_component_color(self, name: str) -> str:
        for prefix, color in COMPONENT_COLORS.items():
            if prefix != "default" and name.startswith(prefix):
                return color
        return COMPONENT_COLORS["default"]

    def _format_timestamp(self, record: logging.LogRecord) -> str:
        dt = datetime.fromtimestamp(record.created)
        return f"{dt:%H:%M:%S}.{int(record.msecs):03d}"

    def _format_component(self, record: logging.LogRecord) -> str:
        name = record.name.removeprefix("sshore.")
        color = self._get_component_color(record.name)
        return self._colorize(f"{name:<22}", color)

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record with colors."""
        timestamp = self._colorize(self._format_timestamp(record), COLORS["dim"])
        level = self._colorize(
            f"{record.levelname:<8}",
            LEVEL_COLORS.get(record.levelname, COLORS["white"]),
        )
        component = self._format_component(record)
        sep = self._colorize("|", COLORS["dim"])
        message = self._highlight_message(record.getMessage())

        line = f"{timestamp} {sep} {level} {sep} {component} {sep} {message}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        # Raw-mode terminals need an explicit carriage return
        return line.replace("\n", "\r\n")

    def _highlight_message(self, message: str) -> str:
        """Highlight connection targets, forwards and fingerprints."""
        if not self.use_colors:
            return message

        for pattern, color in (
            (SSH_TARGET_PATTERN, COLORS["bright_magenta"]),
            (TUNNEL_PATTERN, COLORS["bright_blue"]),
            (FINGERPRINT_PATTERN, COLORS["bright_yellow"]),
        ):
            message = pattern.sub(f"{color}\\1{COLORS['reset']}", message)
        return message
