"""Terminal theming control sequences and raw-mode guard.

Titles use OSC 0. Tab colors are emitted for both Terminal.app (OSC 6) and
iTerm2 (OSC 1337); terminals ignore OSC codes they do not understand.
"""

import logging
import os
import sys
import termios
import tty
from typing import TYPE_CHECKING, BinaryIO

if TYPE_CHECKING:
    from sshore.config.settings import EnvColor
    from sshore.models import SSHHost

logger = logging.getLogger(__name__)

BEL = "\x07"
OSC = "\x1b]"

RESET_TITLE = f"{OSC}0;{BEL}"
RESET_TAB_COLOR = f"{OSC}6;1;bg;*;default{BEL}{OSC}1337;SetColors=tab=default{BEL}"
SHOW_CURSOR = "\x1b[?25h"
RESET_COLORS = "\x1b[0m"


def parse_hex_rgb(value: str) -> tuple[int, int, int] | None:
    """Parse ``#RRGGBB`` into an (r, g, b) tuple, or None if malformed."""
    if not value.startswith("#") or len(value) != 7:
        return None
    try:
        return (int(value[1:3], 16), int(value[3:5], 16), int(value[5:7], 16))
    except ValueError:
        return None


def render_tab_title(
    template: str,
    host: "SSHHost",
    env_colors: dict[str, "EnvColor"],
) -> str:
    """Fill the tab title template.

    Placeholders: {name} {host} {user} {env} {badge} {label}. Unknown
    environments render empty badge and label.
    """
    color = env_colors.get(host.env)
    return (
        template.replace("{name}", host.name)
        .replace("{host}", host.hostname)
        .replace("{user}", host.user or "")
        .replace("{env}", host.env)
        .replace("{badge}", color.badge if color else "")
        .replace("{label}", color.label if color else "")
    )


def title_sequence(title: str) -> str:
    return f"{OSC}0;{title}{BEL}"


def tab_color_sequence(hex_color: str) -> str:
    """OSC sequences that paint the tab background, empty if color is invalid."""
    rgb = parse_hex_rgb(hex_color)
    if rgb is None:
        return ""
    r, g, b = rgb
    return (
        f"{OSC}6;1;bg;red;brightness;{r}{BEL}"
        f"{OSC}6;1;bg;green;brightness;{g}{BEL}"
        f"{OSC}6;1;bg;blue;brightness;{b}{BEL}"
        f"{OSC}1337;SetColors=tab={hex_color[1:]}{BEL}"
    )


def theme_sequence(
    host: "SSHHost",
    template: str,
    env_colors: dict[str, "EnvColor"],
    title: str | None = None,
) -> bytes:
    """Everything written to the terminal when a themed session starts."""
    if title is None:
        title = render_tab_title(template, host, env_colors)
    out = title_sequence(title)
    color = env_colors.get(host.env)
    if color is not None:
        out += tab_color_sequence(color.bg)
    return out.encode("utf-8")


def reset_sequence() -> bytes:
    """Everything written to the terminal when a themed session ends."""
    return (RESET_TITLE + RESET_TAB_COLOR).encode("ascii")


def production_banner(host: "SSHHost", env_colors: dict[str, "EnvColor"]) -> bytes | None:
    """Highlighted one-line warning shown before production sessions."""
    if host.env != "production":
        return None
    color = env_colors.get(host.env)
    label = color.label if color else "PROD"
    badge = color.badge if color else ""
    line = (
        f"\x1b[1;97;41m {badge} {label} \x1b[0m "
        f"\x1b[1;91mConnecting to production host {host.name} ({host.target})\x1b[0m\r\n"
    )
    return line.encode("utf-8")


class TerminalGuard:
    """Scoped raw mode plus theming for an interactive session.

    Entering switches the local terminal to raw mode (when stdin is a tty)
    and writes the theme. Leaving restores the saved mode, writes the reset
    sequences, shows the cursor, resets colors and ends the line. Leaving
    is idempotent so signal handlers may call restore() early.
    """

    def __init__(
        self,
        theme: bytes = b"",
        stdin_fd: int | None = None,
        output: BinaryIO | None = None,
    ) -> None:
        self.theme = theme
        self.stdin_fd = sys.stdin.fileno() if stdin_fd is None else stdin_fd
        self.output = output if output is not None else sys.stdout.buffer
        self._saved_attrs: list | None = None
        self._active = False

    @property
    def is_tty(self) -> bool:
        return os.isatty(self.stdin_fd)

    def __enter__(self) -> "TerminalGuard":
        if self.is_tty:
            self._saved_attrs = termios.tcgetattr(self.stdin_fd)
            tty.setraw(self.stdin_fd)
        self._active = True
        if self.theme:
            self.write(self.theme)
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.restore()

    def write(self, data: bytes) -> None:
        self.output.write(data)
        self.output.flush()

    def restore(self) -> None:
        """Put the terminal back the way it was. Safe to call twice."""
        if not self._active:
            return
        self._active = False
        try:
            self.output.flush()
        except OSError as e:
            logger.debug("Flush before terminal restore failed: %s", e)
        if self._saved_attrs is not None:
            termios.tcsetattr(self.stdin_fd, termios.TCSADRAIN, self._saved_attrs)
            self._saved_attrs = None
        try:
            self.write(reset_sequence() + (SHOW_CURSOR + RESET_COLORS + "\r\n").encode("ascii"))
        except OSError as e:
            # Terminal already gone (window closed)
            logger.debug("Terminal reset write failed: %s", e)

    def size(self) -> tuple[int, int]:
        """Current (columns, rows) of the controlling terminal."""
        try:
            size = os.get_terminal_size(self.stdin_fd)
        except OSError:
            return (80, 24)
        return (size.columns, size.lines)
