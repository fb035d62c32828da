"""Tests for terminal theming sequences and the terminal guard."""

import io
import os

import pytest

from sshore.config.settings import DEFAULT_TAB_TITLE, default_env_colors
from sshore.models import SSHHost
from sshore.utils.terminal import (
    TerminalGuard,
    production_banner,
    render_tab_title,
    reset_sequence,
    tab_color_sequence,
    theme_sequence,
)


@pytest.fixture
def prod_host() -> SSHHost:
    return SSHHost(name="prod-web", hostname="10.0.1.5", user="deploy", env="production")


def test_render_tab_title_default_template(prod_host: SSHHost) -> None:
    title = render_tab_title(DEFAULT_TAB_TITLE, prod_host, default_env_colors())
    assert title == "🔴 PROD — prod-web"


def test_render_tab_title_all_placeholders(prod_host: SSHHost) -> None:
    title = render_tab_title(
        "{user}@{host} [{env}] {name}", prod_host, default_env_colors()
    )
    assert title == "deploy@10.0.1.5 [production] prod-web"


def test_render_tab_title_unknown_env() -> None:
    host = SSHHost(name="box", hostname="box", env="qa")
    assert render_tab_title("{badge}{label}{name}", host, default_env_colors()) == "box"


def test_tab_color_sequence() -> None:
    sequence = tab_color_sequence("#CC0000")

    assert "\x1b]6;1;bg;red;brightness;204\x07" in sequence
    assert "\x1b]6;1;bg;green;brightness;0\x07" in sequence
    assert "\x1b]6;1;bg;blue;brightness;0\x07" in sequence
    assert "\x1b]1337;SetColors=tab=CC0000\x07" in sequence


@pytest.mark.parametrize("value", ["CC0000", "#CC00", "#GG0000", ""])
def test_tab_color_sequence_invalid(value: str) -> None:
    assert tab_color_sequence(value) == ""


def test_theme_sequence_title_then_color(prod_host: SSHHost) -> None:
    theme = theme_sequence(prod_host, "{name}", default_env_colors())

    assert theme.startswith(b"\x1b]0;prod-web\x07")
    assert b"SetColors=tab=CC0000" in theme


def test_theme_sequence_without_env_has_no_color() -> None:
    host = SSHHost(name="box", hostname="box")
    assert theme_sequence(host, "{name}", default_env_colors()) == b"\x1b]0;box\x07"


def test_reset_sequence() -> None:
    reset = reset_sequence()
    assert b"\x1b]0;\x07" in reset
    assert b"\x1b]6;1;bg;*;default\x07" in reset
    assert b"\x1b]1337;SetColors=tab=default\x07" in reset


def test_production_banner(prod_host: SSHHost) -> None:
    banner = production_banner(prod_host, default_env_colors())
    assert banner is not None
    assert b"PROD" in banner
    assert b"prod-web" in banner
    assert production_banner(SSHHost(name="d", hostname="d", env="development"), {}) is None


@pytest.fixture
def pipe_fd():
    read_fd, write_fd = os.pipe()
    yield read_fd
    os.close(read_fd)
    os.close(write_fd)


def test_guard_writes_theme_and_reset(pipe_fd: int) -> None:
    """Non-tty input skips raw mode but theming still happens."""
    output = io.BytesIO()
    guard = TerminalGuard(theme=b"THEME", stdin_fd=pipe_fd, output=output)

    with guard:
        guard.write(b"data")

    written = output.getvalue()
    assert written.startswith(b"THEMEdata")
    assert written.endswith(reset_sequence() + b"\x1b[?25h\x1b[0m\r\n")


def test_guard_restores_on_exception(pipe_fd: int) -> None:
    output = io.BytesIO()
    guard = TerminalGuard(theme=b"T", stdin_fd=pipe_fd, output=output)

    with pytest.raises(RuntimeError):
        with guard:
            raise RuntimeError("shell died")

    assert reset_sequence() in output.getvalue()


def test_guard_restore_is_idempotent(pipe_fd: int) -> None:
    output = io.BytesIO()
    guard = TerminalGuard(stdin_fd=pipe_fd, output=output)

    with guard:
        guard.restore()
    guard.restore()

    assert output.getvalue().count(reset_sequence()) == 1


def test_guard_size_fallback(pipe_fd: int) -> None:
    guard = TerminalGuard(stdin_fd=pipe_fd, output=io.BytesIO())
    assert guard.size() == (80, 24)
