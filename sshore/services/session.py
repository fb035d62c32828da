"""Interactive shell session over a shared host connection.

Proxies the local terminal to a remote shell channel. Remote output is
watched for password prompts, local keystrokes for the snippet trigger, and
the terminal is themed on start and restored on every exit path.
"""

import asyncio
import logging
import os
import signal
from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING, BinaryIO

import asyncssh

from sshore.errors import ChannelClosed
from sshore.services.channels import ChannelHandle, ChannelKind
from sshore.services.interceptors import (
    SnippetTrigger,
    SudoPromptWatcher,
    clear_picker,
    merge_snippets,
    pick_snippet,
    render_picker,
    split_keystroke,
)
from sshore.services.keychain import Keychain, KeychainError
from sshore.utils.terminal import TerminalGuard, production_banner, theme_sequence

if TYPE_CHECKING:
    from sshore.config.settings import Settings
    from sshore.models import SSHHost
    from sshore.services.supervisor import ConnectionSupervisor

logger = logging.getLogger(__name__)

READ_SIZE = 4096
ENTER_KEYS = (b"\r", b"\n")

PASSWORD_NOTICE = (
    b"\r\n[sshore] Password found in keychain. "
    b"Press Enter to auto-fill, any other key to skip.\r\n"
)


class SessionState(Enum):
    """Interactive session lifecycle."""

    CONNECTING = "connecting"
    SHELL_OPEN = "shell_open"
    ACTIVE = "active"
    CLOSED = "closed"
    ERRORED = "errored"


class InteractiveSession:
    """One interactive shell on a host.

    Only the shell channel belongs to the session; detaching or failing
    leaves the connection and its other channels running.
    """

    def __init__(
        self,
        supervisor: "ConnectionSupervisor",
        host: "SSHHost",
        settings: "Settings",
        keychain: Keychain | None = None,
        stdin_fd: int | None = None,
        output: BinaryIO | None = None,
        read_stdin: bool = True,
        install_signals: bool = True,
        on_state: Callable[[SessionState], None] | None = None,
    ) -> None:
        """Initialize the session.

        Args:
            supervisor: Source of the shared host connection
            host: Host to open the shell on
            settings: Theme, trigger and prompt settings
            keychain: Password source for prompt auto-fill
            stdin_fd: Local input fd (defaults to stdin)
            output: Local terminal output (defaults to stdout)
            read_stdin: Attach a reader to stdin_fd. When False input
                arrives through feed_input()
            install_signals: Handle SIGWINCH, SIGTERM and SIGHUP
            on_state: Called on every state transition
        """
        self.supervisor = supervisor
        self.host = host
        self.settings = settings
        self.keychain = keychain or supervisor.keychain
        self.read_stdin = read_stdin
        self.install_signals = install_signals
        self.on_state = on_state

        self.guard = TerminalGuard(
            theme=theme_sequence(host, settings.tab_title_template, settings.env_colors),
            stdin_fd=stdin_fd,
            output=output,
        )
        self.watcher = SudoPromptWatcher(
            enabled=host.has_password,
            extra_patterns=settings.prompt_patterns,
        )
        self.snippets = merge_snippets(host.snippets, settings.global_snippets)
        # Nothing to pick from, so keystrokes pass straight through
        self.trigger = SnippetTrigger(settings.snippet_trigger if self.snippets else "")

        self._state = SessionState.CONNECTING
        self._input: asyncio.Queue[bytes] = asyncio.Queue()
        self._stop = asyncio.Event()
        self._done = asyncio.Event()
        self._awaiting_password = False
        self._handle: ChannelHandle | None = None
        self._process: asyncssh.SSHClientProcess | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    def _set_state(self, state: SessionState) -> None:
        self._state = state
        logger.debug("Session on %s: %s", self.host.name, state.value)
        if self.on_state is not None:
            self.on_state(state)

    def feed_input(self, data: bytes) -> None:
        """Queue local keystrokes. Empty bytes means local EOF."""
        self._input.put_nowait(data)

    async def run(self) -> int:
        """Run the session until the remote shell exits or it is detached.

        Returns:
            Remote exit status (0 when unknown)

        Raises:
            ConnectError: Connection could not be established
            ChannelError: The shell channel could not be opened or was lost
        """
        try:
            shared = await self.supervisor.connect(self.host)
            banner = production_banner(self.host, self.settings.env_colors)
            if banner:
                self.guard.write(banner)

            self._handle = await shared.open_channel(
                ChannelKind.SHELL,
                term_type=os.getenv("TERM", "xterm-256color"),
                term_size=self.guard.size(),
            )
            self._process = self._handle.channel
            self._set_state(SessionState.SHELL_OPEN)

            with self.guard:
                self._set_state(SessionState.ACTIVE)
                await self._proxy()
        except BaseException:
            self._set_state(SessionState.ERRORED)
            raise
        finally:
            if self._handle is not None:
                await self._handle.close()
            self._done.set()

        self._set_state(SessionState.CLOSED)
        status = self._process.exit_status if self._process is not None else None
        return status if status is not None and status >= 0 else 0

    async def detach(self) -> None:
        """Tear down this session only and wait until the terminal is restored."""
        self._stop.set()
        if self._state in (SessionState.SHELL_OPEN, SessionState.ACTIVE):
            await self._done.wait()

    async def _proxy(self) -> None:
        loop = asyncio.get_running_loop()
        self._attach(loop)
        tasks = {
            asyncio.create_task(self._pump_remote(), name="remote-output"),
            asyncio.create_task(self._pump_local(), name="local-input"),
            asyncio.create_task(self._stop.wait(), name="stop"),
        }
        try:
            done, _pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    raise task.exception()  # type: ignore[misc]
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            self._detach(loop)

    def _attach(self, loop: asyncio.AbstractEventLoop) -> None:
        if self.read_stdin:
            loop.add_reader(self.guard.stdin_fd, self._on_stdin_ready)
        if self.install_signals:
            try:
                loop.add_signal_handler(signal.SIGWINCH, self._on_resize)
                loop.add_signal_handler(signal.SIGTERM, self._stop.set)
                loop.add_signal_handler(signal.SIGHUP, self._stop.set)
            except (NotImplementedError, RuntimeError) as e:
                logger.debug("Signal handlers unavailable: %s", e)

    def _detach(self, loop: asyncio.AbstractEventLoop) -> None:
        if self.read_stdin:
            loop.remove_reader(self.guard.stdin_fd)
        if self.install_signals:
            for sig in (signal.SIGWINCH, signal.SIGTERM, signal.SIGHUP):
                try:
                    loop.remove_signal_handler(sig)
                except (NotImplementedError, RuntimeError):
                    pass

    def _on_stdin_ready(self) -> None:
        try:
            data = os.read(self.guard.stdin_fd, READ_SIZE)
        except OSError as e:
            logger.debug("stdin read failed: %s", e)
            data = b""
        self.feed_input(data)

    def _on_resize(self) -> None:
        if self._process is None:
            return
        cols, rows = self.guard.size()
        try:
            self._process.change_terminal_size(cols, rows)
        except (OSError, asyncssh.Error) as e:
            logger.debug("Terminal resize failed: %s", e)

    async def _pump_remote(self) -> None:
        """Copy remote output to the terminal and watch it for prompts."""
        assert self._process is not None
        stdout = self._process.stdout
        try:
            while True:
                data = await stdout.read(READ_SIZE)
                if not data:
                    return
                try:
                    self.guard.write(data)
                except BrokenPipeError:
                    # Local terminal went away
                    return
                if not self._awaiting_password and self.watcher.feed(data):
                    self._awaiting_password = True
                    self.guard.write(PASSWORD_NOTICE)
        except (asyncssh.ConnectionLost, asyncssh.DisconnectError) as e:
            raise ChannelClosed(f"Shell on {self.host.name} lost: {e}") from e

    async def _pump_local(self) -> None:
        """Copy keystrokes to the channel, running interceptors first."""
        while True:
            data = await self._input.get()
            if not data:
                # Let the remote side finish and close the channel
                self._write_remote_eof()
                await self._stop.wait()
                return
            await self._handle_input(data)

    async def _handle_input(self, data: bytes) -> None:
        if self._awaiting_password:
            self._awaiting_password = False
            key, data = split_keystroke(data)
            # The decision keystroke itself is never forwarded
            if key in ENTER_KEYS:
                await self._inject_password()
            self.watcher.clear()

        while data:
            forward, fired, data = self.trigger.feed(data)
            if forward:
                self._write_remote(forward)
            if fired:
                data = await self._run_picker(data)

    async def _inject_password(self) -> None:
        account = self.host.password_account
        if not account:
            return
        try:
            password = await asyncio.to_thread(self.keychain.get_password, account)
        except KeychainError as e:
            logger.warning("Keychain lookup for %s failed: %s", self.host.name, e)
            return
        if password is None:
            logger.warning("No keychain password stored for %s", self.host.name)
            return
        self._write_remote(password.encode("utf-8") + b"\n")
        del password
        logger.info("Filled password prompt on %s from keychain", self.host.name)

    async def _run_picker(self, pending: bytes) -> bytes:
        """Show the picker and act on one keystroke.

        The keystroke is taken from pending input first. Returns whatever
        input followed it so the caller keeps forwarding it.
        """
        if not self.snippets:
            return pending
        self.guard.write(render_picker(self.snippets))
        if not pending:
            pending = await self._input.get()
        self.guard.write(clear_picker(self.snippets))
        if not pending:
            self.feed_input(b"")
            return b""
        key, rest = split_keystroke(pending)
        snippet = pick_snippet(self.snippets, key)
        if snippet is not None:
            logger.debug("Injecting snippet %r on %s", snippet.name, self.host.name)
            self._write_remote(snippet.payload)
        return rest

    def _write_remote(self, data: bytes) -> None:
        assert self._process is not None
        self._process.stdin.write(data)

    def _write_remote_eof(self) -> None:
        assert self._process is not None
        try:
            self._process.stdin.write_eof()
        except (OSError, asyncssh.Error) as e:
            logger.debug("Sending EOF failed: %s", e)
