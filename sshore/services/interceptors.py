"""Byte-stream interceptors for interactive sessions.

SudoPromptWatcher scans remote output for password prompts.
SnippetTrigger scans local keystrokes for the snippet escape sequence.
"""

import logging
import re
from enum import Enum
from typing import Final

from sshore.models import Snippet

logger = logging.getLogger(__name__)

WINDOW_SIZE: Final = 256
MAX_PICKER_ENTRIES: Final = 9

DEFAULT_PROMPT_PATTERNS: Final[list[bytes]] = [
    rb"\[sudo\] password for \S+:[ \t]*\Z",
    rb"\[sudo: authenticate\] Password:[ \t]*\Z",
    rb"[Pp]assword:[ \t]*\Z",
    rb"\S+'s password:[ \t]*\Z",
    rb"Enter passphrase for key '.+':[ \t]*\Z",
    rb"doas \(\S+\) password:[ \t]*\Z",
]


class SudoPromptWatcher:
    """Detects privilege escalation password prompts in remote output.

    Keeps a sliding window of the most recent output bytes so a prompt split
    across any number of chunks is still seen. The window is cleared when a
    prompt matches, so one prompt fires exactly once.
    """

    def __init__(
        self,
        enabled: bool = True,
        extra_patterns: list[str] | None = None,
        window_size: int = WINDOW_SIZE,
    ) -> None:
        """Initialize the watcher.

        Args:
            enabled: False when the host has no stored password
            extra_patterns: Additional prompt regexes (str, matched as UTF-8)
            window_size: Bytes of recent output to keep
        """
        self.enabled = enabled
        self.window_size = window_size
        self.patterns = [re.compile(p) for p in DEFAULT_PROMPT_PATTERNS]
        for pattern in extra_patterns or []:
            try:
                self.patterns.append(re.compile(pattern.encode("utf-8")))
            except re.error as e:
                logger.warning("Ignoring invalid prompt pattern %r: %s", pattern, e)
        self._window = bytearray()

    def feed(self, data: bytes) -> bool:
        """Feed remote output. Returns True when a prompt just completed."""
        if not self.enabled or not data:
            return False

        self._window.extend(data)
        if len(self._window) > self.window_size:
            del self._window[: len(self._window) - self.window_size]

        window = bytes(self._window)
        if any(p.search(window) for p in self.patterns):
            self.clear()
            return True
        return False

    def clear(self) -> None:
        self._window.clear()


class TriggerAction(Enum):
    """What the session should do after feeding a keystroke byte."""

    FORWARD = "forward"
    BUFFER = "buffer"
    TRIGGER = "trigger"


class SnippetTrigger:
    """Detects the snippet escape sequence in outgoing keystrokes.

    State is the number of trigger bytes matched so far. A partial match that
    breaks is flushed unchanged. An empty trigger disables detection.
    """

    def __init__(self, trigger: str = "~~") -> None:
        self.trigger = trigger.encode("utf-8")
        self._matched = 0

    @property
    def enabled(self) -> bool:
        return bool(self.trigger)

    @property
    def pending(self) -> bytes:
        """Bytes held back while a partial match is in progress."""
        return self.trigger[: self._matched]

    def feed_byte(self, byte: int) -> tuple[TriggerAction, bytes]:
        """Feed one keystroke byte.

        Returns:
            (action, bytes to forward). Bytes are only non-empty for FORWARD.
        """
        if not self.trigger:
            return TriggerAction.FORWARD, bytes([byte])

        if byte == self.trigger[self._matched]:
            self._matched += 1
            if self._matched == len(self.trigger):
                self._matched = 0
                return TriggerAction.TRIGGER, b""
            return TriggerAction.BUFFER, b""

        if self._matched == 0:
            return TriggerAction.FORWARD, bytes([byte])

        flushed = self.pending + bytes([byte])
        self._matched = 0
        return TriggerAction.FORWARD, flushed

    def feed(self, data: bytes) -> tuple[bytes, bool, bytes]:
        """Feed a chunk of keystrokes.

        Returns:
            (bytes to forward before the trigger, whether the trigger fired,
            unprocessed bytes that followed the trigger)
        """
        out = bytearray()
        for index, byte in enumerate(data):
            action, forward = self.feed_byte(byte)
            if action is TriggerAction.TRIGGER:
                return bytes(out), True, data[index + 1 :]
            out.extend(forward)
        return bytes(out), False, b""

    def reset(self) -> None:
        self._matched = 0


def merge_snippets(host_snippets: list[Snippet], global_snippets: list[Snippet]) -> list[Snippet]:
    """Host snippets first, then global ones whose names are not taken."""
    merged = list(host_snippets)
    taken = {s.name for s in host_snippets}
    merged.extend(s for s in global_snippets if s.name not in taken)
    return merged


def render_picker(snippets: list[Snippet]) -> bytes:
    """Inline picker listing written below the cursor."""
    shown = snippets[:MAX_PICKER_ENTRIES]
    lines = ["\r\n\x1b[1m── Snippets ──\x1b[0m\r\n"]
    for number, snippet in enumerate(shown, start=1):
        lines.append(f"  \x1b[33m{number}\x1b[0m. {snippet.name}\r\n")
    lines.append(f"\x1b[2m(1-{len(shown)} select, Esc cancel)\x1b[0m\r\n")
    return "".join(lines).encode("utf-8")


def clear_picker(snippets: list[Snippet]) -> bytes:
    """Erase the picker lines (header, entries, footer)."""
    return b"\x1b[A\x1b[2K" * (min(len(snippets), MAX_PICKER_ENTRIES) + 2)


def split_keystroke(data: bytes) -> tuple[bytes, bytes]:
    """Split the first keystroke off a chunk of terminal input.

    An escape sequence (arrow keys, function keys, Alt+key) or a multi-byte
    UTF-8 character counts as one keystroke.

    Returns:
        (first keystroke, remaining bytes)
    """
    if not data:
        return b"", b""

    first = data[0]
    end = 1
    if first == 0x1B and len(data) > 1:
        if data[1] == ord("["):
            # CSI: parameter and intermediate bytes, then one final byte
            end = 2
            while end < len(data) and 0x20 <= data[end] <= 0x3F:
                end += 1
            if end < len(data) and 0x40 <= data[end] <= 0x7E:
                end += 1
        elif data[1] == ord("O"):
            end = min(3, len(data))
        else:
            end = 2
    elif first >= 0xC0:
        while end < len(data) and 0x80 <= data[end] <= 0xBF:
            end += 1
    return data[:end], data[end:]


def pick_snippet(snippets: list[Snippet], key: bytes) -> Snippet | None:
    """Map a picker keystroke to a snippet, or None to cancel.

    Digits 1-9 select. Esc, Ctrl-C and anything else cancel.
    """
    if len(key) == 1 and 0x31 <= key[0] <= 0x39:
        index = key[0] - 0x31
        if index < len(snippets):
            return snippets[index]
    return None
