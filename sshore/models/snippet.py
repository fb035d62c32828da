"""Command snippet model."""

from dataclasses import dataclass


@dataclass(frozen=True)
class Snippet:
    """A named command that can be injected into an interactive session."""

    name: str
    command: str
    auto_execute: bool = False

    @property
    def payload(self) -> bytes:
        """Bytes written to the shell channel when the snippet is chosen."""
        text = self.command + "\n" if self.auto_execute else self.command
        return text.encode("utf-8")
