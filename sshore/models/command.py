"""Command execution data models."""

from dataclasses import dataclass


@dataclass
class HostResult:
    """Result of running a command on a single host."""

    host: str
    exit_code: int
    output: str = ""
    error_output: str = ""
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None and self.exit_code == 0


@dataclass
class ExecReport:
    """Per-host results of a fan-out run, in input order."""

    results: list[HostResult]

    @property
    def exit_status(self) -> int:
        """0 when every host succeeded, 1 otherwise."""
        return 0 if all(r.success for r in self.results) else 1

    @property
    def failed_hosts(self) -> list[str]:
        return [r.host for r in self.results if not r.success]
