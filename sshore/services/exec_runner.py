"""Run one command across many hosts with bounded concurrency."""

import asyncio
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from sshore.models import ExecReport, HostResult

if TYPE_CHECKING:
    from sshore.models import SSHHost
    from sshore.services.supervisor import ConnectionSupervisor

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 10


def _decode(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


class ExecRunner:
    """Fan-out command execution.

    Each host gets its own connect, run, disconnect sequence on a fresh
    connection. A failing host produces an error result and never cancels
    or delays the others.
    """

    def __init__(
        self,
        supervisor: "ConnectionSupervisor",
        concurrency: int = DEFAULT_CONCURRENCY,
        host_lookup: Callable[[str], "SSHHost"] | None = None,
    ) -> None:
        if concurrency <= 0:
            raise ValueError(f"concurrency must be > 0, got {concurrency}")
        self.supervisor = supervisor
        self.concurrency = concurrency
        self.host_lookup = host_lookup

    async def run(self, hosts: "list[SSHHost | str]", command: str) -> ExecReport:
        """Execute command on every host.

        Args:
            hosts: Host records, or names resolved through host_lookup
            command: Shell command to execute

        Returns:
            ExecReport with one HostResult per host, in input order
        """
        semaphore = asyncio.Semaphore(self.concurrency)

        async def execute_single(target: "SSHHost | str") -> HostResult:
            name = target if isinstance(target, str) else target.name
            async with semaphore:
                try:
                    host = self._resolve(target)
                    return await self._execute(host, command)
                except Exception as e:
                    logger.warning("Command on %s failed: %s", name, e)
                    return HostResult(host=name, exit_code=1, error=str(e))

        logger.info(
            "Running command on %d host(s) (concurrency=%d)", len(hosts), self.concurrency
        )
        results = await asyncio.gather(*(execute_single(h) for h in hosts))
        report = ExecReport(results=list(results))
        if report.failed_hosts:
            logger.info("Command failed on: %s", ", ".join(report.failed_hosts))
        return report

    def _resolve(self, target: "SSHHost | str") -> "SSHHost":
        if not isinstance(target, str):
            return target
        if self.host_lookup is None:
            raise ValueError(f"Unknown host: {target}")
        return self.host_lookup(target)

    async def _execute(self, host: "SSHHost", command: str) -> HostResult:
        conn = await self.supervisor.open(host)
        try:
            result = await conn.run(command, check=False)
        finally:
            await self.supervisor.close(conn)

        exit_code = result.exit_status
        # Missing exit status (signal, dropped channel) counts as failure
        if exit_code is None or exit_code < 0:
            exit_code = 1
        return HostResult(
            host=host.name,
            exit_code=exit_code,
            output=_decode(result.stdout),
            error_output=_decode(result.stderr),
        )
