"""Dependency container for sshore.

Wires configuration, the connection supervisor and the channel users
together so entry points build everything in one place.
"""

from dataclasses import dataclass

from sshore.config import Config
from sshore.services.exec_runner import ExecRunner
from sshore.services.keychain import Keychain
from sshore.services.sftp import SftpEngine
from sshore.services.supervisor import ConnectionSupervisor, TrustPrompt
from sshore.services.tunnels import TunnelSupervisor


@dataclass
class Dependencies:
    """Container for sshore services.

    Example:
        deps = Dependencies.from_config(Config.from_env())
        report = await deps.exec_runner.run(["web1", "web2"], "uptime")
    """

    config: Config
    keychain: Keychain
    supervisor: ConnectionSupervisor
    tunnels: TunnelSupervisor
    sftp: SftpEngine
    exec_runner: ExecRunner

    @classmethod
    def from_config(
        cls,
        config: Config,
        keychain: Keychain | None = None,
        confirm_unknown: TrustPrompt | None = None,
        override_changed: TrustPrompt | None = None,
    ) -> "Dependencies":
        """Create services from a Config.

        Args:
            config: Application configuration
            keychain: Secret store (defaults to the OS keychain)
            confirm_unknown: Prompt for unknown host keys
            override_changed: Prompt for changed host keys

        Returns:
            Initialized Dependencies instance
        """
        settings = config.settings
        keychain = keychain or Keychain()
        supervisor = ConnectionSupervisor(
            trust_store=config.trust_store,
            keychain=keychain,
            connect_timeout=settings.connect_timeout,
            host_lookup=config.get_host,
            confirm_unknown=confirm_unknown,
            override_changed=override_changed,
            keepalive_interval=settings.keepalive_interval,
            keepalive_count_max=settings.keepalive_count_max,
        )
        return cls(
            config=config,
            keychain=keychain,
            supervisor=supervisor,
            tunnels=TunnelSupervisor(
                supervisor,
                initial_delay=settings.reconnect_initial_delay,
                max_delay=settings.reconnect_max_delay,
            ),
            sftp=SftpEngine(supervisor, host_lookup=config.resolve_host),
            exec_runner=ExecRunner(
                supervisor,
                concurrency=settings.exec_concurrency,
                host_lookup=config.resolve_host,
            ),
        )

    async def cleanup(self) -> None:
        """Stop tunnels and close all connections."""
        await self.tunnels.stop_all()
        await self.supervisor.close_all()
