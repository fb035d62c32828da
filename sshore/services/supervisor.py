"""SSH connection supervisor.

Establishes authenticated connections (trust check, credential priority,
jump chains) and keeps one shared transport per host for the channel users.

Locking Strategy:
- `_meta_lock`: Protects the _connections dict and _host_locks dict structure
- Per-host locks: Protect connection creation/removal for specific hosts
- Lock acquisition order: Always per-host lock first, then meta-lock if needed
"""

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

import asyncssh

from sshore.config.host_keys import HostTrustStore
from sshore.config.main import parse_connection_string
from sshore.errors import (
    AuthFailed,
    ConnectTimeout,
    HostKeyRejected,
    NetworkError,
)
from sshore.models import (
    Credential,
    HostIdentity,
    SSHHost,
    TrustDecision,
    TrustPolicy,
    TrustStatus,
)
from sshore.services.channels import ChannelHandle, ChannelKind, HostConnection
from sshore.services.credentials import CredentialResolver, default_credentials
from sshore.services.keychain import Keychain

logger = logging.getLogger(__name__)

TrustPrompt = Callable[[TrustDecision], bool]
HostLookup = Callable[[str], SSHHost | None]


class _TrustClient(asyncssh.SSHClient):
    """Client callbacks that route host key validation to the trust store."""

    def __init__(self, store: HostTrustStore, hostname: str, port: int) -> None:
        super().__init__()
        self._store = store
        self._hostname = hostname
        self._port = port
        self.decision: TrustDecision | None = None

    def validate_host_public_key(
        self,
        host: str,
        addr: tuple[str, int],
        port: int,
        key: asyncssh.SSHKey,
    ) -> bool:
        identity = HostIdentity.from_ssh_key(self._hostname, self._port, key)
        accepted, decision = self._store.check(identity)
        self.decision = decision
        return accepted


class ConnectionSupervisor:
    """Opens authenticated connections and shares one transport per host."""

    def __init__(
        self,
        trust_store: HostTrustStore,
        keychain: Keychain | None = None,
        connect_timeout: float = 15,
        host_lookup: HostLookup | None = None,
        confirm_unknown: TrustPrompt | None = None,
        override_changed: TrustPrompt | None = None,
        keepalive_interval: int = 30,
        keepalive_count_max: int = 3,
    ) -> None:
        """Initialize the supervisor.

        Args:
            trust_store: Known-hosts store and policy
            keychain: Secret store for passwords and passphrases
            connect_timeout: Seconds allowed for establishment and auth
            host_lookup: Resolves jump host aliases to host records
            confirm_unknown: Asked before trusting an unknown host key
                under the strict policy
            override_changed: Asked before replacing a changed host key
            keepalive_interval: Keepalive interval for long-lived transports
            keepalive_count_max: Missed keepalives before the transport drops
        """
        self.trust_store = trust_store
        self.keychain = keychain or Keychain()
        self.resolver = CredentialResolver(self.keychain)
        self.connect_timeout = connect_timeout
        self.host_lookup = host_lookup
        self.confirm_unknown = confirm_unknown
        self.override_changed = override_changed
        self.keepalive_interval = keepalive_interval
        self.keepalive_count_max = keepalive_count_max

        self._connections: dict[str, HostConnection] = {}
        self._host_locks: dict[str, asyncio.Lock] = {}
        self._meta_lock = asyncio.Lock()  # Protects _connections and _host_locks
        self._jump_chains: dict[int, list[asyncssh.SSHClientConnection]] = {}
        self._prompt_lock = asyncio.Lock()  # One host key prompt on screen at a time

        if trust_store.policy is TrustPolicy.OFF:
            logger.warning(
                "SSH host key verification DISABLED - vulnerable to MITM attacks."
            )
        else:
            logger.info(
                "SSH host key verification enabled (known_hosts=%s, policy=%s)",
                trust_store.path,
                trust_store.policy.value,
            )

    # ------------------------------------------------------------------
    # Establishment

    async def open(
        self,
        host: SSHHost,
        credentials: list[Credential] | None = None,
        timeout: float | None = None,
        keepalive: bool = False,
    ) -> asyncssh.SSHClientConnection:
        """Open a new authenticated connection to host.

        Credentials are tried in order, one handshake per method, stopping
        at the first success. Jump hosts in host.proxy_jump are opened
        first and chained.

        Raises:
            ConnectTimeout: Establishment or auth exceeded the timeout
            AuthFailed: Every method was rejected
            HostKeyRejected: The trust policy refused the host key
            NetworkError: Transport level failure
        """
        timeout = self.connect_timeout if timeout is None else timeout
        tunnel: asyncssh.SSHClientConnection | None = None
        jumps: list[asyncssh.SSHClientConnection] = []

        try:
            for hop in host.jump_hosts:
                jump_host = self._resolve_jump(hop)
                logger.info("Opening jump host %s for %s", jump_host.target, host.name)
                tunnel = await self._establish(
                    jump_host, None, timeout, keepalive, tunnel
                )
                jumps.append(tunnel)

            conn = await self._establish(host, credentials, timeout, keepalive, tunnel)
        except BaseException:
            for jump in reversed(jumps):
                jump.close()
            raise

        if jumps:
            self._jump_chains[id(conn)] = jumps
        return conn

    def _resolve_jump(self, hop: str) -> SSHHost:
        if self.host_lookup is not None:
            known = self.host_lookup(hop)
            if known is not None:
                return known
        user, hostname, port = parse_connection_string(hop)
        if self.host_lookup is not None:
            known = self.host_lookup(hostname)
            if known is not None:
                return SSHHost(
                    name=known.name,
                    hostname=known.hostname,
                    user=user or known.user,
                    port=port if port != 22 else known.port,
                    identity_file=known.identity_file,
                    proxy_jump=None,
                    password_account=known.password_account,
                )
        return SSHHost(name=hostname, hostname=hostname, user=user or "root", port=port)

    async def _establish(
        self,
        host: SSHHost,
        credentials: list[Credential] | None,
        timeout: float,
        keepalive: bool,
        tunnel: asyncssh.SSHClientConnection | None,
    ) -> asyncssh.SSHClientConnection:
        if credentials is None:
            credentials = default_credentials(host)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        attempted: list[str] = []

        logger.info("Opening SSH connection to %s (%s)", host.name, host.target)

        for credential in credentials:
            async with self.resolver.resolve(credential) as options:
                if options is None:
                    continue

                while True:
                    remaining = deadline - loop.time()
                    if remaining <= 0:
                        raise ConnectTimeout(host.name, timeout)

                    client = _TrustClient(self.trust_store, host.hostname, host.port)
                    try:
                        conn = await asyncio.wait_for(
                            self._connect(host, client, options, keepalive, tunnel),
                            remaining,
                        )
                    except asyncssh.HostKeyNotVerifiable as e:
                        # Prompting is user time, not connection time
                        started = time.monotonic()
                        accepted = await self._resolve_trust(host, client.decision)
                        deadline += time.monotonic() - started
                        if accepted:
                            continue
                        raise HostKeyRejected(host.name, client.decision) from e
                    except asyncssh.PermissionDenied:
                        logger.debug("%s rejected %s", host.name, credential.label)
                        attempted.append(credential.label)
                        break
                    except (asyncssh.KeyImportError, asyncssh.KeyEncryptionError, FileNotFoundError) as e:
                        logger.warning("Cannot use %s for %s: %s", credential.label, host.name, e)
                        attempted.append(credential.label)
                        break
                    except TimeoutError as e:
                        raise ConnectTimeout(host.name, timeout) from e
                    except asyncssh.DisconnectError as e:
                        raise NetworkError(host.name, str(e)) from e
                    except OSError as e:
                        raise NetworkError(host.name, str(e)) from e

                    logger.info(
                        "SSH connection established to %s via %s", host.name, credential.label
                    )
                    return conn

        logger.error(
            "Authentication to %s failed (tried: %s)",
            host.name,
            ", ".join(attempted) or "none available",
        )
        raise AuthFailed(host.name, attempted)

    async def _connect(
        self,
        host: SSHHost,
        client: _TrustClient,
        options: dict[str, Any],
        keepalive: bool,
        tunnel: asyncssh.SSHClientConnection | None,
    ) -> asyncssh.SSHClientConnection:
        extra: dict[str, Any] = {}
        if keepalive:
            extra["keepalive_interval"] = self.keepalive_interval
            extra["keepalive_count_max"] = self.keepalive_count_max
        if tunnel is not None:
            extra["tunnel"] = tunnel
        # An empty trusted set routes every key through validate_host_public_key
        return await asyncssh.connect(
            host.hostname,
            port=host.port,
            username=host.user,
            known_hosts=asyncssh.import_known_hosts(""),
            client_factory=lambda: client,
            **options,
            **extra,
        )

    async def _resolve_trust(self, host: SSHHost, decision: TrustDecision | None) -> bool:
        """Ask the user about a key the policy could not accept on its own."""
        if decision is None:
            return False

        if decision.status is TrustStatus.CHANGED:
            prompt = self.override_changed
            replace = True
        elif decision.status is TrustStatus.UNKNOWN:
            prompt = self.confirm_unknown
            replace = False
        else:
            return False

        if prompt is None:
            return False
        async with self._prompt_lock:
            accepted = await asyncio.to_thread(prompt, decision)
        if not accepted:
            logger.info("Host key for %s declined by user", host.name)
            return False
        self.trust_store.record(decision.identity, replace=replace)
        return True

    async def close(self, conn: asyncssh.SSHClientConnection) -> None:
        """Close a connection from open() together with its jump hosts."""
        conn.close()
        await conn.wait_closed()
        self._close_jumps(conn)

    def _close_jumps(self, conn: asyncssh.SSHClientConnection) -> None:
        """Close the jump hosts opened for conn, nearest hop first."""
        for jump in reversed(self._jump_chains.pop(id(conn), [])):
            jump.close()

    # ------------------------------------------------------------------
    # Shared per-host transports

    async def _get_host_lock(self, host_name: str) -> asyncio.Lock:
        async with self._meta_lock:
            if host_name not in self._host_locks:
                self._host_locks[host_name] = asyncio.Lock()
            return self._host_locks[host_name]

    async def connect(self, host: SSHHost, keepalive: bool = False) -> HostConnection:
        """Get or create the shared connection to host."""
        host_lock = await self._get_host_lock(host.name)

        async with host_lock:
            existing = self._connections.get(host.name)
            if existing is not None and not existing.is_closed:
                logger.debug("Reusing existing connection to %s", host.name)
                return existing

            if existing is not None:
                logger.info("Connection to %s is closed, reconnecting", host.name)
                self._close_jumps(existing.connection)

            conn = await self.open(host, keepalive=keepalive)
            shared = HostConnection(host, conn)

            async with self._meta_lock:
                self._connections[host.name] = shared

            return shared

    async def open_channel(
        self, host: SSHHost, kind: ChannelKind, **options: Any
    ) -> ChannelHandle:
        """Open a channel on the shared connection to host."""
        shared = await self.connect(host)
        return await shared.open_channel(kind, **options)

    def get_connection(self, host_name: str) -> HostConnection | None:
        return self._connections.get(host_name)

    async def remove_connection(self, host_name: str) -> None:
        """Close and forget the shared connection to a host.

        Args:
            host_name: Name of the host to remove.
        """
        host_lock = await self._get_host_lock(host_name)
        async with host_lock:
            async with self._meta_lock:
                shared = self._connections.pop(host_name, None)
            if shared is None:
                logger.debug("No connection to remove for %s", host_name)
                return
            logger.info("Removing connection to %s", host_name)
            shared.close()
            self._close_jumps(shared.connection)

    async def close_all(self) -> None:
        """Close all shared connections."""
        async with self._meta_lock:
            host_names = list(self._connections.keys())

        if host_names:
            logger.info("Closing all %d connection(s)", len(host_names))
        for host_name in host_names:
            await self.remove_connection(host_name)

    @property
    def active_hosts(self) -> list[str]:
        """Hosts with a shared connection."""
        return list(self._connections.keys())
