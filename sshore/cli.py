"""Command-line interface for sshore."""

import argparse
import asyncio
import getpass
import logging
import sys

from sshore.config import Config
from sshore.dependencies import Dependencies
from sshore.errors import SshoreError
from sshore.models import TrustDecision, TunnelDirection, TunnelState, TunnelStatus
from sshore.services.session import InteractiveSession
from sshore.services.state import get_config
from sshore.utils.console import ColorfulFormatter
from sshore.utils.progress import ProgressBar
from sshore.utils.transfer import resolve_transfer
from sshore.utils.validation import parse_forward_spec

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO", use_colors: bool = True) -> None:
    """Configure colorful logging for the sshore package."""
    if not sys.stderr.isatty():
        use_colors = False

    sshore_logger = logging.getLogger("sshore")
    sshore_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    if not sshore_logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(ColorfulFormatter(use_colors=use_colors))
        sshore_logger.addHandler(handler)
        sshore_logger.propagate = False

    # asyncssh logs every channel open/close at INFO
    logging.getLogger("asyncssh").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sshore",
        description="SSH sessions with themed terminals, supervised tunnels and resumable transfers.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level (default: $SSHORE_LOG_LEVEL or INFO)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    connect_parser = subparsers.add_parser("connect", help="Open an interactive shell")
    connect_parser.add_argument("host", help="Host alias or [user@]host[:port]")

    exec_parser = subparsers.add_parser("exec", help="Run a command on several hosts")
    exec_parser.add_argument("hosts", nargs="+", help="Host aliases or [user@]host[:port]")
    exec_parser.add_argument("-c", "--command", required=True, dest="remote_command")
    exec_parser.add_argument(
        "--concurrency", type=int, default=None, help="Hosts contacted at once"
    )

    scp_parser = subparsers.add_parser("scp", help="Copy a file to or from a host")
    scp_parser.add_argument("source", help="Local path or host:path")
    scp_parser.add_argument("destination", help="Local path or host:path")
    scp_parser.add_argument(
        "--resume", action="store_true", help="Continue a partial transfer"
    )

    tunnel_parser = subparsers.add_parser("tunnel", help="Forward ports through a host")
    tunnel_parser.add_argument("host", help="Host alias or [user@]host[:port]")
    tunnel_parser.add_argument(
        "-L", dest="local", action="append", default=[], metavar="SPEC",
        help="Local forward [bind_address:]port:host:hostport",
    )
    tunnel_parser.add_argument(
        "-R", dest="remote", action="append", default=[], metavar="SPEC",
        help="Remote forward [bind_address:]port:host:hostport",
    )
    tunnel_parser.add_argument(
        "--persist", action="store_true", help="Reconnect automatically when lost"
    )

    password_parser = subparsers.add_parser("password", help="Manage keychain passwords")
    password_parser.add_argument("action", choices=["set", "delete"])
    password_parser.add_argument("account", help="Keychain account (usually the host alias)")

    return parser


def confirm_unknown_key(decision: TrustDecision) -> bool:
    """Ask before trusting a host key seen for the first time."""
    identity = decision.identity
    sys.stderr.write(
        f"The authenticity of host '{identity.pattern}' can't be established.\n"
        f"{identity.algorithm} key fingerprint is {identity.fingerprint}.\n"
    )
    answer = input("Are you sure you want to continue connecting (yes/no)? ")
    return answer.strip().lower() == "yes"


def override_changed_key(decision: TrustDecision) -> bool:
    """Explicit override for a changed host key. Plain 'yes' is not enough."""
    identity = decision.identity
    previous = ", ".join(p.fingerprint for p in decision.previous)
    sys.stderr.write(
        "@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@\n"
        "@    WARNING: REMOTE HOST IDENTIFICATION HAS CHANGED!      @\n"
        "@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@\n"
        f"Host: {identity.pattern}\n"
        f"Stored: {previous}\n"
        f"Presented: {identity.algorithm} {identity.fingerprint}\n"
    )
    answer = input(f"Type '{identity.pattern}' to replace the stored key, anything else aborts: ")
    return answer.strip() == identity.pattern


async def _cmd_connect(deps: Dependencies, args: argparse.Namespace) -> int:
    host = deps.config.resolve_host(args.host)
    session = InteractiveSession(deps.supervisor, host, deps.config.settings, keychain=deps.keychain)
    return await session.run()


async def _cmd_exec(deps: Dependencies, args: argparse.Namespace) -> int:
    runner = deps.exec_runner
    if args.concurrency:
        runner.concurrency = max(1, args.concurrency)
    report = await runner.run(args.hosts, args.remote_command)
    for result in report.results:
        header = f"── {result.host} "
        if result.error:
            print(f"{header}(error: {result.error})")
            continue
        print(f"{header}(exit {result.exit_code})")
        if result.output:
            print(result.output, end="" if result.output.endswith("\n") else "\n")
        if result.error_output:
            sys.stderr.write(result.error_output)
    return report.exit_status


async def _cmd_scp(deps: Dependencies, args: argparse.Namespace) -> int:
    path = resolve_transfer(args.source, args.destination)
    bar = ProgressBar(f"{path.source} -> {path.destination}")
    try:
        await deps.sftp.transfer(args.source, args.destination, resume=args.resume, progress=bar)
    finally:
        bar.finish()
    return 0


async def _cmd_tunnel(deps: Dependencies, args: argparse.Namespace) -> int:
    host = deps.config.resolve_host(args.host)
    specs = [parse_forward_spec(s, TunnelDirection.LOCAL, args.persist) for s in args.local]
    specs += [parse_forward_spec(s, TunnelDirection.REMOTE, args.persist) for s in args.remote]
    if not specs:
        raise ValueError("tunnel needs at least one -L or -R forward")

    def show(tunnel_id: int, state: TunnelState) -> None:
        if state.status is TunnelStatus.RECONNECTING and state.next_retry is not None:
            sys.stderr.write(
                f"[tunnel {tunnel_id}] reconnecting (attempt {state.attempt}, "
                f"next try {state.next_retry:%H:%M:%S})\n"
            )
        elif state.status is TunnelStatus.FAILED:
            sys.stderr.write(f"[tunnel {tunnel_id}] failed: {state.reason}\n")

    deps.tunnels.add_listener(show)
    for spec in specs:
        await deps.tunnels.start(host, spec)

    # Runs until every tunnel fails, or until interrupted
    await deps.tunnels.wait_all()
    failed = [s for s in deps.tunnels.states().values() if s.status is TunnelStatus.FAILED]
    return 1 if failed else 0


def _cmd_password(deps: Dependencies, args: argparse.Namespace) -> int:
    if args.action == "set":
        secret = getpass.getpass(f"Password for {args.account}: ")
        if not secret:
            print("Empty password, nothing stored.", file=sys.stderr)
            return 1
        deps.keychain.set_password(args.account, secret)
        print(f"Stored password for {args.account}.")
        return 0
    if deps.keychain.delete_password(args.account):
        print(f"Deleted password for {args.account}.")
        return 0
    print(f"No password stored for {args.account}.", file=sys.stderr)
    return 1


COMMANDS = {
    "connect": _cmd_connect,
    "exec": _cmd_exec,
    "scp": _cmd_scp,
    "tunnel": _cmd_tunnel,
}


async def _run(deps: Dependencies, args: argparse.Namespace) -> int:
    try:
        return await COMMANDS[args.command](deps, args)
    finally:
        await deps.cleanup()


def main(argv: list[str] | None = None, config: Config | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = config or get_config()
    configure_logging(args.log_level or config.settings.log_level, config.settings.log_colors)

    deps = Dependencies.from_config(
        config,
        confirm_unknown=confirm_unknown_key,
        override_changed=override_changed_key,
    )

    try:
        if args.command == "password":
            return _cmd_password(deps, args)
        return asyncio.run(_run(deps, args))
    except KeyboardInterrupt:
        return 130
    except (SshoreError, ValueError) as e:
        logger.error("%s", e)
        return 1
