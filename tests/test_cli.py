"""Tests for the command-line entry point."""

import logging
from pathlib import Path
from unittest.mock import patch

import pytest
from keyring.errors import KeyringLocked, PasswordDeleteError

from sshore.cli import (
    build_parser,
    configure_logging,
    confirm_unknown_key,
    main,
    override_changed_key,
)
from sshore.config import Config
from sshore.models import HostIdentity, TrustDecision, TrustStatus


@pytest.fixture
def config(tmp_path: Path) -> Config:
    ssh_config = tmp_path / "config"
    ssh_config.write_text("Host web1\n    HostName 10.0.0.1\n    User deploy\n")
    return Config.from_ssh_config(ssh_config, known_hosts_path=tmp_path / "known_hosts")


@pytest.fixture
def run(config: Config):
    def invoke(*argv: str) -> int:
        with patch("sshore.cli.configure_logging"):
            return main(list(argv), config=config)

    return invoke


@pytest.fixture
def mock_keyring():
    with patch("sshore.services.keychain.keyring") as keyring:
        yield keyring


def identity(port: int = 22) -> HostIdentity:
    return HostIdentity("web1.example.com", port, "ssh-ed25519", b"\x01" * 32)


class TestParser:
    def test_exec_arguments(self) -> None:
        args = build_parser().parse_args(
            ["exec", "web1", "web2", "-c", "uptime", "--concurrency", "4"]
        )
        assert args.command == "exec"
        assert args.hosts == ["web1", "web2"]
        assert args.remote_command == "uptime"
        assert args.concurrency == 4

    def test_tunnel_forwards_accumulate(self) -> None:
        args = build_parser().parse_args(
            ["tunnel", "bastion", "-L", "8080:db:5432", "-L", "9090:cache:6379", "-R", "2222:localhost:22", "--persist"]
        )
        assert args.local == ["8080:db:5432", "9090:cache:6379"]
        assert args.remote == ["2222:localhost:22"]
        assert args.persist

    def test_scp_resume_flag(self) -> None:
        args = build_parser().parse_args(["scp", "web1:/var/log/app.log", ".", "--resume"])
        assert args.resume

    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestPasswordCommand:
    def test_set_stores_in_keychain(self, run, mock_keyring) -> None:
        with patch("sshore.cli.getpass.getpass", return_value="s3cret"):
            assert run("password", "set", "web1") == 0
        mock_keyring.set_password.assert_called_once_with("sshore", "web1", "s3cret")

    def test_set_empty_is_refused(self, run, mock_keyring) -> None:
        with patch("sshore.cli.getpass.getpass", return_value=""):
            assert run("password", "set", "web1") == 1
        mock_keyring.set_password.assert_not_called()

    def test_delete(self, run, mock_keyring) -> None:
        assert run("password", "delete", "web1") == 0
        mock_keyring.delete_password.assert_called_once_with("sshore", "web1")

    def test_delete_missing(self, run, mock_keyring) -> None:
        mock_keyring.delete_password.side_effect = PasswordDeleteError("not found")
        assert run("password", "delete", "web1") == 1

    def test_locked_keychain_is_reported(self, run, mock_keyring) -> None:
        mock_keyring.set_password.side_effect = KeyringLocked("locked")
        with patch("sshore.cli.getpass.getpass", return_value="s3cret"):
            assert run("password", "set", "web1") == 1


class TestErrors:
    def test_tunnel_without_forwards(self, run) -> None:
        assert run("tunnel", "web1") == 1

    def test_scp_needs_one_remote_side(self, run) -> None:
        assert run("scp", "a.txt", "b.txt") == 1

    def test_invalid_forward_spec(self, run) -> None:
        assert run("tunnel", "web1", "-L", "not-a-spec") == 1

    def test_exec_reports_bad_host(self, run, capsys: pytest.CaptureFixture[str]) -> None:
        assert run("exec", "bad;host", "-c", "uptime") == 1
        assert "bad;host" in capsys.readouterr().out


class TestTrustPrompts:
    def test_unknown_key_needs_yes(self, capsys: pytest.CaptureFixture[str]) -> None:
        decision = TrustDecision(TrustStatus.UNKNOWN, identity())
        with patch("builtins.input", return_value="yes"):
            assert confirm_unknown_key(decision)
        with patch("builtins.input", return_value="y"):
            assert not confirm_unknown_key(decision)
        assert decision.identity.fingerprint in capsys.readouterr().err

    def test_changed_key_needs_host_name(self) -> None:
        old = HostIdentity("web1.example.com", 2222, "ssh-ed25519", b"\x02" * 32)
        decision = TrustDecision(TrustStatus.CHANGED, identity(2222), previous=(old,))
        with patch("builtins.input", return_value="yes"):
            assert not override_changed_key(decision)
        with patch("builtins.input", return_value="[web1.example.com]:2222"):
            assert override_changed_key(decision)


@pytest.fixture
def restore_sshore_logger():
    sshore_logger = logging.getLogger("sshore")
    handlers = list(sshore_logger.handlers)
    level, propagate = sshore_logger.level, sshore_logger.propagate
    yield sshore_logger
    sshore_logger.handlers = handlers
    sshore_logger.setLevel(level)
    sshore_logger.propagate = propagate


def test_configure_logging(restore_sshore_logger: logging.Logger) -> None:
    restore_sshore_logger.handlers = []

    configure_logging("debug", use_colors=False)

    assert restore_sshore_logger.level == logging.DEBUG
    assert len(restore_sshore_logger.handlers) == 1
    assert logging.getLogger("asyncssh").level == logging.WARNING
