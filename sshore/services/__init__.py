"""Services for sshore."""

from sshore.services.channels import ChannelHandle, ChannelKind, HostConnection
from sshore.services.credentials import CredentialResolver, default_credentials
from sshore.services.exec_runner import ExecRunner
from sshore.services.interceptors import SnippetTrigger, SudoPromptWatcher
from sshore.services.keychain import Keychain, KeychainError
from sshore.services.session import InteractiveSession, SessionState
from sshore.services.sftp import SftpEngine
from sshore.services.supervisor import ConnectionSupervisor
from sshore.services.tunnels import Tunnel, TunnelSupervisor

__all__ = [
    "ChannelHandle",
    "ChannelKind",
    "ConnectionSupervisor",
    "CredentialResolver",
    "default_credentials",
    "ExecRunner",
    "HostConnection",
    "InteractiveSession",
    "Keychain",
    "KeychainError",
    "SessionState",
    "SftpEngine",
    "SnippetTrigger",
    "SudoPromptWatcher",
    "Tunnel",
    "TunnelSupervisor",
]
