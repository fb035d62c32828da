"""Configuration module for sshore.

Provides focused classes for different configuration concerns:
- Config: Main configuration class (aggregates all components)
- SSHConfigParser: Parses ~/.ssh/config files
- HostTrustStore: Known-hosts trust decisions
- Settings: Environment variable configuration
"""

from sshore.config.host_keys import HostTrustStore
from sshore.config.main import Config, parse_connection_string
from sshore.config.parser import SSHConfigParser
from sshore.config.settings import EnvColor, Settings

__all__ = [
    "Config",
    "EnvColor",
    "HostTrustStore",
    "parse_connection_string",
    "Settings",
    "SSHConfigParser",
]
