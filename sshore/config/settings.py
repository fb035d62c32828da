"""Application settings from environment variables.

Centralized environment variable parsing and validation.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from sshore.models import Snippet, TrustPolicy

logger = logging.getLogger(__name__)

DEFAULT_TAB_TITLE = "{badge} {label} — {name}"
DEFAULT_SNIPPET_TRIGGER = "~~"


@dataclass(frozen=True)
class EnvColor:
    """Colors and badge for an environment tier."""

    fg: str
    bg: str
    badge: str
    label: str


def default_env_colors() -> dict[str, EnvColor]:
    """Built-in environment tiers."""
    return {
        "production": EnvColor(fg="#FFFFFF", bg="#CC0000", badge="🔴", label="PROD"),
        "staging": EnvColor(fg="#000000", bg="#CCCC00", badge="🟡", label="STG"),
        "development": EnvColor(fg="#FFFFFF", bg="#00AA00", badge="🟢", label="DEV"),
        "local": EnvColor(fg="#FFFFFF", bg="#0066CC", badge="🔵", label="LOCAL"),
        "testing": EnvColor(fg="#FFFFFF", bg="#AA00AA", badge="🟣", label="TEST"),
    }


@dataclass
class Settings:
    """Application settings from environment.

    Handles parsing, validation, and defaults for all env vars.
    """

    # Connection
    connect_timeout: int = field(default=15)
    known_hosts: str = field(default_factory=lambda: str(Path.home() / ".ssh" / "known_hosts"))
    host_key_policy: TrustPolicy = field(default=TrustPolicy.STRICT)
    keepalive_interval: int = field(default=30)
    keepalive_count_max: int = field(default=3)

    # Tunnels
    reconnect_initial_delay: float = field(default=1.0)
    reconnect_max_delay: float = field(default=60.0)

    # Exec fan-out
    exec_concurrency: int = field(default=10)

    # Interactive session
    snippet_trigger: str = field(default=DEFAULT_SNIPPET_TRIGGER)
    tab_title_template: str = field(default=DEFAULT_TAB_TITLE)
    prompt_patterns: list[str] = field(default_factory=list)
    global_snippets: list[Snippet] = field(default_factory=list)
    env_colors: dict[str, EnvColor] = field(default_factory=default_env_colors)

    # Logging
    log_level: str = field(default="INFO")
    log_colors: bool = field(default=True)

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from SSHORE_* environment variables.

        Returns:
            Settings instance with values from environment
        """
        return cls(
            connect_timeout=cls._get_int("SSHORE_CONNECT_TIMEOUT", 15),
            known_hosts=os.path.expanduser(
                os.getenv("SSHORE_KNOWN_HOSTS", "~/.ssh/known_hosts")
            ),
            host_key_policy=cls._get_policy(),
            keepalive_interval=cls._get_int("SSHORE_KEEPALIVE_INTERVAL", 30),
            keepalive_count_max=cls._get_int("SSHORE_KEEPALIVE_COUNT_MAX", 3),
            reconnect_initial_delay=cls._get_float("SSHORE_RECONNECT_INITIAL_DELAY", 1.0),
            reconnect_max_delay=cls._get_float("SSHORE_RECONNECT_MAX_DELAY", 60.0),
            exec_concurrency=max(1, cls._get_int("SSHORE_EXEC_CONCURRENCY", 10)),
            snippet_trigger=os.getenv("SSHORE_SNIPPET_TRIGGER", DEFAULT_SNIPPET_TRIGGER),
            tab_title_template=os.getenv("SSHORE_TAB_TITLE", DEFAULT_TAB_TITLE),
            prompt_patterns=cls._get_list("SSHORE_PROMPT_PATTERNS", sep="\n"),
            global_snippets=cls._get_snippets(),
            log_level=os.getenv("SSHORE_LOG_LEVEL", "INFO").upper(),
            log_colors=cls._get_bool("SSHORE_LOG_COLORS", True),
        )

    @staticmethod
    def _get_int(key: str, default: int) -> int:
        """Get integer from environment.

        Args:
            key: Environment variable key
            default: Default value if not set

        Returns:
            Integer value from environment or default
        """
        value = os.getenv(key)
        if value is None:
            return default

        try:
            return int(value)
        except ValueError:
            logger.warning("Invalid int for %s: %s, using default %d", key, value, default)
            return default

    @staticmethod
    def _get_float(key: str, default: float) -> float:
        value = os.getenv(key)
        if value is None:
            return default

        try:
            return float(value)
        except ValueError:
            logger.warning("Invalid number for %s: %s, using default %s", key, value, default)
            return default

    @staticmethod
    def _get_bool(key: str, default: bool) -> bool:
        """Get boolean from environment.

        Args:
            key: Environment variable key
            default: Default value if not set

        Returns:
            Boolean value from environment or default
        """
        value = os.getenv(key)
        if value is None:
            return default
        return value.lower() in ("1", "true", "yes", "on")

    @staticmethod
    def _get_list(key: str, sep: str = ",") -> list[str]:
        value = os.getenv(key, "").strip()
        if not value:
            return []
        return [item.strip() for item in value.split(sep) if item.strip()]

    @staticmethod
    def _get_policy() -> TrustPolicy:
        """Get host key policy with validation.

        Returns:
            TrustPolicy, STRICT when unset or invalid
        """
        value = os.getenv("SSHORE_HOST_KEY_POLICY", "").strip().lower()
        if not value:
            return TrustPolicy.STRICT
        try:
            return TrustPolicy(value)
        except ValueError:
            logger.warning(
                "Invalid SSHORE_HOST_KEY_POLICY %r, using strict", value
            )
            return TrustPolicy.STRICT

    @classmethod
    def _get_snippets(cls) -> list[Snippet]:
        """Parse SSHORE_SNIPPETS entries of the form ``name=command``.

        Entries are newline separated. A leading ``!`` on the command marks
        the snippet as auto-executing.
        """
        snippets: list[Snippet] = []
        for entry in cls._get_list("SSHORE_SNIPPETS", sep="\n"):
            name, sep, command = entry.partition("=")
            if not sep or not name.strip():
                logger.warning("Ignoring malformed snippet entry: %r", entry)
                continue
            auto_execute = command.startswith("!")
            snippets.append(
                Snippet(
                    name=name.strip(),
                    command=command[1:] if auto_execute else command,
                    auto_execute=auto_execute,
                )
            )
        return snippets
