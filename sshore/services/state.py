"""Global state management for sshore."""

from sshore.config import Config
from sshore.dependencies import Dependencies

# Global state (initialized on first access)
_config: Config | None = None
_deps: Dependencies | None = None


def get_config() -> Config:
    """Get or create config."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def get_dependencies() -> Dependencies:
    """Get or create the service container."""
    global _deps
    if _deps is None:
        _deps = Dependencies.from_config(get_config())
    return _deps


def reset_state() -> None:
    """Reset global state for testing.

    Clears the singleton instances so tests start with fresh state.
    """
    global _config, _deps
    _config = None
    _deps = None


def set_config(config: Config) -> None:
    """Set the global config instance.

    Args:
        config: Config instance to use globally.
    """
    global _config
    _config = config


def set_dependencies(deps: Dependencies) -> None:
    """Set the global service container.

    Args:
        deps: Dependencies instance to use globally.
    """
    global _deps
    _deps = deps
