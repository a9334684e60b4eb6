"""Configuration commands for deferred-maintenance CLI."""

import sys
from typing import NoReturn

from cyclopts import App

from deferred_maintenance.config import (
    CONFIG_KEYS,
    SECRET_CONFIG_KEYS,
    ConfigError,
    get_config,
    parse_config_value,
    validate_config_key,
)

config_app = App(name="config", help="Manage JupiterOne credentials and retry settings")

EXIT_INVALID_KEY = 2


def _display(key: str, value: object) -> object:
    return "********" if key in SECRET_CONFIG_KEYS and value else value


def _reject(error: ConfigError) -> NoReturn:
    print(error, file=sys.stderr)
    sys.exit(EXIT_INVALID_KEY)


@config_app.command
def set(key: str, value: str, global_: bool = False) -> None:
    """Set a configuration setting.

    Retry settings are stored as numbers; everything else as text.

    Args:
        key: Configuration key, e.g. j1.account or retry.max_attempts
        value: Configuration value
        global_: If True, set in global config. If False, set in local config.
    """
    try:
        parsed = parse_config_value(key, value)
    except ConfigError as e:
        _reject(e)
    config = get_config(use_global=global_)
    config.set(key, parsed)
    scope = "global" if global_ else "local"
    print(f"Set {key} = {_display(key, parsed)} ({scope})")


@config_app.command
def unset(key: str, global_: bool = False) -> None:
    """Unset a configuration setting."""
    try:
        validate_config_key(key)
    except ConfigError as e:
        _reject(e)
    config = get_config(use_global=global_)
    config.unset(key)
    scope = "global" if global_ else "local"
    print(f"Unset {key} ({scope})")


@config_app.command
def get(key: str, global_: bool = False) -> None:
    """Get the value of a configuration setting."""
    try:
        validate_config_key(key)
    except ConfigError as e:
        _reject(e)
    value = get_config(use_global=global_).get(key)
    if value is None:
        print(f"{key} is not set")
    else:
        print(f"{key} = {_display(key, value)}")


@config_app.command(name="list")
def list_config(global_: bool = False) -> None:
    """List the known configuration settings and their values.

    Args:
        global_: If True, list global config only. If False, list merged config.
    """
    settings = get_config(use_global=global_).list()
    scope = "Global" if global_ else "Configuration"
    print(f"{scope} settings:\n")
    for key in CONFIG_KEYS:
        value = settings.get(key)
        print(f"{key} = {_display(key, value)}" if value is not None else f"{key} is not set")

    unknown = sorted(k for k in settings if k not in CONFIG_KEYS)
    if unknown:
        print(f"\nIgnored keys: {', '.join(unknown)}")
