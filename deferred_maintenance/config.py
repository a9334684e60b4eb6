"""Configuration management for deferred-maintenance using YAML files and the environment."""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import structlog
import yaml

from deferred_maintenance.retry import RetryPolicy

logger = structlog.get_logger()

CONFIG_DIR_NAME = ".deferred-maintenance"
DEV_API_URL = "https://graphql.dev.jupiterone.io"
AGENT_CONF_PATH = Path("/var/j1endpointagent/agent.conf")

# setting name -> (environment variable, config key)
SETTING_SOURCES = {
    "account": ("J1_ACCOUNT", "j1.account"),
    "api_token": ("J1_API_TOKEN", "j1.api_token"),
    "url": ("J1_API_URL", "j1.url"),
    "email": ("J1_EMAIL", "user.email"),
    "retry_max_attempts": ("DM_RETRY_MAX_ATTEMPTS", "retry.max_attempts"),
    "retry_delay": ("DM_RETRY_DELAY", "retry.delay"),
    "retry_factor": ("DM_RETRY_FACTOR", "retry.factor"),
    "retry_max_delay": ("DM_RETRY_MAX_DELAY", "retry.max_delay"),
}

CONFIG_KEYS = tuple(config_key for _, config_key in SETTING_SOURCES.values())
SECRET_CONFIG_KEYS = {"j1.api_token"}
NUMERIC_CONFIG_KEYS = {
    "retry.max_attempts": int,
    "retry.delay": float,
    "retry.factor": float,
    "retry.max_delay": float,
}


class ConfigError(Exception):
    """Raised when required configuration is missing or invalid."""


class Config:
    """Configuration manager using YAML file storage.

    Supports both local (repository-level) and global (user-level) configuration.
    Local config is stored in .deferred-maintenance/config.yaml in the current directory.
    Global config is stored in ~/.deferred-maintenance/config.yaml.

    When reading, values are looked up in local config first, then global config.
    """

    def __init__(self, use_global: bool = False, config_dir: Path | None = None) -> None:
        """Initialize configuration manager.

        Args:
            use_global: If True, use global config only. If False, use local config with global fallback.
            config_dir: Custom directory to store config file (overrides use_global)
        """
        if config_dir is not None:
            self.config_dir = Path(config_dir)
            self.is_global = use_global
        elif use_global:
            self.config_dir = Path.home() / CONFIG_DIR_NAME
            self.is_global = True
        else:
            self.config_dir = Path.cwd() / CONFIG_DIR_NAME
            self.is_global = False

        self.config_file = self.config_dir / "config.yaml"
        self._config: dict[str, Any] = self._load()

        # Local config falls back to the global file
        self._global_config: dict[str, Any] = {}
        if not self.is_global:
            global_config_file = Path.home() / CONFIG_DIR_NAME / "config.yaml"
            if global_config_file.exists() and global_config_file != self.config_file:
                try:
                    with open(global_config_file, "r") as f:
                        self._global_config = yaml.safe_load(f) or {}
                except (OSError, yaml.YAMLError) as e:
                    logger.warning("Failed to load global config", error=str(e))

        logger.debug("Config initialized", config_file=str(self.config_file), is_global=self.is_global)

    def _load(self) -> dict[str, Any]:
        """Load configuration from YAML file."""
        if not self.config_file.exists():
            logger.debug("Config file does not exist, initializing empty config")
            return {}

        try:
            with open(self.config_file, "r") as f:
                config = yaml.safe_load(f) or {}
                logger.debug("Config loaded successfully", keys=list(config.keys()))
                return config
        except (OSError, yaml.YAMLError) as e:
            logger.error("Failed to load config", error=str(e))
            raise ConfigError(f"Failed to load config from {self.config_file}: {e}") from e

    def _save(self) -> None:
        """Save configuration to YAML file."""
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
            with open(self.config_file, "w") as f:
                yaml.safe_dump(self._config, f, default_flow_style=False, sort_keys=False)
            logger.debug("Config saved successfully")
        except OSError as e:
            logger.error("Failed to save config", error=str(e))
            raise ConfigError(f"Failed to save config to {self.config_file}: {e}") from e

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value, local first then global."""
        if key in self._config:
            logger.debug("Getting config value from local", key=key)
            return self._config[key]

        if not self.is_global and key in self._global_config:
            logger.debug("Getting config value from global", key=key)
            return self._global_config[key]

        logger.debug("Config value not found", key=key)
        return default

    def set(self, key: str, value: Any) -> None:
        """Set a configuration value."""
        logger.debug("Setting config value", key=key)
        self._config[key] = value
        self._save()

    def unset(self, key: str) -> None:
        """Remove a configuration value."""
        logger.debug("Unsetting config value", key=key)
        if key in self._config:
            del self._config[key]
            self._save()

    def list(self) -> dict[str, Any]:
        """List all configuration settings.

        For local config, merges global config with local config (local takes precedence).
        """
        if self.is_global:
            return self._config.copy()
        merged = self._global_config.copy()
        merged.update(self._config)
        return merged


def get_config(use_global: bool = False) -> Config:
    """Get a configuration instance."""
    return Config(use_global=use_global)


def validate_config_key(key: str) -> None:
    """Reject keys that no setting reads."""
    if key not in CONFIG_KEYS:
        raise ConfigError(f"Unknown config key {key!r}, expected one of: {', '.join(CONFIG_KEYS)}")


def parse_config_value(key: str, value: str) -> Any:
    """Validate a key and convert its value to the type the setting expects.

    Raises:
        ConfigError: The key is unknown or the value does not parse.
    """
    validate_config_key(key)
    convert = NUMERIC_CONFIG_KEYS.get(key)
    if convert is None:
        return value
    try:
        parsed = convert(value)
    except ValueError as e:
        raise ConfigError(f"{key} must be a number, got {value!r}") from e
    if parsed < 0:
        raise ConfigError(f"{key} must not be negative")
    return parsed


def _is_truthy(value: str | None) -> bool:
    return bool(value) and value.strip().lower() not in ("0", "false", "no", "off")


@dataclass(frozen=True)
class Settings:
    """Resolved runtime settings."""

    account: str | None = None
    api_token: str | None = field(default=None, repr=False)
    url: str | None = None
    email: str | None = None
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)

    def validate(self) -> None:
        """Check that credentials are present.

        Raises:
            ConfigError: If the account or API token is missing
        """
        missing = []
        if not self.account:
            missing.append("J1_ACCOUNT (or config j1.account)")
        if not self.api_token:
            missing.append("J1_API_TOKEN (or config j1.api_token)")
        if missing:
            for name in missing:
                logger.warning("Missing required setting", setting=name)
            raise ConfigError(f"Missing required configuration: {', '.join(missing)}")


def _resolve(name: str, config: Config | None, environ: Mapping[str, str]) -> Any:
    env_var, config_key = SETTING_SOURCES[name]
    value = environ.get(env_var)
    if value:
        return value
    if config is not None:
        return config.get(config_key)
    return None


def _resolve_or(name: str, config: Config | None, environ: Mapping[str, str], default: Any) -> Any:
    value = _resolve(name, config, environ)
    return default if value is None or value == "" else value


def _retry_policy(config: Config | None, environ: Mapping[str, str]) -> RetryPolicy:
    defaults = RetryPolicy()
    try:
        max_attempts = int(_resolve_or("retry_max_attempts", config, environ, 0))
        delay = float(_resolve_or("retry_delay", config, environ, defaults.delay))
        factor = float(_resolve_or("retry_factor", config, environ, defaults.factor))
        max_delay = float(_resolve_or("retry_max_delay", config, environ, defaults.max_delay))
        return RetryPolicy.from_max_attempts(max_attempts, delay=delay, factor=factor, max_delay=max_delay)
    except ValueError as e:
        raise ConfigError(f"Invalid retry configuration: {e}") from e


def load_settings(config: Config | None = None, environ: Mapping[str, str] | None = None) -> Settings:
    """Resolve settings from the environment, then the config files."""
    environ = os.environ if environ is None else environ

    url = _resolve("url", config, environ)
    if not url and _is_truthy(environ.get("J1_DEV_ENABLED")):
        url = DEV_API_URL

    settings = Settings(
        account=_resolve("account", config, environ),
        api_token=_resolve("api_token", config, environ),
        url=url,
        email=_resolve("email", config, environ),
        retry_policy=_retry_policy(config, environ),
    )
    logger.debug("Settings loaded", account=settings.account, url=settings.url)
    return settings


def discover_user_email(settings: Settings, agent_conf: Path = AGENT_CONF_PATH) -> str | None:
    """Find the current user's email from settings or the endpoint agent config."""
    if settings.email:
        return settings.email
    try:
        with open(agent_conf, "r") as f:
            return json.load(f).get("email")
    except (OSError, ValueError, AttributeError) as e:
        logger.debug("No endpoint agent email found", path=str(agent_conf), error=str(e))
        return None


def discover_code_repo(cwd: Path | None = None, environ: Mapping[str, str] | None = None) -> str | None:
    """Return the repository name if the working directory is a git checkout.

    When running inside a container, OUTERPWD names the host directory the
    checkout was mounted from.
    """
    environ = os.environ if environ is None else environ
    cwd = cwd or Path.cwd()
    if not (cwd / ".git").exists():
        return None
    outer = environ.get("OUTERPWD")
    return Path(outer).name if outer else cwd.name
