"""
Configuration loader with priority: CLI > env > TOML > defaults
"""
import os
import tomllib
from pathlib import Path
from typing import Dict, Any, Optional

from ...core.constants import ENV_PREFIX, DEFAULT_CONFIG_PATH
from ...core.exceptions import ConfigError
from ...core.logging import get_logger

logger = get_logger(__name__)


class ConfigLoader:
    """
    Configuration loader with priority support.

    Layout of the TOML file::

        host = "build.example.org"        # default connection
        user = "deploy"
        timeout_ms = 30000

        [connections.backup]
        host = "backup"                    # may be an ~/.ssh/config alias
        key_file = "~/.ssh/id_ed25519"

        [poller]
        path = "/incoming"
        mask = "*.csv"
    """

    # SSHMUX_<NAME> -> config key
    ENV_MAPPINGS = {
        "HOST": "host",
        "USER": "user",
        "PORT": "port",
        "KEY": "key_file",
        "PASSPHRASE": "passphrase",
        "PASSWORD": "password",
        "KNOWN_HOSTS": "known_hosts",
        "TIMEOUT": "timeout_ms",
        "CONNECT_TIMEOUT": "connect_timeout_ms",
        "KEEPALIVE": "keepalive_interval",
        "LOG_LEVEL": "log_level",
        "POLLER_PATH": "poller.path",
        "POLLER_MASK": "poller.mask",
        "POLLER_INTERVAL": "poller.interval",
    }

    def __init__(self, env_prefix: str = ENV_PREFIX):
        self._env_prefix = env_prefix

    def load_toml(self, path: Path) -> Dict[str, Any]:
        """Load TOML configuration file"""
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        try:
            return tomllib.loads(path.read_text(encoding="utf-8"))
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Failed to parse TOML configuration {path}: {e}") from e

    def load_env(self) -> Dict[str, Any]:
        """Load configuration from environment variables"""
        config: Dict[str, Any] = {}

        for env_name, config_key in self.ENV_MAPPINGS.items():
            value = os.getenv(f"{self._env_prefix}{env_name}")
            if not value:
                continue
            # Handle nested keys
            if "." in config_key:
                section, key = config_key.split(".", 1)
                config.setdefault(section, {})[key] = self._convert_value(value)
            else:
                config[config_key] = self._convert_value(value)

        return config

    def _convert_value(self, value: str) -> Any:
        """Convert string value to appropriate type"""
        if value.lower() in ("true", "yes"):
            return True
        if value.lower() in ("false", "no"):
            return False

        try:
            return int(value)
        except ValueError:
            pass

        try:
            return float(value)
        except ValueError:
            pass

        return value

    def merge_configs(self, *configs: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge multiple configurations with priority.
        Later configs override earlier ones.
        """
        result: Dict[str, Any] = {}

        for config in configs:
            result = self._deep_merge(result, config)

        return result

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries"""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def load(
        self,
        toml_path: Optional[Path] = None,
        cli_overrides: Optional[Dict[str, Any]] = None,
        use_env: bool = True,
    ) -> Dict[str, Any]:
        """
        Load configuration with priority: CLI > env > TOML > defaults

        Args:
            toml_path: Path to TOML configuration file; when omitted the
                default file is used if it exists
            cli_overrides: CLI parameter overrides (None values are ignored)
            use_env: Whether to load from environment variables

        Returns:
            Merged configuration dictionary
        """
        configs = []

        # 1. TOML
        if toml_path is not None:
            configs.append(self.load_toml(Path(toml_path).expanduser()))
        else:
            default_path = Path(DEFAULT_CONFIG_PATH).expanduser()
            if default_path.exists():
                logger.debug(f"Using configuration file {default_path}")
                configs.append(self.load_toml(default_path))

        # 2. Environment variables
        if use_env:
            env_config = self.load_env()
            if env_config:
                configs.append(env_config)

        # 3. CLI overrides (highest priority)
        if cli_overrides:
            configs.append({k: v for k, v in cli_overrides.items() if v is not None})

        return self.merge_configs(*configs)
