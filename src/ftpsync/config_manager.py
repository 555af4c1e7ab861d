"""Configuration management module.

This module handles persistent configuration storage using TOML format.
Stores the account (host, port, security mode, username), the remote and
local roots, bandwidth limits and keep-alive interval.

Security:
- Config file permissions: 0600 (owner read/write only)
- Path validation
- Passwords are never stored in the config file
"""

import logging
import os
import tempfile
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

import tomli
import tomlkit

from ftpsync.modules.file_transfer.transport import SecurityMode

logger = logging.getLogger(__name__)

DEFAULT_PORTS = {
    SecurityMode.PLAIN: 21,
    SecurityMode.EXPLICIT_TLS: 21,
    SecurityMode.IMPLICIT_TLS: 990,
}

# Keys that must never be persisted
SECRET_KEYS = ("password", "passwd", "secret")


class ConfigError(Exception):
    """Raised when configuration operations fail."""

    pass


@dataclass
class SyncConfig:
    """ftpsync configuration data."""

    host: str | None = None
    port: int | None = None  # None: default port for the security mode
    username: str = "anonymous"
    security: str = "plain"  # plain | explicit | implicit
    remote_path: str = "/"
    local_path: str | None = None
    upload_limit: int = 0  # kB/s, 0 = unlimited
    download_limit: int = 0  # kB/s, 0 = unlimited
    keep_alive_interval: int = 0  # seconds, 0 = disabled
    timeout: float = 30.0

    @property
    def security_mode(self) -> SecurityMode:
        """Parsed security mode."""
        try:
            return SecurityMode(self.security)
        except ValueError as e:
            raise ConfigError(
                f"Invalid security mode: '{self.security}'. Use plain, explicit or implicit."
            ) from e

    @property
    def effective_port(self) -> int:
        """Configured port, or the default for the security mode."""
        return self.port or DEFAULT_PORTS[self.security_mode]

    def validate(self) -> None:
        """Check values that would make a connection impossible.

        Raises:
            ConfigError: On the first invalid value
        """
        if not self.host:
            raise ConfigError("No host configured. Run 'ftpsync config init' first.")
        self.security_mode  # noqa: B018 - raises ConfigError on bad value
        if self.port is not None and not 0 < self.port < 65536:
            raise ConfigError(f"Invalid port: {self.port}")
        if self.keep_alive_interval < 0:
            raise ConfigError("keep_alive_interval cannot be negative")
        if self.timeout <= 0:
            raise ConfigError("timeout must be positive")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, excluding None values."""
        data = asdict(self)
        # Filter out None values as TOML doesn't support them
        return {k: v for k, v in data.items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SyncConfig":
        """Create from dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        for key in data:
            if key not in known:
                logger.warning(f"Unknown config key: {key}")
        return cls(**{k: v for k, v in data.items() if k in known})


class ConfigManager:
    """Manage ftpsync configuration file.

    Configuration is stored at ~/.ftpsync/config.toml with secure permissions.
    """

    DEFAULT_CONFIG_DIR = Path.home() / ".ftpsync"
    DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.toml"
    TRUST_FILE_NAME = "trusted_certificates"

    @classmethod
    def _validate_config_path(cls, path: Path) -> Path:
        """Validate configuration file path for security.

        Args:
            path: Path to validate

        Returns:
            Resolved path

        Raises:
            ConfigError: If path is outside allowed directories

        Security:
            - Resolves symlinks to prevent symlink attacks
            - Only ~/.ftpsync/, the current directory and the temp dir are allowed
        """
        resolved_path = path.resolve()

        allowed_dirs = [
            cls.DEFAULT_CONFIG_DIR.resolve(),
            Path.cwd().resolve(),
            Path(tempfile.gettempdir()).resolve(),  # Allow pytest tmp_path
        ]

        for allowed_dir in allowed_dirs:
            try:
                resolved_path.relative_to(allowed_dir)
                return resolved_path
            except ValueError:
                continue

        raise ConfigError(
            f"Config path outside allowed directories: {resolved_path}\n"
            f"Allowed directories:\n"
            f"  - {cls.DEFAULT_CONFIG_DIR}\n"
            f"  - {Path.cwd()}"
        )

    @classmethod
    def get_config_path(cls, custom_path: str | None = None) -> Path:
        """Get configuration file path.

        Args:
            custom_path: Custom config file path (optional)

        Returns:
            Path to config file

        Raises:
            ConfigError: If path is invalid or outside allowed directories
        """
        if custom_path:
            path = Path(custom_path).expanduser().resolve()
            path = cls._validate_config_path(path)
            if not path.exists():
                raise ConfigError(f"Config file not found: {path}")
            return path

        return cls.DEFAULT_CONFIG_FILE

    @classmethod
    def get_trust_file(cls, custom_path: str | None = None) -> Path:
        """Path of the trusted-certificate list (next to the config file)."""
        if custom_path:
            return Path(custom_path).expanduser().resolve().parent / cls.TRUST_FILE_NAME
        return cls.DEFAULT_CONFIG_DIR / cls.TRUST_FILE_NAME

    @classmethod
    def ensure_config_dir(cls) -> Path:
        """Ensure config directory exists with secure permissions.

        Raises:
            ConfigError: If directory creation fails
        """
        try:
            cls.DEFAULT_CONFIG_DIR.mkdir(parents=True, exist_ok=True)
            os.chmod(cls.DEFAULT_CONFIG_DIR, 0o700)
            logger.debug(f"Config directory ready: {cls.DEFAULT_CONFIG_DIR}")
            return cls.DEFAULT_CONFIG_DIR
        except OSError as e:
            raise ConfigError(f"Failed to create config directory: {e}") from e

    @classmethod
    def load_config(cls, custom_path: str | None = None) -> SyncConfig:
        """Load configuration from file.

        Args:
            custom_path: Custom config file path (optional)

        Returns:
            SyncConfig object (defaults when no file exists)

        Raises:
            ConfigError: If loading fails or the file contains a password
        """
        config_path = cls.get_config_path(custom_path)

        if not config_path.exists():
            logger.debug("Config file not found, using defaults")
            return SyncConfig()

        try:
            mode = config_path.stat().st_mode & 0o777
            if mode & 0o077:
                logger.warning(
                    f"Config file has insecure permissions: {oct(mode)}. Fixing to 0600..."
                )
                os.chmod(config_path, 0o600)

            with open(config_path, "rb") as f:
                data = tomli.load(f)
        except (OSError, tomli.TOMLDecodeError) as e:
            raise ConfigError(f"Failed to load config: {e}") from e

        secrets = [key for key in data if key.lower() in SECRET_KEYS]
        if secrets:
            raise ConfigError(
                f"Config file must not contain secrets ({', '.join(secrets)}). "
                "Remove them and set FTPSYNC_PASSWORD instead."
            )

        logger.debug(f"Loaded config from: {config_path}")
        try:
            return SyncConfig.from_dict(data)
        except TypeError as e:
            raise ConfigError(f"Invalid config values: {e}") from e

    @classmethod
    def save_config(cls, config: SyncConfig, custom_path: str | None = None) -> Path:
        """Save configuration to file.

        Args:
            config: Configuration to save
            custom_path: Custom config file path (optional)

        Returns:
            Path written

        Raises:
            ConfigError: If saving fails or path is outside allowed directories
        """
        temp_path: Path | None = None
        try:
            if custom_path:
                config_path = cls._validate_config_path(Path(custom_path).expanduser())
                config_path.parent.mkdir(parents=True, exist_ok=True)
            else:
                cls.ensure_config_dir()
                config_path = cls.DEFAULT_CONFIG_FILE

            # Use tomlkit to preserve comments and formatting of an existing file
            if config_path.exists():
                with open(config_path) as f:
                    doc = tomlkit.load(f)
            else:
                doc = tomlkit.document()

            for key, value in config.to_dict().items():
                doc[key] = value

            temp_path = config_path.with_suffix(".tmp")
            with open(temp_path, "w") as f:
                tomlkit.dump(doc, f)

            os.chmod(temp_path, 0o600)
            temp_path.replace(config_path)

            logger.debug(f"Saved config to: {config_path}")
            return config_path

        except (OSError, ConfigError) as e:
            if temp_path and temp_path.exists():
                temp_path.unlink()
            if isinstance(e, ConfigError):
                raise
            raise ConfigError(f"Failed to save config: {e}") from e

    @classmethod
    def update_config(cls, custom_path: str | None = None, **updates: Any) -> SyncConfig:
        """Update configuration values.

        Raises:
            ConfigError: If update fails or a secret is passed
        """
        config = cls.load_config(custom_path)

        for key, value in updates.items():
            if key.lower() in SECRET_KEYS:
                raise ConfigError(f"Refusing to store secret '{key}' in config file")
            if hasattr(config, key):
                setattr(config, key, value)
            else:
                logger.warning(f"Unknown config key: {key}")

        cls.save_config(config, custom_path)
        return config
