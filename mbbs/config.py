"""
MBBS Configuration Module

Handles loading, validation, and management of configuration settings.
"""

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

# Use tomllib for Python 3.11+, tomli for earlier versions
if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomli as tomllib
    except ImportError:
        raise ImportError("Please install tomli: pip install tomli")


@dataclass
class MeshtasticConfig:
    """Meshtastic connection settings."""
    connection_type: str = "ble"  # ble | serial | tcp
    device: str = ""  # BLE name or address
    serial_port: str = "/dev/ttyUSB0"
    tcp_host: str = "localhost"
    tcp_port: int = 4403
    open_timeout_seconds: float = 5
    configure_timeout_seconds: float = 30
    discover_timeout_seconds: float = 15

    @property
    def device_id(self) -> str:
        """Device identifier handed to the transport for this connection type."""
        if self.connection_type == "serial":
            return self.serial_port
        if self.connection_type == "tcp":
            return f"{self.tcp_host}:{self.tcp_port}"
        return self.device


@dataclass
class BridgeConfig:
    """Session lifecycle timings."""
    tick_interval_seconds: float = 10
    idle_timeout_seconds: float = 300
    retry_delay_seconds: float = 5


@dataclass
class StorageConfig:
    """Snapshot and archive locations."""
    path: str = "storage.json"
    archive_dir: str = "."


@dataclass
class TelegramConfig:
    """Telegram notification settings."""
    enabled: bool = False
    bot_token: str = ""
    chat_id: str = ""
    timeout_seconds: float = 10


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    file: Optional[str] = None
    max_size_mb: int = 10
    backup_count: int = 3


@dataclass
class Config:
    """Main configuration container."""
    meshtastic: MeshtasticConfig = field(default_factory=MeshtasticConfig)
    bridge: BridgeConfig = field(default_factory=BridgeConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def validate(self) -> list[str]:
        """Validate configuration and return list of errors."""
        errors = []

        # Meshtastic validation
        valid_connections = ["ble", "serial", "tcp"]
        if self.meshtastic.connection_type not in valid_connections:
            errors.append(f"meshtastic.connection_type must be one of: {valid_connections}")
        if self.meshtastic.connection_type == "ble" and not self.meshtastic.device:
            errors.append("meshtastic.device is required for ble connections (or set BLE_DEVICE)")
        if self.meshtastic.open_timeout_seconds <= 0:
            errors.append("meshtastic.open_timeout_seconds must be positive")
        if self.meshtastic.configure_timeout_seconds <= 0:
            errors.append("meshtastic.configure_timeout_seconds must be positive")

        # Bridge timings
        if self.bridge.tick_interval_seconds <= 0:
            errors.append("bridge.tick_interval_seconds must be positive")
        if self.bridge.idle_timeout_seconds < self.bridge.tick_interval_seconds:
            errors.append("bridge.idle_timeout_seconds must be at least one tick interval")
        if self.bridge.retry_delay_seconds < 0:
            errors.append("bridge.retry_delay_seconds cannot be negative")

        # Telegram
        if self.telegram.enabled:
            if not self.telegram.bot_token:
                errors.append("telegram.bot_token is required when telegram is enabled")
            if not self.telegram.chat_id:
                errors.append("telegram.chat_id is required when telegram is enabled")

        if not self.storage.path:
            errors.append("storage.path cannot be empty")

        return errors

    def save(self, path: Path):
        """Save configuration to TOML file."""
        import toml  # For writing

        # Convert dataclasses to dict
        data = self._to_dict()

        with open(path, "w") as f:
            toml.dump(data, f)

    def _to_dict(self) -> dict[str, Any]:
        """Convert config to dictionary for serialization."""
        from dataclasses import asdict
        data = asdict(self)
        # TOML has no null
        if data["logging"]["file"] is None:
            del data["logging"]["file"]
        return data


def apply_env_overrides(config: Config, environ=None) -> Config:
    """
    Apply environment variable overrides.

    BLE_DEVICE, TELEGRAM_BOT_TOKEN and TELEGRAM_BOT_CHATID take precedence
    over the file so secrets can stay out of config.toml.
    """
    env = os.environ if environ is None else environ

    if env.get("BLE_DEVICE"):
        config.meshtastic.device = env["BLE_DEVICE"]

    if env.get("TELEGRAM_BOT_TOKEN"):
        config.telegram.bot_token = env["TELEGRAM_BOT_TOKEN"]
    if env.get("TELEGRAM_BOT_CHATID"):
        config.telegram.chat_id = env["TELEGRAM_BOT_CHATID"]

    if env.get("TELEGRAM_BOT_TOKEN") and config.telegram.chat_id:
        config.telegram.enabled = True

    return config


def load_config(path: Path, environ=None) -> Config:
    """Load configuration from TOML file, then apply environment overrides."""
    config = Config()

    if path.exists():
        with open(path, "rb") as f:
            data = tomllib.load(f)

        # Map TOML sections to config dataclasses
        if "meshtastic" in data:
            config.meshtastic = MeshtasticConfig(**data["meshtastic"])

        if "bridge" in data:
            config.bridge = BridgeConfig(**data["bridge"])

        if "storage" in data:
            config.storage = StorageConfig(**data["storage"])

        if "telegram" in data:
            telegram = data["telegram"].copy()
            # Chat ids are numeric in Telegram but kept as strings here
            if "chat_id" in telegram:
                telegram["chat_id"] = str(telegram["chat_id"])
            config.telegram = TelegramConfig(**telegram)

        if "logging" in data:
            config.logging = LoggingConfig(**data["logging"])

    return apply_env_overrides(config, environ)


def create_default_config(path: Path):
    """Create a default configuration file."""
    config = Config()
    config.save(path)
