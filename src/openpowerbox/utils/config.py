"""
Application configuration (JSON).

Example ``~/.openpowerbox/config.json``:

    {
        "serial": {"port": "/dev/ttyUSB0", "read_timeout": 2.0},
        "poll": {"interval_s": 5.0},
        "protocol": {"ack_policy": "strict"}
    }

Missing sections and keys take their defaults; unknown keys are ignored with
a warning.
"""

import json
import logging
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

from ..controllers.dispatcher import AckPolicy, DEFAULT_COMMAND_DELAY, DEFAULT_READ_TIMEOUT
from ..controllers.device_controller import DEFAULT_WIFI_APPLY_DELAY
from ..controllers.poll_manager import DEFAULT_POLL_INTERVAL
from ..communication.serial_transport import DEFAULT_BAUDRATE, DEFAULT_SETTLE_DELAY

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".openpowerbox" / "config.json"


class ConfigError(ValueError):
    """Configuration file exists but cannot be used."""
    pass


@dataclass
class SerialConfig:
    port: Optional[str] = None
    baudrate: int = DEFAULT_BAUDRATE
    read_timeout: float = DEFAULT_READ_TIMEOUT
    command_delay: float = DEFAULT_COMMAND_DELAY
    settle_delay: float = DEFAULT_SETTLE_DELAY


@dataclass
class PollConfig:
    interval_s: float = DEFAULT_POLL_INTERVAL


@dataclass
class ProtocolConfig:
    ack_policy: str = AckPolicy.STRICT.value
    wifi_apply_delay: float = DEFAULT_WIFI_APPLY_DELAY

    @property
    def policy(self) -> AckPolicy:
        return AckPolicy(self.ack_policy)


@dataclass
class AppConfig:
    serial: SerialConfig = field(default_factory=SerialConfig)
    poll: PollConfig = field(default_factory=PollConfig)
    protocol: ProtocolConfig = field(default_factory=ProtocolConfig)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppConfig":
        sections = {f.name for f in fields(cls)}
        config = cls()
        for name, value in data.items():
            if name not in sections:
                logger.warning(f"Ignoring unknown config section {name!r}")
                continue
            if not isinstance(value, dict):
                raise ConfigError(f"Config section {name!r} must be an object")
            setattr(config, name, _build_section(type(getattr(config, name)), name, value))

        try:
            AckPolicy(config.protocol.ack_policy)
        except ValueError as e:
            raise ConfigError(f"Invalid ack_policy {config.protocol.ack_policy!r}") from e
        return config


def _build_section(section_cls, section_name: str, values: Dict[str, Any]):
    known = {f.name for f in fields(section_cls)}
    kwargs = {}
    for key, value in values.items():
        if key not in known:
            logger.warning(f"Ignoring unknown config key {section_name}.{key}")
            continue
        kwargs[key] = value
    return section_cls(**kwargs)


def load_config(path: Optional[Union[str, Path]] = None) -> AppConfig:
    """
    Load configuration from JSON.

    Args:
        path: Config file (default ``~/.openpowerbox/config.json``)

    Returns:
        AppConfig; defaults if the file does not exist

    Raises:
        ConfigError: file is not valid JSON or has invalid values
    """
    path = Path(path) if path else DEFAULT_CONFIG_PATH
    if not path.exists():
        logger.debug(f"No config file at {path}, using defaults")
        return AppConfig()

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {path}: line {e.lineno}, column {e.colno}: {e.msg}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Top level of {path} must be an object")

    config = AppConfig.from_dict(data)
    logger.info(f"Loaded configuration from: {path}")
    return config


def save_config(config: AppConfig, path: Optional[Union[str, Path]] = None) -> Path:
    """Write *config* as JSON, creating parent directories."""
    path = Path(path) if path else DEFAULT_CONFIG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(config.to_dict(), f, indent=2)
    logger.info(f"Saved configuration to: {path}")
    return path
