# fwban/core/config.py

from __future__ import annotations

import logging
import re
from datetime import timedelta
from functools import lru_cache
from typing import Dict, List

from pydantic import BaseModel, field_validator
from pydantic_settings import BaseSettings

from fwban.device.duration import DurationParseError, format_duration, parse_duration
from fwban.device.exceptions import ConfigError

logger = logging.getLogger(__name__)


class DeviceSettings(BaseModel):
    """One RouterOS device. Prefixes may be ``@listname`` to import another address-list."""

    disabled: bool = False
    address: str = ""
    use_tls: bool = False
    verify_tls: bool = True
    user: str = ""
    passwd: str = ""
    ban_list: str = "blacklist"
    whitelist: List[str] = []
    blacklist: List[str] = []


class Settings(BaseSettings):
    PROJECT_NAME: str = "fwban"
    PROJECT_VERSION: str = "1.0.0"

    # ── Ban behaviour ──
    BLOCK_TIME: str = "24h"
    AUTO_DELETE: bool = True
    VERBOSE: bool = False
    DEBUG: bool = False

    # ── Syslog receiver ──
    SYSLOG_HOST: str = "::"
    SYSLOG_PORT: int = 10514
    BAN_QUEUE_SIZE: int = 1000
    BAN_WORKERS: int = 4
    REGEXPS: List[str] = []

    # ── Device deadlines ──
    QUERY_TIMEOUT_SECONDS: float = 5.0
    MUTATION_TIMEOUT_SECONDS: float = 30.0
    CONNECT_TIMEOUT_SECONDS: float = 60.0

    # ── Devices, JSON object keyed by device name ──
    DEVICES: Dict[str, DeviceSettings] = {}

    class Config:
        env_prefix = "FWBAN_"
        env_file = ".env"
        env_file_encoding = "utf-8"

    @field_validator("BLOCK_TIME")
    @classmethod
    def _check_block_time(cls, value: str) -> str:
        try:
            parse_duration(value)
        except DurationParseError as exc:
            raise ValueError(str(exc)) from exc
        return value

    # ── helpers ──
    @property
    def block_time(self) -> timedelta:
        return parse_duration(self.BLOCK_TIME)

    def enabled_devices(self) -> Dict[str, DeviceSettings]:
        return {name: device for name, device in self.DEVICES.items() if not device.disabled}

    # ── Startup validation ──
    def validate_settings(self) -> None:
        """Collect every configuration problem and raise them as one ConfigError."""
        errors: list[str] = []

        if not self.block_time:
            errors.append("BLOCK_TIME must not be zero")

        if not self.REGEXPS:
            errors.append("need at least one valid regexp")
        for pattern in self.REGEXPS:
            try:
                compiled = re.compile(pattern)
            except re.error as exc:
                errors.append(f"invalid regexp {pattern!r}: {exc}")
                continue
            if "IP" not in compiled.groupindex:
                errors.append(f"invalid regexp {pattern!r}: missing named group IP")

        for name, device in self.enabled_devices().items():
            for field in ("address", "user", "passwd"):
                if not getattr(device, field):
                    errors.append(f"{name}: {field} is a required field")
        if not self.enabled_devices():
            errors.append("need at least one valid device configuration")

        if errors:
            for error in errors:
                logger.error("[CONFIG] %s", error)
            raise ConfigError("; ".join(errors))

        logger.debug(
            "Settings loaded: block_time=%s auto_delete=%s devices=%s",
            format_duration(self.block_time, trim=True),
            self.AUTO_DELETE,
            ", ".join(self.enabled_devices()),
        )


@lru_cache
def get_settings() -> Settings:
    settings = Settings()
    settings.validate_settings()
    return settings
