"""Runtime settings and entity timing constants."""

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from roomsense.bluetooth.config import BluetoothConfig

logger = logging.getLogger(__name__)

ENV_SCAN_TIME_LIMIT = "ROOMSENSE_SCAN_TIME_LIMIT"
ENV_HCI_DEVICE_ID = "ROOMSENSE_HCI_DEVICE_ID"


class EntityConfig:
    """Timing constants for the entity registry and behaviors (seconds)."""

    FLUSH_WINDOW = 0.25
    ROLLING_AVERAGE_TICK = 1.0


@dataclass
class Settings:
    """Node settings resolved from the environment."""

    scan_time_limit: float = BluetoothConfig.DEFAULT_SCAN_TIME_LIMIT
    low_energy_adapter_id: int = 0

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from environment variables.

        Unparseable values are logged and replaced with the defaults.

        Parameters:
            environ (Mapping[str, str] | None): Source mapping; defaults to `os.environ`.
        """
        env = os.environ if environ is None else environ
        settings = cls()
        raw = env.get(ENV_SCAN_TIME_LIMIT)
        if raw:
            try:
                settings.scan_time_limit = float(raw)
            except ValueError:
                logger.warning("Ignoring invalid %s=%r", ENV_SCAN_TIME_LIMIT, raw)
        raw = env.get(ENV_HCI_DEVICE_ID)
        if raw:
            try:
                settings.low_energy_adapter_id = int(raw)
            except ValueError:
                logger.warning("Ignoring invalid %s=%r", ENV_HCI_DEVICE_ID, raw)
        return settings


__all__ = ["EntityConfig", "Settings", "ENV_HCI_DEVICE_ID", "ENV_SCAN_TIME_LIMIT"]
