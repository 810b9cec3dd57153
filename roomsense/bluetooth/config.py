"""Timing constants and message templates for the Bluetooth adapter manager and engines."""

from __future__ import annotations

import logging
import re

logger = logging.getLogger("roomsense.bluetooth")


class BluetoothConfig:
    """Configuration constants for Bluetooth adapter operations (seconds unless noted)."""

    INQUIRY_LOCK_TIMEOUT = 30.0
    SCAN_NO_PERIPHERAL_TIMEOUT = 30.0
    DEADLOCK_SWEEP_INTERVAL = 10.0
    SCANNER_CHECK_INTERVAL = 15.0

    LE_CONNECTION_RETRIES = 5
    LE_CONNECTION_TIMEOUT = 10.0
    LE_CONNECTION_RETRY_DELAY = 0.1
    LE_READ_TIMEOUT = 15.0
    LE_DISCONNECT_TIMEOUT = 1.0

    RESET_COMMAND_TIMEOUT = 3.0
    RESET_SETTLE_DELAY = 5.0
    RESETTING_DISCOVERY_GRACE = 1.0

    SCAN_RECOVERY_WAIT = 10.0
    SCAN_RECOVERY_MAX_WAIT = 30.0
    SCAN_START_RETRIES = 3

    CLASSIC_INFO_TIMEOUT = 6.0
    CLASSIC_CANCEL_TIMEOUT = 3.0
    DEFAULT_SCAN_TIME_LIMIT = 2.0


IGNORED_DRIVER_WARNINGS = frozenset({"unknown peripheral undefined RSSI update!"})

RSSI_REGEX = re.compile(r"-?[0-9]+")
DEVICE_NAME_REGEX = re.compile(r"Device Name: (.+)")
OUI_COMPANY_REGEX = re.compile(r"OUI Company: (.+) \(.+\)")
MAC_ADDRESS_REGEX = re.compile(r"^([0-9A-Fa-f]{2}:){5}[0-9A-Fa-f]{2}$")

COMMAND_RSSI = "hcitool -i hci{0} cc {1} && hcitool -i hci{0} rssi {1}"
COMMAND_CANCEL_INQUIRY = "hcitool -i hci{0} cmd 0x01 0x0008"
COMMAND_INFO = "hcitool -i hci{0} info {1}"
COMMAND_RESET = "hciconfig hci{0} reset"

ERROR_TIMEOUT = "{0} timed out after {1:.1f} seconds"
ERROR_ALREADY_LOCKED = "Trying to lock adapter {0} even though it is already locked"
ERROR_LOCK_RESETTING = "Cannot lock resetting adapter {0}"
ERROR_ALREADY_RESETTING = "Adapter {0} is already resetting"
ERROR_ALREADY_CONNECTING = "Connection to {0} is already trying to be established"
ERROR_NON_CONNECTABLE = "Trying to connect to non-connectable device {0}"
ERROR_INVALID_ADDRESS = "Invalid Bluetooth address '{0}'"
ERROR_LOW_ENERGY_NOT_SET_UP = "Low energy discovery has not been set up, no LE adapter to lock"

CONNECT_TIMED_OUT = "timed out"
CONNECT_RETRIES_EXCEEDED = "retries exceeded"

__all__ = [
    "BluetoothConfig",
    "COMMAND_CANCEL_INQUIRY",
    "COMMAND_INFO",
    "COMMAND_RESET",
    "COMMAND_RSSI",
    "CONNECT_RETRIES_EXCEEDED",
    "CONNECT_TIMED_OUT",
    "DEVICE_NAME_REGEX",
    "ERROR_ALREADY_CONNECTING",
    "ERROR_ALREADY_LOCKED",
    "ERROR_ALREADY_RESETTING",
    "ERROR_INVALID_ADDRESS",
    "ERROR_LOW_ENERGY_NOT_SET_UP",
    "ERROR_LOCK_RESETTING",
    "ERROR_NON_CONNECTABLE",
    "ERROR_TIMEOUT",
    "IGNORED_DRIVER_WARNINGS",
    "MAC_ADDRESS_REGEX",
    "OUI_COMPANY_REGEX",
    "RSSI_REGEX",
    "logger",
]
