"""Bluetooth adapter resource manager and LE/Classic engines."""

from roomsense.bluetooth.adapter import ADVERTISEMENTS_RECEIVED, AdapterManager
from roomsense.bluetooth.classic import ClassicInquiryService, DeviceInfo
from roomsense.bluetooth.commands import CommandRunner, ShellCommandRunner
from roomsense.bluetooth.config import BluetoothConfig
from roomsense.bluetooth.driver import (
    BleakPeripheral,
    BleakRadioDriver,
    Peripheral,
    PeripheralState,
    RadioDriver,
)
from roomsense.bluetooth.errors import (
    AdapterAlreadyResettingError,
    AdapterLockedError,
    AdapterResettingError,
    AlreadyConnectingError,
    BluetoothError,
    BluetoothErrorHandler,
    CommandError,
    CommandTimeoutError,
    ConnectionFailedError,
    NonConnectableError,
    OperationTimeoutError,
)
from roomsense.bluetooth.gating import QueryMutex
from roomsense.bluetooth.low_energy import LowEnergyService
from roomsense.bluetooth.policies import ReconnectPolicy, RetryPolicy
from roomsense.bluetooth.state import AdapterRecord, AdapterState, AdapterStateStore
from roomsense.bluetooth.util import _sleep, with_timeout

__all__ = [
    "ADVERTISEMENTS_RECEIVED",
    "AdapterAlreadyResettingError",
    "AdapterLockedError",
    "AdapterManager",
    "AdapterRecord",
    "AdapterResettingError",
    "AdapterState",
    "AdapterStateStore",
    "AlreadyConnectingError",
    "BleakPeripheral",
    "BleakRadioDriver",
    "BluetoothConfig",
    "BluetoothError",
    "BluetoothErrorHandler",
    "ClassicInquiryService",
    "CommandError",
    "CommandRunner",
    "CommandTimeoutError",
    "ConnectionFailedError",
    "DeviceInfo",
    "LowEnergyService",
    "NonConnectableError",
    "OperationTimeoutError",
    "Peripheral",
    "PeripheralState",
    "QueryMutex",
    "RadioDriver",
    "ReconnectPolicy",
    "RetryPolicy",
    "ShellCommandRunner",
    "_sleep",
    "with_timeout",
]
