"""Exception taxonomy and error handling helpers for Bluetooth operations."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from bleak.exc import BleakError

from roomsense.errors import RoomsenseError

logger = logging.getLogger(__name__)

__all__ = [
    "AdapterAlreadyResettingError",
    "AdapterLockedError",
    "AdapterResettingError",
    "AlreadyConnectingError",
    "BluetoothError",
    "BluetoothErrorHandler",
    "CommandError",
    "CommandTimeoutError",
    "ConnectionFailedError",
    "NonConnectableError",
    "OperationTimeoutError",
]


class BluetoothError(RoomsenseError):
    """Base class for Bluetooth adapter and peripheral errors."""


class AdapterLockedError(BluetoothError):
    """Raised when locking an adapter that is already locked for an inquiry."""

    def __init__(self, adapter_id: int, message: str):
        super().__init__(message)
        self.adapter_id = adapter_id


class AdapterResettingError(BluetoothError):
    """Raised when locking an adapter while it is being reset."""

    def __init__(self, adapter_id: int, message: str):
        super().__init__(message)
        self.adapter_id = adapter_id


class AdapterAlreadyResettingError(BluetoothError):
    """Raised when a reset is requested for an adapter that is already resetting."""

    def __init__(self, adapter_id: int, message: str):
        super().__init__(message)
        self.adapter_id = adapter_id


class NonConnectableError(BluetoothError):
    """The peripheral does not accept connections."""


class AlreadyConnectingError(BluetoothError):
    """A connection attempt to the peripheral is already in flight."""


class ConnectionFailedError(BluetoothError):
    """
    Connecting to a peripheral failed after the retry budget was spent.

    Attributes:
        reason (str): Either "timed out" or "retries exceeded".
    """

    def __init__(self, address: Optional[str], reason: str):
        super().__init__(reason)
        self.address = address
        self.reason = reason


class OperationTimeoutError(BluetoothError, TimeoutError):
    """A bounded operation did not complete before its deadline."""


class CommandError(BluetoothError):
    """A shell command exited unsuccessfully."""

    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr

    @property
    def is_io_error(self) -> bool:
        """True for driver-level I/O errors, which are expected radio noise."""
        text = str(self)
        return "Input/output" in text or "I/O" in text


class CommandTimeoutError(CommandError):
    """A shell command was killed after reaching its time limit."""

    def __init__(self, message: str, signal: Optional[int] = None):
        super().__init__(message)
        self.signal = signal


class BluetoothErrorHandler:
    """
    Helpers for consistent error handling around radio operations.

    Radio-facing failures degrade to a default value or a logged cleanup failure
    instead of propagating through recovery paths.
    """

    @staticmethod
    def safe_execute(
        func: Callable[[], Any],
        default_return: Any = None,
        log_error: bool = True,
        error_msg: str = "Error in operation",
        reraise: bool = False,
    ) -> Any:
        """
        Execute a zero-argument callable and return its result, falling back to a default on failure.

        Bluetooth-level errors (BleakError, BluetoothError, timeouts) are logged at debug
        level; anything else is logged with its traceback.

        Parameters:
            func (callable): A zero-argument callable to execute.
            default_return: Value to return if execution fails.
            log_error (bool): If True, log caught exceptions.
            error_msg (str): Message prefix used when logging errors.
            reraise (bool): If True, re-raise any caught exception instead of returning default_return.

        Returns:
            The value returned by `func()` on success, or `default_return` if execution failed.
        """
        try:
            return func()
        except (BleakError, BluetoothError, asyncio.TimeoutError) as e:
            if log_error:
                logger.debug("%s: %s", error_msg, e)
            if reraise:
                raise
            return default_return
        except Exception:
            if log_error:
                logger.exception("%s", error_msg)
            if reraise:
                raise
            return default_return

    @staticmethod
    async def safe_cleanup_async(
        func: Callable[[], Awaitable[Any]], cleanup_name: str = "cleanup operation"
    ) -> None:
        """Await a cleanup coroutine factory, logging instead of raising on failure."""
        try:
            await func()
        except Exception as e:  # noqa: BLE001 - cleanup paths must not raise
            logger.debug("Error during %s: %s", cleanup_name, e)
