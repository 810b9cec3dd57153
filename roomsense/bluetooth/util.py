"Bluetooth helpers: sleeping, bounded awaits and address handling."

import asyncio
import logging
import shlex
from typing import Any, Awaitable, Optional, TypeVar

from .config import ERROR_INVALID_ADDRESS, ERROR_TIMEOUT, MAC_ADDRESS_REGEX
from .errors import OperationTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

__all__ = [
    "_sleep",
    "is_valid_mac",
    "quote_address",
    "sanitize_address",
    "with_timeout",
]


async def _sleep(delay: float) -> None:
    """
    Suspend the current task for the given duration in seconds.

    Tests replace this hook to skip real waiting.

    Parameters:
        delay (float): Duration to sleep, in seconds.
    """
    await asyncio.sleep(delay)


def _consume_late_result(future: "asyncio.Future[Any]") -> None:
    """Retrieve the outcome of an abandoned future so its exception is not reported as unhandled."""
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.debug("Operation finished with %r after its deadline", exc)


async def with_timeout(awaitable: Awaitable[T], timeout: Optional[float], label: str) -> T:
    """
    Wait for an awaitable, raising OperationTimeoutError once `timeout` elapses.

    Unlike a bare `asyncio.wait_for`, the underlying operation is not cancelled
    on timeout; it keeps running and its eventual outcome is discarded.

    Parameters:
        awaitable: An awaitable or coroutine to wait on.
        timeout (float | None): Timeout in seconds; if None, wait indefinitely.
        label (str): Label used in the timeout error message.

    Returns:
        The result produced by the awaitable.

    Raises:
        OperationTimeoutError: If the awaitable does not complete before the deadline.
    """
    if timeout is None:
        return await awaitable
    future = asyncio.ensure_future(awaitable)
    try:
        return await asyncio.wait_for(asyncio.shield(future), timeout=max(0.0, timeout))
    except asyncio.TimeoutError as exc:
        future.add_done_callback(_consume_late_result)
        raise OperationTimeoutError(ERROR_TIMEOUT.format(label, timeout)) from exc


def sanitize_address(address: Optional[str]) -> Optional[str]:
    """
    Normalize a Bluetooth address by removing common separators and lowercasing the result.

    Parameters:
        address (Optional[str]): Address or identifier; may be None or only whitespace.

    Returns:
        Optional[str]: The address with "-", "_", ":", and spaces removed and lowercased,
        or `None` if `address` is None or blank.
    """
    if address is None or not address.strip():
        return None
    return (
        address.strip()
        .replace("-", "")
        .replace("_", "")
        .replace(":", "")
        .replace(" ", "")
        .lower()
    )


def is_valid_mac(address: Optional[str]) -> bool:
    """Return True for a colon-separated six-octet MAC address."""
    return bool(address) and MAC_ADDRESS_REGEX.match(address) is not None


def quote_address(address: str) -> str:
    """
    Validate a MAC address and quote it for interpolation into a shell command.

    Raises:
        ValueError: If `address` is not a valid MAC address.
    """
    if not is_valid_mac(address):
        raise ValueError(ERROR_INVALID_ADDRESS.format(address))
    return shlex.quote(address)
