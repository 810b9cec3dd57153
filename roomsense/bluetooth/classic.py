"""Bluetooth Classic RSSI and device info inquiries through hcitool."""

import logging
import signal
from dataclasses import dataclass
from typing import Optional

from roomsense.bluetooth import util
from roomsense.bluetooth.adapter import AdapterManager
from roomsense.bluetooth.commands import CommandRunner
from roomsense.bluetooth.config import (
    COMMAND_CANCEL_INQUIRY,
    COMMAND_INFO,
    COMMAND_RSSI,
    DEVICE_NAME_REGEX,
    OUI_COMPANY_REGEX,
    RSSI_REGEX,
    BluetoothConfig,
)
from roomsense.bluetooth.errors import CommandError, CommandTimeoutError

logger = logging.getLogger(__name__)


@dataclass
class DeviceInfo:
    """Name and manufacturer reported by a Classic device."""

    address: str
    name: str
    manufacturer: Optional[str] = None


class ClassicInquiryService:
    """
    Runs Classic inquiries while holding the adapter lock.

    Radio noise (kill timeouts, I/O errors) is logged at debug level; any
    other failure bumps `successive_errors_occurred` so callers can alert on
    a persistently failing adapter.

    Parameters:
        adapters (AdapterManager): Provides the adapter lock.
        command_runner (CommandRunner): Executes hcitool commands.
        scan_time_limit (float): Seconds before an inquiry command is killed.
    """

    def __init__(
        self,
        adapters: AdapterManager,
        command_runner: CommandRunner,
        scan_time_limit: float = BluetoothConfig.DEFAULT_SCAN_TIME_LIMIT,
    ):
        self.adapters = adapters
        self.command_runner = command_runner
        self.scan_time_limit = scan_time_limit
        self._successive_errors_occurred = 0

    @property
    def successive_errors_occurred(self) -> int:
        """Number of unexpected inquiry failures since the last success."""
        return self._successive_errors_occurred

    async def inquire_rssi(self, adapter_id: int, address: str) -> Optional[int]:
        """
        Query the RSSI of a Classic device by opening a baseband connection.

        Returns:
            The RSSI in dBm, or None if the device could not be reached.

        Raises:
            ValueError: `address` is not a MAC address.
            AdapterLockedError, AdapterResettingError: The adapter is unavailable.
        """
        quoted = util.quote_address(address)
        self.adapters.lock(adapter_id)
        logger.debug("Querying for RSSI of %s using hcitool", address)
        try:
            output = await util.with_timeout(
                self.command_runner.run(
                    COMMAND_RSSI.format(adapter_id, quoted),
                    timeout=self.scan_time_limit,
                    kill_signal=signal.SIGKILL,
                ),
                self.scan_time_limit * 2,
                "RSSI inquiry",
            )
            match = RSSI_REGEX.search(output)
            self._successive_errors_occurred = 0
            return int(match.group(0)) if match else None
        except CommandTimeoutError:
            logger.debug(
                "Query of %s reached scan time limit, cancelling connection attempt", address
            )
            await self.cancel_inquiry(adapter_id)
            return None
        except Exception as e:  # noqa: BLE001 - inquiry failures degrade to no value
            if isinstance(e, CommandError) and e.is_io_error:
                logger.debug("%s", e)
            else:
                logger.error("Inquiring RSSI via BT Classic failed: %s", e)
                self._successive_errors_occurred += 1
            return None
        finally:
            self.adapters.unlock(adapter_id)

    async def cancel_inquiry(self, adapter_id: int) -> None:
        """Abort a pending Classic connection attempt on the adapter."""
        try:
            await self.command_runner.run(
                COMMAND_CANCEL_INQUIRY.format(adapter_id),
                timeout=BluetoothConfig.CLASSIC_CANCEL_TIMEOUT,
            )
        except CommandError as e:
            logger.debug("Failed to cancel inquiry on adapter %s: %s", adapter_id, e)

    async def inquire_device_info(self, adapter_id: int, address: str) -> DeviceInfo:
        """Ask a Classic device for its name and manufacturer; falls back to the address as name."""
        quoted = util.quote_address(address)
        self.adapters.lock(adapter_id)
        try:
            output = await util.with_timeout(
                self.command_runner.run(
                    COMMAND_INFO.format(adapter_id, quoted),
                    timeout=self.scan_time_limit,
                ),
                BluetoothConfig.CLASSIC_INFO_TIMEOUT,
                "device info inquiry",
            )
            name = DEVICE_NAME_REGEX.search(output)
            manufacturer = OUI_COMPANY_REGEX.search(output)
            return DeviceInfo(
                address=address,
                name=name.group(1) if name else address,
                manufacturer=manufacturer.group(1) if manufacturer else None,
            )
        except Exception as e:  # noqa: BLE001
            logger.error("Failed to inquire device info of %s: %s", address, e)
            return DeviceInfo(address=address, name=address)
        finally:
            self.adapters.unlock(adapter_id)


__all__ = ["ClassicInquiryService", "DeviceInfo"]
