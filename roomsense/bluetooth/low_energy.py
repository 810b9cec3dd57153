"""Connect/query engine for Bluetooth Low Energy peripherals."""

import logging
from typing import Optional

from roomsense.bluetooth import util
from roomsense.bluetooth.adapter import AdapterManager
from roomsense.bluetooth.config import (
    CONNECT_RETRIES_EXCEEDED,
    CONNECT_TIMED_OUT,
    ERROR_ALREADY_CONNECTING,
    ERROR_LOW_ENERGY_NOT_SET_UP,
    ERROR_NON_CONNECTABLE,
    BluetoothConfig,
)
from roomsense.bluetooth.driver import Peripheral, PeripheralState
from roomsense.bluetooth.errors import (
    AlreadyConnectingError,
    BluetoothError,
    BluetoothErrorHandler,
    ConnectionFailedError,
    NonConnectableError,
    OperationTimeoutError,
)
from roomsense.bluetooth.gating import QueryMutex
from roomsense.bluetooth.policies import RetryPolicy

logger = logging.getLogger(__name__)

_RELEASED_STATES = (PeripheralState.DISCONNECTING, PeripheralState.DISCONNECTED)


class LowEnergyService:
    """
    Connects to LE peripherals and reads single characteristics.

    Connections hold the LE adapter lock for their whole lifetime, so scanning
    pauses while a peripheral is being queried.
    """

    def __init__(self, adapters: AdapterManager, query_mutex: Optional[QueryMutex] = None):
        self.adapters = adapters
        self.query_mutex = query_mutex or QueryMutex()

    @property
    def _adapter_id(self) -> Optional[int]:
        return self.adapters.low_energy_adapter_id

    def acquire_query_mutex(self, owner: Optional[str] = None) -> bool:
        """Try to get exclusive permission to run a query; False if another query holds it."""
        return self.query_mutex.acquire(owner)

    def release_query_mutex(self) -> None:
        self.query_mutex.release()

    async def connect(self, peripheral: Peripheral) -> Peripheral:
        """
        Lock the LE adapter and connect to `peripheral`.

        Returns:
            The connected peripheral.

        Raises:
            NonConnectableError: The peripheral does not accept connections.
            AlreadyConnectingError: Another connection attempt is in flight.
            BluetoothError: Low energy discovery has not been set up.
            AdapterLockedError, AdapterResettingError: The adapter is unavailable.
            ConnectionFailedError: All attempts failed or the deadline passed.
        """
        if not peripheral.connectable:
            raise NonConnectableError(ERROR_NON_CONNECTABLE.format(peripheral.address))
        if peripheral.state == PeripheralState.CONNECTED:
            return peripheral
        if peripheral.state == PeripheralState.CONNECTING:
            raise AlreadyConnectingError(ERROR_ALREADY_CONNECTING.format(peripheral.address))
        if self._adapter_id is None:
            raise BluetoothError(ERROR_LOW_ENERGY_NOT_SET_UP)

        self.adapters.lock(self._adapter_id)
        try:
            await self._connect_with_retry(peripheral)
            return peripheral
        except Exception as e:
            logger.error("Failed to connect to %s: %s", peripheral.address, e)
            self.adapters.unlock(self._adapter_id)
            raise

    async def _connect_with_retry(self, peripheral: Peripheral) -> None:
        logger.debug("Connecting to BLE device at address %s", peripheral.address)
        now = self.adapters.scheduler.now
        cutoff = now() + BluetoothConfig.LE_CONNECTION_TIMEOUT
        policy = RetryPolicy.le_connect()
        remaining = cutoff - now()

        while True:
            try:
                await util.with_timeout(peripheral.connect(), remaining, "connect")
            except Exception as e:  # noqa: BLE001 - every attempt failure is retried
                logger.debug("Connection error %s: %s", peripheral.address, e)

            if peripheral.state == PeripheralState.CONNECTING:
                await BluetoothErrorHandler.safe_cleanup_async(
                    lambda: util.with_timeout(
                        peripheral.disconnect(), BluetoothConfig.LE_DISCONNECT_TIMEOUT, "disconnect"
                    ),
                    f"disconnect from {peripheral.address}",
                )

            if peripheral.state == PeripheralState.CONNECTED:
                return

            delay, _ = policy.next_attempt()
            await util._sleep(delay)
            remaining = cutoff - now()
            logger.debug(
                "Connect attempt %s: state %s with %.2fs remaining",
                policy.get_attempt_count(),
                peripheral.state.value,
                remaining,
            )
            if remaining <= 0 or not policy.should_retry():
                break

        if peripheral.state != PeripheralState.CONNECTED:
            reason = CONNECT_TIMED_OUT if remaining <= 0 else CONNECT_RETRIES_EXCEEDED
            raise ConnectionFailedError(peripheral.address, reason)

    async def disconnect(self, peripheral: Peripheral) -> None:
        """Disconnect from `peripheral`, resetting the adapter if the disconnect hangs or fails."""
        if peripheral.state not in (PeripheralState.CONNECTING, PeripheralState.CONNECTED):
            return
        logger.debug("Disconnecting from BLE device at address %s", peripheral.address)
        try:
            await util.with_timeout(
                peripheral.disconnect(), BluetoothConfig.LE_DISCONNECT_TIMEOUT, "disconnect"
            )
        except Exception as e:  # noqa: BLE001 - escalated to an adapter reset
            logger.debug("Failed to disconnect from %s: %s", peripheral.address, e)
            await self._reset_adapter()

    async def _reset_adapter(self) -> None:
        await BluetoothErrorHandler.safe_cleanup_async(
            lambda: self.adapters.reset(self._adapter_id), f"reset of adapter {self._adapter_id}"
        )

    async def query(
        self, peripheral: Peripheral, service_uuid: str, characteristic_uuid: str
    ) -> Optional[bytes]:
        """
        Connect to `peripheral` and read one characteristic.

        The caller must hold the query mutex. Returns None when the service or
        characteristic is missing, the peripheral drops the connection, or the
        read deadline passes.
        """
        if not self.query_mutex.held:
            logger.error("Permission to query %s has not been acquired", peripheral.id)
            return None

        await self.connect(peripheral)

        try:
            return await self._read_characteristic(peripheral, service_uuid, characteristic_uuid)
        except OperationTimeoutError as e:
            logger.error("Failed to query value from %s: %s", peripheral.id, e)
            await self._reset_adapter()
            return None
        except Exception as e:  # noqa: BLE001 - query failures degrade to no value
            logger.error("Failed to query value from %s: %s", peripheral.id, e)
            return None
        finally:
            if peripheral.state not in _RELEASED_STATES:
                await self.disconnect(peripheral)
            self.adapters.unlock(self._adapter_id)

    async def _read_characteristic(
        self, peripheral: Peripheral, service_uuid: str, characteristic_uuid: str
    ) -> Optional[bytes]:
        if peripheral.state != PeripheralState.CONNECTED:
            return None

        now = self.adapters.scheduler.now
        cutoff = now() + BluetoothConfig.LE_READ_TIMEOUT

        services = await util.with_timeout(
            peripheral.discover_services([service_uuid]), cutoff - now(), "service discovery"
        )
        remaining = cutoff - now()
        if not services or peripheral.state != PeripheralState.CONNECTED or remaining <= 0:
            return None

        characteristics = await util.with_timeout(
            services[0].discover_characteristics([characteristic_uuid]),
            remaining,
            "characteristic discovery",
        )
        remaining = cutoff - now()
        if not characteristics or peripheral.state != PeripheralState.CONNECTED or remaining <= 0:
            return None

        return await util.with_timeout(characteristics[0].read(), remaining, "characteristic read")


__all__ = ["LowEnergyService"]
