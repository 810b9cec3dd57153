"""Radio driver port and its bleak-backed implementation."""

import asyncio
import functools
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from bleak import BleakClient, BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakError
from bleak.uuids import normalize_uuid_str

from roomsense.bluetooth.config import logger
from roomsense.bluetooth.errors import BluetoothErrorHandler
from roomsense.bluetooth.policies import RetryPolicy
from roomsense.bluetooth.util import sanitize_address

POWERED_ON = "poweredOn"
POWERED_OFF = "poweredOff"
UNKNOWN = "unknown"


class PeripheralState(Enum):
    """Connection state of a remote peripheral."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"


class Characteristic:
    """GATT characteristic handle."""

    uuid: str

    async def read(self) -> bytes:
        raise NotImplementedError


class Service:
    """GATT service handle."""

    uuid: str

    async def discover_characteristics(self, uuids: Iterable[str]) -> List[Characteristic]:
        raise NotImplementedError


class Peripheral:
    """Remote device as seen by the LE engine."""

    id: str
    address: str
    rssi: Optional[int] = None
    local_name: Optional[str] = None
    connectable: bool = True

    @property
    def state(self) -> PeripheralState:
        raise NotImplementedError

    async def connect(self) -> None:
        raise NotImplementedError

    async def disconnect(self) -> None:
        raise NotImplementedError

    async def discover_services(self, uuids: Iterable[str]) -> List[Service]:
        raise NotImplementedError


class BleakCharacteristic(Characteristic):
    """Characteristic read through the owning peripheral's BleakClient."""

    def __init__(self, characteristic, client: BleakClient):
        self._characteristic = characteristic
        self._client = client
        self.uuid = characteristic.uuid

    async def read(self) -> bytes:
        return bytes(await self._client.read_gatt_char(self._characteristic))


class BleakService(Service):
    def __init__(self, service, client: BleakClient):
        self._service = service
        self._client = client
        self.uuid = service.uuid

    async def discover_characteristics(self, uuids: Iterable[str]) -> List[Characteristic]:
        wanted = {normalize_uuid_str(u) for u in uuids}
        return [
            BleakCharacteristic(c, self._client)
            for c in self._service.characteristics
            if not wanted or c.uuid in wanted
        ]


class BleakPeripheral(Peripheral):
    """
    Peripheral backed by a bleak BLEDevice.

    A BleakClient is created per connection and dropped on disconnect; the
    wrapper itself is reused for every advertisement from the same address.

    Parameters:
        device (BLEDevice): Device reported by the scanner.
        advertisement (AdvertisementData | None): Latest advertisement payload.
        connectable (bool): Whether the device accepts connections.
        client_factory (callable): Builds the BleakClient; defaults to `BleakClient`.
    """

    def __init__(
        self,
        device: BLEDevice,
        advertisement: Optional[AdvertisementData] = None,
        *,
        connectable: bool = True,
        adapter: Optional[str] = None,
        client_factory: Callable[..., BleakClient] = BleakClient,
    ):
        self.device = device
        self.address = device.address
        self.id = sanitize_address(device.address) or device.address
        self.connectable = connectable
        self._adapter = adapter
        self._client_factory = client_factory
        self._client: Optional[BleakClient] = None
        self._state = PeripheralState.DISCONNECTED
        self.update(advertisement)

    def update(self, advertisement: Optional[AdvertisementData]) -> None:
        """Refresh RSSI and name from a new advertisement."""
        if advertisement is None:
            return
        self.rssi = advertisement.rssi
        self.local_name = advertisement.local_name or self.device.name

    @property
    def state(self) -> PeripheralState:
        return self._state

    def _on_disconnected(self, _client: BleakClient) -> None:
        logger.debug("Peripheral %s disconnected", self.address)
        self._state = PeripheralState.DISCONNECTED
        self._client = None

    async def connect(self) -> None:
        if self._state == PeripheralState.CONNECTED:
            return
        self._state = PeripheralState.CONNECTING
        kwargs: Dict[str, Any] = {"disconnected_callback": self._on_disconnected}
        if self._adapter is not None:
            kwargs["adapter"] = self._adapter
        client = self._client_factory(self.device, **kwargs)
        self._client = client
        try:
            await client.connect()
        except (BleakError, OSError, asyncio.TimeoutError):
            if self._client is client:
                self._client = None
                self._state = PeripheralState.DISCONNECTED
            raise
        if self._client is client:
            self._state = PeripheralState.CONNECTED

    async def disconnect(self) -> None:
        client = self._client
        if client is None:
            self._state = PeripheralState.DISCONNECTED
            return
        self._state = PeripheralState.DISCONNECTING
        try:
            await client.disconnect()
        finally:
            if self._client is client:
                self._client = None
            self._state = PeripheralState.DISCONNECTED

    async def discover_services(self, uuids: Iterable[str]) -> List[Service]:
        client = self._client
        if client is None or self._state != PeripheralState.CONNECTED:
            return []
        wanted = {normalize_uuid_str(u) for u in uuids}
        return [
            BleakService(s, client)
            for s in client.services
            if not wanted or s.uuid in wanted
        ]

    def __repr__(self) -> str:
        return f"BleakPeripheral({self.address!r}, rssi={self.rssi}, state={self._state.value})"


class RadioDriver:
    """
    Port to the host's radio stack.

    Emits `discover(peripheral)`, `scan_start()`, `scan_stop()`,
    `state_change(state)` and `warning(message)`. Scan control calls return
    immediately; completion is reported through the events.
    """

    EVENTS = ("discover", "scan_start", "scan_stop", "state_change", "warning")

    def __init__(self) -> None:
        self.state = UNKNOWN
        self._listeners: Dict[str, List[Callable[..., Any]]] = {e: [] for e in self.EVENTS}

    def on(self, event: str, callback: Callable[..., Any]) -> None:
        """Register `callback` for `event`."""
        if event not in self._listeners:
            raise ValueError(f"Unknown driver event {event!r}")
        self._listeners[event].append(callback)

    def emit(self, event: str, *args: Any) -> None:
        for callback in list(self._listeners[event]):
            BluetoothErrorHandler.safe_execute(
                functools.partial(callback, *args),
                error_msg=f"Error in driver {event} listener",
            )

    def start_scanning(self, service_uuids: Iterable[str] = (), allow_duplicates: bool = True) -> None:
        raise NotImplementedError

    def stop_scanning(self) -> None:
        raise NotImplementedError

    def reset_bindings(self) -> None:
        raise NotImplementedError


class BleakRadioDriver(RadioDriver):
    """
    RadioDriver on top of bleak's BleakScanner.

    BlueZ does not report adapter power changes through bleak, so the driver
    announces `poweredOn` from `open()` and keeps that state until `close()`.
    Passive scanning on BlueZ needs `or_patterns`, passed through
    `scanner_kwargs={"bluez": {...}}`.

    Parameters:
        adapter_id (int): HCI index of the adapter to scan with.
        scanning_mode (str): "active" or "passive".
        scanner_factory (callable): Builds the scanner; defaults to `BleakScanner`.
        client_factory (callable): Builds peripheral clients; defaults to `BleakClient`.
    """

    def __init__(
        self,
        adapter_id: int = 0,
        *,
        scanning_mode: str = "active",
        scanner_factory: Callable[..., BleakScanner] = BleakScanner,
        client_factory: Callable[..., BleakClient] = BleakClient,
        scanner_kwargs: Optional[Dict[str, Any]] = None,
    ):
        super().__init__()
        self.adapter_id = adapter_id
        self.adapter = f"hci{adapter_id}"
        self._scanning_mode = scanning_mode
        self._scanner_factory = scanner_factory
        self._client_factory = client_factory
        self._scanner_kwargs = dict(scanner_kwargs or {})
        self._scanner: Optional[BleakScanner] = None
        self._scanning = False
        self._allow_duplicates = True
        self._seen: Set[str] = set()
        self._peripherals: Dict[str, BleakPeripheral] = {}
        self._tasks: Set["asyncio.Task[None]"] = set()
        self._scan_lock = asyncio.Lock()

    @property
    def scanning(self) -> bool:
        return self._scanning

    def open(self) -> None:
        """Announce the adapter as powered on."""
        self.state = POWERED_ON
        self.emit("state_change", POWERED_ON)

    async def close(self) -> None:
        """Stop scanning and report the adapter as powered off."""
        await self._stop()
        for task in list(self._tasks):
            task.cancel()
        self.state = POWERED_OFF
        self.emit("state_change", POWERED_OFF)

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def start_scanning(self, service_uuids: Iterable[str] = (), allow_duplicates: bool = True) -> None:
        self._spawn(self._start(list(service_uuids), allow_duplicates))

    def stop_scanning(self) -> None:
        self._spawn(self._stop())

    def reset_bindings(self) -> None:
        """Drop the scanner and cached peripherals; the next scan builds fresh ones."""
        logger.debug("Resetting bindings for %s", self.adapter)
        self._scanner = None
        self._scanning = False
        self._seen.clear()
        self._peripherals.clear()

    def _build_scanner(self, service_uuids: List[str]) -> BleakScanner:
        return self._scanner_factory(
            detection_callback=self._on_detection,
            service_uuids=service_uuids or None,
            scanning_mode=self._scanning_mode,
            adapter=self.adapter,
            **self._scanner_kwargs,
        )

    async def _start(self, service_uuids: List[str], allow_duplicates: bool) -> None:
        async with self._scan_lock:
            if self._scanning:
                return
            self._allow_duplicates = allow_duplicates
            self._seen.clear()
            policy = RetryPolicy.scan_restart()
            attempt = 0
            while True:
                if self._scanner is None:
                    self._scanner = self._build_scanner(service_uuids)
                try:
                    await self._scanner.start()
                    break
                except (BleakError, OSError) as e:
                    self._scanner = None
                    self.emit("warning", f"Failed to start scanning on {self.adapter}: {e}")
                    if not policy.should_retry(attempt):
                        return
                    await policy.sleep_with_backoff(attempt)
                    attempt += 1
            self._scanning = True
        self.emit("scan_start")

    async def _stop(self) -> None:
        async with self._scan_lock:
            if not self._scanning or self._scanner is None:
                return
            try:
                await self._scanner.stop()
            except (BleakError, OSError) as e:
                self.emit("warning", f"Failed to stop scanning on {self.adapter}: {e}")
            self._scanning = False
        self.emit("scan_stop")

    def _on_detection(self, device: BLEDevice, advertisement: AdvertisementData) -> None:
        if not self._allow_duplicates:
            if device.address in self._seen:
                return
            self._seen.add(device.address)
        peripheral = self._peripherals.get(device.address)
        if peripheral is None:
            peripheral = BleakPeripheral(
                device,
                advertisement,
                adapter=self.adapter,
                client_factory=self._client_factory,
            )
            self._peripherals[device.address] = peripheral
        else:
            peripheral.update(advertisement)
        self.emit("discover", peripheral)


__all__ = [
    "BleakCharacteristic",
    "BleakPeripheral",
    "BleakRadioDriver",
    "BleakService",
    "Characteristic",
    "POWERED_OFF",
    "POWERED_ON",
    "Peripheral",
    "PeripheralState",
    "RadioDriver",
    "Service",
    "UNKNOWN",
]
