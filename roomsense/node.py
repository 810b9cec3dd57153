"""Presence node: wires the Bluetooth engines to the entity registry."""

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional

from tabulate import tabulate

from roomsense.bluetooth.adapter import AdapterManager
from roomsense.bluetooth.classic import ClassicInquiryService
from roomsense.bluetooth.commands import CommandRunner, ShellCommandRunner
from roomsense.bluetooth.driver import BleakRadioDriver, Peripheral, RadioDriver
from roomsense.bluetooth.errors import AdapterLockedError, AdapterResettingError
from roomsense.bluetooth.low_energy import LowEnergyService
from roomsense.bluetooth.util import is_valid_mac
from roomsense.config import Settings
from roomsense.entities.behaviors import RollingAverage
from roomsense.entities.entity import Sensor
from roomsense.entities.registry import EntityProxy, EntityRegistry
from roomsense.scheduling import LoopScheduler, Scheduler

logger = logging.getLogger(__name__)

RSSI_WINDOW = 15.0
CLASSIC_POLL_INTERVAL = 10.0


class PresenceNode:
    """
    Tracks the RSSI of nearby devices as `Sensor` entities.

    Every LE advertisement updates a `ble-<address>` sensor; configured Classic
    addresses are polled through hcitool into `classic-<address>` sensors. Both
    are smoothed with a rolling average.

    Parameters:
        settings (Settings): Adapter index and Classic scan time limit.
        driver (RadioDriver | None): Defaults to a `BleakRadioDriver` on the LE adapter.
        classic_addresses (Iterable[str]): Classic MAC addresses to poll.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        driver: Optional[RadioDriver] = None,
        command_runner: Optional[CommandRunner] = None,
        scheduler: Optional[Scheduler] = None,
        registry: Optional[EntityRegistry] = None,
        classic_addresses: Iterable[str] = (),
        rssi_window: float = RSSI_WINDOW,
        classic_poll_interval: float = CLASSIC_POLL_INTERVAL,
    ):
        self.settings = settings or Settings()
        self.scheduler = scheduler or LoopScheduler()
        self.driver = driver or BleakRadioDriver(self.settings.low_energy_adapter_id)
        self.command_runner = command_runner or ShellCommandRunner()
        self.adapters = AdapterManager(
            self.driver,
            self.command_runner,
            low_energy_adapter_id=self.settings.low_energy_adapter_id,
            scheduler=self.scheduler,
        )
        self.low_energy = LowEnergyService(self.adapters)
        self.classic = ClassicInquiryService(
            self.adapters, self.command_runner, self.settings.scan_time_limit
        )
        self.registry = registry or EntityRegistry(self.scheduler)
        self.rssi_window = rssi_window
        self.classic_poll_interval = classic_poll_interval
        self.classic_addresses: List[str] = []
        for address in classic_addresses:
            if not is_valid_mac(address):
                raise ValueError(f"Invalid Classic address {address!r}")
            self.classic_addresses.append(address.upper())
        self._classic_task: Optional["asyncio.Task[None]"] = None

    def _sensor(self, entity_id: str, name: str) -> EntityProxy:
        proxy = self.registry.get(entity_id)
        if proxy is None:
            sensor = Sensor(entity_id, name, unit_of_measurement="dBm")
            sensor.behaviors = [RollingAverage(window=self.rssi_window)]
            proxy = self.registry.add(sensor)
        return proxy

    def _on_discovery(self, peripheral: Peripheral) -> None:
        if peripheral.rssi is None:
            return
        proxy = self._sensor(f"ble-{peripheral.id}", peripheral.local_name or peripheral.address)
        proxy.set_attribute("address", peripheral.address)
        proxy.set_state(peripheral.rssi)

    async def poll_classic(self) -> None:
        """Run one RSSI inquiry round over the configured Classic addresses."""
        adapter_id = self.settings.low_energy_adapter_id
        for address in self.classic_addresses:
            try:
                rssi = await self.classic.inquire_rssi(adapter_id, address)
            except (AdapterLockedError, AdapterResettingError) as e:
                logger.debug("Skipping Classic inquiry of %s: %s", address, e)
                continue
            proxy = self._sensor(f"classic-{address.replace(':', '').lower()}", address)
            proxy.set_attribute("address", address)
            if rssi is not None:
                proxy.set_state(rssi)

    async def _poll_classic_forever(self) -> None:
        while True:
            await self.poll_classic()
            await asyncio.sleep(self.classic_poll_interval)

    async def start(self) -> None:
        """Hook discovery, start the watchdogs and power up the radio."""
        self.adapters.on_low_energy_discovery(self._on_discovery)
        self.adapters.start()
        opener = getattr(self.driver, "open", None)
        if opener is not None:
            opener()
        if self.classic_addresses:
            self._classic_task = asyncio.get_running_loop().create_task(
                self._poll_classic_forever(), name="classic-poll"
            )

    async def stop(self) -> None:
        """Stop polling and scanning and release the radio."""
        if self._classic_task is not None:
            self._classic_task.cancel()
            try:
                await self._classic_task
            except asyncio.CancelledError:
                pass
            self._classic_task = None
        self.adapters.shutdown()
        await self.adapters.stop()
        closer = getattr(self.driver, "close", None)
        if closer is not None:
            await closer()

    def summary_rows(self) -> List[Dict[str, Any]]:
        rows = []
        for proxy in self.registry.get_all():
            state = proxy.state
            rows.append(
                {
                    "Entity": proxy.id,
                    "Name": proxy.name,
                    "Address": proxy.attributes.get("address"),
                    "RSSI": round(state, 1) if isinstance(state, float) else state,
                }
            )
        rows.sort(key=lambda r: r["RSSI"] if r["RSSI"] is not None else -999, reverse=True)
        return rows

    def show_summary(self) -> str:
        """Print and return a table of tracked devices, strongest signal first."""
        table = tabulate(self.summary_rows(), headers="keys", missingval="N/A", tablefmt="fancy_grid")
        print(table)
        return table


__all__ = ["PresenceNode"]
