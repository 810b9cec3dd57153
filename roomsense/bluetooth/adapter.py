"""Arbitration of Bluetooth adapters between LE scanning and exclusive inquiries."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional, Set

from prometheus_client import Counter

from roomsense.bluetooth import util
from roomsense.bluetooth.commands import CommandRunner, ShellCommandRunner
from roomsense.bluetooth.config import (
    COMMAND_RESET,
    ERROR_ALREADY_LOCKED,
    ERROR_ALREADY_RESETTING,
    ERROR_LOCK_RESETTING,
    IGNORED_DRIVER_WARNINGS,
    BluetoothConfig,
)
from roomsense.bluetooth.driver import POWERED_ON, Peripheral, RadioDriver
from roomsense.bluetooth.errors import (
    AdapterAlreadyResettingError,
    AdapterLockedError,
    AdapterResettingError,
    BluetoothErrorHandler,
)
from roomsense.bluetooth.state import AdapterState, AdapterStateStore
from roomsense.scheduling import LoopScheduler, Scheduler, TimerHandle

logger = logging.getLogger(__name__)

ADVERTISEMENTS_RECEIVED = Counter(
    "bluetooth_le_advertisements_received",
    "Number of Bluetooth Low Energy advertisements received",
)


class AdapterManager:
    """
    Owns the adapter state machine.

    Every adapter is either idle (`inactive`), continuously scanning for LE
    advertisements (`scanning`, LE adapter only), held exclusively by one
    connection or inquiry (`inquiry`), or being reset (`resetting`). Locking
    is non-blocking: a second locker fails immediately instead of queueing.

    Two watchdogs run while the manager is started: one force-unlocks
    adapters whose lock outlived `INQUIRY_LOCK_TIMEOUT`, the other resets
    the LE adapter when no advertisement was seen for
    `SCAN_NO_PERIPHERAL_TIMEOUT`.

    Parameters:
        driver (RadioDriver): Radio stack driving the LE adapter.
        command_runner (CommandRunner | None): Runs `hciconfig` resets.
        low_energy_adapter_id (int): HCI index used for LE scanning.
        scheduler (Scheduler | None): Clock and timer source.
        metrics: Object with `inc()`, counted once per advertisement.
    """

    def __init__(
        self,
        driver: RadioDriver,
        command_runner: Optional[CommandRunner] = None,
        *,
        low_energy_adapter_id: int = 0,
        scheduler: Optional[Scheduler] = None,
        metrics: Any = None,
    ):
        self.driver = driver
        self.command_runner = command_runner or ShellCommandRunner()
        self.scheduler = scheduler or LoopScheduler()
        self.metrics = metrics if metrics is not None else ADVERTISEMENTS_RECEIVED
        self.adapters = AdapterStateStore(self.scheduler)
        self._configured_le_adapter_id = low_energy_adapter_id
        self._low_energy_adapter_id: Optional[int] = None
        self._last_discovery: Optional[float] = None
        self._recovery_timer: Optional[TimerHandle] = None
        self._recovery_first_armed: Optional[float] = None
        self._watchdogs: List["asyncio.Task[None]"] = []
        self._recoveries: Set["asyncio.Task[None]"] = set()

    @property
    def low_energy_adapter_id(self) -> Optional[int]:
        """HCI index of the LE adapter, or None until LE discovery was set up."""
        return self._low_energy_adapter_id

    @property
    def time_since_last_discovery(self) -> Optional[float]:
        """
        Seconds since the last LE advertisement or since the current scan state began, whichever is later.

        Returns None when LE is not set up or the adapter is neither scanning nor inactive.
        """
        adapter_id = self._low_energy_adapter_id
        if adapter_id is None:
            return None
        record = self.adapters.get(adapter_id)
        if record is None or record.state not in (AdapterState.INACTIVE, AdapterState.SCANNING):
            return None
        reference = record.started_at
        if self._last_discovery is not None:
            reference = max(reference, self._last_discovery)
        return self.scheduler.now() - reference

    # -- lifecycle -----------------------------------------------------

    def start(self) -> None:
        """Spawn the deadlock sweep and scanner watchdog on the running loop."""
        if self._watchdogs:
            return
        loop = asyncio.get_running_loop()
        self._watchdogs = [
            loop.create_task(
                self._run_periodic(BluetoothConfig.DEADLOCK_SWEEP_INTERVAL, self.unlock_deadlocked),
                name="adapter-deadlock-sweep",
            ),
            loop.create_task(
                self._run_periodic(BluetoothConfig.SCANNER_CHECK_INTERVAL, self.verify_scanner),
                name="adapter-scanner-watchdog",
            ),
        ]

    async def stop(self) -> None:
        """Cancel the watchdogs and any pending scan recovery."""
        tasks = self._watchdogs + list(self._recoveries)
        self._watchdogs = []
        self._recoveries.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._cancel_scan_recovery()

    def shutdown(self) -> None:
        """Stop LE scanning unless the LE adapter is in the middle of an inquiry."""
        adapter_id = self._low_energy_adapter_id
        if adapter_id is not None and self.adapters.get_state(adapter_id) != AdapterState.INQUIRY:
            self.driver.stop_scanning()

    async def _run_periodic(self, interval: float, job: Callable[[], Awaitable[None]]) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await job()
            except asyncio.CancelledError:
                raise
            except AdapterAlreadyResettingError as e:
                logger.debug("%s", e)
            except Exception:
                logger.exception("Periodic adapter job %s failed", getattr(job, "__name__", job))

    # -- locking -------------------------------------------------------

    def lock(self, adapter_id: int) -> None:
        """
        Lock an adapter for an exclusive inquiry.

        Raises:
            AdapterLockedError: The adapter is already locked.
            AdapterResettingError: The adapter is being reset.
        """
        logger.debug("Locking adapter %s", adapter_id)
        state = self.adapters.get_state(adapter_id)
        if state == AdapterState.INQUIRY:
            raise AdapterLockedError(adapter_id, ERROR_ALREADY_LOCKED.format(adapter_id))
        if state == AdapterState.RESETTING:
            raise AdapterResettingError(adapter_id, ERROR_LOCK_RESETTING.format(adapter_id))
        if state == AdapterState.SCANNING:
            logger.debug("Stopping scanning for BLE peripherals on adapter %s", adapter_id)
            self.driver.stop_scanning()
        self.adapters.set_state(adapter_id, AdapterState.INQUIRY)

    def unlock(self, adapter_id: int) -> None:
        """Release an inquiry lock; the LE adapter goes back to scanning when powered."""
        if self.adapters.get_state(adapter_id) != AdapterState.INQUIRY:
            return
        logger.debug("Unlocking adapter %s", adapter_id)
        self.adapters.set_state(adapter_id, AdapterState.INACTIVE)
        if adapter_id == self._low_energy_adapter_id:
            self._handle_adapter_state_change(self.driver.state)

    async def unlock_deadlocked(self) -> None:
        """Force-unlock every adapter that has been locked for too long."""
        cutoff = self.scheduler.now() - BluetoothConfig.INQUIRY_LOCK_TIMEOUT
        for adapter_id, record in self.adapters.items():
            if record.state == AdapterState.INQUIRY and record.started_at < cutoff:
                logger.info(
                    "Detected unusually long lock on Bluetooth adapter %s, force unlocking",
                    adapter_id,
                )
                self.unlock(adapter_id)

    # -- reset ---------------------------------------------------------

    async def reset(self, adapter_id: int) -> None:
        """
        Reset an HCI adapter.

        For the LE adapter scanning is stopped first, the driver bindings are
        re-initialized after a settle delay and scanning resumes if powered.

        Raises:
            AdapterAlreadyResettingError: A reset of this adapter is in progress.
        """
        if self.adapters.get_state(adapter_id) == AdapterState.RESETTING:
            raise AdapterAlreadyResettingError(adapter_id, ERROR_ALREADY_RESETTING.format(adapter_id))

        logger.debug("Resetting HCI adapter %s", adapter_id)
        self.adapters.set_state(adapter_id, AdapterState.RESETTING)
        is_low_energy = adapter_id == self._low_energy_adapter_id

        if is_low_energy:
            self.driver.stop_scanning()

        try:
            await self.command_runner.run(
                COMMAND_RESET.format(adapter_id),
                timeout=BluetoothConfig.RESET_COMMAND_TIMEOUT,
            )
        except Exception as e:  # noqa: BLE001 - reset failures are reported, never raised
            logger.error("Failed to reset adapter %s: %s", adapter_id, e)

        if not is_low_energy:
            self.adapters.set_state(adapter_id, AdapterState.INACTIVE)
            return

        await util._sleep(BluetoothConfig.RESET_SETTLE_DELAY)
        if self.adapters.get_state(adapter_id) == AdapterState.RESETTING:
            self.adapters.set_state(adapter_id, AdapterState.INACTIVE)
        try:
            self.driver.reset_bindings()
            self._handle_adapter_state_change(self.driver.state)
        except Exception:
            logger.exception("Failed to reset low energy driver bindings")

    async def verify_scanner(self) -> None:
        """Reset the LE adapter if no advertisement arrived within the inactivity timeout."""
        elapsed = self.time_since_last_discovery
        if elapsed is not None and elapsed > BluetoothConfig.SCAN_NO_PERIPHERAL_TIMEOUT:
            logger.warning("Did not detect any low energy advertisements in a while, resetting")
            await self.reset(self._low_energy_adapter_id)

    # -- LE driver hooks -----------------------------------------------

    def on_low_energy_discovery(self, callback: Callable[[Peripheral], Any]) -> None:
        """Subscribe to LE advertisements, setting up the driver hooks on first use."""
        if self._low_energy_adapter_id is None:
            self._setup_low_energy()
        self.driver.on("discover", callback)

    def _setup_low_energy(self) -> None:
        adapter_id = self._configured_le_adapter_id
        self._low_energy_adapter_id = adapter_id
        self.adapters.set_state(adapter_id, AdapterState.INACTIVE)

        self.driver.on("state_change", self._handle_adapter_state_change)
        self.driver.on("discover", self._handle_discover)
        self.driver.on("scan_start", self._handle_scan_start)
        self.driver.on("scan_stop", self._handle_scan_stop)
        self.driver.on("warning", self._handle_warning)

    def _handle_adapter_state_change(self, state: str) -> None:
        adapter_id = self._low_energy_adapter_id
        logger.debug("Adapter %s went into state %s", adapter_id, state)
        current = self.adapters.get_state(adapter_id)
        if state == POWERED_ON:
            if current in (AdapterState.RESETTING, AdapterState.INACTIVE):
                logger.debug("Starting scanning for BLE peripherals on adapter %s", adapter_id)
                self.driver.start_scanning([], True)
        elif current == AdapterState.SCANNING:
            logger.debug("Adapter %s is set to inactive", adapter_id)
            self.adapters.set_state(adapter_id, AdapterState.INACTIVE)

    def _handle_scan_start(self) -> None:
        adapter_id = self._low_energy_adapter_id
        state = self.adapters.get_state(adapter_id)
        if state in (AdapterState.INQUIRY, AdapterState.RESETTING):
            logger.debug("Scan started on adapter %s while %s, stopping it", adapter_id, state.value)
            self.driver.stop_scanning()
            return
        self._mark_scanning()

    def _mark_scanning(self) -> None:
        self._cancel_scan_recovery()
        logger.debug("Started scanning for BLE peripherals on adapter %s", self._low_energy_adapter_id)
        self.adapters.set_state(self._low_energy_adapter_id, AdapterState.SCANNING)

    def _handle_scan_stop(self) -> None:
        logger.debug("Stopped scanning for BLE peripherals on adapter %s", self._low_energy_adapter_id)
        if self.adapters.get_state(self._low_energy_adapter_id) == AdapterState.SCANNING:
            self.adapters.set_state(self._low_energy_adapter_id, AdapterState.INACTIVE)
        self._arm_scan_recovery()

    def _handle_discover(self, _peripheral: Optional[Peripheral] = None) -> None:
        self._cancel_scan_recovery()
        now = self.scheduler.now()
        self._last_discovery = now
        BluetoothErrorHandler.safe_execute(self.metrics.inc, error_msg="Failed to count advertisement")
        record = self.adapters.get(self._low_energy_adapter_id)
        if record is None:
            return
        # Race heuristic, not an invariant: advertisements within the grace
        # period of a reset start are attributed to the scan being torn down.
        if record.state == AdapterState.INACTIVE or (
            record.state == AdapterState.RESETTING
            and record.started_at < now - BluetoothConfig.RESETTING_DISCOVERY_GRACE
        ):
            self._mark_scanning()

    def _handle_warning(self, message: str) -> None:
        if message in IGNORED_DRIVER_WARNINGS:
            return
        logger.warning("%s", message)

    # -- scan recovery -------------------------------------------------

    def _arm_scan_recovery(self) -> None:
        now = self.scheduler.now()
        if self._recovery_first_armed is None:
            self._recovery_first_armed = now
        if self._recovery_timer is not None:
            self._recovery_timer.cancel()
        deadline = min(
            now + BluetoothConfig.SCAN_RECOVERY_WAIT,
            self._recovery_first_armed + BluetoothConfig.SCAN_RECOVERY_MAX_WAIT,
        )
        self._recovery_timer = self.scheduler.call_later(deadline - now, self._fire_scan_recovery)

    def _cancel_scan_recovery(self) -> None:
        if self._recovery_timer is not None:
            self._recovery_timer.cancel()
        self._recovery_timer = None
        self._recovery_first_armed = None

    def _fire_scan_recovery(self) -> None:
        self._recovery_timer = None
        self._recovery_first_armed = None
        if self.adapters.get_state(self._low_energy_adapter_id) != AdapterState.SCANNING:
            return
        logger.debug("Trying to recover low energy scanner")
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._recover_scanner())
        self._recoveries.add(task)
        task.add_done_callback(self._recoveries.discard)

    async def _recover_scanner(self) -> None:
        try:
            await self.reset(self._low_energy_adapter_id)
        except AdapterAlreadyResettingError as e:
            logger.debug("%s", e)


__all__ = ["ADVERTISEMENTS_RECEIVED", "AdapterManager"]
