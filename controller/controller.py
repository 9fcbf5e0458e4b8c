"""
reef-pi - Hardware Controller
==============================
Owns the relay outlets, PWM channels and ADC inputs for the lifetime of
the process.

The capabilities are fixed at construction from the command-line flags:
    -pwm   -> open the PCA9685 PWM driver
    -adc   -> open the MCP3008 ADC driver
    -high  -> relays are active-high (ON drives the pin high)

States:
    - "uninitialized" : Constructed, start() not called yet
    - "running"       : Peripherals open, handlers may use the controller
    - "stopped"       : stop() completed, peripherals released
    - "failed"        : start() raised, nothing is held

Usage:
    controller = Controller(Capabilities(pwm=True), drivers=build_drivers())
    controller.start()   # Raises ControllerInitError on failure
    controller.switch("O1", True)
    controller.stop()    # Raises ShutdownCleanupError if a driver misbehaved
"""

import logging
import threading
from dataclasses import dataclass, asdict
from typing import Any

from controller.drivers import Drivers, DriverError, build_drivers

logger = logging.getLogger(__name__)


# Outlet name -> BCM pin of the relay board.
DEFAULT_OUTLETS = {
    "O1": 4,
    "O2": 17,
    "O3": 27,
    "O4": 22,
    "O5": 5,
    "O6": 6,
    "O7": 13,
    "O8": 19,
}


class ControllerInitError(Exception):
    """Peripheral initialization failed; the controller is not running."""


class ShutdownCleanupError(Exception):
    """One or more peripherals failed to release during stop()."""


class CapabilityError(Exception):
    """The requested operation needs a capability that is disabled."""


@dataclass(frozen=True)
class Capabilities:
    """Hardware features enabled for this process."""
    pwm: bool = False
    adc: bool = False
    high_relay: bool = False


class Controller:
    """
    Lifecycle and access point for all peripherals.

    Attributes:
        capabilities: Immutable feature flags.
        drivers:      GPIO, PWM and ADC drivers owned by this controller.
        outlets_map:  Outlet name -> GPIO pin.
        state:        Current lifecycle state string.
    """

    def __init__(
        self,
        capabilities: Capabilities,
        drivers: Drivers | None = None,
        outlets: dict[str, int] | None = None,
    ):
        self.capabilities = capabilities
        self.drivers = drivers or build_drivers()
        self.outlets_map = dict(outlets or DEFAULT_OUTLETS)
        self.state: str = "uninitialized"

        self._outlet_states = {name: False for name in self.outlets_map}
        self._pwm_duties: dict[int, float] = {}
        self._opened: list[tuple[str, Any]] = []
        self._lock = threading.RLock()

    @property
    def is_running(self) -> bool:
        return self.state == "running"

    def start(self) -> None:
        """
        Open every peripheral implied by the capabilities.

        Raises:
            RuntimeError:        start() was already called.
            ControllerInitError: A peripheral failed; all opened ones are closed.
        """
        with self._lock:
            if self.state != "uninitialized":
                raise RuntimeError(f"Controller cannot start from state '{self.state}'")

            logger.info("Starting controller with %s", self.capabilities)
            try:
                self._open("gpio", self.drivers.gpio)
                for name, pin in self.outlets_map.items():
                    self.drivers.gpio.claim_output(pin, self._level(False))
                    logger.debug("Outlet %s claimed on GPIO %d", name, pin)
                if self.capabilities.pwm:
                    self._open("pwm", self.drivers.pwm)
                if self.capabilities.adc:
                    self._open("adc", self.drivers.adc)
            except DriverError as e:
                self._release_after_failure()
                self.state = "failed"
                raise ControllerInitError(f"Failed to initialize controller: {e}") from e

            self.state = "running"
            logger.info("Controller running")

    def stop(self) -> None:
        """
        Switch everything off and release the peripherals.

        Every driver is closed even if an earlier one fails.

        Raises:
            RuntimeError:         The controller is not running.
            ShutdownCleanupError: Some peripherals did not release cleanly.
        """
        with self._lock:
            if self.state != "running":
                raise RuntimeError(f"Controller cannot stop from state '{self.state}'")

            logger.info("Stopping controller")
            errors = []
            for name, pin in self.outlets_map.items():
                try:
                    self.drivers.gpio.write(pin, self._level(False))
                    self._outlet_states[name] = False
                except DriverError as e:
                    errors.append(f"outlet {name}: {e}")
            for channel in list(self._pwm_duties):
                try:
                    self.drivers.pwm.set_duty(channel, 0)
                    self._pwm_duties[channel] = 0.0
                except DriverError as e:
                    errors.append(f"pwm {channel}: {e}")

            while self._opened:
                name, driver = self._opened.pop()
                try:
                    driver.close()
                except DriverError as e:
                    errors.append(f"{name}: {e}")

            self.state = "stopped"
            if errors:
                raise ShutdownCleanupError("; ".join(errors))
            logger.info("Controller stopped")

    # -- Outlets ---------------------------------------------------------------

    def outlets(self) -> list[dict]:
        with self._lock:
            self._require_running()
            return [
                {"id": name, "pin": pin, "on": self._outlet_states[name]}
                for name, pin in self.outlets_map.items()
            ]

    def switch(self, outlet_id: str, on: bool) -> dict:
        """
        Switch a relay outlet on or off.

        Raises:
            KeyError: Unknown outlet.
        """
        with self._lock:
            self._require_running()
            if outlet_id not in self.outlets_map:
                raise KeyError(f"Unknown outlet: {outlet_id}")
            pin = self.outlets_map[outlet_id]
            self.drivers.gpio.write(pin, self._level(on))
            self._outlet_states[outlet_id] = on
            logger.info("Outlet %s switched %s", outlet_id, "on" if on else "off")
            return {"id": outlet_id, "pin": pin, "on": on}

    def _level(self, on: bool) -> int:
        """GPIO level that puts a relay in the requested state."""
        if self.capabilities.high_relay:
            return 1 if on else 0
        return 0 if on else 1

    # -- PWM -------------------------------------------------------------------

    def pwm_channels(self) -> list[dict]:
        with self._lock:
            self._require_running()
            self._require("pwm")
            return [
                {"channel": channel, "duty": self._pwm_duties.get(channel, 0.0)}
                for channel in range(self.drivers.pwm.CHANNELS)
            ]

    def set_pwm(self, channel: int, duty: float) -> dict:
        """
        Set a PWM channel duty cycle (0-100%).

        Raises:
            CapabilityError: PWM is not enabled.
            ValueError:      Channel or duty out of range.
        """
        with self._lock:
            self._require_running()
            self._require("pwm")
            if not 0 <= channel < self.drivers.pwm.CHANNELS:
                raise ValueError(f"Invalid PWM channel: {channel}")
            if not 0 <= duty <= 100:
                raise ValueError(f"Duty cycle must be 0-100%, got {duty}")
            self.drivers.pwm.set_duty(channel, duty)
            self._pwm_duties[channel] = duty
            logger.debug("PWM channel %d = %s%%", channel, duty)
            return {"channel": channel, "duty": duty}

    # -- ADC -------------------------------------------------------------------

    def read_adc(self, channel: int) -> int:
        """
        Read a raw ADC value (0-1023).

        Raises:
            CapabilityError: ADC is not enabled.
            ValueError:      Channel out of range.
        """
        with self._lock:
            self._require_running()
            self._require("adc")
            if not 0 <= channel < self.drivers.adc.CHANNELS:
                raise ValueError(f"Invalid ADC channel: {channel}")
            return self.drivers.adc.read(channel)

    # -- Status ----------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        with self._lock:
            return {
                "state": self.state,
                "capabilities": asdict(self.capabilities),
                "outlets": dict(self._outlet_states),
                "pwm": dict(self._pwm_duties),
            }

    # -- Internal helpers ------------------------------------------------------

    def _open(self, name: str, driver: Any) -> None:
        driver.open()
        self._opened.append((name, driver))

    def _release_after_failure(self) -> None:
        while self._opened:
            name, driver = self._opened.pop()
            try:
                driver.close()
            except DriverError as e:
                logger.error("Failed to release %s after init failure: %s", name, e)

    def _require_running(self) -> None:
        if self.state != "running":
            raise RuntimeError(f"Controller is not running (state '{self.state}')")

    def _require(self, capability: str) -> None:
        if not getattr(self.capabilities, capability):
            raise CapabilityError(f"{capability.upper()} support is not enabled")
