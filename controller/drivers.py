"""
reef-pi - Peripheral Drivers
=============================
Thin drivers for the three peripheral families the controller owns:

    GPIODriver     -> relay outlets on the Pi header (lgpio)
    PCA9685Driver  -> 16 channel PWM over I2C (smbus2)
    MCP3008Driver  -> 8 channel 10-bit ADC over SPI (lgpio)

Each driver has open()/close(). Hardware libraries are imported inside
open(), so a board without them fails at controller start, not at import.

The Simulated* drivers keep all state in memory. They are used in dev mode
(-dev, DEV_MODE=1 or dev_mode: true) and by the test suite.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


class DriverError(Exception):
    """A peripheral could not be opened or addressed."""


# =============================================================================
# GPIO (relays)
# =============================================================================

class GPIODriver:
    """Digital outputs through an lgpio chip handle."""

    def __init__(self, chip: int = 0):
        self.chip = chip
        self._handle: Any = None
        self._lgpio: Any = None

    def open(self) -> None:
        try:
            import lgpio
        except ImportError as e:
            raise DriverError("lgpio is not installed, GPIO unavailable") from e
        try:
            self._handle = lgpio.gpiochip_open(self.chip)
        except Exception as e:
            raise DriverError(f"Failed to open gpiochip{self.chip}: {e}") from e
        self._lgpio = lgpio
        logger.info("GPIO chip %d opened", self.chip)

    def claim_output(self, pin: int, level: int) -> None:
        try:
            self._lgpio.gpio_claim_output(self._handle, pin, level)
        except Exception as e:
            raise DriverError(f"Failed to claim GPIO {pin}: {e}") from e

    def write(self, pin: int, level: int) -> None:
        try:
            self._lgpio.gpio_write(self._handle, pin, level)
        except Exception as e:
            raise DriverError(f"GPIO write failed for pin {pin}: {e}") from e

    def close(self) -> None:
        if self._handle is None:
            return
        try:
            self._lgpio.gpiochip_close(self._handle)
        except Exception as e:
            raise DriverError(f"Failed to close gpiochip{self.chip}: {e}") from e
        finally:
            self._handle = None
        logger.info("GPIO chip %d closed", self.chip)


# =============================================================================
# PWM (PCA9685)
# =============================================================================

class PCA9685Driver:
    """PCA9685 PWM controller on an I2C bus."""

    CHANNELS = 16
    MODE1, PRESCALE, LED0_ON_L = 0x00, 0xFE, 0x06
    OSCILLATOR_HZ = 25_000_000

    def __init__(self, bus: int = 1, address: int = 0x40, frequency: int = 1500):
        self.bus_id, self.address, self.frequency = bus, address, frequency
        self._bus: Any = None

    def open(self) -> None:
        try:
            from smbus2 import SMBus
        except ImportError as e:
            raise DriverError("smbus2 is not installed, PWM unavailable") from e
        try:
            self._bus = SMBus(self.bus_id)
            prescale = round(self.OSCILLATOR_HZ / (4096 * self.frequency)) - 1
            # Prescale can only be written while the oscillator sleeps
            self._bus.write_byte_data(self.address, self.MODE1, 0x10)
            self._bus.write_byte_data(self.address, self.PRESCALE, prescale)
            self._bus.write_byte_data(self.address, self.MODE1, 0x00)
            time.sleep(0.005)
            self._bus.write_byte_data(self.address, self.MODE1, 0xA0)
        except OSError as e:
            self._close_bus()
            raise DriverError(
                f"PCA9685 not reachable at 0x{self.address:02x} on i2c-{self.bus_id}: {e}"
            ) from e
        logger.info("PCA9685 opened at 0x%02x, %d Hz", self.address, self.frequency)

    def set_duty(self, channel: int, duty: float) -> None:
        """Set a channel duty cycle in percent (0-100)."""
        off = int(round(4095 * duty / 100.0))
        register = self.LED0_ON_L + 4 * channel
        try:
            self._bus.write_i2c_block_data(
                self.address, register, [0, 0, off & 0xFF, off >> 8]
            )
        except OSError as e:
            raise DriverError(f"PWM write failed for channel {channel}: {e}") from e

    def close(self) -> None:
        if self._bus is None:
            return
        try:
            for channel in range(self.CHANNELS):
                self.set_duty(channel, 0)
        finally:
            self._close_bus()
        logger.info("PCA9685 closed")

    def _close_bus(self) -> None:
        if self._bus is not None:
            self._bus.close()
            self._bus = None


# =============================================================================
# ADC (MCP3008)
# =============================================================================

class MCP3008Driver:
    """MCP3008 analog-to-digital converter on an SPI channel."""

    CHANNELS = 8

    def __init__(self, device: int = 0, channel: int = 0, speed: int = 1_000_000):
        self.device, self.channel, self.speed = device, channel, speed
        self._handle: Any = None
        self._lgpio: Any = None

    def open(self) -> None:
        try:
            import lgpio
        except ImportError as e:
            raise DriverError("lgpio is not installed, ADC unavailable") from e
        try:
            self._handle = lgpio.spi_open(self.device, self.channel, self.speed, 0)
        except Exception as e:
            raise DriverError(
                f"Failed to open SPI {self.device}.{self.channel}: {e}"
            ) from e
        self._lgpio = lgpio
        logger.info("MCP3008 opened on SPI %d.%d", self.device, self.channel)

    def read(self, channel: int) -> int:
        """Single-ended conversion, returns 0-1023."""
        try:
            count, data = self._lgpio.spi_xfer(
                self._handle, [1, (8 + channel) << 4, 0]
            )
        except Exception as e:
            raise DriverError(f"ADC read failed for channel {channel}: {e}") from e
        if count != 3:
            raise DriverError(f"ADC short read on channel {channel}: {count} bytes")
        return ((data[1] & 0x03) << 8) | data[2]

    def close(self) -> None:
        if self._handle is None:
            return
        try:
            self._lgpio.spi_close(self._handle)
        except Exception as e:
            raise DriverError(f"Failed to close SPI: {e}") from e
        finally:
            self._handle = None
        logger.info("MCP3008 closed")


# =============================================================================
# Simulated drivers
# =============================================================================

class _Simulated:
    """Shared open/close bookkeeping for the in-memory drivers."""

    name = "device"

    def __init__(self, fail_open: bool = False, fail_close: bool = False):
        self.fail_open, self.fail_close = fail_open, fail_close
        self.is_open = False
        self.opened = 0
        self.closed = 0

    def open(self) -> None:
        if self.fail_open:
            raise DriverError(f"simulated {self.name} unavailable")
        self.is_open = True
        self.opened += 1
        logger.warning("SIMULATION MODE: %s opened", self.name)

    def close(self) -> None:
        self.closed += 1
        self.is_open = False
        if self.fail_close:
            raise DriverError(f"simulated {self.name} failed to close")

    def _check_open(self) -> None:
        if not self.is_open:
            raise DriverError(f"simulated {self.name} is not open")


class SimulatedGPIO(_Simulated):
    name = "gpio"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.levels: dict[int, int] = {}

    def claim_output(self, pin: int, level: int) -> None:
        self._check_open()
        self.levels[pin] = level

    def write(self, pin: int, level: int) -> None:
        self._check_open()
        if pin not in self.levels:
            raise DriverError(f"GPIO {pin} not claimed")
        self.levels[pin] = level


class SimulatedPWM(_Simulated):
    name = "pwm"
    CHANNELS = PCA9685Driver.CHANNELS

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.duties: dict[int, float] = {}

    def set_duty(self, channel: int, duty: float) -> None:
        self._check_open()
        self.duties[channel] = duty


class SimulatedADC(_Simulated):
    name = "adc"
    CHANNELS = MCP3008Driver.CHANNELS

    def __init__(self, readings: dict[int, int] | None = None, **kwargs):
        super().__init__(**kwargs)
        self.readings = dict(readings or {})

    def read(self, channel: int) -> int:
        self._check_open()
        return self.readings.get(channel, 0)


# =============================================================================
# Driver bundle
# =============================================================================

@dataclass
class Drivers:
    """The set of drivers one controller owns."""
    gpio: Any
    pwm: Any
    adc: Any


def build_drivers(dev_mode: bool = False) -> Drivers:
    """Create real drivers, or simulated ones in dev mode."""
    if dev_mode:
        logger.warning("Dev mode enabled - using simulated drivers")
        return Drivers(gpio=SimulatedGPIO(), pwm=SimulatedPWM(), adc=SimulatedADC())
    return Drivers(gpio=GPIODriver(), pwm=PCA9685Driver(), adc=MCP3008Driver())
