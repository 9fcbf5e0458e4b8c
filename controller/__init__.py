"""
reef-pi - Controller Package
===============================
The hardware abstraction layer of the reef-pi daemon.

This package contains:
    - controller.py : Controller lifecycle (start/stop) and peripheral access
    - drivers.py    : GPIO relay, PCA9685 PWM and MCP3008 ADC drivers,
                      plus the simulated drivers used in dev mode

Usage:
    from controller import Capabilities, Controller

    controller = Controller(Capabilities(pwm=True, adc=False, high_relay=False))
    controller.start()
"""

from controller.controller import (
    Capabilities,
    CapabilityError,
    Controller,
    ControllerInitError,
    ShutdownCleanupError,
)
from controller.drivers import Drivers, DriverError, build_drivers

__all__ = [
    "Capabilities",
    "CapabilityError",
    "Controller",
    "ControllerInitError",
    "DriverError",
    "Drivers",
    "ShutdownCleanupError",
    "build_drivers",
]
