#!/usr/bin/env python3
"""
reef-pi - Entry Point
======================
Starts the reef-pi controller daemon.

Usage:
    python app.py                              # Defaults, port 8080, auth on
    python app.py -config /etc/reef-pi.yaml    # With a configuration file
    python app.py -port 9090 -pwm -no-auth     # PWM enabled, auth disabled
    python app.py -version                     # Print version and exit

Startup sequence (any failure exits with status 1):
    1. Resolve configuration (file merged over defaults, then CLI overrides)
    2. Construct the hardware controller from -pwm/-adc/-high and start it
    3. Bind the HTTP service to the running controller
    4. Launch the HTTP listener on a background thread
    5. Wait for SIGINT/SIGTERM, stop the listener, stop the controller
"""

import os
import sys
import signal
import logging
import argparse
import threading
from typing import Any, Callable

from dotenv import load_dotenv

from api import __version__
from api.config import ConfigError, ConfigManager, apply_overrides, is_truthy, resolve_config
from api.main import ServiceBindError, setup_server
from api.manager import Listener
from controller import (
    Capabilities,
    Controller,
    ControllerInitError,
    ShutdownCleanupError,
    build_drivers,
)

logger = logging.getLogger("reef-pi")

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def build_parser() -> argparse.ArgumentParser:
    """Command-line flags. Single-dash long options match the documented usage."""
    parser = argparse.ArgumentParser(
        prog="reef-pi",
        description="reef-pi - Reef tank controller daemon",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        allow_abbrev=False,
    )
    parser.add_argument(
        "-config", "--config", default="",
        help="Configuration file path",
    )
    parser.add_argument(
        "-port", "--port", type=int, default=None,
        help="Listening port (default 8080, overrides the config file)",
    )
    parser.add_argument(
        "-no-auth", "--no-auth", dest="no_auth", action="store_true",
        help="Disable authentication",
    )
    parser.add_argument(
        "-pwm", "--pwm", action="store_true",
        help="Enable pulse width modulation using PCA9685",
    )
    parser.add_argument(
        "-adc", "--adc", action="store_true",
        help="Enable analog to digital converter using MCP3008",
    )
    parser.add_argument(
        "-high", "--high", action="store_true",
        help="Relays are active-high (ON drives the GPIO high)",
    )
    parser.add_argument(
        "-dev", "--dev", action="store_true",
        help="Use simulated drivers instead of real hardware",
    )
    parser.add_argument(
        "-log-level", "--log-level", dest="log_level", default="info",
        choices=["debug", "info", "warning", "error", "critical"],
        help="Logging level (default info)",
    )
    parser.add_argument(
        "-version", "--version", action="store_true",
        help="Print version information",
    )
    return parser


def default_controller_factory(capabilities: Capabilities, dev_mode: bool) -> Controller:
    return Controller(capabilities, drivers=build_drivers(dev_mode))


class Supervisor:
    """
    Drives the daemon from configuration to shutdown.

    States:
        init -> config_loaded -> controller_started -> service_bound
             -> listening -> shutting_down -> terminated

    Every startup failure is fatal: run() logs it and returns 1 without
    entering the next state. The listener is only launched after the
    controller has started.

    The resolver, controller factory, binder and listener factory are
    injectable.
    """

    def __init__(
        self,
        args: argparse.Namespace,
        shutdown_event: threading.Event | None = None,
        resolver: Callable[[str], dict] = resolve_config,
        controller_factory: Callable[[Capabilities, bool], Any] = default_controller_factory,
        binder: Callable[..., Any] = setup_server,
        listener_factory: Callable[..., Any] = Listener,
    ):
        self.args = args
        self.shutdown_event = shutdown_event or threading.Event()
        self.resolver = resolver
        self.controller_factory = controller_factory
        self.binder = binder
        self.listener_factory = listener_factory

        self.state: str = "init"
        self.config: dict | None = None
        self.capabilities: Capabilities | None = None
        self.controller: Any = None
        self.app: Any = None
        self.listener: Any = None

    def run(self) -> int:
        """Run until interrupted. Returns the process exit status."""
        args = self.args

        # -- Resolve configuration ---------------------------------------------
        try:
            config = self.resolver(args.config)
            config = apply_overrides(config, port=args.port, no_auth=args.no_auth)
        except ConfigError as e:
            logger.critical("Failed to parse config file: %s", e)
            return 1
        config["dev_mode"] = (
            args.dev
            or is_truthy(config.get("dev_mode"))
            or is_truthy(os.environ.get("DEV_MODE", ""))
        )
        self.config = config
        self.state = "config_loaded"

        # -- Start the hardware controller -------------------------------------
        self.capabilities = Capabilities(pwm=args.pwm, adc=args.adc, high_relay=args.high)
        try:
            controller = self.controller_factory(self.capabilities, config["dev_mode"])
            controller.start()
        except ControllerInitError as e:
            logger.critical("Failed to initialize controller. ERROR: %s", e)
            return 1
        self.controller = controller
        self.state = "controller_started"

        # -- Bind the HTTP service ---------------------------------------------
        try:
            self.app = self.binder(
                config,
                controller,
                config["auth"]["enabled"],
                config_manager=ConfigManager(args.config),
            )
        except ServiceBindError as e:
            logger.critical("Failed to set up server. ERROR: %s", e)
            self._stop_controller()
            return 1
        except Exception:
            logger.exception("Unexpected error while setting up server")
            self._stop_controller()
            return 1
        self.state = "service_bound"

        # -- Launch the listener -----------------------------------------------
        self.listener = self.listener_factory(
            self.app,
            host=config["web"]["host"],
            port=config["web"]["port"],
            log_level=args.log_level,
        )
        self.listener.start()
        self.state = "listening"
        _print_banner(config, self.capabilities)

        # -- Wait for the interrupt --------------------------------------------
        self.shutdown_event.wait()
        self.state = "shutting_down"
        logger.info("Shutting down...")

        self.listener.stop()
        self._stop_controller()
        self.state = "terminated"
        logger.info("Shutdown complete")
        return 0

    def _stop_controller(self) -> None:
        """Best-effort cleanup: failures are logged, never raised."""
        try:
            self.controller.stop()
        except ShutdownCleanupError as e:
            logger.error("Controller cleanup failed: %s", e)


def install_signal_handlers(shutdown_event: threading.Event) -> None:
    """SIGINT and SIGTERM set the shutdown event. Must run on the main thread."""

    def _handler(signum, frame):
        if shutdown_event.is_set():
            logger.warning("Already shutting down, ignoring %s", signal.Signals(signum).name)
            return
        logger.info("Received %s", signal.Signals(signum).name)
        shutdown_event.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def _print_banner(config: dict, capabilities: Capabilities) -> None:
    host, port = config["web"]["host"], config["web"]["port"]
    print()
    print(f"  reef-pi {__version__}")
    print(f"  API     : http://{host}:{port}/api")
    print(f"  Auth    : {'enabled' if config['auth']['enabled'] else 'DISABLED'}")
    print(
        f"  Hardware: pwm={capabilities.pwm} adc={capabilities.adc} "
        f"high_relay={capabilities.high_relay}"
        f"{' (simulated)' if config['dev_mode'] else ''}"
    )
    print()


def main(argv: list[str] | None = None) -> int:
    """Parse arguments, then hand over to the Supervisor."""
    args = build_parser().parse_args(argv)

    if args.version:
        print(__version__)
        return 0

    logging.basicConfig(level=args.log_level.upper(), format=LOG_FORMAT)

    # -- Load environment variables from .env ----------------------------------
    env_path = os.path.join(os.getcwd(), ".env")
    if os.path.exists(env_path):
        load_dotenv(env_path)

    shutdown_event = threading.Event()
    install_signal_handlers(shutdown_event)
    return Supervisor(args, shutdown_event).run()


if __name__ == "__main__":
    sys.exit(main())
