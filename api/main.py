"""
reef-pi - FastAPI Application
==============================
Binds the HTTP service to a running hardware controller.

Responsibilities:
    - Check the controller is running before any handler can reach it
    - Create the AuthManager when authentication is enabled
    - Reject conflicting configuration (camera, assets directory)
    - Create the FastAPI app with CORS and metadata
    - Register API routes and mount the optional UI assets directory

setup_server() does not listen. It returns the app so the caller owns the
server lifecycle (see manager.py).
"""

import copy
import logging
import os
from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles
from fastapi.middleware.cors import CORSMiddleware

from api import __version__
from api.auth import AuthManager
from api.config import ConfigManager, validate_camera
from api.routes import create_router
from controller import Controller

logger = logging.getLogger(__name__)


class ServiceBindError(Exception):
    """The HTTP service could not be wired to the controller."""


def setup_server(
    config: dict,
    controller: Controller,
    auth_enabled: bool,
    config_manager: ConfigManager | None = None,
) -> FastAPI:
    """
    Wire the API to the controller and return the application.

    Args:
        config:         Effective configuration (a private copy is kept).
        controller:     Hardware controller; must already be running.
        auth_enabled:   False when started with -no-auth.
        config_manager: Used to persist configuration changes. Defaults to a
                        manager without a file (changes stay in memory).

    Returns:
        Configured FastAPI application ready to run with uvicorn.

    Raises:
        ServiceBindError: Precondition violated or configuration conflicts.
    """
    if not controller.is_running:
        raise ServiceBindError(
            f"Controller must be running before binding (state '{controller.state}')"
        )

    config = copy.deepcopy(config)
    config_manager = config_manager or ConfigManager()

    # -- Validate configuration ------------------------------------------------
    try:
        config["camera"] = validate_camera(config.get("camera", {}))
    except ValueError as e:
        raise ServiceBindError(f"Invalid camera configuration: {e}") from e
    if config["camera"]["enable"] and not config["camera"]["image_directory"]:
        raise ServiceBindError("Camera is enabled but no image_directory is configured")

    assets_dir = config["web"].get("assets") or ""
    if assets_dir and not os.path.isdir(assets_dir):
        raise ServiceBindError(f"Assets directory does not exist: {assets_dir}")

    # -- Authentication --------------------------------------------------------
    auth_manager = None
    if auth_enabled:
        try:
            auth_manager = AuthManager(
                config["auth"]["data_dir"],
                token_hours=int(config["auth"].get("token_hours", 24)),
            )
        except (OSError, TypeError, ValueError) as e:
            raise ServiceBindError(f"Failed to set up authentication: {e}") from e
    else:
        logger.warning("Authentication disabled (-no-auth)")

    # -- Create FastAPI app ----------------------------------------------------
    app = FastAPI(
        title="reef-pi",
        description="Reef tank controller API",
        version=__version__,
        docs_url="/docs",
        redoc_url=None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -- Store collaborators on app state --------------------------------------
    app.state.config = config
    app.state.config_manager = config_manager
    app.state.auth_manager = auth_manager
    app.state.controller = controller

    # -- Register API routes ---------------------------------------------------
    app.include_router(create_router(
        auth_manager=auth_manager,
        config_manager=config_manager,
        controller=controller,
        config=config,
    ))

    if assets_dir:
        app.mount("/ui", StaticFiles(directory=assets_dir, html=True), name="ui")

    logger.info("Service bound (auth %s)", "enabled" if auth_enabled else "disabled")
    return app

