"""
reef-pi - REST API Routes
==========================
HTTP endpoints exposing the running controller.

Route groups:
    /api/auth/*          - Authentication (status, setup, login, password change)
    /api/info            - Version, capabilities and controller state
    /api/health          - Liveness probe
    /api/outlets         - Relay outlets (list / switch)
    /api/pwm             - PWM channels (list / set duty cycle)
    /api/adc/{channel}   - Raw analog readings
    /api/camera/config   - Camera settings (read / update)

All routes except /api/auth/* and /api/health require a valid JWT token
while authentication is enabled. See auth.py for details.
"""

from contextlib import contextmanager

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from api import __version__
from api.auth import AuthManager, require_auth
from api.config import ConfigManager, ConfigError, validate_camera
from controller import CapabilityError, Controller, DriverError


# =============================================================================
# Request/Response Models (Pydantic)
# =============================================================================

class SetupRequest(BaseModel):
    """First-time setup: set admin password."""
    password: str = Field(..., min_length=4, description="Admin password (min 4 chars)")

class LoginRequest(BaseModel):
    """Login with admin password."""
    password: str = Field(..., description="Admin password")

class PasswordChangeRequest(BaseModel):
    """Change the admin password."""
    current_password: str = Field(..., description="Current admin password")
    new_password: str = Field(..., min_length=4, description="New admin password")

class TokenResponse(BaseModel):
    """JWT token returned after successful auth."""
    token: str
    message: str = "success"

class StatusResponse(BaseModel):
    """Authentication status check."""
    enabled: bool = Field(description="Whether authentication is enforced")
    is_configured: bool = Field(description="Whether a password has been set")

class OutletRequest(BaseModel):
    """Switch a relay outlet."""
    on: bool

class PWMRequest(BaseModel):
    """Set a PWM channel duty cycle."""
    duty: float = Field(..., ge=0, le=100, description="Duty cycle in percent")

class CameraConfig(BaseModel):
    """Camera settings. Partial updates are merged into the current values."""
    enable: bool | None = None
    tick_interval: int | str | None = None
    capture_flags: str | None = None
    image_directory: str | None = None
    upload: bool | None = None


# =============================================================================
# Router Factory
# =============================================================================

def create_router(
    auth_manager: AuthManager | None,
    config_manager: ConfigManager,
    controller: Controller,
    config: dict,
) -> APIRouter:
    """
    Create and configure the API router with all endpoints.

    Args:
        auth_manager:   Password/JWT handling, or None when auth is disabled.
        config_manager: Reads/writes the configuration file.
        controller:     The running hardware controller.
        config:         Effective configuration; the camera section is
                        updated in place by PUT /api/camera/config.

    Returns:
        Configured APIRouter with all endpoints registered.
    """
    router = APIRouter(prefix="/api")

    # Shorthand for the auth dependency
    auth = Depends(require_auth(auth_manager))

    # =========================================================================
    # AUTH ROUTES - No authentication required
    # =========================================================================

    def _auth_manager() -> AuthManager:
        if auth_manager is None:
            raise HTTPException(status_code=404, detail="Authentication is disabled")
        return auth_manager

    @router.get("/auth/status", response_model=StatusResponse)
    async def auth_status():
        """Report whether auth is enforced and whether a password exists."""
        return StatusResponse(
            enabled=auth_manager is not None,
            is_configured=auth_manager is not None and auth_manager.is_configured(),
        )

    @router.post("/auth/setup", response_model=TokenResponse)
    async def setup(req: SetupRequest):
        """First-time setup: set admin password."""
        manager = _auth_manager()
        if manager.is_configured():
            raise HTTPException(status_code=400, detail="Already configured")

        try:
            token = manager.setup_password(req.password)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        return TokenResponse(token=token, message="Setup complete")

    @router.post("/auth/login", response_model=TokenResponse)
    async def login(req: LoginRequest):
        """Login with admin password. Returns a JWT token on success."""
        token = _auth_manager().verify_password(req.password)
        if not token:
            raise HTTPException(status_code=401, detail="Invalid password")
        return TokenResponse(token=token)

    @router.post("/auth/password", dependencies=[auth])
    async def change_password(req: PasswordChangeRequest):
        """Change the admin password. Returns a new JWT token."""
        manager = _auth_manager()
        if not manager.verify_password(req.current_password):
            raise HTTPException(status_code=401, detail="Current password is incorrect")

        try:
            token = manager.setup_password(req.new_password, force=True)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        return {"message": "Password changed successfully", "token": token}

    # =========================================================================
    # SYSTEM ROUTES
    # =========================================================================

    @router.get("/health")
    async def health():
        return {"status": "ok", "controller": controller.state}

    @router.get("/info", dependencies=[auth])
    async def info():
        """Version, capabilities and controller state."""
        return {
            "version": __version__,
            "auth": auth_manager is not None,
            "dev_mode": bool(config.get("dev_mode")),
            **controller.status(),
        }

    # =========================================================================
    # HARDWARE ROUTES - Requires authentication
    # Plain def handlers run in the threadpool; driver calls block.
    # =========================================================================

    @router.get("/outlets", dependencies=[auth])
    def list_outlets():
        with _hardware_errors():
            return controller.outlets()

    @router.post("/outlets/{outlet_id}", dependencies=[auth])
    def switch_outlet(outlet_id: str, req: OutletRequest):
        """Switch a relay outlet on or off."""
        with _hardware_errors():
            return controller.switch(outlet_id, req.on)

    @router.get("/pwm", dependencies=[auth])
    def list_pwm():
        with _hardware_errors():
            return controller.pwm_channels()

    @router.post("/pwm/{channel}", dependencies=[auth])
    def set_pwm(channel: int, req: PWMRequest):
        """Set a PWM channel duty cycle (requires -pwm)."""
        with _hardware_errors():
            return controller.set_pwm(channel, req.duty)

    @router.get("/adc/{channel}", dependencies=[auth])
    def read_adc(channel: int):
        """Read a raw 10-bit value from an ADC channel (requires -adc)."""
        with _hardware_errors():
            return {"channel": channel, "value": controller.read_adc(channel)}

    # =========================================================================
    # CAMERA ROUTES - Requires authentication
    # =========================================================================

    @router.get("/camera/config", dependencies=[auth])
    async def get_camera_config():
        return config["camera"]

    @router.put("/camera/config", dependencies=[auth])
    async def update_camera_config(req: CameraConfig):
        """
        Update camera settings. tick_interval must be a positive integer.
        Persisted to the configuration file when the daemon was started
        with -config.
        """
        updates = req.model_dump(exclude_none=True)
        if not updates:
            raise HTTPException(status_code=400, detail="No updates provided")

        try:
            camera = validate_camera({**config["camera"], **updates})
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        if camera["enable"] and not camera["image_directory"]:
            raise HTTPException(
                status_code=400, detail="Image directory is required when camera is enabled"
            )

        if config_manager.config_path:
            try:
                config_manager.update({"camera": {key: camera[key] for key in updates}})
            except (ConfigError, OSError) as e:
                raise HTTPException(status_code=500, detail=f"Failed to save config: {e}")

        config["camera"] = camera
        return camera

    return router


@contextmanager
def _hardware_errors():
    """Translate controller exceptions into HTTP errors."""
    try:
        yield
    except KeyError as e:
        raise HTTPException(status_code=404, detail=str(e.args[0] if e.args else e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except CapabilityError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except (DriverError, RuntimeError) as e:
        # Controller stopped or a peripheral stopped answering
        raise HTTPException(status_code=503, detail=str(e))
