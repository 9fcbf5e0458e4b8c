"""
reef-pi - API Package
=====================
The configuration and HTTP layer of the reef-pi daemon.

This package provides:
- Configuration resolution (YAML file merged over defaults, CLI overrides)
- FastAPI application bound to the running hardware controller
- REST API endpoints for outlets, PWM, ADC and camera settings
- Authentication with a bcrypt password and JWT tokens
- The uvicorn listener running on a background thread

Architecture:
    config.py  -> Resolve and persist configuration
    auth.py    -> Password hashing, JWT tokens, route protection
    routes.py  -> REST API endpoint handlers
    main.py    -> setup_server(): wire handlers to the controller
    manager.py -> Listener: uvicorn server lifecycle on a daemon thread
"""

# Set at release time; printed by -version and reported by /api/info.
__version__ = "2.0.0"
