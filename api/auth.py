"""
reef-pi - API Authentication
=============================
One admin password guards the hardware routes.

<auth.data_dir>/auth.json holds the bcrypt hash of the password and the key
used to sign bearer tokens. Until that file has a hash the API stays open so
the first client can call POST /api/auth/setup. With -no-auth the daemon
never creates an AuthManager and every route is open.
"""

import os
import json
import bcrypt
from datetime import datetime, timedelta, timezone
from jose import jwt, JWTError
from fastapi import HTTPException, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials


JWT_ALGORITHM = "HS256"
JWT_EXPIRATION_HOURS = 24
MIN_PASSWORD_LENGTH = 4

bearer = HTTPBearer(auto_error=False)


class AuthManager:
    """Admin password and bearer tokens for one reef-pi data directory."""

    def __init__(self, data_dir: str, token_hours: int = JWT_EXPIRATION_HOURS):
        # OSError when data_dir cannot be created; setup_server turns it into a bind failure
        os.makedirs(data_dir, exist_ok=True)
        self.auth_file = os.path.join(data_dir, "auth.json")
        self.token_hours = token_hours

    def is_configured(self) -> bool:
        return self._credentials() is not None

    def setup_password(self, password: str, force: bool = False) -> str:
        """
        Store a new admin password and return a token for it.

        A password change (force=True) keeps the signing key, so tokens
        handed out before the change remain usable until they expire.

        Raises:
            RuntimeError: A password exists and force is False.
            ValueError:   The password is shorter than MIN_PASSWORD_LENGTH.
        """
        current = self._credentials()
        if current is not None and not force:
            raise RuntimeError("Admin password is already set")
        if not password or len(password) < MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")

        signing_key = (current or {}).get("jwt_secret") or bcrypt.gensalt().decode("utf-8")
        with open(self.auth_file, "w", encoding="utf-8") as f:
            json.dump(
                {
                    "password_hash": bcrypt.hashpw(
                        password.encode("utf-8"), bcrypt.gensalt()
                    ).decode("utf-8"),
                    "jwt_secret": signing_key,
                    "created_at": datetime.now(timezone.utc).isoformat(),
                },
                f,
                indent=2,
            )
        return self._issue(signing_key)

    def verify_password(self, password: str) -> str | None:
        """Token for a correct password, None otherwise."""
        current = self._credentials()
        if current is None:
            return None
        if not bcrypt.checkpw(password.encode("utf-8"), current["password_hash"].encode("utf-8")):
            return None
        return self._issue(current["jwt_secret"])

    def verify_token(self, token: str) -> bool:
        current = self._credentials()
        if current is None:
            return False
        try:
            jwt.decode(token, current["jwt_secret"], algorithms=[JWT_ALGORITHM])
        except JWTError:
            return False
        return True

    def _issue(self, signing_key: str) -> str:
        issued = datetime.now(timezone.utc)
        claims = {
            "sub": "admin",
            "iat": issued,
            "exp": issued + timedelta(hours=self.token_hours),
        }
        return jwt.encode(claims, signing_key, algorithm=JWT_ALGORITHM)

    def _credentials(self) -> dict | None:
        """Contents of auth.json, or None when no usable password is stored."""
        try:
            with open(self.auth_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError):
            return None
        if not isinstance(data, dict) or not {"password_hash", "jwt_secret"} <= data.keys():
            return None
        return data


def require_auth(auth_manager: AuthManager | None):
    """Route dependency checking the bearer token. None disables the check."""

    async def _check(credentials: HTTPAuthorizationCredentials | None = Depends(bearer)):
        if auth_manager is None or not auth_manager.is_configured():
            return True
        if credentials is None:
            raise HTTPException(status_code=401, detail="Authentication required")
        if not auth_manager.verify_token(credentials.credentials):
            raise HTTPException(status_code=401, detail="Invalid or expired token")
        return True

    return _check
