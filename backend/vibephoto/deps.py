"""FastAPI dependency functions shared across routers."""

import hashlib
import hmac
import logging

from fastapi import Depends, Header, HTTPException, Request

from vibephoto.config import settings
from vibephoto.models.user import User
from vibephoto.wiring import Services

logger = logging.getLogger(__name__)


# ── Service container ─────────────────────────────────────────────────────────


def get_services(request: Request) -> Services:
    """Return the service graph built during application startup."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return services


# ── Session-cookie auth (web UI) ──────────────────────────────────────────────


def sign_session(user_id: int) -> str:
    """Create an HMAC-signed session cookie value for ``user_id``."""
    sig = hmac.new(
        settings.session_secret.encode(), str(user_id).encode(), hashlib.sha256
    ).hexdigest()
    return f"{user_id}:{sig}"


def _verify_session(cookie: str) -> int | None:
    """Verify HMAC-signed session cookie and return the user id, or None."""
    if ":" not in cookie:
        return None
    user_id, sig = cookie.rsplit(":", 1)
    expected = hmac.new(
        settings.session_secret.encode(), user_id.encode(), hashlib.sha256
    ).hexdigest()
    if not hmac.compare_digest(sig, expected):
        return None
    try:
        return int(user_id)
    except ValueError:
        return None


def get_current_user(
    request: Request, services: Services = Depends(get_services)
) -> User:
    """FastAPI dependency: return the authenticated User or raise 401.

    Reads the ``session`` cookie, verifies the HMAC signature, and fetches
    the User from the database.
    """
    session = request.cookies.get("session")
    if not session:
        raise HTTPException(status_code=401, detail="Not authenticated")

    user_id = _verify_session(session)
    if user_id is None:
        raise HTTPException(status_code=401, detail="Invalid session")

    db = services.session_factory()
    try:
        user = db.get(User, user_id)
        if user is not None:
            db.expunge(user)
    finally:
        db.close()

    if not user:
        raise HTTPException(status_code=401, detail="User not found")

    return user


# ── Internal key (scheduler / operator endpoints) ─────────────────────────────


def require_internal_key(x_internal_key: str = Header(default="")) -> None:
    """Reject callers that do not present the shared ``X-Internal-Key``.

    An unset ``internal_api_key`` disables the internal endpoints entirely.
    """
    expected = settings.internal_api_key
    if not expected or not hmac.compare_digest(x_internal_key, expected):
        logger.warning("Rejected internal call with missing or wrong key")
        raise HTTPException(status_code=401, detail="Invalid internal key")
