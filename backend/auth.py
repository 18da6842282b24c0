"""
Authentication utilities.

Provides API key loading, the key and caller-identity dependencies,
the readiness check, and access to the process's AgentCore.
"""

import os
import secrets
from pathlib import Path

from fastapi import Request, HTTPException

from core.agent_core import AgentCore


_API_KEY_PATH = Path(__file__).parent / ".drive_api_key"


def _load_or_create_api_key() -> str:
    if _API_KEY_PATH.exists():
        return _API_KEY_PATH.read_text().strip()
    key = secrets.token_urlsafe(32)
    _API_KEY_PATH.write_text(key)
    _API_KEY_PATH.chmod(0o600)
    return key


DRIVE_API_KEY = os.environ.get("DRIVE_API_KEY") or _load_or_create_api_key()


def verify_api_key(request: Request):
    """Dependency that checks for a valid API key in the X-API-Key header."""
    key = request.headers.get("x-api-key")
    if not key or not secrets.compare_digest(key, DRIVE_API_KEY):
        raise HTTPException(status_code=401, detail="Invalid or missing API key")


def get_current_user(request: Request) -> str:
    """Dependency returning the caller's user id from the X-User-Id header.

    The API key authenticates the calling service; the user id names the
    drive owner the request acts for.
    """
    user_id = (request.headers.get("x-user-id") or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return user_id


def require_ready(request: Request):
    """Dependency that returns 503 if Agent core is still initializing."""
    core = request.app.state.agent_core
    if not core.ready:
        raise HTTPException(status_code=503, detail="Agent core is still initializing")


_app_ref = None


def set_app(app):
    """Called by main.py after app creation to avoid circular imports."""
    global _app_ref
    _app_ref = app


def get_core() -> AgentCore:
    """Return the AgentCore instance from app state."""
    return _app_ref.state.agent_core
