"""
Lab Reagent Stock Management
Authentication & Authorization Middleware.

Provides:
    - API key authentication via X-API-Key header for user-facing API routes
    - Role-based access control (RBAC) decorator
    - Constant-time bearer-secret check for machine callers (cron, export worker)

Security model:
    - /api/v1/* and the user-facing /api/export/* routes require a valid API key
      (except /api/v1/health)
    - The digest trigger and the export worker callbacks authenticate with
      their own bearer secrets and skip the API-key check
    - Operator endpoints (scheduler, notification history) require 'admin'

Configuration (app config or env vars):
    API_KEYS          — comma-separated list of "<key>:<role>[:<user_id>]"
                        e.g. "k1:admin:ops,k2:user:3f6c..."
                        role is admin|user; user_id defaults to the key's role
    API_AUTH_ENABLED  — set to "false" to disable auth (development only);
                        the caller id then comes from X-User-Id
"""

import functools
import hmac
import logging
import os
from typing import Optional

from flask import current_app, g, jsonify, request

logger = logging.getLogger(__name__)

# ── Roles ────────────────────────────────────────────────────────────────────

ROLES = {"admin", "user"}

# Role hierarchy: admin > user
ROLE_HIERARCHY = {
    "admin": {"admin", "user"},
    "user": {"user"},
}

DEV_USER_ID = "dev-user"

# Machine-to-machine routes with their own bearer secrets
_BEARER_PREFIXES = ("/api/alerts/", "/api/export/jobs/", "/api/export/download/")
_PUBLIC_PATHS = frozenset({"/api/v1/health", "/api/v1/health/ready"})


def _parse_api_keys() -> dict[str, tuple[str, str]]:
    """
    Parse API_KEYS into {key: (role, user_id)} mapping.

    Format: "key1:admin:ops,key2:user:42,key3"
    Keys without a role default to 'user'.
    """
    try:
        raw = current_app.config.get("API_KEYS") or os.getenv("API_KEYS", "")
    except RuntimeError:
        raw = os.getenv("API_KEYS", "")
    if not raw.strip():
        return {}

    keys = {}
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        key, _, rest = entry.partition(":")
        role, _, user_id = rest.partition(":")
        role = role.strip().lower() or "user"
        if role not in ROLES:
            logger.warning("Unknown role '%s' for API key, defaulting to 'user'", role)
            role = "user"
        keys[key.strip()] = (role, user_id.strip() or f"{role}-{key.strip()[:8]}")
    return keys


def _is_auth_enabled() -> bool:
    """Check whether authentication is enabled (env var or app config)."""
    env_val = os.getenv("API_AUTH_ENABLED", "")
    if env_val:
        return env_val.lower() not in ("false", "0", "no", "off")
    try:
        return str(current_app.config.get("API_AUTH_ENABLED", "true")).lower() not in (
            "false", "0", "no", "off")
    except RuntimeError:
        # Outside app context
        return True


def _get_api_key_from_request() -> Optional[str]:
    return request.headers.get("X-API-Key", "").strip() or None


def bearer_token_matches(expected: Optional[str]) -> bool:
    """Compare the request's bearer token with ``expected`` in constant time.

    An unset secret never matches.
    """
    if not expected:
        return False
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return False
    return hmac.compare_digest(token.strip().encode(), expected.encode())


def current_user_id() -> Optional[str]:
    return getattr(g, "current_user_id", None)


# ── Authorization decorator ──────────────────────────────────────────────────

def require_role(minimum_role: str):
    """
    Decorator: require a minimum role level.

    Usage:
        @require_role("admin")
        def list_jobs(): ...

    Role hierarchy: admin > user
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user_role = getattr(g, "current_user_role", None)
            if not user_role:
                return jsonify({"error": "Authentication required"}), 401

            allowed = ROLE_HIERARCHY.get(user_role, set())
            if minimum_role not in allowed:
                logger.warning(
                    "Access denied: role '%s' tried to access '%s'-level endpoint %s",
                    user_role, minimum_role, request.path,
                )
                return jsonify({"error": "Insufficient permissions"}), 403

            return f(*args, **kwargs)
        return decorated
    return decorator


def _requires_api_key(path: str) -> bool:
    if path in _PUBLIC_PATHS:
        return False
    if path.startswith(_BEARER_PREFIXES):
        return False
    return path.startswith("/api/v1/") or path.startswith("/api/export/")


# ── App-level before_request hook installer ──────────────────────────────────

def init_auth(app):
    """
    Install authentication middleware on the Flask app.

    - Attaches a before_request hook for API routes
    - Skips health checks and the bearer-secret routes
    """
    @app.before_request
    def _before_request_auth():
        if not _requires_api_key(request.path):
            return None
        # OPTIONS pre-flight requests don't need auth
        if request.method == "OPTIONS":
            return None

        if not _is_auth_enabled():
            g.current_user_role = "admin"
            g.current_user_id = request.headers.get("X-User-Id", "").strip() or DEV_USER_ID
            return None

        api_key = _get_api_key_from_request()
        if not api_key:
            return jsonify({"error": "Authentication required. Provide X-API-Key header."}), 401

        api_keys = _parse_api_keys()
        if not api_keys:
            logger.error("API_KEYS is not configured but API_AUTH_ENABLED=true")
            return jsonify({"error": "Server authentication not configured"}), 500

        entry = next(
            (v for k, v in api_keys.items() if hmac.compare_digest(k.encode(), api_key.encode())),
            None,
        )
        if entry is None:
            logger.warning("Invalid API key attempt: %s...", api_key[:8])
            return jsonify({"error": "Invalid API key"}), 401

        g.current_user_role, g.current_user_id = entry
        return None

    logger.info("Auth middleware installed (enabled=%s)", _is_auth_enabled())
