"""Bearer-token gates for the JSON API."""
from __future__ import annotations

from functools import wraps
from typing import Any, Callable

from flask import g, jsonify, request

from primepickz.database import get_db
from primepickz.models import UserRole
from primepickz.services.auth_service import AuthService, extract_bearer_token, verify_token


def require_user(view: Callable[..., Any]) -> Callable[..., Any]:
    """Resolve the caller from the token and expose it as ``g.current_user``."""

    @wraps(view)
    def wrapper(*args: Any, **kwargs: Any):
        token = extract_bearer_token(request.headers.get("Authorization"))
        if not token:
            return jsonify({"error": "Authentication required"}), 401
        user = AuthService(get_db()).get_user_from_token(token)
        if user is None:
            return jsonify({"error": "Invalid or expired token"}), 401
        g.current_user = user
        g.current_user_id = user.userID
        return view(*args, **kwargs)

    return wrapper


def require_admin(view: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(view)
    def wrapper(*args: Any, **kwargs: Any):
        token = extract_bearer_token(request.headers.get("Authorization"))
        if not token:
            return jsonify({"error": "Unauthorized: missing token"}), 401
        payload = verify_token(token)
        if not payload:
            return jsonify({"error": "Unauthorized: invalid or expired token"}), 401
        if payload.get("role") != UserRole.ADMIN.value:
            return jsonify({"error": "Unauthorized: admin access required"}), 401
        g.current_user_id = f"admin:{payload.get('email')}"
        g.admin_username = payload.get("email")
        return view(*args, **kwargs)

    return wrapper
