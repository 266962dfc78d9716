from __future__ import annotations

import logging
import threading
import time
from typing import Any, Dict, Optional, Tuple

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash, generate_password_hash

from primepickz.config import Config
from primepickz.models import User, UserRole
from primepickz.observability import increment_counter, record_event

logger = logging.getLogger(__name__)

TOKEN_SALT = "primepickz-auth"
MIN_PASSWORD_LENGTH = 8


def _serializer(config: type[Config] = Config) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(config.JWT_SECRET, salt=TOKEN_SALT)


def generate_token(
    user_id: Any,
    email: str,
    role: str = UserRole.CUSTOMER.value,
    remember_me: bool = False,
    config: type[Config] = Config,
) -> str:
    max_age = config.REMEMBER_ME_MAX_AGE_SECONDS if remember_me else config.TOKEN_MAX_AGE_SECONDS
    payload = {
        "userId": user_id,
        "email": email,
        "role": role,
        "exp": int(time.time()) + max_age,
    }
    return _serializer(config).dumps(payload)


def verify_token(token: str, max_age: Optional[int] = None, config: type[Config] = Config) -> Optional[Dict[str, Any]]:
    """Return the token payload, or None when it is tampered with or expired."""
    if not token:
        return None
    try:
        payload = _serializer(config).loads(token, max_age=max_age or config.REMEMBER_ME_MAX_AGE_SECONDS)
    except (SignatureExpired, BadSignature):
        return None

    if not isinstance(payload, dict) or int(payload.get("exp", 0)) < int(time.time()):
        return None
    return payload


def hash_password(password: str) -> str:
    return generate_password_hash(password, method="pbkdf2:sha256")


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    return check_password_hash(password_hash, password)


def extract_bearer_token(header: Optional[str]) -> Optional[str]:
    if not header or not header.startswith("Bearer "):
        return None
    token = header[len("Bearer "):].strip()
    return token or None


class RateLimiter:
    """Fixed-window attempt counter kept in process memory."""

    def __init__(self, clock=time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: Dict[str, Tuple[int, float]] = {}

    def check(self, key: str, max_attempts: int, window_seconds: int) -> Tuple[bool, int, float]:
        now = self._clock()
        with self._lock:
            count, reset_at = self._windows.get(key, (0, 0.0))
            if now >= reset_at:
                count, reset_at = 0, now + window_seconds
            if count >= max_attempts:
                self._windows[key] = (count, reset_at)
                return False, 0, reset_at
            count += 1
            self._windows[key] = (count, reset_at)
            return True, max_attempts - count, reset_at

    def reset(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._windows.clear()
            else:
                self._windows.pop(key, None)


login_rate_limiter = RateLimiter()


class AuthService:
    def __init__(
        self,
        db_session: Session,
        config: type[Config] = Config,
        rate_limiter: Optional[RateLimiter] = None,
    ) -> None:
        self.db = db_session
        self.config = config
        self.rate_limiter = rate_limiter or login_rate_limiter
        self.logger = logging.getLogger(__name__)

    def register(
        self,
        email: str,
        password: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> Tuple[bool, str, Optional[User]]:
        email = (email or "").strip().lower()
        if not email or "@" not in email:
            return False, "A valid email is required", None
        if not password or len(password) < MIN_PASSWORD_LENGTH:
            return False, f"Password must be at least {MIN_PASSWORD_LENGTH} characters", None
        if self.db.query(User).filter_by(email=email).first():
            return False, "An account with this email already exists", None

        user = User(
            email=email,
            password_hash=hash_password(password),
            first_name=first_name,
            last_name=last_name,
            role=UserRole.CUSTOMER,
        )
        self.db.add(user)
        self.db.commit()

        increment_counter("users_registered_total")
        record_event("user_registered", {"user_id": user.userID})
        self.logger.info("User registered", extra={"user_id": user.userID})
        return True, "Registration successful", user

    def login(
        self,
        email: str,
        password: str,
        remember_me: bool = False,
    ) -> Tuple[bool, str, Optional[Dict[str, Any]]]:
        email = (email or "").strip().lower()
        allowed, _, reset_at = self.rate_limiter.check(
            f"login:{email}",
            self.config.LOGIN_RATE_LIMIT_ATTEMPTS,
            self.config.LOGIN_RATE_LIMIT_WINDOW_SECONDS,
        )
        if not allowed:
            increment_counter("login_rate_limited_total")
            retry_after = max(0, int(reset_at - time.time()))
            return False, f"Too many login attempts. Try again in {retry_after} seconds", None

        user = self.db.query(User).filter_by(email=email).first()
        if not user or not verify_password(password or "", user.password_hash):
            increment_counter("login_failures_total")
            self.logger.info("Failed login attempt", extra={"email": email})
            return False, "Invalid email or password", None

        token = generate_token(user.userID, user.email, user.role.value, remember_me=remember_me, config=self.config)
        increment_counter("logins_total")
        return True, "Login successful", {"token": token, "user": user}

    def get_user_from_token(self, token: Optional[str]) -> Optional[User]:
        payload = verify_token(token or "", config=self.config)
        if not payload:
            return None
        try:
            user_id = int(payload.get("userId"))
        except (TypeError, ValueError):
            return None
        return self.db.get(User, user_id)

    def admin_login(self, username: str, password: str) -> Tuple[bool, str, Optional[str]]:
        allowed, _, _ = self.rate_limiter.check(
            f"admin-login:{username}",
            self.config.LOGIN_RATE_LIMIT_ATTEMPTS,
            self.config.LOGIN_RATE_LIMIT_WINDOW_SECONDS,
        )
        if not allowed:
            increment_counter("login_rate_limited_total")
            return False, "Too many login attempts", None

        if username != self.config.ADMIN_USERNAME or password != self.config.ADMIN_PASSWORD:
            increment_counter("login_failures_total", labels={"scope": "admin"})
            self.logger.warning("Failed admin login", extra={"username": username})
            return False, "Invalid credentials", None

        token = generate_token("admin", username, UserRole.ADMIN.value, config=self.config)
        self.logger.info("Admin logged in", extra={"username": username})
        return True, "Login successful", token
