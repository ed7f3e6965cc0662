"""Security helpers: response headers, password policy and login throttling."""
import hashlib
import threading
import time
from typing import Dict, Tuple


def apply_security_headers(response, force_https: bool = False):
    """Headers for a JSON API that is never framed or sniffed."""
    response.headers.setdefault("Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    if force_https:
        response.headers.setdefault("Strict-Transport-Security", "max-age=63072000; includeSubDomains; preload")
    return response


def hash_value(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def password_meets_policy(password: str) -> tuple[bool, str | None]:
    if len(password) < 12:
        return False, "Password must be at least 12 characters long."
    if password.lower() == password or password.upper() == password:
        return False, "Use a mix of upper and lower case characters."
    if not any(c.isdigit() for c in password):
        return False, "Include at least one digit."
    if not any(c in "!@#$%^&*()-_=+[]{}|;:,.<>?/" for c in password):
        return False, "Include at least one symbol."
    return True, None


# Per-process attempt counters: key -> (count, window reset time). Lost on restart.
_attempts: Dict[str, Tuple[int, float]] = {}
_attempts_lock = threading.Lock()


def track_attempt(key: str, limit: int = 5, window_seconds: int = 60) -> bool:
    """Count an attempt for key; False once the limit is reached inside the rolling window."""
    now = time.monotonic()
    with _attempts_lock:
        count, reset_at = _attempts.get(key, (0, 0.0))
        if now > reset_at:
            _attempts[key] = (1, now + window_seconds)
            return True
        if count >= limit:
            return False
        _attempts[key] = (count + 1, reset_at)
        return True


def reset_attempts(key: str | None = None) -> None:
    with _attempts_lock:
        if key is None:
            _attempts.clear()
        else:
            _attempts.pop(key, None)
