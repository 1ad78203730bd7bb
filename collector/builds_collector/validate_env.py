"""Fail-fast environment validation for collector containers.

A container declares what it runs through ``COLLECTOR_ROLE``:

- ``worker`` executes workflows and talks to Warcraft Logs, so it needs the
  OAuth client credentials
- ``beat`` only enqueues the scheduled entry tasks
"""

from __future__ import annotations

import os
from functools import lru_cache
from urllib.parse import urlparse

ALLOWED_ENVIRONMENTS = {"development", "staging", "production"}
LOCAL_HOSTS = {"localhost", "127.0.0.1", "0.0.0.0", "::1"}

ROLE_REQUIREMENTS: dict[str, tuple[str, ...]] = {
    "worker": ("WCL_CLIENT_ID", "WCL_CLIENT_SECRET"),
    "beat": (),
}

URL_SCHEMES = {
    "DATABASE_URL": ("postgresql", "postgresql+psycopg", "postgresql+asyncpg", "sqlite"),
    "REDIS_URL": ("redis", "rediss"),
}


def require_env(name: str) -> str:
    """Return a stripped environment variable, raising RuntimeError when unset or blank."""
    value = (os.getenv(name) or "").strip()
    if not value:
        raise RuntimeError(f"{name} is required and must be set before startup.")
    return value


def validate_environment_value(environment: str) -> None:
    if environment not in ALLOWED_ENVIRONMENTS:
        raise RuntimeError(
            f"ENVIRONMENT must be one of: {', '.join(sorted(ALLOWED_ENVIRONMENTS))}."
        )


def validate_url_scheme(name: str, value: str) -> None:
    scheme = urlparse(value).scheme
    allowed = URL_SCHEMES.get(name)
    if allowed and scheme not in allowed:
        raise RuntimeError(f"{name} has unsupported scheme {scheme!r}; expected one of {', '.join(allowed)}.")


def validate_non_local_url(name: str, value: str) -> None:
    """Production services must not point at a loopback host."""
    host = urlparse(value).hostname
    if not host:
        raise RuntimeError(f"{name} must be a valid URL (missing hostname).")
    if host in LOCAL_HOSTS:
        raise RuntimeError(f"{name} must not point to localhost in production.")


def validate_database_credentials(value: str) -> None:
    parsed = urlparse(value)
    if (parsed.username, parsed.password) == ("postgres", "postgres"):
        raise RuntimeError("DATABASE_URL must not use default postgres credentials in production.")


@lru_cache(maxsize=1)
def validate_env() -> None:
    """Check the environment once per process before any connection is made."""
    environment = require_env("ENVIRONMENT")
    validate_environment_value(environment)

    urls = {name: require_env(name) for name in ("DATABASE_URL", "REDIS_URL")}
    for name, value in urls.items():
        validate_url_scheme(name, value)

    if environment != "production":
        return

    for name, value in urls.items():
        validate_non_local_url(name, value)
    validate_database_credentials(urls["DATABASE_URL"])

    role = os.getenv("COLLECTOR_ROLE", "worker")
    if role not in ROLE_REQUIREMENTS:
        raise RuntimeError(
            f"COLLECTOR_ROLE must be one of: {', '.join(sorted(ROLE_REQUIREMENTS))}."
        )
    for name in ROLE_REQUIREMENTS[role]:
        require_env(name)
