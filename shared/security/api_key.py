"""
Shared secret for internal callers (back-office order administration, jobs).

A missing INTERNAL_API_KEY does not crash startup: a loud warning is emitted
and an insecure default is used, so local runs work while production
misconfiguration is visible in the logs.
"""
import os
import secrets
import warnings

_INTERNAL_API_KEY: str = os.getenv("INTERNAL_API_KEY", "").strip()

if not _INTERNAL_API_KEY:
    warnings.warn(
        "INTERNAL_API_KEY is not set. Back-office endpoints accept an insecure default key. "
        "Set this env var in production!",
        stacklevel=2,
    )
    _INTERNAL_API_KEY = "insecure-default-change-me"

INTERNAL_API_KEY: str = _INTERNAL_API_KEY


def verify_api_key(provided_key: str | None) -> bool:
    if not provided_key:
        return False
    return secrets.compare_digest(str(provided_key), INTERNAL_API_KEY)


def verify_webhook_token(provided_token: str | None, expected_token: str) -> bool:
    """An empty expected token disables the check."""
    if not expected_token:
        return True
    if not provided_token:
        return False
    return secrets.compare_digest(str(provided_token), str(expected_token))
