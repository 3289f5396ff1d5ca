"""
Request Authentication - Oraculum

Inbound calls to the oracle are accepted if either:
1. X-Oracle-Secret matches ORACLE_SECRET, or
2. X-Oracle-Signature is HMAC-SHA256(ORACLE_SECRET, timestamp + body),
   hex encoded with an optional "sha256=" prefix, and X-Oracle-Timestamp
   is within max_signature_age of now

All comparisons are constant time. With require_auth on and no secret
configured, every request is rejected.
"""

import hashlib
import hmac
import logging
import time
from typing import Optional

from config import AuthSettings
from errors import AuthenticationError

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="


def compute_signature(secret: str, timestamp: str, body: bytes) -> str:
    message = timestamp.encode() + body
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def _parse_timestamp(timestamp: str) -> float:
    value = float(timestamp)
    # Accept milliseconds
    if value > 1e12:
        value /= 1000.0
    return value


def verify_signature(
    secret: str,
    signature: str,
    timestamp: str,
    body: bytes,
    max_age: int = 300,
    now: Optional[float] = None,
) -> bool:
    try:
        sent_at = _parse_timestamp(timestamp)
    except (TypeError, ValueError):
        return False

    current = now if now is not None else time.time()
    if abs(current - sent_at) > max_age:
        return False

    provided = signature.strip()
    if provided.lower().startswith(SIGNATURE_PREFIX):
        provided = provided[len(SIGNATURE_PREFIX):]
    expected = compute_signature(secret, timestamp, body)
    return hmac.compare_digest(provided.lower().encode(), expected.encode())


def authenticate_oracle_request(
    settings: AuthSettings,
    body: bytes,
    secret_header: Optional[str] = None,
    signature: Optional[str] = None,
    timestamp: Optional[str] = None,
    now: Optional[float] = None,
) -> None:
    """Raise AuthenticationError unless the request carries valid credentials."""
    if not settings.require_auth:
        return

    secret = settings.oracle_secret
    if not secret:
        logger.error("ORACLE_REQUIRE_AUTH is on but ORACLE_SECRET is not set; rejecting request")
        raise AuthenticationError("Oracle authentication is not configured")

    if secret_header and hmac.compare_digest(secret_header.encode(), secret.encode()):
        return

    if signature and timestamp:
        if verify_signature(secret, signature, timestamp, body, settings.max_signature_age, now):
            return
        raise AuthenticationError("Invalid or expired signature")

    raise AuthenticationError("Missing or invalid oracle credentials")


def verify_bearer_token(authorization: Optional[str], expected: Optional[str]) -> None:
    """Check an "Authorization: Bearer <token>" header against a configured token."""
    if not expected:
        raise AuthenticationError("Token authentication is not configured")
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthenticationError("Missing bearer token")
    token = authorization[len("Bearer "):].strip()
    if not hmac.compare_digest(token.encode(), expected.encode()):
        raise AuthenticationError("Invalid bearer token")
