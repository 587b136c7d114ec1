"""Verification of access tokens issued by the identity service (ES256).

Identity is owned elsewhere; this service only checks signatures and
claims.  With IDENTITY_PUBLIC_KEY set, tokens are verified against that
PEM key.  Without it (dev/test) an ephemeral EC key pair is generated on
import and ``create_access_token`` can mint tokens locally.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from enrollment_service.core.config import SETTINGS

ALGORITHM = "ES256"
ISSUER = "identity-service"
AUDIENCE = "enrollment-service"
ACCESS_TOKEN_TTL_MIN = 15

if SETTINGS.identity_public_key:
    _private_key = None
    _public_key = serialization.load_pem_public_key(
        SETTINGS.identity_public_key.encode()
    )
else:
    _private_key = ec.generate_private_key(ec.SECP256R1())
    _public_key = _private_key.public_key()


def create_access_token(*, sub: str, roles: list[str] | None = None) -> str:
    """Mint a token with the ephemeral dev key (tests and local tooling)."""
    if _private_key is None:
        raise RuntimeError("tokens are issued by the identity service in this env")
    now = datetime.now(UTC)
    payload = {
        "sub": sub,
        "iss": ISSUER,
        "aud": AUDIENCE,
        "exp": now + timedelta(minutes=ACCESS_TOKEN_TTL_MIN),
        "iat": now,
        "jti": str(uuid.uuid4()),
        "roles": roles or ["learner"],
    }
    return jwt.encode(payload, _private_key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Verify signature and claims, return the payload.

    Pins the algorithm to ES256 to prevent alg:none and alg-switching.
    Raises jwt.ExpiredSignatureError, jwt.InvalidTokenError on failure.
    """
    return jwt.decode(
        token,
        _public_key,
        algorithms=[ALGORITHM],
        issuer=ISSUER,
        audience=AUDIENCE,
        options={"require": ["sub", "exp", "iat", "jti"]},
    )
