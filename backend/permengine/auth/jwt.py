"""JWT decoding for the permission middleware.

Tokens are issued by the upstream authentication service; this engine
only verifies them and reads the identity reference.

Token claims used:
  - sub:     principal id (preferred)
  - userId:  principal id (legacy tokens)
  - type:    must be "access" when present (refresh tokens are rejected)
  - exp:     expiry timestamp
"""

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from permengine.config import Settings, settings as default_settings


def create_access_token(
    principal_id: str,
    expires_delta: timedelta | None = None,
    settings: Settings | None = None,
) -> str:
    """Issue a short-lived token (CLI and tests; production tokens come from auth)."""
    settings = settings or default_settings
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=30))
    payload = {"sub": principal_id, "type": "access", "exp": expire}
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str, settings: Settings | None = None) -> dict:
    """Decode and validate a JWT. Returns empty dict on failure."""
    settings = settings or default_settings
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return {}


def identity_ref_from_claims(payload: dict) -> str | None:
    """Principal id from verified claims, or None.

    Only access tokens identify a caller.  Legacy tokens without a `type`
    claim are still accepted.
    """
    if payload.get("type", "access") != "access":
        return None
    ref = payload.get("sub") or payload.get("userId")
    return str(ref) if ref else None



def bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
