"""
Bearer-token identity for the internal API.

Users, passwords and logins belong to the identity provider; this service
only checks the RS256 access tokens it issues and turns them into the
caller identity the routes work with. create_access_token exists for local
tooling and tests that need a token signed with the same key pair.
"""

from datetime import datetime, timedelta, timezone

from jose import jwt, JWTError
import structlog

from po_lifecycle.config import settings

logger = structlog.get_logger()

ACCESS_TOKEN_TYPE = "access"
REQUIRED_CLAIMS = ("sub", "role")

# PEM text by kind ("private" / "public"), read from disk on first use.
_keys: dict[str, str] = {}


def _key(kind: str) -> str:
    if kind not in _keys:
        path = settings.JWT_PRIVATE_KEY_PATH if kind == "private" else settings.JWT_PUBLIC_KEY_PATH
        if not path:
            raise JWTError(f"No JWT {kind} key configured")
        with open(path, "r") as f:
            _keys[kind] = f.read()
        logger.debug("jwt_key_loaded", kind=kind)
    return _keys[kind]


def create_access_token(user_id: str, role: str, email: str) -> str:
    now = datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "role": role,
        "email": email,
        "iat": now,
        "exp": now + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
        "type": ACCESS_TOKEN_TYPE,
    }
    return jwt.encode(claims, _key("private"), algorithm=settings.JWT_ALGORITHM)


def verify_access_token(token: str) -> dict:
    """Return the token's claims. Raises JWTError on any failure."""
    claims = jwt.decode(token, _key("public"), algorithms=[settings.JWT_ALGORITHM])
    if claims.get("type") != ACCESS_TOKEN_TYPE:
        raise JWTError("Not an access token")
    missing = [c for c in REQUIRED_CLAIMS if not claims.get(c)]
    if missing:
        raise JWTError(f"Token is missing claims: {', '.join(missing)}")
    return claims


def identity_from_token(token: str) -> dict:
    claims = verify_access_token(token)
    return {
        "user_id": claims["sub"],
        "role": claims["role"],
        "email": claims.get("email"),
    }
