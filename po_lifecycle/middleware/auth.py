from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
import structlog

from po_lifecycle.services.auth_service import identity_from_token

logger = structlog.get_logger()

bearer_scheme = HTTPBearer()

UNAUTHORIZED = {
    "error": {
        "code": "AUTH_TOKEN_INVALID",
        "message": "Invalid or expired token",
    }
}


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> dict:
    """Resolve the caller as {"user_id", "role", "email"} from the bearer token."""
    try:
        user = identity_from_token(credentials.credentials)
    except JWTError as e:
        logger.warning("auth_token_invalid", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=UNAUTHORIZED,
            headers={"WWW-Authenticate": "Bearer"},
        )

    structlog.contextvars.bind_contextvars(user_id=user["user_id"], role=user["role"])
    return user
