from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
import structlog

from cms_api.services.auth_service import verify_access_token

logger = structlog.get_logger()

security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> dict:
    """FastAPI dependency: extract and verify JWT, return user claims dict."""
    token = credentials.credentials
    try:
        payload = verify_access_token(token)
        return {
            "user_id": payload["sub"],
            "username": payload.get("username"),
            "role": payload.get("role", "editor"),
        }
    except (JWTError, KeyError) as e:
        logger.warning("auth_token_invalid", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": {
                    "code": "AUTH_TOKEN_INVALID",
                    "message": "Invalid or expired token",
                }
            },
            headers={"WWW-Authenticate": "Bearer"},
        )
