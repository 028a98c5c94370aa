import logging
from typing import Dict, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from funplanet.config.settings import SUPABASE_JWT_SECRET, get_supabase_admin
from funplanet.services.ledger import RewardLedger
from funplanet.utils.dependencies import get_ledger

logger = logging.getLogger(__name__)

# Bearer scheme for Supabase access tokens
bearer_scheme = HTTPBearer(auto_error=False)
ALGORITHM = "HS256"


def _unauthorized(detail: str = "Unauthorized") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_access_token(token: str, secret: str) -> Dict:
    """
    Verify a Supabase-issued JWT locally and return its claims.
    """
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM], audience="authenticated")
    except JWTError:
        raise _unauthorized()
    if not payload.get("sub"):
        raise _unauthorized("Invalid token: missing subject")
    return payload


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Dict:
    """
    Resolve the bearer token to ``{"id", "email"}`` of a Supabase user.
    """
    if credentials is None or not credentials.credentials:
        raise _unauthorized("Missing authorization header")
    token = credentials.credentials

    if SUPABASE_JWT_SECRET:
        payload = decode_access_token(token, SUPABASE_JWT_SECRET)
        return {"id": payload["sub"], "email": payload.get("email")}

    try:
        response = get_supabase_admin().auth.get_user(token)
    except Exception as e:
        logger.warning(f"⚠️ Token lookup failed: {str(e)}")
        raise _unauthorized()
    user = getattr(response, "user", None)
    if not user:
        raise _unauthorized()
    return {"id": user.id, "email": user.email}


async def require_admin(
    user: Dict = Depends(get_current_user),
    ledger: RewardLedger = Depends(get_ledger),
) -> Dict:
    if not ledger.has_role(user["id"], "admin"):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user
