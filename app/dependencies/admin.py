import hmac
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from app.core.config import Settings, get_settings


def require_admin_token(
    x_admin_token: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> None:
    """Admin endpoints are closed entirely when ADMIN_TOKEN is unset."""
    if (
        not settings.admin_token
        or not x_admin_token
        or not hmac.compare_digest(x_admin_token.encode(), settings.admin_token.encode())
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized"
        )
