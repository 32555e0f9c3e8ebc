"""Authentication dependencies for protecting API endpoints."""
from fastapi import Depends, Header, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
import logging
import uuid

from dockyards.container import Container
from dockyards.database import get_db
from dockyards.errors import Unauthenticated
from dockyards.models.user import User
from dockyards.utils.tokens import decode_token

logger = logging.getLogger(__name__)


def get_container(request: Request) -> Container:
    return request.app.state.container


def _access_token(request: Request, authorization: Optional[str], cookie_name: str) -> Optional[str]:
    if authorization and authorization.startswith("Bearer "):
        return authorization[len("Bearer "):]
    return request.cookies.get(cookie_name)


async def get_principal(
    request: Request,
    authorization: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
    container: Container = Depends(get_container),
) -> User:
    """Resolve the user behind the access token of the request.

    The token is taken from the ``Authorization: Bearer`` header, falling back
    to the access token cookie.
    """
    settings = container.settings

    token = _access_token(request, authorization, settings.ACCESS_TOKEN_NAME)
    if not token:
        raise Unauthenticated("authentication required")

    claims = decode_token(token, settings.JWT_ACCESS_TOKEN_SECRET, settings.JWT_ALGORITHM)

    try:
        user_id = uuid.UUID(claims.sub)
    except ValueError:
        logger.warning(f"Token subject is not a user id: {claims.sub!r}")
        raise Unauthenticated("invalid token subject")

    user = (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
    if user is None:
        logger.debug(f"Token subject {user_id} has no user")
        raise Unauthenticated("unknown principal")

    return user
