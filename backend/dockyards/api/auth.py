"""Signup, login and token endpoints."""
from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
import bcrypt
import logging
import uuid

from dockyards.api.dependencies import get_container, get_principal
from dockyards.config import Settings
from dockyards.container import Container
from dockyards.database import get_db
from dockyards.errors import BadRequest, Conflict, Unauthenticated
from dockyards.models.user import User
from dockyards.schemas import LoginRequest, RefreshRequest, SignupRequest, TokenPair
from dockyards.schemas import User as UserSchema
from dockyards.utils.tokens import decode_token, issue_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["Auth"])

MAX_PASSWORD_BYTES = 72  # bcrypt input limit


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode(), hashed.encode())
    except ValueError:
        logger.warning("Stored password hash is malformed")
        return False


def issue_tokens(user: User, settings: Settings) -> TokenPair:
    return TokenPair(
        access_token=issue_token(
            str(user.id),
            user.name,
            settings.JWT_ACCESS_TOKEN_SECRET,
            settings.JWT_ACCESS_TOKEN_EXPIRY,
            settings.JWT_ALGORITHM,
        ),
        refresh_token=issue_token(
            str(user.id),
            user.name,
            settings.JWT_REFRESH_TOKEN_SECRET,
            settings.JWT_REFRESH_TOKEN_EXPIRY,
            settings.JWT_ALGORITHM,
        ),
    )


def set_token_cookies(response: Response, tokens: TokenPair, settings: Settings):
    if not settings.FLAG_SET_SERVER_COOKIE:
        return
    response.set_cookie(
        settings.ACCESS_TOKEN_NAME,
        tokens.access_token,
        max_age=settings.JWT_ACCESS_TOKEN_EXPIRY,
        httponly=True,
        samesite="lax",
    )
    response.set_cookie(
        settings.REFRESH_TOKEN_NAME,
        tokens.refresh_token,
        max_age=settings.JWT_REFRESH_TOKEN_EXPIRY,
        httponly=True,
        samesite="lax",
    )


@router.post("/signup", response_model=UserSchema, status_code=201)
async def signup(data: SignupRequest, db: AsyncSession = Depends(get_db)):
    """Create a user account."""
    email = data.email.strip().lower()
    if "@" not in email or not data.name.strip():
        raise BadRequest("name and a valid email are required")
    if not data.password or len(data.password.encode()) > MAX_PASSWORD_BYTES:
        raise BadRequest(f"password must be between 1 and {MAX_PASSWORD_BYTES} bytes")

    existing = (await db.execute(select(User).where(User.email == email))).scalar_one_or_none()
    if existing:
        raise Conflict("email is already in use")

    user = User(email=email, name=data.name.strip(), password=hash_password(data.password))
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise Conflict("email is already in use")
    await db.refresh(user)

    logger.info(f"User signed up: {user.id}")
    return UserSchema(id=user.id, name=user.name, email=user.email)


@router.post("/login", response_model=TokenPair)
async def login(
    data: LoginRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
    container: Container = Depends(get_container),
):
    """Exchange email and password for an access and refresh token."""
    email = data.email.strip().lower()
    user = (await db.execute(select(User).where(User.email == email))).scalar_one_or_none()

    if not user or not verify_password(data.password, user.password):
        logger.debug(f"Failed login for {email}")
        raise BadRequest("invalid email or password")

    tokens = issue_tokens(user, container.settings)
    set_token_cookies(response, tokens, container.settings)

    logger.info(f"User logged in: {user.id}")
    return tokens


@router.post("/refresh", response_model=TokenPair)
async def refresh(
    request: Request,
    response: Response,
    data: Optional[RefreshRequest] = None,
    db: AsyncSession = Depends(get_db),
    container: Container = Depends(get_container),
):
    """Rotate both tokens, given a valid refresh token (cookie, body or bearer)."""
    settings = container.settings

    token = request.cookies.get(settings.REFRESH_TOKEN_NAME)
    if not token and data is not None:
        token = data.refresh_token
    if not token:
        authorization = request.headers.get("Authorization", "")
        if authorization.startswith("Bearer "):
            token = authorization[len("Bearer "):]
    if not token:
        raise Unauthenticated("refresh token required")

    claims = decode_token(token, settings.JWT_REFRESH_TOKEN_SECRET, settings.JWT_ALGORITHM)
    try:
        user_id = uuid.UUID(claims.sub)
    except ValueError:
        raise Unauthenticated("invalid token subject")

    user = (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
    if user is None:
        raise Unauthenticated("unknown principal")

    tokens = issue_tokens(user, settings)
    set_token_cookies(response, tokens, settings)
    return tokens


@router.post("/logout")
async def logout(
    response: Response,
    user: User = Depends(get_principal),
    container: Container = Depends(get_container),
):
    """Clear the token cookies; tokens already handed out stay valid until they expire."""
    response.delete_cookie(container.settings.ACCESS_TOKEN_NAME)
    response.delete_cookie(container.settings.REFRESH_TOKEN_NAME)
    logger.debug(f"User logged out: {user.id}")
    return {"message": "logged out"}


@router.get("/whoami", response_model=UserSchema)
async def whoami(user: User = Depends(get_principal)):
    return UserSchema(id=user.id, name=user.name, email=user.email)
