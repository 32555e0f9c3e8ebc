"""Access and refresh token handling."""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import jwt

from dockyards.errors import Unauthenticated


@dataclass
class Claims:
    """Claims carried by dockyards tokens."""
    sub: str
    exp: int
    name: str = ""


def issue_token(subject: str, name: str, secret: str, expiry_seconds: int, algorithm: str = "HS256") -> str:
    """Sign a token for ``subject`` that expires after ``expiry_seconds``."""
    if not secret:
        raise ValueError("token secret is not configured")

    expires_at = datetime.now(timezone.utc) + timedelta(seconds=expiry_seconds)
    payload = {
        "sub": subject,
        "name": name,
        "exp": int(expires_at.timestamp()),
    }
    return jwt.encode(payload, secret, algorithm=algorithm)


def decode_token(token: str, secret: str, algorithm: str = "HS256") -> Claims:
    """Verify ``token`` and return its claims.

    Raises Unauthenticated for expired, tampered or incomplete tokens.
    """
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[algorithm],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        raise Unauthenticated("token has expired")
    except jwt.PyJWTError as e:
        raise Unauthenticated(f"invalid token: {e}")

    return Claims(sub=str(payload["sub"]), exp=int(payload["exp"]), name=str(payload.get("name", "")))
