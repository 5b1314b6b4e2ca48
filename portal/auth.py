from dataclasses import dataclass

from fastapi import Depends, Header
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from portal.config import get_settings
from portal.database import get_db
from portal.errors import Forbidden, Unauthorized
from portal.models import Profile


@dataclass(frozen=True)
class AuthUser:
    id: str
    email: str | None


def decode_token(token: str) -> AuthUser:
    secret = get_settings().jwt_secret
    if not secret:
        raise Unauthorized()
    try:
        claims = jwt.decode(token, secret, algorithms=["HS256"], options={"verify_aud": False})
    except JWTError:
        raise Unauthorized()
    if not claims.get("sub"):
        raise Unauthorized()
    return AuthUser(id=claims["sub"], email=claims.get("email"))


def get_current_user(authorization: str | None = Header(None)) -> AuthUser:
    if not authorization:
        raise Unauthorized()
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise Unauthorized()
    return decode_token(token.strip())


def require_admin(user: AuthUser = Depends(get_current_user), db: Session = Depends(get_db)) -> AuthUser:
    profile = db.get(Profile, user.id)
    if profile is None or profile.role != "admin":
        raise Forbidden("Admin access required")
    return user
