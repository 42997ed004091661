"""
JWT bearer authentication

Tokens are HS256 JWTs carrying the user id in "sub". The dependencies below
resolve the caller for route functions.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pymongo.database import Database

from database import get_db, parse_object_id, utcnow
from errors import Forbidden, NotAuthorized
from schemas import Role
from settings import Settings, get_settings

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(user_id: str, settings: Settings) -> str:
    payload = {
        "sub": user_id,
        "iat": utcnow(),
        "exp": utcnow() + timedelta(days=settings.jwt_expires_days),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=ALGORITHM)


def decode_access_token(token: str, settings: Settings) -> str:
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise NotAuthorized("Not authorized, token expired")
    except jwt.PyJWTError as e:
        logger.info("Rejected bearer token: %s", e)
        raise NotAuthorized("Not authorized, token failed")
    user_id = payload.get("sub")
    if not user_id:
        raise NotAuthorized("Not authorized, invalid token payload")
    return user_id


def _resolve_user(token: str, db: Database, settings: Settings) -> Dict[str, Any]:
    user_id = decode_access_token(token, settings)
    oid = parse_object_id(user_id)
    user = db["user"].find_one({"_id": oid}) if oid else None
    if not user:
        raise NotAuthorized("Not authorized, user not found")
    return user


def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Optional[Dict[str, Any]]:
    """The caller if a bearer token was sent, None for anonymous callers.

    A token that is present but invalid is still an error.
    """
    if credentials is None:
        return None
    return _resolve_user(credentials.credentials, db, settings)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    if credentials is None:
        raise NotAuthorized("Not authorized, no token provided")
    return _resolve_user(credentials.credentials, db, settings)


def require_admin(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if not is_admin(user):
        raise Forbidden()
    return user


def is_admin(user: Optional[Dict[str, Any]]) -> bool:
    return bool(user) and user.get("role") == Role.ADMIN.value
