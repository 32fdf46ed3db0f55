from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

import config
from errors import AuthenticationFailed

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)


def token_for_user(user: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Session token carrying the user's identity, role and hospital."""
    return create_access_token(
        {
            "sub": user["id"],
            "userId": user["id"],
            "email": user["email"],
            "role": user["role"],
            "hospitalId": user["hospitalId"],
        },
        expires_delta,
    )


def decode_token(token: str) -> Dict[str, Any]:
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
    except JWTError as exc:
        raise AuthenticationFailed("Could not validate credentials") from exc
    if payload.get("sub") is None or payload.get("role") is None:
        raise AuthenticationFailed("Could not validate credentials")
    return payload
