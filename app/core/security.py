"""Senhas (bcrypt) e token Bearer do admin (JWT HS256 com escopo "admin")."""
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from .config import settings

ALGORITHM = "HS256"
ADMIN_SCOPE = "admin"
MAX_BCRYPT_BYTES = 72  # o bcrypt ignora o que passar disso


def hash_password(password: str) -> str:
    p = password.encode("utf-8")[:MAX_BCRYPT_BYTES]
    return bcrypt.hashpw(p, bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    p = plain.encode("utf-8")[:MAX_BCRYPT_BYTES]
    return bcrypt.checkpw(p, hashed.encode("utf-8"))


def create_access_token(data: dict, expires_minutes: int | None = None) -> str:
    to_encode = data.copy()
    minutes = expires_minutes if expires_minutes is not None else settings.access_token_expire_minutes
    to_encode["exp"] = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    return jwt.encode(to_encode, settings.secret_key, algorithm=ALGORITHM)


def create_admin_token(admin_id: int) -> str:
    return create_access_token({"sub": str(admin_id), "scope": ADMIN_SCOPE})


def decode_admin_token(token: str) -> int | None:
    """id do admin, ou None se o token for inválido, expirado ou de outro escopo."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return None
    if payload.get("scope") != ADMIN_SCOPE:
        return None
    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        return None
