from __future__ import annotations

from passlib.context import CryptContext

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(plain: str) -> str:
    """Wrap passlib's bcrypt hash generator."""
    return pwd_context.hash(plain)
