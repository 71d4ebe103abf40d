from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Dict

import aiosqlite

from auth import hash_password
from database import Database
from errors import BadRequest, Conflict, NotFound

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PASSWORD_LENGTH = 6
DEMO_EMAIL = "demo@clickfit.com"
DEMO_PASSWORD = "demo123"


def parse_user_id(raw: str) -> int:
    candidate = (raw or "").strip()
    if not candidate.isdigit():
        raise BadRequest("User id must be an integer")
    return int(candidate)


class UserService:
    """Request-level rules on top of the users table."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def seed_demo_user(self) -> None:
        password_hash = await asyncio.to_thread(hash_password, DEMO_PASSWORD)
        created = await self.db.seed_user(DEMO_EMAIL, password_hash)
        logger.info("demo user %s email=%s", "created" if created else "present", DEMO_EMAIL)

    async def list_users(self) -> Dict[str, Any]:
        users = await self.db.list_users()
        return {
            "success": True,
            "count": len(users),
            "users": [user.to_public() for user in users],
        }

    async def get_user(self, user_id: int) -> Dict[str, Any]:
        user = await self.db.fetch_user(user_id)
        if not user:
            raise NotFound("User not found")
        return {"success": True, "user": user.to_public()}

    async def create_user(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        email = str(payload.get("email") or "").strip()
        password = str(payload.get("password") or "")
        user_type = "admin" if payload.get("type") == "admin" else "user"
        if not email or not password:
            raise BadRequest("Email and password are required")
        if not EMAIL_PATTERN.match(email):
            raise BadRequest("Invalid email format")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise BadRequest(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
            )
        password_hash = await asyncio.to_thread(hash_password, password)
        try:
            user = await self.db.create_user(email, password_hash, user_type)
        except aiosqlite.IntegrityError as exc:
            # The UNIQUE constraint on email is the only one a client can hit.
            raise Conflict("Email already exists") from exc
        logger.info("user created user_id=%s type=%s", user.user_id, user.type)
        return {
            "success": True,
            "message": "User created successfully",
            "userId": user.user_id,
        }

    async def toggle_user(self, user_id: int) -> Dict[str, Any]:
        if not await self.db.toggle_active(user_id):
            raise NotFound("User not found")
        logger.info("user toggled user_id=%s", user_id)
        return {"success": True, "message": "User status updated"}

    async def delete_user(self, user_id: int) -> Dict[str, Any]:
        if not await self.db.delete_user(user_id):
            raise NotFound("User not found")
        logger.info("user deleted user_id=%s", user_id)
        return {"success": True, "message": "User deleted successfully"}
