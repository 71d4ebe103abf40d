from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from pathlib import Path
from typing import Any, AsyncIterator, List, Optional, Sequence

import aiosqlite

logger = logging.getLogger(__name__)

USER_COLUMNS = "user_id, email, password_hash, type, active, created_at, updated_at"


@dataclass
class UserRecord:
    user_id: int
    email: str
    password_hash: str
    type: str
    active: bool
    created_at: str
    updated_at: str

    @classmethod
    def from_row(cls, row: aiosqlite.Row) -> "UserRecord":
        values = dict(row)
        values["active"] = bool(values["active"])
        return cls(**values)

    def to_public(self) -> dict[str, Any]:
        """API shape; the password hash never leaves the server."""
        return {
            "userId": self.user_id,
            "email": self.email,
            "type": self.type,
            "active": self.active,
            "createdAt": self.created_at,
        }


class Database:
    """Lightweight wrapper around aiosqlite for the users table."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[aiosqlite.Connection]:
        async with aiosqlite.connect(self.db_path) as conn:
            conn.row_factory = aiosqlite.Row
            yield conn

    async def initialize(self) -> None:
        """Create directories and ensure the users table exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        async with self._connection() as conn:
            await conn.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    user_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    type TEXT NOT NULL DEFAULT 'user' CHECK (type IN ('admin', 'user')),
                    active INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            await conn.commit()
        logger.info("database ready path=%s", self.db_path)

    async def seed_user(self, email: str, password_hash: str, user_type: str = "user") -> bool:
        """Insert a user unless the email exists; True when a row was added."""
        now = datetime.now(timezone.utc).isoformat()
        async with self._connection() as conn:
            cursor = await conn.execute(
                """
                INSERT OR IGNORE INTO users
                    (email, password_hash, type, active, created_at, updated_at)
                VALUES (?, ?, ?, 1, ?, ?)
                """,
                (email.lower(), password_hash, user_type, now, now),
            )
            await conn.commit()
            return cursor.rowcount > 0

    async def fetch_all(
        self, query: str, params: Sequence[Any] = ()
    ) -> List[aiosqlite.Row]:
        async with self._connection() as conn:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()
            await cursor.close()
            return list(rows)

    async def fetch_one(
        self, query: str, params: Sequence[Any]
    ) -> Optional[aiosqlite.Row]:
        """Execute a single-row SELECT statement with given parameters."""
        async with self._connection() as conn:
            cursor = await conn.execute(query, params)
            row = await cursor.fetchone()
            await cursor.close()
            return row

    async def execute(self, query: str, params: Sequence[Any]) -> int:
        """Run a write statement and return the affected row count."""
        async with self._connection() as conn:
            cursor = await conn.execute(query, params)
            await conn.commit()
            return cursor.rowcount

    async def create_user(
        self, email: str, password_hash: str, user_type: str = "user"
    ) -> UserRecord:
        """Insert a new user; a duplicate email raises aiosqlite.IntegrityError."""
        now = datetime.now(timezone.utc).isoformat()
        async with self._connection() as conn:
            cursor = await conn.execute(
                """
                INSERT INTO users (email, password_hash, type, active, created_at, updated_at)
                VALUES (?, ?, ?, 1, ?, ?)
                """,
                (email.lower(), password_hash, user_type, now, now),
            )
            await conn.commit()
            lastrowid = cursor.lastrowid
        if lastrowid is None:
            raise RuntimeError("Failed to read the inserted user ID.")
        return UserRecord(
            user_id=int(lastrowid),
            email=email.lower(),
            password_hash=password_hash,
            type=user_type,
            active=True,
            created_at=now,
            updated_at=now,
        )

    async def list_users(self) -> List[UserRecord]:
        rows = await self.fetch_all(
            f"SELECT {USER_COLUMNS} FROM users ORDER BY created_at DESC, user_id DESC"
        )
        return [UserRecord.from_row(row) for row in rows]

    async def fetch_user(self, user_id: int) -> Optional[UserRecord]:
        row = await self.fetch_one(
            f"SELECT {USER_COLUMNS} FROM users WHERE user_id = ?", (user_id,)
        )
        return UserRecord.from_row(row) if row else None

    async def toggle_active(self, user_id: int) -> bool:
        changed = await self.execute(
            "UPDATE users SET active = NOT active, updated_at = ? WHERE user_id = ?",
            (datetime.now(timezone.utc).isoformat(), user_id),
        )
        return changed > 0

    async def delete_user(self, user_id: int) -> bool:
        removed = await self.execute("DELETE FROM users WHERE user_id = ?", (user_id,))
        return removed > 0
