# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Data-access port for the hosted backend.

The hosted backend (authentication, tables, row-level security) is an
external collaborator. Resource fetchers only talk to it through this port,
one row per user in each named table.

Components:
- DataBackend: Abstract async interface
- InMemoryBackend: Dict-backed implementation for tests and local development
"""

import copy
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

Row = Dict[str, Any]

# Table names used by the resource bindings
PROFILES_TABLE = "user_profiles"
SETTINGS_TABLE = "user_settings"
PREFERENCES_TABLE = "user_preferences"


class DataBackend(ABC):
    """Abstract async data-access interface.

    Rows are plain dicts keyed by column name and owned by a user through
    their "user_id" column.
    """

    @abstractmethod
    async def get_current_user(self) -> Optional[Row]:
        """Get the signed-in user, or None when anonymous."""
        pass

    @abstractmethod
    async def select_one(self, table: str, user_id: str) -> Optional[Row]:
        """Get the user's row in table, or None if it does not exist."""
        pass

    @abstractmethod
    async def insert(self, table: str, row: Row) -> Row:
        """Insert a row and return it as stored.

        Raises:
            ValueError: If the user already has a row in table.
        """
        pass

    @abstractmethod
    async def upsert(self, table: str, row: Row) -> Row:
        """Insert or merge into the user's row and return it as stored."""
        pass

    @abstractmethod
    async def delete(self, table: str, user_id: str) -> bool:
        """Delete the user's row. Returns True if it existed."""
        pass

    @abstractmethod
    async def sign_out(self) -> None:
        """End the current session."""
        pass


class InMemoryBackend(DataBackend):
    """Dict-backed backend.

    Stores copies so callers cannot mutate stored rows by accident, and
    stamps id/created_at/updated_at columns the way the hosted database does.

    Usage:
        backend = InMemoryBackend()
        backend.sign_in({"id": "u1", "email": "ana@example.com"})
        row = await backend.select_one("user_settings", "u1")
    """

    def __init__(self) -> None:
        self._tables: Dict[str, Dict[str, Row]] = {}
        self._user: Optional[Row] = None

    def sign_in(self, user: Row) -> None:
        """Set the current user. The user dict must carry an "id"."""
        if not user.get("id"):
            raise ValueError("User must have an id")
        self._user = dict(user)
        logger.debug(f"Signed in user {user['id']}")

    async def get_current_user(self) -> Optional[Row]:
        return copy.deepcopy(self._user)

    async def select_one(self, table: str, user_id: str) -> Optional[Row]:
        row = self._tables.get(table, {}).get(user_id)
        return copy.deepcopy(row)

    async def insert(self, table: str, row: Row) -> Row:
        user_id = _require_user_id(row)
        rows = self._tables.setdefault(table, {})
        if user_id in rows:
            raise ValueError(f"Duplicate row for user {user_id} in {table}")

        now = _now_iso()
        stored = {"id": str(uuid.uuid4()), "created_at": now, "updated_at": now, **row}
        rows[user_id] = stored
        return copy.deepcopy(stored)

    async def upsert(self, table: str, row: Row) -> Row:
        user_id = _require_user_id(row)
        existing = self._tables.get(table, {}).get(user_id)
        if existing is None:
            return await self.insert(table, row)

        existing.update(copy.deepcopy(row))
        existing["updated_at"] = _now_iso()
        return copy.deepcopy(existing)

    async def delete(self, table: str, user_id: str) -> bool:
        return self._tables.get(table, {}).pop(user_id, None) is not None

    async def sign_out(self) -> None:
        self._user = None


def _require_user_id(row: Row) -> str:
    user_id = row.get("user_id")
    if not user_id:
        raise ValueError("Row must have a user_id")
    return str(user_id)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
