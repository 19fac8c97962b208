"""
User repository (persistence).

This module provides *only* persistence operations for the User domain entity.
No hierarchy rules (levels, downlines, commission) belong here.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, List, Mapping, Optional, Sequence

from domain.time import parse_optional_utc_datetime, to_iso_utc
from domain.user import User, UserRole
from repositories.batching import (
    DEFAULT_IN_CHUNK_SIZE,
    DEFAULT_WRITE_BATCH_SIZE,
    fetch_all,
    select_in_chunks,
    write_in_batches,
)

# Supabase table name for User records.
# Keep this aligned with your database schema.
_USERS_TABLE: str = "users"


def _optional_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return Decimal(str(value))


def _user_to_row(user: User) -> dict[str, Any]:
    """Convert a domain User to a Supabase row payload."""

    return {
        "uid": user.uid,
        "display_name": user.display_name,
        "email": user.email,
        "role": user.role.value,
        "upline_uid": user.upline_uid,
        "commission_rate": str(user.commission_rate) if user.commission_rate is not None else None,
        "mlm_enabled": user.mlm_enabled,
        "assignment_limit": user.assignment_limit,
        "personal_balance": str(user.personal_balance),
        "mlm_balance": str(user.mlm_balance),
        "photo_url": user.photo_url,
        "created_at_utc": to_iso_utc(user.created_at, name="created_at") if user.created_at else None,
    }


def _row_to_user(row: Mapping[str, Any]) -> User:
    """Convert a Supabase row into a domain User."""

    assignment_limit = row.get("assignment_limit")

    return User(
        uid=str(row["uid"]),
        display_name=row.get("display_name"),
        role=UserRole.parse(str(row.get("role") or "")),
        email=row.get("email"),
        upline_uid=row.get("upline_uid") or None,
        commission_rate=_optional_decimal(row.get("commission_rate")),
        mlm_enabled=bool(row.get("mlm_enabled", False)),
        assignment_limit=int(assignment_limit) if assignment_limit is not None else None,
        personal_balance=_optional_decimal(row.get("personal_balance")) or Decimal("0"),
        mlm_balance=_optional_decimal(row.get("mlm_balance")) or Decimal("0"),
        photo_url=row.get("photo_url"),
        created_at=parse_optional_utc_datetime(row.get("created_at_utc")),
    )


class UserRepository:
    """Reads and writes User rows through a Supabase client."""

    def __init__(
        self,
        client: Any,
        in_chunk_size: int = DEFAULT_IN_CHUNK_SIZE,
        write_batch_size: int = DEFAULT_WRITE_BATCH_SIZE,
    ) -> None:
        self._client = client
        self._in_chunk_size = in_chunk_size
        self._write_batch_size = write_batch_size

    def get_user(self, uid: str) -> Optional[User]:
        """
        Fetch a User by uid.

        Returns:
        - User if found
        - None if no record exists for the given uid
        """

        response = (
            self._client.table(_USERS_TABLE)
            .select("*")
            .eq("uid", uid)
            .limit(1)
            .execute()
        )
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to fetch user: {error}")

        rows = getattr(response, "data", None) or []
        if not rows:
            return None
        return _row_to_user(rows[0])

    def list_users(self) -> List[User]:
        """All users, ordered by uid."""

        return [_row_to_user(row) for row in fetch_all(self._client, _USERS_TABLE, order_by="uid")]

    def list_users_by_role(self, role: UserRole) -> List[User]:
        response = self._client.table(_USERS_TABLE).select("*").eq("role", role.value).execute()
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to list users: {error}")

        rows = getattr(response, "data", None) or []
        return [_row_to_user(row) for row in rows]

    def get_users(self, uids: Sequence[str]) -> List[User]:
        """Fetch many users by uid using bounded `in` queries."""

        rows = select_in_chunks(self._client, _USERS_TABLE, "uid", uids, self._in_chunk_size)
        return [_row_to_user(row) for row in rows]

    def insert_user(self, user: User) -> None:
        response = self._client.table(_USERS_TABLE).insert(_user_to_row(user)).execute()
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to insert user: {error}")

    def insert_users_bulk(self, users: Sequence[User]) -> int:
        """
        Insert users in bounded batches.

        Returns:
            Number of users committed.

        Raises:
            PartialBatchFailure: if a batch fails; earlier batches stay committed.
        """

        def _write(batch: List[User]) -> None:
            payloads = [_user_to_row(user) for user in batch]
            response = self._client.table(_USERS_TABLE).insert(payloads).execute()
            error = getattr(response, "error", None)
            if error:
                raise RuntimeError(f"Failed to bulk insert {len(batch)} users: {error}")

        return write_in_batches(list(users), _write, self._write_batch_size)


__all__ = [
    "UserRepository",
]
