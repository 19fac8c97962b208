"""
Domain: User accounts in the referral forest.

Contract excerpts implemented here:
- A User is identified by uid and carries a closed role.
- `upline_uid` is a weak back-link to the referrer; it does not own anything.
- `commission_rate` is a percentage; when absent the default rate applies.
- `mlm_enabled` gates whether this user earns network commission.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from .time import require_utc_timestamp


class UserRole(str, Enum):
    ADMIN = "admin"
    SUPERADMIN = "superadmin"
    SELLER = "seller"
    PROSPECTOR = "prospector"
    LAWYER = "lawyer"
    PENDING = "pending"

    @classmethod
    def parse(cls, value: str) -> "UserRole":
        """
        Parse a stored role, accepting the legacy Portuguese spellings.

        Raises:
            ValueError: for anything outside the closed set.
        """

        text = (value or "").strip().lower()
        return cls(_LEGACY_ROLE_NAMES.get(text, text))


# Stored role names written before roles were normalized.
_LEGACY_ROLE_NAMES: dict[str, str] = {
    "vendedor": "seller",
    "advogado": "lawyer",
    "pending_setup": "pending",
}

ADMIN_ROLES: frozenset[UserRole] = frozenset({UserRole.ADMIN, UserRole.SUPERADMIN})


@dataclass(frozen=True, slots=True)
class User:
    """
    User record as read from the store.

    Notes:
    - Balances are denormalized totals maintained by the payments side;
      this core only creates users with zero balances.
    """

    uid: str
    display_name: Optional[str]
    role: UserRole

    email: Optional[str] = None
    upline_uid: Optional[str] = None
    commission_rate: Optional[Decimal] = None
    mlm_enabled: bool = False
    assignment_limit: Optional[int] = None

    personal_balance: Decimal = Decimal("0")
    mlm_balance: Decimal = Decimal("0")
    photo_url: Optional[str] = None

    created_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if not self.uid:
            raise ValueError("uid must be a non-empty string")
        if self.commission_rate is not None and self.commission_rate < 0:
            raise ValueError("commission_rate must be >= 0")
        if self.assignment_limit is not None and self.assignment_limit < 0:
            raise ValueError("assignment_limit must be >= 0")
        if self.created_at is not None:
            require_utc_timestamp("created_at", self.created_at)

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    def can_claim(self) -> bool:
        """Users still pending setup cannot take leads."""
        return self.role is not UserRole.PENDING


__all__ = [
    "ADMIN_ROLES",
    "User",
    "UserRole",
]
