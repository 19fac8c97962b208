"""
Domain: Lead entity.

Contract excerpts implemented here:
- A Lead is identified by lead_id (UUID) and owned by a User uid, or by the
  sentinel "unassigned" while it sits in the claim pool.
- seller_name is a display cache of the owner's name; it is only ever changed
  together with user_id.
- Commission is computed only once stage_id == finalizado and completed_at is set.
- commission_paid distinguishes pending vs. settled commission without deleting history.

Leads are immutable values: every mutation returns a new Lead, the original is
left untouched. All timestamps must be passed explicitly and be UTC.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from .errors import ValidationError
from .pipeline import (
    CLAIMABLE_STAGE,
    CLAIMED_STAGE,
    SYSTEM_SELLER_NAME,
    UNASSIGNED,
    StageId,
    check_transition,
    is_active,
    is_commission_stage,
)
from .time import require_utc_timestamp

# Conversion factor from monthly kWh consumption to contract value (BRL).
KWH_TO_VALUE_FACTOR: Decimal = Decimal("1.093113")


def compute_lead_value(kwh: Decimal, discount_percentage: Decimal = Decimal("0")) -> tuple[Decimal, Decimal]:
    """
    Derive (value, value_after_discount) from consumption and discount.

    Raises:
        ValidationError: if kwh is negative or the discount is outside 0..100.
    """

    if kwh < 0:
        raise ValidationError("kwh must be >= 0")
    if discount_percentage < 0 or discount_percentage > 100:
        raise ValidationError("discount_percentage must be between 0 and 100")

    value = kwh * KWH_TO_VALUE_FACTOR
    value_after_discount = value * (1 - discount_percentage / Decimal("100"))
    return value, value_after_discount


@dataclass(frozen=True, slots=True)
class Lead:
    """
    Pure domain entity for a pipeline Lead.
    """

    lead_id: UUID
    name: str
    user_id: str
    seller_name: str
    stage_id: StageId

    created_at: datetime
    last_contact: datetime

    value: Decimal = Decimal("0")
    value_after_discount: Decimal = Decimal("0")
    kwh: Decimal = Decimal("0")

    signed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    commission_paid: bool = False

    needs_admin_approval: bool = False
    correction_reason: Optional[str] = None

    def __post_init__(self) -> None:
        require_utc_timestamp("created_at", self.created_at)
        require_utc_timestamp("last_contact", self.last_contact)
        if self.signed_at is not None:
            require_utc_timestamp("signed_at", self.signed_at)
        if self.completed_at is not None:
            require_utc_timestamp("completed_at", self.completed_at)
        if not self.user_id:
            raise ValueError("user_id must be a uid or 'unassigned'")
        if self.value < 0 or self.value_after_discount < 0 or self.kwh < 0:
            raise ValueError("value, value_after_discount and kwh must be >= 0")

    @property
    def is_unassigned(self) -> bool:
        return self.user_id == UNASSIGNED

    @property
    def is_active(self) -> bool:
        return is_active(self.stage_id)

    @property
    def is_commissionable(self) -> bool:
        """Finalized with a completion date: the only state commission is computed for."""

        return is_commission_stage(self.stage_id) and self.completed_at is not None

    def claimed_by(self, seller_uid: str, seller_name: str, at: datetime) -> "Lead":
        """
        Return the lead owned by `seller_uid` and moved to the first working stage.

        Raises:
            ValidationError: if the lead is not in the claim pool.
        """

        require_utc_timestamp("at", at)
        if not self.is_unassigned:
            raise ValidationError("Lead is already assigned")
        if self.stage_id is not CLAIMABLE_STAGE:
            raise ValidationError(
                f"Lead is in stage '{self.stage_id.value}', only '{CLAIMABLE_STAGE.value}' leads can be claimed"
            )
        return replace(
            self,
            user_id=seller_uid,
            seller_name=seller_name,
            stage_id=CLAIMED_STAGE,
            last_contact=at,
        )

    def moved_to(self, stage: StageId, at: datetime) -> "Lead":
        """
        Return the lead in `stage`.

        Side effects on the returned value:
        - entering `assinado` stamps signed_at if unset;
        - entering `finalizado` stamps completed_at if unset.

        Raises:
            InvalidTransitionError: when leaving `finalizado`.
            ValidationError: when finalizing a lead that has no owner.
        """

        require_utc_timestamp("at", at)
        check_transition(self.stage_id, stage)
        if stage is StageId.FINALIZADO and self.is_unassigned:
            raise ValidationError("Unassigned leads cannot be finalized; claim or assign the lead first")

        signed_at = self.signed_at
        completed_at = self.completed_at
        if stage is StageId.ASSINADO and signed_at is None:
            signed_at = at
        if stage is StageId.FINALIZADO and completed_at is None:
            completed_at = at

        return replace(
            self,
            stage_id=stage,
            signed_at=signed_at,
            completed_at=completed_at,
            last_contact=at,
        )

    def completed(self, completed_at: datetime, value_after_discount: Decimal, at: datetime) -> "Lead":
        """
        Return the lead finalized at `completed_at` with its final value.

        Calling this twice with the same arguments yields equal leads (idempotent).

        Raises:
            ValidationError: if the lead has no owner to earn the commission.
        """

        require_utc_timestamp("completed_at", completed_at)
        require_utc_timestamp("at", at)
        if self.is_unassigned:
            raise ValidationError("Unassigned leads cannot be finalized; claim or assign the lead first")
        if value_after_discount < 0:
            raise ValidationError("value_after_discount must be >= 0")
        return replace(
            self,
            stage_id=StageId.FINALIZADO,
            completed_at=completed_at,
            value_after_discount=value_after_discount,
            last_contact=at,
        )

    def with_commission_paid(self, paid: bool, at: datetime) -> "Lead":
        require_utc_timestamp("at", at)
        if not self.is_commissionable:
            raise ValidationError("Commission can only be settled on finalized leads")
        return replace(self, commission_paid=paid, last_contact=at)

    def approved(self, at: datetime) -> "Lead":
        """Admin approval: the deal is signed and no longer awaits review."""

        moved = self.moved_to(StageId.ASSINADO, at)
        return replace(moved, needs_admin_approval=False, correction_reason="")

    def correction_requested(self, reason: str, at: datetime) -> "Lead":
        if not reason or not reason.strip():
            raise ValidationError("A correction reason is required")
        moved = self.moved_to(StageId.CONTATO, at)
        return replace(moved, needs_admin_approval=False, correction_reason=reason.strip())

    def released(self, at: datetime) -> "Lead":
        """Return the lead to the unassigned claim pool."""

        require_utc_timestamp("at", at)
        if self.stage_id is StageId.FINALIZADO:
            raise ValidationError("Finalized leads keep their owner")
        return replace(
            self,
            user_id=UNASSIGNED,
            seller_name=SYSTEM_SELLER_NAME,
            stage_id=StageId.PARA_ATRIBUIR,
            last_contact=at,
        )

    def reattributed(self, seller_name: str, user_id: Optional[str] = None) -> "Lead":
        """Rewrite the seller display cache, and the owner when a uid is known."""

        return replace(
            self,
            seller_name=seller_name,
            user_id=user_id if user_id is not None else self.user_id,
        )


__all__ = [
    "KWH_TO_VALUE_FACTOR",
    "Lead",
    "compute_lead_value",
]
