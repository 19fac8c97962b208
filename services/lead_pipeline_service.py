"""
Lead pipeline service.

Handles:
- Claiming unassigned leads (exactly-once, via a conditional update)
- Stage moves with role/ownership checks
- Recording completion (idempotent)
- Commission settlement, single and bulk
- Admin review (approve / request correction)
- Returning a removed seller's leads to the claim pool

Single-lead operations never raise for business failures: they return a
LeadOperationResult carrying a stable error code, so UI layers can render a
specific message. Store failures (RuntimeError) still propagate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Iterable, List, Optional, Sequence, Union
from uuid import UUID

from domain.errors import (
    ConcurrencyConflict,
    NotFoundError,
    PartialBatchFailure,
    PermissionDeniedError,
    PipelineError,
    ValidationError,
)
from domain.lead import Lead
from domain.pipeline import StageId
from domain.time import require_utc_timestamp, utc_now
from domain.user import User
from repositories.batching import unique_in_order
from repositories.lead_repository import (
    COMPLETION_COLUMNS,
    RELEASE_COLUMNS,
    REVIEW_COLUMNS,
    SETTLEMENT_COLUMNS,
    STAGE_COLUMNS,
    LeadRepository,
)
from repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class LeadOperationResult:
    """
    Result of a single-lead operation.

    success: True if the lead was written (or already in the requested state)
    lead: the lead as stored after the operation (None on failure)
    error_code: stable code from the error taxonomy (None on success)
    error_message: human-readable reason (None on success)
    """
    success: bool
    lead: Optional[Lead]
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def ok(cls, lead: Lead) -> "LeadOperationResult":
        return cls(success=True, lead=lead)

    @classmethod
    def failed(cls, error: PipelineError) -> "LeadOperationResult":
        return cls(success=False, lead=None, error_code=error.code, error_message=str(error))


@dataclass(frozen=True, slots=True)
class BatchReport:
    """
    Result of a batch job over many leads.

    success: False only when a write batch failed (earlier batches stay committed)
    processed: number of leads actually written
    errors: per-row problems that were skipped, plus the batch failure if any
    """
    success: bool
    summary: str
    processed: int
    errors: List[str] = field(default_factory=list)


def _seller_display_name(seller: User) -> str:
    return (seller.display_name or "").strip() or seller.email or seller.uid


class LeadPipelineService:
    """Mutations on leads that enforce the pipeline state machine."""

    def __init__(
        self,
        leads: LeadRepository,
        users: UserRepository,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._leads = leads
        self._users = users
        self._clock = clock

    # ------------------------------------------------------------------
    # Single-lead operations
    # ------------------------------------------------------------------

    def claim_lead(self, lead_id: UUID, seller_uid: str) -> LeadOperationResult:
        """
        Assign an unassigned lead to `seller_uid` and move it to `contato`.

        Exactly one of several racing claims succeeds; the others get
        CONCURRENCY_CONFLICT and the lead keeps the winner as owner. A lost
        race is reported, never retried.
        """
        try:
            return LeadOperationResult.ok(self._claim(lead_id, seller_uid))
        except PipelineError as e:
            return LeadOperationResult.failed(e)

    def move_stage(
        self,
        lead_id: UUID,
        new_stage: Union[StageId, str],
        actor_uid: Optional[str] = None,
    ) -> LeadOperationResult:
        """
        Move a lead to `new_stage`.

        actor_uid=None means a trusted system caller. Admin roles may move any
        lead; everyone else only leads they own. Leaving `finalizado` is refused.
        """
        try:
            return LeadOperationResult.ok(self._move(lead_id, new_stage, actor_uid))
        except PipelineError as e:
            return LeadOperationResult.failed(e)

    def record_completion(
        self,
        lead_id: UUID,
        completed_at: datetime,
        value_after_discount: Union[Decimal, str, int],
    ) -> LeadOperationResult:
        """
        Finalize a lead with its completion date and final value.

        Idempotent: repeating the call with the same arguments rewrites the
        same values, and monthly aggregates key off completed_at.
        """
        try:
            return LeadOperationResult.ok(self._complete(lead_id, completed_at, value_after_discount))
        except PipelineError as e:
            return LeadOperationResult.failed(e)

    def set_commission_paid(self, lead_id: UUID, paid: bool = True) -> LeadOperationResult:
        """Flip commission_paid on a finalized lead (settled vs. pending)."""
        try:
            lead = self._require_lead(lead_id)
            updated = self._write(lead.with_commission_paid(paid, self._clock()), SETTLEMENT_COLUMNS)
            logger.info(
                "Commission status updated",
                extra={"lead_id": str(lead_id), "commission_paid": paid},
            )
            return LeadOperationResult.ok(updated)
        except PipelineError as e:
            return LeadOperationResult.failed(e)

    def approve_lead(self, lead_id: UUID) -> LeadOperationResult:
        """Admin approval: move to `assinado` and clear the review flags."""
        try:
            lead = self._require_lead(lead_id)
            updated = self._write(
                lead.approved(self._clock()),
                REVIEW_COLUMNS,
                unless_stage=StageId.FINALIZADO,
            )
            logger.info("Lead approved", extra={"lead_id": str(lead_id)})
            return LeadOperationResult.ok(updated)
        except PipelineError as e:
            return LeadOperationResult.failed(e)

    def request_correction(self, lead_id: UUID, reason: str) -> LeadOperationResult:
        """Send a lead back to `contato` with the reviewer's reason."""
        try:
            lead = self._require_lead(lead_id)
            updated = self._write(
                lead.correction_requested(reason, self._clock()),
                REVIEW_COLUMNS,
                unless_stage=StageId.FINALIZADO,
            )
            logger.info("Lead correction requested", extra={"lead_id": str(lead_id)})
            return LeadOperationResult.ok(updated)
        except PipelineError as e:
            return LeadOperationResult.failed(e)

    # ------------------------------------------------------------------
    # Batch operations
    # ------------------------------------------------------------------

    def settle_commissions(self, lead_ids: Iterable[UUID], paid: bool = True) -> BatchReport:
        """
        Mark many finalized leads as paid (or unpaid).

        Leads that are missing or not finalized are reported and skipped; the
        rest are written in bounded batches.
        """

        errors: List[str] = []
        updated: List[Lead] = []
        now = self._clock()

        for lead_id in unique_in_order(lead_ids):
            lead = self._leads.get_lead(lead_id)
            if lead is None:
                errors.append(f"Lead {lead_id}: not found")
                continue
            if lead.commission_paid == paid:
                continue
            try:
                updated.append(lead.with_commission_paid(paid, now))
            except ValidationError as e:
                errors.append(f"Lead {lead_id}: {e}")

        for error in errors:
            logger.warning("Commission settlement skipped a lead", extra={"detail": error})

        status = "paid" if paid else "unpaid"
        return self._write_batch_report(
            updated,
            SETTLEMENT_COLUMNS,
            errors,
            describe=lambda count: f"{count} lead(s) marked as {status}.",
        )

    def release_leads_for_user(self, uid: str) -> BatchReport:
        """
        Return every non-finalized lead owned by `uid` to the claim pool.

        Finalized leads keep their owner so commission history stays intact.
        A lead finalized or reassigned after the read is left as stored.
        """

        now = self._clock()
        owned = self._leads.list_leads_for_owners([uid])
        released = [lead.released(now) for lead in owned if lead.stage_id is not StageId.FINALIZADO]

        return self._write_batch_report(
            released,
            RELEASE_COLUMNS,
            [],
            describe=lambda count: f"{count} lead(s) returned to the unassigned pool from user {uid}.",
            owner=uid,
            unless_stage=StageId.FINALIZADO,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _claim(self, lead_id: UUID, seller_uid: str) -> Lead:
        seller = self._users.get_user(seller_uid)
        if seller is None:
            raise NotFoundError("User", seller_uid)
        if not seller.can_claim():
            raise ValidationError(f"User {seller_uid} is pending setup and cannot claim leads")

        lead = self._require_lead(lead_id)
        if not lead.is_unassigned:
            raise ConcurrencyConflict("This lead was just taken by another seller")

        now = self._clock()
        seller_name = _seller_display_name(seller)
        # Validates the claim stage before touching the store.
        lead.claimed_by(seller.uid, seller_name, now)

        self._check_assignment_limit(seller)

        claimed = self._leads.claim_if_unassigned(lead_id, seller.uid, seller_name, now)
        if claimed is None:
            logger.warning(
                "Lead claim lost the race",
                extra={"lead_id": str(lead_id), "seller_uid": seller_uid},
            )
            raise ConcurrencyConflict("This lead was just taken by another seller")

        logger.info(
            "Lead claimed",
            extra={"lead_id": str(lead_id), "seller_uid": seller_uid},
        )
        return claimed

    def _check_assignment_limit(self, seller: User) -> None:
        if seller.is_admin or seller.assignment_limit is None:
            return

        active = [lead for lead in self._leads.list_leads_for_owners([seller.uid]) if lead.is_active]
        if len(active) >= seller.assignment_limit:
            raise ValidationError(
                f"Assignment limit reached: {len(active)} active lead(s), limit {seller.assignment_limit}"
            )

    def _move(self, lead_id: UUID, new_stage: Union[StageId, str], actor_uid: Optional[str]) -> Lead:
        try:
            stage = StageId(new_stage)
        except ValueError:
            raise ValidationError(f"Unknown stage: {new_stage!r}") from None

        lead = self._require_lead(lead_id)

        if actor_uid is not None:
            actor = self._users.get_user(actor_uid)
            if actor is None:
                raise NotFoundError("User", actor_uid)
            if not actor.is_admin and lead.user_id != actor.uid:
                raise PermissionDeniedError(f"User {actor_uid} does not own lead {lead_id}")

        # Sellers may only write while they still own the lead.
        owner = None if actor_uid is None or actor.is_admin else actor.uid
        moved = self._write(
            lead.moved_to(stage, self._clock()),
            STAGE_COLUMNS,
            owner=owner,
            unless_stage=_unless_finalized(lead),
        )

        logger.info(
            "Lead stage moved",
            extra={
                "lead_id": str(lead_id),
                "from_stage": lead.stage_id.value,
                "to_stage": stage.value,
                "actor_uid": actor_uid,
            },
        )
        return moved

    def _complete(
        self,
        lead_id: UUID,
        completed_at: datetime,
        value_after_discount: Union[Decimal, str, int],
    ) -> Lead:
        try:
            require_utc_timestamp("completed_at", completed_at)
        except ValueError as e:
            raise ValidationError(str(e)) from None

        try:
            value = Decimal(str(value_after_discount))
        except InvalidOperation:
            raise ValidationError(f"value_after_discount is not a number: {value_after_discount!r}") from None
        if not value.is_finite():
            raise ValidationError("value_after_discount must be finite")

        lead = self._require_lead(lead_id)
        completed = self._write(
            lead.completed(completed_at, value, self._clock()),
            COMPLETION_COLUMNS,
            assigned_only=True,
        )

        logger.info(
            "Lead completion recorded",
            extra={"lead_id": str(lead_id), "completed_at": completed_at.isoformat()},
        )
        return completed

    def _require_lead(self, lead_id: UUID) -> Lead:
        lead = self._leads.get_lead(lead_id)
        if lead is None:
            raise NotFoundError("Lead", lead_id)
        return lead

    def _write(self, lead: Lead, columns: Sequence[str], **guards: Any) -> Lead:
        """Write `columns` of `lead`; the stored lead is returned."""

        stored = self._leads.update_lead(lead, columns, **guards)
        if stored is not None:
            return stored
        if self._leads.get_lead(lead.lead_id) is None:
            raise NotFoundError("Lead", lead.lead_id)
        logger.warning(
            "Lead changed before the update was applied",
            extra={"lead_id": str(lead.lead_id), "guards": guards},
        )
        raise ConcurrencyConflict(f"Lead {lead.lead_id} changed while it was being updated; reload and retry")

    def _write_batch_report(
        self,
        leads: List[Lead],
        columns: Sequence[str],
        errors: List[str],
        describe: Callable[[int], str],
        **guards: Any,
    ) -> BatchReport:
        try:
            written = self._leads.update_leads(leads, columns, **guards)
        except PartialBatchFailure as e:
            return BatchReport(
                success=False,
                summary=describe(e.committed) + " Stopped early; re-run to finish.",
                processed=e.committed,
                errors=errors + [str(e)],
            )

        written_ids = set(written)
        for lead in leads:
            if lead.lead_id not in written_ids:
                errors.append(f"Lead {lead.lead_id}: changed since it was read, left untouched")
                logger.warning("Batch write skipped a changed lead", extra={"lead_id": str(lead.lead_id)})

        return BatchReport(
            success=True,
            summary=describe(len(written)),
            processed=len(written),
            errors=errors,
        )


def _unless_finalized(lead: Lead) -> Optional[StageId]:
    """Guard for stage writes: a lead finalized after the read stays finalized."""

    return None if lead.stage_id is StageId.FINALIZADO else StageId.FINALIZADO


__all__ = [
    "BatchReport",
    "LeadOperationResult",
    "LeadPipelineService",
]
