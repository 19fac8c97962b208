"""
Lead repository (persistence).

This module provides *only* persistence operations for the Lead domain entity.
No business rules (stage transitions, commission, reconciliation) belong here.
Writes are filtered UPDATEs over the columns the caller owns, so preconditions
such as "still unassigned" or "not finalized" are checked by the store at
write time rather than against an earlier read.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, List, Mapping, Optional, Sequence, Tuple
from uuid import UUID

from domain.errors import PartialBatchFailure
from domain.lead import Lead
from domain.pipeline import CLAIMABLE_STAGE, CLAIMED_STAGE, UNASSIGNED, StageId
from domain.time import parse_optional_utc_datetime, parse_utc_datetime, to_iso_utc
from repositories.batching import (
    DEFAULT_IN_CHUNK_SIZE,
    DEFAULT_WRITE_BATCH_SIZE,
    fetch_all,
    select_in_chunks,
    write_in_batches,
)

# Supabase table name for Lead records.
# Keep this aligned with your database schema.
_LEADS_TABLE: str = "leads"

# Column sets each kind of mutation owns. An update writes only its own set.
STAGE_COLUMNS: Tuple[str, ...] = ("stage_id", "signed_at_utc", "completed_at_utc", "last_contact_utc")
COMPLETION_COLUMNS: Tuple[str, ...] = STAGE_COLUMNS + ("value_after_discount",)
REVIEW_COLUMNS: Tuple[str, ...] = STAGE_COLUMNS + ("needs_admin_approval", "correction_reason")
SETTLEMENT_COLUMNS: Tuple[str, ...] = ("commission_paid", "last_contact_utc")
OWNER_COLUMNS: Tuple[str, ...] = ("user_id", "seller_name")
RELEASE_COLUMNS: Tuple[str, ...] = OWNER_COLUMNS + ("stage_id", "last_contact_utc")


def _decimal(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    return Decimal(str(value))


def _lead_to_row(lead: Lead) -> dict[str, Any]:
    """Convert a domain Lead to a Supabase row payload."""

    return {
        # Identity and ownership
        "lead_id": str(lead.lead_id),
        "name": lead.name,
        "user_id": lead.user_id,
        "seller_name": lead.seller_name,
        "stage_id": lead.stage_id.value,

        # Money and consumption
        "value": str(lead.value),
        "value_after_discount": str(lead.value_after_discount),
        "kwh": str(lead.kwh),

        # Timestamps
        "created_at_utc": to_iso_utc(lead.created_at, name="created_at"),
        "last_contact_utc": to_iso_utc(lead.last_contact, name="last_contact"),
        "signed_at_utc": to_iso_utc(lead.signed_at, name="signed_at") if lead.signed_at else None,
        "completed_at_utc": to_iso_utc(lead.completed_at, name="completed_at") if lead.completed_at else None,

        # Settlement and review
        "commission_paid": lead.commission_paid,
        "needs_admin_approval": lead.needs_admin_approval,
        "correction_reason": lead.correction_reason,
    }


def _row_to_lead(row: Mapping[str, Any]) -> Lead:
    """Convert a Supabase row into a domain Lead."""

    return Lead(
        lead_id=UUID(str(row["lead_id"])),
        name=str(row.get("name") or ""),
        user_id=str(row.get("user_id") or UNASSIGNED),
        seller_name=str(row.get("seller_name") or ""),
        stage_id=StageId(str(row["stage_id"])),
        value=_decimal(row.get("value")),
        value_after_discount=_decimal(row.get("value_after_discount")),
        kwh=_decimal(row.get("kwh")),
        created_at=parse_utc_datetime(row["created_at_utc"]),
        last_contact=parse_utc_datetime(row.get("last_contact_utc") or row["created_at_utc"]),
        signed_at=parse_optional_utc_datetime(row.get("signed_at_utc")),
        completed_at=parse_optional_utc_datetime(row.get("completed_at_utc")),
        commission_paid=bool(row.get("commission_paid", False)),
        needs_admin_approval=bool(row.get("needs_admin_approval", False)),
        correction_reason=row.get("correction_reason"),
    )


class LeadRepository:
    """Reads and writes Lead rows through a Supabase client."""

    def __init__(
        self,
        client: Any,
        in_chunk_size: int = DEFAULT_IN_CHUNK_SIZE,
        write_batch_size: int = DEFAULT_WRITE_BATCH_SIZE,
    ) -> None:
        self._client = client
        self._in_chunk_size = in_chunk_size
        self._write_batch_size = write_batch_size

    def insert_lead(self, lead: Lead) -> None:
        """
        Insert a Lead into Supabase.

        Raises:
        - RuntimeError if Supabase returns an error response.
        """

        response = self._client.table(_LEADS_TABLE).insert(_lead_to_row(lead)).execute()
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to insert lead: {error}")

    def insert_leads_bulk(self, leads: Sequence[Lead]) -> int:
        """
        Insert many Leads, one bounded request per batch.

        Raises:
            PartialBatchFailure: if a batch fails; earlier batches stay committed.
        """

        def _write(batch: List[Lead]) -> None:
            payloads = [_lead_to_row(lead) for lead in batch]
            response = self._client.table(_LEADS_TABLE).insert(payloads).execute()
            error = getattr(response, "error", None)
            if error:
                raise RuntimeError(f"Failed to bulk insert {len(batch)} leads: {error}")

        return write_in_batches(list(leads), _write, self._write_batch_size)

    def get_lead(self, lead_id: UUID) -> Optional[Lead]:
        """
        Fetch a Lead by ID.

        Returns:
        - Lead if found
        - None if no record exists for the given ID
        """

        response = (
            self._client.table(_LEADS_TABLE)
            .select("*")
            .eq("lead_id", str(lead_id))
            .limit(1)
            .execute()
        )
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to fetch lead: {error}")

        rows = getattr(response, "data", None) or []
        if not rows:
            return None
        return _row_to_lead(rows[0])

    def list_leads(self) -> List[Lead]:
        """All leads, ordered by lead_id. Malformed rows raise."""

        return [_row_to_lead(row) for row in fetch_all(self._client, _LEADS_TABLE, order_by="lead_id")]

    def list_leads_lenient(self) -> Tuple[List[Lead], List[str]]:
        """
        All leads, skipping rows that cannot be parsed.

        Returns:
            (leads, errors) where each error names the offending row.
        """

        leads: List[Lead] = []
        errors: List[str] = []
        for row in fetch_all(self._client, _LEADS_TABLE, order_by="lead_id"):
            try:
                leads.append(_row_to_lead(row))
            except (KeyError, TypeError, ValueError, ArithmeticError) as e:
                errors.append(f"Lead {row.get('lead_id', '?')}: malformed row ({e})")
        return leads, errors

    def list_leads_for_owners(self, uids: Sequence[str]) -> List[Lead]:
        """Every lead whose owner is in `uids`, fetched in bounded `in` chunks."""

        rows = select_in_chunks(self._client, _LEADS_TABLE, "user_id", uids, self._in_chunk_size)
        return [_row_to_lead(row) for row in rows]

    def claim_if_unassigned(
        self,
        lead_id: UUID,
        seller_uid: str,
        seller_name: str,
        claimed_at: datetime,
    ) -> Optional[Lead]:
        """
        Assign a lead in one conditional UPDATE.

        The row is only written if it is still unassigned and in the claim
        stage when the store applies the update, so two racing claims cannot
        both succeed.

        Returns:
            The claimed Lead, or None if the precondition no longer held.
        """

        payload = {
            "user_id": seller_uid,
            "seller_name": seller_name,
            "stage_id": CLAIMED_STAGE.value,
            "last_contact_utc": to_iso_utc(claimed_at, name="claimed_at"),
        }

        response = (
            self._client.table(_LEADS_TABLE)
            .update(payload)
            .eq("lead_id", str(lead_id))
            .eq("user_id", UNASSIGNED)
            .eq("stage_id", CLAIMABLE_STAGE.value)
            .execute()
        )
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to claim lead: {error}")

        rows = getattr(response, "data", None) or []
        if not rows:
            return None
        return _row_to_lead(rows[0])

    def update_lead(
        self,
        lead: Lead,
        columns: Sequence[str],
        owner: Optional[str] = None,
        assigned_only: bool = False,
        unless_stage: Optional[StageId] = None,
    ) -> Optional[Lead]:
        """
        Write only `columns` of `lead` to its row, in one filtered UPDATE.

        Columns the caller does not own keep whatever the store holds, so a
        concurrent claim or completion is never overwritten by stale values.
        The optional guards are checked by the store at write time:
        - owner: the row must still belong to this uid;
        - assigned_only: the row must not be back in the claim pool;
        - unless_stage: the row must not be in this stage.

        Returns:
            The Lead as stored after the write, or None if no row matched
            (missing, or a guard no longer held).
        """

        row = _lead_to_row(lead)
        payload = {column: row[column] for column in columns}

        query = (
            self._client.table(_LEADS_TABLE)
            .update(payload)
            .eq("lead_id", str(lead.lead_id))
        )
        if owner is not None:
            query = query.eq("user_id", owner)
        if assigned_only:
            query = query.neq("user_id", UNASSIGNED)
        if unless_stage is not None:
            query = query.neq("stage_id", unless_stage.value)

        response = query.execute()
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to update lead: {error}")

        rows = getattr(response, "data", None) or []
        if not rows:
            return None
        return _row_to_lead(rows[0])

    def update_leads(
        self,
        leads: Sequence[Lead],
        columns: Sequence[str],
        owner: Optional[str] = None,
        assigned_only: bool = False,
        unless_stage: Optional[StageId] = None,
    ) -> List[UUID]:
        """
        Apply `update_lead` to many leads, one bounded batch at a time.

        Returns:
            Ids of the leads written, in input order. Rows whose guards no
            longer held are left untouched and omitted.

        Raises:
            PartialBatchFailure: if a write fails. Earlier writes stay
            committed and are listed in `written`.
        """

        written: List[UUID] = []

        def _write(batch: List[Lead]) -> None:
            for lead in batch:
                stored = self.update_lead(
                    lead,
                    columns,
                    owner=owner,
                    assigned_only=assigned_only,
                    unless_stage=unless_stage,
                )
                if stored is not None:
                    written.append(lead.lead_id)

        try:
            write_in_batches(list(leads), _write, self._write_batch_size)
        except PartialBatchFailure as e:
            raise PartialBatchFailure(
                committed=len(written),
                failed_batch=e.failed_batch,
                total_batches=e.total_batches,
                cause=e.cause,
                written=written,
            ) from e.cause
        return written


__all__ = [
    "COMPLETION_COLUMNS",
    "LeadRepository",
    "OWNER_COLUMNS",
    "RELEASE_COLUMNS",
    "REVIEW_COLUMNS",
    "SETTLEMENT_COLUMNS",
    "STAGE_COLUMNS",
]
