"""
API Request and Response Models.

Pydantic models for validating API requests and serializing responses.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from domain.commission import CommissionBreakdown
from domain.lead import Lead
from domain.pipeline import StageId
from domain.referral_graph import TeamMember
from services.commission_service import Balances, Earnings
from services.pipeline_aggregator import TeamSummary
from services.seller_reconciliation_service import ReconciliationReport
from services.lead_pipeline_service import BatchReport


# ============================================================================
# Team Models
# ============================================================================

class TeamMemberResponse(BaseModel):
    """One user in a downline, with its distance from the viewing user."""
    uid: str
    display_name: Optional[str] = None
    role: str
    level: int
    upline_uid: Optional[str] = None
    mlm_enabled: bool

    @classmethod
    def from_domain(cls, member: TeamMember) -> "TeamMemberResponse":
        user = member.user
        return cls(
            uid=user.uid,
            display_name=user.display_name,
            role=user.role.value,
            level=member.level,
            upline_uid=user.upline_uid,
            mlm_enabled=user.mlm_enabled,
        )


class TeamResponse(BaseModel):
    uid: str
    members: List[TeamMemberResponse]
    total_count: int


class TeamSummaryResponse(BaseModel):
    uid: str
    team_size: int
    active_leads: int
    finalized_this_month: int
    value_finalized_this_month: Decimal

    @classmethod
    def from_domain(cls, summary: TeamSummary) -> "TeamSummaryResponse":
        return cls(
            uid=summary.uid,
            team_size=summary.team_size,
            active_leads=summary.active_leads,
            finalized_this_month=summary.finalized_this_month,
            value_finalized_this_month=summary.value_finalized_this_month,
        )


# ============================================================================
# Lead Models
# ============================================================================

class LeadResponse(BaseModel):
    """Lead as seen by pipeline screens."""
    lead_id: UUID
    name: str
    user_id: str
    seller_name: str
    stage_id: StageId
    value: Decimal
    value_after_discount: Decimal
    kwh: Decimal
    created_at: datetime
    last_contact: datetime
    signed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    commission_paid: bool
    needs_admin_approval: bool
    correction_reason: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "lead_id": "123e4567-e89b-12d3-a456-426614174000",
                "name": "Padaria Central",
                "user_id": "seller-uid-1",
                "seller_name": "Maria Souza",
                "stage_id": "contato",
                "value": "546.56",
                "value_after_discount": "464.57",
                "kwh": "500",
                "created_at": "2026-10-01T12:00:00Z",
                "last_contact": "2026-10-02T09:30:00Z",
                "signed_at": None,
                "completed_at": None,
                "commission_paid": False,
                "needs_admin_approval": False,
                "correction_reason": None,
            }
        }

    @classmethod
    def from_domain(cls, lead: Lead) -> "LeadResponse":
        return cls(
            lead_id=lead.lead_id,
            name=lead.name,
            user_id=lead.user_id,
            seller_name=lead.seller_name,
            stage_id=lead.stage_id,
            value=lead.value,
            value_after_discount=lead.value_after_discount,
            kwh=lead.kwh,
            created_at=lead.created_at,
            last_contact=lead.last_contact,
            signed_at=lead.signed_at,
            completed_at=lead.completed_at,
            commission_paid=lead.commission_paid,
            needs_admin_approval=lead.needs_admin_approval,
            correction_reason=lead.correction_reason,
        )


class TeamLeadsResponse(BaseModel):
    uid: str
    leads: List[LeadResponse]
    total_count: int
    active_count: int


class ClaimLeadRequest(BaseModel):
    seller_uid: str = Field(..., min_length=1, description="User taking the lead")


class MoveStageRequest(BaseModel):
    stage_id: StageId
    actor_uid: Optional[str] = Field(
        None,
        description="User performing the move; omitted for trusted system callers"
    )


class RecordCompletionRequest(BaseModel):
    completed_at: datetime
    value_after_discount: Decimal = Field(..., ge=0)


class CommissionPaidRequest(BaseModel):
    paid: bool = True


class CorrectionRequest(BaseModel):
    reason: str = Field(..., min_length=1)


# ============================================================================
# Commission Models
# ============================================================================

class NetworkCreditResponse(BaseModel):
    uid: str
    level: int
    amount: Decimal


class CommissionResponse(BaseModel):
    """Every payout generated by one finalized lead."""
    lead_id: UUID
    owner_uid: str
    personal: Decimal
    network: List[NetworkCreditResponse]
    total: Decimal

    @classmethod
    def from_domain(cls, breakdown: CommissionBreakdown) -> "CommissionResponse":
        return cls(
            lead_id=breakdown.lead_id,
            owner_uid=breakdown.owner_uid,
            personal=breakdown.personal,
            network=[
                NetworkCreditResponse(uid=credit.uid, level=credit.level, amount=credit.amount)
                for credit in breakdown.network
            ],
            total=breakdown.total,
        )


class EarningsResponse(BaseModel):
    personal: Decimal
    network: Decimal
    total: Decimal
    leads_count: int

    @classmethod
    def from_domain(cls, earnings: Earnings) -> "EarningsResponse":
        return cls(
            personal=earnings.personal,
            network=earnings.network,
            total=earnings.total,
            leads_count=earnings.leads_count,
        )


class BalancesResponse(BaseModel):
    uid: str
    pending: EarningsResponse
    settled: EarningsResponse

    @classmethod
    def from_domain(cls, uid: str, balances: Balances) -> "BalancesResponse":
        return cls(
            uid=uid,
            pending=EarningsResponse.from_domain(balances.pending),
            settled=EarningsResponse.from_domain(balances.settled),
        )


class SettleCommissionsRequest(BaseModel):
    lead_ids: List[UUID] = Field(..., min_length=1)
    paid: bool = True


# ============================================================================
# Admin / Batch Models
# ============================================================================

class BatchReportResponse(BaseModel):
    success: bool
    summary: str
    processed: int
    errors: List[str]

    @classmethod
    def from_domain(cls, report: BatchReport) -> "BatchReportResponse":
        return cls(
            success=report.success,
            summary=report.summary,
            processed=report.processed,
            errors=list(report.errors),
        )


class ReconciliationResponse(BaseModel):
    success: bool
    summary: str
    reattributed: int
    users_created: int
    synced: int
    errors: List[str]
    dry_run: bool

    class Config:
        json_schema_extra = {
            "example": {
                "success": True,
                "summary": "3 lead(s) re-attributed, 1 seller(s) created, 5 lead(s) synced to their owner.",
                "reattributed": 3,
                "users_created": 1,
                "synced": 5,
                "errors": [],
                "dry_run": False,
            }
        }

    @classmethod
    def from_domain(cls, report: ReconciliationReport) -> "ReconciliationResponse":
        return cls(
            success=report.success,
            summary=report.summary,
            reattributed=report.reattributed,
            users_created=report.users_created,
            synced=report.synced,
            errors=list(report.errors),
            dry_run=report.dry_run,
        )
