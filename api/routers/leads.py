"""
Leads API Endpoints.

Pipeline mutations: claim, stage moves, completion, review and settlement of a
single lead. Business failures come back as HTTP errors carrying the
pipeline error code.
"""

from datetime import timezone
from uuid import UUID

from fastapi import APIRouter, Depends

from api.dependencies import get_lead_pipeline_service
from api.errors import raise_for_failed_result
from api.models import (
    ClaimLeadRequest,
    CommissionPaidRequest,
    CorrectionRequest,
    LeadResponse,
    MoveStageRequest,
    RecordCompletionRequest,
)
from services.lead_pipeline_service import LeadOperationResult, LeadPipelineService

router = APIRouter()


def _lead_response(result: LeadOperationResult) -> LeadResponse:
    raise_for_failed_result(result)
    return LeadResponse.from_domain(result.lead)


@router.post(
    "/leads/{lead_id}/claim",
    response_model=LeadResponse,
    summary="Claim Lead",
    description="Take an unassigned lead. Exactly one of several concurrent claims succeeds."
)
def claim_lead(
    lead_id: UUID,
    request: ClaimLeadRequest,
    service: LeadPipelineService = Depends(get_lead_pipeline_service),
):
    """
    Claim a lead from the pool.

    **Errors:**
    - 404 `NOT_FOUND`: lead or seller does not exist
    - 409 `CONCURRENCY_CONFLICT`: the lead was just taken by another seller
    - 400 `VALIDATION_ERROR`: lead not claimable yet, pending user, or assignment limit reached
    """
    return _lead_response(service.claim_lead(lead_id, request.seller_uid))


@router.post(
    "/leads/{lead_id}/stage",
    response_model=LeadResponse,
    summary="Move Lead Stage",
)
def move_stage(
    lead_id: UUID,
    request: MoveStageRequest,
    service: LeadPipelineService = Depends(get_lead_pipeline_service),
):
    """
    Move a lead to another stage.

    Sellers may only move their own leads (403 otherwise); leaving
    `finalizado` is refused with 409 `INVALID_TRANSITION`. If the lead was
    finalized or reassigned after it was read, 409 `CONCURRENCY_CONFLICT`.
    """
    return _lead_response(service.move_stage(lead_id, request.stage_id, request.actor_uid))


@router.post(
    "/leads/{lead_id}/completion",
    response_model=LeadResponse,
    summary="Record Lead Completion",
)
def record_completion(
    lead_id: UUID,
    request: RecordCompletionRequest,
    service: LeadPipelineService = Depends(get_lead_pipeline_service),
):
    completed_at = request.completed_at
    if completed_at.tzinfo is not None:
        completed_at = completed_at.astimezone(timezone.utc)
    return _lead_response(
        service.record_completion(lead_id, completed_at, request.value_after_discount)
    )


@router.post(
    "/leads/{lead_id}/commission-paid",
    response_model=LeadResponse,
    summary="Set Commission Paid",
)
def set_commission_paid(
    lead_id: UUID,
    request: CommissionPaidRequest,
    service: LeadPipelineService = Depends(get_lead_pipeline_service),
):
    return _lead_response(service.set_commission_paid(lead_id, request.paid))


@router.post("/leads/{lead_id}/approve", response_model=LeadResponse, summary="Approve Lead")
def approve_lead(lead_id: UUID, service: LeadPipelineService = Depends(get_lead_pipeline_service)):
    return _lead_response(service.approve_lead(lead_id))


@router.post("/leads/{lead_id}/correction", response_model=LeadResponse, summary="Request Correction")
def request_correction(
    lead_id: UUID,
    request: CorrectionRequest,
    service: LeadPipelineService = Depends(get_lead_pipeline_service),
):
    return _lead_response(service.request_correction(lead_id, request.reason))
