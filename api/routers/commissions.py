"""
Commissions API Endpoints.

Per-lead payout breakdown, per-user earnings and bulk settlement.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import get_commission_service, get_lead_pipeline_service
from api.errors import raise_for_error
from api.models import (
    BalancesResponse,
    BatchReportResponse,
    CommissionResponse,
    EarningsResponse,
    SettleCommissionsRequest,
)
from domain.errors import PipelineError
from services.commission_service import CommissionService
from services.lead_pipeline_service import LeadPipelineService

router = APIRouter()


@router.get(
    "/leads/{lead_id}/commission",
    response_model=CommissionResponse,
    summary="Compute Lead Commission",
    description="Personal commission for the owner and network commission for up to 4 upline levels."
)
def get_lead_commission(lead_id: UUID, service: CommissionService = Depends(get_commission_service)):
    """
    Compute the payouts generated by one finalized lead.

    **Example response:**
    ```json
    {
      "lead_id": "123e4567-e89b-12d3-a456-426614174000",
      "owner_uid": "seller-c",
      "personal": "400",
      "network": [
        {"uid": "seller-b", "level": 1, "amount": "50"},
        {"uid": "seller-a", "level": 2, "amount": "30"}
      ],
      "total": "480"
    }
    ```
    """
    try:
        return CommissionResponse.from_domain(service.compute_commission(lead_id))
    except PipelineError as e:
        raise_for_error(e)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to compute commission: {str(e)}"
        )


@router.get(
    "/users/{uid}/earnings/month",
    response_model=EarningsResponse,
    summary="This Month's Gains",
)
def get_monthly_gains(uid: str, service: CommissionService = Depends(get_commission_service)):
    try:
        return EarningsResponse.from_domain(service.monthly_gains(uid))
    except PipelineError as e:
        raise_for_error(e)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to compute monthly gains: {str(e)}"
        )


@router.get(
    "/users/{uid}/balances",
    response_model=BalancesResponse,
    summary="Commission Balances",
    description="All-time commission split into pending and settled."
)
def get_balances(uid: str, service: CommissionService = Depends(get_commission_service)):
    try:
        return BalancesResponse.from_domain(uid, service.balances(uid))
    except PipelineError as e:
        raise_for_error(e)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to compute balances: {str(e)}"
        )


@router.post(
    "/commissions/settle",
    response_model=BatchReportResponse,
    summary="Settle Commissions",
    description="Mark many finalized leads as paid. Rows that cannot be settled are reported, not fatal."
)
def settle_commissions(
    request: SettleCommissionsRequest,
    service: LeadPipelineService = Depends(get_lead_pipeline_service),
):
    try:
        report = service.settle_commissions(request.lead_ids, paid=request.paid)
        return BatchReportResponse.from_domain(report)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to settle commissions: {str(e)}"
        )
