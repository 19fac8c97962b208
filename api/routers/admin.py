"""
Admin API Endpoints.

Maintenance jobs: seller reconciliation and returning a removed user's leads
to the pool. Both are safe to re-run.
"""

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import get_lead_pipeline_service, get_reconciliation_service
from api.models import BatchReportResponse, ReconciliationResponse
from services.lead_pipeline_service import LeadPipelineService
from services.seller_reconciliation_service import SellerReconciliationService

router = APIRouter()


@router.post(
    "/admin/reconcile-sellers",
    response_model=ReconciliationResponse,
    summary="Reconcile Sellers",
)
def reconcile_sellers(
    dry_run: bool = False,
    service: SellerReconciliationService = Depends(get_reconciliation_service),
):
    """
    Repair seller names and lead ownership.

    **Steps:**
    1. Re-attribute leads carrying a known historical seller alias
    2. Create placeholder sellers for names with no account
    3. Point each lead at the user its seller name resolves to

    With `dry_run=true` the counts are computed but nothing is written.
    A second run right after a successful one reports zero changes.
    """
    try:
        return ReconciliationResponse.from_domain(service.reconcile_sellers(dry_run=dry_run))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to reconcile sellers: {str(e)}"
        )


@router.post(
    "/admin/users/{uid}/release-leads",
    response_model=BatchReportResponse,
    summary="Release User Leads",
    description="Return a user's non-finalized leads to the unassigned pool."
)
def release_leads(uid: str, service: LeadPipelineService = Depends(get_lead_pipeline_service)):
    try:
        return BatchReportResponse.from_domain(service.release_leads_for_user(uid))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to release leads: {str(e)}"
        )
