"""
Team API Endpoints.

Downline, team leads and team totals for dashboards.
"""

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import get_pipeline_aggregator
from api.errors import raise_for_error
from api.models import (
    LeadResponse,
    TeamLeadsResponse,
    TeamMemberResponse,
    TeamResponse,
    TeamSummaryResponse,
)
from domain.errors import PipelineError
from services.pipeline_aggregator import PipelineAggregator, active_leads_count

router = APIRouter()


@router.get(
    "/team/{uid}",
    response_model=TeamResponse,
    summary="Get Team",
    description="Everyone below a user in the referral tree, with their level."
)
def get_team(uid: str, aggregator: PipelineAggregator = Depends(get_pipeline_aggregator)):
    """
    List a user's downline.

    Direct referrals are level 1, their referrals level 2, and so on.
    The user itself is not part of the list.
    """
    try:
        members = aggregator.get_team_for_user(uid)
        return TeamResponse(
            uid=uid,
            members=[TeamMemberResponse.from_domain(member) for member in members],
            total_count=len(members),
        )
    except PipelineError as e:
        raise_for_error(e)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to load team: {str(e)}"
        )


@router.get(
    "/team/{uid}/leads",
    response_model=TeamLeadsResponse,
    summary="Get Team Leads",
    description="Leads owned by a user or anyone in their downline."
)
def get_team_leads(uid: str, aggregator: PipelineAggregator = Depends(get_pipeline_aggregator)):
    try:
        leads = aggregator.get_leads_for_team(uid)
        return TeamLeadsResponse(
            uid=uid,
            leads=[LeadResponse.from_domain(lead) for lead in leads],
            total_count=len(leads),
            active_count=active_leads_count(leads),
        )
    except PipelineError as e:
        raise_for_error(e)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to load team leads: {str(e)}"
        )


@router.get(
    "/team/{uid}/summary",
    response_model=TeamSummaryResponse,
    summary="Get Team Summary",
    description="Team size, active leads and this month's finalized totals."
)
def get_team_summary(uid: str, aggregator: PipelineAggregator = Depends(get_pipeline_aggregator)):
    try:
        return TeamSummaryResponse.from_domain(aggregator.team_summary(uid))
    except PipelineError as e:
        raise_for_error(e)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to build team summary: {str(e)}"
        )
