"""
FastAPI dependency providers.

Every request gets repositories and services built from the shared settings
and the process-wide Supabase client. Tests override `get_store_client`
(and optionally `get_settings`) to run against an in-memory store.
"""

from functools import lru_cache
from typing import Any

from fastapi import Depends

from repositories.client import get_supabase
from repositories.lead_repository import LeadRepository
from repositories.user_repository import UserRepository
from services.commission_service import CommissionService
from services.config import PipelineSettings
from services.lead_pipeline_service import LeadPipelineService
from services.pipeline_aggregator import PipelineAggregator
from services.seller_reconciliation_service import SellerReconciliationService


@lru_cache
def get_settings() -> PipelineSettings:
    return PipelineSettings.from_env()


def get_store_client() -> Any:
    return get_supabase()


def get_lead_repository(
    client: Any = Depends(get_store_client),
    settings: PipelineSettings = Depends(get_settings),
) -> LeadRepository:
    return LeadRepository(
        client,
        in_chunk_size=settings.in_query_chunk_size,
        write_batch_size=settings.write_batch_size,
    )


def get_user_repository(
    client: Any = Depends(get_store_client),
    settings: PipelineSettings = Depends(get_settings),
) -> UserRepository:
    return UserRepository(
        client,
        in_chunk_size=settings.in_query_chunk_size,
        write_batch_size=settings.write_batch_size,
    )


def get_lead_pipeline_service(
    leads: LeadRepository = Depends(get_lead_repository),
    users: UserRepository = Depends(get_user_repository),
) -> LeadPipelineService:
    return LeadPipelineService(leads, users)


def get_commission_service(
    leads: LeadRepository = Depends(get_lead_repository),
    users: UserRepository = Depends(get_user_repository),
    settings: PipelineSettings = Depends(get_settings),
) -> CommissionService:
    return CommissionService(leads, users, settings)


def get_pipeline_aggregator(
    leads: LeadRepository = Depends(get_lead_repository),
    users: UserRepository = Depends(get_user_repository),
    settings: PipelineSettings = Depends(get_settings),
) -> PipelineAggregator:
    return PipelineAggregator(leads, users, settings)


def get_reconciliation_service(
    leads: LeadRepository = Depends(get_lead_repository),
    users: UserRepository = Depends(get_user_repository),
    settings: PipelineSettings = Depends(get_settings),
) -> SellerReconciliationService:
    return SellerReconciliationService(leads, users, settings)
