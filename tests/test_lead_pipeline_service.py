"""
Tests for `services/lead_pipeline_service.py`.

Covers contract rules:
- claim_lead is exactly-once under concurrent claims; the loser gets
  CONCURRENCY_CONFLICT and the winner stays owner.
- Failures come back as LeadOperationResult, never as exceptions.
- Sellers may only move leads they own; admins may move any lead.
- record_completion is idempotent.
- Batch jobs report per-row errors and partial batch failures.
- Writes cover only the columns an operation owns; changes another writer
  makes between a read and its write survive.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from domain.pipeline import StageId, SYSTEM_SELLER_NAME, UNASSIGNED
from domain.user import UserRole
from repositories.lead_repository import LeadRepository
from services.lead_pipeline_service import LeadPipelineService
from services.pipeline_aggregator import value_finalized_this_month

COMPLETED = datetime(2026, 10, 5, 10, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def service(lead_repo, user_repo, now) -> LeadPipelineService:
    return LeadPipelineService(lead_repo, user_repo, clock=lambda: now)


def test_claim_assigns_owner_and_moves_to_contato(service, lead_repo, make_user, make_lead) -> None:
    make_user("s1", display_name="Ana Lima")
    lead = make_lead()

    result = service.claim_lead(lead.lead_id, "s1")

    assert result.success
    assert result.error_code is None
    stored = lead_repo.get_lead(lead.lead_id)
    assert stored.user_id == "s1"
    assert stored.seller_name == "Ana Lima"
    assert stored.stage_id is StageId.CONTATO


def test_claim_already_assigned_is_conflict(service, lead_repo, make_user, make_lead) -> None:
    make_user("s1")
    make_user("s2")
    lead = make_lead()

    assert service.claim_lead(lead.lead_id, "s1").success
    second = service.claim_lead(lead.lead_id, "s2")

    assert not second.success
    assert second.error_code == "CONCURRENCY_CONFLICT"
    assert lead_repo.get_lead(lead.lead_id).user_id == "s1"


def test_concurrent_claims_exactly_one_wins(fake_supabase, user_repo, make_user, make_lead, now) -> None:
    """Both claimers pass the read check before either writes; only one update applies."""

    make_user("s1")
    make_user("s2")
    lead = make_lead()

    barrier = threading.Barrier(2)

    class RacingLeadRepository(LeadRepository):
        def claim_if_unassigned(self, *args, **kwargs):
            barrier.wait(timeout=5)
            return super().claim_if_unassigned(*args, **kwargs)

    service = LeadPipelineService(RacingLeadRepository(fake_supabase), user_repo, clock=lambda: now)
    results = {}

    def _claim(uid: str) -> None:
        results[uid] = service.claim_lead(lead.lead_id, uid)

    threads = [threading.Thread(target=_claim, args=(uid,)) for uid in ("s1", "s2")]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    winners = [uid for uid, r in results.items() if r.success]
    losers = [r for r in results.values() if not r.success]

    assert len(winners) == 1
    assert len(losers) == 1
    assert losers[0].error_code == "CONCURRENCY_CONFLICT"
    assert LeadRepository(fake_supabase).get_lead(lead.lead_id).user_id == winners[0]


def test_claim_missing_lead_or_seller(service, make_user, make_lead) -> None:
    make_user("s1")
    lead = make_lead()

    assert service.claim_lead(uuid4(), "s1").error_code == "NOT_FOUND"
    assert service.claim_lead(lead.lead_id, "ghost").error_code == "NOT_FOUND"


def test_claim_refused_for_pending_user(service, make_user, make_lead) -> None:
    make_user("p1", role=UserRole.PENDING)
    lead = make_lead()

    result = service.claim_lead(lead.lead_id, "p1")

    assert result.error_code == "VALIDATION_ERROR"


def test_claim_refused_while_awaiting_validation(service, make_user, make_lead) -> None:
    make_user("s1")
    lead = make_lead(stage_id=StageId.PARA_VALIDACAO)

    assert service.claim_lead(lead.lead_id, "s1").error_code == "VALIDATION_ERROR"


def test_claim_respects_assignment_limit(service, make_user, make_lead) -> None:
    make_user("s1", assignment_limit=1)
    make_lead(user_id="s1", seller_name="S1", stage_id=StageId.PROPOSTA)
    make_lead(user_id="s1", seller_name="S1", stage_id=StageId.FINALIZADO, completed_at=COMPLETED)
    lead = make_lead()

    result = service.claim_lead(lead.lead_id, "s1")

    assert result.error_code == "VALIDATION_ERROR"
    assert "limit" in result.error_message


def test_admin_ignores_assignment_limit(service, make_user, make_lead) -> None:
    make_user("adm", role=UserRole.ADMIN, assignment_limit=0)
    lead = make_lead()

    assert service.claim_lead(lead.lead_id, "adm").success


def test_move_stage_permissions(service, make_user, make_lead) -> None:
    make_user("owner")
    make_user("other")
    make_user("adm", role=UserRole.SUPERADMIN)
    lead = make_lead(user_id="owner", seller_name="Owner", stage_id=StageId.CONTATO)

    denied = service.move_stage(lead.lead_id, StageId.PROPOSTA, actor_uid="other")
    assert denied.error_code == "PERMISSION_DENIED"

    assert service.move_stage(lead.lead_id, StageId.PROPOSTA, actor_uid="owner").success
    assert service.move_stage(lead.lead_id, "contrato", actor_uid="adm").lead.stage_id is StageId.CONTRATO


def test_move_stage_errors(service, make_lead) -> None:
    lead = make_lead(user_id="s", seller_name="S", stage_id=StageId.FINALIZADO, completed_at=COMPLETED)

    assert service.move_stage(uuid4(), StageId.CONTATO).error_code == "NOT_FOUND"
    assert service.move_stage(lead.lead_id, "nope").error_code == "VALIDATION_ERROR"
    assert service.move_stage(lead.lead_id, StageId.CONTATO).error_code == "INVALID_TRANSITION"


def test_record_completion_is_idempotent(service, lead_repo, make_lead, now) -> None:
    lead = make_lead(user_id="s", seller_name="S", stage_id=StageId.CONTRATO)

    first = service.record_completion(lead.lead_id, COMPLETED, Decimal("900"))
    second = service.record_completion(lead.lead_id, COMPLETED, "900")

    assert first.success and second.success
    assert first.lead == second.lead

    leads = lead_repo.list_leads()
    assert len(leads) == 1
    assert value_finalized_this_month(leads, now) == Decimal("900")


def test_record_completion_rejects_bad_input(service, make_lead) -> None:
    lead = make_lead(user_id="s", seller_name="S", stage_id=StageId.CONTRATO)

    naive = service.record_completion(lead.lead_id, datetime(2026, 10, 5), Decimal("1"))
    negative = service.record_completion(lead.lead_id, COMPLETED, Decimal("-5"))
    garbage = service.record_completion(lead.lead_id, COMPLETED, "abc")

    assert naive.error_code == "VALIDATION_ERROR"
    assert negative.error_code == "VALIDATION_ERROR"
    assert garbage.error_code == "VALIDATION_ERROR"


def test_set_commission_paid(service, make_lead) -> None:
    finalized = make_lead(user_id="s", seller_name="S", stage_id=StageId.FINALIZADO, completed_at=COMPLETED)
    active = make_lead(user_id="s", seller_name="S", stage_id=StageId.CONTATO)

    assert service.set_commission_paid(finalized.lead_id).lead.commission_paid is True
    assert service.set_commission_paid(active.lead_id).error_code == "VALIDATION_ERROR"


def test_approve_and_request_correction(service, make_lead) -> None:
    lead = make_lead(user_id="s", seller_name="S", stage_id=StageId.CONFORMIDADE, needs_admin_approval=True)

    corrected = service.request_correction(lead.lead_id, "Fatura ilegível")
    assert corrected.lead.stage_id is StageId.CONTATO
    assert corrected.lead.correction_reason == "Fatura ilegível"

    approved = service.approve_lead(lead.lead_id)
    assert approved.lead.stage_id is StageId.ASSINADO
    assert approved.lead.needs_admin_approval is False


def test_settle_commissions_reports_row_errors(service, lead_repo, make_lead) -> None:
    paid = [
        make_lead(user_id="s", seller_name="S", stage_id=StageId.FINALIZADO, completed_at=COMPLETED)
        for _ in range(3)
    ]
    active = make_lead(user_id="s", seller_name="S", stage_id=StageId.PROPOSTA)
    missing = uuid4()

    report = service.settle_commissions([p.lead_id for p in paid] + [paid[0].lead_id, active.lead_id, missing])

    assert report.success
    assert report.processed == 3
    assert len(report.errors) == 2
    assert all(lead_repo.get_lead(p.lead_id).commission_paid for p in paid)


def test_settle_commissions_partial_batch_failure(fake_supabase, user_repo, make_lead, now) -> None:
    leads = [
        make_lead(user_id="s", seller_name="S", stage_id=StageId.FINALIZADO, completed_at=COMPLETED)
        for _ in range(5)
    ]
    repo = LeadRepository(fake_supabase, write_batch_size=2)
    service = LeadPipelineService(repo, user_repo, clock=lambda: now)
    fake_supabase.fail_write("leads", 3)

    report = service.settle_commissions([lead.lead_id for lead in leads])

    assert not report.success
    assert report.processed == 2
    assert sum(repo.get_lead(lead.lead_id).commission_paid for lead in leads) == 2

    retry = service.settle_commissions([lead.lead_id for lead in leads])
    assert retry.success
    assert retry.processed == 3


def test_release_leads_for_user(service, lead_repo, make_lead) -> None:
    open_lead = make_lead(user_id="gone", seller_name="Gone", stage_id=StageId.PROPOSTA)
    done = make_lead(user_id="gone", seller_name="Gone", stage_id=StageId.FINALIZADO, completed_at=COMPLETED)

    report = service.release_leads_for_user("gone")

    assert report.success
    assert report.processed == 1
    released = lead_repo.get_lead(open_lead.lead_id)
    assert released.user_id == UNASSIGNED
    assert released.seller_name == SYSTEM_SELLER_NAME
    assert released.stage_id is StageId.PARA_ATRIBUIR
    assert lead_repo.get_lead(done.lead_id).user_id == "gone"


def test_record_completion_refuses_unassigned_lead(service, lead_repo, make_lead) -> None:
    lead = make_lead()

    result = service.record_completion(lead.lead_id, COMPLETED, Decimal("900"))
    moved = service.move_stage(lead.lead_id, StageId.FINALIZADO)

    assert result.error_code == "VALIDATION_ERROR"
    assert moved.error_code == "VALIDATION_ERROR"
    stored = lead_repo.get_lead(lead.lead_id)
    assert stored.stage_id is StageId.PARA_ATRIBUIR
    assert stored.completed_at is None


class InterleavingLeadRepository(LeadRepository):
    """Runs `between` once, right after the first read of a lead."""

    def __init__(self, client, between) -> None:
        super().__init__(client)
        self._between = between
        self.interleaved = []

    def get_lead(self, lead_id):
        lead = super().get_lead(lead_id)
        if not self.interleaved:
            self.interleaved.append(self._between(lead_id))
        return lead


def test_stage_move_keeps_a_claim_made_after_its_read(
    fake_supabase,
    lead_repo,
    user_repo,
    make_user,
    make_lead,
    now,
) -> None:
    make_user("s1", display_name="Ana Lima")
    lead = make_lead()
    claimer = LeadPipelineService(lead_repo, user_repo, clock=lambda: now)

    repo = InterleavingLeadRepository(fake_supabase, lambda lead_id: claimer.claim_lead(lead_id, "s1"))
    admin = LeadPipelineService(repo, user_repo, clock=lambda: now)

    result = admin.move_stage(lead.lead_id, StageId.PARA_VALIDACAO)

    assert repo.interleaved[0].success
    assert result.success
    stored = lead_repo.get_lead(lead.lead_id)
    assert stored.user_id == "s1"
    assert stored.seller_name == "Ana Lima"
    assert stored.stage_id is StageId.PARA_VALIDACAO
    assert result.lead == stored


def test_stage_move_never_reopens_a_lead_finalized_after_its_read(
    fake_supabase,
    lead_repo,
    user_repo,
    make_lead,
    now,
) -> None:
    lead = make_lead(user_id="s", seller_name="S", stage_id=StageId.CONTRATO)
    finisher = LeadPipelineService(lead_repo, user_repo, clock=lambda: now)

    repo = InterleavingLeadRepository(
        fake_supabase,
        lambda lead_id: finisher.record_completion(lead_id, COMPLETED, Decimal("900")),
    )
    mover = LeadPipelineService(repo, user_repo, clock=lambda: now)

    result = mover.move_stage(lead.lead_id, StageId.PROPOSTA)

    assert repo.interleaved[0].success
    assert result.error_code == "CONCURRENCY_CONFLICT"
    stored = lead_repo.get_lead(lead.lead_id)
    assert stored.stage_id is StageId.FINALIZADO
    assert stored.completed_at == COMPLETED
    assert stored.value_after_discount == Decimal("900")


def test_seller_move_after_release_is_refused(
    fake_supabase,
    lead_repo,
    user_repo,
    make_user,
    make_lead,
    now,
) -> None:
    make_user("s1")
    lead = make_lead(user_id="s1", seller_name="S1", stage_id=StageId.CONTATO)
    releaser = LeadPipelineService(lead_repo, user_repo, clock=lambda: now)

    repo = InterleavingLeadRepository(fake_supabase, lambda lead_id: releaser.release_leads_for_user("s1"))
    seller = LeadPipelineService(repo, user_repo, clock=lambda: now)

    result = seller.move_stage(lead.lead_id, StageId.PROPOSTA, actor_uid="s1")

    assert result.error_code == "CONCURRENCY_CONFLICT"
    stored = lead_repo.get_lead(lead.lead_id)
    assert stored.user_id == UNASSIGNED
    assert stored.stage_id is StageId.PARA_ATRIBUIR


def test_completion_after_release_is_refused(fake_supabase, lead_repo, user_repo, make_lead, now) -> None:
    lead = make_lead(user_id="s1", seller_name="S1", stage_id=StageId.CONTRATO)
    releaser = LeadPipelineService(lead_repo, user_repo, clock=lambda: now)

    repo = InterleavingLeadRepository(fake_supabase, lambda lead_id: releaser.release_leads_for_user("s1"))
    finisher = LeadPipelineService(repo, user_repo, clock=lambda: now)

    result = finisher.record_completion(lead.lead_id, COMPLETED, Decimal("900"))

    assert result.error_code == "CONCURRENCY_CONFLICT"
    stored = lead_repo.get_lead(lead.lead_id)
    assert stored.user_id == UNASSIGNED
    assert stored.completed_at is None


def test_release_keeps_a_lead_finalized_after_the_listing(
    fake_supabase,
    lead_repo,
    user_repo,
    make_lead,
    now,
) -> None:
    lead = make_lead(user_id="gone", seller_name="Gone", stage_id=StageId.CONTRATO)
    finisher = LeadPipelineService(lead_repo, user_repo, clock=lambda: now)

    class FinalizeAfterListing(LeadRepository):
        def list_leads_for_owners(self, uids):
            owned = super().list_leads_for_owners(uids)
            finisher.record_completion(lead.lead_id, COMPLETED, Decimal("900"))
            return owned

    service = LeadPipelineService(FinalizeAfterListing(fake_supabase), user_repo, clock=lambda: now)

    report = service.release_leads_for_user("gone")

    assert report.success
    assert report.processed == 0
    assert len(report.errors) == 1
    stored = lead_repo.get_lead(lead.lead_id)
    assert stored.user_id == "gone"
    assert stored.stage_id is StageId.FINALIZADO
