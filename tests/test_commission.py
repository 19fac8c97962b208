"""
Tests for `domain/commission.py` and `services/commission_service.py`.

Covers contract rules:
- personal = value_after_discount * rate / 100, default rate 40.
- network walks up to 4 levels at 5/3/2/1 percent.
- An ancestor with mlm_enabled=False earns nothing but does not stop the walk.
- Total payout never exceeds value * (0.40 + 0.11) under default rates.
- Monthly gains key off completed_at's UTC calendar month; balances split by
  commission_paid.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import uuid4

import pytest

from domain.commission import (
    CommissionPolicy,
    compute_breakdown,
    network_commission,
    personal_commission,
)
from domain.errors import NotFoundError, ValidationError
from domain.lead import Lead
from domain.pipeline import StageId
from domain.referral_graph import ReferralGraph
from domain.user import User, UserRole
from services.commission_service import CommissionService

COMPLETED = datetime(2026, 10, 10, 15, 0, 0, tzinfo=timezone.utc)


def _user(uid: str, upline: Optional[str] = None, mlm: bool = True, rate: Optional[str] = None) -> User:
    return User(
        uid=uid,
        display_name=uid,
        role=UserRole.SELLER,
        upline_uid=upline,
        mlm_enabled=mlm,
        commission_rate=Decimal(rate) if rate is not None else None,
    )


def _finalized(owner: str, value: str = "1000") -> Lead:
    return Lead(
        lead_id=uuid4(),
        name="Lead",
        user_id=owner,
        seller_name=owner,
        stage_id=StageId.FINALIZADO,
        created_at=COMPLETED,
        last_contact=COMPLETED,
        completed_at=COMPLETED,
        value_after_discount=Decimal(value),
    )


def test_worked_scenario() -> None:
    """A (rate 40) <- B (mlm) <- C (mlm): C's 1000 lead pays 400 / 50 / 30."""

    users = [_user("A", rate="40"), _user("B", "A"), _user("C", "B")]
    graph = ReferralGraph(users)
    lead = _finalized("C")

    breakdown = compute_breakdown(lead, graph.get("C"), graph, CommissionPolicy())

    assert breakdown.personal == Decimal("400")
    assert [(c.uid, c.level, c.amount) for c in breakdown.network] == [
        ("B", 1, Decimal("50.00")),
        ("A", 2, Decimal("30.00")),
    ]
    assert breakdown.total == Decimal("480")


def test_personal_commission_uses_default_rate_when_missing() -> None:
    lead = _finalized("s", "250")

    assert personal_commission(lead, _user("s"), CommissionPolicy()) == Decimal("100")
    assert personal_commission(lead, _user("s", rate="30"), CommissionPolicy()) == Decimal("75")


def test_network_stops_after_four_levels() -> None:
    users = [_user("l5"), _user("l4", "l5"), _user("l3", "l4"), _user("l2", "l3"), _user("l1", "l2"), _user("o", "l1")]
    graph = ReferralGraph(users)

    credits = network_commission(_finalized("o"), graph.get("o"), graph, CommissionPolicy())

    assert [(c.uid, c.amount) for c in credits] == [
        ("l1", Decimal("50.00")),
        ("l2", Decimal("30.00")),
        ("l3", Decimal("20.00")),
        ("l4", Decimal("10.00")),
    ]


def test_disabled_ancestor_is_skipped_but_walk_continues() -> None:
    users = [_user("top"), _user("mid", "top", mlm=False), _user("o", "mid")]
    graph = ReferralGraph(users)

    credits = network_commission(_finalized("o"), graph.get("o"), graph, CommissionPolicy())

    assert [(c.uid, c.level) for c in credits] == [("top", 2)]


def test_total_payout_bound() -> None:
    """Verify personal + network never exceeds value * 51% with default rates."""

    users = [_user("a")] + [_user(f"u{i}", "a" if i == 0 else f"u{i - 1}") for i in range(6)]
    graph = ReferralGraph(users)
    policy = CommissionPolicy()

    for value in ("0", "0.01", "999.99", "123456.78"):
        lead = _finalized("u5", value)
        breakdown = compute_breakdown(lead, graph.get("u5"), graph, policy)
        assert breakdown.total <= Decimal(value) * (Decimal("0.40") + Decimal("0.11"))

    assert policy.max_total_fraction() == Decimal("0.51")


def test_breakdown_requires_commissionable_lead() -> None:
    owner = _user("s")
    graph = ReferralGraph([owner])
    lead = Lead(
        lead_id=uuid4(),
        name="Lead",
        user_id="s",
        seller_name="s",
        stage_id=StageId.CONTRATO,
        created_at=COMPLETED,
        last_contact=COMPLETED,
    )

    with pytest.raises(ValidationError):
        compute_breakdown(lead, owner, graph, CommissionPolicy())


def test_commission_policy_rejects_negative_rates() -> None:
    with pytest.raises(ValueError):
        CommissionPolicy(default_rate=Decimal("-1"))


def test_compute_commission_service(lead_repo, user_repo, make_user, make_lead) -> None:
    make_user("A", commission_rate=Decimal("40"), mlm_enabled=True)
    make_user("B", upline_uid="A", mlm_enabled=True)
    make_user("C", upline_uid="B", mlm_enabled=True)
    lead = make_lead(user_id="C", seller_name="C", stage_id=StageId.FINALIZADO, completed_at=COMPLETED)

    breakdown = CommissionService(lead_repo, user_repo).compute_commission(lead.lead_id)

    assert breakdown.personal == Decimal("400")
    assert {c.uid: c.amount for c in breakdown.network} == {"B": Decimal("50"), "A": Decimal("30")}


def test_compute_commission_missing_lead(lead_repo, user_repo) -> None:
    with pytest.raises(NotFoundError):
        CommissionService(lead_repo, user_repo).compute_commission(uuid4())


def test_monthly_gains_and_balances(lead_repo, user_repo, make_user, make_lead, now) -> None:
    make_user("A", mlm_enabled=True)
    make_user("B", upline_uid="A", mlm_enabled=True)

    last_month = datetime(2026, 9, 30, 23, 59, 0, tzinfo=timezone.utc)
    make_lead(user_id="A", seller_name="A", stage_id=StageId.FINALIZADO, completed_at=COMPLETED)
    make_lead(user_id="B", seller_name="B", stage_id=StageId.FINALIZADO, completed_at=COMPLETED, commission_paid=True)
    make_lead(user_id="B", seller_name="B", stage_id=StageId.FINALIZADO, completed_at=last_month)
    make_lead(user_id="B", seller_name="B", stage_id=StageId.CONTRATO)

    service = CommissionService(lead_repo, user_repo)

    gains = service.monthly_gains("A", now=now)
    assert gains.personal == Decimal("400")
    assert gains.network == Decimal("50.00")
    assert gains.leads_count == 2

    balances = service.balances("A")
    assert balances.pending.personal == Decimal("400")
    assert balances.pending.network == Decimal("50.00")
    assert balances.settled.network == Decimal("50.00")
    assert balances.settled.personal == Decimal("0")


def test_monthly_gains_unknown_user(lead_repo, user_repo, now) -> None:
    with pytest.raises(NotFoundError):
        CommissionService(lead_repo, user_repo).monthly_gains("ghost", now=now)
