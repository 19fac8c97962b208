"""
Domain: personal and multi-level network commission.

Contract excerpts implemented here:
- personal commission = value_after_discount * owner rate / 100, where a missing
  owner rate falls back to the policy default (40%).
- network commission walks the owner's upline up to 4 hops with the level table
  {1: 5%, 2: 3%, 3: 2%, 4: 1%}; an ancestor earns only if its own mlm_enabled
  flag is set. A disabled ancestor does not stop the walk: farther ancestors
  still earn their level's share.
- Commission exists only for finalized leads with a completion date.

Amounts are exact Decimals; rounding to cents is a presentation concern.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Mapping, Optional
from uuid import UUID

from .errors import ValidationError
from .lead import Lead
from .referral_graph import ReferralGraph
from .user import User

logger = logging.getLogger(__name__)

DEFAULT_COMMISSION_RATE: Decimal = Decimal("40")

DEFAULT_NETWORK_RATES: Mapping[int, Decimal] = {
    1: Decimal("0.05"),  # direct upline
    2: Decimal("0.03"),
    3: Decimal("0.02"),
    4: Decimal("0.01"),
}


@dataclass(frozen=True, slots=True)
class CommissionPolicy:
    """Rates used by the commission engine."""

    default_rate: Decimal = DEFAULT_COMMISSION_RATE
    network_rates: Mapping[int, Decimal] = field(default_factory=lambda: dict(DEFAULT_NETWORK_RATES))

    def __post_init__(self) -> None:
        if self.default_rate < 0:
            raise ValueError("default_rate must be >= 0")
        for level, rate in self.network_rates.items():
            if level < 1:
                raise ValueError(f"network level must be >= 1, got {level}")
            if rate < 0:
                raise ValueError(f"network rate for level {level} must be >= 0")

    @property
    def network_depth(self) -> int:
        return max(self.network_rates, default=0)

    def rate_for(self, owner: User) -> Decimal:
        """Owner's personal rate in percent, defaulting silently when unset."""

        if owner.commission_rate is None:
            logger.debug(
                "commission_rate missing, using default",
                extra={"uid": owner.uid, "default_rate": str(self.default_rate)},
            )
            return self.default_rate
        return owner.commission_rate

    def max_total_fraction(self, max_personal_rate: Optional[Decimal] = None) -> Decimal:
        """Upper bound on (personal + network) / value_after_discount."""

        personal = self.default_rate if max_personal_rate is None else max_personal_rate
        return personal / Decimal("100") + sum(self.network_rates.values(), Decimal("0"))


@dataclass(frozen=True, slots=True)
class NetworkCredit:
    """One ancestor's share of a lead."""

    uid: str
    level: int
    amount: Decimal


@dataclass(frozen=True, slots=True)
class CommissionBreakdown:
    """Every payout a single finalized lead generates."""

    lead_id: UUID
    owner_uid: str
    personal: Decimal
    network: List[NetworkCredit]

    @property
    def network_total(self) -> Decimal:
        return sum((credit.amount for credit in self.network), Decimal("0"))

    @property
    def total(self) -> Decimal:
        return self.personal + self.network_total


def personal_commission(lead: Lead, owner: User, policy: CommissionPolicy) -> Decimal:
    return lead.value_after_discount * policy.rate_for(owner) / Decimal("100")


def network_commission(
    lead: Lead,
    owner: User,
    graph: ReferralGraph,
    policy: CommissionPolicy,
) -> List[NetworkCredit]:
    """
    Credits for the owner's ancestors, nearest first.

    Ancestors with mlm_enabled=False are skipped but do not cut the chain.
    """

    credits: List[NetworkCredit] = []
    for member in graph.upline_chain(owner.uid, max_hops=policy.network_depth):
        rate = policy.network_rates.get(member.level)
        if rate is None or not member.user.mlm_enabled:
            continue
        credits.append(NetworkCredit(
            uid=member.user.uid,
            level=member.level,
            amount=lead.value_after_discount * rate,
        ))
    return credits


def compute_breakdown(
    lead: Lead,
    owner: User,
    graph: ReferralGraph,
    policy: CommissionPolicy,
) -> CommissionBreakdown:
    """
    Full payout set for one lead.

    Raises:
        ValidationError: if the lead is not finalized with a completion date,
            or `owner` is not the lead's owner.
    """

    if not lead.is_commissionable:
        raise ValidationError(
            f"Lead {lead.lead_id} is not commissionable (stage '{lead.stage_id.value}', "
            f"completed_at={'set' if lead.completed_at else 'unset'})"
        )
    if owner.uid != lead.user_id:
        raise ValidationError(f"User {owner.uid} does not own lead {lead.lead_id}")

    return CommissionBreakdown(
        lead_id=lead.lead_id,
        owner_uid=owner.uid,
        personal=personal_commission(lead, owner, policy),
        network=network_commission(lead, owner, graph, policy),
    )


__all__ = [
    "CommissionBreakdown",
    "CommissionPolicy",
    "DEFAULT_COMMISSION_RATE",
    "DEFAULT_NETWORK_RATES",
    "NetworkCredit",
    "compute_breakdown",
    "network_commission",
    "personal_commission",
]
