"""
Commission service.

Composes the referral graph with stored leads to answer:
- the payout set of one finalized lead (personal + network)
- a user's gains for the current calendar month
- a user's all-time pending vs. settled balances

The rules themselves live in domain.commission; this module only loads the
data they need.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Iterator, Optional, Tuple
from uuid import UUID

from domain.commission import CommissionBreakdown, compute_breakdown
from domain.errors import NotFoundError
from domain.lead import Lead
from domain.referral_graph import ReferralGraph
from domain.time import is_same_month, require_utc_timestamp, utc_now
from repositories.lead_repository import LeadRepository
from repositories.user_repository import UserRepository
from services.config import PipelineSettings

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")


@dataclass(frozen=True, slots=True)
class Earnings:
    """Personal and network commission earned by one user over a set of leads."""

    personal: Decimal = _ZERO
    network: Decimal = _ZERO
    leads_count: int = 0

    @property
    def total(self) -> Decimal:
        return self.personal + self.network


@dataclass(frozen=True, slots=True)
class Balances:
    """All-time commission split by settlement status."""

    pending: Earnings
    settled: Earnings

    @property
    def pending_total(self) -> Decimal:
        return self.pending.total

    @property
    def settled_total(self) -> Decimal:
        return self.settled.total


class CommissionService:
    def __init__(
        self,
        leads: LeadRepository,
        users: UserRepository,
        settings: Optional[PipelineSettings] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._leads = leads
        self._users = users
        self._settings = settings or PipelineSettings()
        self._clock = clock

    def compute_commission(self, lead_id: UUID) -> CommissionBreakdown:
        """
        Every payout one finalized lead generates.

        Raises:
            NotFoundError: if the lead or its owner does not exist.
            ValidationError: if the lead is not finalized with a completion date.
        """

        lead = self._leads.get_lead(lead_id)
        if lead is None:
            raise NotFoundError("Lead", lead_id)

        graph = self._load_graph()
        owner = graph.get(lead.user_id)
        if owner is None:
            raise NotFoundError("User", lead.user_id)

        return compute_breakdown(lead, owner, graph, self._settings.commission_policy)

    def monthly_gains(self, uid: str, now: Optional[datetime] = None) -> Earnings:
        """
        Commission earned by `uid` on leads finalized in the current UTC month.

        Both paid and unpaid leads count; the month is taken from
        completed_at, so re-recording a completion never counts twice.
        """

        reference = now or self._clock()
        require_utc_timestamp("now", reference)

        personal = _ZERO
        network = _ZERO
        counted = 0
        for lead, breakdown in self._breakdowns_touching(uid):
            if not is_same_month(lead.completed_at, reference):
                continue
            earned_personal, earned_network = _share_of(breakdown, uid)
            personal += earned_personal
            network += earned_network
            counted += 1

        return Earnings(personal=personal, network=network, leads_count=counted)

    def balances(self, uid: str) -> Balances:
        """All-time earnings of `uid`, partitioned by commission_paid."""

        totals = {False: [_ZERO, _ZERO, 0], True: [_ZERO, _ZERO, 0]}
        for lead, breakdown in self._breakdowns_touching(uid):
            earned_personal, earned_network = _share_of(breakdown, uid)
            bucket = totals[lead.commission_paid]
            bucket[0] += earned_personal
            bucket[1] += earned_network
            bucket[2] += 1

        return Balances(
            pending=Earnings(*totals[False]),
            settled=Earnings(*totals[True]),
        )

    def _load_graph(self) -> ReferralGraph:
        return ReferralGraph(self._users.list_users(), max_depth=self._settings.max_upline_depth)

    def _breakdowns_touching(self, uid: str) -> Iterator[Tuple[Lead, CommissionBreakdown]]:
        """
        Breakdowns of every commissionable lead that can pay `uid`.

        Only the user's own leads and those of its downline within the network
        depth can credit it, so only those owners are queried.
        """

        graph = self._load_graph()
        if graph.get(uid) is None:
            raise NotFoundError("User", uid)

        policy = self._settings.commission_policy
        owners = [uid, *graph.downline_levels(uid, max_level=policy.network_depth)]

        for lead in self._leads.list_leads_for_owners(owners):
            if not lead.is_commissionable:
                continue
            owner = graph.get(lead.user_id)
            if owner is None:
                logger.warning(
                    "Lead owner missing, skipping commission",
                    extra={"lead_id": str(lead.lead_id), "owner_uid": lead.user_id},
                )
                continue
            yield lead, compute_breakdown(lead, owner, graph, policy)


def _share_of(breakdown: CommissionBreakdown, uid: str) -> Tuple[Decimal, Decimal]:
    personal = breakdown.personal if breakdown.owner_uid == uid else _ZERO
    network = sum((credit.amount for credit in breakdown.network if credit.uid == uid), _ZERO)
    return personal, network


__all__ = [
    "Balances",
    "CommissionService",
    "Earnings",
]
