"""
Team-scoped pipeline views.

A "team" is a user plus everyone below it in the referral forest. The graph is
built once per call from a snapshot of users; lead reads go through bounded
`in` chunks keyed by owner uid.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Iterable, List, Optional

from domain.errors import NotFoundError
from domain.lead import Lead
from domain.referral_graph import ReferralGraph, TeamMember
from domain.time import is_same_month, utc_now
from repositories.lead_repository import LeadRepository
from repositories.user_repository import UserRepository
from services.config import PipelineSettings


def active_leads_count(leads: Iterable[Lead]) -> int:
    """Leads not in finalizado, perdido, assinado or cancelado."""
    return sum(1 for lead in leads if lead.is_active)


def finalized_this_month(leads: Iterable[Lead], now: datetime) -> List[Lead]:
    return [lead for lead in leads if lead.is_commissionable and is_same_month(lead.completed_at, now)]


def value_finalized_this_month(leads: Iterable[Lead], now: datetime) -> Decimal:
    return sum((lead.value_after_discount for lead in finalized_this_month(leads, now)), Decimal("0"))


@dataclass(frozen=True, slots=True)
class TeamSummary:
    uid: str
    team_size: int
    active_leads: int
    finalized_this_month: int
    value_finalized_this_month: Decimal


class PipelineAggregator:
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

    def get_team_for_user(self, uid: str) -> List[TeamMember]:
        """Downline of `uid` with levels (the user itself excluded)."""
        return self._load_graph(uid).build_downline(uid)

    def get_leads_for_team(self, uid: str) -> List[Lead]:
        """
        Leads owned by `uid` or anyone in its downline.

        Each lead appears once even if the store returns it from two chunks.
        """

        team = self.get_team_for_user(uid)
        return self._leads_for_members(uid, team)

    def team_summary(self, uid: str, now: Optional[datetime] = None) -> TeamSummary:
        reference = now or self._clock()
        team = self.get_team_for_user(uid)
        leads = self._leads_for_members(uid, team)

        finalized = finalized_this_month(leads, reference)
        return TeamSummary(
            uid=uid,
            team_size=len(team),
            active_leads=active_leads_count(leads),
            finalized_this_month=len(finalized),
            value_finalized_this_month=sum((lead.value_after_discount for lead in finalized), Decimal("0")),
        )

    def _load_graph(self, uid: str) -> ReferralGraph:
        graph = ReferralGraph(self._users.list_users(), max_depth=self._settings.max_upline_depth)
        if graph.get(uid) is None:
            raise NotFoundError("User", uid)
        return graph

    def _leads_for_members(self, uid: str, team: List[TeamMember]) -> List[Lead]:
        owners = [uid, *(member.user.uid for member in team)]
        by_id = {}
        for lead in self._leads.list_leads_for_owners(owners):
            by_id.setdefault(lead.lead_id, lead)
        return list(by_id.values())


__all__ = [
    "PipelineAggregator",
    "TeamSummary",
    "active_leads_count",
    "finalized_this_month",
    "value_finalized_this_month",
]
