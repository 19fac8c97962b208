#!/usr/bin/env python3
"""
Team report - downline, pipeline totals and earnings for one user.

Usage:
    python scripts/team_report.py <uid>
    python scripts/team_report.py <uid> --show-leads
"""

from __future__ import annotations

import argparse
import logging
import sys
from decimal import Decimal
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from domain.errors import PipelineError
from repositories.client import get_supabase
from repositories.lead_repository import LeadRepository
from repositories.user_repository import UserRepository
from services.commission_service import CommissionService
from services.config import PipelineSettings
from services.pipeline_aggregator import PipelineAggregator

_CENTS = Decimal("0.01")


def _money(value: Decimal) -> str:
    return f"R$ {value.quantize(_CENTS)}"


def print_team_report(uid: str, show_leads: bool = False) -> None:
    settings = PipelineSettings.from_env()
    client = get_supabase()
    leads = LeadRepository(client, settings.in_query_chunk_size, settings.write_batch_size)
    users = UserRepository(client, settings.in_query_chunk_size, settings.write_batch_size)

    aggregator = PipelineAggregator(leads, users, settings)
    commissions = CommissionService(leads, users, settings)

    team = aggregator.get_team_for_user(uid)
    summary = aggregator.team_summary(uid)
    gains = commissions.monthly_gains(uid)
    balances = commissions.balances(uid)

    print("=" * 50)
    print(f"TEAM REPORT: {uid}")
    print("=" * 50)
    print(f"Team size:                 {summary.team_size}")
    print(f"Active leads:              {summary.active_leads}")
    print(f"Finalized this month:      {summary.finalized_this_month}")
    print(f"Value finalized (month):   {_money(summary.value_finalized_this_month)}")
    print()
    print(f"Gains this month:          {_money(gains.total)}"
          f" (personal {_money(gains.personal)}, network {_money(gains.network)})")
    print(f"Pending commission:        {_money(balances.pending_total)}")
    print(f"Settled commission:        {_money(balances.settled_total)}")

    print("\nDownline by level:")
    print("-" * 50)
    by_level: dict[int, int] = {}
    for member in team:
        by_level[member.level] = by_level.get(member.level, 0) + 1
    for level in sorted(by_level):
        print(f"Level {level}: {by_level[level]} member(s)")

    if show_leads:
        print("\nTeam leads:")
        print("-" * 50)
        for lead in aggregator.get_leads_for_team(uid):
            print(f"{lead.lead_id}  {lead.stage_id.value:<15} {lead.seller_name:<25} {_money(lead.value_after_discount)}")

    print("-" * 50)


def main() -> int:
    parser = argparse.ArgumentParser(description="Print a user's team report")
    parser.add_argument("uid", help="User whose team to report on")
    parser.add_argument("--show-leads", action="store_true", help="List every team lead")
    parser.add_argument("--verbose", action="store_true", help="Log traversal warnings")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO if args.verbose else logging.ERROR)

    try:
        print_team_report(args.uid, show_leads=args.show_leads)
    except PipelineError as e:
        print(f"ERROR [{e.code}]: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
