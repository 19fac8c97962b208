#!/usr/bin/env python3
"""
Seller Reconciliation Script

Repairs drift between lead seller names and lead owners:
- Re-attributes leads carrying historical seller aliases
- Creates placeholder seller accounts for unknown names
- Points every lead at the user its seller name resolves to

Safe to re-run: a run right after a successful one reports zero changes.

Usage:
    python scripts/reconcile_sellers.py
    python scripts/reconcile_sellers.py --dry-run
    python scripts/reconcile_sellers.py --error-log reconcile_errors.json
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

# Add parent directory to path to import modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from domain.errors import ConfigurationError
from repositories.client import get_supabase
from repositories.lead_repository import LeadRepository
from repositories.user_repository import UserRepository
from services.config import PipelineSettings
from services.seller_reconciliation_service import (
    ReconciliationReport,
    SellerReconciliationService,
)


def build_service(settings: PipelineSettings) -> SellerReconciliationService:
    client = get_supabase()
    leads = LeadRepository(client, settings.in_query_chunk_size, settings.write_batch_size)
    users = UserRepository(client, settings.in_query_chunk_size, settings.write_batch_size)
    return SellerReconciliationService(leads, users, settings)


def print_summary(report: ReconciliationReport) -> None:
    """Print reconciliation summary statistics."""
    print()
    print("=" * 60)
    print("SELLER RECONCILIATION" + (" (DRY RUN)" if report.dry_run else ""))
    print("=" * 60)
    print(f"Leads re-attributed:  {report.reattributed}")
    print(f"Sellers created:      {report.users_created}")
    print(f"Leads synced:         {report.synced}")
    print()
    print(report.summary)

    if report.errors:
        print()
        print(f"Errors:               {len(report.errors)}")
        for error in report.errors[:5]:
            print(f"  - {error}")
        if len(report.errors) > 5:
            print(f"  ... and {len(report.errors) - 5} more")

    print("=" * 60)


def save_error_log(errors: list[str], output_path: str) -> None:
    """Save error details to JSON file."""
    if not errors:
        return

    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(errors, f, indent=2)

    print(f"\nError log saved to: {output_path}")


def main() -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Reconcile lead seller names with seller accounts",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Compute the changes without writing anything"
    )
    parser.add_argument(
        "--error-log",
        default="reconciliation_errors.json",
        help="Path to save error log (default: reconciliation_errors.json)"
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)"
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = PipelineSettings.from_env()
        report = build_service(settings).reconcile_sellers(dry_run=args.dry_run)
    except ConfigurationError as e:
        print(f"\nCONFIGURATION ERROR: {e}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        print("\n\nReconciliation interrupted by user")
        return 130

    print_summary(report)
    save_error_log(report.errors, args.error_log)

    return 0 if report.success else 1


if __name__ == "__main__":
    sys.exit(main())
