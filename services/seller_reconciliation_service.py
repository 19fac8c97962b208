"""
Seller reconciliation.

Repairs drift between a lead's cached seller_name and its canonical owner uid:

1. Index users by normalized display name (built once per run, never shared).
2. Re-attribute leads carrying a known historical alias to the canonical seller.
3. Create placeholder seller accounts for names that match no user.
4. Point every lead's user_id at the user its seller_name resolves to.

The job is idempotent: a second run over unchanged data reports zero changes.
Leads still in the claim pool (user_id == "unassigned") are never touched;
ownership of those only changes through a claim. Writes cover seller_name and
user_id only, so stage or completion changes made during a run are kept.
"""

from __future__ import annotations

import logging
import unicodedata
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Set
from uuid import UUID, uuid4

from domain.errors import PartialBatchFailure
from domain.lead import Lead
from domain.time import utc_now
from domain.user import User, UserRole
from repositories.lead_repository import OWNER_COLUMNS, LeadRepository
from repositories.user_repository import UserRepository
from services.config import PipelineSettings, SellerAlias

logger = logging.getLogger(__name__)


def normalize_name(name: Optional[str]) -> str:
    """
    Comparison key for display names: trimmed, accents stripped, upper-cased.

    normalize_name(" SuperFácil ") == normalize_name("SUPERFACIL")
    """

    if not name:
        return ""
    decomposed = unicodedata.normalize("NFD", name.strip())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.upper()


def build_name_index(users: Iterable[User]) -> Dict[str, str]:
    """
    normalized display name -> uid.

    When two users share a name the lowest uid wins, so repeated runs resolve
    the same way.
    """

    index: Dict[str, str] = {}
    for user in sorted(users, key=lambda u: u.uid):
        key = normalize_name(user.display_name)
        if not key:
            continue
        if key in index:
            logger.warning(
                "Duplicate display name, keeping first uid",
                extra={"display_name": key, "kept_uid": index[key], "ignored_uid": user.uid},
            )
            continue
        index[key] = user.uid
    return index


@dataclass(frozen=True, slots=True)
class ReconciliationReport:
    success: bool
    summary: str
    reattributed: int = 0
    users_created: int = 0
    synced: int = 0
    errors: List[str] = field(default_factory=list)
    dry_run: bool = False


class SellerReconciliationService:
    def __init__(
        self,
        leads: LeadRepository,
        users: UserRepository,
        settings: Optional[PipelineSettings] = None,
        clock: Callable[[], datetime] = utc_now,
        uid_factory: Callable[[], str] = lambda: str(uuid4()),
    ) -> None:
        self._leads = leads
        self._users = users
        self._settings = settings or PipelineSettings()
        self._clock = clock
        self._uid_factory = uid_factory

    def reconcile_sellers(self, dry_run: bool = False) -> ReconciliationReport:
        """
        Run the repair pass.

        Malformed lead rows are reported in `errors` and skipped. A failed
        write batch stops the job with success=False; counts then cover only
        what was committed, and re-running finishes the work.
        """

        users = self._users.list_users()
        display_names = {user.uid: (user.display_name or "").strip() for user in users}
        name_index = build_name_index(users)

        loaded, errors = self._leads.list_leads_lenient()
        for error in errors:
            logger.warning("Skipping malformed lead row", extra={"detail": error})

        current: Dict[UUID, Lead] = {
            lead.lead_id: lead for lead in loaded if not lead.is_unassigned
        }

        reattributed = self._reattribute(current, name_index, display_names)
        new_users = self._create_orphan_users(current, name_index)
        synced = self._sync_owners(current, name_index)

        # Re-attributed leads first, then owner syncs.
        changed_ids = [lead_id for lead_id in current if lead_id in reattributed]
        changed_ids += [lead_id for lead_id in current if lead_id in synced and lead_id not in reattributed]

        if dry_run:
            report = ReconciliationReport(
                success=True,
                summary="Dry run: " + _summary(len(reattributed), len(new_users), len(synced)),
                reattributed=len(reattributed),
                users_created=len(new_users),
                synced=len(synced),
                errors=errors,
                dry_run=True,
            )
            logger.info("Seller reconciliation dry run", extra=_report_extra(report))
            return report

        try:
            self._users.insert_users_bulk(new_users)
        except PartialBatchFailure as e:
            return self._failed(errors, e, users_created=e.committed)

        try:
            written = set(
                self._leads.update_leads(
                    [current[lead_id] for lead_id in changed_ids],
                    OWNER_COLUMNS,
                    assigned_only=True,
                )
            )
        except PartialBatchFailure as e:
            committed = set(e.written)
            return self._failed(
                errors,
                e,
                users_created=len(new_users),
                reattributed=len(committed & reattributed),
                synced=len(committed & synced),
            )

        for lead_id in changed_ids:
            if lead_id not in written:
                errors.append(f"Lead {lead_id}: returned to the claim pool during the run, left untouched")
                logger.warning("Skipping lead released during reconciliation", extra={"lead_id": str(lead_id)})

        report = ReconciliationReport(
            success=True,
            summary=_summary(len(written & reattributed), len(new_users), len(written & synced)),
            reattributed=len(written & reattributed),
            users_created=len(new_users),
            synced=len(written & synced),
            errors=errors,
        )
        logger.info("Seller reconciliation complete", extra=_report_extra(report))
        return report

    def _reattribute(
        self,
        current: Dict[UUID, Lead],
        name_index: Dict[str, str],
        display_names: Dict[str, str],
    ) -> Set[UUID]:
        changed: Set[UUID] = set()
        for alias in self._settings.seller_aliases:
            target_uid, target_name = _alias_target(alias, name_index, display_names)
            variant_keys = {normalize_name(variant) for variant in alias.variants}
            variant_keys.discard(normalize_name(alias.canonical_name))

            for lead_id, lead in current.items():
                if normalize_name(lead.seller_name) not in variant_keys:
                    continue
                updated = lead.reattributed(target_name, target_uid)
                if updated != lead:
                    current[lead_id] = updated
                    changed.add(lead_id)
        return changed

    def _create_orphan_users(self, current: Dict[UUID, Lead], name_index: Dict[str, str]) -> List[User]:
        reserved = {normalize_name(name) for name in self._settings.reserved_seller_names}
        now = self._clock()
        created: List[User] = []

        for lead in current.values():
            key = normalize_name(lead.seller_name)
            if not key or key in reserved or key in name_index:
                continue
            user = User(
                uid=self._uid_factory(),
                display_name=lead.seller_name.strip(),
                role=UserRole.SELLER,
                photo_url=self._settings.placeholder_photo_url,
                created_at=now,
            )
            name_index[key] = user.uid
            created.append(user)
            logger.info(
                "Creating placeholder seller",
                extra={"uid": user.uid, "display_name": user.display_name},
            )
        return created

    def _sync_owners(self, current: Dict[UUID, Lead], name_index: Dict[str, str]) -> Set[UUID]:
        reserved = {normalize_name(name) for name in self._settings.reserved_seller_names}
        changed: Set[UUID] = set()

        for lead_id, lead in current.items():
            key = normalize_name(lead.seller_name)
            if key in reserved:
                continue
            uid = name_index.get(key)
            if uid is None or uid == lead.user_id:
                continue
            current[lead_id] = lead.reattributed(lead.seller_name, uid)
            changed.add(lead_id)
        return changed

    def _failed(
        self,
        errors: List[str],
        failure: PartialBatchFailure,
        users_created: int = 0,
        reattributed: int = 0,
        synced: int = 0,
    ) -> ReconciliationReport:
        report = ReconciliationReport(
            success=False,
            summary="Reconciliation stopped early; re-run to finish. Committed so far: "
            + _summary(reattributed, users_created, synced),
            reattributed=reattributed,
            users_created=users_created,
            synced=synced,
            errors=errors + [str(failure)],
        )
        logger.error("Seller reconciliation stopped early", extra=_report_extra(report))
        return report


def _alias_target(
    alias: SellerAlias,
    name_index: Dict[str, str],
    display_names: Dict[str, str],
) -> tuple[Optional[str], str]:
    """(uid, display name) leads matching `alias` are moved to; uid is None if no such user yet."""

    uid = name_index.get(normalize_name(alias.canonical_name))
    if uid is None:
        return None, alias.canonical_name
    return uid, display_names.get(uid) or alias.canonical_name


def _summary(reattributed: int, users_created: int, synced: int) -> str:
    return (
        f"{reattributed} lead(s) re-attributed, "
        f"{users_created} seller(s) created, "
        f"{synced} lead(s) synced to their owner."
    )


def _report_extra(report: ReconciliationReport) -> dict:
    return {
        "reattributed": report.reattributed,
        "users_created": report.users_created,
        "synced": report.synced,
        "error_count": len(report.errors),
    }


__all__ = [
    "ReconciliationReport",
    "SellerReconciliationService",
    "build_name_index",
    "normalize_name",
]
