"""
Domain: referral hierarchy over the User set.

Contract excerpts implemented here:
- The upline relation forms a forest: following upline_uid from any user must terminate.
- The data is externally writable, so every traversal is guarded anyway:
  downline walks keep a visited set keyed by uid, upline walks are capped at a
  fixed maximum depth. Corrupted data fails safe (stop / None), never loops.
- An upline_uid pointing to a user that does not exist means "upline missing":
  the walk stops there, no exception is raised.

This module is pure: the graph is built from an in-memory snapshot of users.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from .user import User

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH: int = 64


@dataclass(frozen=True, slots=True)
class TeamMember:
    """A user found below (downline) or above (upline) a reference user."""

    user: User
    level: int


class ReferralGraph:
    """
    Read-only view answering hierarchy questions over a snapshot of users.

    Build once per request and reuse for every question asked during it.
    """

    def __init__(self, users: Iterable[User], max_depth: int = DEFAULT_MAX_DEPTH) -> None:
        if max_depth < 1:
            raise ValueError("max_depth must be >= 1")

        self._max_depth = max_depth
        self._by_uid: Dict[str, User] = {}
        self._children: Dict[str, List[User]] = {}

        for user in users:
            self._by_uid[user.uid] = user
        for user in self._by_uid.values():
            if user.upline_uid:
                self._children.setdefault(user.upline_uid, []).append(user)

    def get(self, uid: str) -> Optional[User]:
        return self._by_uid.get(uid)

    def direct_reports(self, uid: str) -> List[User]:
        return list(self._children.get(uid, ()))

    def build_downline(self, root_uid: str) -> List[TeamMember]:
        """
        Breadth-first walk of everyone below `root_uid`.

        Direct reports are level 1, each further hop adds one. The root itself
        is never part of its own downline, and each uid is reported once even
        if the stored data contains a cycle.
        """

        team: List[TeamMember] = []
        visited = {root_uid}
        queue = deque([(root_uid, 0)])

        while queue:
            current_uid, level = queue.popleft()
            for child in self._children.get(current_uid, ()):
                if child.uid in visited:
                    if child.uid == root_uid:
                        logger.warning(
                            "Referral cycle back to root ignored",
                            extra={"root_uid": root_uid, "via_uid": current_uid},
                        )
                    continue
                visited.add(child.uid)
                team.append(TeamMember(user=child, level=level + 1))
                queue.append((child.uid, level + 1))

        return team

    def downline_levels(self, root_uid: str, max_level: Optional[int] = None) -> Dict[str, int]:
        """uid -> level for the downline of `root_uid`, optionally cut at `max_level`."""

        return {
            member.user.uid: member.level
            for member in self.build_downline(root_uid)
            if max_level is None or member.level <= max_level
        }

    def resolve_level(self, root_uid: str, target_uid: str) -> Optional[int]:
        """
        Hop count from `root_uid` down to `target_uid`, walking upward from the target.

        Returns:
            0 when target is root, the level when root is an ancestor of target,
            None when target is outside root's hierarchy, the target is unknown,
            the upline is dangling, or the walk overruns the depth cap.
        """

        if target_uid == root_uid:
            return 0

        current = self._by_uid.get(target_uid)
        if current is None:
            return None

        seen = {target_uid}
        hops = 0
        while hops < self._max_depth:
            upline_uid = current.upline_uid
            if not upline_uid:
                return None
            hops += 1
            if upline_uid == root_uid:
                return hops
            if upline_uid in seen:
                logger.warning(
                    "Referral cycle detected while resolving level",
                    extra={"root_uid": root_uid, "target_uid": target_uid, "at_uid": upline_uid},
                )
                return None
            seen.add(upline_uid)
            parent = self._by_uid.get(upline_uid)
            if parent is None:
                return None
            current = parent

        logger.warning(
            "Referral depth cap reached while resolving level",
            extra={"root_uid": root_uid, "target_uid": target_uid, "max_depth": self._max_depth},
        )
        return None

    def upline_chain(self, uid: str, max_hops: Optional[int] = None) -> List[TeamMember]:
        """
        Ancestors of `uid`, nearest first, with their distance as level.

        Stops at the top of the tree, at a dangling upline, on a cycle, after
        `max_hops` ancestors, or at the depth cap, whichever comes first.
        """

        limit = self._max_depth if max_hops is None else min(max_hops, self._max_depth)
        chain: List[TeamMember] = []

        current = self._by_uid.get(uid)
        if current is None:
            return chain

        seen = {uid}
        while len(chain) < limit:
            upline_uid = current.upline_uid
            if not upline_uid:
                break
            if upline_uid in seen:
                logger.warning(
                    "Referral cycle detected while walking upline",
                    extra={"uid": uid, "at_uid": upline_uid},
                )
                break
            parent = self._by_uid.get(upline_uid)
            if parent is None:
                logger.warning(
                    "Upline user missing, stopping walk",
                    extra={"uid": current.uid, "upline_uid": upline_uid},
                )
                break
            seen.add(upline_uid)
            chain.append(TeamMember(user=parent, level=len(chain) + 1))
            current = parent

        return chain


__all__ = [
    "DEFAULT_MAX_DEPTH",
    "ReferralGraph",
    "TeamMember",
]
