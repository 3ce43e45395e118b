"""
Upline Resolver

Finds the beneficiaries of a deal: the direct referrer and up to two
ancestors above them.
"""

import logging

from sqlalchemy.orm import Session

from ..db.repositories import HierarchyRepository, UserRepository
from ..errors import NoBeneficiary

logger = logging.getLogger(__name__)


class UplineResolver:
    """Resolves [referrer, upline L1, upline L2] for a referrer id."""

    MAX_UPLINE_LEVELS = 2

    def __init__(self, session: Session):
        self.users = UserRepository(session)
        self.hierarchy = HierarchyRepository(session)

    def resolve(self, referrer_id: str | None) -> list[str]:
        """
        Return the chain starting at the referrer, truncated where it ends.

        Materialised PartnerHierarchy rows are preferred; without them the
        parent_partner_id pointers are walked. An ancestor that no longer
        exists ends the chain.
        """
        referrer = self.users.get_by_id(referrer_id) if referrer_id else None
        if referrer is None:
            raise NoBeneficiary(f"Referrer not found: {referrer_id}", referrer_id=referrer_id)

        rows = [row for row in self.hierarchy.ancestors_of(referrer.id) if row.level <= self.MAX_UPLINE_LEVELS]
        if rows:
            upline = self._from_hierarchy(rows)
        else:
            upline = self._from_pointers(referrer.parent_partner_id, seen={referrer.id})

        return [referrer.id, *upline]

    def _from_hierarchy(self, rows) -> list[str]:
        upline = []
        for expected_level, row in enumerate(rows, start=1):
            # A gap in the levels means the index is stale past this point
            if row.level != expected_level or self.users.get_by_id(row.parent_id) is None:
                break
            upline.append(row.parent_id)
        return upline

    def _from_pointers(self, parent_id: str | None, seen: set[str]) -> list[str]:
        upline = []
        while parent_id and len(upline) < self.MAX_UPLINE_LEVELS:
            if parent_id in seen:
                logger.warning(f"Referral cycle detected at user {parent_id}; truncating upline")
                break
            parent = self.users.get_by_id(parent_id)
            if parent is None:
                break
            upline.append(parent.id)
            seen.add(parent.id)
            parent_id = parent.parent_partner_id
        return upline
