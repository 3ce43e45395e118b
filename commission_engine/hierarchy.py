"""
Partner Hierarchy

The parent_partner_id pointer on each user is the source of truth for the
referral tree. PartnerHierarchy rows are an index over it, regenerated
here whenever the tree changes.
"""

import logging

from sqlalchemy.orm import Session

from .db.database import Database
from .db.entities import PartnerHierarchy, User
from .db.repositories import AuditLogRepository, HierarchyRepository, UserRepository
from .errors import HierarchyCycle, NotFound

logger = logging.getLogger(__name__)

MAX_PARTNER_LEVEL = 3


class HierarchyService:
    """Maintains the referral tree and its materialised ancestor index."""

    def __init__(self, db: Database):
        self.db = db

    def link_partner(self, child_id: str, parent_id: str | None, actor_id: str | None = None) -> int:
        """
        Point child_id at parent_id (None detaches it) and refresh the index
        for the child's whole subtree. Returns the number of index rows written.
        """
        with self.db.session_scope() as session:
            users = UserRepository(session)
            child = users.get_by_id(child_id)
            if child is None:
                raise NotFound(f"User not found: {child_id}")

            if parent_id is not None:
                parent = users.get_by_id(parent_id)
                if parent is None:
                    raise NotFound(f"Parent user not found: {parent_id}")
                if parent_id == child_id:
                    raise HierarchyCycle("A partner cannot be their own parent", user_id=child_id)
                if child_id in self._ancestor_ids(session, parent_id):
                    raise HierarchyCycle(
                        f"Linking {child_id} under {parent_id} would create a cycle",
                        user_id=child_id,
                        parent_id=parent_id,
                    )

            child.parent_partner_id = parent_id
            session.flush()

            subtree = [child_id, *self._descendant_ids(session, child_id)]
            HierarchyRepository(session).delete_for_children(subtree)
            written = sum(self._write_rows(session, user_id) for user_id in subtree)

            AuditLogRepository(session).record(
                actor_id, "link_partner", "user", child_id, parent_id=parent_id, rows_written=written
            )
            logger.info(f"Linked partner {child_id} -> {parent_id}; {written} hierarchy rows refreshed")
            return written

    def rebuild(self) -> int:
        """Regenerate every PartnerHierarchy row from the pointer chain."""
        with self.db.session_scope() as session:
            hierarchy = HierarchyRepository(session)
            removed = hierarchy.delete_all()

            written = 0
            for user in UserRepository(session).all_users():
                written += self._write_rows(session, user.id)

            logger.info(f"Partner hierarchy rebuilt: {removed} rows removed, {written} rows written")
            return written

    def ancestors(self, user_id: str, max_depth: int | None = None) -> list[str]:
        """Ancestor ids of user_id, nearest first."""
        with self.db.session_scope() as session:
            if UserRepository(session).get_by_id(user_id) is None:
                raise NotFound(f"User not found: {user_id}")
            chain = self._ancestor_ids(session, user_id)
        return chain[:max_depth] if max_depth is not None else chain

    # -------------------------------------------------------------------------

    def _ancestor_ids(self, session: Session, user_id: str) -> list[str]:
        users = UserRepository(session)
        chain: list[str] = []
        seen = {user_id}
        current = users.get_by_id(user_id)
        while current is not None and current.parent_partner_id:
            parent_id = current.parent_partner_id
            if parent_id in seen:
                raise HierarchyCycle(f"Referral chain of {user_id} cycles at {parent_id}", user_id=user_id)
            seen.add(parent_id)
            current = users.get_by_id(parent_id)
            if current is None:
                break
            chain.append(parent_id)
        return chain

    def _descendant_ids(self, session: Session, user_id: str) -> list[str]:
        users = UserRepository(session)
        found: list[str] = []
        frontier = [user_id]
        while frontier:
            next_frontier = []
            for parent_id in frontier:
                for child in users.children_of(parent_id):
                    if child.id not in found and child.id != user_id:
                        found.append(child.id)
                        next_frontier.append(child.id)
            frontier = next_frontier
        return found

    def _write_rows(self, session: Session, user_id: str) -> int:
        chain = self._ancestor_ids(session, user_id)
        for level, parent_id in enumerate(chain, start=1):
            session.add(PartnerHierarchy(child_id=user_id, parent_id=parent_id, level=level))

        user = session.get(User, user_id)
        user.partner_level = min(len(chain) + 1, MAX_PARTNER_LEVEL)
        session.flush()
        return len(chain)
