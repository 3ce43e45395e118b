"""
Tests for UplineResolver and HierarchyService.
"""

import pytest
from commission_engine.calculators import UplineResolver
from commission_engine.db import PartnerHierarchy, User
from commission_engine.db.repositories import AuditLogRepository, HierarchyRepository
from commission_engine.errors import HierarchyCycle, NoBeneficiary, NotFound
from commission_engine.hierarchy import HierarchyService


def resolve(db, referrer_id):
    with db.session_scope() as session:
        return UplineResolver(session).resolve(referrer_id)


class TestUplineFromPointers:
    """No hierarchy rows yet: the parent pointers are walked."""

    def test_three_level_chain(self, db, chain):
        a, b, c = chain
        assert resolve(db, a) == [a, b, c]

    def test_root_has_no_upline(self, db, chain):
        assert resolve(db, chain[2]) == [chain[2]]

    def test_stops_after_two_ancestors(self, db, chain):
        a, b, c = chain
        with db.session_scope() as session:
            d = User(email="dora@example.com", first_name="Dora")
            session.add(d)
            session.flush()
            session.get(User, c).parent_partner_id = d.id

        assert resolve(db, a) == [a, b, c]

    def test_cycle_is_truncated(self, db, make_user):
        """A <-> B: resolution ends instead of looping."""
        b = make_user("Bob")
        a = make_user("Alice", parent_id=b)
        with db.session_scope() as session:
            session.get(User, b).parent_partner_id = a

        assert resolve(db, a) == [a, b]

    def test_unknown_referrer(self, db):
        with pytest.raises(NoBeneficiary):
            resolve(db, "missing")

    def test_no_referrer(self, db):
        with pytest.raises(NoBeneficiary):
            resolve(db, None)


class TestUplineFromHierarchyRows:
    """Materialised rows take precedence over the pointers."""

    def test_uses_rows_when_present(self, db, chain):
        a, b, c = chain
        HierarchyService(db).rebuild()

        # Break the pointer; the index still answers
        with db.session_scope() as session:
            session.get(User, a).parent_partner_id = None

        assert resolve(db, a) == [a, b, c]

    def test_level_gap_ends_chain(self, db, chain):
        a, b, c = chain
        with db.session_scope() as session:
            session.add(PartnerHierarchy(child_id=a, parent_id=c, level=2))

        assert resolve(db, a) == [a]


class TestLinkPartner:

    @pytest.fixture
    def service(self, db):
        return HierarchyService(db)

    def test_link_writes_rows_for_subtree(self, db, service, chain, make_user):
        """Moving C under a new root refreshes rows for C, B and A."""
        a, b, c = chain
        root = make_user("Root")

        written = service.link_partner(c, root, actor_id=root)

        # C: 1 ancestor, B: 2, A: 3
        assert written == 6
        with db.session_scope() as session:
            rows = HierarchyRepository(session).ancestors_of(a)
            assert [(row.level, row.parent_id) for row in rows] == [(1, b), (2, c), (3, root)]
            assert session.get(User, a).partner_level == 3
            assert session.get(User, root).parent_partner_id is None

    def test_partner_level_follows_depth(self, db, service, make_user):
        top = make_user("Top")
        mid = make_user("Mid")
        service.link_partner(mid, top)

        with db.session_scope() as session:
            assert session.get(User, mid).partner_level == 2

    def test_detach(self, db, service, chain):
        a, b, _ = chain
        service.rebuild()

        assert service.link_partner(b, None) == 1  # only A keeps an ancestor (B)
        assert service.ancestors(a) == [b]

    def test_self_link_rejected(self, service, chain):
        with pytest.raises(HierarchyCycle):
            service.link_partner(chain[0], chain[0])

    def test_link_under_own_descendant_rejected(self, db, service, chain):
        a, _, c = chain
        with pytest.raises(HierarchyCycle):
            service.link_partner(c, a)

        with db.session_scope() as session:
            assert session.get(User, c).parent_partner_id is None

    def test_unknown_users(self, service, chain):
        with pytest.raises(NotFound):
            service.link_partner("missing", chain[0])
        with pytest.raises(NotFound):
            service.link_partner(chain[0], "missing")

    def test_link_is_audited(self, db, service, chain, admin):
        a, _, c = chain
        service.link_partner(a, c, actor_id=admin)

        with db.session_scope() as session:
            entries = AuditLogRepository(session).for_entity("user", a)
            assert [entry.action for entry in entries] == ["link_partner"]
            assert entries[0].details["parent_id"] == c


class TestRebuild:

    def test_rebuild_counts_rows(self, service_db_chain):
        service, (a, b, c) = service_db_chain
        # A: 2 ancestors, B: 1, C: 0
        assert service.rebuild() == 3
        assert service.ancestors(a) == [b, c]
        assert service.ancestors(a, max_depth=1) == [b]

    def test_rebuild_replaces_old_rows(self, service_db_chain):
        service, _ = service_db_chain
        service.rebuild()
        assert service.rebuild() == 3

    def test_rebuild_reports_cycle(self, db, make_user):
        b = make_user("Bob")
        a = make_user("Alice", parent_id=b)
        with db.session_scope() as session:
            session.get(User, b).parent_partner_id = a

        with pytest.raises(HierarchyCycle):
            HierarchyService(db).rebuild()

    @pytest.fixture
    def service_db_chain(self, db, chain):
        return HierarchyService(db), chain
