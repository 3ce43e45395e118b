"""Shared fixtures: a fresh in-memory database and a small referral tree."""

import pytest

from commission_engine.db import Database, Deal, User
from commission_engine.models import DealStage
from commission_engine.stages import map_deal_stage_to_customer_journey


@pytest.fixture
def db():
    database = Database("sqlite://")
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def make_user(db):
    """Insert a user; parent_id sets parent_partner_id directly (no hierarchy rows)."""
    counter = {"n": 0}

    def _make(name: str, parent_id: str | None = None, is_admin: bool = False) -> str:
        counter["n"] += 1
        with db.session_scope() as session:
            user = User(
                email=f"{name.lower()}{counter['n']}@example.com",
                first_name=name,
                parent_partner_id=parent_id,
                is_admin=is_admin,
            )
            session.add(user)
            session.flush()
            return user.id

    return _make


@pytest.fixture
def make_deal(db):
    def _make(referrer_id: str, stage: DealStage = DealStage.LIVE_CONFIRM_LTR, name: str = "Corner Cafe") -> str:
        with db.session_scope() as session:
            count = session.query(Deal).count()
            deal = Deal(
                deal_code=f"TEST-{count + 1:04d}",
                referrer_id=referrer_id,
                business_name=name,
                business_email="owner@cornercafe.example",
                deal_stage=stage,
                customer_journey_status=map_deal_stage_to_customer_journey(stage),
            )
            session.add(deal)
            session.flush()
            return deal.id

    return _make


@pytest.fixture
def admin(make_user):
    return make_user("Admin", is_admin=True)


@pytest.fixture
def chain(make_user):
    """C is the root; B reports to C; A reports to B. Returns (A, B, C)."""
    c = make_user("Carol")
    b = make_user("Bob", parent_id=c)
    a = make_user("Alice", parent_id=b)
    return a, b, c


@pytest.fixture
def live_deal(chain, make_deal):
    return make_deal(chain[0])
