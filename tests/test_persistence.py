"""
Database-level guarantees: the one-open-payment index, optimistic locking
and session rollback.
"""

import pytest
from decimal import Decimal
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError
from commission_engine.db import CommissionPayment, Database, Deal, User
from commission_engine.errors import ConcurrentModification
from commission_engine.models import ApprovalStatus, CreateCommissionInput, DealStage, JourneyStatus, PaymentStatus
from commission_engine.workflow import PaymentWorkflow


def open_payment(deal_id, recipient_id, status=PaymentStatus.NEEDS_APPROVAL):
    return CommissionPayment(
        deal_id=deal_id,
        recipient_id=recipient_id,
        percentage=Decimal("60.00"),
        amount=Decimal("60.00"),
        gross_amount=Decimal("100.00"),
        approval_status=ApprovalStatus.NEEDS_APPROVAL,
        payment_status=status,
    )


class TestActivePaymentIndex:

    def test_two_open_payments_rejected(self, db, live_deal, chain):
        with db.session_scope() as session:
            session.add(open_payment(live_deal, chain[0]))

        with pytest.raises(IntegrityError):
            with db.session_scope() as session:
                session.add(open_payment(live_deal, chain[0]))

    def test_closed_payments_do_not_count(self, db, live_deal, chain):
        with db.session_scope() as session:
            session.add(open_payment(live_deal, chain[0], PaymentStatus.FAILED))
            session.add(open_payment(live_deal, chain[0], PaymentStatus.PAID))
            session.add(open_payment(live_deal, chain[0], PaymentStatus.PENDING))

        with db.session_scope() as session:
            assert session.query(CommissionPayment).count() == 3


class TestOptimisticLocking:
    """Uses a file database so the two sessions hold separate connections."""

    @pytest.fixture
    def file_db(self, tmp_path):
        database = Database(f"sqlite:///{tmp_path / 'commissions.db'}")
        database.create_all()
        yield database
        database.dispose()

    @pytest.fixture
    def seeded(self, file_db):
        with file_db.session_scope() as session:
            admin = User(email="admin@example.com", is_admin=True)
            partner = User(email="partner@example.com")
            session.add_all([admin, partner])
            session.flush()
            deal = Deal(
                deal_code="LOCK-1",
                referrer_id=partner.id,
                business_name="Lock Shop",
                business_email="keys@lockshop.example",
                deal_stage=DealStage.LIVE_CONFIRM_LTR,
                customer_journey_status=JourneyStatus.LIVE,
            )
            session.add(deal)
            session.flush()
            admin_id, deal_id = admin.id, deal.id

        payment = PaymentWorkflow(file_db).create_commission(
            CreateCommissionInput(deal_id=deal_id, gross_amount="100", actor_id=admin_id)
        )
        return admin_id, payment.id

    def test_version_starts_at_one(self, file_db, seeded):
        _, payment_id = seeded
        with file_db.session_scope() as session:
            assert session.get(CommissionPayment, payment_id).version == 1

    def test_stale_write_detected(self, file_db, seeded):
        _, payment_id = seeded
        first = file_db.new_session()
        second = file_db.new_session()
        try:
            first.get(CommissionPayment, payment_id).notes = "first"
            stale = second.get(CommissionPayment, payment_id)
            first.commit()

            stale.notes = "second"
            with pytest.raises(StaleDataError):
                second.commit()
        finally:
            first.close()
            second.rollback()
            second.close()

    def test_workflow_reports_concurrent_modification(self, file_db, seeded, monkeypatch):
        """Another writer bumps the row between load and flush."""
        admin_id, payment_id = seeded
        original_load = PaymentWorkflow._load_payment

        def load_then_race(self, session, pid):
            payment = original_load(self, session, pid)
            with file_db.engine.begin() as conn:
                conn.execute(
                    text("UPDATE commission_payments SET version = version + 1 WHERE id = :id"),
                    {"id": pid},
                )
            return payment

        monkeypatch.setattr(PaymentWorkflow, "_load_payment", load_then_race)

        with pytest.raises(ConcurrentModification):
            PaymentWorkflow(file_db).approve(payment_id, admin_id)

        monkeypatch.undo()
        current = PaymentWorkflow(file_db).get_payment(payment_id)
        assert current.payment_status == PaymentStatus.NEEDS_APPROVAL


class TestSessionScope:

    def test_rollback_on_error(self, db):
        with pytest.raises(RuntimeError):
            with db.session_scope() as session:
                session.add(User(email="temp@example.com"))
                session.flush()
                raise RuntimeError("abort")

        with db.session_scope() as session:
            assert session.query(User).count() == 0

    def test_foreign_keys_enforced(self, db):
        with pytest.raises(IntegrityError):
            with db.session_scope() as session:
                session.add(User(email="orphan@example.com", parent_partner_id="missing"))
