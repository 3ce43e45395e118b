"""
Tests for deal submission and stage changes.
"""

import re

import pytest
from decimal import Decimal
from commission_engine.db import repositories
from commission_engine.db.repositories import AuditLogRepository, DealRepository
from commission_engine.deals import DealService
from commission_engine.errors import DuplicateDealCode, InvalidStageTransition, NotFound, ValidationError
from commission_engine.models import DealStage, JourneyStatus, SubmitDealInput


@pytest.fixture
def service(db):
    return DealService(db)


def submission(referrer_id, **overrides):
    data = {
        "referrer_id": referrer_id,
        "business_name": "Harbour Fish Bar",
        "business_email": "hello@harbourfish.example",
    }
    data.update(overrides)
    return SubmitDealInput(**data)


class TestSubmitDeal:

    def test_new_deal_starts_at_quote_request(self, service, chain):
        deal = service.submit_deal(submission(chain[0], estimated_commission="450"))

        assert deal.deal_stage == DealStage.QUOTE_REQUEST_RECEIVED
        assert deal.customer_journey_status == JourneyStatus.REVIEW_QUOTE
        assert deal.estimated_commission == Decimal("450")
        assert re.fullmatch(r"DEAL-\d{8}", deal.deal_code)

    def test_generated_codes_are_unique(self, service, chain):
        codes = {service.submit_deal(submission(chain[0])).deal_code for _ in range(5)}
        assert len(codes) == 5

    def test_generated_code_skips_explicit_code(self, service, chain, monkeypatch):
        service.submit_deal(submission(chain[0], deal_code="DEAL-00001001"))
        candidates = iter(["DEAL-00001001", "DEAL-00001002"])
        monkeypatch.setattr(repositories, "generate_deal_code", lambda: next(candidates))

        deal = service.submit_deal(submission(chain[0]))
        assert deal.deal_code == "DEAL-00001002"

    def test_generator_falls_back_when_exhausted(self, service, chain, monkeypatch):
        service.submit_deal(submission(chain[0], deal_code="DEAL-00001001"))
        monkeypatch.setattr(repositories, "generate_deal_code", lambda: "DEAL-00001001")

        deal = service.submit_deal(submission(chain[0]))
        assert deal.deal_code != "DEAL-00001001"
        assert re.fullmatch(r"DEAL-[0-9A-F]{12}", deal.deal_code)

    def test_explicit_deal_code_kept(self, service, chain):
        deal = service.submit_deal(submission(chain[0], deal_code="HFB-1"))
        assert deal.deal_code == "HFB-1"

    def test_explicit_deal_code_reused(self, db, service, chain):
        service.submit_deal(submission(chain[0], deal_code="HFB-1"))

        with pytest.raises(DuplicateDealCode) as exc_info:
            service.submit_deal(submission(chain[0], deal_code="HFB-1"))

        assert exc_info.value.status == 409
        with db.session_scope() as session:
            assert DealRepository(session).count() == 1

    def test_code_taken_between_check_and_insert(self, db, service, chain, monkeypatch):
        service.submit_deal(submission(chain[0], deal_code="DEAL-00002002"))
        monkeypatch.setattr(repositories, "generate_deal_code", lambda: "DEAL-00002002")
        monkeypatch.setattr(DealRepository, "code_exists", lambda self, deal_code: False)

        with pytest.raises(DuplicateDealCode, match="DEAL-00002002"):
            service.submit_deal(submission(chain[0]))

        with db.session_scope() as session:
            assert DealRepository(session).count() == 1

    def test_unknown_referrer(self, service):
        with pytest.raises(NotFound):
            service.submit_deal(submission("missing"))

    def test_unknown_parent_referrer(self, service, chain):
        with pytest.raises(NotFound):
            service.submit_deal(submission(chain[0], parent_referrer_id="missing"))

    def test_invalid_email(self, service, chain):
        with pytest.raises(ValidationError):
            service.submit_deal(submission(chain[0], business_email="nope"))

    def test_get_deal(self, service, chain):
        created = service.submit_deal(submission(chain[0]))
        assert service.get_deal(created.id).business_name == "Harbour Fish Bar"

    def test_get_missing_deal(self, service):
        with pytest.raises(NotFound):
            service.get_deal("missing")


class TestAdvanceStage:

    def test_journey_follows_stage(self, service, chain, admin):
        deal = service.submit_deal(submission(chain[0]))

        updated = service.advance_stage(deal.id, "quote_sent", admin)

        assert updated.deal_stage == DealStage.QUOTE_SENT
        assert updated.customer_journey_status == JourneyStatus.QUOTE_SENT

    def test_intermediate_stages_show_review_quote(self, service, chain, admin):
        deal = service.submit_deal(submission(chain[0]))
        for stage in ("quote_sent", "quote_approved", "signup_submitted"):
            deal = service.advance_stage(deal.id, stage, admin)

        assert deal.customer_journey_status == JourneyStatus.REVIEW_QUOTE

    def test_walk_to_live(self, service, chain, admin):
        deal = service.submit_deal(submission(chain[0]))
        for stage in ("quote_sent", "quote_approved", "signup_submitted", "agreement_sent",
                      "signed_awaiting_docs", "under_review", "approved", "live_confirm_ltr"):
            deal = service.advance_stage(deal.id, stage, admin)

        assert deal.customer_journey_status == JourneyStatus.LIVE

    def test_disallowed_transition(self, service, chain, admin):
        deal = service.submit_deal(submission(chain[0]))

        with pytest.raises(InvalidStageTransition, match="allowed: quote_sent, declined"):
            service.advance_stage(deal.id, "live_confirm_ltr", admin)

        assert service.get_deal(deal.id).deal_stage == DealStage.QUOTE_REQUEST_RECEIVED

    def test_same_stage_is_noop(self, db, service, chain, admin):
        deal = service.submit_deal(submission(chain[0]))
        service.advance_stage(deal.id, "quote_request_received", admin)

        with db.session_scope() as session:
            assert AuditLogRepository(session).for_entity("deal", deal.id) == []

    def test_unknown_stage(self, service, chain, admin):
        deal = service.submit_deal(submission(chain[0]))
        with pytest.raises(ValidationError):
            service.advance_stage(deal.id, "shipped", admin)

    def test_stage_change_audited(self, db, service, chain, admin):
        deal = service.submit_deal(submission(chain[0]))
        service.advance_stage(deal.id, "declined", admin)

        with db.session_scope() as session:
            entry = AuditLogRepository(session).for_entity("deal", deal.id)[0]
            assert entry.actor_id == admin
            assert entry.details == {"from_stage": "quote_request_received", "to_stage": "declined"}
