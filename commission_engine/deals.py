"""
Deal Service

Deal submission and pipeline stage changes. Every stage change rewrites
customer_journey_status from the stage mapper in the same transaction.
"""

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .db.database import Database
from .db.entities import Deal
from .db.repositories import AuditLogRepository, DealRepository, UserRepository
from .errors import DuplicateDealCode, InvalidStageTransition, NotFound, ValidationError
from .models import DealRecord, DealStage, SubmitDealInput
from .stages import can_transition, map_deal_stage_to_customer_journey, next_stages, parse_stage
from .validators import InputValidator

logger = logging.getLogger(__name__)


def deal_to_record(deal: Deal) -> DealRecord:
    return DealRecord(
        id=deal.id,
        deal_code=deal.deal_code,
        referrer_id=deal.referrer_id,
        parent_referrer_id=deal.parent_referrer_id,
        business_name=deal.business_name,
        business_email=deal.business_email,
        product_type=deal.product_type,
        deal_stage=deal.deal_stage,
        customer_journey_status=deal.customer_journey_status,
        estimated_commission=deal.estimated_commission,
        actual_commission=deal.actual_commission,
        submitted_at=deal.submitted_at,
        updated_at=deal.updated_at,
    )


def apply_stage(session: Session, deal: Deal, target: DealStage, actor_id: str | None) -> None:
    """
    Move a deal to target (which must be an allowed transition) and keep
    the journey status in step. Caller owns the transaction.
    """
    if deal.deal_stage == target:
        return
    if not can_transition(deal.deal_stage, target):
        allowed = ", ".join(stage.value for stage in next_stages(deal.deal_stage)) or "none"
        raise InvalidStageTransition(
            f"Cannot move deal from {deal.deal_stage.value} to {target.value} (allowed: {allowed})",
            deal_id=deal.id,
        )

    previous = deal.deal_stage
    deal.deal_stage = target
    deal.customer_journey_status = map_deal_stage_to_customer_journey(target)
    session.flush()

    AuditLogRepository(session).record(
        actor_id, "update_deal_stage", "deal", deal.id, from_stage=previous.value, to_stage=target.value
    )
    logger.info(f"Deal {deal.deal_code}: {previous.value} -> {target.value}")


class DealService:
    """Entry points for deal submission and stage changes."""

    def __init__(self, db: Database):
        self.db = db
        self.validator = InputValidator()

    def submit_deal(self, request: SubmitDealInput, stage: DealStage = DealStage.QUOTE_REQUEST_RECEIVED) -> DealRecord:
        estimate = self.validator.validate_deal(request)

        with self.db.session_scope() as session:
            users = UserRepository(session)
            if users.get_by_id(request.referrer_id) is None:
                raise NotFound(f"Referrer not found: {request.referrer_id}")
            if request.parent_referrer_id and users.get_by_id(request.parent_referrer_id) is None:
                raise NotFound(f"Parent referrer not found: {request.parent_referrer_id}")

            deals = DealRepository(session)
            if request.deal_code and deals.code_exists(request.deal_code):
                raise DuplicateDealCode(f"Deal code already in use: {request.deal_code}")
            deal_code = request.deal_code or deals.next_deal_code()

            try:
                deal = deals.create(
                    deal_code=deal_code,
                    referrer_id=request.referrer_id,
                    parent_referrer_id=request.parent_referrer_id,
                    business_name=request.business_name,
                    business_email=request.business_email,
                    business_phone=request.business_phone,
                    business_address=request.business_address,
                    product_type=request.product_type,
                    estimated_commission=estimate,
                    deal_stage=stage,
                    customer_journey_status=map_deal_stage_to_customer_journey(stage),
                )
            except IntegrityError as exc:
                if "deal_code" in str(exc.orig):
                    raise DuplicateDealCode(f"Deal code already in use: {deal_code}") from exc
                raise
            logger.info(f"Deal submitted: {deal.deal_code} ({deal.business_name}) by {deal.referrer_id}")
            return deal_to_record(deal)

    def get_deal(self, deal_id: str) -> DealRecord:
        with self.db.session_scope() as session:
            deal = DealRepository(session).get_by_id(deal_id)
            if deal is None:
                raise NotFound(f"Deal not found: {deal_id}")
            return deal_to_record(deal)

    def advance_stage(self, deal_id: str, target, actor_id: str | None) -> DealRecord:
        stage = parse_stage(target)
        if stage is None:
            raise ValidationError(f"Unknown deal stage: {target!r}")

        with self.db.session_scope() as session:
            deal = DealRepository(session).get_for_update(deal_id)
            if deal is None:
                raise NotFound(f"Deal not found: {deal_id}")
            apply_stage(session, deal, stage, actor_id)
            return deal_to_record(deal)
