"""
Deal Stage Rules

Maps pipeline stages to customer journey labels and holds the table of
allowed stage transitions.
"""

from .models import DealStage, JourneyStatus

# submitted, signup_submitted and under_review have no journey label of
# their own; legacy journey consumers see them as review_quote.
STAGE_TO_JOURNEY: dict[DealStage, JourneyStatus] = {
    DealStage.SUBMITTED: JourneyStatus.REVIEW_QUOTE,
    DealStage.QUOTE_REQUEST_RECEIVED: JourneyStatus.REVIEW_QUOTE,
    DealStage.QUOTE_SENT: JourneyStatus.QUOTE_SENT,
    DealStage.QUOTE_APPROVED: JourneyStatus.AWAITING_SIGNUP,
    DealStage.SIGNUP_SUBMITTED: JourneyStatus.REVIEW_QUOTE,
    DealStage.AGREEMENT_SENT: JourneyStatus.AGREEMENT_SENT,
    DealStage.SIGNED_AWAITING_DOCS: JourneyStatus.AWAITING_DOCS,
    DealStage.UNDER_REVIEW: JourneyStatus.REVIEW_QUOTE,
    DealStage.APPROVED: JourneyStatus.APPROVED,
    DealStage.LIVE_CONFIRM_LTR: JourneyStatus.LIVE,
    DealStage.INVOICE_RECEIVED: JourneyStatus.LIVE,
    DealStage.COMPLETED: JourneyStatus.COMPLETE,
    DealStage.DECLINED: JourneyStatus.DECLINED,
}

ALLOWED_TRANSITIONS: dict[DealStage, tuple[DealStage, ...]] = {
    DealStage.SUBMITTED: (DealStage.QUOTE_REQUEST_RECEIVED, DealStage.DECLINED),
    DealStage.QUOTE_REQUEST_RECEIVED: (DealStage.QUOTE_SENT, DealStage.DECLINED),
    DealStage.QUOTE_SENT: (DealStage.QUOTE_APPROVED, DealStage.DECLINED),
    DealStage.QUOTE_APPROVED: (DealStage.SIGNUP_SUBMITTED, DealStage.DECLINED),
    DealStage.SIGNUP_SUBMITTED: (DealStage.AGREEMENT_SENT, DealStage.DECLINED),
    DealStage.AGREEMENT_SENT: (DealStage.SIGNED_AWAITING_DOCS, DealStage.DECLINED),
    DealStage.SIGNED_AWAITING_DOCS: (DealStage.UNDER_REVIEW, DealStage.DECLINED),
    DealStage.UNDER_REVIEW: (DealStage.APPROVED, DealStage.DECLINED),
    DealStage.APPROVED: (DealStage.LIVE_CONFIRM_LTR, DealStage.DECLINED),
    DealStage.LIVE_CONFIRM_LTR: (DealStage.INVOICE_RECEIVED, DealStage.COMPLETED, DealStage.DECLINED),
    DealStage.INVOICE_RECEIVED: (DealStage.COMPLETED, DealStage.DECLINED),
    DealStage.COMPLETED: (),
    DealStage.DECLINED: (DealStage.SUBMITTED,),
}

# Stages at which a commission may be raised (both read as "live" to the customer)
COMMISSION_ELIGIBLE_STAGES = frozenset({DealStage.LIVE_CONFIRM_LTR, DealStage.INVOICE_RECEIVED})


def parse_stage(value) -> DealStage | None:
    """Return the DealStage for a raw value, or None if it is not one."""
    if isinstance(value, DealStage):
        return value
    try:
        return DealStage(value)
    except ValueError:
        return None


def map_deal_stage_to_customer_journey(deal_stage) -> JourneyStatus:
    """
    Map a deal stage to its customer journey status.

    Unrecognised input maps to REVIEW_QUOTE rather than raising; a
    REVIEW_QUOTE result is therefore not evidence of a bad stage.
    """
    stage = parse_stage(deal_stage)
    if stage is None:
        return JourneyStatus.REVIEW_QUOTE
    return STAGE_TO_JOURNEY[stage]


def can_transition(current, target) -> bool:
    current_stage = parse_stage(current)
    target_stage = parse_stage(target)
    if current_stage is None or target_stage is None:
        return False
    return target_stage in ALLOWED_TRANSITIONS[current_stage]


def next_stages(current) -> list[DealStage]:
    stage = parse_stage(current)
    if stage is None:
        return []
    return list(ALLOWED_TRANSITIONS[stage])


def is_commission_eligible(stage) -> bool:
    return parse_stage(stage) in COMMISSION_ELIGIBLE_STAGES
