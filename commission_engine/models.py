"""
Domain Models for the Partner Commission Engine

Enums for every status field plus the dataclasses passed between the
calculators, the workflow and the API layer.
All monetary values use Decimal for precision.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum

from .errors import ValidationError

# =============================================================================
# STATUS ENUMS
# =============================================================================


class DealStage(str, Enum):
    """Authoritative pipeline stage of a deal."""

    SUBMITTED = "submitted"
    QUOTE_REQUEST_RECEIVED = "quote_request_received"
    QUOTE_SENT = "quote_sent"
    QUOTE_APPROVED = "quote_approved"
    SIGNUP_SUBMITTED = "signup_submitted"
    AGREEMENT_SENT = "agreement_sent"
    SIGNED_AWAITING_DOCS = "signed_awaiting_docs"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    LIVE_CONFIRM_LTR = "live_confirm_ltr"
    INVOICE_RECEIVED = "invoice_received"
    COMPLETED = "completed"
    DECLINED = "declined"


class JourneyStatus(str, Enum):
    """Customer-facing status mirrored from the deal stage."""

    REVIEW_QUOTE = "review_quote"
    QUOTE_SENT = "quote_sent"
    AWAITING_SIGNUP = "awaiting_signup"
    AGREEMENT_SENT = "agreement_sent"
    AWAITING_DOCS = "awaiting_docs"
    APPROVED = "approved"
    LIVE = "live"
    COMPLETE = "complete"
    DECLINED = "declined"


class ApprovalStatus(str, Enum):
    """Human-review gate on a commission payment."""

    PENDING = "pending"
    NEEDS_APPROVAL = "needs_approval"
    APPROVED = "approved"
    QUERIED = "queried"


class PaymentStatus(str, Enum):
    """Stage of a commission payment as seen by the payout process."""

    PENDING = "pending"
    NEEDS_APPROVAL = "needs_approval"
    APPROVED = "approved"
    PAID = "paid"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PaymentStatus.PAID, PaymentStatus.FAILED)


# Payments in these states block a new commission for the same deal
ACTIVE_PAYMENT_STATUSES = (
    PaymentStatus.PENDING,
    PaymentStatus.NEEDS_APPROVAL,
    PaymentStatus.APPROVED,
)


class SplitStatus(str, Enum):
    """Status of a single beneficiary's ledger entry."""

    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"


# =============================================================================
# CALCULATION MODELS
# =============================================================================


@dataclass
class SplitLine:
    """One beneficiary's share of a gross commission."""

    beneficiary_id: str
    level: int  # 0 = direct referrer, 1 = upline L1, 2 = upline L2
    percentage: Decimal
    amount: Decimal
    label: str = ""


@dataclass
class CommissionDistribution:
    """Result of splitting a gross commission across a referral chain."""

    gross_amount: Decimal
    currency: str
    lines: list[SplitLine] = field(default_factory=list)

    @property
    def allocated(self) -> Decimal:
        return sum((line.amount for line in self.lines), Decimal("0"))

    @property
    def unallocated(self) -> Decimal:
        """Part of the gross not assigned to any beneficiary.

        Always at least 10% of gross; more when the chain is shorter than
        three levels. Nobody is credited with it here.
        """
        return self.gross_amount - self.allocated


# =============================================================================
# WORKFLOW SNAPSHOTS
# =============================================================================


@dataclass
class SplitRecord:
    """Persisted payment split, detached from the session."""

    id: str
    payment_id: str
    deal_id: str
    beneficiary_user_id: str
    level: int
    percentage: Decimal
    amount: Decimal
    status: SplitStatus
    created_at: datetime | None = None


@dataclass
class PaymentRecord:
    """Persisted commission payment with its splits."""

    id: str
    deal_id: str
    recipient_id: str
    gross_amount: Decimal
    amount: Decimal
    percentage: Decimal
    currency: str
    approval_status: ApprovalStatus
    payment_status: PaymentStatus
    business_name: str | None = None
    deal_stage: str | None = None
    evidence_url: str | None = None
    notes: str | None = None
    query_notes: str | None = None
    failure_reason: str | None = None
    transfer_reference: str | None = None
    payment_method: str | None = None
    created_by: str | None = None
    approved_by: str | None = None
    paid_by: str | None = None
    created_at: datetime | None = None
    approved_at: datetime | None = None
    paid_at: datetime | None = None
    splits: list[SplitRecord] = field(default_factory=list)


@dataclass
class PaymentStatusReport:
    """Answer to "does this deal already have a commission?"."""

    deal_id: str
    has_payment: bool
    payment: PaymentRecord | None = None


@dataclass
class DealRecord:
    """Persisted deal, detached from the session."""

    id: str
    deal_code: str
    referrer_id: str
    business_name: str
    deal_stage: DealStage
    customer_journey_status: JourneyStatus
    parent_referrer_id: str | None = None
    business_email: str | None = None
    product_type: str | None = None
    estimated_commission: Decimal | None = None
    actual_commission: Decimal | None = None
    submitted_at: datetime | None = None
    updated_at: datetime | None = None


_TRUE_STRINGS = ("true", "1", "yes", "on")
_FALSE_STRINGS = ("false", "0", "no", "off")


def _parse_flag(value, field_name: str, default: bool) -> bool:
    """Read a JSON boolean, accepting the usual string spellings from form posts."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in _TRUE_STRINGS:
            return True
        if normalized in _FALSE_STRINGS:
            return False
    raise ValidationError(f"{field_name} must be a boolean, got: {value!r}")


# =============================================================================
# REQUEST MODELS
# =============================================================================


@dataclass
class CreateCommissionInput:
    """Admin request to create a commission for a live deal."""

    deal_id: str
    gross_amount: object  # parsed by InputValidator.parse_amount
    actor_id: str
    currency: str = "GBP"
    evidence_url: str | None = None
    notes: str | None = None
    submit_for_approval: bool = True

    @classmethod
    def from_dict(cls, data: dict, default_currency: str = "GBP") -> "CreateCommissionInput":
        return cls(
            deal_id=data.get("dealId", ""),
            gross_amount=data.get("grossAmount"),
            actor_id=data.get("actorId", ""),
            currency=data.get("currency") or default_currency,
            evidence_url=data.get("evidenceUrl"),
            notes=data.get("notes"),
            submit_for_approval=_parse_flag(data.get("submitForApproval"), "submitForApproval", True),
        )


@dataclass
class ConfirmPaymentInput:
    """Admin confirmation that an approved commission has been paid out."""

    actor_id: str
    payment_reference: str | None = None
    payment_method: str = "Bank Transfer"
    notes: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "ConfirmPaymentInput":
        return cls(
            actor_id=data.get("actorId", ""),
            # Accept the legacy 'transferReference' key as well
            payment_reference=data.get("paymentReference", data.get("transferReference")),
            payment_method=data.get("paymentMethod") or "Bank Transfer",
            notes=data.get("paymentNotes", data.get("notes")),
        )


@dataclass
class SubmitDealInput:
    """Partner/admin submission of a new merchant lead."""

    referrer_id: str
    business_name: str
    business_email: str
    parent_referrer_id: str | None = None
    business_phone: str | None = None
    business_address: str | None = None
    product_type: str = "card_payments"
    estimated_commission: object = None
    deal_code: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "SubmitDealInput":
        return cls(
            referrer_id=data.get("referrerId", ""),
            business_name=data.get("businessName", ""),
            business_email=data.get("businessEmail", ""),
            parent_referrer_id=data.get("parentReferrerId"),
            business_phone=data.get("businessPhone"),
            business_address=data.get("businessAddress"),
            product_type=data.get("productType") or "card_payments",
            estimated_commission=data.get("estimatedCommission"),
            deal_code=data.get("dealCode"),
        )
