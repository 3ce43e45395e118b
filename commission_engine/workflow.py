"""
Payment Workflow - Commission Lifecycle Orchestrator

Creates commission payments for live deals and moves them through review
and payout:

    (none) --create--> pending
    pending --submit_for_approval--> needs_approval
    needs_approval --approve--> approved
    needs_approval --query--> queried --resolve_query--> needs_approval
    approved --confirm_payment--> paid
    any non-terminal --fail--> failed

approval_status and payment_status move together; approval_status is the
review gate and must read `approved` before payment_status may leave
`needs_approval`. Each operation runs in its own transaction and either
fully applies or leaves every row untouched.
"""

import logging
import time

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from .calculators import CommissionCalculator, UplineResolver
from .db.base import utcnow
from .db.database import Database
from .db.entities import CommissionPayment, PaymentSplit
from .db.repositories import (
    AuditLogRepository,
    CommissionPaymentRepository,
    DealRepository,
    UserRepository,
)
from .deals import apply_stage
from .errors import (
    ConcurrentModification,
    DealNotEligible,
    DuplicateCommission,
    InvalidPaymentTransition,
    NotFound,
    PaymentNotApproved,
    ValidationError,
)
from .models import (
    ApprovalStatus,
    CommissionDistribution,
    ConfirmPaymentInput,
    CreateCommissionInput,
    DealStage,
    PaymentRecord,
    PaymentStatus,
    PaymentStatusReport,
    SplitRecord,
    SplitStatus,
)
from .stages import can_transition, is_commission_eligible
from .validators import InputValidator

logger = logging.getLogger(__name__)

ACTIVE_DEAL_INDEX = "uq_commission_payments_active_deal"


def split_to_record(split: PaymentSplit) -> SplitRecord:
    return SplitRecord(
        id=split.id,
        payment_id=split.payment_id,
        deal_id=split.deal_id,
        beneficiary_user_id=split.beneficiary_user_id,
        level=split.level,
        percentage=split.percentage,
        amount=split.amount,
        status=split.status,
        created_at=split.created_at,
    )


def payment_to_record(payment: CommissionPayment) -> PaymentRecord:
    return PaymentRecord(
        id=payment.id,
        deal_id=payment.deal_id,
        recipient_id=payment.recipient_id,
        gross_amount=payment.gross_amount,
        amount=payment.amount,
        percentage=payment.percentage,
        currency=payment.currency,
        approval_status=payment.approval_status,
        payment_status=payment.payment_status,
        business_name=payment.business_name,
        deal_stage=payment.deal_stage,
        evidence_url=payment.evidence_url,
        notes=payment.notes,
        query_notes=payment.query_notes,
        failure_reason=payment.failure_reason,
        transfer_reference=payment.transfer_reference,
        payment_method=payment.payment_method,
        created_by=payment.created_by,
        approved_by=payment.approved_by,
        paid_by=payment.paid_by,
        created_at=payment.created_at,
        approved_at=payment.approved_at,
        paid_at=payment.paid_at,
        splits=[split_to_record(split) for split in payment.splits],
    )


def _is_active_deal_conflict(exc: IntegrityError) -> bool:
    message = str(exc.orig)
    return ACTIVE_DEAL_INDEX in message or "commission_payments.deal_id" in message


class PaymentWorkflow:
    """
    Commission payment operations.

    Every mutating call takes the acting admin's id explicitly; it is
    written to the audit fields and the admin audit log.
    """

    def __init__(self, db: Database, calculator: CommissionCalculator | None = None):
        self.db = db
        self.validator = InputValidator()
        self.calculator = calculator or CommissionCalculator()

    # =========================================================================
    # READ / PREVIEW
    # =========================================================================

    def preview_commission(self, deal_id: str, actual_commission, currency: str = "GBP") -> CommissionDistribution:
        """Return the split create_commission would persist. Writes nothing."""
        gross = self.validator.parse_amount(actual_commission, "actualCommission")
        with self.db.session_scope() as session:
            deal = DealRepository(session).get_by_id(deal_id)
            if deal is None:
                raise NotFound(f"Deal not found: {deal_id}")
            beneficiaries = UplineResolver(session).resolve(deal.referrer_id)
            return self.calculator.calculate(gross, beneficiaries, currency)

    def get_payment_status(self, deal_id: str) -> PaymentStatusReport:
        """Latest payment for a deal, if any, with its splits."""
        with self.db.session_scope() as session:
            if DealRepository(session).get_by_id(deal_id) is None:
                raise NotFound(f"Deal not found: {deal_id}")
            payments = CommissionPaymentRepository(session).by_deal(deal_id)
            if not payments:
                return PaymentStatusReport(deal_id=deal_id, has_payment=False)
            return PaymentStatusReport(deal_id=deal_id, has_payment=True, payment=payment_to_record(payments[0]))

    def get_payment(self, payment_id: str) -> PaymentRecord:
        with self.db.session_scope() as session:
            return payment_to_record(self._load_payment(session, payment_id))

    def list_payments(
        self,
        payment_status: PaymentStatus | str | None = None,
        recipient_id: str | None = None,
    ) -> list[PaymentRecord]:
        status = None
        if payment_status is not None:
            try:
                status = PaymentStatus(payment_status)
            except ValueError:
                raise ValidationError(f"Unknown payment status: {payment_status!r}")

        with self.db.session_scope() as session:
            payments = CommissionPaymentRepository(session).search(status, recipient_id)
            return [payment_to_record(payment) for payment in payments]

    # =========================================================================
    # CREATE
    # =========================================================================

    def create_commission(self, request: CreateCommissionInput) -> PaymentRecord:
        """
        Create a commission payment plus one split per resolved beneficiary.

        Rejects (never merges) a second commission while the deal already
        has one in pending/needs_approval/approved. The partial unique index
        catches the same conflict when two requests race past the check.
        """
        gross = self.validator.validate_create(request)
        currency = request.currency.upper()

        with self.db.session_scope() as session:
            self._require_actor(session, request.actor_id)

            deal = DealRepository(session).get_for_update(request.deal_id)
            if deal is None:
                raise NotFound(f"Deal not found: {request.deal_id}")

            if not is_commission_eligible(deal.deal_stage):
                raise DealNotEligible(
                    f"Deal must be live to create a commission (current stage: {deal.deal_stage.value})",
                    deal_id=deal.id,
                    deal_stage=deal.deal_stage.value,
                )

            existing = CommissionPaymentRepository(session).active_for_deal(deal.id)
            if existing is not None:
                raise DuplicateCommission(
                    "A commission payment already exists for this deal",
                    deal_id=deal.id,
                    payment_id=existing.id,
                    payment_status=existing.payment_status.value,
                )

            beneficiaries = UplineResolver(session).resolve(deal.referrer_id)
            distribution = self.calculator.calculate(gross, beneficiaries, currency)
            direct = distribution.lines[0]

            status = ApprovalStatus.NEEDS_APPROVAL if request.submit_for_approval else ApprovalStatus.PENDING
            payment = CommissionPayment(
                deal_id=deal.id,
                recipient_id=direct.beneficiary_id,
                level=direct.level,
                percentage=direct.percentage,
                amount=direct.amount,
                gross_amount=gross,
                total_commission=gross,
                currency=currency,
                business_name=deal.business_name,
                deal_stage=deal.deal_stage.value,
                approval_status=status,
                payment_status=PaymentStatus(status.value),
                evidence_url=request.evidence_url,
                notes=request.notes,
                created_by=request.actor_id,
            )
            for line in distribution.lines:
                payment.splits.append(
                    PaymentSplit(
                        deal_id=deal.id,
                        beneficiary_user_id=line.beneficiary_id,
                        level=line.level,
                        percentage=line.percentage,
                        amount=line.amount,
                        status=SplitStatus.PENDING,
                    )
                )
            session.add(payment)

            # A failed flush expires every instance; only plain values below
            deal_id = deal.id
            try:
                session.flush()
            except IntegrityError as exc:
                if _is_active_deal_conflict(exc):
                    raise DuplicateCommission(
                        "A commission payment already exists for this deal", deal_id=deal_id
                    ) from exc
                raise

            deal.actual_commission = gross
            if deal.deal_stage != DealStage.INVOICE_RECEIVED:
                apply_stage(session, deal, DealStage.INVOICE_RECEIVED, request.actor_id)

            AuditLogRepository(session).record(
                request.actor_id,
                "create_commission",
                "payment",
                payment.id,
                deal_id=deal.id,
                gross_amount=str(gross),
                currency=currency,
                unallocated=str(distribution.unallocated),
                splits=[
                    {"level": line.level, "user_id": line.beneficiary_id, "amount": str(line.amount)}
                    for line in distribution.lines
                ],
            )
            logger.info(
                f"Commission created for deal {deal.deal_code}: {currency} {gross} "
                f"across {len(distribution.lines)} beneficiaries (payment {payment.id})"
            )
            return payment_to_record(payment)

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def submit_for_approval(self, payment_id: str, actor_id: str) -> PaymentRecord:
        def submit(session: Session, payment: CommissionPayment) -> dict:
            self._require_status(payment, PaymentStatus.PENDING, "submitted for approval")
            payment.approval_status = ApprovalStatus.NEEDS_APPROVAL
            payment.payment_status = PaymentStatus.NEEDS_APPROVAL
            return {}

        return self._transition(payment_id, actor_id, "submit_payment", submit)

    def approve(self, payment_id: str, actor_id: str) -> PaymentRecord:
        """Approve a payment under review. Does not mark it paid."""

        def approve(session: Session, payment: CommissionPayment) -> dict:
            self._require_status(payment, PaymentStatus.NEEDS_APPROVAL, "approved")
            if payment.approval_status == ApprovalStatus.QUERIED:
                raise InvalidPaymentTransition(
                    "Payment has an open query; resolve it before approving", payment_id=payment.id
                )
            payment.approval_status = ApprovalStatus.APPROVED
            payment.payment_status = PaymentStatus.APPROVED
            payment.approved_by = actor_id
            payment.approved_at = utcnow()
            for split in payment.splits:
                split.status = SplitStatus.APPROVED
            return {"splits": len(payment.splits)}

        return self._transition(payment_id, actor_id, "approve_payment", approve)

    def query(self, payment_id: str, actor_id: str, query_notes: str | None) -> PaymentRecord:
        notes = self.validator.require_text(query_notes, "queryNotes")

        def raise_query(session: Session, payment: CommissionPayment) -> dict:
            self._require_status(payment, PaymentStatus.NEEDS_APPROVAL, "queried")
            if payment.approval_status != ApprovalStatus.NEEDS_APPROVAL:
                raise InvalidPaymentTransition(
                    f"Payment cannot be queried from approval status: {payment.approval_status.value}",
                    payment_id=payment.id,
                )
            payment.approval_status = ApprovalStatus.QUERIED
            payment.query_notes = notes
            return {"query_notes": notes}

        return self._transition(payment_id, actor_id, "query_payment", raise_query)

    def resolve_query(self, payment_id: str, actor_id: str, notes: str | None = None) -> PaymentRecord:
        def resolve(session: Session, payment: CommissionPayment) -> dict:
            if payment.approval_status != ApprovalStatus.QUERIED:
                raise InvalidPaymentTransition("Payment has no open query", payment_id=payment.id)
            payment.approval_status = ApprovalStatus.NEEDS_APPROVAL
            if notes:
                payment.notes = f"{payment.notes}\n{notes}" if payment.notes else notes
            return {"resolution": notes}

        return self._transition(payment_id, actor_id, "resolve_payment_query", resolve)

    def confirm_payment(self, payment_id: str, request: ConfirmPaymentInput) -> PaymentRecord:
        """Mark an approved payment and all of its splits as paid."""

        def confirm(session: Session, payment: CommissionPayment) -> dict:
            if payment.payment_status.is_terminal:
                raise InvalidPaymentTransition(
                    f"Payment is already {payment.payment_status.value}", payment_id=payment.id
                )
            if payment.approval_status != ApprovalStatus.APPROVED or payment.payment_status != PaymentStatus.APPROVED:
                raise PaymentNotApproved(
                    f"Payment must be approved before marking as paid. "
                    f"Current status: {payment.payment_status.value}",
                    payment_id=payment.id,
                )

            now = utcnow()
            payment.payment_status = PaymentStatus.PAID
            payment.paid_by = request.actor_id
            payment.paid_at = now
            payment.payment_date = now
            payment.transfer_reference = request.payment_reference or f"PAY_{int(time.time() * 1000)}"
            payment.payment_method = request.payment_method
            if request.notes:
                payment.notes = f"{payment.notes}\n{request.notes}" if payment.notes else request.notes
            for split in payment.splits:
                split.status = SplitStatus.PAID

            self._complete_deal(session, payment, request.actor_id)
            return {
                "deal_id": payment.deal_id,
                "gross_amount": str(payment.gross_amount),
                "transfer_reference": payment.transfer_reference,
                "payment_method": payment.payment_method,
            }

        return self._transition(payment_id, request.actor_id, "mark_payment_paid", confirm)

    def fail(self, payment_id: str, actor_id: str, reason: str | None) -> PaymentRecord:
        failure_reason = self.validator.require_text(reason, "reason")

        def mark_failed(session: Session, payment: CommissionPayment) -> dict:
            if payment.payment_status.is_terminal:
                raise InvalidPaymentTransition(
                    f"Payment is already {payment.payment_status.value}", payment_id=payment.id
                )
            payment.payment_status = PaymentStatus.FAILED
            payment.failure_reason = failure_reason
            return {"reason": failure_reason}

        return self._transition(payment_id, actor_id, "fail_payment", mark_failed)

    def amend_payment(
        self,
        payment_id: str,
        actor_id: str,
        gross_amount=None,
        evidence_url: str | None = None,
        notes: str | None = None,
    ) -> PaymentRecord:
        """
        Edit the payment header while it is still open.

        Split rows keep the amounts fixed at creation; a different split
        needs a new payment.
        """
        new_gross = self.validator.parse_amount(gross_amount) if gross_amount is not None else None

        def amend(session: Session, payment: CommissionPayment) -> dict:
            if payment.payment_status.is_terminal:
                raise InvalidPaymentTransition(
                    f"Payment is already {payment.payment_status.value}", payment_id=payment.id
                )
            changes = {}
            if new_gross is not None:
                changes["gross_amount"] = {"from": str(payment.gross_amount), "to": str(new_gross)}
                payment.gross_amount = new_gross
                payment.total_commission = new_gross
            if evidence_url is not None:
                payment.evidence_url = evidence_url
                changes["evidence_url"] = evidence_url
            if notes is not None:
                payment.notes = notes
                changes["notes"] = notes
            return changes

        return self._transition(payment_id, actor_id, "amend_payment", amend)

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _transition(self, payment_id: str, actor_id: str, action: str, mutate) -> PaymentRecord:
        """Load, check, mutate and audit one payment inside a single transaction."""
        try:
            with self.db.session_scope() as session:
                self._require_actor(session, actor_id)
                payment = self._load_payment(session, payment_id)
                before = (payment.approval_status.value, payment.payment_status.value)

                details = mutate(session, payment) or {}
                session.flush()

                after = (payment.approval_status.value, payment.payment_status.value)
                AuditLogRepository(session).record(
                    actor_id, action, "payment", payment.id, before=list(before), after=list(after), **details
                )
                logger.info(f"Payment {payment.id} {action}: {before} -> {after} by {actor_id}")
                return payment_to_record(payment)
        except StaleDataError as exc:
            logger.warning(f"Concurrent update lost for payment {payment_id} during {action}")
            raise ConcurrentModification(
                "Payment was modified by another request; reload and retry", payment_id=payment_id
            ) from exc

    def _load_payment(self, session: Session, payment_id: str) -> CommissionPayment:
        payment = CommissionPaymentRepository(session).get_by_id(payment_id)
        if payment is None:
            raise NotFound(f"Payment not found: {payment_id}")
        return payment

    @staticmethod
    def _require_actor(session: Session, actor_id: str | None) -> None:
        if not actor_id:
            raise ValidationError("actorId is required")
        if UserRepository(session).get_by_id(actor_id) is None:
            raise NotFound(f"Acting user not found: {actor_id}")

    @staticmethod
    def _require_status(payment: CommissionPayment, expected: PaymentStatus, verb: str) -> None:
        if payment.payment_status != expected:
            raise InvalidPaymentTransition(
                f"Payment cannot be {verb} from status: {payment.payment_status.value}",
                payment_id=payment.id,
                payment_status=payment.payment_status.value,
            )

    @staticmethod
    def _complete_deal(session: Session, payment: CommissionPayment, actor_id: str) -> None:
        deal = DealRepository(session).get_by_id(payment.deal_id)
        if deal is None:
            return
        if can_transition(deal.deal_stage, DealStage.COMPLETED):
            apply_stage(session, deal, DealStage.COMPLETED, actor_id)
        else:
            logger.warning(
                f"Deal {deal.deal_code} left at {deal.deal_stage.value} after payment {payment.id} was paid"
            )
