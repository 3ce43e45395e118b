"""
Output Builder

Turns workflow results into the JSON shapes returned by the API.
"""

from datetime import datetime
from decimal import Decimal

from .models import (
    CommissionDistribution,
    DealRecord,
    PaymentRecord,
    PaymentStatusReport,
    SplitRecord,
)


def to_money(value: Decimal | None) -> float | None:
    """Convert Decimal to float with 2 decimal places."""
    if value is None:
        return None
    return round(float(value), 2)


def _fmt(value, currency: str = "GBP") -> str:
    """Format a number as currency string for descriptions."""
    symbol = {"GBP": "£", "USD": "$", "EUR": "€"}.get(currency, f"{currency} ")
    return f"{symbol}{value:,.2f}"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class OutputBuilder:
    """Builds API response bodies."""

    def distribution(self, dist: CommissionDistribution, deal: DealRecord | None = None) -> dict:
        body = {
            "totalCommission": to_money(dist.gross_amount),
            "currency": dist.currency,
            "allocated": to_money(dist.allocated),
            "unallocated": to_money(dist.unallocated),
            "distribution": [
                {
                    "userId": line.beneficiary_id,
                    "level": line.level,
                    "percentage": to_money(line.percentage),
                    "amount": to_money(line.amount),
                    "label": line.label,
                    "description": (
                        f"{line.percentage:.0f}% × {_fmt(dist.gross_amount, dist.currency)} = "
                        f"{_fmt(line.amount, dist.currency)}"
                    ),
                }
                for line in dist.lines
            ],
        }
        if deal is not None:
            body["dealId"] = deal.id
            body["businessName"] = deal.business_name
        return body

    def split(self, split: SplitRecord) -> dict:
        return {
            "id": split.id,
            "paymentId": split.payment_id,
            "dealId": split.deal_id,
            "beneficiaryUserId": split.beneficiary_user_id,
            "level": split.level,
            "percentage": to_money(split.percentage),
            "amount": to_money(split.amount),
            "status": split.status.value,
            "createdAt": _iso(split.created_at),
        }

    def payment(self, payment: PaymentRecord) -> dict:
        return {
            "id": payment.id,
            "dealId": payment.deal_id,
            "recipientId": payment.recipient_id,
            "businessName": payment.business_name,
            "dealStage": payment.deal_stage,
            "grossAmount": to_money(payment.gross_amount),
            "amount": to_money(payment.amount),
            "percentage": to_money(payment.percentage),
            "currency": payment.currency,
            "approvalStatus": payment.approval_status.value,
            "paymentStatus": payment.payment_status.value,
            "evidenceUrl": payment.evidence_url,
            "notes": payment.notes,
            "queryNotes": payment.query_notes,
            "failureReason": payment.failure_reason,
            "transferReference": payment.transfer_reference,
            "paymentMethod": payment.payment_method,
            "auditTrail": {
                "createdBy": payment.created_by,
                "createdAt": _iso(payment.created_at),
                "approvedBy": payment.approved_by,
                "approvedAt": _iso(payment.approved_at),
                "paidBy": payment.paid_by,
                "paidAt": _iso(payment.paid_at),
            },
            "splitTotal": to_money(sum((split.amount for split in payment.splits), Decimal("0"))),
            "splits": [self.split(split) for split in payment.splits],
        }

    def payment_status(self, report: PaymentStatusReport) -> dict:
        if not report.has_payment:
            return {"dealId": report.deal_id, "hasPayment": False}
        return {"dealId": report.deal_id, "hasPayment": True, "payment": self.payment(report.payment)}

    def deal(self, deal: DealRecord) -> dict:
        return {
            "id": deal.id,
            "dealCode": deal.deal_code,
            "referrerId": deal.referrer_id,
            "parentReferrerId": deal.parent_referrer_id,
            "businessName": deal.business_name,
            "businessEmail": deal.business_email,
            "productType": deal.product_type,
            "dealStage": deal.deal_stage.value,
            "customerJourneyStatus": deal.customer_journey_status.value,
            "estimatedCommission": to_money(deal.estimated_commission),
            "actualCommission": to_money(deal.actual_commission),
            "submittedAt": _iso(deal.submitted_at),
            "updatedAt": _iso(deal.updated_at),
        }
