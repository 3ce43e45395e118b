"""
Workflow errors.

Every business-rule violation has its own class so the API layer can map
it to a status code and a machine-readable code. They subclass ValueError
so callers that only distinguish validation failures from unexpected ones
keep working.
"""


class CommissionError(ValueError):
    """Base class for rejected commission/deal operations."""

    code = "commission_error"
    status = 400

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code, "status": "failed"}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(CommissionError):
    code = "validation_failed"
    status = 400


class InvalidAmount(CommissionError):
    code = "invalid_amount"
    status = 400


class NoBeneficiary(CommissionError):
    code = "no_beneficiary"
    status = 422


class NotFound(CommissionError):
    code = "not_found"
    status = 404


class DealNotEligible(CommissionError):
    code = "deal_not_eligible"
    status = 409


class DuplicateCommission(CommissionError):
    code = "duplicate_commission"
    status = 409


class PaymentNotApproved(CommissionError):
    code = "payment_not_approved"
    status = 409


class InvalidPaymentTransition(CommissionError):
    code = "invalid_payment_transition"
    status = 409


class InvalidStageTransition(CommissionError):
    code = "invalid_stage_transition"
    status = 409


class HierarchyCycle(CommissionError):
    code = "hierarchy_cycle"
    status = 422


class ConcurrentModification(CommissionError):
    code = "concurrent_modification"
    status = 409


class DuplicateDealCode(CommissionError):
    code = "duplicate_deal_code"
    status = 409
