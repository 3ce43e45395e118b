"""
Input Validation for the Partner Commission Engine

Validates request data before any workflow step touches the database.
Raises CommissionError subclasses with clear messages for any violation.
"""

from decimal import Decimal, InvalidOperation

from .errors import InvalidAmount, ValidationError
from .models import CreateCommissionInput, SubmitDealInput

# Largest value a NUMERIC(10,2) money column holds
MAX_AMOUNT = Decimal("99999999.99")
PENNY = Decimal("0.01")


class InputValidator:
    """Validates workflow input according to business rules."""

    def parse_amount(self, value, field_name: str = "grossAmount") -> Decimal:
        """
        Parse a money amount. Raises InvalidAmount unless it is a finite
        number greater than zero with at most two decimal places that fits
        a NUMERIC(10,2) column.
        """
        if value is None or isinstance(value, bool) or (isinstance(value, str) and not value.strip()):
            raise InvalidAmount(f"{field_name} is required")
        try:
            amount = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise InvalidAmount(f"{field_name} must be numeric, got: {value!r}")

        if not amount.is_finite():
            raise InvalidAmount(f"{field_name} must be a finite number, got: {value!r}")
        if amount <= 0:
            raise InvalidAmount(f"{field_name} must be positive, got: {amount}")
        if amount > MAX_AMOUNT:
            raise InvalidAmount(f"{field_name} must not exceed {MAX_AMOUNT}, got: {amount}")
        if amount != amount.quantize(PENNY):
            raise InvalidAmount(f"{field_name} must have at most 2 decimal places, got: {amount}")
        return amount.quantize(PENNY)

    def validate_create(self, request: CreateCommissionInput) -> Decimal:
        """Validate a create-commission request and return the parsed gross amount."""
        self._require(request.deal_id, "dealId")
        self._require(request.actor_id, "actorId")
        self._validate_currency(request.currency)
        return self.parse_amount(request.gross_amount)

    def validate_deal(self, request: SubmitDealInput) -> Decimal | None:
        """Validate a deal submission and return the parsed estimate, if any."""
        self._require(request.referrer_id, "referrerId")
        self._require(request.business_name, "businessName")
        self._require(request.business_email, "businessEmail")

        if "@" not in request.business_email:
            raise ValidationError(f"businessEmail is not a valid address: {request.business_email}")

        if request.parent_referrer_id and request.parent_referrer_id == request.referrer_id:
            raise ValidationError("parentReferrerId must reference a different user than referrerId")

        if request.estimated_commission is None:
            return None
        return self.parse_amount(request.estimated_commission, "estimatedCommission")

    def require_text(self, value: str | None, field_name: str) -> str:
        if not value or not value.strip():
            raise ValidationError(f"{field_name} is required")
        return value.strip()

    def _validate_currency(self, currency: str) -> None:
        if not currency or len(currency) != 3 or not currency.isalpha():
            raise ValidationError(f"currency must be a 3-letter ISO code, got: {currency!r}")

    @staticmethod
    def _require(value, field_name: str) -> None:
        if not value:
            raise ValidationError(f"{field_name} is required")
