"""
Commission Calculator

Splits a gross commission across the referral chain.
"""

from decimal import ROUND_HALF_UP, Decimal

from ..errors import InvalidAmount, NoBeneficiary
from ..models import CommissionDistribution, SplitLine


def quantize_money(value: Decimal) -> Decimal:
    """Round to 2 decimal places, half-up."""
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


class CommissionCalculator:
    """Calculates the fixed-percentage MLM split."""

    # Index = level in the chain (0 = direct referrer)
    LEVEL_RATES = (Decimal("60.00"), Decimal("20.00"), Decimal("10.00"))
    LEVEL_LABELS = ("Direct Commission", "Level 1 Override", "Level 2 Override")

    def calculate(
        self,
        gross_amount: Decimal,
        beneficiaries: list[str],
        currency: str = "GBP",
    ) -> CommissionDistribution:
        """
        Split gross_amount across up to three beneficiaries.

        Each level is rounded on its own; nothing is redistributed to absorb
        rounding differences. Beneficiaries past level 2 are ignored, and a
        shorter chain simply produces fewer lines: the unassigned share stays
        on the distribution as `unallocated`.
        """
        if not isinstance(gross_amount, Decimal) or not gross_amount.is_finite() or gross_amount <= 0:
            raise InvalidAmount(f"Gross commission must be positive, got: {gross_amount}")

        if not beneficiaries or not beneficiaries[0]:
            raise NoBeneficiary("Deal has no direct referrer to receive the commission")

        lines = []
        for level, beneficiary_id in enumerate(beneficiaries[: len(self.LEVEL_RATES)]):
            if not beneficiary_id:
                break
            rate = self.LEVEL_RATES[level]
            lines.append(
                SplitLine(
                    beneficiary_id=beneficiary_id,
                    level=level,
                    percentage=rate,
                    amount=self.level_amount(gross_amount, level),
                    label=self.LEVEL_LABELS[level],
                )
            )

        return CommissionDistribution(gross_amount=gross_amount, currency=currency, lines=lines)

    def level_amount(self, gross_amount: Decimal, level: int) -> Decimal:
        return quantize_money(gross_amount * self.LEVEL_RATES[level] / Decimal("100"))
