"""
Unit Tests for Commission Calculator

Tests verify the 60/20/10 split across a referral chain.
"""

import pytest
from decimal import Decimal
from commission_engine.calculators.commission import CommissionCalculator, quantize_money
from commission_engine.errors import InvalidAmount, NoBeneficiary


class TestLevelSplit:
    """Test the fixed percentage per level."""

    @pytest.fixture
    def calculator(self):
        return CommissionCalculator()

    def test_full_chain_gets_60_20_10(self, calculator):
        """Three-level chain: referrer, parent and grandparent all paid."""
        result = calculator.calculate(Decimal("1000.00"), ["A", "B", "C"])

        assert [(line.beneficiary_id, line.amount) for line in result.lines] == [
            ("A", Decimal("600.00")),
            ("B", Decimal("200.00")),
            ("C", Decimal("100.00")),
        ]
        assert [line.percentage for line in result.lines] == [Decimal("60"), Decimal("20"), Decimal("10")]
        assert [line.level for line in result.lines] == [0, 1, 2]

    def test_referrer_without_parent_gets_60_only(self, calculator):
        """No upline: one line, the rest is unallocated."""
        result = calculator.calculate(Decimal("1000.00"), ["A"])

        assert len(result.lines) == 1
        assert result.lines[0].amount == Decimal("600.00")
        assert result.allocated == Decimal("600.00")
        assert result.unallocated == Decimal("400.00")

    def test_two_level_chain(self, calculator):
        result = calculator.calculate(Decimal("500"), ["A", "B"])

        assert [line.amount for line in result.lines] == [Decimal("300.00"), Decimal("100.00")]
        assert result.unallocated == Decimal("100.00")

    def test_full_chain_leaves_ten_percent_unallocated(self, calculator):
        result = calculator.calculate(Decimal("1000.00"), ["A", "B", "C"])
        assert result.unallocated == Decimal("100.00")

    def test_beneficiaries_past_level_two_ignored(self, calculator):
        """A fourth ancestor never receives anything."""
        result = calculator.calculate(Decimal("1000"), ["A", "B", "C", "D"])

        assert [line.beneficiary_id for line in result.lines] == ["A", "B", "C"]

    def test_labels_follow_level(self, calculator):
        result = calculator.calculate(Decimal("100"), ["A", "B", "C"])
        assert [line.label for line in result.lines] == [
            "Direct Commission",
            "Level 1 Override",
            "Level 2 Override",
        ]

    def test_currency_carried_through(self, calculator):
        result = calculator.calculate(Decimal("100"), ["A"], currency="EUR")
        assert result.currency == "EUR"
        assert result.gross_amount == Decimal("100")


class TestRounding:
    """Each level rounds half-up on its own."""

    @pytest.fixture
    def calculator(self):
        return CommissionCalculator()

    def test_rounds_each_level_independently(self, calculator):
        # 33.33 * 0.6 = 19.998, * 0.2 = 6.666, * 0.1 = 3.333
        result = calculator.calculate(Decimal("33.33"), ["A", "B", "C"])

        assert [line.amount for line in result.lines] == [
            Decimal("20.00"),
            Decimal("6.67"),
            Decimal("3.33"),
        ]

    def test_half_cent_rounds_up(self, calculator):
        # 0.05 * 0.1 = 0.005
        result = calculator.calculate(Decimal("0.05"), ["A", "B", "C"])
        assert result.lines[2].amount == Decimal("0.01")

    def test_quantize_money_half_up(self):
        assert quantize_money(Decimal("2.345")) == Decimal("2.35")
        assert quantize_money(Decimal("2.344")) == Decimal("2.34")

    def test_level_amount(self, calculator):
        assert calculator.level_amount(Decimal("250"), 1) == Decimal("50.00")


class TestRejectedInput:
    """Invalid amounts and missing referrers raise before anything is built."""

    @pytest.fixture
    def calculator(self):
        return CommissionCalculator()

    @pytest.mark.parametrize("gross", [Decimal("0"), Decimal("-10"), Decimal("NaN"), Decimal("Infinity")])
    def test_non_positive_or_non_finite_gross(self, calculator, gross):
        with pytest.raises(InvalidAmount):
            calculator.calculate(gross, ["A"])

    def test_float_gross_rejected(self, calculator):
        """Only Decimal reaches the calculator; parsing belongs to the validator."""
        with pytest.raises(InvalidAmount):
            calculator.calculate(100.0, ["A"])

    def test_empty_chain(self, calculator):
        with pytest.raises(NoBeneficiary):
            calculator.calculate(Decimal("100"), [])

    def test_missing_referrer(self, calculator):
        with pytest.raises(NoBeneficiary):
            calculator.calculate(Decimal("100"), [None, "B"])
