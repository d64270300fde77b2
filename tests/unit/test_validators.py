"""
Unit tests for the balance sheet validator.

Tests the assets = equity and liabilities check, subtotal arithmetic and the
P&L result check.
"""
from decimal import Decimal

import pytest

from luxgate.services.validators import BalanceSheetValidator

FINANCIAL_ASSET_COMPONENTS = ("1151", "1155", "1171", "1175", "1181")


@pytest.fixture
def validator(settings) -> BalanceSheetValidator:
    """Create validator with default tolerance."""
    return BalanceSheetValidator(settings)


class TestCheckBalance:
    """Tests for check_balance."""

    def test_balances(self, validator: BalanceSheetValidator):
        """Test equal totals balance."""
        check = validator.check_balance(Decimal("1000000"), Decimal("1000000"))
        assert check.balances is True
        assert check.difference == Decimal("0")

    def test_within_tolerance(self, validator: BalanceSheetValidator):
        """Test rounding differences inside the tolerance still balance."""
        check = validator.check_balance(Decimal("1000500"), Decimal("1000000"))
        assert check.balances is True
        assert check.difference == Decimal("500")

    def test_outside_tolerance(self, validator: BalanceSheetValidator):
        """Test a real difference is reported."""
        check = validator.check_balance(Decimal("1005000"), Decimal("1000000"))
        assert check.balances is False
        assert check.difference == Decimal("5000")
        assert check.message.startswith("Balance sheet does not balance")

    def test_missing_total(self, validator: BalanceSheetValidator):
        """Test a missing total is unverified, not balanced."""
        check = validator.check_balance(Decimal("1000000"), None)
        assert check.balances is False
        assert check.difference is None
        assert "309" in check.message


class TestValidate:
    """Tests for subtotal and result validation."""

    def test_subtotal_matches(self, validator: BalanceSheetValidator, dictionary):
        """Test components summing to the subtotal pass."""
        values = {code: Decimal("100000") for code in FINANCIAL_ASSET_COMPONENTS}
        values["1500"] = Decimal("500000")
        assert validator.validate(values, dictionary) == []

    def test_subtotal_mismatch(self, validator: BalanceSheetValidator, dictionary):
        """Test a wrong subtotal is flagged with details."""
        values = {code: Decimal("100000") for code in FINANCIAL_ASSET_COMPONENTS}
        values["1500"] = Decimal("600000")
        results = validator.validate(values, dictionary)

        assert len(results) == 1
        assert results[0].is_valid is False
        assert results[0].severity == "high"
        assert results[0].details["code"] == "1500"
        assert results[0].details["difference"] == "100000"

    def test_partial_components_skipped(self, validator: BalanceSheetValidator, dictionary):
        """Test subtotals are only checked when every component is printed."""
        values = {"1151": Decimal("100000"), "1500": Decimal("999999")}
        assert validator.validate(values, dictionary) == []

    def test_net_result(self, validator: BalanceSheetValidator, dictionary):
        """Test 9910 against total income less total charges."""
        values = {"7900": Decimal("500000"), "6900": Decimal("-400000"), "9910": Decimal("100000")}
        assert validator.validate(values, dictionary) == []

    def test_net_result_mismatch(self, validator: BalanceSheetValidator, dictionary):
        """Test a wrong net result is flagged."""
        values = {"7900": Decimal("500000"), "6900": Decimal("400000"), "9910": Decimal("150000")}
        results = validator.validate(values, dictionary)

        assert len(results) == 1
        assert results[0].severity == "medium"
        assert results[0].details["difference"] == "50000"
