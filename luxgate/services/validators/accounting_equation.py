"""
Balance sheet arithmetic validator.

Checks that total assets (109) equal total equity and liabilities (309), and
that subtotals in the dictionary agree with their printed components.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Mapping, Optional

import structlog

from luxgate.config import Settings, get_settings
from luxgate.models import BalanceCheck
from luxgate.services.code_dictionary import CodeDictionary

logger = structlog.get_logger(__name__)

TOTAL_ASSETS_CODE = "109"
TOTAL_LIABILITIES_CODE = "309"
NET_RESULT_CODE = "9910"
TOTAL_INCOME_CODE = "7900"
TOTAL_CHARGES_CODE = "6900"


@dataclass(frozen=True)
class ValidationResult:
    """Result of a validation check."""

    is_valid: bool
    message: str
    severity: str  # critical, high, medium, low, info
    details: Optional[Dict[str, str]] = None


class BalanceSheetValidator:
    """
    Validator for statutory totals.

    Checks:
    1. Total assets = total equity and liabilities (109 = 309)
    2. Dictionary subtotals agree with their components
    3. Net result = total income - total charges (9910 = 7900 - 6900)

    Statutory rounding makes small differences common, so every comparison
    uses the configured absolute tolerance.
    """

    def __init__(self, settings: Optional[Settings] = None):
        """Initialize validator."""
        self.settings = settings or get_settings()

    @property
    def tolerance(self) -> Decimal:
        return self.settings.balance_sheet_tolerance

    def check_balance(
        self,
        total_assets: Optional[Decimal],
        total_liabilities: Optional[Decimal],
    ) -> BalanceCheck:
        """
        Compare total assets with total equity and liabilities.

        Args:
            total_assets: Code 109, resolved units.
            total_liabilities: Code 309, resolved units.

        Returns:
            BalanceCheck; a missing total means the balance is not verified.
        """
        if total_assets is None or total_liabilities is None:
            missing = [
                code for code, value in ((TOTAL_ASSETS_CODE, total_assets), (TOTAL_LIABILITIES_CODE, total_liabilities))
                if value is None
            ]
            return BalanceCheck(
                balances=False,
                total_assets=total_assets,
                total_liabilities=total_liabilities,
                difference=None,
                message=f"Balance sheet balance could not be verified: missing {', '.join(missing)}",
            )

        difference = total_assets - total_liabilities
        if abs(difference) <= self.tolerance:
            return BalanceCheck(
                balances=True,
                total_assets=total_assets,
                total_liabilities=total_liabilities,
                difference=difference,
                message="Balance sheet balances: total assets = total equity and liabilities",
            )

        logger.warning(
            "Balance sheet does not balance",
            total_assets=str(total_assets),
            total_liabilities=str(total_liabilities),
            difference=str(difference),
        )
        return BalanceCheck(
            balances=False,
            total_assets=total_assets,
            total_liabilities=total_liabilities,
            difference=difference,
            message=(
                f"Balance sheet does not balance: assets ({total_assets}) != "
                f"equity and liabilities ({total_liabilities}), difference {difference}"
            ),
        )

    def validate(
        self,
        values: Mapping[str, Decimal],
        dictionary: CodeDictionary,
    ) -> List[ValidationResult]:
        """
        Validate subtotals and the P&L result.

        Args:
            values: Dict of code -> resolved value.
            dictionary: Code dictionary providing parent links.

        Returns:
            List of ValidationResults, failures only.
        """
        results = self._validate_component_sums(values, dictionary)

        result = self._validate_net_result(values)
        if result:
            results.append(result)

        return results

    def _validate_component_sums(
        self,
        values: Mapping[str, Decimal],
        dictionary: CodeDictionary,
    ) -> List[ValidationResult]:
        """Subtotal against children, checked when every child is printed."""
        results = []
        children: Dict[str, List[str]] = {}
        for definition in dictionary:
            if definition.parent_code:
                children.setdefault(definition.parent_code, []).append(definition.code)

        for parent, codes in sorted(children.items()):
            total = values.get(parent)
            present = [values[c] for c in codes if values.get(c) is not None]
            if total is None or len(present) != len(codes):
                continue

            component_sum = sum(present, Decimal(0))
            diff = total - component_sum

            if abs(diff) > self.tolerance:
                results.append(ValidationResult(
                    is_valid=False,
                    message=f"Subtotal mismatch: components of {parent} sum to {component_sum}, printed {total}",
                    severity="high",
                    details={
                        "code": parent,
                        "components": ", ".join(c for c in codes if values.get(c) is not None),
                        "total": str(total),
                        "difference": str(diff),
                    },
                ))

        return results

    def _validate_net_result(self, values: Mapping[str, Decimal]) -> Optional[ValidationResult]:
        net_result = values.get(NET_RESULT_CODE)
        income = values.get(TOTAL_INCOME_CODE)
        charges = values.get(TOTAL_CHARGES_CODE)
        if net_result is None or income is None or charges is None:
            return None

        expected = income - abs(charges)
        diff = abs(net_result - expected)
        if diff <= self.tolerance:
            return None

        return ValidationResult(
            is_valid=False,
            message=f"Net result ({net_result}) != total income - total charges ({expected})",
            severity="medium",
            details={
                "net_result": str(net_result),
                "total_income": str(income),
                "total_charges": str(charges),
                "difference": str(diff),
            },
        )
