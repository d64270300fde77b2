"""
Deterministic metrics engine.

Every ratio is an explicit formula over resolved-unit code values. A missing
required input makes the metric unavailable (never zero) and is written to
``metrics_not_calculable`` with the codes that were missing; every computed
metric leaves a ``MetricCalculation`` audit entry.

Charges are taken as absolute amounts because filings print them with either
sign. Balance sheet amounts and results keep their printed sign.
"""
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import structlog

from luxgate.config import Settings, get_settings
from luxgate.models import (
    DeterministicMetrics,
    ExtractedCode,
    MetricCalculation,
    MetricNotCalculable,
    UnitScale,
    VolatilityFlag,
    YoYAnalysis,
)
from luxgate.services.unit_scale import apply_scale

logger = structlog.get_logger(__name__)


# Code groups
TURNOVER = "7010"
TOTAL_ASSETS = "109"
TOTAL_LIABILITIES = "309"
NET_RESULT = "9910"
TAX = "8610"
OTHER_OPERATING_INCOME = "7410"
RAW_MATERIALS = "6010"
EXTERNAL_CHARGES = ("6020", "6040")  # first present wins
STAFF_COSTS = ("6410", "6420", "6430")
DEPRECIATION = ("6510", "6520")
OTHER_OPERATING_EXPENSES = "6610"
EQUITY_COMPONENTS = ("1011L", "1061", "1069", "1071", "1073")
EQUITY_TOTAL = "309P"
IC_PAYABLES = ("1379", "4279")
OTHER_DEBT = ("1385", "4285", "1391", "4291")
IC_RECEIVABLES = ("1171", "4111")
FINANCIAL_ASSETS_TOTAL = "1500"
FINANCIAL_ASSETS_COMPONENTS = ("1151", "1155", "1171", "1175", "1181")
IC_INTEREST_INCOME = "7610"
IC_INTEREST_EXPENSE = "7710"
OTHER_INTEREST_EXPENSE = "7720"

CHARGE_CODES = frozenset(
    (RAW_MATERIALS, OTHER_OPERATING_EXPENSES, TAX, IC_INTEREST_EXPENSE, OTHER_INTEREST_EXPENSE)
    + EXTERNAL_CHARGES + STAFF_COSTS + DEPRECIATION
)

HUNDRED = Decimal(100)


def resolved_values(
    codes: Iterable[ExtractedCode],
    scale: UnitScale,
    use_prior: bool = False,
) -> Dict[str, Decimal]:
    """
    Map code -> resolved-unit value.

    The first record per code wins; null values are left out.
    """
    values: Dict[str, Decimal] = {}
    for extracted in codes:
        if extracted.code in values:
            continue
        raw = extracted.prior_value if use_prior else extracted.current_value
        value = apply_scale(raw, scale)
        if value is not None:
            values[extracted.code] = value
    return values


def _ratio(numerator: Decimal, denominator: Decimal, factor: Decimal = Decimal(1)) -> float:
    return round(float(numerator / denominator * factor), 4)


class _Ledger:
    """Collects results, audit entries and not-calculable records."""

    def __init__(self, values: Mapping[str, Decimal]):
        self.values = values
        self.results: Dict[str, Any] = {}
        self.not_calculable: List[MetricNotCalculable] = []
        self.calculations: List[MetricCalculation] = []

    def get(self, code: str) -> Optional[Decimal]:
        value = self.values.get(code)
        if value is not None and code in CHARGE_CODES:
            return abs(value)
        return value

    def component_sum(self, codes: Sequence[str]) -> Tuple[Optional[Decimal], Dict[str, Decimal]]:
        """Sum of the present components; None when none is present."""
        present = {c: self.get(c) for c in codes if self.get(c) is not None}
        if not present:
            return None, {}
        return sum(present.values(), Decimal(0)), present

    def first_present(self, codes: Sequence[str]) -> Tuple[Optional[Decimal], Dict[str, Decimal]]:
        for code in codes:
            value = self.get(code)
            if value is not None:
                return value, {code: value}
        return None, {}

    def missing(self, name: str, reason: str, missing_inputs: Sequence[str] = ()) -> None:
        self.results[name] = None
        self.not_calculable.append(MetricNotCalculable(name, reason, tuple(missing_inputs)))

    def record(self, name: str, formula: str, inputs: Mapping[str, Decimal], result: Any) -> None:
        self.results[name] = result
        self.calculations.append(MetricCalculation(name, formula, dict(inputs), float(result)))

    def compute(
        self,
        name: str,
        formula: str,
        inputs: Mapping[str, Optional[Decimal]],
        calculate: Callable[..., Any],
        positive: Sequence[str] = (),
        missing_codes: Optional[Mapping[str, Sequence[str]]] = None,
    ) -> Any:
        """
        Evaluate one metric.

        Args:
            name: Metric field name.
            formula: Human-readable formula for the audit trail.
            inputs: Named inputs; any None makes the metric unavailable.
            calculate: Called with the inputs as keyword arguments.
            positive: Inputs that must be strictly positive (denominators).
            missing_codes: Codes to report per input when it is missing.
        """
        missing_codes = missing_codes or {}
        absent = [key for key, value in inputs.items() if value is None]
        if absent:
            reported: List[str] = []
            for key in absent:
                reported.extend(missing_codes.get(key, (key,)))
            self.missing(name, f"Missing input: {', '.join(absent)}", reported)
            return None

        for key in positive:
            if inputs[key] <= 0:
                self.missing(name, f"{key} is zero or negative")
                return None

        result = calculate(**inputs)
        self.record(name, formula, inputs, result)
        return result


class DeterministicMetricsEngine:
    """Computes DeterministicMetrics from resolved-unit code values."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def compute(
        self,
        current: Mapping[str, Decimal],
        prior: Optional[Mapping[str, Decimal]] = None,
    ) -> DeterministicMetrics:
        """
        Compute every metric for the current year, plus YoY when a prior set exists.

        Args:
            current: Code -> resolved value for the current year.
            prior: Code -> resolved value for the prior year.

        Returns:
            DeterministicMetrics with an explicit not-calculable ledger.
        """
        ledger = self._compute_year(current)

        yoy = None
        if prior:
            prior_ledger = self._compute_year(prior)
            yoy = self._compute_yoy(ledger, prior_ledger)

        metrics = DeterministicMetrics(
            **ledger.results,
            yoy_analysis=yoy,
            metrics_not_calculable=tuple(ledger.not_calculable),
            calculations_performed=tuple(ledger.calculations),
        )

        logger.info(
            "Deterministic metrics computed",
            calculated=len(ledger.calculations),
            not_calculable=len(ledger.not_calculable),
            yoy=yoy is not None,
        )
        return metrics

    def _compute_year(self, values: Mapping[str, Decimal]) -> _Ledger:
        ledger = _Ledger(values)

        turnover = ledger.get(TURNOVER)
        total_assets = ledger.get(TOTAL_ASSETS)
        net_result = ledger.get(NET_RESULT)
        tax = ledger.get(TAX)

        materials = ledger.get(RAW_MATERIALS)
        external, _ = ledger.first_present(EXTERNAL_CHARGES)
        staff, _ = ledger.component_sum(STAFF_COSTS)
        depreciation, _ = ledger.component_sum(DEPRECIATION)
        other_expenses = ledger.get(OTHER_OPERATING_EXPENSES)
        other_income = ledger.get(OTHER_OPERATING_INCOME)

        equity, _ = ledger.component_sum(EQUITY_COMPONENTS)
        if equity is None:
            equity, _ = ledger.first_present((EQUITY_TOTAL,))
        ic_debt, _ = ledger.component_sum(IC_PAYABLES)
        other_debt, _ = ledger.component_sum(OTHER_DEBT)
        total_debt = None
        if ic_debt is not None or other_debt is not None:
            total_debt = (ic_debt or Decimal(0)) + (other_debt or Decimal(0))
        ic_receivables, _ = ledger.component_sum(IC_RECEIVABLES)
        financial_assets, _ = ledger.first_present((FINANCIAL_ASSETS_TOTAL,))
        if financial_assets is None:
            financial_assets, _ = ledger.component_sum(FINANCIAL_ASSETS_COMPONENTS)

        ic_interest_income = ledger.get(IC_INTEREST_INCOME)
        ic_interest_expense = ledger.get(IC_INTEREST_EXPENSE)
        interest_expense, _ = ledger.component_sum((IC_INTEREST_EXPENSE, OTHER_INTEREST_EXPENSE))

        cost_of_sales = None
        if materials is not None or external is not None:
            cost_of_sales = (materials or Decimal(0)) + (external or Decimal(0))
        operating_components = [v for v in (materials, external, staff, depreciation, other_expenses) if v is not None]
        operating_costs = sum(operating_components, Decimal(0)) if operating_components else None

        codes = {
            "turnover": (TURNOVER,),
            "total_assets": (TOTAL_ASSETS,),
            "total_liabilities": (TOTAL_LIABILITIES,),
            "net_result": (NET_RESULT,),
            "tax": (TAX,),
            "cost_of_sales": (RAW_MATERIALS,) + EXTERNAL_CHARGES,
            "operating_costs": (RAW_MATERIALS,) + EXTERNAL_CHARGES + STAFF_COSTS + DEPRECIATION + (OTHER_OPERATING_EXPENSES,),
            "external_charges": EXTERNAL_CHARGES,
            "staff_costs": STAFF_COSTS,
            "equity": EQUITY_COMPONENTS + (EQUITY_TOTAL,),
            "ic_debt": IC_PAYABLES,
            "total_debt": IC_PAYABLES + OTHER_DEBT,
            "ic_receivables": IC_RECEIVABLES,
            "financial_assets": (FINANCIAL_ASSETS_TOTAL,) + FINANCIAL_ASSETS_COMPONENTS,
            "ic_interest_income": (IC_INTEREST_INCOME,),
            "ic_interest_expense": (IC_INTEREST_EXPENSE,),
            "interest_expense": (IC_INTEREST_EXPENSE, OTHER_INTEREST_EXPENSE),
        }

        def compute(name, formula, inputs, calculate, positive=()):
            return ledger.compute(name, formula, inputs, calculate, positive, codes)

        # Amounts
        compute("total_turnover", "7010", {"turnover": turnover}, lambda turnover: turnover)
        compute("total_assets", "109", {"total_assets": total_assets}, lambda total_assets: total_assets)
        compute("total_equity", "1011L + 1061 + 1069 + 1071 + 1073 (or 309P)", {"equity": equity}, lambda equity: equity)
        compute("total_debt", "1379 + 4279 + 1385 + 4285 + 1391 + 4291", {"total_debt": total_debt}, lambda total_debt: total_debt)
        compute("ic_debt", "1379 + 4279", {"ic_debt": ic_debt}, lambda ic_debt: ic_debt)
        compute("ic_receivables", "1171 + 4111", {"ic_receivables": ic_receivables}, lambda ic_receivables: ic_receivables)
        compute("ic_interest_income", "7610", {"ic_interest_income": ic_interest_income}, lambda ic_interest_income: ic_interest_income)
        compute("ic_interest_expense", "7710", {"ic_interest_expense": ic_interest_expense}, lambda ic_interest_expense: ic_interest_expense)

        operating_profit = compute(
            "operating_profit",
            "7010 + 7410 - operating charges",
            {"turnover": turnover, "operating_costs": operating_costs},
            lambda turnover, operating_costs: turnover + (other_income or Decimal(0)) - operating_costs,
        )
        ebitda = compute(
            "ebitda",
            "operating_profit + 6510 + 6520",
            {"turnover": turnover, "operating_costs": operating_costs},
            lambda turnover, operating_costs: operating_profit + (depreciation or Decimal(0)),
        )

        # Profitability
        compute(
            "gross_margin_pct",
            "(7010 - 6010 - external charges) / 7010 * 100",
            {"turnover": turnover, "cost_of_sales": cost_of_sales},
            lambda turnover, cost_of_sales: _ratio(turnover - cost_of_sales, turnover, HUNDRED),
            positive=("turnover",),
        )
        compute(
            "operating_margin_pct",
            "operating_profit / 7010 * 100",
            {"turnover": turnover, "operating_costs": operating_costs},
            lambda turnover, operating_costs: _ratio(operating_profit, turnover, HUNDRED),
            positive=("turnover",),
        )
        compute(
            "net_margin_pct",
            "9910 / 7010 * 100",
            {"turnover": turnover, "net_result": net_result},
            lambda turnover, net_result: _ratio(net_result, turnover, HUNDRED),
            positive=("turnover",),
        )
        compute(
            "ebitda_margin_pct",
            "ebitda / 7010 * 100",
            {"turnover": turnover, "operating_costs": operating_costs},
            lambda turnover, operating_costs: _ratio(ebitda, turnover, HUNDRED),
            positive=("turnover",),
        )

        # Leverage
        compute(
            "debt_to_equity_ratio",
            "total_debt / equity",
            {"equity": equity, "total_debt": total_debt},
            lambda equity, total_debt: _ratio(total_debt, equity),
            positive=("equity",),
        )
        compute(
            "ic_debt_to_equity_ratio",
            "(1379 + 4279) / equity",
            {"equity": equity, "ic_debt": ic_debt},
            lambda equity, ic_debt: _ratio(ic_debt, equity),
            positive=("equity",),
        )
        compute(
            "ic_debt_to_total_debt_pct",
            "(1379 + 4279) / total_debt * 100",
            {"ic_debt": ic_debt, "total_debt": total_debt},
            lambda ic_debt, total_debt: _ratio(ic_debt, total_debt, HUNDRED),
            positive=("total_debt",),
        )
        compute(
            "interest_coverage_ratio",
            "ebitda / (7710 + 7720)",
            {"turnover": turnover, "operating_costs": operating_costs, "interest_expense": interest_expense},
            lambda turnover, operating_costs, interest_expense: _ratio(ebitda, interest_expense),
            positive=("interest_expense",),
        )

        # Activity
        compute(
            "asset_turnover_ratio",
            "7010 / 109",
            {"total_assets": total_assets, "turnover": turnover},
            lambda total_assets, turnover: _ratio(turnover, total_assets),
            positive=("total_assets",),
        )
        compute(
            "ic_receivables_to_total_assets_pct",
            "(1171 + 4111) / 109 * 100",
            {"total_assets": total_assets, "ic_receivables": ic_receivables},
            lambda total_assets, ic_receivables: _ratio(ic_receivables, total_assets, HUNDRED),
            positive=("total_assets",),
        )
        # 309 is the total of equity and liabilities
        creditors = None
        if ledger.get(TOTAL_LIABILITIES) is not None and equity is not None:
            creditors = ledger.get(TOTAL_LIABILITIES) - equity
        codes["creditors"] = codes["total_liabilities"] if ledger.get(TOTAL_LIABILITIES) is None else codes["equity"]
        compute(
            "ic_payables_to_total_liabilities_pct",
            "(1379 + 4279) / (309 - equity) * 100",
            {"ic_debt": ic_debt, "creditors": creditors},
            lambda ic_debt, creditors: _ratio(ic_debt, creditors, HUNDRED),
            positive=("creditors",),
        )

        # Transfer pricing
        compute(
            "staff_cost_to_revenue_pct",
            "(6410 + 6420 + 6430) / 7010 * 100",
            {"turnover": turnover, "staff_costs": staff},
            lambda turnover, staff_costs: _ratio(staff_costs, turnover, HUNDRED),
            positive=("turnover",),
        )
        compute(
            "external_charges_to_revenue_pct",
            "external charges / 7010 * 100",
            {"turnover": turnover, "external_charges": external},
            lambda turnover, external_charges: _ratio(external_charges, turnover, HUNDRED),
            positive=("turnover",),
        )
        compute(
            "financial_assets_to_total_assets_pct",
            "financial assets / 109 * 100",
            {"total_assets": total_assets, "financial_assets": financial_assets},
            lambda total_assets, financial_assets: _ratio(financial_assets, total_assets, HUNDRED),
            positive=("total_assets",),
        )
        lending_rate = compute(
            "implied_ic_lending_rate_pct",
            "7610 / (1171 + 4111) * 100",
            {"ic_interest_income": ic_interest_income, "ic_receivables": ic_receivables},
            lambda ic_interest_income, ic_receivables: _ratio(ic_interest_income, ic_receivables, HUNDRED),
            positive=("ic_receivables",),
        )
        borrowing_rate = compute(
            "implied_ic_borrowing_rate_pct",
            "7710 / (1379 + 4279) * 100",
            {"ic_interest_expense": ic_interest_expense, "ic_debt": ic_debt},
            lambda ic_interest_expense, ic_debt: _ratio(ic_interest_expense, ic_debt, HUNDRED),
            positive=("ic_debt",),
        )
        if lending_rate is not None and borrowing_rate is not None:
            spread = round((lending_rate - borrowing_rate) * 100, 2)
            ledger.record(
                "ic_spread_bps",
                "(lending rate - borrowing rate) * 100",
                {"implied_ic_lending_rate_pct": Decimal(str(lending_rate)),
                 "implied_ic_borrowing_rate_pct": Decimal(str(borrowing_rate))},
                spread,
            )
        else:
            rate_names = ("implied_ic_lending_rate_pct", "implied_ic_borrowing_rate_pct")
            missing = [
                code
                for record in ledger.not_calculable
                if record.metric_name in rate_names
                for code in record.missing_inputs
            ]
            ledger.missing(
                "ic_spread_bps",
                "Implied lending or borrowing rate unavailable",
                list(dict.fromkeys(missing)),
            )

        profit_before_tax = None
        if net_result is not None and tax is not None:
            profit_before_tax = net_result + tax
        codes["profit_before_tax"] = () if net_result is not None else (NET_RESULT,)
        compute(
            "effective_tax_rate_pct",
            "8610 / (9910 + 8610) * 100",
            {"tax": tax, "profit_before_tax": profit_before_tax},
            lambda tax, profit_before_tax: _ratio(tax, profit_before_tax, HUNDRED),
            positive=("profit_before_tax",),
        )

        return ledger

    # =========================================================================
    # Year over year
    # =========================================================================

    @staticmethod
    def _change_pct(current: Optional[Decimal], prior: Optional[Decimal]) -> Optional[float]:
        if current is None or prior is None or prior <= 0:
            return None
        return _ratio(current - prior, prior, HUNDRED)

    def _compute_yoy(self, current: _Ledger, prior: _Ledger) -> YoYAnalysis:
        s = self.settings
        flags: List[VolatilityFlag] = []

        turnover_change = self._change_pct(current.results.get("total_turnover"), prior.results.get("total_turnover"))
        if turnover_change is not None and abs(turnover_change) > s.turnover_volatility_pct:
            flags.append(VolatilityFlag(
                metric="Net Turnover",
                change=turnover_change,
                threshold=s.turnover_volatility_pct,
                tp_relevance="Significant revenue change may indicate pricing adjustments",
            ))

        ic_debt_change = self._change_pct(current.results.get("ic_debt"), prior.results.get("ic_debt"))
        if ic_debt_change is not None and ic_debt_change > s.ic_debt_growth_pct:
            flags.append(VolatilityFlag(
                metric="IC Debt",
                change=ic_debt_change,
                threshold=s.ic_debt_growth_pct,
                tp_relevance="IC debt spike warrants a review of intra-group financing terms",
            ))

        staff_current, _ = current.component_sum(STAFF_COSTS)
        staff_prior, _ = prior.component_sum(STAFF_COSTS)
        staff_change = self._change_pct(staff_current, staff_prior)
        if staff_change is not None and staff_change < s.staff_cost_contraction_pct:
            flags.append(VolatilityFlag(
                metric="Staff Costs",
                change=staff_change,
                threshold=s.staff_cost_contraction_pct,
                tp_relevance="Staff reduction may indicate substance concerns",
            ))

        margin_change = None
        margin_now = current.results.get("operating_margin_pct")
        margin_before = prior.results.get("operating_margin_pct")
        if margin_now is not None and margin_before is not None:
            margin_change = round(margin_now - margin_before, 4)
            if abs(margin_change) > s.margin_shift_pp:
                flags.append(VolatilityFlag(
                    metric="Operating Margin",
                    change=margin_change,
                    threshold=s.margin_shift_pp,
                    tp_relevance="Margin shift may indicate a change in the entity's functional profile",
                ))

        rate_change = None
        rate_now = current.results.get("implied_ic_lending_rate_pct")
        rate_before = prior.results.get("implied_ic_lending_rate_pct")
        if rate_now is not None and rate_before is not None:
            rate_change = round((rate_now - rate_before) * 100, 2)
            if abs(rate_change) > s.rate_change_bps:
                flags.append(VolatilityFlag(
                    metric="Implied IC Lending Rate",
                    change=rate_change,
                    threshold=s.rate_change_bps,
                    tp_relevance="Repricing of intra-group loans should be supported by a benchmark",
                ))

        return YoYAnalysis(
            turnover_change_pct=turnover_change,
            ic_debt_change_pct=ic_debt_change,
            staff_cost_change_pct=staff_change,
            operating_margin_change_pp=margin_change,
            implied_lending_rate_change_bps=rate_change,
            significant_volatility=tuple(flags),
        )
