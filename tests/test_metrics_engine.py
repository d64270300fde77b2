"""
Unit tests for the deterministic metrics engine.
"""
from decimal import Decimal

import pytest

from luxgate.models import UnitScale
from luxgate.services.metrics_engine import DeterministicMetricsEngine, resolved_values

from conftest import make_code


def values(**kwargs) -> dict:
    """Code -> Decimal; keyword names are the codes prefixed with 'c'."""
    return {key[1:]: Decimal(str(value)) for key, value in kwargs.items()}


TRADING_COMPANY = values(
    c7010=1_000_000,
    c6010=-300_000,
    c6020=100_000,
    c6410=200_000,
    c6510=50_000,
    c9910=250_000,
    c8610=-50_000,
    c1011L=500_000,
    c4279=1_000_000,
    c4285=500_000,
    c109=3_000_000,
    c309=3_000_000,
    c1171=800_000,
    c7610=40_000,
    c7710=30_000,
)


@pytest.fixture
def engine(settings) -> DeterministicMetricsEngine:
    """Create engine instance."""
    return DeterministicMetricsEngine(settings)


class TestCurrentYearMetrics:
    """Tests for single-year metrics."""

    def test_amounts(self, engine: DeterministicMetricsEngine):
        """Test headline amounts."""
        metrics = engine.compute(TRADING_COMPANY)
        assert metrics.total_turnover == Decimal("1000000")
        assert metrics.total_equity == Decimal("500000")
        assert metrics.total_debt == Decimal("1500000")
        assert metrics.ic_debt == Decimal("1000000")
        assert metrics.operating_profit == Decimal("350000")
        assert metrics.ebitda == Decimal("400000")

    def test_profitability(self, engine: DeterministicMetricsEngine):
        """Test margins take charges as absolute amounts."""
        metrics = engine.compute(TRADING_COMPANY)
        assert metrics.gross_margin_pct == 60.0
        assert metrics.operating_margin_pct == 35.0
        assert metrics.ebitda_margin_pct == 40.0
        assert metrics.net_margin_pct == 25.0
        assert metrics.effective_tax_rate_pct == 16.6667

    def test_leverage(self, engine: DeterministicMetricsEngine):
        """Test leverage ratios."""
        metrics = engine.compute(TRADING_COMPANY)
        assert metrics.debt_to_equity_ratio == 3.0
        assert metrics.ic_debt_to_equity_ratio == 2.0
        assert metrics.ic_debt_to_total_debt_pct == 66.6667
        assert metrics.interest_coverage_ratio == 13.3333

    def test_activity_and_transfer_pricing(self, engine: DeterministicMetricsEngine):
        """Test activity and intra-group ratios."""
        metrics = engine.compute(TRADING_COMPANY)
        assert metrics.asset_turnover_ratio == 0.3333
        assert metrics.ic_receivables_to_total_assets_pct == 26.6667
        assert metrics.ic_payables_to_total_liabilities_pct == 40.0
        assert metrics.staff_cost_to_revenue_pct == 20.0
        assert metrics.external_charges_to_revenue_pct == 10.0
        assert metrics.financial_assets_to_total_assets_pct == 26.6667
        assert metrics.implied_ic_lending_rate_pct == 5.0
        assert metrics.implied_ic_borrowing_rate_pct == 3.0
        assert metrics.ic_spread_bps == 200.0

    def test_audit_trail(self, engine: DeterministicMetricsEngine):
        """Test every computed metric leaves a calculation record."""
        metrics = engine.compute(TRADING_COMPANY)
        by_name = {c.metric: c for c in metrics.calculations_performed}
        assert by_name["net_margin_pct"].inputs == {
            "turnover": Decimal("1000000"),
            "net_result": Decimal("250000"),
        }
        assert by_name["net_margin_pct"].result == 25.0
        assert metrics.metrics_not_calculable == ()

    def test_lookup_by_name(self, engine: DeterministicMetricsEngine):
        """Test get() reads metrics and ignores other fields."""
        metrics = engine.compute(TRADING_COMPANY)
        assert metrics.get("net_margin_pct") == 25.0
        assert metrics.get("yoy_analysis") is None
        assert metrics.get("no_such_metric") is None


class TestNotCalculable:
    """Tests for missing and invalid inputs."""

    def test_null_turnover(self, engine: DeterministicMetricsEngine):
        """Test a missing turnover makes turnover ratios null, never zero."""
        current = {k: v for k, v in TRADING_COMPANY.items() if k != "7010"}
        metrics = engine.compute(current)

        for name in ("gross_margin_pct", "operating_margin_pct", "net_margin_pct", "staff_cost_to_revenue_pct"):
            assert metrics.get(name) is None
            assert name in metrics.not_calculable_names()

        missing = {m.metric_name: m for m in metrics.metrics_not_calculable}
        assert "7010" in missing["net_margin_pct"].missing_inputs
        assert missing["net_margin_pct"].reason == "Missing input: turnover"
        assert metrics.debt_to_equity_ratio == 3.0

    def test_zero_equity(self, engine: DeterministicMetricsEngine):
        """Test a zero denominator is recorded, not divided."""
        metrics = engine.compute(values(c1011L=0, c4279=100))
        assert metrics.debt_to_equity_ratio is None
        missing = {m.metric_name: m for m in metrics.metrics_not_calculable}
        assert missing["debt_to_equity_ratio"].reason == "equity is zero or negative"

    def test_negative_equity(self, engine: DeterministicMetricsEngine):
        """Test negative equity gives no leverage ratio."""
        metrics = engine.compute(values(c1011L=-500, c4279=100))
        assert metrics.ic_debt_to_equity_ratio is None

    def test_equity_total_fallback(self, engine: DeterministicMetricsEngine):
        """Test 309P is used when no equity component is present."""
        metrics = engine.compute(values(c309P=400_000))
        assert metrics.total_equity == Decimal("400000")

    def test_spread_needs_both_rates(self, engine: DeterministicMetricsEngine):
        """Test the spread reports the missing side."""
        metrics = engine.compute(values(c1171=100, c7610=5))
        assert metrics.ic_spread_bps is None
        missing = {m.metric_name: m for m in metrics.metrics_not_calculable}
        assert missing["ic_spread_bps"].missing_inputs == ("7710", "1379", "4279")

    def test_spread_reports_missing_balances_not_present_income(self, engine: DeterministicMetricsEngine):
        """Test a lending rate without IC receivables names the receivable codes, not 7610."""
        metrics = engine.compute(values(c7610=5, c4279=100, c7710=3))
        assert metrics.implied_ic_borrowing_rate_pct == 3.0
        missing = {m.metric_name: m for m in metrics.metrics_not_calculable}
        assert missing["implied_ic_lending_rate_pct"].missing_inputs == ("1171", "4111")
        assert missing["ic_spread_bps"].missing_inputs == ("1171", "4111")

    def test_empty_input(self, engine: DeterministicMetricsEngine):
        """Test no values gives no metrics and no YoY."""
        metrics = engine.compute({})
        assert metrics.calculations_performed == ()
        assert metrics.yoy_analysis is None
        assert "total_assets" in metrics.not_calculable_names()


class TestYearOverYear:
    """Tests for YoY analysis and volatility flags."""

    def test_turnover_and_ic_debt_flags(self, engine: DeterministicMetricsEngine):
        """Test large moves are flagged with TP relevance."""
        prior = values(c7010=800_000, c4279=500_000)
        metrics = engine.compute(TRADING_COMPANY, prior)
        yoy = metrics.yoy_analysis

        assert yoy.turnover_change_pct == 25.0
        assert yoy.ic_debt_change_pct == 100.0
        flagged = {f.metric for f in yoy.significant_volatility}
        assert flagged == {"Net Turnover", "IC Debt"}

    def test_stable_year(self, engine: DeterministicMetricsEngine):
        """Test small moves raise no flag."""
        metrics = engine.compute(TRADING_COMPANY, dict(TRADING_COMPANY))
        yoy = metrics.yoy_analysis
        assert yoy.turnover_change_pct == 0.0
        assert yoy.operating_margin_change_pp == 0.0
        assert yoy.implied_lending_rate_change_bps == 0.0
        assert yoy.significant_volatility == ()

    def test_staff_contraction(self, engine: DeterministicMetricsEngine):
        """Test a staff cost drop beyond the threshold is flagged."""
        metrics = engine.compute(values(c6410=700), values(c6410=1000))
        assert metrics.yoy_analysis.staff_cost_change_pct == -30.0
        assert [f.metric for f in metrics.yoy_analysis.significant_volatility] == ["Staff Costs"]


class TestResolvedValues:
    """Tests for resolved_values."""

    def test_scale_applied(self):
        """Test printed values are multiplied by the scale."""
        codes = [make_code("7010", current="1234", prior="1000")]
        assert resolved_values(codes, UnitScale.THOUSANDS) == {"7010": Decimal("1234000")}
        assert resolved_values(codes, UnitScale.THOUSANDS, use_prior=True) == {"7010": Decimal("1000000")}

    def test_first_record_wins(self):
        """Test duplicates keep the first record; nulls are skipped."""
        codes = [make_code("7010", current="1"), make_code("7010", current="2"), make_code("109")]
        assert resolved_values(codes, UnitScale.UNITS) == {"7010": Decimal("1")}
