"""
Unit tests for the company profile classifier.
"""
from datetime import date
from decimal import Decimal

import pytest

from luxgate.models import (
    AccountType,
    CompanySize,
    ConsolidationStatus,
    ReportingStandard,
    SizeSource,
)
from luxgate.services.company_profile import (
    CompanyProfileClassifier,
    ProfileOverrides,
    parse_statement_date,
)


@pytest.fixture
def classifier(settings) -> CompanyProfileClassifier:
    """Create classifier instance."""
    return CompanyProfileClassifier(settings)


class TestSizeClassification:
    """Tests for the 2-of-3 threshold test."""

    def test_medium(self, classifier: CompanyProfileClassifier):
        """Test two small cutoffs exceeded makes a medium company."""
        size = classifier.classify_size(Decimal("5000000"), Decimal("9000000"), 10)
        assert size.size == CompanySize.MEDIUM
        assert size.exceeds_small is True
        assert size.exceeds_medium is False
        assert size.source == SizeSource.THRESHOLDS
        assert len(size.evidence) == 2

    def test_large(self, classifier: CompanyProfileClassifier):
        """Test two medium cutoffs exceeded makes a large company."""
        size = classifier.classify_size(Decimal("25000000"), Decimal("45000000"), 10)
        assert size.size == CompanySize.LARGE
        assert size.exceeds_medium is True

    def test_single_criterion_is_not_enough(self, classifier: CompanyProfileClassifier):
        """Test one exceeded metric keeps the company small."""
        size = classifier.classify_size(Decimal("5000000"), None, None)
        assert size.size == CompanySize.SMALL
        assert size.source == SizeSource.THRESHOLDS

    def test_cutoff_is_exclusive(self, classifier: CompanyProfileClassifier):
        """Test values equal to the cutoffs do not exceed them."""
        size = classifier.classify_size(Decimal("4400000"), Decimal("8800000"), 50)
        assert size.size == CompanySize.SMALL
        assert size.exceeds_small is False

    def test_no_metrics_defaults_to_small(self, classifier: CompanyProfileClassifier):
        """Test missing metrics give the documented default."""
        size = classifier.classify_size(None, None, None)
        assert size.size == CompanySize.SMALL
        assert size.source == SizeSource.DEFAULT


class TestConsolidation:
    """Tests for consolidation detection."""

    def test_standalone(self, classifier: CompanyProfileClassifier):
        """Test annual accounts wording."""
        detection = classifier.detect_consolidation("Comptes annuels au 31 décembre 2023")
        assert detection.status == ConsolidationStatus.STANDALONE
        assert detection.is_consolidated is False

    def test_consolidated(self, classifier: CompanyProfileClassifier):
        """Test consolidated wording alone."""
        detection = classifier.detect_consolidation("Consolidated financial statements 2023")
        assert detection.status == ConsolidationStatus.CONSOLIDATED
        assert any("consolidated financial statements" in e for e in detection.evidence)

    def test_ambiguous(self, classifier: CompanyProfileClassifier):
        """Test mixed wording is ambiguous, never guessed."""
        detection = classifier.detect_consolidation(
            "Annual accounts 2023\nConsolidated balance sheet as at 31 December 2023"
        )
        assert detection.status == ConsolidationStatus.AMBIGUOUS
        assert detection.is_consolidated is None

    def test_caller_resolution(self, classifier: CompanyProfileClassifier):
        """Test a caller resolution replaces the ambiguous status."""
        detection = classifier.detect_consolidation(
            "Annual accounts 2023\nConsolidated balance sheet as at 31 December 2023",
            ConsolidationStatus.STANDALONE,
        )
        assert detection.status == ConsolidationStatus.STANDALONE
        assert detection.resolved_by_caller is True

    def test_exemption_phrase(self, classifier: CompanyProfileClassifier):
        """Test inclusion in a parent's accounts marks a standalone filing."""
        detection = classifier.detect_consolidation(
            "The Company is included in the consolidated accounts of Parent S.A."
        )
        assert detection.status == ConsolidationStatus.STANDALONE
        assert detection.evidence[0].startswith("Exemption")

    @pytest.mark.parametrize("text", [
        "Annual accounts for the year ended 31 December 2023\n"
        "The Company does not prepare consolidated accounts.",
        "Comptes annuels au 31 décembre 2023\n"
        "La Société n'établit pas de comptes consolidés.",
        "Jahresabschluss zum 31. Dezember 2023\n"
        "Die Gesellschaft stellt keinen Konzernabschluss auf.",
    ])
    def test_non_preparation_phrase(self, classifier: CompanyProfileClassifier, text: str):
        """Test a statement that no consolidated accounts are prepared is standalone."""
        detection = classifier.detect_consolidation(text)
        assert detection.status == ConsolidationStatus.STANDALONE
        assert detection.evidence[0].startswith("Exemption")

    def test_consolidated_mention_in_standalone_filing(self, classifier: CompanyProfileClassifier):
        """Test a passing mention of group accounts does not make the filing ambiguous."""
        detection = classifier.detect_consolidation(
            "Annual accounts 2023\nThe parent publishes consolidated financial statements in Luxembourg."
        )
        assert detection.status == ConsolidationStatus.STANDALONE
        assert any(e.startswith("Consolidated mention only") for e in detection.evidence)

    def test_no_wording(self, classifier: CompanyProfileClassifier):
        """Test silence defaults to standalone with evidence."""
        detection = classifier.detect_consolidation("Hello")
        assert detection.status == ConsolidationStatus.STANDALONE
        assert detection.evidence


class TestHoldingIndicators:
    """Tests for the SOPARFI heuristic."""

    def test_pure_holding(self, classifier: CompanyProfileClassifier):
        """Test keywords, zero turnover and low headcount add up."""
        holding = classifier.detect_holding_indicators(
            "SOPARFI holding company with participations",
            Decimal("50000000"),
            Decimal("0"),
            2,
        )
        assert holding.likely_holding is True
        assert holding.confidence == 1.0
        assert "Zero net turnover (pure holding)" in holding.indicators

    def test_trading_company(self, classifier: CompanyProfileClassifier):
        """Test an operating company scores nothing."""
        holding = classifier.detect_holding_indicators(
            "Trading company", Decimal("1000000"), Decimal("5000000"), 20
        )
        assert holding.likely_holding is False
        assert holding.confidence == 0.0

    def test_asset_heavy_ratio(self, classifier: CompanyProfileClassifier):
        """Test a high balance sheet to turnover ratio is an indicator."""
        holding = classifier.detect_holding_indicators("", Decimal("11000000"), Decimal("1000000"), None)
        assert holding.confidence == 0.2
        assert holding.indicators[0].startswith("High balance sheet to turnover ratio")


class TestRegistrationMetadata:
    """Tests for text-derived registration fields."""

    @pytest.mark.parametrize("text,expected", [
        ("ACME TRADING S.à r.l.", "SARL"),
        ("Acme Holdings S.A.", "SA"),
        ("Société anonyme", "SA"),
        ("Fund I SCSp", "SCSp"),
    ])
    def test_legal_form(self, classifier: CompanyProfileClassifier, text, expected):
        """Test legal forms by abbreviation and full name."""
        assert classifier.extract_legal_form(text) == expected

    def test_legal_name_label(self, classifier: CompanyProfileClassifier):
        """Test labelled company name."""
        assert classifier.extract_legal_name("Dénomination : Acme Holdings S.A.") == "Acme Holdings S.A."

    def test_legal_name_from_heading(self, classifier: CompanyProfileClassifier):
        """Test a heading ending in a legal form."""
        text = "ACME TRADING S.à r.l.\nComptes annuels"
        assert classifier.extract_legal_name(text) == "ACME TRADING S.à r.l."

    @pytest.mark.parametrize("text,expected", [
        ("R.C.S. Luxembourg B123456", "B123456"),
        ("RCS Luxembourg: B 98765", "B98765"),
    ])
    def test_registration_number(self, classifier: CompanyProfileClassifier, text, expected):
        """Test RCS numbers are normalized."""
        assert classifier.extract_registration_number(text) == expected

    def test_financial_year_end(self, classifier: CompanyProfileClassifier):
        """Test textual French dates."""
        assert classifier.extract_financial_year_end("Exercice clos le 31 décembre 2023") == date(2023, 12, 31)

    def test_balance_sheet_date(self, classifier: CompanyProfileClassifier):
        """Test 'as at' numeric dates."""
        assert classifier.extract_financial_year_end("Balance sheet as at 31.12.2022") == date(2022, 12, 31)

    def test_employee_count(self, classifier: CompanyProfileClassifier):
        """Test average headcount."""
        assert classifier.extract_employee_count("Average number of employees: 12") == 12

    @pytest.mark.parametrize("raw,expected", [
        ("2024-12-31", date(2024, 12, 31)),
        ("31/12/2024", date(2024, 12, 31)),
        ("31 December 2024", date(2024, 12, 31)),
        ("31/02/2024", None),
        ("soon", None),
    ])
    def test_parse_statement_date(self, raw, expected):
        """Test supported date layouts; invalid dates are None."""
        assert parse_statement_date(raw) == expected


class TestClassifications:
    """Tests for account type, reporting standard and the full profile."""

    def test_abridged(self, classifier: CompanyProfileClassifier):
        """Test abridged wording with evidence."""
        detection = classifier.detect_account_type("Comptes annuels abrégés")
        assert detection.account_type == AccountType.ABRIDGED
        assert detection.evidence == "comptes annuels abrégés"

    def test_full_by_default(self, classifier: CompanyProfileClassifier):
        """Test no keyword means full accounts."""
        assert classifier.detect_account_type("Annual accounts").account_type == AccountType.FULL

    def test_ifrs(self, classifier: CompanyProfileClassifier):
        """Test IFRS detection."""
        detection = classifier.detect_reporting_standard("Prepared in accordance with IFRS as adopted by the EU")
        assert detection.standard == ReportingStandard.IFRS

    def test_lux_gaap_default(self, classifier: CompanyProfileClassifier):
        """Test Lux GAAP without evidence by default."""
        detection = classifier.detect_reporting_standard("Annual accounts")
        assert detection.standard == ReportingStandard.LUX_GAAP
        assert detection.evidence is None

    def test_overrides_win(self, classifier: CompanyProfileClassifier):
        """Test caller-supplied fields replace extracted ones."""
        profile = classifier.classify(
            "Dénomination : Acme S.A.\nR.C.S. Luxembourg B123456",
            overrides=ProfileOverrides(legal_name="Override S.A.", registration_number="B000001"),
        )
        assert profile.legal_name == "Override S.A."
        assert profile.registration_number == "B000001"
        assert profile.legal_form == "SA"

    def test_classify_uses_text_headcount(self, classifier: CompanyProfileClassifier):
        """Test headcount read from text feeds the size test."""
        profile = classifier.classify(
            "Average number of employees: 300",
            balance_sheet_total=Decimal("25000000"),
        )
        assert profile.average_employees == 300
        assert profile.size.size == CompanySize.LARGE
        assert profile.is_abridged is False
