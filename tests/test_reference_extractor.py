"""
Unit tests for the statutory code extractor.
"""
from decimal import Decimal

import pytest

from luxgate.models import MatchSource
from luxgate.services.code_dictionary import CodeDictionary
from luxgate.services.reference_extractor import (
    CAPTION_TOTAL_CONFIDENCE,
    StatutoryCodeExtractor,
    merge_code_tiers,
)

from conftest import make_code, make_document, make_table


@pytest.fixture
def extractor(dictionary: CodeDictionary) -> StatutoryCodeExtractor:
    """Create extractor instance."""
    return StatutoryCodeExtractor(dictionary)


def by_code(result):
    return {c.code: c for c in result.codes}


class TestReferenceColumn:
    """Tests for table extraction through the reference column."""

    def test_header_keywords(self, extractor: StatutoryCodeExtractor):
        """Test reference, caption and year columns found from the header."""
        table = make_table(
            ["Reference", "Description", "2023", "2022"],
            [
                ["109", "Total assets", "1.234.567", "1.100.000"],
                ["7010", "Net turnover", "500.000", "450.000"],
                ["", "Subtotal", "1", "2"],
            ],
        )
        result = extractor.extract(make_document(tables=[table]))

        assert result.reference_column_found is True
        assert result.text_fallback_used is False
        codes = by_code(result)
        assert set(codes) == {"109", "7010"}
        assert codes["109"].current_value == Decimal("1234567")
        assert codes["109"].prior_value == Decimal("1100000")
        assert codes["109"].caption == "Total assets"
        assert codes["109"].confidence == 0.95
        assert codes["109"].match_source == MatchSource.REFERENCE_COLUMN
        assert codes["109"].page == 1

    def test_header_left_in_body(self, extractor: StatutoryCodeExtractor):
        """Test a header row delivered as the first body row."""
        table = make_table(None, [
            ["Code", "Libellé", "Exercice", "Exercice précédent"],
            ["7010", "Chiffre d'affaires net", "1.000,00", "900,00"],
        ])
        result = extractor.extract(make_document(tables=[table]))

        codes = by_code(result)
        assert list(codes) == ["7010"]
        assert codes["7010"].current_value == Decimal("1000.00")
        assert codes["7010"].prior_value == Decimal("900.00")

    def test_column_inferred_from_code_pattern(self, extractor: StatutoryCodeExtractor):
        """Test the reference column is found from code-shaped cells."""
        table = make_table(None, [
            ["Net turnover", "7010", "1.000"],
            ["Wages and salaries", "6410", "200"],
        ])
        result = extractor.extract(make_document(tables=[table]))

        codes = by_code(result)
        assert codes["7010"].caption == "Net turnover"
        assert codes["7010"].current_value == Decimal("1000")
        assert codes["6410"].current_value == Decimal("200")
        assert codes["6410"].prior_value is None

    def test_note_column(self, extractor: StatutoryCodeExtractor):
        """Test a note column is carried as note reference."""
        table = make_table(
            ["Ref", "Caption", "Note", "2023"],
            [["4279", "Amounts owed to affiliated undertakings", "9", "250.000"]],
        )
        result = extractor.extract(make_document(tables=[table]))

        code = by_code(result)["4279"]
        assert code.note_reference == "9"
        assert code.current_value == Decimal("250000")

    def test_unknown_code_lower_confidence(self, extractor: StatutoryCodeExtractor):
        """Test codes missing from the dictionary keep a lower confidence."""
        table = make_table(["Reference", "Description", "2023"], [["1234", "Mystery line", "10"]])
        result = extractor.extract(make_document(tables=[table]))
        assert by_code(result)["1234"].confidence == 0.7

    def test_unreadable_value_is_null(self, extractor: StatutoryCodeExtractor):
        """Test an unparseable value becomes null, the code is kept."""
        table = make_table(["Reference", "Description", "2023"], [["7010", "Net turnover", "n/a"]])
        result = extractor.extract(make_document(tables=[table]))
        assert by_code(result)["7010"].current_value is None


class TestTextFallback:
    """Tests for the text tiers used without a reference column."""

    def test_caption_code_line(self, extractor: StatutoryCodeExtractor):
        """Test 'Total assets 109 1,234,000' yields one caption-matched code."""
        document = make_document("Total assets 109 1,234,000\nAll figures in thousands")
        result = extractor.extract(document)

        assert result.reference_column_found is False
        assert result.text_fallback_used is True
        assert len(result.codes) == 1
        code = result.codes[0]
        assert code.code == "109"
        assert code.current_value == Decimal("1234000")
        assert code.match_source == MatchSource.CAPTION_MATCH
        assert code.confidence == 0.65
        assert "No reference column detected; codes recovered from text patterns" in result.warnings

    def test_code_caption_line_with_prior(self, extractor: StatutoryCodeExtractor):
        """Test 'code caption current prior' lines."""
        result = extractor.extract(make_document("7010 Net turnover 1.234.567 1.100.000"))
        code = by_code(result)["7010"]
        assert code.caption == "Net turnover"
        assert code.current_value == Decimal("1234567")
        assert code.prior_value == Decimal("1100000")

    def test_explicit_marker(self, extractor: StatutoryCodeExtractor):
        """Test 'Poste NNNN' markers outrank other tiers."""
        result = extractor.extract(make_document(
            "Poste 4279 Dettes envers des entreprises liées 250.000 200.000"
        ))
        code = by_code(result)["4279"]
        assert code.confidence == 0.7
        assert code.current_value == Decimal("250000")
        assert code.prior_value == Decimal("200000")
        assert code.caption == "Dettes envers des entreprises liées"

    def test_caption_total_only(self, extractor: StatutoryCodeExtractor):
        """Test known totals by caption at reduced confidence."""
        result = extractor.extract(make_document("Chiffre d'affaires 2023 : 3.456.789"))
        code = by_code(result)["7010"]
        assert code.confidence == CAPTION_TOTAL_CONFIDENCE
        assert code.current_value == Decimal("3456789")

    def test_caption_total_after_narrative_mention(self, extractor: StatutoryCodeExtractor):
        """Test a caption named in narrative first still picks up the printed amount."""
        codes = extractor.scan_caption_totals(
            "Net turnover increased compared with last year.\n"
            "Net turnover 1.234.567 1.100.000\n"
        )
        assert [c.code for c in codes] == ["7010"]
        assert codes[0].current_value == Decimal("1234567")
        assert codes[0].prior_value == Decimal("1100000")

    def test_caption_total_amount_on_next_line(self, extractor: StatutoryCodeExtractor):
        """Test amounts printed on the line below the caption."""
        codes = extractor.scan_caption_totals("Total assets\n5.000.000 4.500.000")
        assert codes[0].code == "109"
        assert codes[0].current_value == Decimal("5000000")

    def test_caption_total_without_amount_dropped(self, extractor: StatutoryCodeExtractor):
        """Test captions with no amount nearby, or only growth rates and years, yield nothing."""
        assert extractor.scan_caption_totals("Net turnover increased strongly.") == []
        assert extractor.scan_caption_totals("Net turnover increased by 12 % compared with 2022.") == []

    def test_intercompany_captions(self, extractor: StatutoryCodeExtractor):
        """Test IC balances are recovered by caption alone."""
        result = extractor.extract(make_document(
            "Parts dans des entreprises liées 2.000.000\n"
            "Créances sur des entreprises liées 300.000\n"
            "Dettes envers des entreprises liées 450.000\n"
        ))
        codes = by_code(result)
        assert codes["1151"].current_value == Decimal("2000000")
        assert codes["4111"].current_value == Decimal("300000")
        assert codes["4279"].current_value == Decimal("450000")
        assert codes["4279"].confidence == CAPTION_TOTAL_CONFIDENCE

    def test_caption_table_tier(self, extractor: StatutoryCodeExtractor):
        """Test code-less table rows mapped through dictionary captions."""
        table = make_table(None, [["Net turnover", "1.500.000", "1.200.000"]])
        result = extractor.extract(make_document(tables=[table]))

        code = by_code(result)["7010"]
        assert code.match_source == MatchSource.CAPTION_MATCH
        assert code.confidence == 0.7
        assert code.current_value == Decimal("1500000")
        assert code.prior_value == Decimal("1200000")

    def test_page_located(self, extractor: StatutoryCodeExtractor):
        """Test text matches carry their page."""
        document = make_document(
            "Intro page\nTotal assets 109 1,234,000",
            page_texts=["Intro page", "Total assets 109 1,234,000"],
        )
        assert by_code(extractor.extract(document))["109"].page == 2

    def test_nothing_found(self, extractor: StatutoryCodeExtractor):
        """Test a document without codes returns an empty result with a warning."""
        result = extractor.extract(make_document("Hello world"))
        assert result.codes == ()
        assert "No statutory codes could be extracted" in result.warnings

    def test_split_value_run(self, extractor: StatutoryCodeExtractor):
        """Test space-grouped amounts are kept together."""
        values = [p.value for p in extractor.split_value_run("1 234 567 1 100 000")]
        assert values == [Decimal("1234567"), Decimal("1100000")]


class TestMergeCodeTiers:
    """Tests for merge_code_tiers precedence."""

    def test_earlier_tier_wins(self):
        """Test a later tier never overwrites an earlier one."""
        merged = merge_code_tiers([
            [make_code("109", 0.6)],
            [make_code("109", 0.9), make_code("7010", 0.5)],
        ])
        assert [(c.code, c.confidence) for c in merged] == [("109", 0.6), ("7010", 0.5)]

    def test_highest_confidence_within_tier(self):
        """Test the best record wins inside one tier."""
        merged = merge_code_tiers([[make_code("7010", 0.5), make_code("7010", 0.55)]])
        assert merged[0].confidence == 0.55

    def test_tie_keeps_first(self):
        """Test ties keep the first record."""
        first = make_code("7010", 0.5, current="1")
        merged = merge_code_tiers([[first, make_code("7010", 0.5, current="2")]])
        assert merged[0] is first
