"""
Unit tests for the code dictionary and mapper.
"""
from pathlib import Path

import pytest

from luxgate.exceptions import CodeDictionaryError, DuplicateCodeError
from luxgate.models import CodeCategory, TPPriority
from luxgate.services.code_dictionary import (
    CodeDictionary,
    CodeMapper,
    load_code_dictionary,
    normalize_caption,
)

from conftest import make_code


class TestCodeDictionary:
    """Tests for dictionary lookup."""

    def test_version_recorded(self, dictionary: CodeDictionary):
        """Test the dictionary carries a version."""
        assert dictionary.version == "1.0.0"

    def test_exact_lookup(self, dictionary: CodeDictionary):
        """Test lookup by code."""
        definition = dictionary.get("7010")
        assert definition is not None
        assert definition.category == CodeCategory.PROFIT_LOSS
        assert definition.caption_en == "Net turnover"
        assert definition.caption("fr") == "Chiffre d'affaires net"
        assert definition.tp_priority == TPPriority.HIGH

    def test_unknown_code(self, dictionary: CodeDictionary):
        """Test unknown codes are absent."""
        assert dictionary.get("9999") is None
        assert "9999" not in dictionary

    def test_totals_and_parents(self, dictionary: CodeDictionary):
        """Test subtotal structure."""
        assert dictionary.get("109").is_total is True
        assert dictionary.get("1151").parent_code == "1500"

    def test_tp_critical(self, dictionary: CodeDictionary):
        """Test TP-critical membership."""
        assert dictionary.is_tp_critical("4279") is True
        assert dictionary.is_tp_critical("109") is False
        assert all(code in dictionary for code in dictionary.tp_critical_codes)

    def test_codes_by_category(self, dictionary: CodeDictionary):
        """Test category filtering."""
        pl_codes = dictionary.codes_by_category(CodeCategory.PROFIT_LOSS)
        assert pl_codes
        assert all(d.category == CodeCategory.PROFIT_LOSS for d in pl_codes)

    def test_tp_priority_filter(self, dictionary: CodeDictionary):
        """Test priority filtering; no priority returns every definition."""
        high = dictionary.tp_priority_codes(TPPriority.HIGH)
        assert "7010" in {d.code for d in high}
        assert all(d.tp_priority == TPPriority.HIGH for d in high)
        assert len(dictionary.tp_priority_codes()) == len(list(dictionary))

    def test_dictionary_is_read_only(self, dictionary: CodeDictionary):
        """Test the definitions mapping cannot be modified."""
        with pytest.raises(TypeError):
            dictionary._definitions["0000"] = None


class TestCaptionSearch:
    """Tests for fuzzy caption search."""

    def test_exact_caption(self, dictionary: CodeDictionary):
        """Test exact caption scores 1.0."""
        matches = dictionary.find_by_caption("Net turnover")
        assert matches[0].code == "7010"
        assert matches[0].confidence == 1.0
        assert matches[0].matched_on == "caption"

    def test_exact_caption_other_language(self, dictionary: CodeDictionary):
        """Test French caption, accents and case ignored."""
        matches = dictionary.find_by_caption("TOTAL DE L'ACTIF")
        assert matches[0].code == "109"
        assert matches[0].language == "fr"

    def test_synonym(self, dictionary: CodeDictionary):
        """Test synonym scores below an exact caption."""
        matches = dictionary.find_by_caption("Revenue")
        assert matches[0].code == "7010"
        assert matches[0].confidence == 0.95
        assert matches[0].matched_on == "synonym"

    def test_containment_discounted(self, dictionary: CodeDictionary):
        """Test partial captions are discounted."""
        matches = dictionary.find_by_caption("Turnover")
        assert matches[0].code == "7010"
        assert 0.5 < matches[0].confidence < 0.8

    def test_sorted_descending(self, dictionary: CodeDictionary):
        """Test results sorted by confidence."""
        matches = dictionary.find_by_caption("Amounts owed to affiliated undertakings")
        confidences = [m.confidence for m in matches]
        assert confidences == sorted(confidences, reverse=True)

    def test_no_match(self, dictionary: CodeDictionary):
        """Test unrelated text finds nothing."""
        assert dictionary.find_by_caption("Lorem ipsum dolor") == []
        assert dictionary.find_by_caption("") == []

    def test_normalize_caption(self):
        """Test accent and whitespace normalization."""
        assert normalize_caption("  Créances   sur: ") == "creances sur"


class TestDictionaryLoading:
    """Tests for YAML loading errors."""

    def test_missing_file(self, tmp_path: Path):
        """Test a missing file raises CodeDictionaryError."""
        with pytest.raises(CodeDictionaryError):
            load_code_dictionary(tmp_path / "missing.yaml")

    def test_duplicate_code(self, tmp_path: Path):
        """Test duplicate keys are rejected."""
        path = tmp_path / "dup.yaml"
        path.write_text(
            'version: "x"\n'
            "codes:\n"
            '  "7010":\n'
            '    caption_en: "Net turnover"\n'
            '  "7010":\n'
            '    caption_en: "Turnover again"\n',
            encoding="utf-8",
        )
        with pytest.raises(DuplicateCodeError):
            load_code_dictionary(path)

    def test_unknown_critical_code(self, tmp_path: Path):
        """Test TP-critical codes must be defined."""
        path = tmp_path / "critical.yaml"
        path.write_text(
            'version: "x"\n'
            'tp_critical_codes: ["4279"]\n'
            "codes:\n"
            '  "7010":\n'
            '    caption_en: "Net turnover"\n',
            encoding="utf-8",
        )
        with pytest.raises(CodeDictionaryError):
            load_code_dictionary(path)

    def test_invalid_category(self, tmp_path: Path):
        """Test an unknown category is rejected."""
        path = tmp_path / "bad.yaml"
        path.write_text(
            "codes:\n"
            '  "7010":\n'
            '    category: "cash_flow"\n'
            '    caption_en: "Net turnover"\n',
            encoding="utf-8",
        )
        with pytest.raises(CodeDictionaryError):
            load_code_dictionary(path)


class TestCodeMapper:
    """Tests for CodeMapper."""

    @pytest.fixture
    def mapper(self, dictionary: CodeDictionary) -> CodeMapper:
        return CodeMapper(dictionary)

    def test_known_code(self, mapper: CodeMapper):
        """Test a code with a matching caption needs no review."""
        mapping = mapper.map_code(make_code("7010", caption="Net turnover"))
        assert mapping.definition is not None
        assert mapping.caption_normalized == "Net turnover"
        assert mapping.requires_review is False

    def test_unknown_code_needs_review(self, mapper: CodeMapper):
        """Test an unknown code is flagged."""
        mapping = mapper.map_code(make_code("9999", caption="Something"))
        assert mapping.definition is None
        assert mapping.caption_normalized == "Something"
        assert mapping.requires_review is True

    def test_conflicting_caption_flagged(self, mapper: CodeMapper):
        """Test a caption that clearly names another code is flagged, code unchanged."""
        mapping = mapper.map_code(make_code("7010", caption="Total assets"))
        assert mapping.code == "7010"
        assert mapping.requires_review is True
        assert "109" in mapping.alt_candidates

    def test_best_caption_match(self, mapper: CodeMapper):
        """Test best match above the floor."""
        match = mapper.best_caption_match("Revenue")
        assert match is not None
        assert match.code == "7010"

    def test_best_caption_match_below_floor(self, mapper: CodeMapper):
        """Test weak matches are not returned."""
        assert mapper.best_caption_match("Turnover") is None
