"""
Luxembourg GAAP PCN/eCDF code dictionary and caption mapper.

The dictionary is loaded once from a versioned YAML file into an immutable
lookup structure and handed to every stage that needs it. Every extraction
records the dictionary version so results stay reproducible when
definitions change.
"""
import unicodedata
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterator, List, Mapping, Optional, Tuple

import structlog
import yaml

from luxgate.config import get_settings
from luxgate.models import CodeCategory, ExtractedCode, TPPriority
from luxgate.exceptions import CodeDictionaryError, DuplicateCodeError

logger = structlog.get_logger(__name__)

DEFAULT_DICTIONARY_PATH = Path(__file__).resolve().parent.parent / "data" / "pcn_codes.yaml"

LANGUAGES = ("en", "fr", "de")


@dataclass(frozen=True)
class CodeDefinition:
    """Static reference entry for one statutory code."""
    code: str
    category: CodeCategory
    captions: Mapping[str, str]
    synonyms: Mapping[str, Tuple[str, ...]]
    tp_priority: TPPriority
    subcategory: Optional[str] = None
    tp_utility: Optional[str] = None
    is_total: bool = False
    parent_code: Optional[str] = None
    note_reference: Optional[str] = None
    typical_sign: str = "either"  # "debit", "credit", "either"

    @property
    def caption_en(self) -> str:
        return self.captions.get("en", "")

    def caption(self, language: str = "en") -> str:
        return self.captions.get(language) or self.caption_en


@dataclass(frozen=True)
class CaptionMatch:
    """A fuzzy caption-to-code candidate."""
    code: str
    confidence: float
    matched_on: str  # "caption" or "synonym"
    language: str


def normalize_caption(text: str) -> str:
    """Lowercase, strip accents and collapse whitespace for caption comparison."""
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    collapsed = " ".join(stripped.lower().split())
    return collapsed.strip(" :.-–")


def _containment_score(candidate: str, reference: str) -> float:
    """Length-ratio similarity when one string contains the other, else 0."""
    if not candidate or not reference:
        return 0.0
    if candidate in reference or reference in candidate:
        return min(len(candidate), len(reference)) / max(len(candidate), len(reference))
    return 0.0


class CodeDictionary:
    """
    Read-only lookup of statutory code definitions.

    Build it with ``load_code_dictionary``; nothing mutates it afterwards.
    """

    def __init__(
        self,
        version: str,
        definitions: Dict[str, CodeDefinition],
        tp_critical_codes: FrozenSet[str],
    ):
        self._version = version
        self._definitions: Mapping[str, CodeDefinition] = MappingProxyType(dict(definitions))
        self._tp_critical_codes = frozenset(tp_critical_codes)
        # Normalized captions and synonyms, computed once per language
        self._search_index: Tuple[Tuple[str, str, str, Tuple[str, ...]], ...] = tuple(
            (
                code,
                lang,
                normalize_caption(definition.captions.get(lang, "")),
                tuple(normalize_caption(s) for s in definition.synonyms.get(lang, ())),
            )
            for code, definition in self._definitions.items()
            for lang in LANGUAGES
        )

    @property
    def version(self) -> str:
        return self._version

    @property
    def tp_critical_codes(self) -> FrozenSet[str]:
        return self._tp_critical_codes

    def __contains__(self, code: object) -> bool:
        return code in self._definitions

    def __iter__(self) -> Iterator[CodeDefinition]:
        return iter(self._definitions.values())

    def __len__(self) -> int:
        return len(self._definitions)

    def get(self, code: str) -> Optional[CodeDefinition]:
        """Exact lookup by code."""
        return self._definitions.get(code)

    def is_tp_critical(self, code: str) -> bool:
        return code in self._tp_critical_codes

    def codes_by_category(
        self,
        category: CodeCategory,
        subcategory: Optional[str] = None,
    ) -> List[CodeDefinition]:
        """All definitions in a category, optionally narrowed to a subcategory."""
        return [
            d for d in self._definitions.values()
            if d.category == category and (subcategory is None or d.subcategory == subcategory)
        ]

    def tp_priority_codes(self, priority: Optional[TPPriority] = None) -> List[CodeDefinition]:
        """Definitions at a transfer-pricing priority (all when priority is None)."""
        return [
            d for d in self._definitions.values()
            if priority is None or d.tp_priority == priority
        ]

    def find_by_caption(self, caption: str, language: Optional[str] = None) -> List[CaptionMatch]:
        """
        Fuzzy caption-to-code search.

        Scoring:
            exact caption             1.0
            caption containment       similarity * 0.8 (similarity > 0.5)
            exact synonym             0.95
            synonym containment       similarity * 0.75 (similarity > 0.5)

        Args:
            caption: Printed caption.
            language: "en", "fr" or "de"; None searches all three.

        Returns:
            Best match per code, sorted by descending confidence.
        """
        needle = normalize_caption(caption)
        if not needle:
            return []

        languages = (language,) if language else LANGUAGES
        best: Dict[str, CaptionMatch] = {}

        for code, lang, reference, synonyms in self._search_index:
            if lang not in languages:
                continue

            candidate: Optional[CaptionMatch] = None
            if reference and needle == reference:
                candidate = CaptionMatch(code, 1.0, "caption", lang)
            else:
                similarity = _containment_score(needle, reference)
                if similarity > 0.5:
                    candidate = CaptionMatch(code, similarity * 0.8, "caption", lang)

            for synonym in synonyms:
                if needle == synonym:
                    score = 0.95
                else:
                    similarity = _containment_score(needle, synonym)
                    score = similarity * 0.75 if similarity > 0.5 else 0.0
                if score and (candidate is None or score > candidate.confidence):
                    candidate = CaptionMatch(code, score, "synonym", lang)

            if candidate and (code not in best or candidate.confidence > best[code].confidence):
                best[code] = candidate

        return sorted(best.values(), key=lambda m: m.confidence, reverse=True)


def _parse_definition(code: str, raw: dict) -> CodeDefinition:
    """Build one CodeDefinition from its YAML mapping."""
    try:
        category = CodeCategory(raw.get("category", "other"))
        tp_priority = TPPriority(raw.get("tp_priority", "low"))
    except ValueError as e:
        raise CodeDictionaryError(
            f"Invalid definition for code {code}: {e}",
            details={"code": code},
        ) from e

    captions = {lang: raw.get(f"caption_{lang}", "") for lang in LANGUAGES}
    if not captions["en"]:
        raise CodeDictionaryError(f"Code {code} has no English caption", details={"code": code})

    synonyms = {lang: tuple(raw.get(f"synonyms_{lang}") or ()) for lang in LANGUAGES}

    return CodeDefinition(
        code=code,
        category=category,
        captions=MappingProxyType(captions),
        synonyms=MappingProxyType(synonyms),
        tp_priority=tp_priority,
        subcategory=raw.get("subcategory"),
        tp_utility=raw.get("tp_utility"),
        is_total=bool(raw.get("is_total", False)),
        parent_code=raw.get("parent_code"),
        note_reference=raw.get("note_reference"),
        typical_sign=raw.get("typical_sign", "either"),
    )


def _read_yaml(path: Path) -> dict:
    """Read the dictionary data file."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise CodeDictionaryError(
            f"Failed to read code dictionary: {e}",
            details={"path": str(path)},
        ) from e
    if not isinstance(data, dict) or not isinstance(data.get("codes"), dict):
        raise CodeDictionaryError("Code dictionary has no 'codes' mapping", details={"path": str(path)})
    return data


def _check_duplicates(path: Path) -> None:
    """PyYAML keeps the last of duplicate keys silently; reject them instead."""
    seen = set()
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            if line.startswith("  ") and not line.startswith("   ") and line.rstrip().endswith(":"):
                key = line.strip().rstrip(":").strip('"\'')
                if key in seen:
                    raise DuplicateCodeError(key)
                seen.add(key)


@lru_cache
def load_code_dictionary(path: Optional[Path] = None) -> CodeDictionary:
    """
    Load and freeze the code dictionary.

    Cached per path, so the file is parsed once per process.

    Raises:
        CodeDictionaryError: If the file is missing or malformed.
    """
    path = Path(path) if path else DEFAULT_DICTIONARY_PATH
    data = _read_yaml(path)
    _check_duplicates(path)

    definitions = {
        str(code): _parse_definition(str(code), raw or {})
        for code, raw in data["codes"].items()
    }
    tp_critical = frozenset(str(c) for c in data.get("tp_critical_codes") or ())

    unknown_critical = tp_critical - set(definitions)
    if unknown_critical:
        raise CodeDictionaryError(
            "TP-critical codes missing from dictionary",
            details={"codes": sorted(unknown_critical)},
        )

    dictionary = CodeDictionary(
        version=str(data.get("version", "0.0.0")),
        definitions=definitions,
        tp_critical_codes=tp_critical,
    )
    logger.info("Loaded code dictionary", path=str(path), version=dictionary.version, codes=len(dictionary))
    return dictionary


def get_code_dictionary() -> CodeDictionary:
    """Get the dictionary configured for this process."""
    return load_code_dictionary(get_settings().code_dictionary_path)


# =============================================================================
# Mapper
# =============================================================================

@dataclass(frozen=True)
class CodeMapping:
    """Dictionary view of one extracted code."""
    code: str
    definition: Optional[CodeDefinition]
    caption_normalized: str
    alt_candidates: Tuple[str, ...] = ()
    requires_review: bool = False


class CodeMapper:
    """
    Validates extracted codes against the dictionary and maps bare captions.

    A printed caption that matches another code far better than its own
    flags the line for review; the code itself is never changed.
    """

    STRONG_MATCH = 0.9
    WEAK_OWN_MATCH = 0.5
    MAX_ALTERNATIVES = 3

    def __init__(self, dictionary: CodeDictionary):
        self.dictionary = dictionary

    def map_code(self, extracted: ExtractedCode) -> CodeMapping:
        definition = self.dictionary.get(extracted.code)
        caption_normalized = definition.caption_en if definition else extracted.caption

        matches = self.dictionary.find_by_caption(extracted.caption) if extracted.caption else []
        own_score = next((m.confidence for m in matches if m.code == extracted.code), 0.0)
        alternatives = tuple(
            m.code for m in matches
            if m.code != extracted.code and m.confidence >= self.WEAK_OWN_MATCH
        )[:self.MAX_ALTERNATIVES]

        requires_review = definition is None
        if matches and matches[0].code != extracted.code:
            top = matches[0]
            if top.confidence >= self.STRONG_MATCH and own_score < self.WEAK_OWN_MATCH:
                requires_review = True
                logger.info(
                    "Caption suggests a different code",
                    code=extracted.code,
                    suggested=top.code,
                    caption=extracted.caption,
                )

        return CodeMapping(
            code=extracted.code,
            definition=definition,
            caption_normalized=caption_normalized,
            alt_candidates=alternatives,
            requires_review=requires_review,
        )

    def best_caption_match(self, caption: str, min_confidence: float = 0.8) -> Optional[CaptionMatch]:
        """
        Unique top caption match above a floor.

        Returns None when the best score is shared by several codes.
        """
        matches = self.dictionary.find_by_caption(caption)
        if not matches or matches[0].confidence < min_confidence:
            return None
        if len(matches) > 1 and matches[1].confidence == matches[0].confidence:
            return None
        return matches[0]
