"""
Statutory code extractor.

Luxembourg balance sheets and P&L accounts filed through eCDF carry a
reference column with the PCN code of every line. This is the most reliable
anchor in a scanned filing, so tables are searched for that column first.
When no table has one, the text is scanned in tiers of decreasing
reliability:

    a. explicit markers        "Code 7010", "Poste 4279"
    b. code/caption lines      "Total assets 109 1,234,000"
    c. known total captions    "Chiffre d'affaires ... 1.234.567"
    d. dictionary captions     table rows matched by caption only

Tiers are merged with ``merge_code_tiers``: a code found by an earlier tier
is never replaced by a later one.
"""
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

import structlog

from luxgate.models import ExtractedCode, MatchSource
from luxgate.schemas.ocr import OcrDocument, OcrTable, OcrTableRow
from luxgate.services.code_dictionary import CodeDictionary, CodeMapper
from luxgate.services.numeric_parser import NumericParser, ParsedNumber, get_numeric_parser

logger = structlog.get_logger(__name__)


# Code cell: 4 digits with an optional letter suffix (1011L, 309P)
CODE_CELL_PATTERN = re.compile(r"^\d{4}[A-Z]?$")
# Short codes (109, 309) are accepted only when the dictionary knows them
SHORT_CODE_PATTERN = re.compile(r"^\d{3}[A-Z]?$")

REFERENCE_HEADER_PATTERN = re.compile(
    r"(?<![a-z])(?:reference|r[ée]f[ée]rence|ref|r[ée]f|pcn|ecdf|code|poste|rubrique|"
    r"zeile|pos|position|ligne|nr|no|n°)(?![a-z])"
)
YEAR_HEADER_PATTERN = re.compile(
    r"(?<!\d)(?:19|20)\d{2}(?!\d)|current|exercice|ann[ée]e|jahr|prior|previous|pr[ée]c[ée]dent|n-1"
)
CAPTION_HEADER_PATTERN = re.compile(r"description|libell[ée]|bezeichnung|caption|intitul[ée]|d[ée]signation")
NOTE_HEADER_PATTERN = re.compile(r"^(?:notes?|annexes?|anhang)$")

HEADER_SCAN_ROWS = 5

# Trailing run of printed amounts on a text line
VALUE_RUN = r"[-−(]?\d[\d\s.,'()\-−]*"
CODE_TOKEN = r"\d{3,4}[A-Z]?"
CAPTION_TOKEN = r"[^\W\d_][^\d\n]*?"

EXPLICIT_MARKER_PATTERN = re.compile(
    rf"\b(?:code|poste|ref|pcn|ecdf|ligne|zeile|pos)\b\.?\s*(?P<code>{CODE_TOKEN})\b(?P<rest>[^\n]*)",
    re.IGNORECASE,
)
MARKER_REST_PATTERN = re.compile(rf"^(?P<caption>.*?)\s*(?P<values>{VALUE_RUN})\s*$")

LINE_PATTERNS = [
    # "7010 Net turnover 1.234.567 1.100.000"
    re.compile(rf"^\s*(?P<code>{CODE_TOKEN})\s+(?P<caption>{CAPTION_TOKEN})\s+(?P<values>{VALUE_RUN})\s*$"),
    # "Total assets 109 1,234,000"
    re.compile(rf"^\s*(?P<caption>{CAPTION_TOKEN})\s+(?P<code>{CODE_TOKEN})\s+(?P<values>{VALUE_RUN})\s*$"),
    # "(109) 1,234,000"
    re.compile(rf"\((?P<code>{CODE_TOKEN})\)\s*(?P<values>{VALUE_RUN})\s*$"),
    # "109: 1,234,000"
    re.compile(rf"(?:code\s*)?(?P<code>{CODE_TOKEN})\s*:\s*(?P<values>{VALUE_RUN})\s*$", re.IGNORECASE),
]

# Known totals recognizable by caption alone (en/fr/de)
CAPTION_TOTAL_PATTERNS: List[Tuple[str, re.Pattern]] = [
    ("109", re.compile(
        r"total\s+(?:de\s+l['’]\s*)?actif|total\s+assets|bilanzsumme\s+aktiva|summe\s+aktiva",
        re.IGNORECASE)),
    ("309", re.compile(
        r"total\s+(?:du\s+)?passif|total\s+(?:equity\s+and\s+)?liabilities|bilanzsumme\s+passiva|summe\s+passiva",
        re.IGNORECASE)),
    ("9910", re.compile(
        r"r[ée]sultat\s+net|net\s+(?:profit|loss|result)|jahres[üu]berschuss|jahresfehlbetrag|"
        r"profit\s+(?:or\s+loss\s+)?for\s+the\s+(?:financial\s+)?year",
        re.IGNORECASE)),
    ("7010", re.compile(
        r"chiffre\s+d['’]affaires|net\s+turnover|umsatzerl[öo]se",
        re.IGNORECASE)),
    ("1500", re.compile(
        r"immobilisations\s+financi[èe]res|financial\s+assets|finanzanlagen",
        re.IGNORECASE)),
    ("309P", re.compile(
        r"capitaux\s+propres|shareholders['’]?\s+(?:funds|equity)|eigenkapital",
        re.IGNORECASE)),
    # Intercompany balances
    ("1151", re.compile(
        r"parts\s+dans\s+des\s+entreprises\s+li[ée]es|participations\s+dans\s+des\s+entreprises\s+li[ée]es|"
        r"shares\s+in\s+affiliated\s+undertakings|anteile\s+an\s+verbundenen\s+unternehmen",
        re.IGNORECASE)),
    ("4111", re.compile(
        r"cr[ée]ances\s+sur\s+des\s+entreprises\s+li[ée]es|amounts\s+owed\s+by\s+affiliated\s+undertakings|"
        r"forderungen\s+gegen\s+verbundene\s+unternehmen",
        re.IGNORECASE)),
    ("4279", re.compile(
        r"dettes\s+envers\s+des\s+entreprises\s+li[ée]es|amounts\s+owed\s+to\s+affiliated\s+undertakings|"
        r"verbindlichkeiten\s+gegen[üu]ber\s+verbundenen\s+unternehmen",
        re.IGNORECASE)),
    ("6900", re.compile(r"total\s+(?:des\s+)?charges|total\s+expenses", re.IGNORECASE)),
    ("7900", re.compile(r"total\s+(?:des\s+)?produits|total\s+income", re.IGNORECASE)),
]
CAPTION_VALUE_WINDOW = 100
MIN_CAPTION_PARSE_CONFIDENCE = 0.3
# Growth rates in narrative ("increased by 12 %") are not amounts
PERCENT_TOKEN_PATTERN = re.compile(r"\d[\d.,]*\s?%")

# Confidence per source
KNOWN_CODE_CONFIDENCE = 0.95
UNKNOWN_CODE_CONFIDENCE = 0.7
EXPLICIT_MARKER_CONFIDENCE = 0.7
LINE_PATTERN_CONFIDENCE = 0.65
LINE_PATTERN_NO_VALUE_CONFIDENCE = 0.5
CAPTION_TOTAL_CONFIDENCE = 0.55
CAPTION_TABLE_FACTOR = 0.7
CAPTION_TABLE_MIN_MATCH = 0.8


@dataclass(frozen=True)
class TableLayout:
    """Column roles detected in one table."""
    reference_column: int
    caption_column: int
    current_column: int
    prior_column: Optional[int] = None
    note_column: Optional[int] = None
    header_rows_in_body: int = 0


@dataclass(frozen=True)
class ReferenceColumnResult:
    """Outcome of code extraction for one document."""
    codes: Tuple[ExtractedCode, ...]
    reference_column_found: bool
    tables_scanned: int
    text_fallback_used: bool
    evidence: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()


def merge_code_tiers(tiers: Sequence[Sequence[ExtractedCode]]) -> List[ExtractedCode]:
    """
    Merge extraction tiers into one record per code.

    Precedence:
        1. An earlier tier always wins over a later one for the same code.
        2. Within a tier, the highest confidence wins; ties keep the first record.

    Output keeps tier order, then first-occurrence order within each tier.
    """
    merged: Dict[str, ExtractedCode] = {}
    for tier in tiers:
        tier_best: Dict[str, ExtractedCode] = {}
        for record in tier:
            if record.code in merged:
                continue
            current = tier_best.get(record.code)
            if current is None or record.confidence > current.confidence:
                tier_best[record.code] = record
        merged.update(tier_best)
    return list(merged.values())


def expand_row(row: OcrTableRow) -> List[str]:
    """Cell texts at logical column positions; a spanning cell fills its first slot."""
    texts: List[str] = []
    for cell in row.cells:
        texts.append((cell.text or "").strip())
        texts.extend([""] * (cell.col_span - 1))
    return texts


def _cell(texts: List[str], index: Optional[int]) -> str:
    if index is None or index < 0 or index >= len(texts):
        return ""
    return texts[index]


class StatutoryCodeExtractor:
    """
    Extracts (code, caption, values) records from an OCR document.

    Never raises on content: unreadable cells become null values and a
    document without any code yields an empty result with a warning.
    """

    def __init__(
        self,
        dictionary: CodeDictionary,
        parser: Optional[NumericParser] = None,
        mapper: Optional[CodeMapper] = None,
    ):
        self.dictionary = dictionary
        self.parser = parser or get_numeric_parser()
        self.mapper = mapper or CodeMapper(dictionary)

    def extract(self, document: OcrDocument) -> ReferenceColumnResult:
        """
        Extract statutory codes from tables, falling back to text.

        Args:
            document: Validated OCR document.

        Returns:
            ReferenceColumnResult with merged, deduplicated codes (pre-scale).
        """
        evidence: List[str] = []
        warnings: List[str] = []
        table_codes: List[ExtractedCode] = []
        tables_without_reference: List[Tuple[int, OcrTable]] = []
        reference_found = False
        tables_scanned = 0

        for page in document.pages:
            for table in page.tables:
                tables_scanned += 1
                layout = self.detect_layout(table, evidence)
                if layout is None:
                    tables_without_reference.append((page.page_number, table))
                    continue
                reference_found = True
                codes = self._extract_table_rows(table, layout, page.page_number)
                evidence.append(f"Extracted {len(codes)} codes from table on page {page.page_number}")
                table_codes.extend(codes)

        text_fallback_used = not reference_found
        if reference_found:
            codes = merge_code_tiers([table_codes])
        else:
            text = document.full_text
            tiers = [
                self.scan_explicit_markers(text, document),
                self.scan_code_lines(text, document),
                self.scan_caption_totals(text, document),
                self.scan_caption_tables(tables_without_reference),
            ]
            for name, tier in zip(("explicit markers", "code lines", "caption totals", "caption tables"), tiers):
                if tier:
                    evidence.append(f"Found {len(tier)} codes from {name}")
            codes = merge_code_tiers(tiers)
            warnings.append("No reference column detected; codes recovered from text patterns")

        if not codes:
            warnings.append("No statutory codes could be extracted")

        logger.info(
            "Code extraction complete",
            codes=len(codes),
            reference_column=reference_found,
            tables=tables_scanned,
            text_fallback=text_fallback_used,
        )

        return ReferenceColumnResult(
            codes=tuple(codes),
            reference_column_found=reference_found,
            tables_scanned=tables_scanned,
            text_fallback_used=text_fallback_used,
            evidence=tuple(evidence),
            warnings=tuple(warnings),
        )

    # =========================================================================
    # Tables
    # =========================================================================

    def _is_code(self, text: str) -> bool:
        text = text.strip().rstrip(".")
        if CODE_CELL_PATTERN.match(text):
            return True
        return bool(SHORT_CODE_PATTERN.match(text)) and text in self.dictionary

    def detect_layout(self, table: OcrTable, evidence: Optional[List[str]] = None) -> Optional[TableLayout]:
        """
        Locate the reference, caption and value columns of a table.

        Returns None when the table has no reference column.
        """
        evidence = evidence if evidence is not None else []
        header_rows = [expand_row(r) for r in table.header_rows]
        body_rows = [expand_row(r) for r in table.body_rows]
        header_rows_in_body = 0

        # Layout services often leave the header inside the body
        if not header_rows and body_rows:
            first = body_rows[0]
            if any(REFERENCE_HEADER_PATTERN.search(t.lower()) for t in first) and not any(self._is_code(t) for t in first):
                header_rows = [first]
                header_rows_in_body = 1

        reference_col = caption_col = note_col = None
        year_cols: List[int] = []

        for row in header_rows:
            for i, text in enumerate(row):
                lowered = text.lower()
                if not lowered:
                    continue
                if NOTE_HEADER_PATTERN.match(lowered):
                    note_col = i if note_col is None else note_col
                elif reference_col is None and REFERENCE_HEADER_PATTERN.search(lowered):
                    reference_col = i
                    evidence.append(f'Found reference column at index {i} with header "{text}"')
                elif YEAR_HEADER_PATTERN.search(lowered):
                    if i not in year_cols:
                        year_cols.append(i)
                elif caption_col is None and (CAPTION_HEADER_PATTERN.search(lowered) or len(lowered) > 20):
                    caption_col = i

        data_rows = body_rows[header_rows_in_body:]

        if reference_col is None:
            for row in data_rows[:HEADER_SCAN_ROWS]:
                for i, text in enumerate(row):
                    if CODE_CELL_PATTERN.match(text.strip()):
                        reference_col = i
                        evidence.append(f'Detected reference column at index {i} from code pattern "{text}"')
                        break
                if reference_col is not None:
                    break

        if reference_col is None:
            return None

        taken = {reference_col, note_col}
        if caption_col is None:
            caption_col = self._widest_text_column(data_rows, taken | set(year_cols))
        if caption_col is None:
            caption_col = 1 if reference_col == 0 else 0

        taken.add(caption_col)
        if year_cols:
            current_col = year_cols[0]
            prior_col = year_cols[1] if len(year_cols) > 1 else None
        else:
            current_col = self._next_free_column(caption_col, taken)
            prior_candidate = self._next_free_column(current_col, taken | {current_col})
            prior_col = prior_candidate if self._has_numbers(data_rows, prior_candidate) else None

        return TableLayout(
            reference_column=reference_col,
            caption_column=caption_col,
            current_column=current_col,
            prior_column=prior_col,
            note_column=note_col,
            header_rows_in_body=header_rows_in_body,
        )

    @staticmethod
    def _next_free_column(start: int, taken: set) -> int:
        index = start + 1
        while index in taken:
            index += 1
        return index

    def _widest_text_column(self, rows: List[List[str]], excluded: set) -> Optional[int]:
        """Column holding the longest non-numeric text on average."""
        totals: Dict[int, int] = {}
        for row in rows:
            for i, text in enumerate(row):
                if i in excluded or not text or self.parser.parse(text).value is not None:
                    continue
                totals[i] = totals.get(i, 0) + len(text)
        if not totals:
            return None
        return max(sorted(totals), key=lambda i: totals[i])

    def _has_numbers(self, rows: List[List[str]], index: int) -> bool:
        return any(self.parser.parse(_cell(row, index)).value is not None for row in rows)

    def _extract_table_rows(self, table: OcrTable, layout: TableLayout, page_number: int) -> List[ExtractedCode]:
        codes = []
        for row in table.body_rows[layout.header_rows_in_body:]:
            texts = expand_row(row)
            code_text = _cell(texts, layout.reference_column).rstrip(".")
            if not self._is_code(code_text):
                continue

            current_text = _cell(texts, layout.current_column)
            prior_text = _cell(texts, layout.prior_column)
            note_text = _cell(texts, layout.note_column)

            codes.append(ExtractedCode(
                code=code_text,
                caption=_cell(texts, layout.caption_column),
                current_value=self.parser.parse(current_text).value,
                prior_value=self.parser.parse(prior_text).value,
                page=page_number,
                confidence=KNOWN_CODE_CONFIDENCE if code_text in self.dictionary else UNKNOWN_CODE_CONFIDENCE,
                match_source=MatchSource.REFERENCE_COLUMN,
                raw_value_string=current_text,
                note_reference=note_text or None,
            ))
        return codes

    # =========================================================================
    # Text fallback
    # =========================================================================

    def split_value_run(self, run: str) -> List[ParsedNumber]:
        """
        Split a trailing run of amounts into parsed numbers.

        Whitespace separates amounts, except that a bare three-digit group
        after a short bare group continues it ("1 234 567").
        """
        tokens = run.split()
        groups: List[str] = []
        for token in tokens:
            if (
                groups
                and len(token) == 3
                and token.isdigit()
                and groups[-1].replace(" ", "").isdigit()
                and len(groups[-1].split(" ")[-1]) <= 3
            ):
                groups[-1] = f"{groups[-1]} {token}"
            else:
                groups.append(token)
        return [self.parser.parse(g) for g in groups]

    @staticmethod
    def _locate_page(document: Optional[OcrDocument], snippet: str) -> int:
        """First page whose text contains the snippet, 0 when unknown."""
        if document is None:
            return 0
        needle = " ".join(snippet.split())
        for page in document.pages:
            if needle and needle in " ".join(page.text.split()):
                return page.page_number
        return 0

    def _values(self, run: str) -> Tuple[Optional[Decimal], Optional[Decimal], str, float]:
        parsed = [p for p in self.split_value_run(run) if p.value is not None]
        current = parsed[0] if parsed else None
        prior = parsed[1] if len(parsed) > 1 else None
        return (
            current.value if current else None,
            prior.value if prior else None,
            current.raw_value if current else run.strip(),
            current.confidence if current else 0.0,
        )

    def scan_explicit_markers(self, text: str, document: Optional[OcrDocument] = None) -> List[ExtractedCode]:
        """Tier a: "Code 7010", "Poste 4279 ... 1.234"."""
        codes = []
        for match in EXPLICIT_MARKER_PATTERN.finditer(text or ""):
            code = match.group("code").upper()
            if code not in self.dictionary:
                continue

            caption = ""
            current = prior = None
            raw = ""
            rest = MARKER_REST_PATTERN.match(match.group("rest"))
            if rest:
                caption = rest.group("caption").strip(" :-")
                current, prior, raw, _ = self._values(rest.group("values"))

            codes.append(ExtractedCode(
                code=code,
                caption=caption,
                current_value=current,
                prior_value=prior,
                page=self._locate_page(document, match.group(0)),
                confidence=EXPLICIT_MARKER_CONFIDENCE,
                match_source=MatchSource.REFERENCE_COLUMN,
                raw_value_string=raw,
            ))
        return codes

    def scan_code_lines(self, text: str, document: Optional[OcrDocument] = None) -> List[ExtractedCode]:
        """Tier b: a code paired with a caption and trailing amounts, in either order."""
        codes = []
        for line in (text or "").splitlines():
            for pattern in LINE_PATTERNS:
                match = pattern.search(line)
                if not match:
                    continue
                code = match.group("code").upper()
                if code not in self.dictionary:
                    continue

                caption = (match.groupdict().get("caption") or "").strip(" :-")
                current, prior, raw, parse_confidence = self._values(match.group("values"))
                codes.append(ExtractedCode(
                    code=code,
                    caption=caption,
                    current_value=current,
                    prior_value=prior,
                    page=self._locate_page(document, line),
                    confidence=LINE_PATTERN_CONFIDENCE if parse_confidence > 0 else LINE_PATTERN_NO_VALUE_CONFIDENCE,
                    match_source=MatchSource.CAPTION_MATCH,
                    raw_value_string=raw,
                ))
                break
        return codes

    def scan_caption_totals(self, text: str, document: Optional[OcrDocument] = None) -> List[ExtractedCode]:
        """
        Tier c: well-known totals by caption.

        Narrative often names a caption before the statement line prints it,
        so every occurrence is tried in order and the first one followed by an
        amount within ``CAPTION_VALUE_WINDOW`` characters wins. The amounts are
        read from the first line of that window that carries any. Occurrences
        with no amount are dropped.
        """
        codes = []
        text = text or ""
        for code, pattern in CAPTION_TOTAL_PATTERNS:
            if code not in self.dictionary:
                continue
            for match in pattern.finditer(text):
                amounts = self._caption_amounts(code, text[match.end():match.end() + CAPTION_VALUE_WINDOW])
                if not amounts:
                    continue

                current = amounts[0]
                prior = amounts[1] if len(amounts) > 1 else None
                codes.append(ExtractedCode(
                    code=code,
                    caption=match.group(0),
                    current_value=current.value,
                    prior_value=prior.value if prior else None,
                    page=self._locate_page(document, match.group(0)),
                    confidence=CAPTION_TOTAL_CONFIDENCE,
                    match_source=MatchSource.CAPTION_MATCH,
                    raw_value_string=current.raw_value,
                ))
                break
        return codes

    def _caption_amounts(self, code: str, window: str) -> List[ParsedNumber]:
        for line in window.split("\n"):
            amounts = [
                p for p in self.parser.extract_numbers(PERCENT_TOKEN_PATTERN.sub(" ", line))
                if p.confidence > MIN_CAPTION_PARSE_CONFIDENCE
                and p.raw_value.strip() != code
                and not self._is_year_token(p.raw_value)
            ]
            if amounts:
                return amounts
        return []

    @staticmethod
    def _is_year_token(raw: str) -> bool:
        raw = raw.strip()
        return len(raw) == 4 and raw.isdigit() and 1900 <= int(raw) <= 2100

    def scan_caption_tables(self, tables: Sequence[Tuple[int, OcrTable]]) -> List[ExtractedCode]:
        """Tier d: rows of code-less tables mapped through the dictionary's captions."""
        codes = []
        for page_number, table in tables:
            for row in table.body_rows:
                texts = [t for t in expand_row(row) if t]
                if not texts:
                    continue
                caption = texts[0]
                if self.parser.parse(caption).value is not None:
                    continue
                match = self.mapper.best_caption_match(caption, CAPTION_TABLE_MIN_MATCH)
                if match is None:
                    continue

                numbers = [(t, self.parser.parse(t)) for t in texts[1:]]
                numbers = [(t, p) for t, p in numbers if p.value is not None]
                codes.append(ExtractedCode(
                    code=match.code,
                    caption=caption,
                    current_value=numbers[0][1].value if numbers else None,
                    prior_value=numbers[1][1].value if len(numbers) > 1 else None,
                    page=page_number,
                    confidence=round(match.confidence * CAPTION_TABLE_FACTOR, 4),
                    match_source=MatchSource.CAPTION_MATCH,
                    raw_value_string=numbers[0][0] if numbers else "",
                ))
        return codes
