"""
Pytest configuration and fixtures.
"""
from decimal import Decimal
from typing import List, Optional, Sequence

import pytest

from luxgate.config import Settings
from luxgate.models import ExtractedCode, MatchSource
from luxgate.schemas.ocr import (
    OcrDocument,
    OcrPage,
    OcrTable,
    OcrTableCell,
    OcrTableRow,
    TextSegment,
)
from luxgate.services.code_dictionary import CodeDictionary, load_code_dictionary


def make_row(*texts: str) -> OcrTableRow:
    """Build a table row from cell texts."""
    return OcrTableRow(cells=[OcrTableCell(text=t) for t in texts])


def make_table(header: Optional[Sequence[str]], rows: Sequence[Sequence[str]]) -> OcrTable:
    """Build a table; header None leaves the header rows empty."""
    return OcrTable(
        header_rows=[make_row(*header)] if header else [],
        body_rows=[make_row(*r) for r in rows],
    )


def make_document(
    text: str = "",
    tables: Sequence[OcrTable] = (),
    page_texts: Optional[List[str]] = None,
) -> OcrDocument:
    """
    Build a single- or multi-page OCR document.

    Tables are attached to the first page.
    """
    page_texts = page_texts if page_texts is not None else [text]
    pages = [
        OcrPage(
            page_number=i + 1,
            paragraphs=[TextSegment(text=t)] if t else [],
            tables=list(tables) if i == 0 else [],
        )
        for i, t in enumerate(page_texts)
    ]
    return OcrDocument(text=text, pages=pages)


def make_code(
    code: str,
    confidence: float = 0.95,
    current: Optional[str] = None,
    prior: Optional[str] = None,
    caption: str = "",
    source: MatchSource = MatchSource.REFERENCE_COLUMN,
) -> ExtractedCode:
    """Build an ExtractedCode with printed (pre-scale) values."""
    return ExtractedCode(
        code=code,
        caption=caption,
        current_value=Decimal(current) if current is not None else None,
        prior_value=Decimal(prior) if prior is not None else None,
        page=1,
        confidence=confidence,
        match_source=source,
        raw_value_string=current or "",
    )


@pytest.fixture(scope="session")
def dictionary() -> CodeDictionary:
    """The packaged code dictionary."""
    return load_code_dictionary()


@pytest.fixture
def settings() -> Settings:
    """Default settings, independent of the environment file."""
    return Settings(_env_file=None)
