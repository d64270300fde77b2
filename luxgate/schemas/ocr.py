"""
Pydantic schemas for the OCR/layout collaborator payload.

The layout service delivers camelCase JSON (``pageNumber``, ``headerRows``,
``normalizedVertices``); fields here are snake_case and accept either form.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from luxgate.exceptions import InvalidDocumentError


class OcrModel(BaseModel):
    """Base model accepting camelCase or snake_case keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class Vertex(OcrModel):
    """Normalized vertex (0-1 page coordinates)."""

    x: float = Field(0.0, description="Horizontal position")
    y: float = Field(0.0, description="Vertical position")


class BoundingPoly(OcrModel):
    """Normalized bounding polygon."""

    normalized_vertices: List[Vertex] = Field(default_factory=list, description="Polygon vertices")


class PageDimension(OcrModel):
    """Page size in the unit reported by the layout service."""

    width: float = Field(0.0, description="Page width")
    height: float = Field(0.0, description="Page height")


class TextSegment(OcrModel):
    """A block or paragraph of page text."""

    text: str = Field("", description="Segment text")
    confidence: float = Field(1.0, description="OCR confidence (0-1)")
    bounding_box: Optional[BoundingPoly] = Field(None, description="Segment polygon")


class OcrTableCell(OcrModel):
    """A single table cell."""

    text: str = Field("", description="Cell text value")
    row_span: int = Field(1, ge=1, description="Rows spanned by the cell")
    col_span: int = Field(1, ge=1, description="Columns spanned by the cell")
    confidence: float = Field(1.0, description="OCR confidence (0-1)")


class OcrTableRow(OcrModel):
    """A table row."""

    cells: List[OcrTableCell] = Field(default_factory=list, description="Cells in this row")


class OcrTable(OcrModel):
    """A detected table."""

    header_rows: List[OcrTableRow] = Field(default_factory=list, description="Header rows")
    body_rows: List[OcrTableRow] = Field(default_factory=list, description="Body rows")
    bounding_box: Optional[BoundingPoly] = Field(None, description="Table polygon")


class OcrPage(OcrModel):
    """A page of layout output."""

    page_number: int = Field(..., ge=1, description="Page number (1-indexed)")
    dimension: PageDimension = Field(default_factory=PageDimension, description="Page size")
    blocks: List[TextSegment] = Field(default_factory=list, description="Text blocks")
    paragraphs: List[TextSegment] = Field(default_factory=list, description="Paragraphs")
    tables: List[OcrTable] = Field(default_factory=list, description="Detected tables")

    @property
    def text(self) -> str:
        """Page text, preferring paragraphs over blocks."""
        segments = self.paragraphs or self.blocks
        return "\n".join(s.text for s in segments)


class OcrEntity(OcrModel):
    """An entity recognized by the layout service."""

    type: str = Field("", description="Entity type")
    mention_text: str = Field("", description="Matched text")
    confidence: float = Field(1.0, description="Entity confidence (0-1)")


class OcrDocument(OcrModel):
    """Full layout output for one document."""

    text: str = Field("", description="Full document text")
    pages: List[OcrPage] = Field(default_factory=list, description="Pages in reading order")
    entities: List[OcrEntity] = Field(default_factory=list, description="Recognized entities")
    mime_type: Optional[str] = Field(None, description="Source MIME type")

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "OcrDocument":
        """
        Validate a raw collaborator payload.

        Raises:
            InvalidDocumentError: If the payload is not a layout document.
        """
        if not isinstance(payload, dict):
            raise InvalidDocumentError(f"expected a mapping, got {type(payload).__name__}")
        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            raise InvalidDocumentError(
                "payload failed validation",
                errors=[err["msg"] for err in e.errors()],
            ) from e

    @property
    def full_text(self) -> str:
        """Document text, rebuilt from page segments when the top-level text is missing."""
        if self.text.strip():
            return self.text
        return "\n".join(p.text for p in self.pages)

    @property
    def table_count(self) -> int:
        return sum(len(p.tables) for p in self.pages)

    def is_empty(self) -> bool:
        """True when there is no usable text and no table."""
        return not self.full_text.strip() and self.table_count == 0
