"""
Orchestrator for the LuxGate pipeline.

Runs one OCR document through every stage, strictly in order:
Pass 1: Unit scale detection over the full text
Pass 2: Statutory code extraction (tables, then text fallback)
Pass 3: Company profile classification
Pass 4: Deterministic metrics (current year and YoY)
Pass 5: Arithmetic validation and dictionary mapping
Pass 6: Pre-analysis gates

Only an empty or malformed OCR payload aborts the run; every other problem
ends up as a warning or blocking issue on the gate object.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import structlog

from luxgate.config import Settings, get_settings
from luxgate.exceptions import EmptyDocumentError
from luxgate.logging_config import document_id as document_id_var
from luxgate.models import (
    CanonicalBalanceSheet,
    CanonicalLineItem,
    CanonicalProfitLoss,
    CodeCategory,
    CompanyProfile,
    DeterministicMetrics,
    ExtractedCode,
    ExtractionMetadata,
    PreAnalysisGates,
    ReadinessLevel,
    StructuredExtraction,
    TPPriority,
    UnitScale,
    UnitScaleDetection,
    ValidationDashboard,
)
from luxgate.schemas.ocr import OcrDocument
from luxgate.services.code_dictionary import CodeDictionary, CodeMapper, get_code_dictionary
from luxgate.services.company_profile import CompanyProfileClassifier, ProfileOverrides
from luxgate.services.metrics_engine import DeterministicMetricsEngine, resolved_values
from luxgate.services.reference_extractor import StatutoryCodeExtractor
from luxgate.services.unit_scale import UnitScaleDetector, apply_scale
from luxgate.services.validators import BalanceSheetValidator
from luxgate.engine.gates import code_category, evaluate_pre_analysis_gates

logger = structlog.get_logger(__name__)

SCHEMA_VERSION = "1.0.0"

LANGUAGE_KEYWORDS = {
    "fr": ("entreprise", "société", "exercice", "bilan", "compte", "résultat", "annexe"),
    "de": ("unternehmen", "gesellschaft", "geschäftsjahr", "bilanz", "gewinn", "verlust"),
    "en": ("company", "financial", "year", "balance", "sheet", "profit", "loss", "notes"),
}


@dataclass
class PipelineOptions:
    """Per-run inputs beyond the OCR document."""
    # Caller-supplied company fields (name, RCS, year end, consolidation)
    overrides: Optional[ProfileOverrides] = None
    # Separate prior-year extraction; otherwise prior values on the current codes are used
    prior_year_codes: Optional[Sequence[ExtractedCode]] = None
    # Summary figures (code -> value) to reconcile against the statements
    summary_values: Optional[Mapping[str, Decimal]] = None
    # Identifier bound to every log line of the run
    document_id: Optional[str] = None


def detect_language(text: str) -> str:
    """Dominant filing language by keyword counts: fr, de, en or unknown."""
    lower = text.lower()
    counts = {lang: sum(1 for w in words if w in lower) for lang, words in LANGUAGE_KEYWORDS.items()}
    if counts["fr"] > counts["de"] and counts["fr"] > counts["en"]:
        return "fr"
    if counts["de"] > counts["fr"] and counts["de"] > counts["en"]:
        return "de"
    if counts["en"] > 0:
        return "en"
    return "unknown"


def overall_confidence(codes: Sequence[ExtractedCode]) -> float:
    if not codes:
        return 0.0
    return sum(c.confidence for c in codes) / len(codes)


def run_pipeline(
    document: Union[OcrDocument, Dict[str, Any]],
    options: Optional[PipelineOptions] = None,
    dictionary: Optional[CodeDictionary] = None,
    settings: Optional[Settings] = None,
) -> StructuredExtraction:
    """
    Main entry point for the LuxGate pipeline.

    Args:
        document: OCR document, or the raw payload to validate.
        options: Per-run options.
        dictionary: Code dictionary; the packaged one by default.
        settings: Settings; the environment-derived ones by default.

    Returns:
        StructuredExtraction carrying a fresh PreAnalysisGates object.

    Raises:
        InvalidDocumentError: Payload does not match the OCR layout.
        EmptyDocumentError: Document has neither text nor tables.
    """
    run_id = str(uuid.uuid4())
    options = options or PipelineOptions()
    settings = settings or get_settings()
    dictionary = dictionary or get_code_dictionary()

    token = document_id_var.set(options.document_id or run_id)
    try:
        if not isinstance(document, OcrDocument):
            document = OcrDocument.from_payload(document)
        if document.is_empty():
            raise EmptyDocumentError(document_id=options.document_id)
        return _run(document, options, dictionary, settings, run_id)
    finally:
        document_id_var.reset(token)


def _run(
    document: OcrDocument,
    options: PipelineOptions,
    dictionary: CodeDictionary,
    settings: Settings,
    run_id: str,
) -> StructuredExtraction:
    text = document.full_text
    warnings: List[str] = []

    logger.info(
        "Starting LuxGate pipeline",
        run_id=run_id,
        pages=len(document.pages),
        tables=document.table_count,
        dictionary_version=dictionary.version,
    )

    # =================================================================
    # Pass 1: UNIT SCALE
    # =================================================================
    logger.info("Pass 1: Unit scale detection")
    detector = UnitScaleDetector(settings)
    scale_detection = detector.detect(text)

    # =================================================================
    # Pass 2: CODE EXTRACTION
    # =================================================================
    logger.info("Pass 2: Statutory code extraction")
    mapper = CodeMapper(dictionary)
    extraction = StatutoryCodeExtractor(dictionary, mapper=mapper).extract(document)
    codes = extraction.codes
    warnings.extend(extraction.warnings)

    values = resolved_values(codes, scale_detection.scale)

    if options.summary_values:
        reconciliation = detector.reconcile(dict(options.summary_values), values)
        scale_detection = scale_detection.with_reconciliation(reconciliation)
        if not reconciliation.consistent:
            warnings.extend(reconciliation.discrepancies)

    # =================================================================
    # Pass 3: COMPANY PROFILE
    # =================================================================
    logger.info("Pass 3: Company profile")
    profile = CompanyProfileClassifier(settings).classify(
        text,
        balance_sheet_total=values.get("109"),
        net_turnover=values.get("7010"),
        overrides=options.overrides,
    )

    # =================================================================
    # Pass 4: METRICS
    # =================================================================
    logger.info("Pass 4: Deterministic metrics")
    if options.prior_year_codes is not None:
        prior_values = resolved_values(options.prior_year_codes, scale_detection.scale)
    else:
        prior_values = resolved_values(codes, scale_detection.scale, use_prior=True)
    metrics = DeterministicMetricsEngine(settings).compute(values, prior_values or None)

    # =================================================================
    # Pass 5: VALIDATION AND MAPPING
    # =================================================================
    logger.info("Pass 5: Validation and mapping")
    validator = BalanceSheetValidator(settings)
    balance_check = validator.check_balance(values.get("109"), values.get("309"))
    for failure in validator.validate(values, dictionary):
        warnings.append(failure.message)

    line_items = _build_line_items(codes, scale_detection.scale, dictionary, mapper)
    codes_requiring_review = tuple(item.code for item in line_items if item.requires_review)

    # =================================================================
    # Pass 6: PRE-ANALYSIS GATES
    # =================================================================
    logger.info("Pass 6: Pre-analysis gates")
    gates = evaluate_pre_analysis_gates(
        codes,
        scale_detection,
        balance_check,
        profile.consolidation,
        profile.size.size,
        dictionary,
        text=text,
        is_abridged=profile.is_abridged,
        codes_requiring_review=codes_requiring_review,
        settings=settings,
    )
    for warning in gates.warnings:
        if warning not in warnings:
            warnings.append(warning)

    metadata = ExtractionMetadata(
        schema_version=SCHEMA_VERSION,
        dictionary_version=dictionary.version,
        extraction_timestamp=datetime.now(timezone.utc),
        document_language=detect_language(text),
        unit_scale=scale_detection.scale,
        unit_scale_validated=scale_detection.validated,
        account_type=profile.account_type.account_type,
        company_size=profile.size.size,
        reporting_standard=profile.reporting_standard.standard,
        overall_confidence=overall_confidence(codes),
        reference_column_detected=extraction.reference_column_found,
        warnings=tuple(warnings),
    )

    balance_items, pl_items = _split_line_items(line_items)
    result = StructuredExtraction(
        metadata=metadata,
        company_profile=profile,
        unit_scale_detection=scale_detection,
        extracted_codes=codes,
        balance_sheet=CanonicalBalanceSheet(
            total_assets=values.get("109"),
            total_liabilities=values.get("309"),
            line_items=balance_items,
        ),
        profit_loss=CanonicalProfitLoss(
            net_profit_loss=values.get("9910"),
            line_items=pl_items,
        ),
        deterministic_metrics=metrics,
        pre_analysis_gates=gates,
        validation_dashboard=_build_dashboard(gates, warnings, profile, metrics, scale_detection),
    )

    logger.info(
        "LuxGate pipeline complete",
        run_id=run_id,
        gate_id=gates.gate_id,
        readiness_level=gates.readiness_level.value,
        codes=len(codes),
        overall_confidence=round(metadata.overall_confidence, 4),
    )
    return result


def _build_line_items(
    codes: Sequence[ExtractedCode],
    scale: UnitScale,
    dictionary: CodeDictionary,
    mapper: CodeMapper,
) -> Tuple[CanonicalLineItem, ...]:
    items = []
    for extracted in codes:
        mapping = mapper.map_code(extracted)
        definition = mapping.definition
        items.append(CanonicalLineItem(
            code=extracted.code,
            caption_original=extracted.caption,
            caption_normalized=mapping.caption_normalized,
            value_current_year=apply_scale(extracted.current_value, scale),
            value_prior_year=apply_scale(extracted.prior_value, scale),
            unit_scale=scale,
            raw_value_string=extracted.raw_value_string,
            extraction_confidence=extracted.confidence,
            match_source=extracted.match_source,
            source_page=extracted.page,
            category=code_category(extracted.code, dictionary),
            tp_priority=definition.tp_priority if definition else TPPriority.LOW,
            is_total=definition.is_total if definition else False,
            parent_code=definition.parent_code if definition else None,
            note_reference=extracted.note_reference or (definition.note_reference if definition else None),
            requires_review=mapping.requires_review,
            alt_candidates=mapping.alt_candidates,
        ))
    return tuple(items)


def _split_line_items(
    items: Sequence[CanonicalLineItem],
) -> Tuple[Tuple[CanonicalLineItem, ...], Tuple[CanonicalLineItem, ...]]:
    balance = tuple(i for i in items if i.category == CodeCategory.BALANCE_SHEET)
    profit_loss = tuple(i for i in items if i.category == CodeCategory.PROFIT_LOSS)
    return balance, profit_loss


def _build_dashboard(
    gates: PreAnalysisGates,
    warnings: Sequence[str],
    profile: CompanyProfile,
    metrics: DeterministicMetrics,
    scale_detection: UnitScaleDetection,
) -> ValidationDashboard:
    if gates.readiness_level == ReadinessLevel.BLOCKED:
        status = "blocked"
    elif gates.readiness_level == ReadinessLevel.READY_LIMITED or warnings:
        status = "warnings"
    else:
        status = "ok"

    substance = []
    if profile.holding.likely_holding:
        substance.append("SOPARFI indicators detected - substance risk analysis recommended")

    volatility = []
    if metrics.yoy_analysis is not None:
        volatility = [flag.tp_relevance for flag in metrics.yoy_analysis.significant_volatility]

    return ValidationDashboard(
        overall_status=status,
        blocking_issues=gates.blocking_issues,
        warnings=tuple(warnings),
        substance_warnings=tuple(substance),
        completeness_issues=gates.data_quality_gate.missing_critical_data,
        volatility_alerts=tuple(volatility),
        unit_scale_evidence=scale_detection.evidence,
    )
