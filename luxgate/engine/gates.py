"""
Pre-analysis gate.

Turns the outputs of the extraction stages into a single verdict
(READY_FULL, READY_LIMITED or BLOCKED) plus the issues, module trust scores
and review actions that explain it. The readiness decision itself is a pure
function over GateInputs; everything else here assembles those inputs.

A gate object is computed once per extraction run. Re-running extraction
builds a new one; nothing is updated in place.
"""

import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from statistics import mean
from typing import List, Optional, Sequence, Tuple

import structlog

from luxgate.config import Settings, get_settings
from luxgate.models import (
    AnalysisMode,
    BalanceCheck,
    CodeCategory,
    CompanySize,
    ConsolidationDetection,
    ConsolidationGate,
    ConsolidationStatus,
    DataQualityGate,
    ExtractedCode,
    LimitedModeRules,
    MappingConfidenceGate,
    ModuleTrust,
    PreAnalysisGates,
    ReadinessLevel,
    ReviewAction,
    ReviewActionType,
    ReviewPriority,
    UnitScaleDetection,
)
from luxgate.services.code_dictionary import CodeDictionary

logger = structlog.get_logger(__name__)

# Data-quality weights, sum to 100
BALANCE_SHEET_WEIGHT = 30
PROFIT_LOSS_WEIGHT = 30
NOTES_WEIGHT = 25
MANAGEMENT_REPORT_WEIGHT = 15

# Module trust constants
CONTEXT_NOTES_FACTOR = 0.8
CONTEXT_WITHOUT_NOTES = 0.3
NARRATIVE_WITH_REPORT = 0.7
NARRATIVE_WITHOUT_REPORT = 0.2

LIMITED_MAPPING_CONFIDENCE = 0.7

_PRIORITY_RANK = {ReviewPriority.HIGH: 0, ReviewPriority.MEDIUM: 1, ReviewPriority.LOW: 2}

NOTES_PATTERNS = [
    re.compile(r"\bnotes?\s+to\s+the\s+(?:annual\s+|financial\s+)?(?:accounts|financial\s+statements)\b", re.IGNORECASE),
    re.compile(r"\bannexe\s+(?:aux\s+comptes|l[ée]gale)\b", re.IGNORECASE),
    re.compile(r"\bnotes?\s+aux\s+comptes\s+annuels\b", re.IGNORECASE),
    re.compile(r"\banhang\b", re.IGNORECASE),
]

MANAGEMENT_REPORT_PATTERNS = [
    re.compile(r"\bmanagement\s+report\b", re.IGNORECASE),
    re.compile(r"\bdirectors'?\s+report\b", re.IGNORECASE),
    re.compile(r"\brapport\s+de\s+gestion\b", re.IGNORECASE),
    re.compile(r"\blagebericht\b", re.IGNORECASE),
]

BALANCE_SHEET_PATTERNS = [
    re.compile(r"\bbalance\s+sheet\b", re.IGNORECASE),
    re.compile(r"\bbilan\b", re.IGNORECASE),
    re.compile(r"\bbilanz\b", re.IGNORECASE),
]

PROFIT_LOSS_PATTERNS = [
    re.compile(r"\bprofit\s+(?:and|&)\s+loss\b", re.IGNORECASE),
    re.compile(r"\bcompte\s+de\s+profits\s+et\s+pertes\b", re.IGNORECASE),
    re.compile(r"\bgewinn-\s*und\s+verlustrechnung\b", re.IGNORECASE),
]


# =============================================================================
# Gate inputs and the readiness decision
# =============================================================================

@dataclass(frozen=True)
class GateInputs:
    """Everything the readiness decision looks at."""
    unit_scale_validated: bool
    balance_check: BalanceCheck
    consolidation_gate: ConsolidationGate
    mapping_gate: MappingConfidenceGate


@dataclass(frozen=True)
class ReadinessDecision:
    level: ReadinessLevel
    blocking_issues: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()


def compute_readiness_level(inputs: GateInputs, settings: Optional[Settings] = None) -> ReadinessDecision:
    """
    Decide the readiness level.

    Rules, in order:
    1. BLOCKED if the consolidation sub-gate blocks or no code was extracted.
    2. READY_FULL if high-confidence coverage reaches the full threshold, or
       the unit scale is validated and high+medium coverage reaches the
       validated threshold.
    3. READY_LIMITED otherwise.

    Scale uncertainty and balance mismatches only add warnings.
    """
    settings = settings or get_settings()
    mapping = inputs.mapping_gate
    blocking: List[str] = []
    warnings: List[str] = []

    if inputs.consolidation_gate.blocks_analysis:
        blocking.append(inputs.consolidation_gate.reason)
    if mapping.codes_total == 0:
        blocking.append("No statutory codes extracted")

    if not inputs.unit_scale_validated:
        warnings.append("Unit scale uncertain - confirm before relying on amounts")
    if not inputs.balance_check.balances:
        warnings.append(inputs.balance_check.message)
    if mapping.critical_codes_affected:
        warnings.append(
            f"Low confidence on {len(mapping.critical_codes_affected)} TP-critical codes: "
            f"{', '.join(mapping.critical_codes_affected)}"
        )

    if blocking:
        return ReadinessDecision(ReadinessLevel.BLOCKED, tuple(blocking), tuple(warnings))

    if mapping.high_confidence_pct >= settings.full_high_coverage_pct:
        return ReadinessDecision(ReadinessLevel.READY_FULL, (), tuple(warnings))
    if inputs.unit_scale_validated and mapping.high_or_medium_pct >= settings.full_validated_coverage_pct:
        return ReadinessDecision(ReadinessLevel.READY_FULL, (), tuple(warnings))

    if mapping.high_or_medium_pct < settings.limited_coverage_pct:
        warnings.append(
            f"Only {mapping.high_or_medium_pct:.0f}% of codes mapped with medium or high confidence"
        )
    return ReadinessDecision(ReadinessLevel.READY_LIMITED, (), tuple(warnings))


# =============================================================================
# Sub-gates
# =============================================================================

def evaluate_consolidation_gate(
    consolidation: ConsolidationDetection,
    settings: Optional[Settings] = None,
) -> ConsolidationGate:
    settings = settings or get_settings()
    status = consolidation.status

    if status == ConsolidationStatus.AMBIGUOUS:
        return ConsolidationGate(
            analysis_mode=AnalysisMode.PENDING_RESOLUTION,
            reason="Consolidation status ambiguous - confirm whether these are standalone or consolidated accounts",
            evidence=consolidation.evidence,
        )
    if status == ConsolidationStatus.CONSOLIDATED:
        if not settings.allow_consolidated:
            return ConsolidationGate(
                analysis_mode=AnalysisMode.BLOCKED,
                reason="Consolidated accounts are not accepted for analysis",
                evidence=consolidation.evidence,
            )
        return ConsolidationGate(
            analysis_mode=AnalysisMode.PROCEED_CONSOLIDATED,
            reason="Consolidated accounts - intercompany balances may be eliminated",
            evidence=consolidation.evidence,
        )
    return ConsolidationGate(
        analysis_mode=AnalysisMode.PROCEED_STANDALONE,
        reason="Standalone accounts",
        evidence=consolidation.evidence,
    )


def evaluate_mapping_gate(
    codes: Sequence[ExtractedCode],
    dictionary: CodeDictionary,
    settings: Optional[Settings] = None,
) -> MappingConfidenceGate:
    """Confidence bands over the extracted codes."""
    settings = settings or get_settings()
    total = len(codes)
    if total == 0:
        return MappingConfidenceGate(
            codes_total=0,
            high_confidence_pct=0.0,
            medium_confidence_pct=0.0,
            low_confidence_pct=0.0,
            overall_confidence=0.0,
        )

    high = sum(1 for c in codes if c.confidence >= settings.high_confidence_threshold)
    medium = sum(
        1 for c in codes
        if settings.medium_confidence_threshold <= c.confidence < settings.high_confidence_threshold
    )
    low = total - high - medium

    affected = tuple(sorted({
        c.code for c in codes
        if dictionary.is_tp_critical(c.code) and c.confidence < settings.tp_critical_confidence_floor
    }))

    return MappingConfidenceGate(
        codes_total=total,
        high_confidence_pct=round(high / total * 100, 2),
        medium_confidence_pct=round(medium / total * 100, 2),
        low_confidence_pct=round(low / total * 100, 2),
        overall_confidence=sum(c.confidence for c in codes) / total,
        critical_codes_affected=affected,
    )


def _any_match(patterns, text: str) -> bool:
    return any(p.search(text) for p in patterns)


def detect_document_sections(
    text: str,
    codes: Sequence[ExtractedCode],
    dictionary: CodeDictionary,
) -> Tuple[bool, bool, bool, bool]:
    """
    Which parts of the filing are present.

    Returns:
        (has_balance_sheet, has_profit_loss, has_notes, has_management_report).
        Statements count as present when a code of their category was
        extracted or their title appears in the text.
    """
    categories = {code_category(c.code, dictionary) for c in codes}
    has_balance_sheet = CodeCategory.BALANCE_SHEET in categories or _any_match(BALANCE_SHEET_PATTERNS, text)
    has_profit_loss = CodeCategory.PROFIT_LOSS in categories or _any_match(PROFIT_LOSS_PATTERNS, text)
    has_notes = _any_match(NOTES_PATTERNS, text)
    has_management_report = _any_match(MANAGEMENT_REPORT_PATTERNS, text)
    return has_balance_sheet, has_profit_loss, has_notes, has_management_report


def evaluate_data_quality_gate(
    has_balance_sheet: bool,
    has_profit_loss: bool,
    has_notes: bool,
    has_management_report: bool,
    company_size: CompanySize,
) -> DataQualityGate:
    score = 0
    missing: List[str] = []

    if has_balance_sheet:
        score += BALANCE_SHEET_WEIGHT
    else:
        missing.append("Balance sheet not found")
    if has_profit_loss:
        score += PROFIT_LOSS_WEIGHT
    else:
        missing.append("Profit & Loss not found")
    if has_notes:
        score += NOTES_WEIGHT
    elif company_size == CompanySize.LARGE:
        missing.append("Notes not found (required for large entity)")
    if has_management_report:
        score += MANAGEMENT_REPORT_WEIGHT
    elif company_size == CompanySize.LARGE:
        missing.append("Management report not found (required for large entity)")

    return DataQualityGate(
        has_balance_sheet=has_balance_sheet,
        has_profit_loss=has_profit_loss,
        has_notes=has_notes,
        has_management_report=has_management_report,
        completeness_score=score,
        missing_critical_data=tuple(missing),
    )


def code_category(code: str, dictionary: CodeDictionary) -> CodeCategory:
    definition = dictionary.get(code)
    if definition is not None:
        return definition.category
    # Unknown codes: 1xxx-5xxx are balance sheet positions, 6xxx-9xxx P&L
    if code[:1] in "12345":
        return CodeCategory.BALANCE_SHEET
    if code[:1] in "6789":
        return CodeCategory.PROFIT_LOSS
    return CodeCategory.OTHER


def compute_module_trust(
    codes: Sequence[ExtractedCode],
    dictionary: CodeDictionary,
    mapping_gate: MappingConfidenceGate,
    has_notes: bool,
    has_management_report: bool,
) -> ModuleTrust:
    """
    Trust per functional slice.

    anchors: mean confidence of balance sheet and P&L codes.
    context: overall mapping confidence discounted, low without notes.
    narrative: fixed by presence of a management report.
    """
    anchor_confidences = [
        c.confidence for c in codes
        if code_category(c.code, dictionary) in (CodeCategory.BALANCE_SHEET, CodeCategory.PROFIT_LOSS)
    ]
    anchors = mean(anchor_confidences) if anchor_confidences else 0.0
    context = mapping_gate.overall_confidence * CONTEXT_NOTES_FACTOR if has_notes else CONTEXT_WITHOUT_NOTES
    narrative = NARRATIVE_WITH_REPORT if has_management_report else NARRATIVE_WITHOUT_REPORT
    return ModuleTrust(
        anchors=round(anchors, 4),
        context=round(context, 4),
        narrative=narrative,
    )


# =============================================================================
# Review actions and limited mode
# =============================================================================

def build_review_actions(
    scale_detection: UnitScaleDetection,
    balance_check: BalanceCheck,
    consolidation_gate: ConsolidationGate,
    mapping_gate: MappingConfidenceGate,
    data_quality_gate: DataQualityGate,
    codes_requiring_review: Sequence[str] = (),
    settings: Optional[Settings] = None,
) -> Tuple[ReviewAction, ...]:
    """Review actions, highest priority first, capped."""
    settings = settings or get_settings()
    actions: List[ReviewAction] = []

    if consolidation_gate.blocks_analysis:
        actions.append(ReviewAction(
            action_type=ReviewActionType.RESOLVE_CONSOLIDATION,
            priority=ReviewPriority.HIGH,
            description=consolidation_gate.reason,
        ))

    if scale_detection.uncertain:
        actions.append(ReviewAction(
            action_type=ReviewActionType.CONFIRM_UNIT_SCALE,
            priority=ReviewPriority.HIGH,
            description=(
                f"Confirm unit scale: detected {scale_detection.scale.value} "
                f"at {scale_detection.confidence:.0%} confidence"
            ),
        ))

    # A missing total is reported as a warning only; there is nothing to fix yet
    if not balance_check.balances and balance_check.difference is not None:
        actions.append(ReviewAction(
            action_type=ReviewActionType.FIX_ARITHMETIC,
            priority=ReviewPriority.MEDIUM,
            description=f"Check balance sheet totals: difference of {balance_check.difference}",
        ))

    for item in data_quality_gate.missing_critical_data:
        actions.append(ReviewAction(
            action_type=ReviewActionType.PROVIDE_MISSING_DATA,
            priority=ReviewPriority.MEDIUM,
            description=item,
        ))

    confirmations: List[ReviewAction] = []
    for code in mapping_gate.critical_codes_affected:
        confirmations.append(ReviewAction(
            action_type=ReviewActionType.CONFIRM_MAPPING,
            priority=ReviewPriority.MEDIUM,
            description=f"Confirm value and mapping of TP-critical code {code}",
            code=code,
        ))
    for code in codes_requiring_review:
        if code in mapping_gate.critical_codes_affected:
            continue
        confirmations.append(ReviewAction(
            action_type=ReviewActionType.CONFIRM_MAPPING,
            priority=ReviewPriority.LOW,
            description=f"Caption of code {code} does not match its dictionary entry",
            code=code,
        ))
    actions.extend(confirmations[:settings.max_mapping_confirmations])

    actions.sort(key=lambda a: _PRIORITY_RANK[a.priority])
    return tuple(actions[:settings.max_review_actions])


def build_limited_mode_rules(
    level: ReadinessLevel,
    mapping_gate: MappingConfidenceGate,
    data_quality_gate: DataQualityGate,
    unit_scale_validated: bool,
    is_abridged: bool,
) -> LimitedModeRules:
    if level != ReadinessLevel.READY_LIMITED:
        return LimitedModeRules(active=False)

    reasons: List[str] = [
        f"High-confidence mapping coverage {mapping_gate.high_confidence_pct:.0f}%",
    ]
    if mapping_gate.overall_confidence < LIMITED_MAPPING_CONFIDENCE:
        reasons.append(f"Low mapping confidence: {mapping_gate.overall_confidence * 100:.0f}%")
    if not unit_scale_validated:
        reasons.append("Unit scale not validated")
    if not data_quality_gate.has_notes:
        reasons.append("Notes not available for detailed IC analysis")
    if is_abridged:
        reasons.append("Abridged accounts - P&L detail unavailable")
    return LimitedModeRules(active=True, reasons=tuple(reasons))


# =============================================================================
# Assembly
# =============================================================================

def evaluate_pre_analysis_gates(
    codes: Sequence[ExtractedCode],
    scale_detection: UnitScaleDetection,
    balance_check: BalanceCheck,
    consolidation: ConsolidationDetection,
    company_size: CompanySize,
    dictionary: CodeDictionary,
    text: str = "",
    is_abridged: bool = False,
    codes_requiring_review: Sequence[str] = (),
    settings: Optional[Settings] = None,
) -> PreAnalysisGates:
    """
    Evaluate every sub-gate and the readiness level.

    Args:
        codes: Extracted codes, merged across tiers.
        scale_detection: Document-wide unit scale.
        balance_check: Result of the 109 / 309 comparison.
        consolidation: Consolidation classification from the company profile.
        company_size: Size class, for data-quality requirements.
        dictionary: Code dictionary used for the extraction.
        text: Full document text, to detect notes and management report.
        is_abridged: Whether the accounts are abridged or abbreviated.
        codes_requiring_review: Codes the mapper flagged.

    Returns:
        A new PreAnalysisGates object.
    """
    settings = settings or get_settings()

    consolidation_gate = evaluate_consolidation_gate(consolidation, settings)
    mapping_gate = evaluate_mapping_gate(codes, dictionary, settings)
    sections = detect_document_sections(text, codes, dictionary)
    data_quality_gate = evaluate_data_quality_gate(*sections, company_size=company_size)

    decision = compute_readiness_level(
        GateInputs(
            unit_scale_validated=scale_detection.validated,
            balance_check=balance_check,
            consolidation_gate=consolidation_gate,
            mapping_gate=mapping_gate,
        ),
        settings,
    )

    module_trust = compute_module_trust(
        codes,
        dictionary,
        mapping_gate,
        has_notes=data_quality_gate.has_notes,
        has_management_report=data_quality_gate.has_management_report,
    )
    actions = build_review_actions(
        scale_detection,
        balance_check,
        consolidation_gate,
        mapping_gate,
        data_quality_gate,
        codes_requiring_review=codes_requiring_review,
        settings=settings,
    )
    limited = build_limited_mode_rules(
        decision.level,
        mapping_gate,
        data_quality_gate,
        scale_detection.validated,
        is_abridged,
    )

    gates = PreAnalysisGates(
        gate_id=str(uuid.uuid4()),
        computed_at=datetime.now(timezone.utc),
        readiness_level=decision.level,
        unit_scale_validated=scale_detection.validated,
        balance_check=balance_check,
        consolidation_gate=consolidation_gate,
        mapping_gate=mapping_gate,
        data_quality_gate=data_quality_gate,
        module_trust=module_trust,
        limited_mode_rules=limited,
        blocking_issues=decision.blocking_issues,
        warnings=decision.warnings + data_quality_gate.missing_critical_data,
        required_review_actions=actions,
    )

    logger.info(
        "Pre-analysis gates evaluated",
        gate_id=gates.gate_id,
        readiness_level=gates.readiness_level.value,
        blocking_issues=len(gates.blocking_issues),
        warnings=len(gates.warnings),
        review_actions=len(actions),
    )
    return gates
