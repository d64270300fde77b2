"""
Domain records for the LuxGate pipeline.

Every record crossing a stage boundary lives here:
- ExtractedCode records with provenance
- UnitScaleDetection and its optional reconciliation
- CompanyProfile classifications with evidence strings
- DeterministicMetrics (flat, nullable) with a not-calculable ledger
- PreAnalysisGates and its sub-gates
- StructuredExtraction, the canonical model handed downstream

Records are frozen. A re-extraction builds new objects, nothing is patched
in place.
"""

import dataclasses
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class UnitScale(str, Enum):
    """Magnitude applied to every number printed in the accounts."""
    UNITS = "units"
    THOUSANDS = "thousands"
    MILLIONS = "millions"

    @property
    def multiplier(self) -> Decimal:
        return _SCALE_MULTIPLIERS[self]


_SCALE_MULTIPLIERS = {
    UnitScale.UNITS: Decimal(1),
    UnitScale.THOUSANDS: Decimal(1_000),
    UnitScale.MILLIONS: Decimal(1_000_000),
}


class ScaleSource(str, Enum):
    """Where a unit-scale decision came from."""
    EXPLICIT_TEXT = "explicit_text"
    MAGNITUDE_ANALYSIS = "magnitude_analysis"
    CROSS_VALIDATION = "cross_validation"
    DEFAULT = "default"


class MatchSource(str, Enum):
    """How a code was attached to a line."""
    REFERENCE_COLUMN = "reference_column"
    CAPTION_MATCH = "caption_match"


class CodeCategory(str, Enum):
    BALANCE_SHEET = "balance_sheet"
    PROFIT_LOSS = "profit_loss"
    NOTES = "notes"
    OTHER = "other"


class TPPriority(str, Enum):
    """Transfer-pricing relevance of a code."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class CompanySize(str, Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


class SizeSource(str, Enum):
    THRESHOLDS = "thresholds"
    DEFAULT = "default"


class AccountType(str, Enum):
    """Depth of the filed accounts."""
    FULL = "full"
    ABRIDGED = "abridged"
    ABBREVIATED = "abbreviated"


class ReportingStandard(str, Enum):
    LUX_GAAP = "lux_gaap"
    IFRS = "ifrs"


class ConsolidationStatus(str, Enum):
    STANDALONE = "standalone"
    CONSOLIDATED = "consolidated"
    AMBIGUOUS = "ambiguous"


class ReadinessLevel(str, Enum):
    """Verdict gating downstream analysis."""
    READY_FULL = "READY_FULL"
    READY_LIMITED = "READY_LIMITED"
    BLOCKED = "BLOCKED"


class AnalysisMode(str, Enum):
    """Consolidation sub-gate outcome."""
    PROCEED_STANDALONE = "proceed_standalone"
    PROCEED_CONSOLIDATED = "proceed_consolidated"
    BLOCKED = "blocked"
    PENDING_RESOLUTION = "pending_resolution"


class ReviewActionType(str, Enum):
    CONFIRM_UNIT_SCALE = "confirm_unit_scale"
    FIX_ARITHMETIC = "fix_arithmetic"
    CONFIRM_MAPPING = "confirm_mapping"
    RESOLVE_CONSOLIDATION = "resolve_consolidation"
    PROVIDE_MISSING_DATA = "provide_missing_data"


class ReviewPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# =============================================================================
# Code Extraction
# =============================================================================

@dataclass(frozen=True)
class ExtractedCode:
    """A statutory code read from the document, with provenance."""
    code: str
    caption: str
    current_value: Optional[Decimal]
    prior_value: Optional[Decimal]
    page: int
    confidence: float
    match_source: MatchSource
    raw_value_string: str = ""
    note_reference: Optional[str] = None


# =============================================================================
# Unit Scale
# =============================================================================

@dataclass(frozen=True)
class UnitScaleReconciliation:
    """Cross-check of summary figures against the statutory statements."""
    consistent: bool
    implied_multiplier: Optional[Decimal]
    pairs_compared: int
    discrepancies: Tuple[str, ...] = ()


@dataclass(frozen=True)
class UnitScaleDetection:
    """Document-wide unit scale, computed once per document."""
    scale: UnitScale
    confidence: float
    source: ScaleSource
    evidence: Tuple[str, ...]
    uncertain: bool
    reconciliation: Optional[UnitScaleReconciliation] = None

    @property
    def validated(self) -> bool:
        return not self.uncertain

    def with_reconciliation(self, reconciliation: UnitScaleReconciliation) -> "UnitScaleDetection":
        """Copy carrying a reconciliation report. Scale and confidence are unchanged."""
        return dataclasses.replace(self, reconciliation=reconciliation)


# =============================================================================
# Company Profile
# =============================================================================

@dataclass(frozen=True)
class SizeClassification:
    """Outcome of the 2-of-3 threshold test."""
    size: CompanySize
    source: SizeSource
    exceeds_small: bool
    exceeds_medium: bool
    balance_sheet_total: Optional[Decimal] = None
    net_turnover: Optional[Decimal] = None
    average_employees: Optional[int] = None
    evidence: Tuple[str, ...] = ()


@dataclass(frozen=True)
class AccountTypeDetection:
    account_type: AccountType
    evidence: Optional[str] = None


@dataclass(frozen=True)
class ReportingStandardDetection:
    standard: ReportingStandard
    evidence: Optional[str] = None


@dataclass(frozen=True)
class ConsolidationDetection:
    status: ConsolidationStatus
    evidence: Tuple[str, ...] = ()
    # Set when the caller resolved an ambiguous case
    resolved_by_caller: bool = False

    @property
    def is_consolidated(self) -> Optional[bool]:
        if self.status == ConsolidationStatus.AMBIGUOUS:
            return None
        return self.status == ConsolidationStatus.CONSOLIDATED


@dataclass(frozen=True)
class HoldingIndicators:
    """Heuristic SOPARFI signal, not a legal determination."""
    likely_holding: bool
    confidence: float
    indicators: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CompanyProfile:
    legal_name: Optional[str]
    legal_form: Optional[str]
    registration_number: Optional[str]
    registered_office: Optional[str]
    financial_year_end: Optional[date]
    average_employees: Optional[int]
    size: SizeClassification
    account_type: AccountTypeDetection
    reporting_standard: ReportingStandardDetection
    consolidation: ConsolidationDetection
    holding: HoldingIndicators

    @property
    def is_abridged(self) -> bool:
        return self.account_type.account_type != AccountType.FULL


# =============================================================================
# Deterministic Metrics
# =============================================================================

@dataclass(frozen=True)
class MetricNotCalculable:
    metric_name: str
    reason: str
    missing_inputs: Tuple[str, ...] = ()


@dataclass(frozen=True)
class MetricCalculation:
    """Audit entry for a computed metric."""
    metric: str
    formula: str
    inputs: Dict[str, Decimal]
    result: float


@dataclass(frozen=True)
class VolatilityFlag:
    metric: str
    change: float
    threshold: float
    tp_relevance: str


@dataclass(frozen=True)
class YoYAnalysis:
    turnover_change_pct: Optional[float] = None
    ic_debt_change_pct: Optional[float] = None
    staff_cost_change_pct: Optional[float] = None
    operating_margin_change_pp: Optional[float] = None
    implied_lending_rate_change_bps: Optional[float] = None
    significant_volatility: Tuple[VolatilityFlag, ...] = ()


@dataclass(frozen=True)
class DeterministicMetrics:
    """Flat record of nullable ratios and amounts, all in resolved units."""
    # Amounts
    total_turnover: Optional[Decimal] = None
    total_assets: Optional[Decimal] = None
    total_equity: Optional[Decimal] = None
    total_debt: Optional[Decimal] = None
    ic_debt: Optional[Decimal] = None
    ic_receivables: Optional[Decimal] = None
    operating_profit: Optional[Decimal] = None
    ebitda: Optional[Decimal] = None
    ic_interest_income: Optional[Decimal] = None
    ic_interest_expense: Optional[Decimal] = None
    # Profitability
    gross_margin_pct: Optional[float] = None
    operating_margin_pct: Optional[float] = None
    net_margin_pct: Optional[float] = None
    ebitda_margin_pct: Optional[float] = None
    # Leverage
    debt_to_equity_ratio: Optional[float] = None
    ic_debt_to_equity_ratio: Optional[float] = None
    ic_debt_to_total_debt_pct: Optional[float] = None
    interest_coverage_ratio: Optional[float] = None
    # Activity
    asset_turnover_ratio: Optional[float] = None
    ic_receivables_to_total_assets_pct: Optional[float] = None
    ic_payables_to_total_liabilities_pct: Optional[float] = None
    # Transfer pricing
    staff_cost_to_revenue_pct: Optional[float] = None
    external_charges_to_revenue_pct: Optional[float] = None
    financial_assets_to_total_assets_pct: Optional[float] = None
    implied_ic_lending_rate_pct: Optional[float] = None
    implied_ic_borrowing_rate_pct: Optional[float] = None
    ic_spread_bps: Optional[float] = None
    effective_tax_rate_pct: Optional[float] = None
    # Year over year
    yoy_analysis: Optional[YoYAnalysis] = None
    metrics_not_calculable: Tuple[MetricNotCalculable, ...] = ()
    calculations_performed: Tuple[MetricCalculation, ...] = ()

    def get(self, metric_name: str) -> Any:
        """Look up a metric by name; unknown names read as missing."""
        if metric_name in _NON_METRIC_FIELDS:
            return None
        return getattr(self, metric_name, None)

    def not_calculable_names(self) -> Tuple[str, ...]:
        return tuple(m.metric_name for m in self.metrics_not_calculable)


_NON_METRIC_FIELDS = {"yoy_analysis", "metrics_not_calculable", "calculations_performed"}


# =============================================================================
# Pre-Analysis Gates
# =============================================================================

@dataclass(frozen=True)
class BalanceCheck:
    """Assets against liabilities, in resolved units."""
    balances: bool
    total_assets: Optional[Decimal]
    total_liabilities: Optional[Decimal]
    difference: Optional[Decimal]
    message: str


@dataclass(frozen=True)
class ConsolidationGate:
    analysis_mode: AnalysisMode
    reason: str
    evidence: Tuple[str, ...] = ()

    @property
    def blocks_analysis(self) -> bool:
        return self.analysis_mode in (AnalysisMode.BLOCKED, AnalysisMode.PENDING_RESOLUTION)


@dataclass(frozen=True)
class MappingConfidenceGate:
    codes_total: int
    high_confidence_pct: float
    medium_confidence_pct: float
    low_confidence_pct: float
    overall_confidence: float
    critical_codes_affected: Tuple[str, ...] = ()

    @property
    def high_or_medium_pct(self) -> float:
        return self.high_confidence_pct + self.medium_confidence_pct


@dataclass(frozen=True)
class DataQualityGate:
    has_balance_sheet: bool
    has_profit_loss: bool
    has_notes: bool
    has_management_report: bool
    completeness_score: int
    missing_critical_data: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ModuleTrust:
    """Trust per functional slice; consumed by the opportunity gate only."""
    anchors: float
    context: float
    narrative: float


@dataclass(frozen=True)
class ReviewAction:
    action_type: ReviewActionType
    priority: ReviewPriority
    description: str
    code: Optional[str] = None


@dataclass(frozen=True)
class LimitedModeRules:
    active: bool
    reasons: Tuple[str, ...] = ()


@dataclass(frozen=True)
class PreAnalysisGates:
    """The decision object; rebuilt for every extraction run."""
    gate_id: str
    computed_at: datetime
    readiness_level: ReadinessLevel
    unit_scale_validated: bool
    balance_check: BalanceCheck
    consolidation_gate: ConsolidationGate
    mapping_gate: MappingConfidenceGate
    data_quality_gate: DataQualityGate
    module_trust: ModuleTrust
    limited_mode_rules: LimitedModeRules
    blocking_issues: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()
    required_review_actions: Tuple[ReviewAction, ...] = ()


# =============================================================================
# Canonical Model
# =============================================================================

@dataclass(frozen=True)
class CanonicalLineItem:
    code: str
    caption_original: str
    caption_normalized: str
    value_current_year: Optional[Decimal]
    value_prior_year: Optional[Decimal]
    unit_scale: UnitScale
    raw_value_string: str
    extraction_confidence: float
    match_source: MatchSource
    source_page: int
    category: CodeCategory
    tp_priority: TPPriority
    is_total: bool = False
    parent_code: Optional[str] = None
    note_reference: Optional[str] = None
    requires_review: bool = False
    alt_candidates: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CanonicalBalanceSheet:
    total_assets: Optional[Decimal]
    total_liabilities: Optional[Decimal]
    line_items: Tuple[CanonicalLineItem, ...] = ()


@dataclass(frozen=True)
class CanonicalProfitLoss:
    net_profit_loss: Optional[Decimal]
    line_items: Tuple[CanonicalLineItem, ...] = ()


@dataclass(frozen=True)
class ExtractionMetadata:
    schema_version: str
    dictionary_version: str
    extraction_timestamp: datetime
    document_language: str
    unit_scale: UnitScale
    unit_scale_validated: bool
    account_type: AccountType
    company_size: CompanySize
    reporting_standard: ReportingStandard
    overall_confidence: float
    reference_column_detected: bool
    warnings: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ValidationDashboard:
    overall_status: str  # "ok", "warnings", "blocked"
    blocking_issues: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()
    substance_warnings: Tuple[str, ...] = ()
    completeness_issues: Tuple[str, ...] = ()
    volatility_alerts: Tuple[str, ...] = ()
    unit_scale_evidence: Tuple[str, ...] = ()


@dataclass(frozen=True)
class StructuredExtraction:
    """Canonical model handed to the downstream analyzer."""
    metadata: ExtractionMetadata
    company_profile: CompanyProfile
    unit_scale_detection: UnitScaleDetection
    extracted_codes: Tuple[ExtractedCode, ...]
    balance_sheet: CanonicalBalanceSheet
    profit_loss: CanonicalProfitLoss
    deterministic_metrics: DeterministicMetrics
    pre_analysis_gates: PreAnalysisGates
    validation_dashboard: ValidationDashboard

    def to_dict(self) -> Dict[str, Any]:
        """JSON-safe dictionary (decimals as strings, enums as values)."""
        return to_jsonable(dataclasses.asdict(self))


def to_jsonable(value: Any) -> Any:
    """Convert dataclass dumps into plain JSON types."""
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value
