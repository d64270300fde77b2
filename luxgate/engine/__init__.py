"""
LuxGate Engine - canonicalization and gating for Luxembourg GAAP filings.

Takes OCR output of statutory annual accounts and produces a canonical,
code-keyed model with a pre-analysis verdict that decides how much
transfer-pricing analysis may run on it.

Key Principles:
1. Codes first - the statutory reference column beats caption matching
2. One unit scale per document, applied exactly once
3. Missing means missing - a metric without inputs is null, never zero
4. Degrade, don't abort - only empty input is fatal
"""

from luxgate.engine.orchestrator import run_pipeline, PipelineOptions
from luxgate.engine.gates import compute_readiness_level, evaluate_pre_analysis_gates, GateInputs
from luxgate.engine.opportunity_gate import (
    filter_opportunities,
    get_allowed_opportunity_types,
    validate_opportunity,
)
from luxgate.models import ReadinessLevel, StructuredExtraction

__version__ = "1.0.0"
__all__ = [
    "run_pipeline",
    "PipelineOptions",
    "compute_readiness_level",
    "evaluate_pre_analysis_gates",
    "GateInputs",
    "filter_opportunities",
    "get_allowed_opportunity_types",
    "validate_opportunity",
    "ReadinessLevel",
    "StructuredExtraction",
]
