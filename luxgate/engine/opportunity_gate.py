"""
Opportunity gate.

Filters candidate findings against the pre-analysis verdict. A finding is
kept only when its type is eligible at the current readiness level and its
required metrics and module trust levels are available. Rejected findings
are dropped, accepted ones are annotated; content is never edited.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import structlog

from luxgate.models import DeterministicMetrics, PreAnalysisGates, ReadinessLevel
from luxgate.schemas.opportunity import OpportunityCandidate, OpportunityType

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class OpportunityRequirement:
    """Eligibility rules for one finding type."""
    opportunity_type: OpportunityType
    enabled_in_limited: bool
    required_metrics: Tuple[str, ...] = ()
    blocked_if_abridged: bool = False
    # (module, minimum trust) with module one of anchors, context, narrative
    required_trust: Tuple[Tuple[str, float], ...] = ()


OPPORTUNITY_REQUIREMENTS: Dict[str, OpportunityRequirement] = {
    r.opportunity_type.value: r for r in (
        OpportunityRequirement(
            OpportunityType.ZERO_SPREAD,
            enabled_in_limited=True,
            required_metrics=("implied_ic_lending_rate_pct", "implied_ic_borrowing_rate_pct"),
            required_trust=(("anchors", 0.6),),
        ),
        OpportunityRequirement(
            OpportunityType.THIN_CAP,
            enabled_in_limited=True,
            required_metrics=("debt_to_equity_ratio",),
            required_trust=(("anchors", 0.6),),
        ),
        OpportunityRequirement(
            OpportunityType.SUBSTANCE_CONCERN,
            enabled_in_limited=True,
            required_metrics=("staff_cost_to_revenue_pct",),
            required_trust=(("anchors", 0.5),),
        ),
        OpportunityRequirement(
            OpportunityType.SOPARFI_SUBSTANCE_RISK,
            enabled_in_limited=True,
            required_metrics=("financial_assets_to_total_assets_pct",),
            required_trust=(("anchors", 0.5),),
        ),
        OpportunityRequirement(
            OpportunityType.PRICING_ANOMALY,
            enabled_in_limited=False,
            required_metrics=("operating_margin_pct",),
            blocked_if_abridged=True,
            required_trust=(("anchors", 0.8),),
        ),
        OpportunityRequirement(
            OpportunityType.UNDOCUMENTED_SERVICES,
            enabled_in_limited=False,
            blocked_if_abridged=True,
            required_trust=(("context", 0.7),),
        ),
        OpportunityRequirement(
            OpportunityType.UNREMUNERATED_GUARANTEE,
            enabled_in_limited=True,
            required_trust=(("context", 0.5),),
        ),
        OpportunityRequirement(
            OpportunityType.RELATED_PARTY_FLAG,
            enabled_in_limited=True,
            required_trust=(("context", 0.5),),
        ),
        OpportunityRequirement(
            OpportunityType.MISSING_DOCUMENTATION,
            enabled_in_limited=True,
        ),
        OpportunityRequirement(
            OpportunityType.MATURITY_MISMATCH,
            enabled_in_limited=False,
            required_trust=(("context", 0.7),),
        ),
        OpportunityRequirement(
            OpportunityType.CIRCULAR_56_1_CONCERN,
            enabled_in_limited=True,
            required_trust=(("anchors", 0.5),),
        ),
    )
}


def validate_opportunity(
    candidate: OpportunityCandidate,
    gates: PreAnalysisGates,
    metrics: DeterministicMetrics,
    is_abridged: bool = False,
) -> Tuple[bool, Optional[str]]:
    """
    Check one candidate against the gate.

    Returns:
        (accepted, reason) where reason explains a rejection.
    """
    level = gates.readiness_level
    if level == ReadinessLevel.BLOCKED:
        return False, "Analysis is blocked"

    requirement = OPPORTUNITY_REQUIREMENTS.get(candidate.type)
    if requirement is None:
        if level == ReadinessLevel.READY_FULL:
            return True, None
        return False, f"Unknown opportunity type '{candidate.type}' only allowed in READY_FULL"

    if level == ReadinessLevel.READY_LIMITED and not requirement.enabled_in_limited:
        return False, "Not allowed in READY_LIMITED mode"

    if requirement.blocked_if_abridged and is_abridged:
        return False, "Blocked for abridged accounts"

    for metric in requirement.required_metrics:
        if metrics.get(metric) is None:
            return False, f"Required metric {metric} not calculable"

    for module, minimum in requirement.required_trust:
        trust = getattr(gates.module_trust, module)
        if trust < minimum:
            return False, f"Module {module} trust level ({trust:.2f}) below required ({minimum:.2f})"

    return True, None


def filter_opportunities(
    candidates: Sequence[OpportunityCandidate],
    gates: PreAnalysisGates,
    metrics: DeterministicMetrics,
    is_abridged: bool = False,
) -> List[OpportunityCandidate]:
    """
    Drop ineligible candidates and annotate the rest.

    Accepted findings are copies carrying the readiness level they were
    generated at and required_data_present=True.
    """
    if gates.readiness_level == ReadinessLevel.BLOCKED:
        if candidates:
            logger.info(
                "All opportunities rejected: analysis is blocked",
                gate_id=gates.gate_id,
                candidates=len(candidates),
            )
        return []

    accepted: List[OpportunityCandidate] = []
    for candidate in candidates:
        ok, reason = validate_opportunity(candidate, gates, metrics, is_abridged)
        if not ok:
            logger.info(
                "Opportunity rejected",
                gate_id=gates.gate_id,
                opportunity_type=candidate.type,
                title=candidate.title,
                reason=reason,
            )
            continue
        accepted.append(candidate.model_copy(update={
            "generated_at_readiness_level": gates.readiness_level,
            "required_data_present": True,
        }))

    logger.info(
        "Opportunity gate applied",
        gate_id=gates.gate_id,
        readiness_level=gates.readiness_level.value,
        candidates=len(candidates),
        accepted=len(accepted),
    )
    return accepted


def get_allowed_opportunity_types(gates: PreAnalysisGates, is_abridged: bool = False) -> List[str]:
    """Finding types eligible at the current readiness level, ignoring metrics and trust."""
    level = gates.readiness_level
    if level == ReadinessLevel.BLOCKED:
        return []

    allowed = []
    for type_name, requirement in OPPORTUNITY_REQUIREMENTS.items():
        if level == ReadinessLevel.READY_LIMITED and not requirement.enabled_in_limited:
            continue
        if is_abridged and requirement.blocked_if_abridged:
            continue
        allowed.append(type_name)
    return allowed
