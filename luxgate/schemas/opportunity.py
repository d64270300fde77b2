"""
Pydantic schemas for candidate findings produced by the external analyzer.

Candidates are validated on the way in; the opportunity gate only drops or
annotates them, it never edits their substantive fields.
"""
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from luxgate.models import ReadinessLevel


class OpportunityType(str, Enum):
    """Closed set of finding types the gate knows requirements for."""

    ZERO_SPREAD = "zero_spread"
    THIN_CAP = "thin_cap"
    SUBSTANCE_CONCERN = "substance_concern"
    SOPARFI_SUBSTANCE_RISK = "soparfi_substance_risk"
    PRICING_ANOMALY = "pricing_anomaly"
    UNDOCUMENTED_SERVICES = "undocumented_services"
    UNREMUNERATED_GUARANTEE = "unremunerated_guarantee"
    RELATED_PARTY_FLAG = "related_party_flag"
    MISSING_DOCUMENTATION = "missing_documentation"
    MATURITY_MISMATCH = "maturity_mismatch"
    CIRCULAR_56_1_CONCERN = "circular_56_1_concern"


class OpportunitySeverity(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class OpportunityCandidate(BaseModel):
    """A finding proposed by the analyzer."""

    model_config = ConfigDict(extra="allow", frozen=True)

    type: str = Field(..., description="Finding type tag; unknown tags are allowed at READY_FULL only")
    severity: OpportunitySeverity = Field(..., description="Analyzer-assigned severity")
    title: str = Field(..., description="Short headline")
    description: str = Field("", description="Finding narrative")
    affected_amount: Optional[Decimal] = Field(None, description="Amount concerned, resolved units")
    potential_adjustment: Optional[Decimal] = Field(None, description="Estimated adjustment, resolved units")
    recommendation: str = Field("", description="Suggested follow-up")
    supporting_metrics: List[str] = Field(default_factory=list, description="Metric names the finding relies on")
    data_references: List[str] = Field(default_factory=list, description="Codes or notes cited")
    regulatory_reference: Optional[str] = Field(None, description="Circular or article cited")
    generated_at_readiness_level: Optional[ReadinessLevel] = Field(
        None, description="Set by the gate on accepted findings"
    )
    required_data_present: Optional[bool] = Field(None, description="Set by the gate on accepted findings")
