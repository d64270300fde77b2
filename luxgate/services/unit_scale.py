"""
Unit scale detection for statutory accounts.

Luxembourg filings print amounts in euro, thousands or millions, usually
declared once in a header ("en milliers d'euros", "in TEUR"). Getting the
scale wrong multiplies every downstream figure by 1000, so the decision is
explicit, carries its evidence, and is flagged uncertain below a threshold.
"""
import re
from decimal import Decimal
from statistics import mean
from typing import Dict, List, Optional, Pattern, Tuple

import structlog

from luxgate.config import Settings, get_settings
from luxgate.models import (
    ScaleSource,
    UnitScale,
    UnitScaleDetection,
    UnitScaleReconciliation,
)
from luxgate.services.numeric_parser import NumericParser, format_european, get_numeric_parser

logger = structlog.get_logger(__name__)


# Scale indicators per language, lowercase
SCALE_INDICATORS: Dict[UnitScale, Dict[str, List[str]]] = {
    UnitScale.THOUSANDS: {
        "en": ["in thousands", "in thousand", "in '000", "in 000", "(thousands)",
               "('000)", "k€", "keur", "teur", "thousands of euro"],
        "fr": ["en milliers", "en keur", "en mille", "(milliers)", "en '000",
               "milliers d'euros"],
        "de": ["in tausend", "in teur", "tausend euro", "(tausend)"],
    },
    UnitScale.MILLIONS: {
        "en": ["in millions", "in million", "(millions)", "m€", "meur",
               "millions of euro"],
        "fr": ["en millions", "millions d'euros"],
        "de": ["in millionen", "(millionen)", "mio. eur", "mio eur"],
    },
}

# "Amounts in euro" statements that declare units explicitly
UNITS_DECLARATIONS = [
    re.compile(r"amounts?\s+(?:are\s+)?(?:expressed\s+)?in\s+(?:euros?|eur)\b", re.IGNORECASE),
    re.compile(r"montants?\s+(?:sont\s+)?(?:exprim[ée]s?\s+)?en\s+(?:euros?|eur)\b", re.IGNORECASE),
    re.compile(r"betr[äa]ge?\s+(?:sind\s+)?in\s+(?:euro|eur)\b", re.IGNORECASE),
]

# A thousands or millions qualifier near a units declaration voids it
SCALE_QUALIFIER_PATTERN = re.compile(r"thousand|millier|tausend|'000|million", re.IGNORECASE)
QUALIFIER_WINDOW = 100


def _indicator_pattern(indicator: str) -> Pattern:
    """Match an indicator as a whole phrase, not inside a longer word."""
    body = r"\s+".join(re.escape(part) for part in indicator.split())
    return re.compile(rf"(?<![a-z0-9]){body}(?![a-z0-9])")


_COMPILED_INDICATORS: Dict[UnitScale, List[Tuple[str, Pattern]]] = {
    scale: [
        (indicator, _indicator_pattern(indicator))
        for lang in ("en", "fr", "de")
        for indicator in by_lang[lang]
    ]
    for scale, by_lang in SCALE_INDICATORS.items()
}


def apply_scale(value: Optional[Decimal], scale: UnitScale) -> Optional[Decimal]:
    """Convert a printed amount into euro. The only place scale is applied."""
    if value is None:
        return None
    return value * scale.multiplier


class UnitScaleDetector:
    """
    Detects the document-wide unit scale.

    Keyword evidence scores 0.85-0.9; the magnitude heuristic scores 0.5-0.75
    and only replaces keyword evidence when it is strictly more confident.
    """

    MAGNITUDE_UNITS_HIGH = Decimal("1000000000")
    MAGNITUDE_UNITS_MEDIUM = Decimal("100000000")
    MAGNITUDE_SMALL_MAX = Decimal("10000")
    MAGNITUDE_SMALL_MEAN = Decimal("1000")

    def __init__(
        self,
        settings: Optional[Settings] = None,
        parser: Optional[NumericParser] = None,
    ):
        self.settings = settings or get_settings()
        self.parser = parser or get_numeric_parser()

    def detect(self, text: str) -> UnitScaleDetection:
        """
        Detect the unit scale of a document.

        Args:
            text: Full document text.

        Returns:
            UnitScaleDetection; identical input gives identical output.
        """
        evidence: List[str] = []
        scale = UnitScale.UNITS
        confidence = 0.5
        source = ScaleSource.DEFAULT

        lowered = (text or "").lower()

        # Thousands first; millions wins when both appear
        for candidate in (UnitScale.THOUSANDS, UnitScale.MILLIONS):
            for indicator, pattern in _COMPILED_INDICATORS[candidate]:
                if pattern.search(lowered):
                    scale = candidate
                    confidence = 0.9
                    source = ScaleSource.EXPLICIT_TEXT
                    evidence.append(f'Found "{indicator}" in document text')

        for pattern in UNITS_DECLARATIONS:
            match = pattern.search(lowered)
            if not match:
                continue
            start = max(0, match.start() - QUALIFIER_WINDOW)
            nearby = lowered[start:match.end() + QUALIFIER_WINDOW]
            if not SCALE_QUALIFIER_PATTERN.search(nearby):
                scale = UnitScale.UNITS
                confidence = 0.85
                source = ScaleSource.EXPLICIT_TEXT
                evidence.append('Found explicit "amounts in euro" without thousands qualifier')

        magnitude_scale, magnitude_confidence, magnitude_evidence = self._analyze_magnitudes(text or "")
        if magnitude_confidence > confidence:
            scale = magnitude_scale
            confidence = magnitude_confidence
            source = ScaleSource.MAGNITUDE_ANALYSIS
            evidence.extend(magnitude_evidence)

        uncertain = confidence < self.settings.scale_uncertainty_threshold
        if uncertain:
            evidence.append(
                f"Confidence {confidence * 100:.0f}% is below "
                f"{self.settings.scale_uncertainty_threshold * 100:.0f}% threshold"
            )

        logger.info(
            "Unit scale detected",
            scale=scale.value,
            confidence=confidence,
            source=source.value,
            uncertain=uncertain,
        )

        return UnitScaleDetection(
            scale=scale,
            confidence=confidence,
            source=source,
            evidence=tuple(evidence),
            uncertain=uncertain,
        )

    def _analyze_magnitudes(self, text: str) -> Tuple[UnitScale, float, List[str]]:
        """Infer scale from the size of the numbers printed in the text."""
        numbers = [
            abs(parsed.value)
            for parsed in self.parser.extract_numbers(text)
            if parsed.value and not self._is_year(parsed.raw_value)
        ]

        if not numbers:
            return UnitScale.UNITS, 0.3, ["No numbers found for magnitude analysis"]

        max_num = max(numbers)
        avg_num = mean(numbers)
        evidence = [
            f"Analyzed {len(numbers)} numbers, max: {format_european(max_num, 0)}, "
            f"avg: {format_european(avg_num, 0)}"
        ]

        if max_num > self.MAGNITUDE_UNITS_HIGH:
            evidence.append("Maximum value > 1 billion suggests UNITS")
            return UnitScale.UNITS, 0.75, evidence
        if max_num > self.MAGNITUDE_UNITS_MEDIUM:
            evidence.append("Maximum value in hundreds of millions suggests UNITS")
            return UnitScale.UNITS, 0.65, evidence
        if max_num < self.MAGNITUDE_SMALL_MAX and avg_num < self.MAGNITUDE_SMALL_MEAN:
            evidence.append("Small number magnitudes - possibly THOUSANDS or MILLIONS")
            return UnitScale.THOUSANDS, 0.55, evidence

        evidence.append("Magnitude inconclusive, defaulting to UNITS")
        return UnitScale.UNITS, 0.5, evidence

    @staticmethod
    def _is_year(raw: str) -> bool:
        raw = raw.strip()
        return len(raw) == 4 and raw.isdigit() and 1900 <= int(raw) <= 2100

    def reconcile(
        self,
        summary_values: Dict[str, Decimal],
        statutory_values: Dict[str, Decimal],
    ) -> UnitScaleReconciliation:
        """
        Compare summary-level figures with the same figures in the statements.

        A ratio near 1,000 or 1,000,000 means the summary uses another scale.
        That is reported as a discrepancy; neither side is corrected.
        """
        discrepancies: List[str] = []
        common_keys = sorted(k for k in summary_values if k in statutory_values)

        if not common_keys:
            return UnitScaleReconciliation(
                consistent=True,
                implied_multiplier=Decimal(1),
                pairs_compared=0,
                discrepancies=("No common keys found for reconciliation",),
            )

        ratios: List[Decimal] = []
        for key in common_keys:
            summary_val = summary_values[key]
            statutory_val = statutory_values[key]
            if summary_val is None or statutory_val is None or summary_val <= 0 or statutory_val <= 0:
                continue

            ratio = statutory_val / summary_val
            ratios.append(ratio)
            if abs(ratio - 1000) < 10:
                discrepancies.append(f"{key}: Summary appears to be in THOUSANDS (ratio: {ratio:.2f})")
            elif abs(ratio - 1_000_000) < 10_000:
                discrepancies.append(f"{key}: Summary appears to be in MILLIONS (ratio: {ratio:.2f})")
            elif abs(ratio - 1) > Decimal("0.1"):
                discrepancies.append(
                    f"{key}: Values don't match (summary: {summary_val}, "
                    f"statutory: {statutory_val}, ratio: {ratio:.2f})"
                )

        if not ratios:
            return UnitScaleReconciliation(
                consistent=True,
                implied_multiplier=Decimal(1),
                pairs_compared=0,
                discrepancies=("No positive value pairs to compare",),
            )

        avg_ratio = sum(ratios) / len(ratios)
        implied_multiplier: Optional[Decimal] = Decimal(1)
        consistent = True

        if 500 < avg_ratio < 2000:
            implied_multiplier = Decimal(1000)
            consistent = False
            discrepancies.append(f"Detected summary is in THOUSANDS (avg ratio: {avg_ratio:.2f})")
        elif 500_000 < avg_ratio < 2_000_000:
            implied_multiplier = Decimal(1_000_000)
            consistent = False
            discrepancies.append(f"Detected summary is in MILLIONS (avg ratio: {avg_ratio:.2f})")
        elif abs(avg_ratio - 1) > Decimal("0.1"):
            implied_multiplier = None
            consistent = False
            discrepancies.append(f"Reconciliation failed: unexpected ratio {avg_ratio:.2f}")

        if not consistent:
            logger.warning(
                "Unit scale reconciliation discrepancy",
                pairs=len(ratios),
                implied_multiplier=str(implied_multiplier) if implied_multiplier else None,
            )

        return UnitScaleReconciliation(
            consistent=consistent,
            implied_multiplier=implied_multiplier,
            pairs_compared=len(ratios),
            discrepancies=tuple(discrepancies),
        )
