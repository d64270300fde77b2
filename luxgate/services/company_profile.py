"""
Company profile classifier.

Derives registration metadata and the classifications later stages depend on:
- Size (small / medium / large) via the 2-of-3 threshold test
- Account type (full / abridged / abbreviated)
- Reporting standard (Lux GAAP / IFRS)
- Consolidation status, with the phrase that decided it
- Holding-company likelihood (SOPARFI heuristic)

Every keyword classification returns its evidence string so the gate can
cite provenance.
"""
import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import List, Optional, Pattern, Tuple

import structlog

from luxgate.config import Settings, get_settings
from luxgate.models import (
    AccountType,
    AccountTypeDetection,
    CompanyProfile,
    CompanySize,
    ConsolidationDetection,
    ConsolidationStatus,
    HoldingIndicators,
    ReportingStandard,
    ReportingStandardDetection,
    SizeClassification,
    SizeSource,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ProfileOverrides:
    """Authoritative caller-supplied fields; they win over text extraction."""
    legal_name: Optional[str] = None
    registration_number: Optional[str] = None
    financial_year_end: Optional[date] = None
    # Resolves an ambiguous consolidation reading (standalone or consolidated)
    consolidation_resolution: Optional[ConsolidationStatus] = None


# Checked in order; the first hit wins
LEGAL_FORM_PATTERNS: List[Tuple[str, Pattern]] = [
    ("SARL-S", re.compile(r"\bS\.?\s?[aà]\.?\s?r\.?\s?l\.?\s?-\s?S\b|soci[ée]t[ée]\s+[àa]\s+responsabilit[ée]\s+limit[ée]e\s+simplifi[ée]e", re.IGNORECASE)),
    ("SARL", re.compile(r"\bS\.?\s?[aà]\.?\s?r\.?\s?l\b\.?|soci[ée]t[ée]\s+[àa]\s+responsabilit[ée]\s+limit[ée]e", re.IGNORECASE)),
    ("SCSp", re.compile(r"\bS\.?C\.?S\.?p\b|soci[ée]t[ée]\s+en\s+commandite\s+sp[ée]ciale", re.IGNORECASE)),
    ("SCA", re.compile(r"\bS\.?C\.?A\b|soci[ée]t[ée]\s+en\s+commandite\s+par\s+actions", re.IGNORECASE)),
    ("SCS", re.compile(r"\bS\.?C\.?S\b|soci[ée]t[ée]\s+en\s+commandite\s+simple", re.IGNORECASE)),
    ("SCoop", re.compile(r"\bS\.?\s?Coop\b|soci[ée]t[ée]\s+coop[ée]rative", re.IGNORECASE)),
    # Upper case only: "se" is a French pronoun
    ("SE", re.compile(r"\bS\.E\.|\bSE\b|societas\s+europaea")),
    ("SA", re.compile(r"\bS\.A\.|\bSA\b|[Ss]oci[ée]t[ée]\s+anonyme")),
]

NAME_LABEL_PATTERN = re.compile(
    r"(?:d[ée]nomination|soci[ée]t[ée]|company(?:\s+name)?|gesellschaft|firma)\s*:\s*([^\n]+)",
    re.IGNORECASE,
)
NAME_SUFFIX_PATTERN = re.compile(
    r"^[A-Z0-9][^\n]{1,100}?\s(?:S\.?\s?[àa]\.?\s?r\.?\s?l\.?(?:\s?-\s?S)?|S\.A\.|SA|SE|SCSp|SCS|SCA|GmbH|AG)\.?$"
)
NAME_SCAN_LINES = 15

RCS_PATTERNS = [
    re.compile(r"R\.?\s?C\.?\s?S\.?\s*(?:Luxembourg)?\s*[:,]?\s*(?:n[°o]\.?\s*)?(B\s?\d{5,6})\b", re.IGNORECASE),
    re.compile(r"(?:enregistr[ée]e?|registered|eingetragen)[^\n]{0,80}?\b(B\s?\d{5,6})\b", re.IGNORECASE),
    re.compile(r"\b(B\s?\d{5,6})\b"),
]

OFFICE_PATTERNS = [
    re.compile(r"(?:si[èe]ge\s+social|registered\s+office|gesellschaftssitz|sitz)\s*[:,]?\s+([^\n]+)", re.IGNORECASE),
    re.compile(r"(?:adresse|address)\s*:\s*([^\n]*Luxembourg[^\n]*)", re.IGNORECASE),
]

DATE_TOKEN = r"\d{1,2}[./-]\d{1,2}[./-]\d{4}|\d{1,2}\.?\s+[^\W\d_]+\s+\d{4}|\d{4}-\d{2}-\d{2}"
YEAR_END_PATTERNS = [
    re.compile(
        rf"(?:exercice|financial\s+year|year|gesch[äa]ftsjahr)\s+(?:social\s+)?(?:clos|ended|ending|zum|endend\s+am)\s+"
        rf"(?:le\s+|on\s+|am\s+)?(?P<date>{DATE_TOKEN})",
        re.IGNORECASE,
    ),
    re.compile(rf"(?:\bau|as\s+at|as\s+of|\bzum|\bper)\s+(?P<date>{DATE_TOKEN})", re.IGNORECASE),
    re.compile(r"(?P<date>\d{4}-\d{2}-\d{2})"),
]

MONTHS = {
    "january": 1, "janvier": 1, "januar": 1,
    "february": 2, "fevrier": 2, "février": 2, "februar": 2,
    "march": 3, "mars": 3, "märz": 3, "marz": 3,
    "april": 4, "avril": 4,
    "may": 5, "mai": 5,
    "june": 6, "juin": 6, "juni": 6,
    "july": 7, "juillet": 7, "juli": 7,
    "august": 8, "aout": 8, "août": 8,
    "september": 9, "septembre": 9,
    "october": 10, "octobre": 10, "oktober": 10,
    "november": 11, "novembre": 11,
    "december": 12, "decembre": 12, "décembre": 12, "dezember": 12,
}

EMPLOYEE_PATTERNS = [
    re.compile(r"average\s+(?:number\s+of\s+)?(?:staff|employees|personnel|headcount)[^\d\n]{0,40}?(\d{1,6})\b", re.IGNORECASE),
    re.compile(r"(?:effectif\s+moyen|nombre\s+moyen\s+de\s+(?:salari[ée]s|personnes))[^\d\n]{0,40}?(\d{1,6})\b", re.IGNORECASE),
    re.compile(r"(?:durchschnittliche\s+)?(?:zahl\s+der\s+)?(?:mitarbeiter|besch[äa]ftigte\w*)[^\d\n]{0,40}?(\d{1,6})\b", re.IGNORECASE),
    re.compile(r"(?:number\s+of\s+)?employees\s*:\s*(\d{1,6})\b", re.IGNORECASE),
    re.compile(r"\b(\d{1,6})\s+(?:employees|salari[ée]s|mitarbeiter)\b", re.IGNORECASE),
]
MAX_EMPLOYEES = 100_000

ACCOUNT_TYPE_KEYWORDS = {
    AccountType.ABRIDGED: ["comptes annuels abrégés", "bilan abrégé", "abridged", "verkürzte bilanz", "verkürzter jahresabschluss"],
    AccountType.ABBREVIATED: ["abbreviated", "kurzfassung", "version abrégée"],
}

IFRS_PATTERN = re.compile(r"\bifrs\b|international\s+financial\s+reporting\s+standards|\bias\s+\d+\b")
LUX_GAAP_PATTERN = re.compile(r"lux(?:embourg)?\s+gaap|plan\s+comptable\s+normalis[ée]|\bpcn\b|\becdf\b")

# Inclusion in a parent's accounts, or a statement that none are prepared, marks a standalone filing
CONSOLIDATION_EXEMPTION_PATTERNS = [
    re.compile(r"included\s+in\s+the\s+consolidated\s+(?:accounts|financial\s+statements)\s+of"),
    re.compile(r"exempt(?:ed|ion)?\s+from\s+(?:the\s+obligation\s+to\s+)?(?:prepare|preparing|draw(?:ing)?\s+up|publish(?:ing)?)\s+consolidated"),
    re.compile(r"inclu(?:se|s)?e?s?\s+dans\s+les\s+comptes\s+(?:annuels\s+)?consolid[ée]s\s+d"),
    re.compile(r"dispens[ée]e?\s+d['’]\s*[ée]tablir\s+des\s+comptes\s+consolid[ée]s"),
    re.compile(r"in\s+den\s+konzernabschluss\s+[^\n]{0,80}?einbezogen"),
    re.compile(r"befreit[^\n]{0,60}?konzernabschluss"),
    re.compile(r"(?:does|do|did)\s+not\s+(?:prepare|draw\s+up|publish)\s+consolidated"),
    re.compile(r"not\s+(?:required|obliged)\s+to\s+(?:prepare|draw\s+up)\s+consolidated"),
    re.compile(r"no\s+consolidated\s+(?:accounts|financial\s+statements)\s+(?:are|is|have\s+been|were)\s+(?:prepared|drawn\s+up)"),
    re.compile(r"n['’]\s*(?:[ée]tablit|pr[ée]pare|publie)\s+pas\s+de\s+comptes\s+(?:annuels\s+)?consolid"),
    re.compile(r"(?:pas|non)\s+(?:tenue?|soumise?|oblig[ée]e?)\s+(?:d['’]\s*|[àa]\s+)[ée]tablir\s+des\s+comptes\s+consolid"),
    re.compile(r"kein(?:en)?\s+konzernabschluss"),
    re.compile(r"nicht\s+(?:verpflichtet|erforderlich)[^\n]{0,60}?konzernabschluss"),
]
CONSOLIDATED_PATTERNS = [
    re.compile(r"comptes\s+(?:annuels\s+)?consolid[ée]s"),
    re.compile(r"consolidated\s+(?:annual\s+)?(?:accounts|financial\s+statements)"),
    re.compile(r"[ée]tats\s+financiers\s+consolid[ée]s"),
    re.compile(r"konzernabschluss"),
    re.compile(r"group\s+accounts"),
]
# Titles of consolidated primary statements
CONSOLIDATED_STATEMENT_PATTERNS = [
    re.compile(r"consolidated\s+(?:balance\s+sheet|profit\s+and\s+loss\s+account|income\s+statement|"
               r"statement\s+of\s+(?:financial\s+position|comprehensive\s+income)|cash\s+flow\s+statement)"),
    re.compile(r"bilan\s+consolid[ée]|compte\s+de\s+(?:profits\s+et\s+pertes|r[ée]sultat)\s+consolid[ée]"),
    re.compile(r"konzernbilanz|konzern-?\s*gewinn-?\s*und\s+verlustrechnung"),
]
STANDALONE_PATTERNS = [
    re.compile(r"comptes\s+annuels(?!\s+consolid)"),
    re.compile(r"(?<!consolidated\s)annual\s+accounts"),
    re.compile(r"statutory\s+accounts"),
    re.compile(r"stand-?\s?alone\s+(?:accounts|financial\s+statements)"),
    re.compile(r"einzelabschluss"),
    re.compile(r"(?<!konzern)jahresabschluss"),
]

HOLDING_KEYWORDS = [
    "holding", "participations", "investments", "investment company",
    "société de participations financières", "soparfi", "beteiligungsgesellschaft",
    "financial holding", "acquisition", "detention", "gestion de participations",
]
HOLDING_ASSET_TURNOVER_RATIO = Decimal(10)
HOLDING_LOW_HEADCOUNT = 5
HOLDING_LARGE_ASSETS = Decimal("10000000")


def parse_statement_date(text: str) -> Optional[date]:
    """Parse 31.12.2024, 31/12/2024, 2024-12-31 or 31 décembre 2024."""
    text = text.strip()
    try:
        iso = re.fullmatch(r"(\d{4})-(\d{2})-(\d{2})", text)
        if iso:
            return date(int(iso.group(1)), int(iso.group(2)), int(iso.group(3)))

        numeric = re.fullmatch(r"(\d{1,2})[./-](\d{1,2})[./-](\d{4})", text)
        if numeric:
            return date(int(numeric.group(3)), int(numeric.group(2)), int(numeric.group(1)))

        textual = re.fullmatch(r"(\d{1,2})\.?\s+([^\W\d_]+)\s+(\d{4})", text)
        if textual:
            month = MONTHS.get(textual.group(2).lower())
            if month:
                return date(int(textual.group(3)), month, int(textual.group(1)))
    except ValueError:
        return None
    return None


def _first_group(patterns: List[Pattern], text: str) -> Optional[str]:
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            return match.group(1).strip()
    return None


class CompanyProfileClassifier:
    """
    Builds a CompanyProfile from document text and resolved-unit totals.

    Amounts passed in must already carry the unit scale.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def classify(
        self,
        text: str,
        balance_sheet_total: Optional[Decimal] = None,
        net_turnover: Optional[Decimal] = None,
        average_employees: Optional[int] = None,
        overrides: Optional[ProfileOverrides] = None,
    ) -> CompanyProfile:
        """
        Classify the company behind a filing.

        Args:
            text: Full document text.
            balance_sheet_total: Total assets (code 109), resolved units.
            net_turnover: Net turnover (code 7010), resolved units.
            average_employees: Headcount if known; otherwise read from text.
            overrides: Caller-supplied authoritative fields.

        Returns:
            CompanyProfile with evidence for every keyword decision.
        """
        text = text or ""
        overrides = overrides or ProfileOverrides()

        employees = average_employees if average_employees is not None else self.extract_employee_count(text)

        profile = CompanyProfile(
            legal_name=overrides.legal_name or self.extract_legal_name(text),
            legal_form=self.extract_legal_form(text),
            registration_number=overrides.registration_number or self.extract_registration_number(text),
            registered_office=self.extract_registered_office(text),
            financial_year_end=overrides.financial_year_end or self.extract_financial_year_end(text),
            average_employees=employees,
            size=self.classify_size(balance_sheet_total, net_turnover, employees),
            account_type=self.detect_account_type(text),
            reporting_standard=self.detect_reporting_standard(text),
            consolidation=self.detect_consolidation(text, overrides.consolidation_resolution),
            holding=self.detect_holding_indicators(text, balance_sheet_total, net_turnover, employees),
        )

        logger.info(
            "Company profile classified",
            size=profile.size.size.value,
            account_type=profile.account_type.account_type.value,
            consolidation=profile.consolidation.status.value,
            likely_holding=profile.holding.likely_holding,
        )
        return profile

    # =========================================================================
    # Registration metadata
    # =========================================================================

    def extract_legal_name(self, text: str) -> Optional[str]:
        labelled = NAME_LABEL_PATTERN.search(text)
        if labelled:
            return labelled.group(1).strip()
        for line in text.splitlines()[:NAME_SCAN_LINES]:
            line = line.strip()
            if NAME_SUFFIX_PATTERN.match(line):
                return line
        return None

    def extract_legal_form(self, text: str) -> Optional[str]:
        for form, pattern in LEGAL_FORM_PATTERNS:
            if pattern.search(text):
                return form
        return None

    def extract_registration_number(self, text: str) -> Optional[str]:
        """RCS Luxembourg number, normalized to ``B123456``."""
        number = _first_group(RCS_PATTERNS, text)
        return re.sub(r"\s", "", number) if number else None

    def extract_registered_office(self, text: str) -> Optional[str]:
        office = _first_group(OFFICE_PATTERNS, text)
        return office.rstrip(" .,;") if office else None

    def extract_financial_year_end(self, text: str) -> Optional[date]:
        for pattern in YEAR_END_PATTERNS:
            for match in pattern.finditer(text):
                parsed = parse_statement_date(match.group("date"))
                if parsed:
                    return parsed
        return None

    def extract_employee_count(self, text: str) -> Optional[int]:
        for pattern in EMPLOYEE_PATTERNS:
            match = pattern.search(text)
            if match:
                count = int(match.group(1))
                if count < MAX_EMPLOYEES:
                    return count
        return None

    # =========================================================================
    # Classifications
    # =========================================================================

    def classify_size(
        self,
        balance_sheet_total: Optional[Decimal],
        net_turnover: Optional[Decimal],
        average_employees: Optional[int],
    ) -> SizeClassification:
        """
        Apply the 2-of-3 test to both threshold tiers.

        A tier is exceeded when at least ``size_criteria_required`` of the
        three metrics are strictly above its cutoffs. Missing metrics never
        count as exceeded.
        """
        if balance_sheet_total is None and net_turnover is None and average_employees is None:
            return SizeClassification(
                size=CompanySize.SMALL,
                source=SizeSource.DEFAULT,
                exceeds_small=False,
                exceeds_medium=False,
                evidence=("No size metrics available; defaulting to small",),
            )

        values = (balance_sheet_total, net_turnover, average_employees)
        labels = ("balance sheet total", "net turnover", "average employees")
        required = self.settings.size_criteria_required
        evidence: List[str] = []

        def exceeded(tier: str, cutoffs: tuple) -> bool:
            hits = 0
            for label, value, cutoff in zip(labels, values, cutoffs):
                if value is not None and value > cutoff:
                    hits += 1
                    evidence.append(f"{label} {value} exceeds {tier} cutoff {cutoff}")
            return hits >= required

        exceeds_small = exceeded("small", self.settings.small_thresholds)
        exceeds_medium = exceeded("medium", self.settings.medium_thresholds)

        if exceeds_medium:
            size = CompanySize.LARGE
        elif exceeds_small:
            size = CompanySize.MEDIUM
        else:
            size = CompanySize.SMALL

        return SizeClassification(
            size=size,
            source=SizeSource.THRESHOLDS,
            exceeds_small=exceeds_small,
            exceeds_medium=exceeds_medium,
            balance_sheet_total=balance_sheet_total,
            net_turnover=net_turnover,
            average_employees=average_employees,
            evidence=tuple(evidence),
        )

    def detect_account_type(self, text: str) -> AccountTypeDetection:
        lowered = text.lower()
        for account_type, keywords in ACCOUNT_TYPE_KEYWORDS.items():
            for keyword in keywords:
                if keyword in lowered:
                    return AccountTypeDetection(account_type, evidence=keyword)
        return AccountTypeDetection(AccountType.FULL)

    def detect_reporting_standard(self, text: str) -> ReportingStandardDetection:
        lowered = text.lower()
        match = IFRS_PATTERN.search(lowered)
        if match:
            return ReportingStandardDetection(ReportingStandard.IFRS, evidence=match.group(0))
        match = LUX_GAAP_PATTERN.search(lowered)
        if match:
            return ReportingStandardDetection(ReportingStandard.LUX_GAAP, evidence=match.group(0))
        # Luxembourg filings default to Lux GAAP
        return ReportingStandardDetection(ReportingStandard.LUX_GAAP)

    def detect_consolidation(
        self,
        text: str,
        resolution: Optional[ConsolidationStatus] = None,
    ) -> ConsolidationDetection:
        """
        Standalone, consolidated or ambiguous, with the phrases that decided it.

        An exemption or non-preparation phrase marks a standalone filing. Only
        consolidated statement titles next to standalone wording are
        ambiguous; a passing mention of consolidated accounts in a standalone
        filing is kept as evidence. A caller resolution replaces the status.
        """
        lowered = text.lower()

        def hits(patterns: List[Pattern]) -> List[str]:
            return [m.group(0) for p in patterns for m in [p.search(lowered)] if m]

        exemptions = hits(CONSOLIDATION_EXEMPTION_PATTERNS)
        statements = hits(CONSOLIDATED_STATEMENT_PATTERNS)
        consolidated = hits(CONSOLIDATED_PATTERNS)
        standalone = hits(STANDALONE_PATTERNS)

        if exemptions:
            status = ConsolidationStatus.STANDALONE
            evidence = [f'Exemption: "{e}"' for e in exemptions]
        elif statements and standalone:
            status = ConsolidationStatus.AMBIGUOUS
            evidence = [f'Consolidated: "{c}"' for c in statements] + [f'Standalone: "{s}"' for s in standalone]
        elif statements or (consolidated and not standalone):
            status = ConsolidationStatus.CONSOLIDATED
            evidence = [f'Consolidated: "{c}"' for c in statements + consolidated]
        elif standalone:
            status = ConsolidationStatus.STANDALONE
            evidence = [f'Standalone: "{s}"' for s in standalone]
            evidence += [f'Consolidated mention only: "{c}"' for c in consolidated]
        else:
            status = ConsolidationStatus.STANDALONE
            evidence = ["No consolidation wording found; assuming standalone"]

        if resolution is not None and resolution != ConsolidationStatus.AMBIGUOUS:
            evidence.append(f"Resolved by caller as {resolution.value}")
            return ConsolidationDetection(status=resolution, evidence=tuple(evidence), resolved_by_caller=True)

        return ConsolidationDetection(status=status, evidence=tuple(evidence))

    def detect_holding_indicators(
        self,
        text: str,
        balance_sheet_total: Optional[Decimal],
        net_turnover: Optional[Decimal],
        average_employees: Optional[int],
    ) -> HoldingIndicators:
        """Weighted SOPARFI score, capped at 1.0."""
        lowered = text.lower()
        indicators: List[str] = []
        score = 0.0

        for keyword in HOLDING_KEYWORDS:
            if re.search(rf"(?<!\w){re.escape(keyword)}(?!\w)", lowered):
                indicators.append(f'Found keyword: "{keyword}"')
                score += 0.15

        if balance_sheet_total and net_turnover and net_turnover > 0:
            ratio = balance_sheet_total / net_turnover
            if ratio > HOLDING_ASSET_TURNOVER_RATIO:
                indicators.append(f"High balance sheet to turnover ratio: {ratio:.1f}x")
                score += 0.2

        if (
            average_employees is not None
            and average_employees < HOLDING_LOW_HEADCOUNT
            and balance_sheet_total
            and balance_sheet_total > HOLDING_LARGE_ASSETS
        ):
            indicators.append(
                f"Low headcount ({average_employees}) with large assets "
                f"({balance_sheet_total / 1_000_000:.1f}M)"
            )
            score += 0.25

        if net_turnover is not None and net_turnover == 0:
            indicators.append("Zero net turnover (pure holding)")
            score += 0.3

        confidence = round(min(score, 1.0), 4)
        return HoldingIndicators(
            likely_holding=confidence >= self.settings.holding_likelihood_threshold,
            confidence=confidence,
            indicators=tuple(indicators),
        )
