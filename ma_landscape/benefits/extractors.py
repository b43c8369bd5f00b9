"""
Benefit field extractors.

Summary of Benefits PDFs have no reliable layout, so every field is found
by proximity: locate the first line matching a keyword pattern, then read
values from a window of lines around it. Each extractor takes normalized
text and returns a nullable value; a missing pattern yields None, never an
exception.
"""

import re
from typing import Any, Dict, List, NamedTuple, Optional, Pattern

# Money like "$45", "$1,250.00", "$ 30"
MONEY_PATTERN = re.compile(r"\$\s?(\d{1,3}(?:,\d{3})+|\d+)(?:\.(\d{2}))?")

# Checked in order; the first match wins
PERIOD_PATTERNS = [
    ("month", re.compile(r"per month|monthly|each month", re.IGNORECASE)),
    ("quarter", re.compile(r"per quarter|quarterly|every 3 months", re.IGNORECASE)),
    ("year", re.compile(r"per year|annually|each year", re.IGNORECASE)),
    ("week", re.compile(r"per week|weekly", re.IGNORECASE)),
]

NEGATIVE_COVERAGE = re.compile(r"not covered|no coverage")
POSITIVE_COVERAGE = re.compile(r"no charge|\$0(?![\d,.]*[1-9])|zero|covered")

PROGRAM_NAME_PATTERN = re.compile(
    r"SilverSneakers|Renew Active|Silver ?& ?Fit|One Pass|Active ?& ?Fit", re.IGNORECASE
)


class NormalizedText(NamedTuple):
    """Non-blank lines with collapsed whitespace, plus their lowercase twins"""
    lines: List[str]
    lower: List[str]


class LineValue(NamedTuple):
    text: str
    amount: Optional[float]


def normalize(text: str) -> NormalizedText:
    text = text.replace("\r", "")
    lines = [" ".join(line.split()) for line in text.split("\n")]
    lines = [line for line in lines if line]
    return NormalizedText(lines=lines, lower=[line.lower() for line in lines])


def find_nearby(n: NormalizedText, pattern: Pattern, radius: int = 4) -> Optional[str]:
    """Join `radius` lines either side of the first line matching `pattern`"""
    for i, line in enumerate(n.lower):
        if pattern.search(line):
            start = max(0, i - radius)
            return " ".join(n.lines[start:i + radius + 1])
    return None


def find_line_value(n: NormalizedText, pattern: Pattern) -> Optional[LineValue]:
    """The first matching line itself, with its dollar amount if any"""
    for i, line in enumerate(n.lower):
        if pattern.search(line):
            text = n.lines[i]
            return LineValue(text=text, amount=money_from(text))
    return None


def money_from(text: Optional[str]) -> Optional[float]:
    """
    First dollar amount in `text`.

    Examples:
        >>> money_from("Copay: $45.00 per visit")
        45.0
        >>> money_from("up to $1,250 per year")
        1250.0
    """
    match = MONEY_PATTERN.search(text or "")
    if not match:
        return None
    amount = float(match.group(1).replace(",", ""))
    if match.group(2):
        amount += int(match.group(2)) / 100
    return amount


def period_from(text: Optional[str]) -> Optional[str]:
    for period, pattern in PERIOD_PATTERNS:
        if pattern.search(text or ""):
            return period
    return None


def has_covered_word(snippet: Optional[str]) -> Optional[bool]:
    """
    Tri-state coverage: True for "no charge"/"$0"/"zero"/"covered", False
    for "not covered"/"no coverage", None when undetermined.
    """
    if not snippet:
        return None
    s = snippet.lower()
    # "not covered" must not count as "covered"
    if POSITIVE_COVERAGE.search(NEGATIVE_COVERAGE.sub(" ", s)):
        return True
    if NEGATIVE_COVERAGE.search(s):
        return False
    return None


# =============================================================================
# Helpers used by the category extractors
# =============================================================================

def extract_money_with_period(n: NormalizedText, pattern: Pattern) -> Optional[Dict[str, Any]]:
    hit = find_nearby(n, pattern, 6)
    if hit is None:
        return None
    return {"amount": money_from(hit), "period": period_from(hit), "text": hit}


def extract_meals(n: NormalizedText, pattern: Pattern) -> Optional[Dict[str, Any]]:
    hit = find_nearby(n, pattern, 5)
    if hit is None:
        return None
    count = re.search(r"(\d{1,3})\s*meals?", hit, re.IGNORECASE)
    if re.search(r"per month|monthly", hit, re.IGNORECASE):
        period = "month"
    elif re.search(r"per (episode|discharge|stay|hospitalization)", hit, re.IGNORECASE):
        period = "episode"
    else:
        period = None
    return {"meals": int(count.group(1)) if count else None, "period": period, "text": hit}


def find_program(n: NormalizedText, pattern: Pattern) -> Optional[Dict[str, Any]]:
    hit = find_nearby(n, pattern, 3)
    if hit is None:
        return None
    name = PROGRAM_NAME_PATTERN.search(hit)
    return {"program": name.group(0) if name else None, "text": hit}


def extract_trips(n: NormalizedText, pattern: Pattern) -> Optional[Dict[str, Any]]:
    hit = find_nearby(n, pattern, 4)
    if hit is None:
        return None
    trips = re.search(r"(\d{1,3})\s*(?:one[- ]way )?(?:trips|rides)", hit, re.IGNORECASE)
    return {
        "trips": int(trips.group(1)) if trips else None,
        "period": period_from(hit) or "year",
        "text": hit,
    }


# =============================================================================
# Category extractors
# =============================================================================

PCP_PATTERN = re.compile(r"primary care|pcp")
SPECIALIST_PATTERN = re.compile(r"specialist")
TELEHEALTH_PATTERN = re.compile(r"telehealth|virtual visit|virtual care")

MNT_PATTERN = re.compile(r"(medical )?nutrition therapy|[^a-z]mnt[^a-z]", re.IGNORECASE)
OBESITY_PATTERN = re.compile(r"obesity (counseling|therapy)|ibt|intensive behavioral", re.IGNORECASE)
DIETITIAN_PATTERN = re.compile(r"dietitian|registered dietitian|rdn", re.IGNORECASE)
VISIT_LIMITS_PATTERN = re.compile(r"visit limit|visits per year|maximum visits|limits", re.IGNORECASE)

OTC_PATTERN = re.compile(r"over[- ]?the[- ]?counter|[^a-z]otc[^a-z]|otc allowance|otc benefit", re.IGNORECASE)
FOOD_PATTERN = re.compile(r"healthy (foods?|food) (card|allowance)|grocery|food benefit", re.IGNORECASE)
POST_DISCHARGE_PATTERN = re.compile(r"post[- ]?discharge|transitional|after hospital", re.IGNORECASE)
CHRONIC_MEALS_PATTERN = re.compile(r"chronic|condition|recurring", re.IGNORECASE)
FITNESS_PATTERN = re.compile(
    r"silversneakers|renew active|silver ?& ?fit|one pass|active ?& ?fit|gym", re.IGNORECASE
)
TRANSPORT_PATTERN = re.compile(r"transportation|rides", re.IGNORECASE)


def extract_medical(n: NormalizedText) -> Dict[str, Any]:
    pcp = find_line_value(n, PCP_PATTERN)
    specialist = find_line_value(n, SPECIALIST_PATTERN)
    telehealth = any(TELEHEALTH_PATTERN.search(line) for line in n.lower)
    referral = (
        any("referral required" in line for line in n.lower)
        and not any("no referral" in line for line in n.lower)
    )
    return {
        "primaryCareCopayText": pcp.text if pcp else None,
        "primaryCareCopay": pcp.amount if pcp else None,
        "specialistCopayText": specialist.text if specialist else None,
        "specialistCopay": specialist.amount if specialist else None,
        "telehealthPrimary": True if telehealth else None,
        "referralRequired": referral,
    }


def extract_nutrition(n: NormalizedText) -> Dict[str, Any]:
    mnt = find_nearby(n, MNT_PATTERN)
    obesity = find_nearby(n, OBESITY_PATTERN)
    return {
        "mntCovered": has_covered_word(mnt),
        "mntText": mnt,
        "obesityCounselingCovered": has_covered_word(obesity),
        "obesityCounselingText": obesity,
        "dietitianCopayText": find_nearby(n, DIETITIAN_PATTERN),
        "visitLimitsText": find_nearby(n, VISIT_LIMITS_PATTERN),
    }


def extract_supplemental(n: NormalizedText) -> Dict[str, Any]:
    return {
        "otcAllowance": extract_money_with_period(n, OTC_PATTERN),
        "healthyFoodCard": extract_money_with_period(n, FOOD_PATTERN),
        "postDischargeMeals": extract_meals(n, POST_DISCHARGE_PATTERN),
        "chronicMeals": extract_meals(n, CHRONIC_MEALS_PATTERN),
        "fitness": find_program(n, FITNESS_PATTERN),
        "transportation": extract_trips(n, TRANSPORT_PATTERN),
    }
