from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Callable, Dict, List, Optional

from rapidfuzz.distance import Levenshtein

from .config import MatcherThresholds
from .schemas import (
    ExpectedLabelData,
    ExtractedLabelData,
    FieldVerdict,
    VerificationDetails,
    VerificationReport,
    WarningVerdict,
)

logger = logging.getLogger(__name__)

_WHITESPACE_PATTERN = re.compile(r"\s+")
_NORMALIZE_PATTERN = re.compile(r"[^\w\s%.-]")
_NUMBER_PATTERN = re.compile(r"\d+(?:\.\d+)?")
_UNIT_PATTERNS = [
    (re.compile(r"(?<![a-z])(?:ml|milliliters?)(?![a-z])"), "ml"),
    (re.compile(r"(?<![a-z])(?:l|liters?)(?![a-z])"), "l"),
    (re.compile(r"(?<![a-z])(?:oz|fl\s*oz|fluid\s*ounces?)(?![a-z])"), "oz"),
    (re.compile(r"(?<![a-z])(?:gal|gallons?)(?![a-z])"), "gal"),
]

FOUND_IN_LABEL_TEXT = "Found in label text"

# 27 CFR 16.21
OFFICIAL_WARNING_TEXT = (
    "GOVERNMENT WARNING: (1) According to the Surgeon General, women should not "
    "drink alcoholic beverages during pregnancy because of the risk of birth "
    "defects. (2) Consumption of alcoholic beverages impairs your ability to drive "
    "a car or operate machinery, and may cause health problems."
)
WARNING_HEADLINE = "GOVERNMENT WARNING"
REQUIRED_WARNING_PHRASES = (
    WARNING_HEADLINE,
    "Surgeon General",
    "pregnant",
    "birth defects",
    "drive",
    "health problems",
)
# The regulation itself says "pregnancy", so only the stem is searched for.
_PHRASE_SEARCH_TERMS = {"pregnant": "pregnan"}

WARNING_STATUS_EXACT = "Exact TTB-compliant warning text detected"
WARNING_STATUS_COMPLETE = "All required warning phrases present"
WARNING_STATUS_INCOMPLETE = "Government warning present but incomplete"
WARNING_STATUS_MISSING = "Government warning missing"

_DEFAULT_THRESHOLDS = MatcherThresholds()


class FieldKind(str, Enum):
    brand_name = "brandName"
    product_type = "productType"
    alcohol_content = "alcoholContent"
    net_contents = "netContents"
    government_warning = "governmentWarning"


def normalize(text: str) -> str:
    stripped = _NORMALIZE_PATTERN.sub("", text.lower())
    return _WHITESPACE_PATTERN.sub(" ", stripped).strip()


def _compact(text: str) -> str:
    return text.replace(" ", "")


def extract_number(text: str) -> Optional[float]:
    match = _NUMBER_PATTERN.search(text)
    if not match:
        return None
    return float(match.group(0))


def extract_unit(text: str) -> Optional[str]:
    normalized = normalize(text)
    for pattern, unit in _UNIT_PATTERNS:
        if pattern.search(normalized):
            return unit
    return None


def similarity(a: str, b: str) -> float:
    """Edit-distance similarity as a percentage; two empty strings are identical."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 100.0
    distance = Levenshtein.distance(a, b)
    return max(0.0, (1 - distance / longest) * 100)


def _difference(a: float, b: float) -> float:
    # 45.1 - 45 is 0.10000000000000142 in binary floating point
    return round(abs(a - b), 6)


def _round_score(value: float) -> int:
    # Half-up; scores are never negative
    return int(value + 0.5)


def _format_percent(value: float) -> str:
    return f"{value:g}%"


def check_brand(
    expected: ExpectedLabelData, extracted: ExtractedLabelData, thresholds: MatcherThresholds
) -> FieldVerdict:
    target = normalize(expected.brand_name)
    full_text = normalize(extracted.full_text)
    ocr_brand = normalize(extracted.brand_name) if extracted.brand_name is not None else None

    in_brand = ocr_brand is not None and target in ocr_brand
    in_full_text = target in full_text
    if in_brand or in_full_text:
        confidence = 100
    elif ocr_brand is not None:
        confidence = _round_score(similarity(target, ocr_brand))
    else:
        confidence = 0
    match = confidence >= thresholds.text_match_threshold

    found = extracted.brand_name
    if found is None and in_full_text:
        found = FOUND_IN_LABEL_TEXT
    return FieldVerdict(match=match, expected=expected.brand_name, found=found, confidence=confidence)


def check_product_type(
    expected: ExpectedLabelData, extracted: ExtractedLabelData, thresholds: MatcherThresholds
) -> FieldVerdict:
    target = normalize(expected.product_type)
    full_text = normalize(extracted.full_text)
    ocr_type = normalize(extracted.product_type) if extracted.product_type is not None else None

    in_full_text = target in full_text
    contained = bool(ocr_type) and (target in ocr_type or ocr_type in target)
    if ocr_type is not None and target == ocr_type:
        confidence = 100
    elif contained or in_full_text:
        confidence = thresholds.containment_confidence
    elif ocr_type is not None:
        confidence = _round_score(similarity(target, ocr_type))
    else:
        confidence = 0
    match = confidence >= thresholds.text_match_threshold

    found = extracted.product_type
    if found is None and in_full_text:
        found = FOUND_IN_LABEL_TEXT
    return FieldVerdict(match=match, expected=expected.product_type, found=found, confidence=confidence)


def check_alcohol_content(
    expected: ExpectedLabelData, extracted: ExtractedLabelData, thresholds: MatcherThresholds
) -> FieldVerdict:
    expected_value = extract_number(expected.alcohol_content)
    if expected_value is None:
        return FieldVerdict(match=False, expected=expected.alcohol_content, found=None, confidence=0)
    display_expected = _format_percent(expected_value)

    if extracted.alcohol_content is None:
        return FieldVerdict(match=False, expected=display_expected, found=None, confidence=0)

    found_value = extract_number(extracted.alcohol_content)
    if found_value is None:
        return FieldVerdict(
            match=False, expected=display_expected, found=extracted.alcohol_content, confidence=0
        )

    difference = _difference(expected_value, found_value)
    # Match follows the tolerance band; confidence is reported independently of it.
    match = difference <= thresholds.abv_tolerance
    if difference == 0:
        confidence = 100
    else:
        confidence = _round_score(max(0.0, 100 - difference * thresholds.abv_confidence_penalty))
    return FieldVerdict(
        match=match,
        expected=display_expected,
        found=_format_percent(found_value),
        confidence=confidence,
    )


def check_net_contents(
    expected: ExpectedLabelData, extracted: ExtractedLabelData, thresholds: MatcherThresholds
) -> FieldVerdict:
    expected_value = extract_number(expected.net_contents)
    expected_unit = extract_unit(expected.net_contents)
    if expected_value is None or expected_unit is None:
        return FieldVerdict(match=False, expected=expected.net_contents, found=None, confidence=0)

    if extracted.net_contents is None:
        return FieldVerdict(match=False, expected=expected.net_contents, found=None, confidence=0)

    found_value = extract_number(extracted.net_contents)
    found_unit = extract_unit(extracted.net_contents)
    if found_value is None or found_unit is None:
        return FieldVerdict(
            match=False, expected=expected.net_contents, found=extracted.net_contents, confidence=0
        )

    difference = _difference(expected_value, found_value)
    units_match = expected_unit == found_unit
    numbers_match = difference < thresholds.net_contents_tolerance
    if not units_match:
        confidence = 0
    elif difference == 0:
        confidence = 100
    elif expected_value == 0:
        confidence = 0
    else:
        deviation = difference / expected_value * 100
        confidence = _round_score(max(0.0, 100 - deviation * thresholds.net_contents_penalty_factor))
    return FieldVerdict(
        match=units_match and numbers_match,
        expected=expected.net_contents,
        found=extracted.net_contents,
        confidence=confidence,
    )


def check_gov_warning(extracted: ExtractedLabelData) -> WarningVerdict:
    full_text = normalize(extracted.full_text)
    missing = [
        phrase
        for phrase in REQUIRED_WARNING_PHRASES
        if normalize(_PHRASE_SEARCH_TERMS.get(phrase, phrase)) not in full_text
    ]
    present = WARNING_HEADLINE not in missing
    found_count = len(REQUIRED_WARNING_PHRASES) - len(missing)
    confidence = _round_score(found_count / len(REQUIRED_WARNING_PHRASES) * 100)
    exact = _compact(normalize(OFFICIAL_WARNING_TEXT)) in _compact(full_text)

    if exact:
        status = WARNING_STATUS_EXACT
    elif present and not missing:
        status = WARNING_STATUS_COMPLETE
    elif present:
        status = WARNING_STATUS_INCOMPLETE
    else:
        status = WARNING_STATUS_MISSING

    if present != extracted.government_warning:
        logger.debug(
            "OCR warning flag (%s) disagrees with phrase check (%s)",
            extracted.government_warning,
            present,
        )
    return WarningVerdict(
        present=present,
        confidence=confidence,
        exact=exact,
        missing_phrases=missing,
        text=status,
    )


FieldCheck = Callable[[ExpectedLabelData, ExtractedLabelData, MatcherThresholds], FieldVerdict]

FIELD_CHECKS: Dict[FieldKind, FieldCheck] = {
    FieldKind.brand_name: check_brand,
    FieldKind.product_type: check_product_type,
    FieldKind.alcohol_content: check_alcohol_content,
    FieldKind.net_contents: check_net_contents,
}


def verify_label(
    expected: ExpectedLabelData,
    extracted: ExtractedLabelData,
    thresholds: MatcherThresholds | None = None,
) -> VerificationReport:
    """Run every field check and the warning check; never short-circuits."""
    limits = thresholds or _DEFAULT_THRESHOLDS
    verdicts = {kind: check(expected, extracted, limits) for kind, check in FIELD_CHECKS.items()}
    warning = check_gov_warning(extracted)

    discrepancies: List[str] = [kind.value for kind, verdict in verdicts.items() if not verdict.match]
    if not warning.present:
        discrepancies.append(FieldKind.government_warning.value)

    for kind, verdict in verdicts.items():
        logger.debug("%s: match=%s confidence=%d", kind.value, verdict.match, verdict.confidence)

    return VerificationReport(
        overall_match=not discrepancies,
        details=VerificationDetails(
            brand_name=verdicts[FieldKind.brand_name],
            product_type=verdicts[FieldKind.product_type],
            alcohol_content=verdicts[FieldKind.alcohol_content],
            net_contents=verdicts[FieldKind.net_contents],
            government_warning=warning,
        ),
        discrepancies=discrepancies,
        extracted_text=extracted.full_text,
    )
