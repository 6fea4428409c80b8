from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Snake_case attributes in Python, camelCase keys on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ExpectedLabelData(CamelModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    brand_name: str = Field(..., min_length=1, description="Brand listed on the application")
    product_type: str = Field(..., min_length=1, description="Class/type, e.g. 'Kentucky Straight Bourbon Whiskey'")
    alcohol_content: str = Field(..., min_length=1, description="ABV such as '45' or '45%'")
    net_contents: str = Field(..., min_length=1, description="Net contents, e.g. '750 mL' or '12 fl oz'")


class ExtractedLabelData(CamelModel):
    brand_name: Optional[str] = None
    product_type: Optional[str] = None
    alcohol_content: Optional[str] = None
    net_contents: Optional[str] = None
    government_warning: bool = False
    full_text: str


class FieldVerdict(CamelModel):
    model_config = ConfigDict(frozen=True)

    match: bool
    expected: str
    found: Optional[str] = None
    confidence: int = Field(..., ge=0, le=100)


class WarningVerdict(CamelModel):
    model_config = ConfigDict(frozen=True)

    present: bool
    confidence: int = Field(..., ge=0, le=100)
    exact: bool
    missing_phrases: Tuple[str, ...] = ()
    text: str


class VerificationDetails(CamelModel):
    model_config = ConfigDict(frozen=True)

    brand_name: FieldVerdict
    product_type: FieldVerdict
    alcohol_content: FieldVerdict
    net_contents: FieldVerdict
    government_warning: WarningVerdict


class VerificationReport(CamelModel):
    model_config = ConfigDict(frozen=True)

    overall_match: bool
    details: VerificationDetails
    discrepancies: Tuple[str, ...]
    extracted_text: str


class VerificationResponse(CamelModel):
    result: VerificationReport


class VerifyExtractedRequest(CamelModel):
    expected: ExpectedLabelData
    extracted: ExtractedLabelData


class AnalyzeResponse(CamelModel):
    result: ExtractedLabelData


class ScannedFormFields(CamelModel):
    brand_name: str = ""
    product_type: str = ""
    alcohol_content: str = ""
    net_contents: str = ""


class ScanFormResponse(CamelModel):
    result: ScannedFormFields


class BulkItemResult(CamelModel):
    index: int
    filename: str
    brand_name: Optional[str] = None
    success: bool
    result: Optional[VerificationReport] = None
    error: Optional[str] = None


class BulkVerificationResponse(CamelModel):
    total: int
    passed: int
    failed: int
    errored: int
    results: List[BulkItemResult]
