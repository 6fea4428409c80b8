from __future__ import annotations

import io
import json
import logging
import os
from typing import Any, List

import google.generativeai as genai
from fastapi import HTTPException, UploadFile
from fastapi.concurrency import run_in_threadpool
from PIL import Image
from pydantic import ValidationError

from ..config import Settings, get_settings
from ..matcher import verify_label
from ..schemas import (
    BulkItemResult,
    BulkVerificationResponse,
    ExpectedLabelData,
    ExtractedLabelData,
    ScannedFormFields,
    VerificationReport,
)

logger = logging.getLogger(__name__)

EXTRACTION_PROMPT = """
You are analyzing an alcohol beverage label. Extract the following information and return it as JSON:

1. brandName: The brand name/distillery name (e.g., "Old Tom Distillery")
2. productType: The product class/type (e.g., "Kentucky Straight Bourbon Whiskey", "IPA", "Cabernet Sauvignon")
3. alcoholContent: The alcohol percentage/ABV (e.g., "45%", "5.5% ABV", "40% Alc./Vol.")
4. netContents: The volume/net contents (e.g., "750 mL", "12 fl oz", "1 L")
5. governmentWarning: Boolean - Does the label contain a "GOVERNMENT WARNING" statement?
6. fullText: All text visible on the label (verbatim)

Return ONLY valid JSON in this exact format (do not include markdown formatting like ```json):
{
    "brandName": "string or null",
    "productType": "string or null",
    "alcoholContent": "string or null",
    "netContents": "string or null",
    "governmentWarning": boolean,
    "fullText": "string"
}

If any field is not found or unclear, use null for that field. Be precise and extract exact text as it appears.
"""


class VerifierService:
    """Reads label images through Google Gemini and verifies them against application data."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self.model = None
        self._configure()

    def _configure(self) -> None:
        api_key = self.settings.gemini_api_key or os.getenv("GEMINI_API_KEY")
        if not api_key:
            logger.warning("GEMINI_API_KEY not set; label extraction will fail")
            return
        genai.configure(api_key=api_key)
        self.model = genai.GenerativeModel(
            self.settings.gemini_model,
            generation_config=genai.GenerationConfig(temperature=self.settings.ocr_temperature),
        )

    async def extract(self, image: UploadFile) -> ExtractedLabelData:
        # Re-check at request time to allow env var injection after startup
        if self.model is None:
            self._configure()
        if self.model is None:
            raise HTTPException(status_code=500, detail="Server misconfiguration: Missing Gemini API Key")

        image_bytes = await image.read()
        # Decoding and the Gemini call block, so both run off the event loop
        img = await run_in_threadpool(self._open_image, image_bytes)

        try:
            response = await run_in_threadpool(self.model.generate_content, [EXTRACTION_PROMPT, img])
        except Exception as exc:
            logger.error("Gemini extraction failed: %s", exc)
            raise HTTPException(status_code=502, detail=f"Upstream OCR service failed: {exc}") from exc

        try:
            extracted = ExtractedLabelData.model_validate(self._parse_response(response.text))
        except (json.JSONDecodeError, ValidationError) as exc:
            logger.warning("Unparseable OCR response: %s", exc)
            raise HTTPException(
                status_code=422, detail="Failed to parse OCR result. Image may be unreadable."
            ) from exc

        if len(extracted.full_text.strip()) < self.settings.min_extracted_text_length:
            raise HTTPException(
                status_code=422,
                detail=(
                    "Could not extract sufficient text from the image. "
                    "Please ensure the image is clear and contains readable text."
                ),
            )
        return extracted

    async def verify(self, expected: ExpectedLabelData, image: UploadFile) -> VerificationReport:
        extracted = await self.extract(image)
        report = verify_label(expected, extracted, self.settings.matcher_thresholds)
        logger.info(
            "Verified '%s': overall_match=%s discrepancies=%s",
            expected.brand_name,
            report.overall_match,
            report.discrepancies,
        )
        return report

    async def scan_form(self, image: UploadFile) -> ScannedFormFields:
        extracted = await self.extract(image)
        return ScannedFormFields(
            brand_name=extracted.brand_name or "",
            product_type=extracted.product_type or "",
            alcohol_content=extracted.alcohol_content or "",
            net_contents=extracted.net_contents or "",
        )

    async def verify_batch(self, records: List[Any], images: List[UploadFile]) -> BulkVerificationResponse:
        """Verify each record against the image at the same index, one at a time.

        A record that fails validation or an image that fails extraction is reported
        on its own item; the rest of the batch still runs.
        """
        results: List[BulkItemResult] = []
        for index, (record, image) in enumerate(zip(records, images)):
            filename = image.filename or f"image-{index}"
            brand_name = None
            try:
                expected = ExpectedLabelData.model_validate(record)
                brand_name = expected.brand_name
                report = await self.verify(expected, image)
            except ValidationError as exc:
                error = f"Invalid label data: {exc.error_count()} validation error(s)"
                logger.warning("Bulk item %d (%s): %s", index, filename, error)
                results.append(
                    BulkItemResult(index=index, filename=filename, brand_name=brand_name, success=False, error=error)
                )
                continue
            except HTTPException as exc:
                logger.warning("Bulk item %d (%s) failed: %s", index, filename, exc.detail)
                results.append(
                    BulkItemResult(
                        index=index, filename=filename, brand_name=brand_name, success=False, error=str(exc.detail)
                    )
                )
                continue
            results.append(
                BulkItemResult(index=index, filename=filename, brand_name=brand_name, success=True, result=report)
            )

        passed = sum(1 for item in results if item.result is not None and item.result.overall_match)
        errored = sum(1 for item in results if not item.success)
        return BulkVerificationResponse(
            total=len(results),
            passed=passed,
            failed=len(results) - passed - errored,
            errored=errored,
            results=results,
        )

    def _open_image(self, image_bytes: bytes) -> Image.Image:
        max_bytes = self.settings.max_upload_size_mb * 1024 * 1024
        if len(image_bytes) > max_bytes:
            raise HTTPException(
                status_code=400,
                detail=f"Image file is too large (max {self.settings.max_upload_size_mb:g}MB).",
            )
        try:
            img = Image.open(io.BytesIO(image_bytes))
            img.load()
        except Exception as exc:
            raise HTTPException(status_code=400, detail=f"Invalid image file: {exc}") from exc

        side = self.settings.ocr_max_image_side
        if img.width > side or img.height > side:
            img.thumbnail((side, side))
        return img

    def _parse_response(self, text: str) -> dict:
        start = text.find("{")
        end = text.rfind("}")
        if start != -1 and end != -1:
            return json.loads(text[start : end + 1])
        # Fall back to stripping markdown fences
        text = text.strip()
        if text.startswith("```json"):
            text = text[7:]
        if text.startswith("```"):
            text = text[3:]
        if text.endswith("```"):
            text = text[:-3]
        return json.loads(text)


def get_verifier_service() -> VerifierService:
    return VerifierService()
