import json
import logging
from typing import Annotated, List

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from .config import Settings, get_settings
from .matcher import verify_label
from .schemas import (
    AnalyzeResponse,
    BulkVerificationResponse,
    ExpectedLabelData,
    ScanFormResponse,
    VerificationResponse,
    VerifyExtractedRequest,
)
from .services.verifier_service import VerifierService, get_verifier_service

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    cfg = settings or get_settings()

    limiter = Limiter(key_func=get_remote_address)

    app = FastAPI(title=cfg.project_name, version=cfg.version)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get(f"{cfg.api_prefix}/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post(f"{cfg.api_prefix}/verify", response_model=VerificationResponse)
    @limiter.limit(cfg.verify_rate_limit)
    async def verify(
        request: Request,
        form_payload: Annotated[str, Form(...)],
        image: Annotated[UploadFile, File(...)],
        service: VerifierService = Depends(get_verifier_service),
    ) -> VerificationResponse:
        try:
            payload_dict = json.loads(form_payload)
        except json.JSONDecodeError as exc:
            raise HTTPException(status_code=400, detail="Invalid JSON payload") from exc
        try:
            expected = ExpectedLabelData.model_validate(payload_dict)
        except ValidationError as exc:
            raise HTTPException(status_code=422, detail=exc.errors(include_url=False, include_context=False)) from exc
        report = await service.verify(expected, image)
        return VerificationResponse(result=report)

    @app.post(f"{cfg.api_prefix}/bulk-verify", response_model=BulkVerificationResponse)
    @limiter.limit(cfg.verify_rate_limit)
    async def bulk_verify(
        request: Request,
        forms_payload: Annotated[str, Form(...)],
        images: Annotated[List[UploadFile], File(...)],
        service: VerifierService = Depends(get_verifier_service),
    ) -> BulkVerificationResponse:
        try:
            records = json.loads(forms_payload)
        except json.JSONDecodeError as exc:
            raise HTTPException(status_code=400, detail="Invalid JSON payload") from exc
        if not isinstance(records, list) or not records:
            raise HTTPException(status_code=400, detail="No forms provided")
        if len(records) != len(images):
            raise HTTPException(
                status_code=400,
                detail=f"Got {len(records)} forms but {len(images)} images; they are paired by position",
            )
        if len(records) > cfg.max_batch_size:
            raise HTTPException(status_code=400, detail=f"Maximum {cfg.max_batch_size} labels per batch")
        return await service.verify_batch(records, images)

    @app.post(f"{cfg.api_prefix}/verify/extracted", response_model=VerificationResponse)
    async def verify_extracted(payload: VerifyExtractedRequest) -> VerificationResponse:
        report = verify_label(payload.expected, payload.extracted, cfg.matcher_thresholds)
        return VerificationResponse(result=report)

    @app.post(f"{cfg.api_prefix}/analyze", response_model=AnalyzeResponse)
    @limiter.limit(cfg.verify_rate_limit)
    async def analyze(
        request: Request,
        image: Annotated[UploadFile, File(...)],
        service: VerifierService = Depends(get_verifier_service),
    ) -> AnalyzeResponse:
        return AnalyzeResponse(result=await service.extract(image))

    @app.post(f"{cfg.api_prefix}/scan-form", response_model=ScanFormResponse)
    @limiter.limit(cfg.verify_rate_limit)
    async def scan_form(
        request: Request,
        image: Annotated[UploadFile, File(...)],
        service: VerifierService = Depends(get_verifier_service),
    ) -> ScanFormResponse:
        return ScanFormResponse(result=await service.scan_form(image))

    logger.info("%s ready", cfg.project_name)
    return app


app = create_app()
