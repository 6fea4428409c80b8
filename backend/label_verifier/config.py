from functools import lru_cache
from typing import List

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class MatcherThresholds(BaseModel):
    text_match_threshold: int = 70  # brand and product type, confidence >= this matches
    containment_confidence: int = 90
    abv_tolerance: float = 0.1  # inclusive, percentage points
    abv_confidence_penalty: float = 20.0  # points lost per ABV point of difference
    net_contents_tolerance: float = 0.1  # exclusive
    net_contents_penalty_factor: float = 2.0


class Settings(BaseSettings):
    """Runtime configuration for the label verifier service."""

    model_config = SettingsConfigDict(env_file=".env", env_prefix="LV_", extra="ignore")

    project_name: str = "TTB Label Verification API"
    version: str = "1.0.0"
    api_prefix: str = "/api"
    cors_origins: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.5-flash"
    ocr_temperature: float = 0.1
    ocr_max_image_side: int = 1024
    min_extracted_text_length: int = 10
    max_upload_size_mb: float = 10.0
    verify_rate_limit: str = "10/minute"
    max_batch_size: int = 100
    matcher_thresholds: MatcherThresholds = MatcherThresholds()


@lru_cache
def get_settings() -> Settings:
    return Settings()
