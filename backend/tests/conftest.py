from __future__ import annotations

import asyncio
import io
import json
from typing import Callable

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from label_verifier.config import Settings
from label_verifier.main import create_app
from label_verifier.matcher import OFFICIAL_WARNING_TEXT
from label_verifier.services.verifier_service import VerifierService, get_verifier_service


LABEL_TEXT = "\n".join(
    [
        "OLD TOM DISTILLERY",
        "Kentucky Straight Bourbon Whiskey",
        "45% Alc./Vol. (90 Proof)",
        "750 mL",
        OFFICIAL_WARNING_TEXT,
    ]
)

LABEL_EXTRACTION = {
    "brandName": "Old Tom Distillery",
    "productType": "Kentucky Straight Bourbon Whiskey",
    "alcoholContent": "45% Alc./Vol. (90 Proof)",
    "netContents": "750 mL",
    "governmentWarning": True,
    "fullText": LABEL_TEXT,
}


class _FakeResponse:
    def __init__(self, text: str) -> None:
        self.text = text


class FakeModel:
    """Stands in for genai.GenerativeModel and replays a canned response."""

    def __init__(self, text: str = "", error: Exception | None = None) -> None:
        self.text = text
        self.error = error
        self.calls = 0
        self.called_on_event_loop = None

    def generate_content(self, parts):
        self.calls += 1
        try:
            asyncio.get_running_loop()
            self.called_on_event_loop = True
        except RuntimeError:
            self.called_on_event_loop = False
        if self.error is not None:
            raise self.error
        return _FakeResponse(self.text)


class FakeVerifierService(VerifierService):
    def __init__(self, model: FakeModel | None, settings: Settings) -> None:
        self._fake_model = model
        super().__init__(settings)

    def _configure(self) -> None:
        self.model = self._fake_model


@pytest.fixture
def settings() -> Settings:
    return Settings(gemini_api_key="")


@pytest.fixture
def png_bytes() -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (64, 32), color="white").save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def use_model(settings) -> Callable[..., TestClient]:
    """Build a client whose OCR collaborator replays the given model."""

    def _build(model: FakeModel | None) -> TestClient:
        app = create_app(settings)
        app.dependency_overrides[get_verifier_service] = lambda: FakeVerifierService(model, settings)
        return TestClient(app)

    return _build


@pytest.fixture
def client(use_model) -> TestClient:
    return use_model(FakeModel(json.dumps(LABEL_EXTRACTION)))
