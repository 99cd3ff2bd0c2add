import base64

import pytest

from app.imagestudio.clients import BaseGenerator, GeneratorResult

PNG_BYTES = b"\x89PNG\r\n\x1a\n fake png body"
PNG_B64 = base64.b64encode(PNG_BYTES).decode("ascii")
PNG_DATA_URL = f"data:image/png;base64,{PNG_B64}"


class FakeGenerator(BaseGenerator):
    """Records calls and returns canned data URLs."""

    def __init__(self, error=None):
        self.error = error
        self.text_calls = []
        self.edit_calls = []

    def generate_image_from_text(self, prompt, aspect_ratio):
        self.text_calls.append((prompt, aspect_ratio))
        if self.error:
            raise self.error
        return GeneratorResult(images=[f"data:image/png;base64,text{len(self.text_calls)}"], model="fake-imagen")

    def generate_image_from_image_and_text(self, original_image, prompt):
        self.edit_calls.append((original_image, prompt))
        if self.error:
            raise self.error
        return GeneratorResult(images=[f"data:image/png;base64,edit{len(self.edit_calls)}"], model="fake-gemini")


@pytest.fixture
def fake_generator():
    return FakeGenerator()


@pytest.fixture(autouse=True)
def clean_gemini_env(monkeypatch):
    for name in ("GEMINI_API_KEY", "GEMINI_API_ENDPOINT", "GEMINI_IMAGE_MODEL", "GEMINI_EDIT_MODEL", "GEMINI_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)
