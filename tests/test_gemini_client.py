"""Tests for GeminiGenerator request assembly and response classification."""
import logging
from unittest.mock import MagicMock, patch

import pytest
import requests

from app.imagestudio.clients import (
    FailureCause,
    GeminiGenerator,
    GenerationError,
    UploadedImage,
    get_generator,
)
from app.imagestudio.clients.gemini import classify_edit_response
from tests.conftest import PNG_B64, PNG_BYTES, PNG_DATA_URL


def _response(payload):
    resp = MagicMock()
    resp.status_code = 200
    resp.json.return_value = payload
    return resp


def _image_candidate(mime_type="image/png", data="b3V0cHV0"):
    return {
        "candidates": [{
            "content": {"parts": [{"text": "Here you go"}, {"inlineData": {"mimeType": mime_type, "data": data}}]},
            "finishReason": "STOP",
        }]
    }


class TestConfiguration:
    def test_missing_key(self):
        gen = GeminiGenerator()
        assert not gen.is_configured()
        assert gen.get_missing_config() == ["GEMINI_API_KEY"]
        with pytest.raises(ValueError, match="GEMINI_API_KEY"):
            gen.generate_image_from_text("a cat", "1:1")

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "env-key")
        monkeypatch.setenv("GEMINI_EDIT_MODEL", "custom-edit")
        monkeypatch.setenv("GEMINI_API_ENDPOINT", "https://proxy.example.com/")
        gen = GeminiGenerator()
        assert gen.is_configured()
        assert gen.edit_model == "custom-edit"
        assert gen.image_model == GeminiGenerator.DEFAULT_IMAGE_MODEL
        assert gen.endpoint == "https://proxy.example.com"

    def test_factory(self):
        assert isinstance(get_generator("Gemini"), GeminiGenerator)
        with pytest.raises(ValueError, match="Unknown provider"):
            get_generator("stability")


class TestTextToImage:
    @patch("app.imagestudio.clients.gemini.requests.post")
    def test_request_and_data_urls(self, mock_post):
        mock_post.return_value = _response({"predictions": [{"bytesBase64Encoded": PNG_B64, "mimeType": "image/png"}]})
        result = GeminiGenerator(api_key="k").generate_image_from_text("a lighthouse", "16:9")

        assert result.images == [PNG_DATA_URL]
        assert result.model == "imagen-4.0-generate-001"
        url = mock_post.call_args.args[0]
        kwargs = mock_post.call_args.kwargs
        assert url.endswith("/v1beta/models/imagen-4.0-generate-001:predict")
        assert kwargs["headers"]["x-goog-api-key"] == "k"
        assert kwargs["json"]["instances"] == [{"prompt": "a lighthouse"}]
        assert kwargs["json"]["parameters"]["aspectRatio"] == "16:9"
        assert kwargs["json"]["parameters"]["sampleCount"] == 1
        assert kwargs["timeout"] == 120.0

    @patch("app.imagestudio.clients.gemini.requests.post")
    def test_no_images(self, mock_post):
        mock_post.return_value = _response({})
        with pytest.raises(GenerationError) as exc_info:
            GeminiGenerator(api_key="k").generate_image_from_text("x", "1:1")
        assert exc_info.value.cause == FailureCause.NO_IMAGES
        assert "did not return any images" in str(exc_info.value)

    @patch("app.imagestudio.clients.gemini.requests.post")
    def test_all_filtered(self, mock_post):
        mock_post.return_value = _response({"predictions": [{"raiFilteredReason": "violence"}]})
        with pytest.raises(GenerationError) as exc_info:
            GeminiGenerator(api_key="k").generate_image_from_text("x", "1:1")
        assert exc_info.value.cause == FailureCause.NO_IMAGES
        assert exc_info.value.detail["filtered_reasons"] == ["violence"]

    @patch("app.imagestudio.clients.gemini.requests.post")
    def test_bad_aspect_ratio_never_calls_api(self, mock_post):
        with pytest.raises(GenerationError) as exc_info:
            GeminiGenerator(api_key="k").generate_image_from_text("x", "2:1")
        assert exc_info.value.cause == FailureCause.INVALID_INPUT
        mock_post.assert_not_called()

    @patch("app.imagestudio.clients.gemini.requests.post")
    def test_http_error(self, mock_post):
        err_resp = MagicMock()
        err_resp.status_code = 400
        err_resp.json.return_value = {"error": {"message": "API key not valid"}}
        resp = MagicMock()
        resp.raise_for_status.side_effect = requests.exceptions.HTTPError("400", response=err_resp)
        mock_post.return_value = resp

        with pytest.raises(GenerationError) as exc_info:
            GeminiGenerator(api_key="bad").generate_image_from_text("x", "1:1")
        assert exc_info.value.cause == FailureCause.TRANSPORT
        assert str(exc_info.value) == "API key not valid"
        assert exc_info.value.detail["http_status"] == 400

    @patch("app.imagestudio.clients.gemini.requests.post")
    def test_connection_error(self, mock_post):
        mock_post.side_effect = requests.exceptions.ConnectionError("connection refused")
        with pytest.raises(GenerationError) as exc_info:
            GeminiGenerator(api_key="k").generate_image_from_text("x", "1:1")
        assert exc_info.value.cause == FailureCause.TRANSPORT


class TestImageAndText:
    @patch("app.imagestudio.clients.gemini.requests.post")
    def test_data_url_input(self, mock_post):
        mock_post.return_value = _response(_image_candidate("image/jpeg", "ZWRpdGVk"))
        result = GeminiGenerator(api_key="k").generate_image_from_image_and_text(PNG_DATA_URL, "add a hat")

        assert result.images == ["data:image/jpeg;base64,ZWRpdGVk"]
        url = mock_post.call_args.args[0]
        body = mock_post.call_args.kwargs["json"]
        assert url.endswith("/gemini-2.5-flash-image-preview:generateContent")
        assert body["contents"][0]["parts"] == [
            {"inlineData": {"mimeType": "image/png", "data": PNG_B64}},
            {"text": "add a hat"},
        ]
        assert body["generationConfig"]["responseModalities"] == ["IMAGE", "TEXT"]

    @patch("app.imagestudio.clients.gemini.requests.post")
    def test_uploaded_file_input(self, mock_post):
        mock_post.return_value = _response(_image_candidate())
        upload = UploadedImage(PNG_BYTES, "cat.webp", "image/webp")
        GeminiGenerator(api_key="k").generate_image_from_image_and_text(upload, "make it snow")

        image_part = mock_post.call_args.kwargs["json"]["contents"][0]["parts"][0]
        assert image_part == {"inlineData": {"mimeType": "image/webp", "data": PNG_B64}}

    @patch("app.imagestudio.clients.gemini.requests.post")
    def test_invalid_data_url_never_calls_api(self, mock_post):
        with pytest.raises(GenerationError) as exc_info:
            GeminiGenerator(api_key="k").generate_image_from_image_and_text("not-a-data-url", "x")
        assert exc_info.value.cause == FailureCause.INVALID_INPUT
        mock_post.assert_not_called()


class TestClassifyEditResponse:
    def test_image_wins(self):
        part = classify_edit_response(_image_candidate())
        assert part.to_data_url() == "data:image/png;base64,b3V0cHV0"

    def test_block_checked_before_image(self):
        result = _image_candidate()
        result["promptFeedback"] = {"blockReason": "SAFETY", "blockReasonMessage": "Unsafe prompt."}
        with pytest.raises(GenerationError) as exc_info:
            classify_edit_response(result)
        assert exc_info.value.cause == FailureCause.BLOCKED
        assert str(exc_info.value) == "Request was blocked. Reason: SAFETY. Unsafe prompt."

    def test_block_without_message(self):
        with pytest.raises(GenerationError) as exc_info:
            classify_edit_response({"promptFeedback": {"blockReason": "OTHER"}})
        assert str(exc_info.value) == "Request was blocked. Reason: OTHER. "

    def test_non_stop_finish_reason(self):
        result = {"candidates": [{"content": {"parts": []}, "finishReason": "IMAGE_SAFETY"}]}
        with pytest.raises(GenerationError) as exc_info:
            classify_edit_response(result)
        assert exc_info.value.cause == FailureCause.FINISH_REASON
        assert "Reason: IMAGE_SAFETY" in str(exc_info.value)

    def test_text_only(self):
        result = {"candidates": [{
            "content": {"parts": [{"text": "  I can't edit "}, {"text": "that image.  "}]},
            "finishReason": "STOP",
        }]}
        with pytest.raises(GenerationError) as exc_info:
            classify_edit_response(result)
        assert exc_info.value.cause == FailureCause.TEXT_ONLY
        assert str(exc_info.value) == (
            'The AI model did not return an image. The model responded with text: "I can\'t edit that image."'
        )

    def test_empty_response(self):
        with pytest.raises(GenerationError) as exc_info:
            classify_edit_response({})
        assert exc_info.value.cause == FailureCause.NO_IMAGE
        assert "try rephrasing your prompt" in str(exc_info.value)

    def test_snake_case_inline_data(self):
        result = {"candidates": [{"content": {"parts": [{"inline_data": {"mime_type": "image/webp", "data": "d2Vi"}}]}}]}
        part = classify_edit_response(result)
        assert part.mime_type == "image/webp"


@patch("app.imagestudio.clients.gemini.requests.post")
def test_module_functions_use_env_config(mock_post, monkeypatch):
    from app.imagestudio.clients import generate_image_from_image_and_text, generate_image_from_text

    monkeypatch.setenv("GEMINI_API_KEY", "env-key")
    mock_post.return_value = _response({"predictions": [{"bytesBase64Encoded": PNG_B64}]})
    assert generate_image_from_text("a boat", "1:1") == [PNG_DATA_URL]

    mock_post.return_value = _response(_image_candidate())
    assert generate_image_from_image_and_text(PNG_DATA_URL, "at night") == "data:image/png;base64,b3V0cHV0"
    assert mock_post.call_args.kwargs["headers"]["x-goog-api-key"] == "env-key"


def test_image_returned_despite_non_stop_finish_reason():
    result = _image_candidate(data="c3RpbGwgYW4gaW1hZ2U=")
    result["candidates"][0]["finishReason"] = "IMAGE_SAFETY"
    part = classify_edit_response(result)
    assert part.to_data_url() == "data:image/png;base64,c3RpbGwgYW4gaW1hZ2U="


@patch("app.imagestudio.clients.gemini.requests.post")
def test_text_to_image_always_png(mock_post):
    mock_post.return_value = _response({"predictions": [{"bytesBase64Encoded": PNG_B64, "mimeType": "image/jpeg"}]})
    result = GeminiGenerator(api_key="k").generate_image_from_text("x", "1:1")
    assert result.images == [PNG_DATA_URL]


@patch("app.imagestudio.clients.gemini.requests.post")
def test_image_data_never_logged(mock_post, caplog):
    caplog.set_level(logging.INFO, logger="app.imagestudio.clients.gemini")
    generated_b64 = "R0VORVJBVEVEUElYRUxTR0VORVJBVEVE"
    edited_b64 = "RURJVEVEUElYRUxTRURJVEVEUElYRUxT"
    gen = GeminiGenerator(api_key="k")

    mock_post.return_value = _response({"predictions": [{"bytesBase64Encoded": generated_b64, "mimeType": "image/png"}]})
    gen.generate_image_from_text("a harbour", "1:1")
    mock_post.return_value = _response(_image_candidate(data=edited_b64))
    gen.generate_image_from_image_and_text(PNG_DATA_URL, "at dusk")

    assert "Received response from model." in caplog.text
    assert "[REDACTED]" in caplog.text
    assert generated_b64 not in caplog.text
    assert edited_b64 not in caplog.text
    assert PNG_B64 not in caplog.text
