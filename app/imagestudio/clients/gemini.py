"""
Gemini Generator for the image studio.
Uses the Google Gemini REST API for text-to-image and image editing.

Required Environment Variables:
    GEMINI_API_KEY: Gemini API key

Optional Environment Variables:
    GEMINI_API_ENDPOINT: API base URL (default: https://generativelanguage.googleapis.com)
    GEMINI_IMAGE_MODEL: Text-to-image model (default: imagen-4.0-generate-001)
    GEMINI_EDIT_MODEL: Image editing model (default: gemini-2.5-flash-image-preview)
    GEMINI_TIMEOUT: Request timeout in seconds (default: 120)
"""
import logging
import os
import time
from typing import Any, Dict, Optional

import requests

from .base import (
    SUPPORTED_ASPECT_RATIOS,
    BaseGenerator,
    FailureCause,
    GenerationError,
    GeneratorResult,
)
from .encoding import DEFAULT_MIME_TYPE, InlinePart, to_part

logger = logging.getLogger(__name__)

NO_IMAGES_MESSAGE = (
    "The AI model did not return any images. "
    "This may be due to safety filters or a problem with the prompt."
)
NO_IMAGE_ADVICE = (
    "This can happen due to safety filters or if the request is too complex. "
    "Please try rephrasing your prompt to be more direct."
)


def _sanitize_for_log(value: Any) -> Any:
    """Replace inline base64 payloads with a placeholder."""
    if isinstance(value, dict):
        if "data" in value and "mimeType" in value:
            return {"mimeType": value.get("mimeType"), "data": "[REDACTED]"}
        if "bytesBase64Encoded" in value:
            return {**value, "bytesBase64Encoded": "[REDACTED]"}
        return {k: _sanitize_for_log(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_sanitize_for_log(v) for v in value]
    return value


def _first_candidate(result: Dict[str, Any]) -> Dict[str, Any]:
    candidates = result.get("candidates") or []
    return candidates[0] if candidates else {}


def _response_text(result: Dict[str, Any]) -> str:
    """Concatenate the text parts of the first candidate."""
    parts = (_first_candidate(result).get("content") or {}).get("parts") or []
    return "".join(
        part["text"] for part in parts
        if isinstance(part.get("text"), str) and not part.get("thought")
    )


def classify_edit_response(result: Dict[str, Any]) -> InlinePart:
    """
    Interpret a generateContent response.

    Returns the first inline image part, or raises GenerationError with the
    cause that best explains why there is none.
    """
    prompt_feedback = result.get("promptFeedback") or {}
    block_reason = prompt_feedback.get("blockReason")
    if block_reason:
        block_message = prompt_feedback.get("blockReasonMessage") or ""
        raise GenerationError(
            f"Request was blocked. Reason: {block_reason}. {block_message}",
            FailureCause.BLOCKED,
            detail={"block_reason": block_reason, "prompt_feedback": prompt_feedback},
        )

    candidate = _first_candidate(result)
    parts = (candidate.get("content") or {}).get("parts") or []
    for part in parts:
        inline = part.get("inlineData") or part.get("inline_data")
        if inline and isinstance(inline.get("data"), str):
            mime_type = inline.get("mimeType") or inline.get("mime_type") or DEFAULT_MIME_TYPE
            return InlinePart(mime_type=mime_type, data=inline["data"])

    finish_reason = candidate.get("finishReason")
    if finish_reason and finish_reason != "STOP":
        raise GenerationError(
            f"Image generation stopped unexpectedly. Reason: {finish_reason}. "
            "This often relates to safety settings.",
            FailureCause.FINISH_REASON,
            detail={"finish_reason": finish_reason, "finish_message": candidate.get("finishMessage")},
        )

    text_feedback = _response_text(result).strip()
    if text_feedback:
        raise GenerationError(
            f'The AI model did not return an image. The model responded with text: "{text_feedback}"',
            FailureCause.TEXT_ONLY,
            detail={"text": text_feedback},
        )
    raise GenerationError(
        f"The AI model did not return an image. {NO_IMAGE_ADVICE}",
        FailureCause.NO_IMAGE,
    )


def classify_text_response(result: Dict[str, Any]) -> list:
    """Interpret a predict response into a list of data URLs."""
    images = []
    filtered = []
    for prediction in result.get("predictions") or []:
        image_b64 = prediction.get("bytesBase64Encoded")
        if image_b64:
            images.append(InlinePart(mime_type="image/png", data=image_b64).to_data_url())
        elif prediction.get("raiFilteredReason"):
            filtered.append(prediction["raiFilteredReason"])

    if not images:
        raise GenerationError(
            NO_IMAGES_MESSAGE,
            FailureCause.NO_IMAGES,
            detail={"filtered_reasons": filtered} if filtered else None,
        )
    return images


class GeminiGenerator(BaseGenerator):
    """Gemini image generator using Imagen for creation and Gemini for edits."""

    ENV_API_KEY = "GEMINI_API_KEY"
    ENV_ENDPOINT = "GEMINI_API_ENDPOINT"
    ENV_IMAGE_MODEL = "GEMINI_IMAGE_MODEL"
    ENV_EDIT_MODEL = "GEMINI_EDIT_MODEL"
    ENV_TIMEOUT = "GEMINI_TIMEOUT"

    DEFAULT_ENDPOINT = "https://generativelanguage.googleapis.com"
    DEFAULT_IMAGE_MODEL = "imagen-4.0-generate-001"
    DEFAULT_EDIT_MODEL = "gemini-2.5-flash-image-preview"
    DEFAULT_TIMEOUT = 120.0

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key if api_key is not None else os.getenv(self.ENV_API_KEY)
        self.endpoint = os.getenv(self.ENV_ENDPOINT, self.DEFAULT_ENDPOINT).rstrip("/")
        self.image_model = os.getenv(self.ENV_IMAGE_MODEL, self.DEFAULT_IMAGE_MODEL)
        self.edit_model = os.getenv(self.ENV_EDIT_MODEL, self.DEFAULT_EDIT_MODEL)
        self.timeout = float(os.getenv(self.ENV_TIMEOUT, self.DEFAULT_TIMEOUT))

    def is_configured(self) -> bool:
        """Check if Gemini generator is properly configured."""
        return bool(self.api_key)

    def get_missing_config(self) -> list:
        """Return list of missing configuration variables."""
        return [] if self.api_key else [self.ENV_API_KEY]

    def _require_configured(self):
        if not self.is_configured():
            missing = self.get_missing_config()
            raise ValueError(f"Missing required environment variables: {', '.join(missing)}")

    def _post(self, model: str, method: str, payload: dict) -> Dict[str, Any]:
        url = f"{self.endpoint}/v1beta/models/{model}:{method}"
        headers = {
            "x-goog-api-key": self.api_key,
            "Content-Type": "application/json",
        }
        try:
            response = requests.post(url, headers=headers, json=payload, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.HTTPError as e:
            error_message = str(e)
            if e.response is not None:
                try:
                    error_message = e.response.json().get("error", {}).get("message") or error_message
                except ValueError:
                    error_message = e.response.text or error_message
            status = e.response.status_code if e.response is not None else None
            logger.error(f"Gemini API error ({status}) from {model}: {error_message}")
            raise GenerationError(error_message, FailureCause.TRANSPORT, detail={"http_status": status}) from e
        except requests.exceptions.RequestException as e:
            logger.error(f"Request to {model} failed: {e}")
            raise GenerationError(str(e), FailureCause.TRANSPORT) from e

    def generate_image_from_text(self, prompt: str, aspect_ratio: str) -> GeneratorResult:
        """Generate one PNG image from a text prompt."""
        self._require_configured()
        if aspect_ratio not in SUPPORTED_ASPECT_RATIOS:
            raise GenerationError(
                f"Unsupported aspect ratio: {aspect_ratio}. Use one of {', '.join(SUPPORTED_ASPECT_RATIOS)}.",
                FailureCause.INVALID_INPUT,
            )

        logger.info(f'Starting text-to-image generation with prompt: "{prompt}"')
        payload = {
            "instances": [{"prompt": prompt}],
            "parameters": {
                "sampleCount": 1,
                "aspectRatio": aspect_ratio,
                "outputOptions": {"mimeType": "image/png"},
            },
        }

        start_time = time.time()
        req_info = f"POST {self.image_model}:predict\nAspect ratio: {aspect_ratio}\nPrompt: {prompt[:50]}..."
        result = self._post(self.image_model, "predict", payload)
        latency = time.time() - start_time
        logger.info(f"Received response from model. {_sanitize_for_log(result)}")

        images = classify_text_response(result)
        return GeneratorResult(
            images=images,
            model=self.image_model,
            request_info=req_info,
            response_info=f"Images: {len(images)}\nLatency: {latency:.2f}s",
        )

    def generate_image_from_image_and_text(self, original_image, prompt: str) -> GeneratorResult:
        """Edit an image according to a text instruction."""
        self._require_configured()
        logger.info(f'Starting image-and-text generation with prompt: "{prompt}"')

        image_part = to_part(original_image)
        payload = {
            "contents": [{"parts": [image_part.to_wire(), {"text": prompt}]}],
            "generationConfig": {"responseModalities": ["IMAGE", "TEXT"]},
        }

        start_time = time.time()
        req_info = f"POST {self.edit_model}:generateContent\nInput: {image_part.mime_type}\nPrompt: {prompt[:50]}..."
        logger.info("Sending image and prompt to the model...")
        result = self._post(self.edit_model, "generateContent", payload)
        latency = time.time() - start_time
        logger.info(f"Received response from model. {_sanitize_for_log(result)}")

        try:
            output = classify_edit_response(result)
        except GenerationError as e:
            logger.error(f"Model response did not contain an image part: {e.message}")
            raise

        logger.info(f"Received image data ({output.mime_type})")
        return GeneratorResult(
            images=[output.to_data_url()],
            model=self.edit_model,
            request_info=req_info,
            response_info=f"Output: {output.mime_type}\nLatency: {latency:.2f}s",
        )


def generate_image_from_text(prompt: str, aspect_ratio: str) -> list:
    """Generate images from text with the default Gemini configuration."""
    return GeminiGenerator().generate_image_from_text(prompt, aspect_ratio).images


def generate_image_from_image_and_text(original_image, prompt: str) -> str:
    """Edit an image with the default Gemini configuration."""
    return GeminiGenerator().generate_image_from_image_and_text(original_image, prompt).images[0]
