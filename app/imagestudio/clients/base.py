"""
Base Generator class for the image studio.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

# Aspect ratios accepted by the text-to-image model
SUPPORTED_ASPECT_RATIOS = ("1:1", "16:9", "9:16", "4:3", "3:4")


class FailureCause(str, Enum):
    """Why a generation request did not produce an image."""
    BLOCKED = "blocked"
    FINISH_REASON = "finish_reason"
    TEXT_ONLY = "text_only"
    NO_IMAGE = "no_image"
    NO_IMAGES = "no_images"
    TRANSPORT = "transport"
    INVALID_INPUT = "invalid_input"
    NOT_CONFIGURED = "not_configured"


class GenerationError(Exception):
    """Raised when the service response cannot be turned into an image."""

    def __init__(self, message: str, cause: FailureCause, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause
        self.detail = detail or {}


class InvalidImageError(GenerationError):
    """Raised when a user-supplied image cannot be encoded."""

    def __init__(self, message: str):
        super().__init__(message, FailureCause.INVALID_INPUT)


@dataclass
class GeneratorResult:
    """Result from an AI image generation request."""
    images: List[str] = field(default_factory=list)
    model: str = ""
    request_info: str = ""
    response_info: str = ""

    @property
    def success(self) -> bool:
        return bool(self.images)


class BaseGenerator:
    """Abstract base class for image generators."""

    def generate_image_from_text(self, prompt: str, aspect_ratio: str) -> GeneratorResult:
        """
        Generate images from a text prompt.
        Must be implemented by subclasses.

        Args:
            prompt: Text describing the image
            aspect_ratio: One of SUPPORTED_ASPECT_RATIOS

        Returns:
            GeneratorResult holding one data URL per image
        """
        raise NotImplementedError("Subclasses must implement generate_image_from_text")

    def generate_image_from_image_and_text(self, original_image, prompt: str) -> GeneratorResult:
        """
        Edit an existing image according to a text instruction.
        Must be implemented by subclasses.

        Args:
            original_image: Data URL string, UploadedImage or InlinePart
            prompt: Edit instruction

        Returns:
            GeneratorResult holding exactly one data URL
        """
        raise NotImplementedError("Subclasses must implement generate_image_from_image_and_text")
