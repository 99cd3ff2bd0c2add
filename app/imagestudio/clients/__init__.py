"""
Image Studio AI Generator Clients
"""
from .base import (
    SUPPORTED_ASPECT_RATIOS,
    BaseGenerator,
    FailureCause,
    GenerationError,
    GeneratorResult,
    InvalidImageError,
)
from .encoding import InlinePart, UploadedImage, data_url_to_bytes, data_url_to_part, file_to_part, to_part
from .gemini import GeminiGenerator, generate_image_from_image_and_text, generate_image_from_text


def get_generator(provider: str = "gemini") -> BaseGenerator:
    """
    Factory function to get the appropriate generator.

    Args:
        provider: 'gemini' (only Gemini is currently supported)

    Returns:
        BaseGenerator instance
    """
    provider = provider.lower()
    if provider == "gemini":
        return GeminiGenerator()
    else:
        raise ValueError(f"Unknown provider: {provider}. Use 'gemini'.")


__all__ = [
    "get_generator",
    "BaseGenerator",
    "GeminiGenerator",
    "GeneratorResult",
    "GenerationError",
    "InvalidImageError",
    "FailureCause",
    "SUPPORTED_ASPECT_RATIOS",
    "InlinePart",
    "UploadedImage",
    "data_url_to_part",
    "data_url_to_bytes",
    "file_to_part",
    "to_part",
    "generate_image_from_text",
    "generate_image_from_image_and_text",
]
