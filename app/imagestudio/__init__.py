"""
Image Studio Module
AI-powered image generation and editing integrated into the FastAPI app.
"""
from .clients import GenerationError, GeneratorResult, get_generator
from .studio import StudioService, StudioState

__all__ = ["StudioService", "StudioState", "get_generator", "GeneratorResult", "GenerationError"]
