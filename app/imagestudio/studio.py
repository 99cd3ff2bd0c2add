"""
Image Studio Service
Holds per-session UI state and runs generation and edit actions against it.
"""
import logging
import threading
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from .clients import (
    SUPPORTED_ASPECT_RATIOS,
    BaseGenerator,
    UploadedImage,
    data_url_to_bytes,
    get_generator,
)

logger = logging.getLogger(__name__)

MAX_PROMPT_HISTORY = 10
MAX_SESSIONS = 500
SESSION_IDLE_TIMEOUT = 3600
UNKNOWN_ERROR = "An unknown error occurred."

UPSCALE_PROMPT = (
    "Upscale this image, increasing its resolution and enhancing details. "
    "Make it sharper and clearer without altering the content."
)
ASPECT_RATIO_PROMPT = (
    "Render this image at a new aspect ratio of {aspect_ratio}. "
    "Intelligently expand the scene and composition to fill the new dimensions. "
    "Do not crop, stretch, or distort the original subject."
)


@dataclass
class FilterPreset:
    """A one-click artistic filter."""
    name: str
    prompt_text: str


FILTER_PRESETS = [
    FilterPreset("Vintage", "Apply a vintage, retro film filter. Give it a warm, faded look with slight grain."),
    FilterPreset("B&W", "Convert this to a high-contrast, dramatic black and white."),
    FilterPreset("Vibrant", "Enhance the colors to be more vibrant and saturated. Make it pop."),
    FilterPreset("Cinematic", "Give this a cinematic look with teal and orange color grading."),
]


class SessionBusyError(Exception):
    """Raised when an action is requested while another one is running."""


@dataclass
class StudioState:
    """In-memory UI state of one browser session."""
    session_id: str
    prompt: str = ""
    aspect_ratio: str = "1:1"
    prompt_history: List[str] = field(default_factory=list)
    generated_images: List[str] = field(default_factory=list)
    active_image: Optional[str] = None
    edit_prompt: str = ""
    is_loading: bool = False
    loading_message: str = "AI is creating..."
    error: Optional[str] = None
    last_seen: float = field(default_factory=time.time)

    def remember_prompt(self, prompt: str):
        if prompt.strip() and prompt not in self.prompt_history:
            self.prompt_history = [prompt] + self.prompt_history[:MAX_PROMPT_HISTORY - 1]

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "prompt": self.prompt,
            "aspect_ratio": self.aspect_ratio,
            "prompt_history": list(self.prompt_history),
            "image_count": len(self.generated_images),
            "active_image": self.active_image,
            "edit_prompt": self.edit_prompt,
            "is_loading": self.is_loading,
            "loading_message": self.loading_message,
            "error": self.error,
        }


class StudioService:
    """
    Service for interactive image generation and editing.
    Keeps one StudioState per session in process memory.
    """

    def __init__(
        self,
        provider: str = "gemini",
        generator_factory: Callable[[str], BaseGenerator] = get_generator,
        max_sessions: int = MAX_SESSIONS,
        idle_timeout: float = SESSION_IDLE_TIMEOUT,
    ):
        """
        Initialize StudioService.

        Args:
            provider: AI provider name passed to the generator factory
            generator_factory: Callable returning a BaseGenerator for a provider
            max_sessions: Oldest idle sessions are dropped beyond this count
            idle_timeout: Seconds after which an unused session is dropped
        """
        self.provider = provider
        self.generator_factory = generator_factory
        self.max_sessions = max_sessions
        self.idle_timeout = idle_timeout
        self.sessions: "OrderedDict[str, StudioState]" = OrderedDict()
        self._lock = threading.Lock()

    def get_session(self, session_id: Optional[str] = None) -> StudioState:
        """Return the session state, creating a fresh one when unknown."""
        now = time.time()
        with self._lock:
            self._evict(now)
            if session_id and session_id in self.sessions:
                state = self.sessions[session_id]
                state.last_seen = now
                self.sessions.move_to_end(session_id)
                return state
            self._evict(now, reserve=1)
            state = StudioState(session_id=str(uuid.uuid4()), last_seen=now)
            self.sessions[state.session_id] = state
            return state

    def _evict(self, now: float, reserve: int = 0):
        # Caller holds self._lock. Sessions mid-request are never dropped.
        for session_id, state in list(self.sessions.items()):
            if now - state.last_seen > self.idle_timeout and not state.is_loading:
                del self.sessions[session_id]
        for session_id, state in list(self.sessions.items()):
            if len(self.sessions) + reserve <= self.max_sessions:
                break
            if not state.is_loading:
                del self.sessions[session_id]
                logger.info(f"Dropped session {session_id}: session limit {self.max_sessions} reached")

    def _ensure_idle(self, state: StudioState):
        with self._lock:
            if state.is_loading:
                raise SessionBusyError(f"Session {state.session_id} is busy: {state.loading_message}")

    def _run(self, state: StudioState, loading_message: str, action: Callable[[BaseGenerator], None]) -> StudioState:
        with self._lock:
            if state.is_loading:
                raise SessionBusyError(f"Session {state.session_id} is busy: {state.loading_message}")
            state.is_loading = True
        state.error = None
        state.loading_message = loading_message

        try:
            action(self.generator_factory(self.provider))
        except Exception as e:
            logger.error(f"{loading_message} failed for session {state.session_id}: {e}")
            state.error = str(e) or UNKNOWN_ERROR
        finally:
            state.is_loading = False
        return state

    def generate(
        self,
        state: StudioState,
        prompt: str,
        aspect_ratio: str = "1:1",
        uploaded_image: Optional[UploadedImage] = None,
    ) -> StudioState:
        """Create new images from a prompt, or from a prompt plus an uploaded image."""
        self._ensure_idle(state)
        state.prompt = prompt
        state.aspect_ratio = aspect_ratio
        if not prompt.strip() and uploaded_image is None:
            state.error = "Please enter a prompt or upload an image."
            return state
        if aspect_ratio not in SUPPORTED_ASPECT_RATIOS:
            state.error = f"Unsupported aspect ratio: {aspect_ratio}"
            return state

        def action(generator: BaseGenerator):
            state.remember_prompt(prompt)
            if uploaded_image is not None:
                result = generator.generate_image_from_image_and_text(uploaded_image, prompt)
            else:
                result = generator.generate_image_from_text(prompt, aspect_ratio)
            state.generated_images.extend(result.images)
            state.active_image = state.generated_images[-1]
            logger.info(f"Session {state.session_id}: {len(result.images)} new image(s) from {result.model}")

        loading = "AI is editing..." if uploaded_image is not None else "AI is creating..."
        return self._run(state, loading, action)

    def _edit_active(self, state: StudioState, prompt: str, loading_message: str,
                     on_success: Optional[Callable[[], None]] = None) -> StudioState:
        active_image = state.active_image

        def action(generator: BaseGenerator):
            result = generator.generate_image_from_image_and_text(active_image, prompt)
            state.active_image = result.images[0]
            if on_success:
                on_success()

        return self._run(state, loading_message, action)

    def upscale(self, state: StudioState) -> StudioState:
        self._ensure_idle(state)
        if not state.active_image:
            state.error = "No active image to upscale."
            return state
        return self._edit_active(state, UPSCALE_PROMPT, "Upscaling image...")

    def apply_filter(self, state: StudioState, filter_name: str) -> StudioState:
        self._ensure_idle(state)
        preset = get_filter(filter_name)
        if not state.active_image:
            state.error = "No active image to apply a filter to."
            return state
        return self._edit_active(state, preset.prompt_text, "Applying filter...")

    def edit(self, state: StudioState, edit_prompt: str) -> StudioState:
        self._ensure_idle(state)
        state.edit_prompt = edit_prompt
        if not state.active_image:
            state.error = "No active image to edit."
            return state
        if not edit_prompt.strip():
            state.error = "Please enter an edit instruction."
            return state

        def clear_edit_prompt():
            state.edit_prompt = ""

        return self._edit_active(state, edit_prompt, "Applying your edit...", on_success=clear_edit_prompt)

    def change_aspect_ratio(self, state: StudioState, aspect_ratio: str) -> StudioState:
        self._ensure_idle(state)
        if aspect_ratio not in SUPPORTED_ASPECT_RATIOS:
            raise ValueError(f"Unsupported aspect ratio: {aspect_ratio}")
        if not state.active_image:
            state.error = "No active image to edit."
            return state
        instruction = ASPECT_RATIO_PROMPT.format(aspect_ratio=aspect_ratio)
        return self._edit_active(state, instruction, "Changing aspect ratio...")

    def select_prompt(self, state: StudioState, index: int) -> StudioState:
        """Recall a prompt from history into the prompt field."""
        self._ensure_idle(state)
        if index < 0 or index >= len(state.prompt_history):
            raise IndexError(f"No prompt at history position {index}")
        state.prompt = state.prompt_history[index]
        return state

    def clear_error(self, state: StudioState) -> StudioState:
        state.error = None
        return state

    def download(self, state: StudioState) -> Tuple[str, str, bytes]:
        """
        Return the active image for download.

        Returns:
            Tuple of (filename, mime_type, image bytes)
        """
        if not state.active_image:
            raise LookupError("No active image to download.")
        mime_type, data = data_url_to_bytes(state.active_image)
        filename = f"generated-image-{int(time.time() * 1000)}.png"
        return filename, mime_type, data


def get_filter(name: str) -> FilterPreset:
    for preset in FILTER_PRESETS:
        if preset.name.lower() == name.lower():
            return preset
    raise ValueError(f"Unknown filter: {name}. Use one of {', '.join(p.name for p in FILTER_PRESETS)}.")
