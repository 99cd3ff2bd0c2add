import os
import logging
from pathlib import Path
from fastapi import FastAPI, UploadFile, HTTPException, File, Form, Depends, Header, Query, Request, Response, Cookie
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel, Field
from typing import Literal, Optional
from .imagestudio import StudioService, StudioState
from .imagestudio.clients import SUPPORTED_ASPECT_RATIOS, GeminiGenerator, InvalidImageError, UploadedImage
from .imagestudio.studio import FILTER_PRESETS, SessionBusyError

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SESSION_COOKIE = "studio_session"

AspectRatio = Literal["1:1", "16:9", "9:16", "4:3", "3:4"]

app = FastAPI(
    title="Image Studio",
    description="Generate and iteratively edit images with Gemini",
    version="1.0.0"
)
studio = StudioService()

# Setup Templates
templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))

# Security Configuration
ACCESS_KEY = os.getenv("STUDIO_ACCESS_KEY")

def get_api_key(
    api_key_header: str = Header(None, alias="X-API-Key"),
    api_key_query: str = Query(None, alias="api_key")
):
    """
    Validate API Key from Header or Query Parameter.
    """
    if not ACCESS_KEY:
        return True # Open if no key configured (dev mode)

    key = api_key_header or api_key_query
    if key != ACCESS_KEY:
        raise HTTPException(status_code=403, detail="Invalid API Key")
    return key


def get_state(
    response: Response,
    session_id: Optional[str] = Cookie(None, alias=SESSION_COOKIE)
) -> StudioState:
    """
    Resolve the caller's studio session, starting a new one if needed.
    """
    state = studio.get_session(session_id)
    if state.session_id != session_id:
        response.set_cookie(SESSION_COOKIE, state.session_id, httponly=True, samesite="lax")
    return state


def run_action(action, *args) -> dict:
    """
    Run a studio action and map its failures to HTTP errors.
    """
    try:
        state = action(*args)
    except SessionBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except (ValueError, IndexError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    return state.to_dict()


@app.get("/", response_class=HTMLResponse)
def read_root(request: Request):
    """
    Serve the Studio UI.
    """
    return templates.TemplateResponse(request, "index.html", {
        "aspect_ratios": SUPPORTED_ASPECT_RATIOS,
        "filters": FILTER_PRESETS,
    })


# =============================================================================
# Studio API Endpoints
# =============================================================================

class EditRequest(BaseModel):
    """Request body for a free-form edit."""
    edit_prompt: str = Field(default="", description="Instruction describing the edit")

    class Config:
        json_schema_extra = {
            "example": {
                "edit_prompt": "Add a hat to the person"
            }
        }


class FilterRequest(BaseModel):
    """Request body for applying an artistic filter."""
    name: str = Field(..., description="Filter name: Vintage, B&W, Vibrant or Cinematic")


class AspectRatioRequest(BaseModel):
    """Request body for re-rendering at a new aspect ratio."""
    aspect_ratio: AspectRatio


class SelectPromptRequest(BaseModel):
    """Request body for recalling a prompt from history."""
    index: int = Field(..., ge=0, description="Position in the prompt history, newest first")


@app.get("/api/options", tags=["Studio"])
def get_options(auth: str = Depends(get_api_key)):
    """
    List the aspect ratios and filters the studio offers.
    """
    return {
        "aspect_ratios": list(SUPPORTED_ASPECT_RATIOS),
        "filters": [{"name": f.name, "prompt_text": f.prompt_text} for f in FILTER_PRESETS]
    }


@app.get("/api/session", tags=["Studio"])
def get_session(auth: str = Depends(get_api_key), state: StudioState = Depends(get_state)):
    """
    Return the current session state.
    """
    return state.to_dict()


@app.post("/api/generate", tags=["Studio"])
def generate(
    prompt: str = Form(""),
    aspect_ratio: AspectRatio = Form("1:1"),
    image: Optional[UploadFile] = File(None),
    auth: str = Depends(get_api_key),
    state: StudioState = Depends(get_state)
):
    """
    Generate a new image from a prompt, optionally starting from an uploaded image.

    Requires API Key authentication when STUDIO_ACCESS_KEY is set.
    """
    uploaded = None
    if image is not None and image.filename:
        content = image.file.read()
        if not content:
            raise HTTPException(status_code=400, detail=f"Uploaded file is empty: {image.filename}")
        uploaded = UploadedImage(data=content, filename=image.filename, content_type=image.content_type)
        logger.info(f"Received upload {image.filename} ({len(content)} bytes)")

    return run_action(studio.generate, state, prompt, aspect_ratio, uploaded)


@app.post("/api/edit", tags=["Studio"])
def edit(request: EditRequest, auth: str = Depends(get_api_key), state: StudioState = Depends(get_state)):
    """
    Apply a free-form edit instruction to the active image.
    """
    return run_action(studio.edit, state, request.edit_prompt)


@app.post("/api/upscale", tags=["Studio"])
def upscale(auth: str = Depends(get_api_key), state: StudioState = Depends(get_state)):
    """
    Enhance the resolution of the active image.
    """
    return run_action(studio.upscale, state)


@app.post("/api/filter", tags=["Studio"])
def apply_filter(request: FilterRequest, auth: str = Depends(get_api_key), state: StudioState = Depends(get_state)):
    """
    Apply one of the artistic filters to the active image.
    """
    return run_action(studio.apply_filter, state, request.name)


@app.post("/api/aspect-ratio", tags=["Studio"])
def change_aspect_ratio(
    request: AspectRatioRequest,
    auth: str = Depends(get_api_key),
    state: StudioState = Depends(get_state)
):
    """
    Re-render the active image at a new aspect ratio.
    """
    return run_action(studio.change_aspect_ratio, state, request.aspect_ratio)


@app.post("/api/history/select", tags=["Studio"])
def select_prompt(
    request: SelectPromptRequest,
    auth: str = Depends(get_api_key),
    state: StudioState = Depends(get_state)
):
    """
    Put a prompt from history back into the prompt field.
    """
    return run_action(studio.select_prompt, state, request.index)


@app.post("/api/session/clear-error", tags=["Studio"])
def clear_error(auth: str = Depends(get_api_key), state: StudioState = Depends(get_state)):
    """
    Dismiss the current error message.
    """
    return studio.clear_error(state).to_dict()


@app.get("/api/download", tags=["Studio"])
def download(auth: str = Depends(get_api_key), state: StudioState = Depends(get_state)):
    """
    Download the active image.
    """
    try:
        filename, media_type, content = studio.download(state)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidImageError as e:
        raise HTTPException(status_code=500, detail=str(e))

    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )


@app.get("/api/providers", tags=["Studio"])
def list_providers(auth: str = Depends(get_api_key)):
    """
    List available AI providers and their configuration status.
    """
    gemini_gen = GeminiGenerator()

    return {
        "providers": [
            {
                "name": "gemini",
                "description": f"Google Gemini with {gemini_gen.image_model} and {gemini_gen.edit_model}",
                "configured": gemini_gen.is_configured(),
                "image_model": gemini_gen.image_model,
                "edit_model": gemini_gen.edit_model,
                "required_env_vars": [GeminiGenerator.ENV_API_KEY],
                "optional_env_vars": [
                    f"{GeminiGenerator.ENV_ENDPOINT} (default: {GeminiGenerator.DEFAULT_ENDPOINT})",
                    f"{GeminiGenerator.ENV_IMAGE_MODEL} (default: {GeminiGenerator.DEFAULT_IMAGE_MODEL})",
                    f"{GeminiGenerator.ENV_EDIT_MODEL} (default: {GeminiGenerator.DEFAULT_EDIT_MODEL})",
                    f"{GeminiGenerator.ENV_TIMEOUT} (default: {GeminiGenerator.DEFAULT_TIMEOUT:g})"
                ],
                "missing": gemini_gen.get_missing_config()
            }
        ]
    }
