"""Session API router: upload, detect, edit, preview and export."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from fastapi import APIRouter, File, HTTPException, Request, UploadFile
from fastapi.responses import Response
from pydantic import BaseModel, Field

from faceredact.core.models import RedactionMethod, SensitivityLevel
from faceredact.detection.base import DetectionUnavailableError
from faceredact.rendering.renderer import RedactionIncompleteError
from faceredact.session.manager import SessionLimitError, SessionManager
from faceredact.session.orchestrator import RedactionSession, SessionStateError
from faceredact.utils.image import ImageDecodeError

logger = logging.getLogger(__name__)

# Upload limits
MAX_UPLOAD_SIZE = 50 * 1024 * 1024  # 50MB
CHUNK_SIZE = 1024 * 1024  # 1MB
VALID_EXTENSIONS = [".jpg", ".jpeg", ".png", ".webp", ".bmp", ".tif", ".tiff"]

router = APIRouter()


# Request/Response Models
class SessionCreatedResponse(BaseModel):
    """Response model for a new session."""

    session_id: str
    width: int
    height: int
    state: str


class SessionResponse(BaseModel):
    """Response model for session state."""

    id: str
    state: str
    sensitivity: SensitivityLevel
    method: RedactionMethod
    image_size: tuple[int, int] | None = None
    regions: list[dict[str, Any]] = Field(default_factory=list)
    detection_pending: bool = False
    last_error: str | None = None
    report: dict[str, Any] | None = None


class SensitivityRequest(BaseModel):
    """Request model for changing sensitivity."""

    level: SensitivityLevel


class MethodRequest(BaseModel):
    """Request model for changing the redaction method."""

    method: RedactionMethod


class CommitRequest(BaseModel):
    """Request model for exporting the redacted image."""

    method: RedactionMethod | None = None


class PointRequest(BaseModel):
    """Request model for a point in image coordinates."""

    x: float = Field(..., ge=0.0)
    y: float = Field(..., ge=0.0)


class RegionResponse(BaseModel):
    """Response model for a single region."""

    id: str
    x: float
    y: float
    width: float
    height: float
    confidence: float
    enabled: bool
    origin: str


def _manager(request: Request) -> SessionManager:
    return request.app.state.sessions


def _session(request: Request, session_id: str) -> RedactionSession:
    try:
        return _manager(request).get(session_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Session not found") from None


def _region_response(region) -> RegionResponse:
    return RegionResponse(
        id=region.id,
        x=region.bbox.x,
        y=region.bbox.y,
        width=region.bbox.width,
        height=region.bbox.height,
        confidence=region.confidence,
        enabled=region.enabled,
        origin=region.origin,
    )


def _conflict(error: SessionStateError) -> HTTPException:
    return HTTPException(status_code=409, detail=str(error))


async def _read_upload(file: UploadFile) -> bytes:
    file_ext = Path(file.filename).suffix.lower() if file.filename else ""
    is_valid_type = (
        file.content_type and file.content_type.startswith("image/")
    ) or file_ext in VALID_EXTENSIONS
    if not is_valid_type:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid file type. Supported formats: {', '.join(VALID_EXTENSIONS)}",
        )

    chunks = []
    bytes_read = 0
    while chunk := await file.read(CHUNK_SIZE):
        bytes_read += len(chunk)
        if bytes_read > MAX_UPLOAD_SIZE:
            raise HTTPException(
                status_code=413,
                detail=f"File too large. Maximum size: {MAX_UPLOAD_SIZE // (1024 * 1024)}MB",
            )
        chunks.append(chunk)

    if bytes_read == 0:
        raise HTTPException(status_code=400, detail="Empty file uploaded")
    return b"".join(chunks)


@router.post("/sessions", response_model=SessionCreatedResponse)
async def create_session(request: Request, file: UploadFile = File(...)):
    """Upload an image and start detection in a new session."""
    payload = await _read_upload(file)
    manager = _manager(request)
    try:
        session = manager.create()
    except SessionLimitError as e:
        raise HTTPException(status_code=429, detail=str(e)) from e

    try:
        await session.start(payload)
    except ImageDecodeError as e:
        await manager.close(session.id)
        raise HTTPException(status_code=400, detail=f"Invalid image: {e}") from e
    except DetectionUnavailableError as e:
        await manager.close(session.id)
        raise HTTPException(status_code=503, detail=str(e)) from e

    width, height = session.image_size
    logger.info("Session %s created for %s", session.id, file.filename)
    return SessionCreatedResponse(
        session_id=session.id, width=width, height=height, state=session.state.value
    )


@router.post("/sessions/{session_id}/image", response_model=SessionResponse)
async def replace_image(request: Request, session_id: str, file: UploadFile = File(...)):
    """Load a new image into an existing session."""
    session = _session(request, session_id)
    payload = await _read_upload(file)
    try:
        await session.start(payload)
    except ImageDecodeError as e:
        raise HTTPException(status_code=400, detail=f"Invalid image: {e}") from e
    except DetectionUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e)) from e
    except SessionStateError as e:
        raise _conflict(e) from e
    return SessionResponse(**session.snapshot())


@router.get("/sessions/{session_id}", response_model=SessionResponse)
async def get_session(request: Request, session_id: str, settle: bool = False):
    """Session state; with settle=true, wait for pending work first."""
    session = _session(request, session_id)
    if settle:
        await session.wait_until_settled()
    return SessionResponse(**session.snapshot())


@router.put("/sessions/{session_id}/sensitivity", response_model=SessionResponse)
async def set_sensitivity(request: Request, session_id: str, body: SensitivityRequest):
    """Change sensitivity and reschedule detection."""
    session = _session(request, session_id)
    try:
        await session.set_sensitivity(body.level)
    except SessionStateError as e:
        raise _conflict(e) from e
    return SessionResponse(**session.snapshot())


@router.put("/sessions/{session_id}/method", response_model=SessionResponse)
async def set_method(request: Request, session_id: str, body: MethodRequest):
    """Change the redaction method used by preview and export."""
    session = _session(request, session_id)
    try:
        session.set_method(body.method)
    except SessionStateError as e:
        raise _conflict(e) from e
    return SessionResponse(**session.snapshot())


@router.post(
    "/sessions/{session_id}/regions/{region_id}/toggle", response_model=RegionResponse
)
async def toggle_region(request: Request, session_id: str, region_id: str):
    """Enable or disable one region."""
    session = _session(request, session_id)
    try:
        region = session.toggle_region(region_id)
    except SessionStateError as e:
        raise _conflict(e) from e
    except KeyError:
        raise HTTPException(status_code=404, detail="Region not found") from None
    return _region_response(region)


@router.post("/sessions/{session_id}/regions/manual", response_model=RegionResponse)
async def add_manual_region(request: Request, session_id: str, body: PointRequest):
    """Add a manually sized region centred on a point."""
    session = _session(request, session_id)
    try:
        region = session.add_manual_region((body.x, body.y))
    except SessionStateError as e:
        raise _conflict(e) from e
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return _region_response(region)


@router.post("/sessions/{session_id}/click", response_model=RegionResponse)
async def click(request: Request, session_id: str, body: PointRequest):
    """Toggle the region under a point, or add a manual region there."""
    session = _session(request, session_id)
    try:
        region = session.click((body.x, body.y))
    except SessionStateError as e:
        raise _conflict(e) from e
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return _region_response(region)


@router.get("/sessions/{session_id}/preview")
async def get_preview(request: Request, session_id: str):
    """Latest live preview as JPEG."""
    session = _session(request, session_id)
    if session.preview_bytes is None:
        raise HTTPException(status_code=404, detail="Preview not available yet")
    return Response(content=session.preview_bytes, media_type="image/jpeg")


@router.post("/sessions/{session_id}/commit")
async def commit(request: Request, session_id: str, body: CommitRequest | None = None):
    """Render the redacted image at export resolution as JPEG."""
    session = _session(request, session_id)
    method = body.method if body else None
    try:
        payload = await session.commit_bytes(method)
    except SessionStateError as e:
        raise _conflict(e) from e
    except RedactionIncompleteError as e:
        logger.exception("Export failed for session %s", session_id)
        raise HTTPException(status_code=500, detail=str(e)) from e
    return Response(content=payload, media_type="image/jpeg")


@router.post("/sessions/{session_id}/reset", response_model=SessionResponse)
async def reset_session(request: Request, session_id: str):
    """Drop the image and regions, keeping the loaded models."""
    session = _session(request, session_id)
    try:
        session.reset()
    except SessionStateError as e:
        raise _conflict(e) from e
    return SessionResponse(**session.snapshot())


@router.delete("/sessions/{session_id}")
async def delete_session(request: Request, session_id: str) -> dict[str, str]:
    """Close a session and release its models."""
    try:
        await _manager(request).close(session_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Session not found") from None
    return {"status": "closed", "session_id": session_id}
