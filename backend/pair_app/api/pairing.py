from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import FileResponse
from typing import Optional

from pair_app.api.deps import get_session_manager
from pair_app.config import settings
from pair_app.core.exceptions import (
    AllocationError,
    PairingExhausted,
    SessionNotFound,
    NotFoundException,
    BadRequestException,
    PairingFailedException
)
from pair_app.core.log import error_log
from pair_app.schemas.pairing import PairResponse, ErrorResponse, SessionStatus
from pair_app.services.session_manager import SessionManager
from pair_app.services.session_registry import sanitize_phone

router = APIRouter()

NOT_FOUND = {404: {"model": ErrorResponse}}


def _download_link(request: Request, session_id: str) -> str:
    base = settings.public_base_url or str(request.base_url)
    return f"{base.rstrip('/')}/session/{session_id}.zip"


@router.get(
    "/pair",
    response_model=PairResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}}
)
async def pair(
    request: Request,
    q: Optional[str] = Query(None, description="Phone number with country code"),
    manager: SessionManager = Depends(get_session_manager)
):
    """Start a new session for a phone number and return its pairing code"""
    if not q or not sanitize_phone(q):
        raise BadRequestException("Phone number is required in ?q=")

    try:
        session, code = await manager.pair(q)
    except (AllocationError, PairingExhausted) as e:
        error_log("PAIR", f"Error generating pairing code: {e}")
        raise PairingFailedException()

    return PairResponse(
        pairing_code=code,
        session_id=session.session_id,
        session_download=_download_link(request, session.session_id)
    )


@router.get("/session/{session_id}.zip", responses=NOT_FOUND)
async def download_session(
    session_id: str,
    manager: SessionManager = Depends(get_session_manager)
):
    """Download the latest credential archive for a session"""
    try:
        session = manager.registry.resolve(session_id)
    except SessionNotFound:
        raise NotFoundException("Session not found. Pair first.")

    if not session.archive_ready:
        raise NotFoundException("Session not found. Pair first.")

    return FileResponse(
        session.archive_path,
        media_type="application/zip",
        filename=f"{session_id}.zip"
    )


@router.get("/session/{session_id}", response_model=SessionStatus, responses=NOT_FOUND)
async def get_session_status(
    session_id: str,
    manager: SessionManager = Depends(get_session_manager)
):
    """Get connection state of a session"""
    try:
        return SessionStatus(**manager.status(session_id))
    except SessionNotFound:
        raise NotFoundException("Session not found")


@router.delete("/session/{session_id}", responses=NOT_FOUND)
async def stop_session(
    session_id: str,
    manager: SessionManager = Depends(get_session_manager)
):
    """Stop a session's connection. Credentials and archive are kept."""
    try:
        await manager.stop(session_id)
    except SessionNotFound:
        raise NotFoundException("Session not running")

    return {"success": True, "session_id": session_id}
