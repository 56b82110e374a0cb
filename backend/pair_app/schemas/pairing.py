from datetime import datetime
from pydantic import BaseModel
from typing import Any, Dict, Optional


class PairResponse(BaseModel):
    pairing_code: str
    session_id: str
    session_download: str


class ErrorResponse(BaseModel):
    error: str


class SessionStatus(BaseModel):
    session_id: str
    state: str  # idle, disconnected, connecting, open, closed, stopped
    registered: bool
    phone_number: Optional[str] = None
    archive_ready: bool = False
    awaiting_pairing: bool = False
    last_connected_at: Optional[datetime] = None
    last_disconnect: Optional[Dict[str, Any]] = None
