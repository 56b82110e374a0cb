from dataclasses import dataclass
from datetime import datetime
from enum import Enum, IntEnum
from pathlib import Path
from typing import Optional, Union


class ConnectionState(str, Enum):
    IDLE = "idle"
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"
    STOPPED = "stopped"


class DisconnectReason(IntEnum):
    """Close status codes reported by Baileys"""
    CONNECTION_CLOSED = 428
    CONNECTION_LOST = 408
    CONNECTION_REPLACED = 440
    LOGGED_OUT = 401
    BAD_SESSION = 500
    RESTART_REQUIRED = 515
    MULTIDEVICE_MISMATCH = 411
    FORBIDDEN = 403
    UNAVAILABLE_SERVICE = 503


TERMINAL_REASONS = frozenset({DisconnectReason.LOGGED_OUT})


def is_terminal_close(status_code: Optional[int]) -> bool:
    """Only an explicit logout stops a session; every other close reconnects"""
    return status_code is not None and status_code in TERMINAL_REASONS


@dataclass
class Session:
    session_id: str
    directory_path: Path
    archive_path: Path
    phone_number: Optional[str] = None
    registered: bool = False
    connection_state: ConnectionState = ConnectionState.DISCONNECTED
    last_connected_at: Optional[datetime] = None

    @property
    def archive_ready(self) -> bool:
        return self.archive_path.is_file()


@dataclass
class PairingAttempt:
    phone_number: str
    attempt_number: int
    result: Union[str, Exception, None] = None

    @property
    def succeeded(self) -> bool:
        return isinstance(self.result, str) and bool(self.result)
