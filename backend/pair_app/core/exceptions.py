from typing import Optional

from fastapi import HTTPException, status


class AllocationError(Exception):
    """Session directory could not be created"""

    def __init__(self, session_id: str, cause: Exception):
        super().__init__(f"Could not create directory for {session_id}: {cause}")
        self.session_id = session_id
        self.cause = cause


class PairingExhausted(Exception):
    """Every pairing-code attempt failed"""

    def __init__(self, attempts: int, last_error: Optional[Exception] = None):
        super().__init__(f"Max retries reached ({attempts}). Pairing code generation failed.")
        self.attempts = attempts
        self.last_error = last_error


class IOFailure(Exception):
    """Archiving or credential persistence failed"""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(f"{message}: {cause}" if cause else message)
        self.cause = cause


class ConnectionClosed(Exception):
    """A connection close, classified as terminal or transient"""

    def __init__(self, status_code: Optional[int], terminal: bool, reason: Optional[str] = None):
        kind = "terminal" if terminal else "transient"
        super().__init__(f"Connection closed ({kind}, status={status_code}, reason={reason})")
        self.status_code = status_code
        self.terminal = terminal
        self.reason = reason


class SessionNotFound(Exception):
    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class BridgeError(Exception):
    """The WhatsApp bridge refused a command or could not be reached"""


class NotFoundException(HTTPException):
    def __init__(self, detail: str = "Not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class BadRequestException(HTTPException):
    def __init__(self, detail: str = "Bad request"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class PairingFailedException(HTTPException):
    def __init__(self, detail: str = "Failed to generate pairing code"):
        super().__init__(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)
