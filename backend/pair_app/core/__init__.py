from pair_app.core.exceptions import (
    AllocationError,
    PairingExhausted,
    IOFailure,
    ConnectionClosed,
    SessionNotFound,
    BridgeError,
    NotFoundException,
    BadRequestException,
    PairingFailedException
)
from pair_app.core.log import log, error_log

__all__ = [
    "AllocationError",
    "PairingExhausted",
    "IOFailure",
    "ConnectionClosed",
    "SessionNotFound",
    "BridgeError",
    "NotFoundException",
    "BadRequestException",
    "PairingFailedException",
    "log",
    "error_log"
]
