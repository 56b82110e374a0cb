from pair_app.models.session import (
    Session,
    PairingAttempt,
    ConnectionState,
    DisconnectReason,
    is_terminal_close
)

__all__ = ["Session", "PairingAttempt", "ConnectionState", "DisconnectReason", "is_terminal_close"]
