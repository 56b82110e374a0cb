from pair_app.schemas.pairing import PairResponse, ErrorResponse, SessionStatus

__all__ = ["PairResponse", "ErrorResponse", "SessionStatus"]
