from pair_app.services.session_manager import SessionManager, session_manager


def get_session_manager() -> SessionManager:
    """Process-wide session manager; overridden in tests"""
    return session_manager
