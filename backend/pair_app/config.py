from pathlib import Path
from typing import Optional, Tuple

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # HTTP
    port: int = 3000
    public_base_url: Optional[str] = None  # overrides the host used in download links

    # Session storage
    sessions_dir: Path = Path("session")

    # WhatsApp bridge (Baileys sidecar)
    whatsapp_bridge_url: str = "http://localhost:3001"
    redis_url: str = "redis://localhost:6379"
    events_channel: str = "whatsapp:sessions"

    # Socket config forwarded to the bridge on open
    connect_timeout: float = 60.0
    default_query_timeout: Optional[float] = None  # None = unbounded
    keepalive_interval: float = 10.0
    browser: Tuple[str, str, str] = ("Ubuntu", "Chrome", "20.0.04")

    # Pairing
    pairing_attempts: int = 3
    pairing_retry_delay: float = 2.0
    pairing_request_timeout: float = 30.0

    # Reconnect backoff
    reconnect_base_delay: float = 1.0
    reconnect_max_delay: float = 60.0

    # Standing session started with the process
    default_session_enabled: bool = True
    default_session_id: str = "session"
    phone: Optional[str] = None
    session_string: Optional[str] = None

    log_prefix: str = ""

    class Config:
        env_file = ".env"
        case_sensitive = False


# Create settings instance (reads from .env)
settings = Settings()
