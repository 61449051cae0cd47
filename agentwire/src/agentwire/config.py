"""Configuration settings for the agentwire client."""

from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Client settings loaded from environment variables."""

    # Endpoints
    ws_url: str = "ws://localhost:8000/ws/chat"
    api_url: str = "http://localhost:8000/api"

    # Authentication
    auth_token: str | None = None

    # Connection timings (seconds)
    connect_timeout: float = 10.0
    heartbeat_interval: float = 30.0
    # Window after transport-open before readiness is assumed without a
    # server acknowledgment.
    ready_grace_period: float = 0.2
    send_wait_timeout: float = 5.0

    # Reconnection policy
    reconnect_base_delay: float = 1.0
    reconnect_max_delay: float = 30.0
    max_reconnect_attempts: int = 5

    # REST collaborator
    request_timeout: float = 10.0

    # Event journal (disabled when unset)
    journal_path: str | None = None

    log_level: str = "INFO"

    model_config = {
        "env_prefix": "AGENTWIRE_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }

    @property
    def journal_file(self) -> Path | None:
        """Get the journal path as a Path object."""
        return Path(self.journal_path) if self.journal_path else None


settings = Settings()
