"""
Exam Proctoring Configuration Settings

All values can be overridden through environment variables or a local .env file.
Monitor cadences and thresholds are in seconds unless noted otherwise.
"""
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Configuration for the exam proctoring service."""

    # API Settings
    APP_NAME: str = "Exam Proctoring Service"
    SERVICE_ID: str = "exam-proctoring"
    DEBUG: bool = True
    PORT: int = 8002
    LOG_LEVEL: str = "INFO"

    # Persistence
    DATABASE_URL: str = "sqlite:///./exam_proctoring.db"

    # Auth (shared with the identity service that issues tokens)
    JWT_SECRET: str = "your-super-secret-key-min-32-chars-here"
    JWT_ALGORITHM: str = "HS256"

    # Event log encryption (AES-256-GCM, key is 64 hex chars)
    LOG_ENCRYPTION_ENABLED: bool = True
    LOG_ENCRYPTION_KEY: Optional[str] = None

    # Monitoring
    MONITORING_ENABLED: bool = True

    FACE_SAMPLE_INTERVAL_SECONDS: float = 10.0
    FACE_ABSENCE_SECONDS: float = 5.0
    FACE_HISTORY_SIZE: int = 10
    FACE_PATTERN_WINDOW: int = 5
    SNAPSHOTS_ENABLED: bool = True
    SNAPSHOT_MIN_DELAY_SECONDS: float = 120.0
    SNAPSHOT_MAX_DELAY_SECONDS: float = 300.0

    AUDIO_SAMPLE_INTERVAL_SECONDS: float = 0.1
    AUDIO_SPEECH_THRESHOLD: float = 0.1
    AUDIO_SPEECH_HANGOVER_SECONDS: float = 2.0
    AUDIO_SILENCE_SECONDS: float = 30.0
    AUDIO_WINDOW_SIZE: int = 50

    OFF_SCREEN_SECONDS: float = 10.0

    NETWORK_CHECK_INTERVAL_SECONDS: float = 10.0
    NETWORK_DISCONNECT_GRACE_SECONDS: float = 5.0
    # Optional server-side RTT measurement when the client reports none
    LIVENESS_URL: Optional[str] = None
    LIVENESS_TIMEOUT_SECONDS: float = 5.0

    SECURITY_CHECK_INTERVAL_SECONDS: float = 30.0
    CLIENT_SILENCE_SECONDS: float = 60.0
    DEVTOOLS_THRESHOLD_PX: int = 160
    INACTIVITY_TIMEOUT_SECONDS: float = 30 * 60

    # Escalation
    ESCALATION_GRACE_SECONDS: float = 3.0
    MAX_VIOLATIONS: int = 5

    # Undrained notifications are kept this long after a session ends
    NOTIFICATION_RETENTION_SECONDS: float = 300.0

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
