"""
Configuration settings for Session Service
"""
from functools import lru_cache
from typing import Optional, List
from pydantic_settings import BaseSettings
from pydantic import ConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # App
    APP_NAME: str = "Session Service"
    VERSION: str = "1.0.0"
    ENVIRONMENT: str = "local"
    LOG_LEVEL: str = "INFO"

    # AWS
    AWS_REGION: str = "us-east-1"
    AWS_ACCESS_KEY_ID: Optional[str] = None  # Only for LocalStack, ECS uses IAM roles
    AWS_SECRET_ACCESS_KEY: Optional[str] = None  # Only for LocalStack, ECS uses IAM roles

    # DynamoDB (single-table design: sessions, delta counters, profile, progress)
    DYNAMODB_ENDPOINT: Optional[str] = None  # None uses AWS, set for LocalStack
    DYNAMODB_SESSION_TABLE: str = "session-service-dev"
    DYNAMODB_METRICS_TABLE: str = "session-service-dev"
    DYNAMODB_USER_ID_INDEX: str = "UserIdIndex"

    # Session state machine
    SESSION_TIMEOUT_MINUTES: int = 5
    SESSION_MAX_ATTEMPTS: int = 3
    SESSION_RETRY_DELAY_SECONDS: float = 0.1  # multiplied by attempt number
    DUPLICATE_TRANSITION_WINDOW_SECONDS: float = 5.0
    MAX_SEGMENT_SECONDS: int = 7200

    # Delta metrics
    ACTIVE_TIME_CAP_SECONDS: int = 15
    PERFECT_ACCURACY_MULTIPLIER: float = 1.2
    EXPIRY_FLUSH_MAX_ATTEMPTS: int = 3
    EXPIRY_FLUSH_BACKOFF_BASE_SECONDS: float = 1.0
    EXPIRY_FLUSH_BACKOFF_MAX_SECONDS: float = 5.0

    # Analytics collector (Caliper)
    ANALYTICS_ENABLED: bool = True
    CALIPER_ENDPOINT: str = "https://caliper.example.com/caliper/event"
    CALIPER_SENSOR: str = "https://session-service.example.com"
    CALIPER_DATA_VERSION: str = "http://purl.imsglobal.org/ctx/caliper/v1p2"
    CALIPER_APP_NAME: str = "Session Service"
    CALIPER_APP_SLUG: str = "session-service"
    CALIPER_SUBJECT: str = "Math"

    # OneRoster credentials for the collector
    ONEROSTER_AUTH_ENDPOINT: str = "https://auth.example.com/oauth2/token"
    ONEROSTER_API_BASE: str = "https://api.example.com"
    ONEROSTER_CLIENT_ID: Optional[str] = None
    ONEROSTER_CLIENT_SECRET: Optional[str] = None
    TOKEN_EXPIRY_BUFFER_SECONDS: int = 300

    HTTP_TIMEOUT_SECONDS: float = 10.0

    # CORS
    CORS_ORIGINS: List[str] = ["*"]

    model_config = ConfigDict(
        env_file=".env",
        case_sensitive=True
    )


@lru_cache()
def get_settings() -> Settings:
    """Returns cached settings instance (singleton)"""
    return Settings()
