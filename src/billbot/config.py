"""Configuration management for the billbot application."""

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_INFERENCE_API_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"
DEFAULT_INFERENCE_MODEL = "gemini-2.0-flash"


@dataclass
class Config:
    """Application configuration loaded from environment variables."""

    # Database
    database_url: str

    # OAuth
    google_oauth2_client_id: str
    google_oauth2_client_secret: str
    google_oauth2_redirect_uri: str

    # Inference
    inference_api_key: str

    # Discord
    discord_bot_token: str

    inference_api_url: str = DEFAULT_INFERENCE_API_URL
    inference_model: str = DEFAULT_INFERENCE_MODEL

    # Bill sender
    bill_sender: str = "hello@origin.com.au"
    bill_provider_name: str = "Origin Energy"

    # Channel notified by scheduled scans (None = persist only)
    scan_channel_id: Optional[str] = None

    # Pipeline tuning
    days_back: int = 30
    max_messages: int = 10
    fetch_workers: int = 10
    extract_workers: int = 10
    confidence_threshold: float = 0.7
    max_bills_per_user: int = 50
    refresh_buffer_sec: int = 300
    retry_delay_sec: float = 1.0
    request_timeout_sec: float = 30.0

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables.

        Returns:
            Config: Configuration object

        Raises:
            ValueError: If required environment variables are missing
        """
        required_vars = [
            "DATABASE_URL",
            "GOOGLE_OAUTH2_CLIENT_ID",
            "GOOGLE_OAUTH2_CLIENT_SECRET",
            "GOOGLE_OAUTH2_REDIRECT_URI",
            "INFERENCE_API_KEY",
            "DISCORD_BOT_TOKEN",
        ]

        missing = [var for var in required_vars if not os.getenv(var)]
        if missing:
            raise ValueError(f"Missing required environment variables: {', '.join(missing)}")

        return cls(
            database_url=os.getenv("DATABASE_URL"),
            google_oauth2_client_id=os.getenv("GOOGLE_OAUTH2_CLIENT_ID"),
            google_oauth2_client_secret=os.getenv("GOOGLE_OAUTH2_CLIENT_SECRET"),
            google_oauth2_redirect_uri=os.getenv("GOOGLE_OAUTH2_REDIRECT_URI"),
            inference_api_key=os.getenv("INFERENCE_API_KEY"),
            discord_bot_token=os.getenv("DISCORD_BOT_TOKEN"),
            inference_api_url=os.getenv("INFERENCE_API_URL", DEFAULT_INFERENCE_API_URL),
            inference_model=os.getenv("INFERENCE_MODEL", DEFAULT_INFERENCE_MODEL),
            bill_sender=os.getenv("BILL_SENDER", "hello@origin.com.au"),
            bill_provider_name=os.getenv("BILL_PROVIDER_NAME", "Origin Energy"),
            scan_channel_id=os.getenv("SCAN_CHANNEL_ID") or None,
            days_back=int(os.getenv("DAYS_BACK", "30")),
            max_messages=int(os.getenv("MAX_MESSAGES", "10")),
            fetch_workers=int(os.getenv("FETCH_WORKERS", "10")),
            extract_workers=int(os.getenv("EXTRACT_WORKERS", "10")),
            confidence_threshold=float(os.getenv("CONFIDENCE_THRESHOLD", "0.7")),
            max_bills_per_user=int(os.getenv("MAX_BILLS_PER_USER", "50")),
            refresh_buffer_sec=int(os.getenv("REFRESH_BUFFER_SEC", "300")),
            retry_delay_sec=float(os.getenv("RETRY_DELAY_SEC", "1.0")),
            request_timeout_sec=float(os.getenv("REQUEST_TIMEOUT_SEC", "30")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )
