"""Configuration management using Pydantic settings"""

import platform
import os
from pathlib import Path
from pydantic_settings import BaseSettings
from typing import Optional


def get_default_storage_path() -> str:
    """
    Get OS-specific default storage path for Revive.

    Returns:
        - macOS: ~/Library/Application Support/Revive
        - Linux: ~/.local/share/revive
        - Windows: %APPDATA%/Revive
    """
    system = platform.system()
    home = Path.home()

    if system == "Darwin":  # macOS
        return str(home / "Library" / "Application Support" / "Revive")
    elif system == "Windows":
        appdata = os.environ.get("APPDATA")
        if appdata:
            return str(Path(appdata) / "Revive")
        return str(home / "AppData" / "Roaming" / "Revive")
    else:  # Linux and others
        # Follow XDG Base Directory specification
        xdg_data = os.environ.get("XDG_DATA_HOME")
        if xdg_data:
            return str(Path(xdg_data) / "revive")
        return str(home / ".local" / "share" / "revive")


class Settings(BaseSettings):
    """Application settings"""

    # Storage paths
    STORAGE_DIR: str = get_default_storage_path()
    LEDGER_FILE: Optional[str] = None
    JOB_STATE_FILE: Optional[str] = None

    # Quota limits (-1 = unlimited)
    FREE_PHOTO_LIMIT: int = 5
    FREE_VIDEO_LIMIT: int = 0
    WEEKLY_PHOTO_LIMIT: int = -1
    WEEKLY_VIDEO_LIMIT: int = 7
    WEEKLY_VIDEO_DAILY_LIMIT: int = 1
    MONTHLY_PHOTO_LIMIT: int = -1
    MONTHLY_VIDEO_LIMIT: int = 31

    # Poll schedule: fixed interval for the first N polls, then multiplicative back-off
    POLL_INITIAL_INTERVAL: float = 1.0
    POLL_FIXED_ATTEMPTS: int = 10
    POLL_BACKOFF_FACTOR: float = 1.2
    POLL_MAX_INTERVAL: float = 3.0

    # Per-kind tracking ceilings
    PHOTO_MAX_POLL_ATTEMPTS: int = 40
    VIDEO_MAX_POLL_ATTEMPTS: int = 120
    PHOTO_EXPIRY_SECONDS: int = 300
    VIDEO_EXPIRY_SECONDS: int = 600
    PHOTO_ESTIMATED_SECONDS: int = 20
    VIDEO_ESTIMATED_SECONDS: int = 180
    VIDEO_FINALIZING_AFTER_SECONDS: int = 90

    # Job provider
    JOB_PROVIDER: str = "replicate"
    REPLICATE_API_BASE: str = "https://api.replicate.com/v1"
    REPLICATE_API_TOKEN: Optional[str] = None
    REPLICATE_PHOTO_MODEL: str = "flux-kontext-apps/restore-image"
    REPLICATE_VIDEO_MODEL: str = "kwaivgi/kling-v2.1"
    PROVIDER_TIMEOUT_SECONDS: float = 30.0

    # Billing provider (RevenueCat REST v1)
    REVENUECAT_API_BASE: str = "https://api.revenuecat.com/v1"
    REVENUECAT_API_KEY: Optional[str] = None
    REVENUECAT_PLATFORM: str = "ios"
    ENTITLEMENT_ID: str = "pro"

    # Webhook / API security
    WEBHOOK_SECRET: Optional[str] = None
    API_TOKEN: Optional[str] = None

    # Server
    HOST: str = "localhost"
    PORT: int = 8000

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True

    def model_post_init(self, __context) -> None:
        """Initialize derived paths after model creation"""
        storage = Path(self.STORAGE_DIR)
        if self.LEDGER_FILE is None:
            object.__setattr__(self, 'LEDGER_FILE', str(storage / "usage" / "ledger.json"))
        if self.JOB_STATE_FILE is None:
            object.__setattr__(self, 'JOB_STATE_FILE', str(storage / "jobs" / "job_state.json"))

    def create_directories(self):
        """Create necessary directories"""
        for file_path in [self.LEDGER_FILE, self.JOB_STATE_FILE]:
            if file_path:
                Path(file_path).parent.mkdir(parents=True, exist_ok=True)


# Global settings instance
settings = Settings()
