"""
Configuration settings for the exam portal.
"""

import os

from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Application settings loaded from environment."""

    # Database
    DATABASE_URL: str = os.environ.get("DATABASE_URL", "sqlite:///./exam_portal.db")

    # Sessions
    SECRET_KEY: str = os.environ.get("SECRET_KEY", "change-me")
    SESSION_TTL_HOURS: int = int(os.environ.get("SESSION_TTL_HOURS", 168))

    # Seeding
    DEFAULT_ADMIN_EMAIL: str = os.environ.get("DEFAULT_ADMIN_EMAIL", "admin@example.com")
    DEFAULT_ADMIN_PASSWORD: str = os.environ.get("DEFAULT_ADMIN_PASSWORD", "admin123")
    DEFAULT_STUDENT_PASSWORD: str = os.environ.get("DEFAULT_STUDENT_PASSWORD", "student123")

    # Monitoring
    ACTIVE_SESSION_WINDOW_HOURS: int = int(os.environ.get("ACTIVE_SESSION_WINDOW_HOURS", 24))

    # Listing
    PAGE_SIZE: int = int(os.environ.get("PAGE_SIZE", 20))

    # Logging
    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")

    def validate(self):
        """Validate critical settings."""
        if not self.DATABASE_URL:
            raise ValueError("DATABASE_URL environment variable not set")
        if self.SESSION_TTL_HOURS < 1:
            raise ValueError("SESSION_TTL_HOURS must be at least 1")
        return True


# Global settings instance
settings = Settings()
