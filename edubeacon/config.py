"""Environment-driven settings for the EduBeacon service."""

import os
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = 'False') -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


def _env_list(name: str, default: str) -> List[str]:
    return [item.strip() for item in os.getenv(name, default).split(',') if item.strip()]


@dataclass(frozen=True)
class Settings:
    allow_origins: List[str] = field(default_factory=lambda: _env_list('ALLOW_ORIGINS', '*'))
    debug: bool = field(default_factory=lambda: _env_bool('DEBUG'))
    log_level: str = field(default_factory=lambda: os.getenv('LOG_LEVEL', 'INFO').upper())

    max_upload_size_mb: int = field(default_factory=lambda: int(os.getenv('MAX_UPLOAD_SIZE_MB', '10')))

    advisor_name: str = field(default_factory=lambda: os.getenv('ADVISOR_NAME', 'Student Mentor'))
    advisor_email: str = field(default_factory=lambda: os.getenv('ADVISOR_EMAIL', 'mentor@example.com'))

    store_retry_attempts: int = field(default_factory=lambda: int(os.getenv('STORE_RETRY_ATTEMPTS', '3')))
    store_retry_backoff_seconds: float = field(
        default_factory=lambda: float(os.getenv('STORE_RETRY_BACKOFF_SECONDS', '0.1'))
    )

    seed_sample_data: bool = field(default_factory=lambda: _env_bool('SEED_SAMPLE_DATA'))

    @property
    def max_upload_size(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024


settings = Settings()
