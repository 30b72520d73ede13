"""Global configuration for SentimentAI."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Optional


DEFAULT_INFERENCE_URL = "http://127.0.0.1:8000"
DEFAULT_DB_PATH = "sentimentai.db"
DEFAULT_MAX_REQUESTS = 100
DEFAULT_QUOTA_RESET_DAYS = 30
DEFAULT_REQUEST_TIMEOUT = 120.0


@dataclass(frozen=True)
class Settings:
    """Process-wide settings. Override per test with set_settings()."""
    inference_base_url: str = DEFAULT_INFERENCE_URL
    db_path: str = DEFAULT_DB_PATH
    max_requests: int = DEFAULT_MAX_REQUESTS
    quota_reset_days: int = DEFAULT_QUOTA_RESET_DAYS
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT
    key_prefix: str = "inference"
    cloudinary_cloud_name: Optional[str] = None
    cloudinary_api_key: Optional[str] = None
    cloudinary_api_secret: Optional[str] = None

    @property
    def cloudinary_configured(self) -> bool:
        return bool(
            self.cloudinary_cloud_name
            and self.cloudinary_api_key
            and self.cloudinary_api_secret
        )


_settings: Optional[Settings] = None


def _int_env(var_name: str, default: int) -> int:
    value = os.getenv(var_name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _float_env(var_name: str, default: float) -> float:
    value = os.getenv(var_name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def load_settings() -> Settings:
    """Build settings from the environment."""
    return Settings(
        inference_base_url=os.getenv("SENTIMENTAI_INFERENCE_URL", DEFAULT_INFERENCE_URL).rstrip("/"),
        db_path=os.getenv("SENTIMENTAI_DB_PATH", DEFAULT_DB_PATH),
        max_requests=_int_env("SENTIMENTAI_MAX_REQUESTS", DEFAULT_MAX_REQUESTS),
        quota_reset_days=_int_env("SENTIMENTAI_QUOTA_RESET_DAYS", DEFAULT_QUOTA_RESET_DAYS),
        request_timeout_seconds=_float_env("SENTIMENTAI_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT),
        cloudinary_cloud_name=os.getenv("CLOUDINARY_CLOUD_NAME") or None,
        cloudinary_api_key=os.getenv("CLOUDINARY_API_KEY") or None,
        cloudinary_api_secret=os.getenv("CLOUDINARY_API_SECRET") or None,
    )


def get_settings() -> Settings:
    """Return current settings, loading them from the environment on first use."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def set_settings(settings: Optional[Settings] = None, **overrides) -> Settings:
    """Replace settings at runtime. Passing nothing reloads from the environment."""
    global _settings
    if settings is None and not overrides:
        _settings = load_settings()
        return _settings
    base = settings or get_settings()
    if overrides:
        base = replace(base, **overrides)
    if base.max_requests <= 0:
        raise ValueError("max_requests must be positive")
    if base.quota_reset_days <= 0:
        raise ValueError("quota_reset_days must be positive")
    _settings = base
    return _settings
