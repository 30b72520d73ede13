"""
SentimentAI - Emotion and sentiment analysis for uploaded videos.

Usage:
    from sentimentai import SentimentService, SQLiteStorage

    service = SentimentService(SQLiteStorage("sentimentai.db"))
    quota = service.quotas.provision("user_123")
    auth = f"Bearer {quota.secret_key}"

    ticket = service.create_upload(auth, ".mp4")
    key = service.upload_video(auth, ticket.file_id, "clip.mp4", data)

    analysis = service.analyze(auth, key)
    print(analysis.summary.top_emotion)   # LabelScore(label='joy', confidence=0.8)
"""

from sentimentai.analysis import normalize_analysis, summarize
from sentimentai.blob_store import CloudinaryBlobStore, InMemoryBlobStore, build_blob_store
from sentimentai.config import Settings, get_settings, set_settings
from sentimentai.errors import (
    AlreadyAnalyzed,
    Forbidden,
    Internal,
    InvalidInput,
    NotFound,
    QuotaExceeded,
    SentimentError,
    StorageError,
    Unauthorized,
    UpstreamError,
    UpstreamUnavailable,
)
from sentimentai.inference import InferenceClient
from sentimentai.models import (
    AnalysisResult,
    AnalysisSummary,
    ApiQuota,
    LabelScore,
    Utterance,
    VideoFile,
)
from sentimentai.quota import QuotaManager
from sentimentai.retry import RetryPolicy
from sentimentai.service import Analysis, SentimentService, UploadTicket
from sentimentai.storage import InMemoryStorage, SQLiteStorage


__version__ = "0.1.0"
__all__ = [
    # Service
    "SentimentService",
    "Analysis",
    "UploadTicket",
    "QuotaManager",
    "InferenceClient",
    "RetryPolicy",
    # Storage
    "InMemoryStorage",
    "SQLiteStorage",
    "InMemoryBlobStore",
    "CloudinaryBlobStore",
    "build_blob_store",
    # Config
    "Settings",
    "get_settings",
    "set_settings",
    # Models
    "ApiQuota",
    "VideoFile",
    "AnalysisResult",
    "AnalysisSummary",
    "Utterance",
    "LabelScore",
    "normalize_analysis",
    "summarize",
    # Errors
    "SentimentError",
    "Unauthorized",
    "Forbidden",
    "NotFound",
    "InvalidInput",
    "AlreadyAnalyzed",
    "QuotaExceeded",
    "UpstreamUnavailable",
    "UpstreamError",
    "StorageError",
    "Internal",
]
