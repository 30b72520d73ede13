"""Shared data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ApiQuota:
    """Monthly request quota and API credential for a user."""
    user_id: str
    secret_key: str
    requests_used: int = 0
    max_requests: int = 100
    last_reset_date: datetime = field(default_factory=_utcnow)

    @property
    def remaining(self) -> int:
        return max(self.max_requests - self.requests_used, 0)


@dataclass
class VideoFile:
    """An uploaded video and whether it has been analyzed."""
    key: str
    user_id: str
    analyzed: bool = False
    # Set while an upload or analysis holds the record.
    analyzing: bool = False
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class LabelScore:
    label: str
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {"label": self.label, "confidence": self.confidence}


@dataclass
class Utterance:
    """A scored segment of the video."""
    start_time: float
    end_time: float
    text: str = ""
    emotions: List[LabelScore] = field(default_factory=list)
    sentiments: List[LabelScore] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start_time": self.start_time,
            "end_time": self.end_time,
            "text": self.text,
            "emotions": [e.to_dict() for e in self.emotions],
            "sentiments": [s.to_dict() for s in self.sentiments],
        }


@dataclass
class AnalysisResult:
    utterances: List[Utterance] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"utterances": [u.to_dict() for u in self.utterances]}


@dataclass
class AnalysisSummary:
    """Average confidence per label across all utterances."""
    emotions: List[LabelScore] = field(default_factory=list)
    sentiments: List[LabelScore] = field(default_factory=list)

    @property
    def top_emotion(self) -> Optional[LabelScore]:
        return self.emotions[0] if self.emotions else None

    @property
    def top_sentiment(self) -> Optional[LabelScore]:
        return self.sentiments[0] if self.sentiments else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "top_emotion": self.top_emotion.to_dict() if self.top_emotion else None,
            "top_sentiment": self.top_sentiment.to_dict() if self.top_sentiment else None,
            "emotions": [e.to_dict() for e in self.emotions],
            "sentiments": [s.to_dict() for s in self.sentiments],
        }
