"""
Metrics and logging for SentimentAI.

Counts uploads, analyses and failures, and keeps inference latency samples.
"""

import json
import logging
import statistics
from collections import defaultdict
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Optional


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: int = logging.INFO) -> logging.Logger:
    """Attach a stream handler to the ``sentimentai`` logger once."""
    logger = logging.getLogger("sentimentai")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    logger.setLevel(level)
    return logger


@dataclass
class MetricEvent:
    """A single metric event."""
    timestamp: str
    event_type: str  # upload, analysis, error
    user_id: str
    data: dict[str, Any]


class MetricsCollector:
    """
    Collects counters and latency samples from service operations.

    Optionally appends every event to a JSONL file.
    """

    def __init__(
        self,
        metrics_file: Optional[Path] = None,
        enable_logging: bool = True,
    ):
        """
        Initialize metrics collector.

        Args:
            metrics_file: Optional file to write events to (JSONL format)
            enable_logging: Whether to log each event
        """
        self.metrics_file = Path(metrics_file) if metrics_file else None
        self.enable_logging = enable_logging
        self.logger = logging.getLogger("sentimentai.metrics")
        self._lock = Lock()

        self._events: list[MetricEvent] = []
        self._counters: dict[str, int] = defaultdict(int)
        self._histograms: dict[str, list[float]] = defaultdict(list)

    def record_upload(self, user_id: str, key: str, size_bytes: int) -> None:
        self._record_event("upload", user_id, {"key": key, "size_bytes": size_bytes})
        with self._lock:
            self._counters["uploads_total"] += 1
            self._histograms["upload_bytes"].append(float(size_bytes))

    def record_analysis(
        self,
        user_id: str,
        key: str,
        mode: str,
        latency_ms: float,
        utterances: int,
    ) -> None:
        """
        Record a successful analysis.

        Args:
            user_id: Caller
            key: Blob key analyzed
            mode: "url" or "bytes", whichever predict call succeeded
            latency_ms: Predict call latency
            utterances: Number of utterances returned
        """
        self._record_event(
            "analysis",
            user_id,
            {"key": key, "mode": mode, "latency_ms": latency_ms, "utterances": utterances},
        )
        with self._lock:
            self._counters["analyses_total"] += 1
            self._counters[f"analyses_mode_{mode}"] += 1
            self._histograms["inference_latency_ms"].append(latency_ms)

    def record_error(self, user_id: str, reason: str, message: str, **extra: Any) -> None:
        self._record_event(
            "error",
            user_id,
            {"reason": reason, "message": message, **extra},
            level=logging.WARNING,
        )
        with self._lock:
            self._counters["errors_total"] += 1
            self._counters[f"errors_{reason}"] += 1

    def _record_event(
        self,
        event_type: str,
        user_id: str,
        data: dict,
        level: int = logging.INFO,
    ) -> None:
        event = MetricEvent(
            timestamp=datetime.now(timezone.utc).isoformat(),
            event_type=event_type,
            user_id=user_id,
            data=data,
        )
        with self._lock:
            self._events.append(event)
            if self.metrics_file:
                with open(self.metrics_file, "a") as f:
                    f.write(json.dumps(asdict(event)) + "\n")

        if self.enable_logging:
            self.logger.log(level, "%s: user_id=%s, data=%s", event_type.upper(), user_id, data)

    def get_stats(self) -> dict:
        """Aggregated counters and latency percentiles."""
        with self._lock:
            latency = list(self._histograms.get("inference_latency_ms", []))
            counters = dict(self._counters)
            total_events = len(self._events)

        return {
            "counters": counters,
            "inference_latency": {
                "avg_ms": statistics.mean(latency) if latency else 0,
                "p50_ms": statistics.median(latency) if latency else 0,
                "p95_ms": (
                    statistics.quantiles(latency, n=20)[18]
                    if len(latency) >= 20
                    else (max(latency) if latency else 0)
                ),
            },
            "total_events": total_events,
        }

    def reset(self) -> None:
        with self._lock:
            self._events.clear()
            self._counters.clear()
            self._histograms.clear()
