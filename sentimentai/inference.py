"""
Client for the local emotion/sentiment inference server.

The server exposes ``GET /health`` and ``POST /predict``. Predict accepts
either a ``video_url`` form field or a ``video_file`` upload.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

import requests

from sentimentai.config import Settings, get_settings
from sentimentai.errors import UpstreamError, UpstreamUnavailable

logger = logging.getLogger("sentimentai.inference")


class InferenceClient:
    """Thin HTTP client for the inference server."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self.base_url = (base_url or settings.inference_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.request_timeout_seconds
        self._session = session or requests.Session()
        self.last_latency_ms: Optional[float] = None

    def health(self) -> Dict[str, Any]:
        """
        Fetch the server's health payload.

        Raises:
            UpstreamUnavailable: If the server is unreachable or not ready
        """
        try:
            resp = self._session.get(f"{self.base_url}/health", timeout=min(self.timeout, 10.0))
        except requests.RequestException as exc:
            raise UpstreamUnavailable(
                f"Cannot connect to local sentiment model at {self.base_url}"
            ) from exc
        if resp.status_code != 200:
            raise UpstreamUnavailable("Local sentiment model is not responding")
        try:
            payload = resp.json()
        except ValueError:
            payload = {"raw": resp.text}
        return payload if isinstance(payload, dict) else {"status": payload}

    def is_healthy(self) -> bool:
        try:
            self.health()
        except UpstreamUnavailable:
            return False
        return True

    def predict_url(self, video_url: str) -> Any:
        """Ask the server to fetch and analyze a video by URL."""
        return self._predict(data={"video_url": video_url})

    def predict_bytes(self, data: bytes, filename: str) -> Any:
        """Upload raw video bytes for analysis."""
        return self._predict(files={"video_file": (filename, data, "video/mp4")})

    def _predict(self, data=None, files=None) -> Any:
        start = time.perf_counter()
        try:
            resp = self._session.post(
                f"{self.base_url}/predict",
                data=data,
                files=files,
                timeout=self.timeout,
            )
        except requests.ConnectionError as exc:
            raise UpstreamUnavailable(
                f"Cannot connect to local sentiment model at {self.base_url}"
            ) from exc
        except requests.RequestException as exc:
            raise UpstreamError(f"Model prediction failed: {exc}") from exc
        finally:
            self.last_latency_ms = (time.perf_counter() - start) * 1000

        if not resp.ok:
            logger.error("Local model error: %s - %s", resp.status_code, resp.text[:500])
            raise UpstreamError(
                f"Model prediction failed: {resp.status_code}",
                status=resp.status_code,
            )
        try:
            return resp.json()
        except ValueError as exc:
            raise UpstreamError("Model returned a non-JSON response") from exc
