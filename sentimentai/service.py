"""
Orchestration for upload and sentiment inference.

Every public method takes the raw ``Authorization`` header value, resolves the
caller, and raises a :class:`~sentimentai.errors.SentimentError` subclass for
every expected failure.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sentimentai.analysis import normalize_analysis, summarize
from sentimentai.blob_store import BlobStore, BlobStoreError, InMemoryBlobStore
from sentimentai.config import Settings, get_settings
from sentimentai.errors import (
    AlreadyAnalyzed,
    Forbidden,
    InvalidInput,
    NotFound,
    SentimentError,
    StorageError,
    UpstreamError,
    UpstreamUnavailable,
)
from sentimentai.inference import InferenceClient
from sentimentai.metrics import MetricsCollector
from sentimentai.models import AnalysisResult, AnalysisSummary, VideoFile
from sentimentai.quota import QuotaManager
from sentimentai.retry import BLOB_FETCH_POLICY, RetryExhaustedError, RetryPolicy
from sentimentai.storage import InMemoryStorage, StorageBackend
from sentimentai.validation import validate_file_id, validate_file_type, validate_key

logger = logging.getLogger("sentimentai.service")


@dataclass
class UploadTicket:
    """Returned by the upload init step; the client echoes ``file_id`` back."""
    file_id: str
    file_type: str
    key: str
    upload_method: str = "server"


@dataclass
class Analysis:
    key: str
    result: AnalysisResult
    summary: AnalysisSummary
    mode: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "analysis": self.result.to_dict(),
            "summary": self.summary.to_dict(),
        }


class SentimentService:
    """
    Upload videos and run them through the inference server.

    Example:
        ```python
        service = SentimentService(SQLiteStorage("sentimentai.db"))
        auth = f"Bearer {api_key}"

        ticket = service.create_upload(auth, ".mp4")
        key = service.upload_video(auth, ticket.file_id, "clip.mp4", data)
        analysis = service.analyze(auth, key)
        ```
    """

    def __init__(
        self,
        storage: Optional[StorageBackend] = None,
        blob_store: Optional[BlobStore] = None,
        inference: Optional[InferenceClient] = None,
        settings: Optional[Settings] = None,
        quotas: Optional[QuotaManager] = None,
        fetch_policy: RetryPolicy = BLOB_FETCH_POLICY,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.settings = settings or get_settings()
        self.storage = storage if storage is not None else InMemoryStorage()
        self.blob_store = blob_store if blob_store is not None else InMemoryBlobStore()
        self.inference = inference or InferenceClient(settings=self.settings)
        self.quotas = quotas or QuotaManager(self.storage, settings=self.settings)
        self.fetch_policy = fetch_policy
        self.metrics = metrics or MetricsCollector(enable_logging=False)

    def _key_for(self, file_id: str) -> str:
        return f"{self.settings.key_prefix}/{file_id}"

    # =========================================================================
    # Upload
    # =========================================================================

    def create_upload(self, authorization: Optional[str], file_type: Optional[str]) -> UploadTicket:
        """Validate the declared type and hand out a fresh file id and key."""
        self.quotas.authenticate(authorization)
        extension = validate_file_type(file_type)
        file_id = str(uuid.uuid4())
        return UploadTicket(file_id=file_id, file_type=extension, key=self._key_for(file_id))

    def upload_video(
        self,
        authorization: Optional[str],
        file_id: Optional[str],
        filename: Optional[str],
        data: Optional[bytes],
    ) -> str:
        """
        Store the video and create its file record.

        Returns:
            The blob key

        Raises:
            InvalidInput: Missing file or disallowed extension (nothing stored)
            StorageError: Blob or record write failed
        """
        caller = self.quotas.authenticate(authorization)

        if data is None or not filename:
            raise InvalidInput("No file provided")
        validate_file_type(filename)
        if not data:
            raise InvalidInput("Uploaded file is empty")

        if file_id:
            validate_file_id(file_id)
        else:
            file_id = str(uuid.uuid4())
        key = self._key_for(file_id)

        if self.storage.get_file(key) is not None:
            raise InvalidInput("fileId has already been used")

        # The record is created held, so the key is claimed before the blob
        # is written and cannot be analyzed until the blob exists.
        try:
            self.storage.create_file(VideoFile(key=key, user_id=caller.user_id, analyzing=True))
        except StorageError:
            if self.storage.get_file(key) is not None:
                raise InvalidInput("fileId has already been used")
            logger.error("File record write failed for %s", key)
            self.metrics.record_error(caller.user_id, "record_write", "record write failed", key=key)
            raise

        try:
            self.blob_store.put(key, data, filename=filename)
        except BlobStoreError as exc:
            logger.error("Blob upload failed for %s: %s", key, exc)
            self.metrics.record_error(caller.user_id, "blob_upload", str(exc), key=key)
            self.storage.delete_file(key)
            raise StorageError("Upload failed") from exc

        self.storage.release_analysis(key)

        self.metrics.record_upload(caller.user_id, key, len(data))
        logger.info("Stored %s (%d bytes) for user %s", key, len(data), caller.user_id)
        return key

    # =========================================================================
    # Inference
    # =========================================================================

    def analyze(self, authorization: Optional[str], key: Optional[str]) -> Analysis:
        """
        Run sentiment inference on an uploaded video, at most once per file.

        Preconditions, including an atomic claim on the file, are checked
        before quota is charged. Once charged, the request counts even if
        inference fails; the claim is released so the file can be retried.

        Raises:
            Unauthorized, InvalidInput, NotFound, Forbidden, AlreadyAnalyzed,
            QuotaExceeded, UpstreamUnavailable, UpstreamError
        """
        caller = self.quotas.authenticate(authorization)
        key = validate_key(key)

        video = self.storage.get_file(key)
        if video is None:
            raise NotFound()
        if video.user_id != caller.user_id:
            logger.warning("User %s tried to analyze %s owned by another user", caller.user_id, key)
            raise Forbidden()
        if video.analyzed:
            raise AlreadyAnalyzed(key)

        if not self.storage.claim_analysis(key):
            # Another request holds the file or has already analyzed it.
            raise AlreadyAnalyzed(key)

        try:
            self.quotas.require_quota(caller.user_id)
            try:
                raw, mode = self._predict(key)
            except SentimentError as exc:
                self.metrics.record_error(caller.user_id, exc.reason, exc.message, key=key)
                raise
            result = normalize_analysis(raw)
            self.storage.mark_analyzed(key)
        except Exception:
            self.storage.release_analysis(key)
            raise

        self.metrics.record_analysis(
            caller.user_id,
            key,
            mode=mode,
            latency_ms=self.inference.last_latency_ms or 0.0,
            utterances=len(result.utterances),
        )
        return Analysis(key=key, result=result, summary=summarize(result), mode=mode)

    def _predict(self, key: str) -> tuple[Any, str]:
        """URL-based predict first, then fetch the bytes and upload them."""
        self.inference.health()

        video_url = self.blob_store.url(key)
        try:
            return self.inference.predict_url(video_url), "url"
        except (UpstreamError, UpstreamUnavailable) as exc:
            logger.info("URL-based predict failed for %s (%s); uploading bytes", key, exc)

        try:
            data = self.fetch_policy.call(lambda: self.blob_store.fetch(key))
        except RetryExhaustedError as exc:
            raise UpstreamError(f"Failed to fetch video after retries: {exc.last_error}") from exc

        filename = f"{key.rsplit('/', 1)[-1]}.mp4"
        try:
            return self.inference.predict_bytes(data, filename), "bytes"
        except UpstreamError as exc:
            if not self.inference.is_healthy():
                raise UpstreamUnavailable() from exc
            raise

    # =========================================================================
    # Status
    # =========================================================================

    def usage(self, authorization: Optional[str]) -> Dict[str, Any]:
        caller = self.quotas.authenticate(authorization)
        return self.quotas.usage(caller.user_id)

    def health(self) -> Dict[str, Any]:
        """Inference server health payload; raises UpstreamUnavailable."""
        return self.inference.health()
