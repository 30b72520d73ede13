"""Tests for upload and inference orchestration."""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import pytest

from sentimentai.blob_store import BlobStoreError, InMemoryBlobStore
from sentimentai.errors import (
    AlreadyAnalyzed,
    Forbidden,
    InvalidInput,
    NotFound,
    QuotaExceeded,
    StorageError,
    Unauthorized,
    UpstreamError,
    UpstreamUnavailable,
)

from conftest import FakeInference


def _used(service, user_id):
    return service.quotas.storage.get_quota(user_id).requests_used


def _upload(service, auth, name="clip.mp4", data=b"\x00video"):
    ticket = service.create_upload(auth, "." + name.rsplit(".", 1)[-1])
    return service.upload_video(auth, ticket.file_id, name, data)


class TestCreateUpload:
    """Upload init step."""

    def test_returns_ticket(self, service, alice):
        ticket = service.create_upload(alice, ".MP4")

        assert ticket.upload_method == "server"
        assert ticket.file_type == ".mp4"
        assert ticket.key == f"inference/{ticket.file_id}"

    def test_ids_are_unique(self, service, alice):
        ids = {service.create_upload(alice, ".mp4").file_id for _ in range(50)}
        assert len(ids) == 50

    def test_invalid_type(self, service, alice):
        with pytest.raises(InvalidInput):
            service.create_upload(alice, ".exe")

    def test_requires_key(self, service):
        with pytest.raises(Unauthorized):
            service.create_upload(None, ".mp4")


class TestUploadVideo:
    """Blob write then file record."""

    def test_creates_unanalyzed_record(self, service, alice):
        key = _upload(service, alice)

        video = service.storage.get_file(key)
        assert video.user_id == "alice"
        assert video.analyzed is False
        assert service.blob_store.fetch(key) == b"\x00video"

    def test_exe_rejected_before_blob_store(self, service, alice):
        service.blob_store = MagicMock()

        with pytest.raises(InvalidInput):
            service.upload_video(alice, "abc", "clip.exe", b"MZ")

        service.blob_store.put.assert_not_called()

    def test_missing_file(self, service, alice):
        with pytest.raises(InvalidInput, match="No file provided"):
            service.upload_video(alice, "abc", None, None)

    def test_missing_file_id_generates_one(self, service, alice):
        key = service.upload_video(alice, None, "clip.mov", b"data")
        assert key.startswith("inference/")
        assert service.storage.get_file(key) is not None

    def test_reused_file_id(self, service, alice):
        service.upload_video(alice, "abc", "clip.mp4", b"data")
        with pytest.raises(InvalidInput):
            service.upload_video(alice, "abc", "clip.mp4", b"data")

    def test_blob_failure_leaves_no_record(self, service, alice):
        service.blob_store = MagicMock()
        service.blob_store.put.side_effect = BlobStoreError("cdn down")

        with pytest.raises(StorageError):
            service.upload_video(alice, "abc", "clip.mp4", b"data")

        assert service.storage.get_file("inference/abc") is None

    def test_record_failure_surfaces(self, service, alice):
        service.storage.create_file = MagicMock(side_effect=StorageError("db down"))

        with pytest.raises(StorageError):
            service.upload_video(alice, "abc", "clip.mp4", b"data")

        # The record is written first, so no blob is stored.
        assert "inference/abc" not in service.blob_store

    def test_record_released_after_upload(self, service, alice):
        key = service.upload_video(alice, "abc", "clip.mp4", b"data")
        assert service.storage.get_file(key).analyzing is False

    def test_concurrent_reuse_of_file_id(self, service, alice):
        """Only one of two uploads racing on one fileId writes a blob."""
        blob_store = service.blob_store
        barrier = threading.Barrier(2)
        real_get_file = service.storage.get_file

        def racing_get_file(key):
            # Both requests pass the duplicate check before either writes.
            found = real_get_file(key)
            if found is None and threading.current_thread().name.startswith("upload"):
                barrier.wait(timeout=5)
            return found

        service.storage.get_file = racing_get_file
        puts = []
        real_put = blob_store.put

        def counting_put(key, data, filename=None):
            puts.append(data)
            return real_put(key, data, filename=filename)

        service.blob_store.put = counting_put

        def upload(data):
            try:
                service.upload_video(alice, "abc", "clip.mp4", data)
                return "ok"
            except InvalidInput:
                return "duplicate"

        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="upload") as pool:
            results = list(pool.map(upload, [b"first", b"second"]))

        assert sorted(results) == ["duplicate", "ok"]
        assert len(puts) == 1
        assert blob_store.fetch("inference/abc") == puts[0]

    def test_records_metrics(self, service, alice):
        _upload(service, alice)
        assert service.metrics.get_stats()["counters"]["uploads_total"] == 1


class TestAnalyze:
    """Preconditions, quota and the analyzed flip."""

    def test_end_to_end(self, service, alice):
        key = _upload(service, alice)

        analysis = service.analyze(alice, key)

        assert analysis.mode == "url"
        assert analysis.summary.top_emotion.label == "joy"
        body = analysis.to_dict()
        assert body["analysis"]["utterances"][0]["emotions"][0] == {"label": "joy", "confidence": 0.8}
        assert service.storage.get_file(key).analyzed is True
        assert _used(service, "alice") == 1

        with pytest.raises(AlreadyAnalyzed):
            service.analyze(alice, key)
        assert _used(service, "alice") == 1

    def test_calls_model_with_blob_url(self, service, alice, inference):
        key = _upload(service, alice)
        service.analyze(alice, key)
        assert inference.calls == [("url", f"memory://{key}")]

    def test_missing_key(self, service, alice):
        with pytest.raises(InvalidInput, match="Key is required"):
            service.analyze(alice, "")

    def test_unknown_key(self, service, alice):
        with pytest.raises(NotFound):
            service.analyze(alice, "inference/nope")
        assert _used(service, "alice") == 0

    def test_other_users_file(self, service, alice, bob):
        key = _upload(service, alice)

        with pytest.raises(Forbidden):
            service.analyze(bob, key)

        assert _used(service, "bob") == 0
        assert _used(service, "alice") == 0
        assert service.storage.get_file(key).analyzed is False

    def test_bad_key(self, service):
        with pytest.raises(Unauthorized):
            service.analyze("Bearer wrong", "inference/x")

    def test_quota_exceeded(self, service, alice):
        keys = [_upload(service, alice) for _ in range(4)]
        for key in keys[:3]:
            service.analyze(alice, key)

        with pytest.raises(QuotaExceeded):
            service.analyze(alice, keys[3])

        assert service.storage.get_file(keys[3]).analyzed is False
        assert _used(service, "alice") == 3

    def test_falls_back_to_bytes(self, service, alice, inference):
        inference.url_error = UpstreamError("cannot fetch url")
        key = _upload(service, alice)

        analysis = service.analyze(alice, key)

        assert analysis.mode == "bytes"
        file_id = key.split("/")[1]
        assert inference.calls == [("url", f"memory://{key}"), ("bytes", f"{file_id}.mp4")]

    def test_blob_fetch_retried(self, service, alice, inference):
        inference.url_error = UpstreamError("cannot fetch url")
        key = _upload(service, alice)
        real_fetch = service.blob_store.fetch
        attempts = []

        def flaky_fetch(k):
            attempts.append(k)
            if len(attempts) < 3:
                raise BlobStoreError("propagating")
            return real_fetch(k)

        service.blob_store.fetch = flaky_fetch

        assert service.analyze(alice, key).mode == "bytes"
        assert len(attempts) == 3

    def test_blob_never_available(self, service, alice, inference):
        inference.url_error = UpstreamError("cannot fetch url")
        key = _upload(service, alice)
        service.blob_store.fetch = MagicMock(side_effect=BlobStoreError("404"))

        with pytest.raises(UpstreamError):
            service.analyze(alice, key)

        assert service.blob_store.fetch.call_count == 3
        assert service.storage.get_file(key).analyzed is False

    def test_failure_charges_quota_but_keeps_file_analyzable(self, service, alice, inference):
        inference.url_error = UpstreamError("url failed")
        inference.bytes_error = UpstreamError("model crashed")
        key = _upload(service, alice)

        with pytest.raises(UpstreamError):
            service.analyze(alice, key)

        assert service.storage.get_file(key).analyzed is False
        assert _used(service, "alice") == 1

        inference.url_error = None
        service.analyze(alice, key)
        assert service.storage.get_file(key).analyzed is True
        assert _used(service, "alice") == 2

    def test_model_down(self, service, alice, inference):
        inference.healthy = False
        key = _upload(service, alice)

        with pytest.raises(UpstreamUnavailable):
            service.analyze(alice, key)

        assert inference.calls == []
        assert service.storage.get_file(key).analyzed is False

    def test_model_dies_mid_request(self, service, alice, inference):
        key = _upload(service, alice)
        inference.url_error = UpstreamError("url failed")
        inference.bytes_error = UpstreamError("500")
        inference.is_healthy = lambda: False

        with pytest.raises(UpstreamUnavailable):
            service.analyze(alice, key)

    def test_concurrent_requests_charge_once(self, service, alice, inference):
        """Two requests racing on one key: one predict call and one charge."""
        key = _upload(service, alice)
        real_predict = inference.predict_url

        def slow_predict(video_url):
            time.sleep(0.2)
            return real_predict(video_url)

        inference.predict_url = slow_predict
        barrier = threading.Barrier(2)

        def analyze():
            barrier.wait(timeout=5)
            try:
                service.analyze(alice, key)
                return "ok"
            except AlreadyAnalyzed:
                return "already_analyzed"

        with ThreadPoolExecutor(max_workers=2) as pool:
            results = list(pool.map(lambda _: analyze(), range(2)))

        assert sorted(results) == ["already_analyzed", "ok"]
        assert _used(service, "alice") == 1
        assert len(inference.calls) == 1

    def test_request_during_analysis_not_charged(self, service, alice):
        key = _upload(service, alice)
        assert service.storage.claim_analysis(key) is True

        with pytest.raises(AlreadyAnalyzed):
            service.analyze(alice, key)

        assert _used(service, "alice") == 0

    def test_claim_released_on_quota_exceeded(self, service, alice):
        keys = [_upload(service, alice) for _ in range(4)]
        for key in keys[:3]:
            service.analyze(alice, key)

        with pytest.raises(QuotaExceeded):
            service.analyze(alice, keys[3])

        assert service.storage.get_file(keys[3]).analyzing is False

    def test_claim_released_on_unexpected_error(self, service, alice):
        key = _upload(service, alice)
        service.storage.mark_analyzed = MagicMock(side_effect=RuntimeError("disk"))

        with pytest.raises(RuntimeError):
            service.analyze(alice, key)

        assert service.storage.get_file(key).analyzing is False

    def test_utterance_response(self, service, alice, inference):
        inference.url_response = {
            "utterances": [
                {"start_time": 0, "end_time": 2, "text": "hi",
                 "emotions": [{"label": "sadness", "confidence": 0.9}],
                 "sentiments": [{"label": "negative", "confidence": 0.8}]},
            ]
        }
        key = _upload(service, alice)

        analysis = service.analyze(alice, key)

        assert analysis.result.utterances[0].text == "hi"
        assert analysis.summary.top_sentiment.label == "negative"


class TestUsage:
    def test_usage_through_service(self, service, alice):
        key = _upload(service, alice)
        service.analyze(alice, key)

        usage = service.usage(alice)
        assert usage["requests_used"] == 1
        assert usage["remaining"] == 2


def test_default_collaborators():
    """Service builds in-memory collaborators when none are given."""
    from sentimentai.service import SentimentService

    service = SentimentService(inference=FakeInference())
    assert isinstance(service.blob_store, InMemoryBlobStore)
