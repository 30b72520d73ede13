"""Shared fixtures."""

import pytest

from sentimentai.blob_store import InMemoryBlobStore
from sentimentai.config import Settings
from sentimentai.errors import UpstreamUnavailable
from sentimentai.retry import RetryPolicy
from sentimentai.service import SentimentService
from sentimentai.storage import InMemoryStorage


EMOTION_RESPONSE = {
    "emotion": {"prediction": "joy", "probabilities": {"joy": 0.8, "neutral": 0.2}},
    "sentiment": {"prediction": "positive", "probabilities": {"positive": 0.7, "negative": 0.3}},
}


class FakeInference:
    """Stands in for the inference server."""

    def __init__(self, url_response=None, bytes_response=None, url_error=None,
                 bytes_error=None, healthy=True):
        self.url_response = url_response if url_response is not None else EMOTION_RESPONSE
        self.bytes_response = bytes_response if bytes_response is not None else EMOTION_RESPONSE
        self.url_error = url_error
        self.bytes_error = bytes_error
        self.healthy = healthy
        self.calls = []
        self.last_latency_ms = 12.5

    def health(self):
        if not self.healthy:
            raise UpstreamUnavailable()
        return {"status": "healthy"}

    def is_healthy(self):
        return self.healthy

    def predict_url(self, video_url):
        self.calls.append(("url", video_url))
        if self.url_error:
            raise self.url_error
        return self.url_response

    def predict_bytes(self, data, filename):
        self.calls.append(("bytes", filename))
        if self.bytes_error:
            raise self.bytes_error
        return self.bytes_response


@pytest.fixture
def settings():
    return Settings(max_requests=3)


@pytest.fixture
def inference():
    return FakeInference()


@pytest.fixture
def service(settings, inference):
    return SentimentService(
        storage=InMemoryStorage(),
        blob_store=InMemoryBlobStore(),
        inference=inference,
        settings=settings,
        fetch_policy=RetryPolicy(attempts=3, delay_seconds=0, sleep=lambda s: None),
    )


@pytest.fixture
def alice(service):
    quota = service.quotas.provision("alice")
    return f"Bearer {quota.secret_key}"


@pytest.fixture
def bob(service):
    quota = service.quotas.provision("bob")
    return f"Bearer {quota.secret_key}"
