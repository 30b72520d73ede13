"""
API key authentication and monthly quota enforcement.

Quota is a request counter per user that resets every ``quota_reset_days``.
The check-and-increment is delegated to the storage backend as one atomic
conditional update.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sentimentai.config import Settings, get_settings
from sentimentai.errors import NotFound, QuotaExceeded, Unauthorized
from sentimentai.models import ApiQuota
from sentimentai.storage import StorageBackend

logger = logging.getLogger("sentimentai.quota")


def parse_bearer(authorization: Optional[str]) -> Optional[str]:
    """Extract the API key from an ``Authorization`` header value."""
    if not authorization:
        return None
    value = authorization.strip()
    scheme, _, rest = value.partition(" ")
    if scheme.lower() == "bearer":
        value = rest.strip()
    return value or None


def generate_secret_key() -> str:
    return "sa_" + secrets.token_urlsafe(32)


class QuotaManager:
    """
    Resolves API keys to users and meters their monthly requests.

    Example:
        ```python
        quotas = QuotaManager(SQLiteStorage("sentimentai.db"))
        quota = quotas.provision("user_123")

        caller = quotas.authenticate(f"Bearer {quota.secret_key}")
        quotas.require_quota(caller.user_id)  # raises QuotaExceeded when used up
        ```
    """

    def __init__(
        self,
        storage: StorageBackend,
        settings: Optional[Settings] = None,
        clock=None,
    ):
        self.storage = storage
        self.settings = settings or get_settings()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _reset_cutoff(self, now: datetime) -> datetime:
        return now - timedelta(days=self.settings.quota_reset_days)

    def provision(self, user_id: str, max_requests: Optional[int] = None) -> ApiQuota:
        """Create a quota record and API key for a user, or return the existing one."""
        existing = self.storage.get_quota(user_id)
        if existing:
            return existing
        quota = ApiQuota(
            user_id=user_id,
            secret_key=generate_secret_key(),
            max_requests=max_requests or self.settings.max_requests,
            last_reset_date=self._clock(),
        )
        self.storage.create_quota(quota)
        logger.info("Provisioned API quota for user %s (max %d)", user_id, quota.max_requests)
        return quota

    def authenticate(self, authorization: Optional[str]) -> ApiQuota:
        """
        Resolve a bearer credential to the caller's quota record.

        Raises:
            Unauthorized: If the key is missing or unknown
        """
        secret_key = parse_bearer(authorization)
        if not secret_key:
            raise Unauthorized("API key required")

        quota = self.storage.get_quota_by_key(secret_key)
        if quota is None:
            logger.warning("Rejected request with unknown API key")
            raise Unauthorized("Invalid API key")
        return quota

    def check_and_update_quota(self, user_id: str, deduct: bool = True) -> bool:
        """
        Check whether the user has quota left, consuming one request if asked.

        Args:
            user_id: The user to check
            deduct: Whether this call counts against the quota

        Returns:
            True if quota was available, False if exhausted (nothing consumed)
        """
        now = self._clock()
        return self.storage.consume_request(
            user_id,
            now=now,
            reset_cutoff=self._reset_cutoff(now),
            deduct=deduct,
        )

    def require_quota(self, user_id: str) -> None:
        """
        Consume one request or raise.

        Raises:
            QuotaExceeded: If the monthly quota is used up
        """
        if self.check_and_update_quota(user_id, deduct=True):
            return
        quota = self.storage.get_quota(user_id)
        used = quota.requests_used if quota else 0
        limit = quota.max_requests if quota else 0
        logger.info("Quota exceeded for user %s (%d/%d)", user_id, used, limit)
        raise QuotaExceeded(user_id, used, limit)

    def usage(self, user_id: str) -> dict[str, Any]:
        """Current usage for the monthly window."""
        quota = self.storage.get_quota(user_id)
        if quota is None:
            raise NotFound(f"No quota for user '{user_id}'")

        now = self._clock()
        used = quota.requests_used
        last_reset = quota.last_reset_date
        if last_reset <= self._reset_cutoff(now):
            # Window already lapsed; the next consume will reset it.
            used = 0
            last_reset = now

        return {
            "user_id": quota.user_id,
            "requests_used": used,
            "max_requests": quota.max_requests,
            "remaining": max(quota.max_requests - used, 0),
            "percent_used": round(min(used / quota.max_requests, 1.0) * 100),
            "last_reset_date": last_reset.isoformat(),
            "next_reset_date": (last_reset + timedelta(days=self.settings.quota_reset_days)).isoformat(),
        }
