"""Per-user burst limit for the model-backed endpoints.

/generate-tags, /generate-enhanced-tags and /generate-ai-analysis each
cost a Gemini call on a miss, so a user gets at most rpm_limit of them in
any sliding 60 second window. Monthly and daily plan quotas live in
services.usage; this only stops bursts.

Redis keys:
- rate:rpm:{user_id}: sorted set of request stamps scored by epoch seconds

Redis being absent or failing never blocks a request.
"""

import time
from uuid import UUID, uuid4

from linkranger.errors import ApiError, ApiErrorCode
from linkranger.logging import get_logger
from linkranger.services.redact import safe_kv

logger = get_logger(__name__)

DEFAULT_RPM_LIMIT = 20
RPM_WINDOW_SECONDS = 60


def rpm_key(user_id: UUID) -> str:
    return f"rate:rpm:{user_id}"


class RateLimiter:
    def __init__(self, redis_client=None, rpm_limit: int = DEFAULT_RPM_LIMIT):
        """
        Args:
            redis_client: Sync redis client, or None to disable limiting.
            rpm_limit: Requests allowed per user per window.
        """
        self._redis = redis_client
        self._rpm_limit = rpm_limit

    @property
    def redis_available(self) -> bool:
        if self._redis is None:
            return False
        try:
            self._redis.ping()
        except Exception as e:
            logger.warning("rate_limit.redis_unreachable", error=str(e))
            return False
        return True

    def _record_and_count(self, key: str) -> int:
        """Add this request to the window and return the window's size."""
        now = time.time()
        window_start = now - RPM_WINDOW_SECONDS

        pipe = self._redis.pipeline()
        pipe.zremrangebyscore(key, 0, window_start)
        pipe.zadd(key, {f"{now}:{uuid4().hex}": now})
        pipe.zcount(key, window_start, now)
        # Idle users' windows expire on their own
        pipe.expire(key, RPM_WINDOW_SECONDS * 2)
        _, _, count, _ = pipe.execute()
        return count

    def check_rpm_limit(self, user_id: UUID) -> None:
        """Count this request against the user's window.

        Raises:
            ApiError(E_RATE_LIMITED): The window already holds rpm_limit requests.
        """
        if not self.redis_available:
            return

        try:
            count = self._record_and_count(rpm_key(user_id))
        except Exception as e:
            logger.warning("rate_limit.check_failed", error=str(e))
            return

        if count > self._rpm_limit:
            logger.warning(
                "rate_limit.blocked", **safe_kv(count=count, rpm_limit=self._rpm_limit)
            )
            raise ApiError(
                ApiErrorCode.E_RATE_LIMITED,
                f"Rate limit exceeded: {self._rpm_limit} requests per minute",
            )
