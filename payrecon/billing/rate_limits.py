"""
Checkout and webhook throttles.

The checkout quota lives on the user row so every instance shares it.
The webhook limiter is owned by one engine instance unless a Redis
client is supplied, in which case a fixed per-minute counter is shared.
"""

import logging
import threading
import time
from collections import deque

import redis
from sqlalchemy import case, or_

from payrecon.errors import RateLimitError
from payrecon.models import User
from payrecon.utils import utcnow

logger = logging.getLogger(__name__)

WEBHOOK_RATE_LIMIT_KEY = "payrecon:webhook_rate"


class CheckoutQuota:
    def __init__(self, max_per_day=10):
        self.max_per_day = max_per_day

    @staticmethod
    def _is_same_day(moment, now):
        return moment is not None and moment.date() == now.date()

    def check(self, user, now=None):
        """Raise RateLimitError when the user already hit today's quota."""
        if user is None:
            return
        now = now or utcnow()
        if self._is_same_day(user.last_checkout_at, now) and (
            (user.checkout_count_today or 0) >= self.max_per_day
        ):
            logger.warning(
                "Checkout quota exhausted",
                extra={"user_id": user.id, "count": user.checkout_count_today},
            )
            raise RateLimitError(
                f"Maximum {self.max_per_day} checkouts per day exceeded",
                retry_after=self._seconds_until_midnight(now),
            )

    def record(self, user, now=None):
        """
        Count one checkout against today's quota with a conditional UPDATE.

        A concurrent checkout that took the last slot after ``check`` leaves
        nothing to update, which raises RateLimitError.
        """
        now = now or utcnow()
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        updated = User.query.filter(
            User.id == user.id,
            or_(
                User.last_checkout_at.is_(None),
                User.last_checkout_at < day_start,
                User.checkout_count_today < self.max_per_day,
            ),
        ).update(
            {
                "checkout_count_today": case(
                    (User.last_checkout_at >= day_start, User.checkout_count_today + 1),
                    else_=1,
                ),
                "last_checkout_at": now,
            },
            synchronize_session=False,
        )
        if updated != 1:
            logger.warning("Checkout quota exhausted by a concurrent checkout", extra={"user_id": user.id})
            raise RateLimitError(
                f"Maximum {self.max_per_day} checkouts per day exceeded",
                retry_after=self._seconds_until_midnight(now),
            )

    @staticmethod
    def _seconds_until_midnight(now):
        return 86400 - (now.hour * 3600 + now.minute * 60 + now.second)


class WebhookRateLimiter:
    """
    Sliding one-minute window of accepted webhook timestamps.

    ``allow()`` records the hit and returns False once the window holds
    more than ``max_per_minute`` entries.
    """

    window_seconds = 60

    def __init__(self, max_per_minute=100, redis_client=None, clock=time.monotonic):
        self.max_per_minute = max_per_minute
        self.redis_client = redis_client
        self.clock = clock
        self._hits = deque()
        self._lock = threading.Lock()

    def allow(self):
        if self.redis_client is not None:
            return self._allow_shared()
        return self._allow_local()

    def _allow_local(self):
        now = self.clock()
        with self._lock:
            cutoff = now - self.window_seconds
            while self._hits and self._hits[0] <= cutoff:
                self._hits.popleft()
            if len(self._hits) >= self.max_per_minute:
                return False
            self._hits.append(now)
            return True

    def _allow_shared(self):
        current_minute = int(time.time() // 60)
        key = f"{WEBHOOK_RATE_LIMIT_KEY}:{current_minute}"
        try:
            count = self.redis_client.incr(key)
            if count == 1:
                self.redis_client.expire(key, self.window_seconds)
        except redis.RedisError as e:
            logger.error(f"Shared webhook rate counter unavailable: {e}")
            return self._allow_local()
        return count <= self.max_per_minute
