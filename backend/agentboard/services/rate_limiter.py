"""
Sliding-window rate limiting with an atomic increment-and-check.

An allowed check consumes a slot immediately; whatever the caller does afterwards
(including failing on a duplicate) does not give it back. Denied checks consume
nothing.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable
from uuid import uuid4

import redis
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .. import database
from ..config import (
    APPLICATION_RATE_LIMIT,
    APPLICATION_RATE_WINDOW_S,
    JOB_POST_RATE_LIMIT,
    JOB_POST_RATE_WINDOW_S,
    RATE_LIMIT_BACKEND,
    REDIS_URL,
)
from ..models.rate_limit import RateLimitBucket, RateLimitEvent
from ..utils.error_handlers import AppError


logger = logging.getLogger(__name__)


class RateLimiterUnavailable(AppError):
    code = "rate_limiter_unavailable"

    def __init__(self, message: str = "Rate limiter temporarily unavailable"):
        super().__init__(message, status_code=503)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    limit: int
    reset_at: float


class RateLimiter:
    def __init__(self, *, limit: int, window_s: int, prefix: str, clock: Callable[[], float] = time.time):
        if limit < 1 or window_s < 1:
            raise ValueError("limit and window_s must be positive")
        self.limit = int(limit)
        self.window_s = int(window_s)
        self.prefix = prefix
        self._clock = clock

    def key(self, identifier: str | int) -> str:
        return f"{self.prefix}:{identifier}"

    def increment_and_check(self, identifier: str | int) -> RateLimitDecision:
        raise NotImplementedError


class DatabaseRateLimiter(RateLimiter):
    """
    Event log in `rate_limit_events`, serialized per key by locking the key's
    `rate_limit_buckets` row (SELECT ... FOR UPDATE; SQLite serializes writers).
    Runs in its own session so the decision commits independently of the caller.
    """

    def __init__(self, *, session_factory: Callable[[], Session] | None = None, **kwargs):
        super().__init__(**kwargs)
        self._session_factory = session_factory

    def _session(self) -> Session:
        if self._session_factory is not None:
            return self._session_factory()
        return database.SessionLocal()

    def _lock_bucket(self, db: Session, key: str) -> None:
        bucket = db.query(RateLimitBucket).filter(RateLimitBucket.key == key).with_for_update().first()
        if bucket is not None:
            return
        db.add(RateLimitBucket(key=key))
        try:
            db.flush()
        except IntegrityError:
            # Created concurrently; lock the existing row instead.
            db.rollback()
            db.query(RateLimitBucket).filter(RateLimitBucket.key == key).with_for_update().first()

    def increment_and_check(self, identifier: str | int) -> RateLimitDecision:
        key = self.key(identifier)
        now = self._clock()
        window_start = now - self.window_s

        db = self._session()
        try:
            self._lock_bucket(db, key)
            db.query(RateLimitEvent).filter(
                RateLimitEvent.key == key,
                RateLimitEvent.occurred_at <= window_start,
            ).delete(synchronize_session=False)
            count = db.query(func.count(RateLimitEvent.id)).filter(RateLimitEvent.key == key).scalar() or 0
            allowed = count < self.limit
            if allowed:
                db.add(RateLimitEvent(key=key, occurred_at=now))
                db.flush()
                count += 1
            oldest = db.query(func.min(RateLimitEvent.occurred_at)).filter(RateLimitEvent.key == key).scalar()
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Rate limit check failed for %s: %s", key, e)
            raise RateLimiterUnavailable() from e
        finally:
            db.close()

        reset_at = (oldest + self.window_s) if oldest is not None else now + self.window_s
        decision = RateLimitDecision(
            allowed=allowed,
            remaining=max(0, self.limit - count),
            limit=self.limit,
            reset_at=reset_at,
        )
        if not allowed:
            logger.info("Rate limit hit key=%s limit=%s window_s=%s", key, self.limit, self.window_s)
        return decision


class RedisRateLimiter(RateLimiter):
    """Sorted-set log per key, updated inside a MULTI/EXEC pipeline."""

    def __init__(self, *, client: redis.Redis, **kwargs):
        super().__init__(**kwargs)
        self._client = client

    def increment_and_check(self, identifier: str | int) -> RateLimitDecision:
        key = self.key(identifier)
        now = self._clock()
        window_start = now - self.window_s
        member = f"{now}:{uuid4().hex}"

        try:
            pipe = self._client.pipeline(transaction=True)
            pipe.zremrangebyscore(key, 0, window_start)
            pipe.zadd(key, {member: now})
            pipe.zcard(key)
            pipe.expire(key, self.window_s)
            results = pipe.execute()
            count = int(results[2])

            allowed = count <= self.limit
            if not allowed:
                # Denied attempts do not occupy a slot.
                self._client.zrem(key, member)
                count -= 1

            oldest = self._client.zrange(key, 0, 0, withscores=True)
        except redis.RedisError as e:
            logger.error("Redis rate limit check failed for %s: %s", key, e)
            raise RateLimiterUnavailable() from e

        reset_at = (float(oldest[0][1]) + self.window_s) if oldest else now + self.window_s
        if not allowed:
            logger.info("Rate limit hit key=%s limit=%s window_s=%s", key, self.limit, self.window_s)
        return RateLimitDecision(
            allowed=allowed,
            remaining=max(0, self.limit - count),
            limit=self.limit,
            reset_at=reset_at,
        )


def build_rate_limiter(*, limit: int, window_s: int, prefix: str) -> RateLimiter:
    if RATE_LIMIT_BACKEND == "redis":
        return RedisRateLimiter(client=redis.Redis.from_url(REDIS_URL), limit=limit, window_s=window_s, prefix=prefix)
    if RATE_LIMIT_BACKEND != "database":
        logger.warning("Unknown RATE_LIMIT_BACKEND '%s'; using database", RATE_LIMIT_BACKEND)
    return DatabaseRateLimiter(limit=limit, window_s=window_s, prefix=prefix)


_limiters: dict[str, RateLimiter] = {}
_limiters_lock = threading.Lock()


def _named_limiter(name: str, *, limit: int, window_s: int) -> RateLimiter:
    with _limiters_lock:
        limiter = _limiters.get(name)
        if limiter is None:
            limiter = build_rate_limiter(limit=limit, window_s=window_s, prefix=f"ratelimit:{name}")
            _limiters[name] = limiter
        return limiter


def get_application_rate_limiter() -> RateLimiter:
    """50 applications per rolling day per candidate (by default)."""
    return _named_limiter("applications", limit=APPLICATION_RATE_LIMIT, window_s=APPLICATION_RATE_WINDOW_S)


def get_job_post_rate_limiter() -> RateLimiter:
    """10 job posts per rolling hour per company (by default)."""
    return _named_limiter("jobs", limit=JOB_POST_RATE_LIMIT, window_s=JOB_POST_RATE_WINDOW_S)
