"""
Ranking Cache Service

Short-TTL cache for ranked recommendations. Entries are keyed by the content
fingerprints of the anchor and every pool member, so edits never serve stale
rankings; the TTL only bounds how long an unchanged ranking is reused.
"""

import hashlib
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import MATCH_CACHE_TTL_S
from ..models.ranking_cache import RankingCacheEntry

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes.
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def ranking_cache_key(
    *,
    anchor_kind: str,
    anchor_id: int,
    anchor_fingerprint: str,
    pool: list[tuple[int, str]],
    limit: int,
) -> str:
    pool_part = ",".join(f"{pid}:{fp}" for pid, fp in sorted(pool))
    key_string = f"{anchor_kind}:{anchor_id}:{anchor_fingerprint}|{pool_part}|{int(limit)}"
    return hashlib.sha256(key_string.encode()).hexdigest()


def get_cached_ranking(db: Session, cache_key: str) -> list[dict[str, Any]] | None:
    """
    Cached ranking rows or None if not found/expired.
    """
    try:
        entry = db.query(RankingCacheEntry).filter(RankingCacheEntry.cache_key == cache_key).first()
    except SQLAlchemyError as e:
        logger.warning("Ranking cache retrieval error: %s", e)
        return None

    if not entry:
        return None

    if _utcnow() >= _as_utc(entry.expires_at):
        logger.debug("Ranking cache expired for key %s...", cache_key[:16])
        return None

    try:
        rows = json.loads(entry.result_json)
    except ValueError:
        logger.warning("Ranking cache corruption for key %s: invalid JSON", cache_key)
        return None
    logger.debug("Ranking cache HIT: %s=%s rows=%s", entry.anchor_kind, entry.anchor_id, len(rows))
    return rows


def cache_ranking(
    db: Session,
    cache_key: str,
    rows: list[dict[str, Any]],
    *,
    anchor_kind: str,
    anchor_id: int,
    ttl_s: int = MATCH_CACHE_TTL_S,
) -> bool:
    """
    Store ranking rows. Returns True if cached successfully, False otherwise.
    """
    if ttl_s <= 0:
        return False
    expires_at = _utcnow() + timedelta(seconds=ttl_s)
    payload = json.dumps(rows, ensure_ascii=False)
    try:
        entry = db.query(RankingCacheEntry).filter(RankingCacheEntry.cache_key == cache_key).first()
        if entry:
            entry.result_json = payload
            entry.expires_at = expires_at
        else:
            entry = RankingCacheEntry(
                cache_key=cache_key,
                anchor_kind=anchor_kind,
                anchor_id=int(anchor_id),
                result_json=payload,
                expires_at=expires_at,
            )
        db.add(entry)
        db.commit()
        return True
    except SQLAlchemyError as e:
        logger.warning("Ranking cache storage error: %s", e)
        db.rollback()
        return False


def invalidate_anchor(db: Session, *, anchor_kind: str, anchor_id: int) -> int:
    """Drop cached rankings for an anchor (e.g. when it is deleted). Caller commits."""
    return (
        db.query(RankingCacheEntry)
        .filter(RankingCacheEntry.anchor_kind == anchor_kind, RankingCacheEntry.anchor_id == int(anchor_id))
        .delete(synchronize_session=False)
    )


def clear_expired(db: Session) -> int:
    """
    Clear expired entries. Returns number of entries deleted.
    """
    try:
        count = db.query(RankingCacheEntry).filter(RankingCacheEntry.expires_at < _utcnow()).delete()
        db.commit()
        logger.info("Cleared %s expired ranking cache entries", count)
        return count
    except SQLAlchemyError as e:
        logger.warning("Ranking cache cleanup error: %s", e)
        db.rollback()
        return 0
