"""
Ranking of the opposite entity set for an anchor.

A candidate anchor is ranked against active job postings, a job anchor against
candidate profiles. Pool members whose embedding cannot be resolved are left out
of the output; only an unavailable anchor fails the request.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterator

from sqlalchemy.orm import Session

from ..config import MATCH_DEFAULT_LIMIT, MATCH_MAX_LIMIT, MATCH_POOL_MAX
from ..models.job import JobPosting
from ..models.profile import Profile
from ..utils.error_handlers import MatchingUnavailable, NotFoundError, ValidationError
from .embedding_provider import EmbeddingProvider, get_embedding_provider
from .embedding_store import entity_fingerprint, get_or_refresh
from .match_cache import cache_ranking, get_cached_ranking, ranking_cache_key
from .similarity import match_score


logger = logging.getLogger(__name__)

ANCHOR_KINDS = ("candidate", "job")


@dataclass(frozen=True)
class MatchResult:
    anchor_id: int
    target_id: int
    score: int
    computed_at: datetime

    def to_public(self) -> dict[str, Any]:
        return {
            "anchor_id": self.anchor_id,
            "target_id": self.target_id,
            "score": self.score,
            "computed_at": self.computed_at.isoformat(),
        }


def _timestamp(dt: datetime | None) -> float:
    if dt is None:
        return 0.0
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def _sort_key(item: tuple[int, Any]) -> tuple[int, float, int]:
    score, target = item
    # Highest score first, then newest entity, then lowest id.
    return (-score, -_timestamp(getattr(target, "created_at", None)), int(target.id))


def rank(
    db: Session,
    anchor: Any,
    pool: list[Any],
    limit: int,
    *,
    provider: EmbeddingProvider | None = None,
    excluded: list[int] | None = None,
    stale: list[int] | None = None,
) -> Iterator[MatchResult]:
    """
    Score every pool entity against the anchor and return the top `limit` as a
    one-shot iterator. Raises MatchingUnavailable if the anchor cannot be embedded.
    Ids of pool entities left out for lack of an embedding are appended to `excluded`,
    ids of entities scored from an outdated vector to `stale`.
    """
    provider = provider or get_embedding_provider()
    anchor_vec = get_or_refresh(db, anchor, provider=provider, allow_stale=True, stale=stale)

    scored: list[tuple[int, Any]] = []
    for target in pool:
        try:
            vec = get_or_refresh(db, target, provider=provider, allow_stale=True, stale=stale)
        except MatchingUnavailable as e:
            logger.warning("Excluding %s from ranking: %s", target.id, e.message)
            if excluded is not None:
                excluded.append(int(target.id))
            continue
        scored.append((match_score(anchor_vec, vec), target))

    scored.sort(key=_sort_key)
    computed_at = datetime.now(timezone.utc)
    return (
        MatchResult(anchor_id=int(anchor.id), target_id=int(target.id), score=score, computed_at=computed_at)
        for score, target in scored[: max(0, int(limit))]
    )


def load_anchor(db: Session, *, anchor_id: int, anchor_kind: str) -> Any:
    if anchor_kind == "candidate":
        anchor = (
            db.query(Profile)
            .filter(Profile.id == int(anchor_id), Profile.profile_type == "candidate")
            .first()
        )
        if not anchor:
            raise NotFoundError("Candidate profile not found")
        return anchor
    if anchor_kind == "job":
        anchor = db.query(JobPosting).filter(JobPosting.id == int(anchor_id)).first()
        if not anchor:
            raise NotFoundError("Job posting not found")
        return anchor
    raise ValidationError(f"anchor_kind must be one of: {', '.join(ANCHOR_KINDS)}")


def load_pool(db: Session, *, anchor_kind: str, max_size: int = MATCH_POOL_MAX) -> list[Any]:
    """Eligible entities of the opposite kind, newest first."""
    if anchor_kind == "candidate":
        q = db.query(JobPosting).filter(JobPosting.status == "active")
        q = q.order_by(JobPosting.created_at.desc(), JobPosting.id.desc())
    else:
        q = db.query(Profile).filter(Profile.profile_type == "candidate")
        q = q.order_by(Profile.created_at.desc(), Profile.id.desc())
    return q.limit(int(max_size)).all()


def _validate_limit(limit: int) -> int:
    limit = int(limit)
    if limit < 1 or limit > MATCH_MAX_LIMIT:
        raise ValidationError(f"limit must be between 1 and {MATCH_MAX_LIMIT}")
    return limit


def _ranked_rows(
    db: Session,
    *,
    anchor: Any,
    anchor_kind: str,
    pool: list[Any],
    limit: int,
    provider: EmbeddingProvider,
    use_cache: bool,
) -> list[dict[str, Any]]:
    cache_key = None
    if use_cache:
        cache_key = ranking_cache_key(
            anchor_kind=anchor_kind,
            anchor_id=int(anchor.id),
            anchor_fingerprint=entity_fingerprint(anchor, model=provider.model),
            pool=[(int(t.id), entity_fingerprint(t, model=provider.model)) for t in pool],
            limit=limit,
        )
        cached = get_cached_ranking(db, cache_key)
        if cached is not None:
            return cached

    excluded: list[int] = []
    stale: list[int] = []
    rows = [
        m.to_public()
        for m in rank(db, anchor, pool, limit, provider=provider, excluded=excluded, stale=stale)
    ]

    # Partial or stale rankings are served but never cached under the current fingerprints.
    if cache_key and not excluded and not stale:
        cache_ranking(db, cache_key, rows, anchor_kind=anchor_kind, anchor_id=int(anchor.id))
    return rows


def get_recommendations(
    db: Session,
    anchor_id: int,
    anchor_kind: str,
    limit: int = MATCH_DEFAULT_LIMIT,
    *,
    provider: EmbeddingProvider | None = None,
    use_cache: bool = True,
) -> list[dict[str, Any]]:
    """
    Ordered [{anchor_id, target_id, score, computed_at}] for the anchor.
    Raises MatchingUnavailable when the anchor cannot be embedded.
    """
    limit = _validate_limit(limit)
    anchor = load_anchor(db, anchor_id=anchor_id, anchor_kind=anchor_kind)
    pool = load_pool(db, anchor_kind=anchor_kind)
    return _ranked_rows(
        db,
        anchor=anchor,
        anchor_kind=anchor_kind,
        pool=pool,
        limit=limit,
        provider=provider or get_embedding_provider(),
        use_cache=use_cache,
    )


def recent_listing(pool: list[Any], *, anchor_id: int, limit: int) -> list[dict[str, Any]]:
    """Unscored reverse-chronological rows, used when matching is degraded."""
    ordered = sorted(pool, key=lambda t: (-_timestamp(getattr(t, "created_at", None)), -int(t.id)))
    return [
        {"anchor_id": int(anchor_id), "target_id": int(t.id), "score": None, "computed_at": None}
        for t in ordered[:limit]
    ]


def recommendations_or_recent(
    db: Session,
    anchor_id: int,
    anchor_kind: str,
    limit: int | None = MATCH_DEFAULT_LIMIT,
    *,
    provider: EmbeddingProvider | None = None,
) -> dict[str, Any]:
    """
    Listing-page entry point: scored matches, or the most recent entities when
    matching is unavailable. limit=None scores the whole pool. NotFoundError and
    ProviderAuthError still propagate.
    """
    if limit is not None:
        limit = _validate_limit(limit)
    anchor = load_anchor(db, anchor_id=anchor_id, anchor_kind=anchor_kind)
    pool = load_pool(db, anchor_kind=anchor_kind)
    if limit is None:
        limit = max(1, len(pool))
    try:
        rows = _ranked_rows(
            db,
            anchor=anchor,
            anchor_kind=anchor_kind,
            pool=pool,
            limit=limit,
            provider=provider or get_embedding_provider(),
            use_cache=True,
        )
        return {"scored": True, "matches": rows}
    except MatchingUnavailable as e:
        logger.warning("Matching degraded for %s=%s: %s", anchor_kind, anchor_id, e.message)
        return {"scored": False, "matches": recent_listing(pool, anchor_id=int(anchor.id), limit=limit)}
