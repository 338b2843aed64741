import json
import logging
import threading
from contextlib import contextmanager
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models.embedding import Embedding
from ..utils.error_handlers import MatchingUnavailable, ProviderError
from .embedding_provider import EmbeddingProvider, get_embedding_provider
from .text_normalizer import entity_kind, fingerprint, normalize


logger = logging.getLogger(__name__)

# Per-(entity, fingerprint) in-flight guard so concurrent refreshes in this process
# wait for the first caller instead of calling the provider again.
_inflight_lock = threading.Lock()
_inflight: dict[tuple[str, int, str], list[Any]] = {}


@contextmanager
def _inflight_guard(key: tuple[str, int, str]):
    with _inflight_lock:
        entry = _inflight.setdefault(key, [threading.Lock(), 0])
        entry[1] += 1
    try:
        with entry[0]:
            yield
    finally:
        with _inflight_lock:
            entry[1] -= 1
            if entry[1] <= 0:
                _inflight.pop(key, None)


def vector_from_row(row: Embedding) -> list[float]:
    try:
        data: Any = json.loads(row.vector_json or "[]")
    except ValueError:
        logger.warning("Corrupt vector_json for %s=%s", row.entity_type, row.entity_id)
        return []
    if isinstance(data, list):
        return [float(x) for x in data]
    return []


def entity_fingerprint(entity: Any, *, model: str) -> str:
    return fingerprint(text=normalize(entity), model=model)


def _load_row(db: Session, *, entity_type: str, entity_id: int) -> Embedding | None:
    return (
        db.query(Embedding)
        .filter(Embedding.entity_type == entity_type, Embedding.entity_id == int(entity_id))
        .execution_options(populate_existing=True)
        .first()
    )


def _write(db: Session, *, entity_type: str, entity_id: int, model: str, fp: str, vector: list[float]) -> None:
    payload = json.dumps(vector, ensure_ascii=False)

    def _apply(row: Embedding | None) -> None:
        if row is None:
            row = Embedding(entity_type=entity_type, entity_id=int(entity_id))
        row.model = model
        row.dim = len(vector)
        row.fingerprint = fp
        row.vector_json = payload
        db.add(row)

    _apply(_load_row(db, entity_type=entity_type, entity_id=entity_id))
    try:
        db.commit()
    except IntegrityError:
        # Another writer inserted the row first; overwrite it (content is identical).
        db.rollback()
        _apply(_load_row(db, entity_type=entity_type, entity_id=entity_id))
        db.commit()


def get_or_refresh(
    db: Session,
    entity: Any,
    *,
    provider: EmbeddingProvider | None = None,
    allow_stale: bool = False,
    stale: list[int] | None = None,
) -> list[float]:
    """
    Return the entity's embedding, computing it only when the stored fingerprint
    no longer matches the entity's current text.

    Raises MatchingUnavailable when the provider fails transiently; the stored record
    is left untouched. With allow_stale=True a previously stored vector is returned
    instead and the entity id is appended to `stale`. ProviderAuthError propagates
    unchanged.
    """
    provider = provider or get_embedding_provider()
    entity_type = entity_kind(entity)
    entity_id = int(entity.id)

    text = normalize(entity)
    if not text:
        raise MatchingUnavailable(f"{entity_type} {entity_id} has no text to embed")
    fp = fingerprint(text=text, model=provider.model)

    row = _load_row(db, entity_type=entity_type, entity_id=entity_id)
    if row and row.fingerprint == fp:
        vector = vector_from_row(row)
        if vector:
            return vector

    with _inflight_guard((entity_type, entity_id, fp)):
        # Re-read: a concurrent caller may have refreshed while we waited.
        row = _load_row(db, entity_type=entity_type, entity_id=entity_id)
        if row and row.fingerprint == fp:
            vector = vector_from_row(row)
            if vector:
                logger.debug("Embedding refreshed concurrently for %s=%s", entity_type, entity_id)
                return vector

        previous = vector_from_row(row) if row else []
        try:
            vector = provider.embed(text)
        except ProviderError as e:
            if allow_stale and previous:
                logger.warning("Using stale embedding for %s=%s: %s", entity_type, entity_id, e.message)
                if stale is not None:
                    stale.append(entity_id)
                return previous
            raise MatchingUnavailable(
                f"Embedding unavailable for {entity_type} {entity_id}",
                details={"entity_type": entity_type, "entity_id": entity_id},
            ) from e

        _write(db, entity_type=entity_type, entity_id=entity_id, model=provider.model, fp=fp, vector=vector)
        logger.info("Embedding stored for %s=%s dim=%s", entity_type, entity_id, len(vector))
        return vector


def delete_embeddings(db: Session, *, entity_type: str, entity_id: int) -> int:
    """Remove stored vectors for a deleted entity. Caller commits."""
    return (
        db.query(Embedding)
        .filter(Embedding.entity_type == entity_type, Embedding.entity_id == int(entity_id))
        .delete(synchronize_session=False)
    )
