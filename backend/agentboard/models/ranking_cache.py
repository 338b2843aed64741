from sqlalchemy import Column, DateTime, Integer, String, Text
from sqlalchemy.sql import func

from ..database import Base


class RankingCacheEntry(Base):
    """
    Short-lived cache of ranked recommendations.
    Key: sha256(anchor fingerprint + pool fingerprints + limit), so any edit to a
    participating entity produces a different key.
    """
    __tablename__ = "ranking_cache"

    id = Column(Integer, primary_key=True, index=True)
    cache_key = Column(String(64), unique=True, nullable=False, index=True)
    anchor_kind = Column(String(20), nullable=False)
    anchor_id = Column(Integer, nullable=False, index=True)
    result_json = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<RankingCacheEntry(key={self.cache_key[:16]}..., {self.anchor_kind}={self.anchor_id})>"
