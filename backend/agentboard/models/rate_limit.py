from sqlalchemy import Column, Float, Integer, String

from ..database import Base


class RateLimitBucket(Base):
    """One row per limited key; locked while a decision is being made."""
    __tablename__ = "rate_limit_buckets"

    key = Column(String(191), primary_key=True)


class RateLimitEvent(Base):
    __tablename__ = "rate_limit_events"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(191), nullable=False, index=True)
    occurred_at = Column(Float, nullable=False, index=True)  # unix timestamp
