from sqlalchemy import Column, DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.sql import func

from ..database import Base


class Embedding(Base):
    __tablename__ = "embeddings"

    id = Column(Integer, primary_key=True, index=True)
    entity_type = Column(String(20), nullable=False)  # profile | job
    entity_id = Column(Integer, nullable=False)
    model = Column(String(120), nullable=False)
    dim = Column(Integer, nullable=False, default=0)
    fingerprint = Column(String(64), nullable=False)
    vector_json = Column(Text, nullable=False)  # JSON array of floats
    computed_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # One current record per entity; refreshes overwrite in place.
    __table_args__ = (
        UniqueConstraint("entity_type", "entity_id", name="uq_embeddings_entity"),
    )
