from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..database import Base


APPLICATION_STATUSES = ("submitted", "reviewed", "interviewing", "offered", "rejected", "withdrawn")


class Application(Base):
    __tablename__ = "applications"
    __table_args__ = (
        # Withdrawn applications do not block re-applying to the same job.
        Index(
            "uq_applications_job_candidate_open",
            "job_id",
            "candidate_id",
            unique=True,
            sqlite_where=text("status != 'withdrawn'"),
            postgresql_where=text("status != 'withdrawn'"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(Integer, ForeignKey("job_postings.id", ondelete="CASCADE"), nullable=False, index=True)
    candidate_id = Column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    cover_letter = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="submitted")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    job = relationship("JobPosting", back_populates="applications")
    candidate = relationship("Profile", back_populates="applications")
