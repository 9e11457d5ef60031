from sqlalchemy import Column, DateTime, String

from cashheros_api.db.base import Base


class JobLease(Base):
    """Mutual-exclusion lease for singleton background jobs."""

    __tablename__ = "job_leases"

    name = Column(String(64), primary_key=True)
    holder = Column(String(128), nullable=False)
    acquired_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
