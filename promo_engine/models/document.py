from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, JSON, String

from promo_engine.database import Base


def _utcnow():
    return datetime.now(timezone.utc)


class Document(Base):
    """One named JSON document (promo catalog, referral ledger, ...) with a CAS version."""

    __tablename__ = "documents"

    key = Column(String(128), primary_key=True)
    body = Column(JSON, nullable=False)
    version = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
