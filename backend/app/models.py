"""
SQLAlchemy models for persisted subscription detections.
"""
import uuid
from datetime import datetime, timezone
from sqlalchemy import (
    Column,
    String,
    DateTime,
    Date,
    Numeric,
    Text,
    Index,
    JSON,
    Uuid,
)

from app.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DetectedSubscription(Base):
    """
    A recurring payment detected from bank/email/sms evidence.
    Rows are created as pending and then moved through review by the user.
    """
    __tablename__ = "detected_subscriptions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String, nullable=False, index=True)

    # Detection details
    name = Column(String(255), nullable=False)
    merchant_key = Column(String(255), nullable=True)  # normalized merchant, the dedup key
    amount = Column(Numeric(15, 2), nullable=True)
    currency = Column(String(3), nullable=False)
    billing_cycle = Column(String(20), nullable=False)  # daily, weekly, monthly, quarterly, yearly, one-time, irregular
    confidence_score = Column(Numeric(5, 4), nullable=False)  # 0-1
    category = Column(String(100), nullable=True)
    next_billing_date = Column(Date, nullable=True)
    description = Column(Text, nullable=True)

    # Evidence (JSON array of {source_type, source_record_id})
    sources = Column(JSON, nullable=False, default=list)

    # Status
    status = Column(String(20), default="pending", nullable=False)  # pending, confirmed, rejected, imported

    # Timestamps
    last_seen_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    # Indexes
    __table_args__ = (
        Index("idx_detected_subscriptions_user", "user_id"),
        Index("idx_detected_subscriptions_status", "status"),
        Index("idx_detected_subscriptions_user_merchant", "user_id", "merchant_key"),
    )
