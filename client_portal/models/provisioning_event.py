"""Append-only operational log for the onboarding pipeline.
No updates or deletes - failed attempts, provisioning timeouts and repairs stay on record."""
from sqlalchemy import Column, Integer, String, Text, DateTime
from sqlalchemy.sql import func
from client_portal.database import Base, JSONType


class ProvisioningEvent(Base):
    __tablename__ = "provisioning_events"

    id = Column(Integer, primary_key=True, index=True)

    # No FK: events must outlive a deleted identity
    identity_id = Column(Integer, nullable=True, index=True)

    # category: signup | verification | failed_attempt | provisioning_timeout | repair
    category = Column(String(32), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)

    # Optional structured data (e.g. diagnostic report, reason)
    meta = Column(JSONType, nullable=True)

    actor_email = Column(String(255), nullable=True)

    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(500), nullable=True)

    # UTC only - server_default
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
