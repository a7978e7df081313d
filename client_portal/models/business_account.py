"""Provisioned client accounts: business record + account-type tag, both keyed by identity id."""
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime
from sqlalchemy.orm import backref, relationship
from sqlalchemy.sql import func
from client_portal.database import Base
import enum

ONBOARDING_INCOMPLETE = "incomplete"
ONBOARDING_COMPLETE = "complete"


class AccountTypeName(str, enum.Enum):
    client = "client"
    user = "user"


class BusinessAccount(Base):
    __tablename__ = "business_accounts"

    id = Column(Integer, primary_key=True, index=True)
    identity_id = Column(Integer, ForeignKey("identities.id", ondelete="CASCADE"), unique=True, nullable=False)

    company_name = Column(String(255), nullable=False)
    contact_first_name = Column(String(100), nullable=True)
    contact_last_name = Column(String(100), nullable=True)
    billing_email = Column(String(255), nullable=False)
    onboarding_status = Column(String(32), nullable=False, default=ONBOARDING_INCOMPLETE)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Deleting an identity (orphaned signup) takes its business record with it
    identity = relationship("Identity", backref=backref("business_account", cascade="all, delete-orphan"))


class AccountType(Base):
    """Canonical account-type tag. 'client' + a BusinessAccount row == provisioned client account."""

    __tablename__ = "account_types"

    id = Column(Integer, primary_key=True, index=True)
    identity_id = Column(Integer, ForeignKey("identities.id", ondelete="CASCADE"), unique=True, nullable=False)
    account_type = Column(String(32), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
