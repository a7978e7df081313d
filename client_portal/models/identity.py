"""Identity store: a person who can log in."""
from sqlalchemy import Column, Integer, String, DateTime, Boolean
from sqlalchemy.sql import func
from client_portal.database import Base, JSONType


class Identity(Base):
    __tablename__ = "identities"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)

    email_confirmed = Column(Boolean, default=False, nullable=False)
    email_confirmed_at = Column(DateTime(timezone=True), nullable=True)

    # Signup fields (company_name, first_name, last_name, account_type) kept until the
    # business account exists; fallback source of truth for repair.
    user_metadata = Column(JSONType, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
