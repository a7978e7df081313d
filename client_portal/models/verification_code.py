"""One-time email verification codes. One row per email: issuing replaces the previous code."""
from sqlalchemy import Column, String, DateTime

from client_portal.database import Base, JSONType


class VerificationCode(Base):
    __tablename__ = "verification_codes"

    email = Column(String(255), primary_key=True)
    code = Column(String(6), nullable=False)

    issued_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    consumed_at = Column(DateTime(timezone=True), nullable=True)

    # Signup fields needed to materialize the business account later
    signup_metadata = Column("metadata", JSONType, nullable=True)
