"""Resend Controller: reissue a code for a pending signup, throttled per email."""
import logging
import math
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from client_portal.config import get_settings
from client_portal.errors import NoPendingSignup, TooManyRequests
from client_portal.services import code_registry
from client_portal.services.auth import get_identity_by_email, normalize_email
from client_portal.services.notifications import send_verification_email

logger = logging.getLogger(__name__)


@dataclass
class ResendResult:
    success: bool
    email_sent: bool
    cooldown_seconds: int


def _throttled(email: str, last: datetime | None, now: datetime, window: int) -> TooManyRequests:
    elapsed = (now - last).total_seconds() if last is not None else 0
    retry_after = max(1, math.ceil(window - elapsed))
    logger.info("[Resend] Throttled %s (retry in %ss)", email, retry_after)
    return TooManyRequests(
        f"A code was sent moments ago. Please wait {retry_after} seconds before requesting another one.",
        retryAfter=retry_after,
    )


def resend(db: Session, email: str, now: datetime | None = None) -> ResendResult:
    settings = get_settings()
    now = now or code_registry.utcnow()
    email = normalize_email(email)

    identity = get_identity_by_email(db, email) if email else None
    if not identity or identity.email_confirmed:
        raise NoPendingSignup()

    # Fast path; the conditional upsert below is what actually enforces the throttle
    last = code_registry.last_issued_at(db, email)
    if last is not None and (now - last).total_seconds() < settings.resend_throttle_seconds:
        raise _throttled(email, last, now, settings.resend_throttle_seconds)

    # Reuse what was captured at signup; the caller never resupplies company/name fields
    prior = code_registry.get_record(db, email)
    metadata = dict((prior.signup_metadata if prior else None) or identity.user_metadata or {})
    try:
        # Replacing the row in place invalidates the previous code
        code = code_registry.issue(
            db, email, metadata, now=now, min_interval_seconds=settings.resend_throttle_seconds
        )
        if code is None:
            db.rollback()
            current = code_registry.get_record(db, email)
            last = code_registry.as_utc(current.issued_at) if current else None
            raise _throttled(email, last, now, settings.resend_throttle_seconds)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("[Resend] Could not reissue code for %s", email)
        raise

    email_sent = send_verification_email(email, code, metadata.get("first_name"))
    if not email_sent:
        logger.warning("[Resend] Verification email not delivered to %s", email)
    return ResendResult(success=True, email_sent=email_sent, cooldown_seconds=settings.resend_cooldown_seconds)
