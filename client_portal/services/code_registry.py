"""Code Registry: issue, consume and invalidate one-time email verification codes.

The table is keyed by email, so issuing is an upsert and at most one code per email
can be live. Consuming is a single conditional UPDATE so two near-simultaneous
verify calls cannot both succeed.
"""
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import delete, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from client_portal.config import get_settings
from client_portal.errors import InvalidOrExpiredCode
from client_portal.models.verification_code import VerificationCode

logger = logging.getLogger(__name__)

CODE_LENGTH = 6


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; every stored timestamp is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def generate_code() -> str:
    """Uniformly random, zero-padded 6-digit code."""
    return f"{secrets.randbelow(10 ** CODE_LENGTH):0{CODE_LENGTH}d}"


def normalize_code(raw: str | None) -> str:
    """Return stripped string, or empty string if not exactly 6 digits."""
    s = (raw or "").strip()
    if len(s) != CODE_LENGTH or not s.isdigit():
        return ""
    return s


def _upsert(db: Session):
    return pg_insert if db.get_bind().dialect.name == "postgresql" else sqlite_insert


def issue(
    db: Session,
    email: str,
    metadata: dict[str, Any] | None,
    now: datetime | None = None,
    *,
    min_interval_seconds: int | None = None,
) -> str | None:
    """Store a fresh code for `email`, replacing any previous one. Caller commits.

    With `min_interval_seconds`, an existing row is only replaced if it was issued at
    least that long ago; returns None when the row was left untouched.
    """
    now = now or utcnow()
    code = generate_code()
    expires_at = now + timedelta(minutes=get_settings().otp_expire_minutes)
    values = {
        "email": email,
        "code": code,
        "issued_at": now,
        "expires_at": expires_at,
        "consumed_at": None,
        "metadata": dict(metadata or {}),
    }
    insert = _upsert(db)
    stmt = insert(VerificationCode.__table__).values(**values)
    where = None
    if min_interval_seconds:
        where = VerificationCode.__table__.c.issued_at <= now - timedelta(seconds=min_interval_seconds)
    # Without a throttle the last writer wins when two issuances for the same email race
    stmt = stmt.on_conflict_do_update(
        index_elements=[VerificationCode.__table__.c.email],
        set_={k: stmt.excluded[k] for k in ("code", "issued_at", "expires_at", "consumed_at", "metadata")},
        where=where,
    )
    result = db.execute(stmt)
    if where is not None and (result.rowcount or 0) != 1:
        logger.info("[Codes] Not reissued for %s: previous code is younger than %ss", email, min_interval_seconds)
        return None
    logger.info("[Codes] Issued code for %s (expires %s)", email, expires_at.isoformat())
    return code


def consume(db: Session, email: str, code: str, now: datetime | None = None) -> dict[str, Any]:
    """Atomically mark the matching live code consumed and return its metadata. Caller commits.

    Raises InvalidOrExpiredCode when no unconsumed, unexpired code matches.
    """
    now = now or utcnow()
    code = normalize_code(code)
    if not code:
        raise InvalidOrExpiredCode()
    result = db.execute(
        update(VerificationCode)
        .where(
            VerificationCode.email == email,
            VerificationCode.code == code,
            VerificationCode.consumed_at.is_(None),
            VerificationCode.expires_at > now,
        )
        .values(consumed_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InvalidOrExpiredCode()
    record = db.query(VerificationCode).filter(VerificationCode.email == email).first()
    db.refresh(record)
    return dict(record.signup_metadata or {})


def invalidate_all(db: Session, email: str) -> int:
    """Delete every code for `email`. Caller commits."""
    result = db.execute(
        delete(VerificationCode)
        .where(VerificationCode.email == email)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


def get_record(db: Session, email: str) -> VerificationCode | None:
    return db.query(VerificationCode).filter(VerificationCode.email == email).first()


def last_issued_at(db: Session, email: str) -> datetime | None:
    record = get_record(db, email)
    return as_utc(record.issued_at) if record else None


def has_live_code(db: Session, email: str, now: datetime | None = None) -> bool:
    now = now or utcnow()
    record = get_record(db, email)
    if not record or record.consumed_at is not None:
        return False
    return as_utc(record.expires_at) > now
