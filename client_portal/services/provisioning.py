"""Downstream business-account materializer.

Turns a confirmed identity into a provisioned client account (account-type tag +
business record). It runs out of band: a one-shot job shortly after confirmation,
plus a periodic sweep for anything the one-shot job missed. Both writes are
upserts keyed by identity id, so the materializer and repair can race safely.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from client_portal.config import get_settings
from client_portal.database import SessionLocal
from client_portal.models.business_account import (
    AccountType,
    AccountTypeName,
    BusinessAccount,
    ONBOARDING_INCOMPLETE,
)
from client_portal.models.identity import Identity

logger = logging.getLogger(__name__)

_scheduler: BackgroundScheduler | None = None


def _insert_for(db: Session):
    return pg_insert if db.get_bind().dialect.name == "postgresql" else sqlite_insert


def signup_metadata(company_name: str, first_name: str, last_name: str) -> dict[str, Any]:
    """Metadata bag stored on the identity and the code record at signup."""
    return {
        "company_name": company_name,
        "first_name": first_name,
        "last_name": last_name,
        "account_type": AccountTypeName.client.value,
    }


def business_fields(identity: Identity, fallback: dict[str, Any] | None = None) -> dict[str, Any]:
    """Business-record fields: identity metadata first, then caller fallback, then defaults."""
    stored = identity.user_metadata or {}
    fallback = fallback or {}

    def pick(key: str, default: str = "") -> str:
        for source in (stored, fallback):
            value = source.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return default

    return {
        "company_name": pick("company_name", get_settings().default_company_name),
        "contact_first_name": pick("first_name"),
        "contact_last_name": pick("last_name"),
        "billing_email": identity.email,
    }


def upsert_account_type(db: Session, identity_id: int, account_type: str = AccountTypeName.client.value) -> None:
    stmt = _insert_for(db)(AccountType.__table__).values(identity_id=identity_id, account_type=account_type)
    stmt = stmt.on_conflict_do_update(
        index_elements=[AccountType.__table__.c.identity_id],
        set_={"account_type": stmt.excluded.account_type},
    )
    db.execute(stmt)


def insert_business_account_if_missing(db: Session, identity_id: int, fields: dict[str, Any]) -> bool:
    """Create the business record unless one exists. Returns True if this call created it."""
    stmt = (
        _insert_for(db)(BusinessAccount.__table__)
        .values(identity_id=identity_id, onboarding_status=ONBOARDING_INCOMPLETE, **fields)
        .on_conflict_do_nothing(index_elements=[BusinessAccount.__table__.c.identity_id])
    )
    result = db.execute(stmt)
    return (result.rowcount or 0) == 1


def materialize_business_account(db: Session, identity: Identity) -> bool:
    """Provision a confirmed identity. Caller commits. Returns True if a record was created."""
    account_type = (identity.user_metadata or {}).get("account_type") or AccountTypeName.client.value
    upsert_account_type(db, identity.id, account_type)
    created = insert_business_account_if_missing(db, identity.id, business_fields(identity))
    if created:
        logger.info("[Provisioning] Business account created for identity_id=%s", identity.id)
    return created


def find_business_account(db: Session, identity_id: int) -> BusinessAccount | None:
    return db.query(BusinessAccount).filter(BusinessAccount.identity_id == identity_id).first()


def find_account_type(db: Session, identity_id: int) -> str | None:
    row = db.query(AccountType).filter(AccountType.identity_id == identity_id).first()
    return row.account_type if row else None


def is_client_account(db: Session, identity_id: int) -> bool:
    """Canonical check: business record exists and the tag says client."""
    return (
        find_business_account(db, identity_id) is not None
        and find_account_type(db, identity_id) == AccountTypeName.client.value
    )


def business_account_ready(identity_id: int, session_factory=SessionLocal) -> bool:
    """Watcher readiness check. Fresh session per call so commits from the materializer are visible."""
    db = session_factory()
    try:
        return is_client_account(db, identity_id)
    finally:
        db.close()


def materialize_identity(identity_id: int, session_factory=SessionLocal) -> bool:
    """Job entry point for one identity."""
    db = session_factory()
    try:
        identity = db.query(Identity).filter(Identity.id == identity_id).first()
        if not identity or not identity.email_confirmed:
            logger.info("[Provisioning] Skip identity_id=%s (missing or unconfirmed)", identity_id)
            return False
        created = materialize_business_account(db, identity)
        db.commit()
        return created
    except Exception:
        db.rollback()
        logger.exception("[Provisioning] Materialize failed for identity_id=%s", identity_id)
        raise
    finally:
        db.close()


def run_provisioning_sweep(session_factory=SessionLocal) -> int:
    """Provision every confirmed identity that has no business record yet. Returns count created."""
    db = session_factory()
    created = 0
    try:
        pending = (
            db.query(Identity)
            .outerjoin(BusinessAccount, BusinessAccount.identity_id == Identity.id)
            .filter(Identity.email_confirmed.is_(True), BusinessAccount.id.is_(None))
            .all()
        )
        for identity in pending:
            if materialize_business_account(db, identity):
                created += 1
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("[Provisioning] Sweep failed")
        raise
    finally:
        db.close()
    if created:
        logger.info("[Provisioning] Sweep created %s business account(s)", created)
    return created


def start_scheduler() -> BackgroundScheduler:
    global _scheduler
    settings = get_settings()
    if _scheduler is None:
        _scheduler = BackgroundScheduler(timezone="UTC")
        _scheduler.add_job(
            run_provisioning_sweep,
            "interval",
            seconds=settings.provisioning_sweep_seconds,
            id="provisioning_sweep",
            replace_existing=True,
        )
        _scheduler.start()
    return _scheduler


def shutdown_scheduler() -> None:
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None


def schedule_materialization(identity_id: int) -> bool:
    """Fire the materializer for one identity shortly after confirmation. False if no scheduler is running."""
    settings = get_settings()
    if _scheduler is None or not settings.provisioning_trigger_enabled:
        logger.info("[Provisioning] Trigger not running; identity_id=%s left to the sweep", identity_id)
        return False
    run_date = datetime.now(timezone.utc) + timedelta(seconds=settings.provisioning_trigger_delay_seconds)
    _scheduler.add_job(
        materialize_identity,
        "date",
        run_date=run_date,
        args=[identity_id],
        id=f"materialize_{identity_id}",
        replace_existing=True,
    )
    return True
