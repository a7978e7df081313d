"""Diagnostics & Repair: account-health report and idempotent repair of the business record."""
import logging
from dataclasses import asdict, dataclass, field
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from client_portal.errors import AccountNotFound
from client_portal.models.business_account import AccountTypeName
from client_portal.services.auth import decode_token_with_error, get_identity
from client_portal.services.event_log import CATEGORY_REPAIR, create_event
from client_portal.services.provisioning import (
    business_fields,
    find_account_type,
    find_business_account,
    insert_business_account_if_missing,
    upsert_account_type,
)

logger = logging.getLogger(__name__)


@dataclass
class DiagnosticReport:
    identity_id: int
    identity_exists: bool = False
    email_confirmed: bool = False
    has_business_record: bool = False
    account_type: str | None = None
    session_valid: bool = False
    issues: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return not self.issues

    def add(self, issue: str, recommendation: str) -> None:
        self.issues.append(issue)
        self.recommendations.append(recommendation)

    def to_dict(self) -> dict[str, Any]:
        return {
            "identityId": self.identity_id,
            "identityExists": self.identity_exists,
            "emailConfirmed": self.email_confirmed,
            "hasBusinessRecord": self.has_business_record,
            "accountType": self.account_type,
            "sessionValid": self.session_valid,
            "issues": list(self.issues),
            "recommendations": list(self.recommendations),
        }


@dataclass
class RepairResult:
    success: bool
    created: bool
    identity_id: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _check_session(report: DiagnosticReport, session_token: str | None) -> None:
    # Operators diagnose without a session; only a supplied token is judged
    if session_token is None:
        return
    if not session_token.strip():
        report.add("Session token is empty.", "Sign in again to start a new session.")
        return
    payload, error = decode_token_with_error(session_token)
    if not payload:
        report.add(f"Session is invalid or expired ({error}).", "Sign in again to start a new session.")
        return
    if str(payload.get("sub")) != str(report.identity_id):
        report.add("Session belongs to a different account.", "Sign out and sign in with this account.")
        return
    report.session_valid = True


def diagnose(db: Session, identity_id: int, session_token: str | None = None) -> DiagnosticReport:
    """Read-only health report. Computed on demand, never cached."""
    report = DiagnosticReport(identity_id=identity_id)

    identity = get_identity(db, identity_id)
    if not identity:
        report.add("Identity not found.", "Sign up again; no account exists for this id.")
        _check_session(report, session_token)
        return report
    report.identity_exists = True
    report.email_confirmed = bool(identity.email_confirmed)
    if not identity.email_confirmed:
        report.add("Email address is not verified.", "Request a new verification code and verify the email.")

    report.has_business_record = find_business_account(db, identity_id) is not None
    if not report.has_business_record:
        report.add("Business account record is missing.", "Run account repair to create the business account.")

    report.account_type = find_account_type(db, identity_id)
    if report.account_type is None:
        report.add("Account type is not set.", "Run account repair to tag the account as a client.")
    elif report.account_type != AccountTypeName.client.value:
        report.add(
            f"Account type is '{report.account_type}', expected 'client'.",
            "Run account repair to tag the account as a client.",
        )

    _check_session(report, session_token)
    return report


def repair(
    db: Session,
    identity_id: int,
    fallback_metadata: dict[str, Any] | None = None,
    *,
    actor_email: str | None = None,
) -> RepairResult:
    """Idempotent: an existing business record is left as is; otherwise one is created.

    Field precedence is identity metadata, then `fallback_metadata`, then defaults.
    Safe under concurrent calls (insert-if-missing keyed by identity id).
    """
    identity = get_identity(db, identity_id)
    if not identity:
        raise AccountNotFound("No account exists for this id.")
    try:
        upsert_account_type(db, identity_id, AccountTypeName.client.value)
        created = insert_business_account_if_missing(db, identity_id, business_fields(identity, fallback_metadata))
        create_event(
            db,
            CATEGORY_REPAIR,
            "Account repaired" if created else "Account repair (no-op)",
            f"Repair for identity_id={identity_id}: business record {'created' if created else 'already present'}.",
            identity_id=identity_id,
            actor_email=actor_email or identity.email,
            meta={"created": created},
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("[Repair] Failed for identity_id=%s", identity_id)
        raise
    logger.info("[Repair] identity_id=%s created=%s", identity_id, created)
    return RepairResult(success=True, created=created, identity_id=identity_id)
