"""Verification Handler: consume the code, confirm the identity, sign in, wait for provisioning."""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from client_portal.errors import InvalidOrExpiredCode, ProvisioningTimeout, SessionEstablishmentFailed
from client_portal.services import code_registry
from client_portal.services.auth import get_identity_by_email, normalize_email, sign_in_with_password
from client_portal.services.diagnostics import diagnose
from client_portal.services.event_log import (
    CATEGORY_FAILED_ATTEMPT,
    CATEGORY_PROVISIONING_TIMEOUT,
    CATEGORY_VERIFICATION,
    create_event,
)
from client_portal.services.notifications import send_welcome_email
from client_portal.services.provisioning import business_account_ready, schedule_materialization
from client_portal.services.provisioning_watcher import ProvisioningState, ProvisioningWatcher, cancel_watch, watch

logger = logging.getLogger(__name__)


@dataclass
class VerifyResult:
    success: bool
    session_token: str
    user_id: int
    provisioning_state: ProvisioningState
    message: str | None = None
    diagnostics: dict[str, Any] | None = None


def default_watcher(identity_id: int) -> ProvisioningWatcher:
    return ProvisioningWatcher(identity_id, business_account_ready)


def _record_failed_attempt(db: Session, email: str, reason: str, ip_address: str | None, user_agent: str | None) -> None:
    create_event(
        db,
        CATEGORY_FAILED_ATTEMPT,
        "Email verification failed",
        f"Verification failed for {email}: {reason}.",
        actor_email=email,
        ip_address=ip_address,
        user_agent=user_agent,
        meta={"reason": reason},
    )
    db.commit()


def verify(
    db: Session,
    email: str,
    code: str,
    password: str,
    watcher_factory: Callable[[int], ProvisioningWatcher] | None = None,
    now: datetime | None = None,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> VerifyResult:
    now = now or code_registry.utcnow()
    email = normalize_email(email)
    watcher_factory = watcher_factory or default_watcher

    # 1-2. Burn the code and confirm the identity in one transaction
    try:
        code_registry.consume(db, email, code, now=now)
        identity = get_identity_by_email(db, email)
        if identity is not None:
            identity.email_confirmed = True
            identity.email_confirmed_at = now
        db.commit()
    except InvalidOrExpiredCode:
        db.rollback()
        # Same answer whether or not the email exists
        _record_failed_attempt(db, email, "invalid_or_expired_code", ip_address, user_agent)
        raise
    except SQLAlchemyError:
        db.rollback()
        logger.exception("[Verify] Could not consume code for %s", email)
        raise

    if identity is None:
        logger.error("[Verify] Code consumed for %s but no identity exists", email)
        _record_failed_attempt(db, email, "identity_missing_after_consume", ip_address, user_agent)
        raise SessionEstablishmentFailed()

    identity_id = identity.id
    schedule_materialization(identity_id)

    # 3. The code is burned from here on; a sign-in failure must say "sign in manually", not "retry code"
    session_token = sign_in_with_password(identity, password)
    if not session_token:
        logger.warning("[Verify] Email confirmed but sign-in failed for identity_id=%s", identity_id)
        _record_failed_attempt(db, email, "session_establishment_failed", ip_address, user_agent)
        raise SessionEstablishmentFailed()

    create_event(
        db,
        CATEGORY_VERIFICATION,
        "Email verified",
        f"Email verified and session established for {email}.",
        identity_id=identity_id,
        actor_email=email,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.commit()

    # 4. Bounded wait for the downstream business record
    state = watch(watcher_factory(identity_id))
    result = VerifyResult(success=True, session_token=session_token, user_id=identity_id, provisioning_state=state)

    if state == ProvisioningState.ready:
        metadata = identity.user_metadata or {}
        if not send_welcome_email(email, metadata.get("first_name"), metadata.get("company_name")):
            logger.warning("[Verify] Welcome email not delivered to %s", email)
        return result

    # Not an error for the user: route to profile completion, keep a report for operators
    report = diagnose(db, identity_id, session_token)
    logger.warning("[Verify] Provisioning %s for identity_id=%s; issues=%s", state.value, identity_id, report.issues)
    create_event(
        db,
        CATEGORY_PROVISIONING_TIMEOUT,
        "Provisioning did not complete",
        f"Business account not materialized for identity_id={identity_id} (state={state.value}).",
        identity_id=identity_id,
        actor_email=email,
        meta=report.to_dict(),
    )
    db.commit()
    result.message = ProvisioningTimeout().message
    result.diagnostics = report.to_dict()
    return result


def cancel_wait(db: Session, email: str) -> bool:
    """Stop the provisioning wait of a running verify for `email` (user navigated away or retried).

    Returns True if a wait was running. The account itself is unaffected.
    """
    identity = get_identity_by_email(db, normalize_email(email))
    if identity is None:
        return False
    cancelled = cancel_watch(identity.id)
    if cancelled:
        logger.info("[Verify] Provisioning wait cancelled for identity_id=%s", identity.id)
    return cancelled
