"""Signup Handler: validate, create an unconfirmed identity, issue a code, send it."""
import logging
import re
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from client_portal.errors import DuplicateAccount, OnboardingError, ValidationError
from client_portal.models.business_account import AccountType
from client_portal.models.identity import Identity
from client_portal.services import code_registry
from client_portal.services.auth import get_identity_by_email, get_password_hash, normalize_email
from client_portal.services.event_log import CATEGORY_SIGNUP, create_event
from client_portal.services.notifications import send_verification_email
from client_portal.services.provisioning import signup_metadata

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass
class SignupRequest:
    email: str
    password: str
    company_name: str
    first_name: str
    last_name: str


@dataclass
class SignupResult:
    success: bool
    email_sent: bool


def validate_signup(data: SignupRequest) -> SignupRequest:
    """Return a normalized copy or raise ValidationError naming the missing/invalid fields."""
    email = normalize_email(data.email)
    fields = {
        "email": email,
        "password": data.password or "",
        "companyName": (data.company_name or "").strip(),
        "firstName": (data.first_name or "").strip(),
        "lastName": (data.last_name or "").strip(),
    }
    missing = [name for name, value in fields.items() if not value]
    if missing:
        raise ValidationError(f"Missing required field(s): {', '.join(missing)}.")
    if not EMAIL_RE.match(email):
        raise ValidationError("Please enter a valid email address.")
    return SignupRequest(
        email=email,
        password=data.password,
        company_name=fields["companyName"],
        first_name=fields["firstName"],
        last_name=fields["lastName"],
    )


def _clear_orphan_or_reject(db: Session, existing: Identity, now: datetime) -> None:
    """An unconfirmed identity with no live code is an orphan from an abandoned signup and may be replaced."""
    if existing.email_confirmed or code_registry.has_live_code(db, existing.email, now):
        raise DuplicateAccount()
    logger.info("[Signup] Replacing orphaned unconfirmed identity_id=%s for %s", existing.id, existing.email)
    code_registry.invalidate_all(db, existing.email)
    db.query(AccountType).filter(AccountType.identity_id == existing.id).delete(synchronize_session=False)
    db.delete(existing)
    db.flush()


def signup(
    db: Session,
    data: SignupRequest,
    now: datetime | None = None,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> SignupResult:
    now = now or code_registry.utcnow()
    data = validate_signup(data)

    existing = get_identity_by_email(db, data.email)
    metadata = signup_metadata(data.company_name, data.first_name, data.last_name)
    try:
        if existing:
            _clear_orphan_or_reject(db, existing, now)
        identity = Identity(
            email=data.email,
            hashed_password=get_password_hash(data.password),
            email_confirmed=False,
            user_metadata=metadata,
        )
        db.add(identity)
        db.flush()
        code = code_registry.issue(db, data.email, metadata, now=now)
        create_event(
            db,
            CATEGORY_SIGNUP,
            "Signup started",
            f"Unconfirmed identity created for {data.email}; verification code issued.",
            identity_id=identity.id,
            actor_email=data.email,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        db.commit()
    except OnboardingError:
        db.rollback()
        raise
    except IntegrityError:
        # Lost a race with a concurrent signup for the same email
        db.rollback()
        raise DuplicateAccount()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("[Signup] Failed for %s; identity creation rolled back", data.email)
        raise

    # Outside the transaction: delivery failure never undoes the identity or the code
    email_sent = send_verification_email(data.email, code, data.first_name)
    if not email_sent:
        logger.warning("[Signup] Verification email not delivered to %s (identity_id=%s)", data.email, identity.id)
    return SignupResult(success=True, email_sent=email_sent)
