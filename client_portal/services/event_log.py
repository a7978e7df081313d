"""Append-only provisioning event log. Never update or delete."""
from typing import Any

from sqlalchemy.orm import Session

from client_portal.models.provisioning_event import ProvisioningEvent

CATEGORY_SIGNUP = "signup"
CATEGORY_VERIFICATION = "verification"
CATEGORY_FAILED_ATTEMPT = "failed_attempt"
CATEGORY_PROVISIONING_TIMEOUT = "provisioning_timeout"
CATEGORY_REPAIR = "repair"

CATEGORIES = (
    CATEGORY_SIGNUP,
    CATEGORY_VERIFICATION,
    CATEGORY_FAILED_ATTEMPT,
    CATEGORY_PROVISIONING_TIMEOUT,
    CATEGORY_REPAIR,
)


def _clip(value: str | None, column) -> str | None:
    """Trim to the column's length; blank becomes None."""
    if not value:
        return None
    value = str(value).strip()
    length = getattr(column.type, "length", None)
    return (value[:length] if length else value) or None


def _json_meta(meta: dict[str, Any] | None) -> dict[str, Any] | None:
    """Meta is a failure reason, a repair flag or a diagnostic report: scalars, lists of strings, nested dicts."""
    if meta is None:
        return None

    def clean(v: Any) -> Any:
        if v is None or isinstance(v, (str, int, float, bool)):
            return v
        if isinstance(v, dict):
            return {str(k): clean(x) for k, x in v.items()}
        if isinstance(v, (list, tuple)):
            return [clean(x) for x in v]
        return str(v)

    return clean(meta)


def create_event(
    db: Session,
    category: str,
    title: str,
    message: str,
    *,
    identity_id: int | None = None,
    actor_email: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    meta: dict[str, Any] | None = None,
) -> ProvisioningEvent:
    """Add one event and flush. Commit stays with the caller so the event shares its transaction."""
    if category not in CATEGORIES:
        raise ValueError(f"Unknown provisioning event category: {category!r}")
    columns = ProvisioningEvent.__table__.c
    entry = ProvisioningEvent(
        category=category,
        title=_clip(title, columns.title) or "-",
        message=(message or "").strip() or "-",
        identity_id=identity_id,
        actor_email=_clip(actor_email, columns.actor_email),
        ip_address=_clip(ip_address, columns.ip_address),
        user_agent=_clip(user_agent, columns.user_agent),
        meta=_json_meta(meta),
    )
    db.add(entry)
    db.flush()
    return entry
