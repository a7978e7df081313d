"""Account health: diagnostics report and self-service repair for the signed-in identity."""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from client_portal.database import get_db
from client_portal.dependencies import get_bearer_token, get_current_identity
from client_portal.models.identity import Identity
from client_portal.schemas.auth import RepairBody
from client_portal.services.diagnostics import diagnose, repair

router = APIRouter(prefix="/accounts", tags=["accounts"])


def _require_self(identity_id: int, current_identity: Identity) -> None:
    if current_identity.id != identity_id:
        raise HTTPException(status_code=403, detail="You can only inspect your own account.")


@router.get("/{identity_id}/diagnostics")
def account_diagnostics(
    identity_id: int,
    db: Session = Depends(get_db),
    token: str | None = Depends(get_bearer_token),
    current_identity: Identity = Depends(get_current_identity),
):
    """Re-derive provisioning state on page load. Never cached."""
    _require_self(identity_id, current_identity)
    report = diagnose(db, identity_id, token)
    body = report.to_dict()
    body["healthy"] = report.healthy
    return body


@router.post("/{identity_id}/repair")
def account_repair(
    identity_id: int,
    data: RepairBody | None = None,
    db: Session = Depends(get_db),
    current_identity: Identity = Depends(get_current_identity),
):
    _require_self(identity_id, current_identity)
    fallback = data.fallback_metadata() if data else None
    result = repair(db, identity_id, fallback, actor_email=current_identity.email)
    return {"success": result.success, "created": result.created, "identityId": result.identity_id}
