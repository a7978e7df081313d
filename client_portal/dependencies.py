"""Shared dependencies: DB session, bearer token, current identity."""
from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from client_portal.database import get_db
from client_portal.models.identity import Identity
from client_portal.services.auth import decode_token_with_error

security = HTTPBearer(auto_error=False)


def get_bearer_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> str | None:
    if not credentials:
        return None
    return (credentials.credentials or "").strip() or None


def get_current_identity(
    db: Session = Depends(get_db),
    token: str | None = Depends(get_bearer_token),
) -> Identity:
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    payload, _ = decode_token_with_error(token)
    if not payload:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    try:
        identity_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token")
    identity = db.query(Identity).filter(Identity.id == identity_id).first()
    if not identity:
        raise HTTPException(status_code=401, detail="Account not found")
    return identity
