"""Identity store primitives: password hashing, sign-in, JWT session tokens."""
from datetime import datetime, timedelta, timezone
import bcrypt
import jwt
from sqlalchemy.orm import Session
from client_portal.config import get_settings
from client_portal.models.identity import Identity

settings = get_settings()


def _pwd_bytes(password: str, max_len: int = 72) -> bytes:
    return password.encode("utf-8")[:max_len]


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(_pwd_bytes(plain), hashed.encode("utf-8"))
    except ValueError:
        return False


def get_password_hash(password: str) -> str:
    return bcrypt.hashpw(_pwd_bytes(password), bcrypt.gensalt()).decode("utf-8")


def create_access_token(identity_id: int, email: str) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.jwt_access_token_expire_minutes)
    # PyJWT expects "sub" to be a string
    payload = {"sub": str(identity_id), "email": email, "exp": expire}
    raw = jwt.encode(
        payload,
        settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
    )
    return raw if isinstance(raw, str) else raw.decode("utf-8")


def decode_token(token: str) -> dict | None:
    payload, _ = decode_token_with_error(token)
    return payload


def decode_token_with_error(token: str) -> tuple[dict | None, str | None]:
    """Decode JWT; returns (payload, error_message)."""
    if not token or not isinstance(token, str):
        return None, "empty token"
    token = token.strip()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
        return payload, None
    except jwt.ExpiredSignatureError as e:
        return None, str(e)
    except jwt.PyJWTError as e:
        return None, str(e)


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def get_identity_by_email(db: Session, email: str) -> Identity | None:
    return db.query(Identity).filter(Identity.email == normalize_email(email)).first()


def get_identity(db: Session, identity_id: int) -> Identity | None:
    return db.query(Identity).filter(Identity.id == identity_id).first()


def sign_in_with_password(identity: Identity, password: str) -> str | None:
    """Native sign-in: confirmed identity + matching password -> session token, else None."""
    if not identity.email_confirmed:
        return None
    if not verify_password(password or "", identity.hashed_password):
        return None
    return create_access_token(identity.id, identity.email)
