"""Signup, OTP verification and resend."""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from client_portal.database import get_db
from client_portal.dependencies import get_current_identity
from client_portal.errors import EmailDeliveryFailure
from client_portal.models.identity import Identity
from client_portal.schemas.auth import (
    CancelWaitBody,
    CancelWaitResponse,
    IdentityResponse,
    ResendOtpBody,
    ResendOtpResponse,
    SessionOut,
    SignupBody,
    SignupResponse,
    VerifyOtpBody,
    VerifyOtpResponse,
)
from client_portal.services.provisioning import is_client_account
from client_portal.services.resend import resend
from client_portal.services.signup import SignupRequest, signup
from client_portal.services.verification import cancel_wait, default_watcher, verify

router = APIRouter(tags=["auth"])

EMAIL_NOT_SENT_MESSAGE = EmailDeliveryFailure().message


def get_watcher_factory():
    return default_watcher


def _client_info(request: Request) -> tuple[str | None, str | None]:
    ip = request.client.host if request.client else None
    ua = (request.headers.get("user-agent") or "").strip() or None
    return ip, ua


@router.post("/signup", response_model=SignupResponse)
def signup_route(request: Request, data: SignupBody, db: Session = Depends(get_db)):
    ip, ua = _client_info(request)
    result = signup(
        db,
        SignupRequest(
            email=data.email,
            password=data.password,
            company_name=data.company_name,
            first_name=data.first_name,
            last_name=data.last_name,
        ),
        ip_address=ip,
        user_agent=ua,
    )
    message = "Account created. Check your email for the verification code." if result.email_sent else EMAIL_NOT_SENT_MESSAGE
    return SignupResponse(success=result.success, email_sent=result.email_sent, message=message)


@router.post("/resend-otp", response_model=ResendOtpResponse)
def resend_otp(data: ResendOtpBody, db: Session = Depends(get_db)):
    result = resend(db, data.email)
    message = "A new verification code was sent." if result.email_sent else EMAIL_NOT_SENT_MESSAGE
    return ResendOtpResponse(
        success=result.success,
        email_sent=result.email_sent,
        cooldown_seconds=result.cooldown_seconds,
        message=message,
    )


@router.post("/verify-otp", response_model=VerifyOtpResponse)
def verify_otp(
    request: Request,
    data: VerifyOtpBody,
    db: Session = Depends(get_db),
    watcher_factory=Depends(get_watcher_factory),
):
    ip, ua = _client_info(request)
    result = verify(
        db,
        data.email,
        data.otp_code,
        data.password,
        watcher_factory=watcher_factory,
        ip_address=ip,
        user_agent=ua,
    )
    return VerifyOtpResponse(
        success=result.success,
        session=SessionOut(access_token=result.session_token),
        user_id=result.user_id,
        provisioning=result.provisioning_state.value,
        message=result.message,
        diagnostics=result.diagnostics,
    )


@router.post("/verify-otp/cancel", response_model=CancelWaitResponse)
def cancel_verify_wait(data: CancelWaitBody, db: Session = Depends(get_db)):
    """Stop a pending /verify-otp from waiting on provisioning. Same answer for unknown emails."""
    return CancelWaitResponse(success=True, cancelled=cancel_wait(db, data.email))


@router.get("/me", response_model=IdentityResponse)
def me(db: Session = Depends(get_db), current_identity: Identity = Depends(get_current_identity)):
    return IdentityResponse(
        id=current_identity.id,
        email=current_identity.email,
        email_confirmed=bool(current_identity.email_confirmed),
        is_client_account=is_client_account(db, current_identity.id),
    )
