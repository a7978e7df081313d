"""Onboarding failure kinds. Each carries a stable `kind` (the JSON `error` field) and a user-facing message."""


class OnboardingError(Exception):
    """Raised when an onboarding operation fails in a way the caller can act on."""

    kind = "onboarding_error"
    status_code = 200
    default_message = "Something went wrong. Please try again."

    def __init__(self, message: str | None = None, **extra):
        self.message = message or self.default_message
        self.extra = extra
        super().__init__(self.message)

    def to_dict(self) -> dict:
        body = {"error": self.kind, "message": self.message}
        body.update(self.extra)
        return body


class ValidationError(OnboardingError):
    kind = "validation_error"
    status_code = 400
    default_message = "Please fill in all required fields with valid values."


class DuplicateAccount(OnboardingError):
    kind = "duplicate_account"
    default_message = "An account with this email already exists. Please sign in instead."


class InvalidOrExpiredCode(OnboardingError):
    kind = "invalid_or_expired_code"
    default_message = "Invalid or expired verification code. Request a new code and try again."


class TooManyRequests(OnboardingError):
    kind = "too_many_requests"
    default_message = "A code was sent moments ago. Please wait before requesting another one."


class EmailDeliveryFailure(OnboardingError):
    kind = "email_delivery_failure"
    default_message = "We could not send the verification email. Use 'Resend code' to try again."


class SessionEstablishmentFailed(OnboardingError):
    kind = "session_establishment_failed"
    default_message = (
        "Your email is verified, but we could not sign you in. "
        "Please sign in manually with your email and password."
    )


class ProvisioningTimeout(OnboardingError):
    kind = "provisioning_timeout"
    default_message = "Your account is still being set up. Please complete your company profile to continue."


class NoPendingSignup(OnboardingError):
    kind = "no_pending_signup"
    default_message = "There is no pending signup for this email. Sign up first, or sign in if you already verified."


class AccountNotFound(OnboardingError):
    kind = "account_not_found"
    default_message = "Account not found."
