"""Outbound email (Mailgun preferred, SendGrid fallback). Callers only see a True/False delivery result."""
import html
import logging

import httpx

from client_portal.config import get_settings

logger = logging.getLogger(__name__)

MAILGUN_US_BASE = "https://api.mailgun.net"
MAILGUN_EU_BASE = "https://api.eu.mailgun.net"


def email_configured() -> bool:
    s = get_settings()
    return bool((s.mailgun_api_key and s.mailgun_domain) or s.sendgrid_api_key)


def send_email(to_email: str, subject: str, html_content: str, text_content: str | None = None) -> bool:
    """Send email via Mailgun (preferred) or SendGrid. Returns True only if the provider accepted it."""
    settings = get_settings()
    has_key = bool(settings.mailgun_api_key)
    has_domain = bool(settings.mailgun_domain)
    if has_key and has_domain:
        logger.info("[Email] Calling Mailgun API: to=%s subject=%s domain=%s", to_email, subject, settings.mailgun_domain)
        return _send_email_mailgun(to_email, subject, html_content, text_content=text_content, settings=settings)
    if settings.sendgrid_api_key:
        return _send_email_sendgrid(to_email, subject, html_content, text_content=text_content, settings=settings)
    logger.warning(
        "[Email] NOT SENT: to=%s subject=%s. MAILGUN_API_KEY=%s MAILGUN_DOMAIN=%s. Set both in .env and restart the server.",
        to_email,
        subject,
        "set" if has_key else "MISSING",
        "set" if has_domain else "MISSING",
    )
    return False


def _send_email_mailgun(to_email: str, subject: str, html_content: str, text_content: str | None = None, settings=None) -> bool:
    if settings is None:
        settings = get_settings()
    base = (settings.mailgun_base_url or MAILGUN_US_BASE).strip().rstrip("/")
    domain = (settings.mailgun_domain or "").strip().lower()
    from_addr = (settings.mailgun_from_email or "").strip()
    from_domain = from_addr.split("@")[-1].lower() if "@" in from_addr else ""
    if domain and from_domain != domain:
        from_addr = f"noreply@{domain}"
        logger.info("[Mailgun] Using from=%s (must match domain %s for delivery)", from_addr, domain)
    data = {
        "from": f"{settings.mailgun_from_name} <{from_addr}>",
        "to": to_email,
        "subject": subject,
        "text": text_content or "",
        "html": html_content or "",
    }
    try:
        with httpx.Client(timeout=10.0) as client:
            r = client.post(f"{base}/v3/{domain}/messages", auth=("api", settings.mailgun_api_key), data=data)
            if 200 <= r.status_code < 300:
                logger.info("[Mailgun] API success: to=%s status=%s", to_email, r.status_code)
                return True
            if r.status_code == 401 and base == MAILGUN_US_BASE:
                logger.info("[Mailgun] 401 with US endpoint. Retrying with EU endpoint...")
                r2 = client.post(f"{MAILGUN_EU_BASE}/v3/{domain}/messages", auth=("api", settings.mailgun_api_key), data=data)
                if 200 <= r2.status_code < 300:
                    logger.info("[Mailgun] API success (EU): to=%s", to_email)
                    return True
                logger.warning("[Mailgun] EU request failed: status=%s body=%s", r2.status_code, r2.text[:500])
                return False
            logger.warning("[Mailgun] API failed: status=%s to=%s body=%s", r.status_code, to_email, r.text[:500])
            return False
    except httpx.HTTPError as e:
        logger.warning("[Mailgun] Request error: to=%s error=%s: %s", to_email, type(e).__name__, e)
        return False


def _send_email_sendgrid(to_email: str, subject: str, html_content: str, text_content: str | None = None, settings=None) -> bool:
    if settings is None:
        settings = get_settings()
    from sendgrid import SendGridAPIClient
    from sendgrid.helpers.mail import Mail

    message = Mail(
        from_email=(settings.sendgrid_from_email, settings.sendgrid_from_name),
        to_emails=to_email,
        subject=subject,
        html_content=html_content,
        plain_text_content=text_content or "",
    )
    try:
        response = SendGridAPIClient(settings.sendgrid_api_key).send(message)
    except Exception as e:  # python_http_client raises one class per HTTP status
        logger.warning("[SendGrid] Send failed: to=%s error=%s: %s", to_email, type(e).__name__, e)
        return False
    return 200 <= getattr(response, "status_code", 500) < 300


def send_verification_email(to_email: str, code: str, first_name: str | None = None) -> bool:
    """Send the 6-digit signup verification code."""
    s = get_settings()
    name = html.escape((first_name or "").strip() or "there")
    minutes = s.otp_expire_minutes
    subject = "[Client Portal] Your verification code"
    text_content = (
        f"Hi {name}, your Client Portal verification code is: {code}. It expires in {minutes} minutes. "
        "If you didn't sign up, you can ignore this email."
    )
    html_content = f"""
    <p>Hi <strong>{name}</strong>,</p>
    <p>Thank you for signing up for the Client Portal. Your verification code is:
    <strong style="font-size:1.4em;letter-spacing:0.3em;font-family:monospace;">{code}</strong></p>
    <p>This code expires in {minutes} minutes.</p>
    <p><strong>Security note:</strong> if you didn't sign up, you can safely ignore this email.</p>
    """
    ok = send_email(to_email, subject, html_content, text_content=text_content)
    if ok:
        logger.info("[Verification] Code email accepted for %s", to_email)
    else:
        logger.warning("[Verification] Code email NOT delivered to %s", to_email)
    return ok


def send_welcome_email(to_email: str, first_name: str | None = None, company_name: str | None = None) -> bool:
    """Send welcome email once the client account is provisioned."""
    name = html.escape((first_name or "").strip() or "there")
    company = html.escape((company_name or "").strip() or "your company")
    subject = "[Client Portal] Welcome - your account is ready"
    text = f"Hi {name}, welcome to the Client Portal. The account for {company} is verified and ready to use."
    html_content = f"""
    <p>Hi {name},</p>
    <p>Welcome to the Client Portal. The account for <strong>{company}</strong> is verified and ready to use.</p>
    """
    return send_email(to_email, subject, html_content, text_content=text)
