"""Client Portal onboarding - FastAPI application."""
# Load .env before any app code that might read config
from dotenv import load_dotenv
from pathlib import Path
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from client_portal.config import get_settings
from client_portal.database import Base, engine
# Import models so Base.metadata has all tables before create_all (schema source of truth)
from client_portal.models import (  # noqa: F401
    Identity, VerificationCode, BusinessAccount, AccountType, ProvisioningEvent,
)
from client_portal.errors import OnboardingError
from client_portal.routers import auth, accounts
from client_portal.services import provisioning, provisioning_watcher
from client_portal.services.notifications import email_configured

log = logging.getLogger("uvicorn.error")

settings = get_settings()
app = FastAPI(title=settings.app_name, debug=settings.debug)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(accounts.router)


@app.exception_handler(OnboardingError)
def onboarding_error_handler(request: Request, exc: OnboardingError):
    # Business-level failures are handled outcomes: 200 with an `error` kind (400 for bad input)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
def request_validation_handler(request: Request, exc: RequestValidationError):
    problems = []
    for err in exc.errors():
        field = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        problems.append(f"{field}: {err.get('msg')}" if field else str(err.get("msg")))
    return JSONResponse(
        status_code=400,
        content={"error": "validation_error", "message": "; ".join(problems) or "Malformed request."},
    )


@app.exception_handler(Exception)
def unexpected_error_handler(request: Request, exc: Exception):
    log.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": "internal_error", "message": "An unexpected error occurred. Please try again."},
    )


@app.on_event("startup")
def startup():
    if settings.mailgun_api_key and settings.mailgun_domain:
        from_addr = settings.mailgun_from_email or ""
        from_domain = from_addr.split("@")[-1].lower() if "@" in from_addr else ""
        send_domain = (settings.mailgun_domain or "").strip().lower()
        if from_domain and send_domain and from_domain != send_domain:
            log.warning("[Mailgun] from=%s does not match domain=%s. Emails may not be delivered!", from_addr, settings.mailgun_domain)
        else:
            log.info("[Mailgun] Using domain=%s from=%s", settings.mailgun_domain, from_addr or "(none)")
    elif not email_configured():
        log.warning("[Email] No provider configured - verification emails will fail (emailSent=false); set MAILGUN_API_KEY and MAILGUN_DOMAIN in .env")
    try:
        Base.metadata.create_all(bind=engine)
    except Exception as e:
        log.warning("Database startup failed (tables skipped). Check DATABASE_URL and network. Error: %s", e)

    if settings.provisioning_trigger_enabled:
        provisioning.start_scheduler()


@app.on_event("shutdown")
def shutdown():
    cancelled = provisioning_watcher.cancel_all()
    if cancelled:
        log.info("[Watcher] Cancelled %s running watcher(s) on shutdown", cancelled)
    provisioning.shutdown_scheduler()


@app.get("/")
def root():
    return {"app": settings.app_name, "status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}
