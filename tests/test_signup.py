"""Signup Handler: validation, duplicate detection, single-transaction identity creation."""
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from client_portal.errors import DuplicateAccount, ValidationError
from client_portal.models import AccountType, BusinessAccount, Identity, ProvisioningEvent, VerificationCode
from client_portal.services import code_registry, signup as signup_service
from client_portal.services.auth import verify_password
from client_portal.services.diagnostics import repair
from client_portal.services.signup import signup

from conftest import signup_request


def _identities(db, email):
    db.expire_all()
    return db.query(Identity).filter(Identity.email == email).all()


def test_signup_creates_unconfirmed_identity_and_sends_code(db, now, outbox):
    result = signup(db, signup_request(), now=now)

    assert result.success is True
    assert result.email_sent is True
    [identity] = _identities(db, "a@biz.com")
    assert identity.email_confirmed is False
    assert verify_password("Pass1234", identity.hashed_password)
    assert identity.user_metadata == {
        "company_name": "Acme",
        "first_name": "Jo",
        "last_name": "Doe",
        "account_type": "client",
    }

    record = code_registry.get_record(db, "a@biz.com")
    assert record.code == outbox.last_code("a@biz.com")
    assert record.signup_metadata["company_name"] == "Acme"
    assert outbox.codes[-1]["first_name"] == "Jo"


def test_email_is_normalized(db, now, outbox):
    signup(db, signup_request(email="  A@Biz.COM "), now=now)

    assert len(_identities(db, "a@biz.com")) == 1
    assert outbox.last_code("a@biz.com") is not None


def test_signup_records_event(db, now, outbox):
    signup(db, signup_request(), now=now, ip_address="10.0.0.1", user_agent="pytest")

    event = db.query(ProvisioningEvent).filter(ProvisioningEvent.category == "signup").one()
    assert event.actor_email == "a@biz.com"
    assert event.ip_address == "10.0.0.1"


@pytest.mark.parametrize(
    "overrides, missing",
    [
        ({"email": ""}, "email"),
        ({"password": ""}, "password"),
        ({"company": "   "}, "companyName"),
        ({"first": ""}, "firstName"),
        ({"last": ""}, "lastName"),
    ],
)
def test_missing_fields_are_rejected(db, now, outbox, overrides, missing):
    with pytest.raises(ValidationError) as exc:
        signup(db, signup_request(**overrides), now=now)

    assert missing in exc.value.message
    assert exc.value.status_code == 400
    assert db.query(Identity).count() == 0
    assert outbox.codes == []


def test_invalid_email_is_rejected(db, now, outbox):
    with pytest.raises(ValidationError):
        signup(db, signup_request(email="not-an-email"), now=now)
    assert db.query(Identity).count() == 0


def test_duplicate_signup_is_rejected(db, now, outbox):
    signup(db, signup_request(), now=now)
    first_code = outbox.last_code("a@biz.com")

    with pytest.raises(DuplicateAccount) as exc:
        signup(db, signup_request(company="Other"), now=now + timedelta(minutes=1))

    assert exc.value.kind == "duplicate_account"
    assert len(_identities(db, "a@biz.com")) == 1
    assert len(outbox.codes) == 1
    # The original code is untouched
    assert code_registry.get_record(db, "a@biz.com").code == first_code


def test_confirmed_identity_is_a_duplicate(db, now, outbox):
    signup(db, signup_request(), now=now)
    identity = _identities(db, "a@biz.com")[0]
    identity.email_confirmed = True
    code_registry.invalidate_all(db, "a@biz.com")
    db.commit()

    with pytest.raises(DuplicateAccount):
        signup(db, signup_request(), now=now + timedelta(hours=1))


def test_orphaned_unconfirmed_identity_is_replaced(db, now, outbox):
    signup(db, signup_request(company="Old Co"), now=now)

    # Original code has expired, nobody verified
    later = now + timedelta(minutes=30)
    result = signup(db, signup_request(company="New Co"), now=later)

    assert result.success is True
    [identity] = _identities(db, "a@biz.com")
    assert identity.user_metadata["company_name"] == "New Co"
    assert code_registry.has_live_code(db, "a@biz.com", later)
    assert db.query(VerificationCode).count() == 1


def test_orphan_with_business_record_is_replaced(db, now, outbox):
    signup(db, signup_request(company="Old Co"), now=now)
    repair(db, _identities(db, "a@biz.com")[0].id)

    result = signup(db, signup_request(company="New Co"), now=now + timedelta(minutes=30))

    assert result.success is True
    [identity] = _identities(db, "a@biz.com")
    assert identity.user_metadata["company_name"] == "New Co"
    # The abandoned signup's business record and account-type tag went with it
    assert db.query(BusinessAccount).count() == 0
    assert db.query(AccountType).count() == 0


def test_failure_after_identity_creation_rolls_back(db, now, outbox, monkeypatch):
    def broken_issue(*args, **kwargs):
        raise OperationalError("INSERT INTO verification_codes", {}, Exception("disk I/O error"))

    monkeypatch.setattr(signup_service.code_registry, "issue", broken_issue)

    with pytest.raises(OperationalError):
        signup(db, signup_request(), now=now)

    assert _identities(db, "a@biz.com") == []
    assert outbox.codes == []


def test_email_delivery_failure_keeps_identity_and_code(db, now, outbox):
    outbox.deliver = False

    result = signup(db, signup_request(), now=now)

    assert result.success is True
    assert result.email_sent is False
    assert len(_identities(db, "a@biz.com")) == 1
    assert code_registry.has_live_code(db, "a@biz.com", now)
