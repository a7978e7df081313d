"""HTTP surface: status codes, camelCase bodies, error kinds, bearer-protected account routes."""
import threading
import time

from fastapi.testclient import TestClient

from client_portal.errors import EmailDeliveryFailure
from client_portal.main import app
from client_portal.services import provisioning_watcher
from client_portal.services.provisioning_watcher import ProvisioningWatcher

from conftest import FakeSleep, make_watcher_factory

SIGNUP = {
    "email": "a@biz.com",
    "password": "Pass1234",
    "companyName": "Acme",
    "firstName": "Jo",
    "lastName": "Doe",
}


def _signup_and_verify(client, outbox, use_watcher, sleep, body=SIGNUP):
    use_watcher(make_watcher_factory(sleep))
    assert client.post("/signup", json=body).status_code == 200
    response = client.post(
        "/verify-otp",
        json={"email": body["email"], "otpCode": outbox.last_code(body["email"]), "password": body["password"]},
    )
    assert response.status_code == 200
    return response.json()


def _auth(token):
    return {"Authorization": f"Bearer {token}"}


def test_root_and_health(client):
    assert client.get("/").json()["status"] == "ok"
    assert client.get("/health").json() == {"status": "healthy"}


def test_signup_returns_email_sent(client, outbox):
    response = client.post("/signup", json=SIGNUP)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["emailSent"] is True
    assert outbox.last_code("a@biz.com")


def test_signup_reports_undelivered_email(client, outbox):
    outbox.deliver = False

    body = client.post("/signup", json=SIGNUP).json()

    assert body["success"] is True
    assert body["emailSent"] is False
    assert body["message"] == EmailDeliveryFailure.default_message


def test_signup_with_missing_field_is_400(client, outbox):
    payload = dict(SIGNUP, companyName="  ")

    response = client.post("/signup", json=payload)

    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"
    assert "companyName" in response.json()["message"]


def test_duplicate_signup_is_a_handled_outcome(client, outbox):
    client.post("/signup", json=SIGNUP)

    response = client.post("/signup", json=SIGNUP)

    assert response.status_code == 200
    assert response.json()["error"] == "duplicate_account"


def test_verify_with_malformed_code_is_400(client, outbox):
    client.post("/signup", json=SIGNUP)

    response = client.post("/verify-otp", json={"email": "a@biz.com", "otpCode": "12ab", "password": "Pass1234"})

    assert response.status_code == 400
    assert "otpCode" in response.json()["message"]


def test_verify_with_wrong_code(client, outbox, use_watcher):
    use_watcher(make_watcher_factory(FakeSleep()))
    client.post("/signup", json=SIGNUP)
    wrong = "000000" if outbox.last_code("a@biz.com") != "000000" else "111111"

    response = client.post("/verify-otp", json={"email": "a@biz.com", "otpCode": wrong, "password": "Pass1234"})

    assert response.status_code == 200
    assert response.json()["error"] == "invalid_or_expired_code"


def test_verify_ready_flow_and_me(client, outbox, use_watcher):
    body = _signup_and_verify(client, outbox, use_watcher, FakeSleep(materialize_on_tick=1))

    assert body["success"] is True
    assert body["provisioning"] == "ready"
    assert body["session"]["token_type"] == "bearer"
    me = client.get("/me", headers=_auth(body["session"]["access_token"])).json()
    assert me == {"id": body["userId"], "email": "a@biz.com", "emailConfirmed": True, "isClientAccount": True}


def test_verify_needs_repair_then_repair_endpoint(client, outbox, use_watcher):
    body = _signup_and_verify(client, outbox, use_watcher, FakeSleep())
    token = body["session"]["access_token"]
    user_id = body["userId"]

    assert body["provisioning"] == "needs-repair"
    assert body["message"]
    assert body["diagnostics"]["hasBusinessRecord"] is False

    before = client.get(f"/accounts/{user_id}/diagnostics", headers=_auth(token)).json()
    assert before["healthy"] is False

    repaired = client.post(f"/accounts/{user_id}/repair", headers=_auth(token), json={"companyName": "Fallback"})
    assert repaired.json() == {"success": True, "created": True, "identityId": user_id}
    again = client.post(f"/accounts/{user_id}/repair", headers=_auth(token))
    assert again.json()["created"] is False

    after = client.get(f"/accounts/{user_id}/diagnostics", headers=_auth(token)).json()
    assert after["healthy"] is True
    assert after["issues"] == []
    assert client.get("/me", headers=_auth(token)).json()["isClientAccount"] is True


def test_account_routes_require_own_token(client, outbox, use_watcher):
    first = _signup_and_verify(client, outbox, use_watcher, FakeSleep(materialize_on_tick=1))
    second = _signup_and_verify(
        client, outbox, use_watcher, FakeSleep(materialize_on_tick=1), body=dict(SIGNUP, email="b@biz.com")
    )

    assert client.get(f"/accounts/{first['userId']}/diagnostics").status_code == 401
    response = client.get(
        f"/accounts/{first['userId']}/diagnostics", headers=_auth(second["session"]["access_token"])
    )
    assert response.status_code == 403
    assert client.get("/me", headers=_auth("garbage")).status_code == 401


def test_resend_throttled_right_after_signup(client, outbox):
    client.post("/signup", json=SIGNUP)

    response = client.post("/resend-otp", json={"email": "a@biz.com"})

    assert response.status_code == 200
    body = response.json()
    assert body["error"] == "too_many_requests"
    assert 1 <= body["retryAfter"] <= 30


def test_resend_for_unknown_email(client, outbox):
    response = client.post("/resend-otp", json={"email": "ghost@biz.com"})

    assert response.json()["error"] == "no_pending_signup"


def test_cancel_stops_a_running_provisioning_wait(client, outbox, use_watcher):
    # Real Event-based sleep with a long interval: only the cancel call can end this wait early
    use_watcher(
        lambda identity_id: ProvisioningWatcher(
            identity_id, lambda i: False, max_attempts=3, interval_ms=60_000, backoff_after=10, max_interval_ms=60_000
        )
    )
    client.post("/signup", json=SIGNUP)
    payload = {"email": "a@biz.com", "otpCode": outbox.last_code("a@biz.com"), "password": "Pass1234"}
    results = {}

    def verify_in_background():
        results["response"] = TestClient(app).post("/verify-otp", json=payload)

    thread = threading.Thread(target=verify_in_background)
    thread.start()
    deadline = time.monotonic() + 10
    while not provisioning_watcher._active and time.monotonic() < deadline:
        time.sleep(0.01)

    cancelled = client.post("/verify-otp/cancel", json={"email": "A@biz.com"})
    thread.join(10)

    assert cancelled.json() == {"success": True, "cancelled": True}
    body = results["response"].json()
    assert body["success"] is True
    assert body["provisioning"] == "failed"
    assert body["message"]
    assert provisioning_watcher._active == {}


def test_cancel_without_running_wait(client, outbox):
    client.post("/signup", json=SIGNUP)

    assert client.post("/verify-otp/cancel", json={"email": "a@biz.com"}).json() == {"success": True, "cancelled": False}
    assert client.post("/verify-otp/cancel", json={"email": "ghost@biz.com"}).json()["cancelled"] is False
