from datetime import timedelta

from sqlalchemy.exc import OperationalError

from centerlms.core import config
from centerlms.core.timeutils import as_utc, utcnow
from centerlms.models.center import Center
from centerlms.models.enrollment import Enrollment, EnrollmentStatus
from centerlms.services import capacity
from centerlms.services.notifier import NoticeKind
from tests.conftest import TestingSessionLocal, post_webhook, student_headers


def _claim_and_pay(client, seed, n=1, center="center_a"):
    headers = student_headers(client, n)
    r = client.post(
        "/enrollments/centers",
        headers=headers,
        json={"course_id": seed["center_course"], "center_id": seed[center]},
    )
    assert r.status_code == 201, r.text
    enrollment_id = r.json()["enrollment_id"]
    pay = client.post(f"/enrollments/{enrollment_id}/pay", headers=headers, json={})
    assert pay.status_code == 200, pay.text
    return enrollment_id, pay.json(), headers


def _state(enrollment_id, center_id):
    db = TestingSessionLocal()
    try:
        enrollment = db.get(Enrollment, enrollment_id)
        center = db.get(Center, center_id)
        return enrollment, center.current_enrollment, center.total_earnings
    finally:
        db.close()


def _event(payment, status):
    return {
        "id": payment["payment_id"],
        "status": status,
        "reference": payment["reference"],
        "amount": 5000,
    }


def test_success_webhook_activates_and_credits_once(client, seed, webhook_config, notifier):
    enrollment_id, payment, _ = _claim_and_pay(client, seed)
    before = utcnow()

    r = post_webhook(client, webhook_config, _event(payment, "success"))
    assert r.status_code == 200, r.text
    assert r.json() == {"received": True, "outcome": "activated"}

    enrollment, seats, earnings = _state(enrollment_id, seed["center_a"])
    assert enrollment.status == EnrollmentStatus.ACTIVE
    assert enrollment.is_ejected is False
    assert seats == 1
    assert earnings == 5000
    due = as_utc(enrollment.next_payment_due)
    assert before + config.BILLING_PERIOD - timedelta(minutes=1) < due
    assert due < utcnow() + config.BILLING_PERIOD + timedelta(minutes=1)

    # replayed delivery
    r = post_webhook(client, webhook_config, _event(payment, "success"))
    assert r.status_code == 200
    assert r.json()["outcome"] == "already_processed"
    enrollment, seats, earnings = _state(enrollment_id, seed["center_a"])
    assert enrollment.status == EnrollmentStatus.ACTIVE
    assert seats == 1
    assert earnings == 5000

    assert notifier.kinds() == [NoticeKind.RECEIPT, NoticeKind.OWNER_NOTICE]
    assert notifier.sent[0][1] == "student1@example.com"
    assert notifier.sent[1][1] == "owner.buea@example.com"
    assert "pay_0001" in notifier.sent[0][2]["transaction_id"]


def test_failed_webhook_releases_the_seat(client, seed, webhook_config):
    enrollment_id, payment, headers = _claim_and_pay(client, seed, center="center_b")
    assert _state(enrollment_id, seed["center_b"])[1] == 1

    r = post_webhook(client, webhook_config, _event(payment, "failed"))
    assert r.json()["outcome"] == "cancelled"
    enrollment, seats, earnings = _state(enrollment_id, seed["center_b"])
    assert enrollment.status == EnrollmentStatus.CANCELLED
    assert seats == 0
    assert earnings == 0

    # duplicate failure does not release again
    r = post_webhook(client, webhook_config, _event(payment, "canceled"))
    assert r.json()["outcome"] == "already_processed"
    assert _state(enrollment_id, seed["center_b"])[1] == 0

    # the seat is free for someone else now
    r = client.post(
        "/enrollments/centers",
        headers=student_headers(client, 2),
        json={"course_id": seed["center_course"], "center_id": seed["center_b"]},
    )
    assert r.status_code == 201


def test_failure_after_success_does_not_cancel(client, seed, webhook_config):
    enrollment_id, payment, _ = _claim_and_pay(client, seed)
    post_webhook(client, webhook_config, _event(payment, "success"))

    r = post_webhook(client, webhook_config, _event(payment, "failed"))
    assert r.status_code == 200
    assert r.json()["outcome"] == "already_processed"
    enrollment, seats, _ = _state(enrollment_id, seed["center_a"])
    assert enrollment.status == EnrollmentStatus.ACTIVE
    assert seats == 1


def test_pending_webhook_only_records_payload(client, seed, webhook_config):
    enrollment_id, payment, _ = _claim_and_pay(client, seed)
    r = post_webhook(client, webhook_config, _event(payment, "pending"))
    assert r.json()["outcome"] == "recorded"
    enrollment, seats, earnings = _state(enrollment_id, seed["center_a"])
    assert enrollment.status == EnrollmentStatus.PENDING
    assert enrollment.raw_response["status"] == "pending"
    assert (seats, earnings) == (1, 0)


def test_renewal_payment_extends_due_date(client, seed, webhook_config):
    enrollment_id, payment, headers = _claim_and_pay(client, seed)
    post_webhook(client, webhook_config, _event(payment, "success"))
    first_due = as_utc(_state(enrollment_id, seed["center_a"])[0].next_payment_due)

    renewal = client.post(f"/enrollments/{enrollment_id}/pay", headers=headers, json={}).json()
    assert renewal["payment_id"] != payment["payment_id"]
    r = post_webhook(client, webhook_config, _event(renewal, "success"))
    assert r.json()["outcome"] == "renewed"

    enrollment, seats, earnings = _state(enrollment_id, seed["center_a"])
    assert as_utc(enrollment.next_payment_due) == first_due + config.BILLING_PERIOD
    assert seats == 1
    assert earnings == 10000


def test_unknown_reference_is_acknowledged_without_effect(client, seed, webhook_config):
    r = post_webhook(
        client,
        webhook_config,
        {"id": "pay_x", "status": "success", "reference": "SOMETHING_ELSE_1", "amount": 10},
    )
    assert r.status_code == 200
    assert r.json()["outcome"] == "ignored"

    r = post_webhook(
        client,
        webhook_config,
        {"id": "pay_y", "status": "success", "reference": "INFRASTRUCTURE_BASED_nope_1"},
    )
    assert r.status_code == 200
    assert r.json()["outcome"] == "unmatched"


def test_webhook_signature_is_enforced(client, seed, webhook_config):
    enrollment_id, payment, _ = _claim_and_pay(client, seed)
    event = _event(payment, "success")

    r = client.post("/webhook/payment", json=event)
    assert r.status_code == 400

    r = post_webhook(client, webhook_config, event, signature="bm90IGEgc2lnbmF0dXJl")
    assert r.status_code == 403
    assert r.json()["code"] == "SIGNATURE_INVALID"

    enrollment, seats, earnings = _state(enrollment_id, seed["center_a"])
    assert enrollment.status == EnrollmentStatus.PENDING
    assert earnings == 0


def test_webhook_rejected_when_key_not_configured(client, seed, webhook_config, monkeypatch):
    monkeypatch.setattr(config, "PAYMENT_WEBHOOK_PUBLIC_KEY", "")
    r = post_webhook(client, webhook_config, {"id": "pay_1", "status": "success"})
    assert r.status_code == 403


def test_malformed_body_with_valid_signature(client, webhook_config):
    r = post_webhook(client, webhook_config, {"status": "success"})
    assert r.status_code == 400


def test_status_poll_settles_through_gateway(client, seed, gateway, notifier):
    enrollment_id, payment, headers = _claim_and_pay(client, seed)

    r = client.get("/enrollments/status", params={"paymentId": payment["payment_id"]}, headers=headers)
    assert r.status_code == 200
    assert r.json()["status"] == "Pending"

    gateway.complete(payment["payment_id"], "success")
    r = client.get("/enrollments/status", params={"paymentId": payment["payment_id"]}, headers=headers)
    assert r.status_code == 200
    assert r.json() == {
        "enrollment_id": enrollment_id,
        "status": "Active",
        "course_title": "Web Development Bootcamp",
        "course_slug": "web-dev-bootcamp",
    }
    assert _state(enrollment_id, seed["center_a"])[2] == 5000
    assert NoticeKind.RECEIPT in notifier.kinds()


def test_status_poll_is_owner_only(client, seed):
    _, payment, _ = _claim_and_pay(client, seed)
    r = client.get(
        "/enrollments/status",
        params={"paymentId": payment["payment_id"]},
        headers=student_headers(client, 2),
    )
    assert r.status_code == 404


def test_late_payment_after_failure_retakes_the_seat(client, seed, webhook_config):
    enrollment_id, payment, _ = _claim_and_pay(client, seed)
    post_webhook(client, webhook_config, _event(payment, "failed"))
    assert _state(enrollment_id, seed["center_a"])[1] == 0

    r = post_webhook(client, webhook_config, _event(payment, "success"))
    assert r.json()["outcome"] == "activated"
    enrollment, seats, earnings = _state(enrollment_id, seed["center_a"])
    assert enrollment.status == EnrollmentStatus.ACTIVE
    assert (seats, earnings) == (1, 5000)


def test_late_payment_into_full_center_needs_refund(client, seed, webhook_config):
    enrollment_id, payment, _ = _claim_and_pay(client, seed, center="center_b")
    post_webhook(client, webhook_config, _event(payment, "failed"))
    # someone else takes the only seat
    client.post(
        "/enrollments/centers",
        headers=student_headers(client, 2),
        json={"course_id": seed["center_course"], "center_id": seed["center_b"]},
    )

    r = post_webhook(client, webhook_config, _event(payment, "success"))
    assert r.status_code == 200
    assert r.json()["outcome"] == "refund_required"
    enrollment, seats, earnings = _state(enrollment_id, seed["center_b"])
    assert enrollment.status == EnrollmentStatus.CANCELLED
    assert (seats, earnings) == (1, 0)


def test_settlement_failure_is_still_acknowledged(client, seed, webhook_config, monkeypatch):
    enrollment_id, payment, _ = _claim_and_pay(client, seed)
    credit_earnings = capacity.credit_earnings

    def locked(db, center_id, amount):
        raise OperationalError("UPDATE centers", {}, Exception("database is locked"))

    monkeypatch.setattr(capacity, "credit_earnings", locked)
    r = post_webhook(client, webhook_config, _event(payment, "success"))
    assert r.status_code == 200
    assert r.json() == {"received": True, "outcome": "error"}

    # nothing from the failed attempt was kept
    enrollment, seats, earnings = _state(enrollment_id, seed["center_a"])
    assert enrollment.status == EnrollmentStatus.PENDING
    assert enrollment.settled_transaction_id is None
    assert (seats, earnings) == (1, 0)

    monkeypatch.setattr(capacity, "credit_earnings", credit_earnings)
    r = post_webhook(client, webhook_config, _event(payment, "success"))
    assert r.json()["outcome"] == "activated"
    assert _state(enrollment_id, seed["center_a"])[2] == 5000
