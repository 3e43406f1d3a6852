from centerlms.models.center import Center
from centerlms.models.enrollment import Enrollment, EnrollmentStatus
from tests.conftest import TestingSessionLocal, student_headers


def _seats(center_id) -> int:
    db = TestingSessionLocal()
    try:
        return db.get(Center, center_id).current_enrollment
    finally:
        db.close()


def _claim(client, headers, seed, center="center_a"):
    return client.post(
        "/enrollments/centers",
        headers=headers,
        json={"course_id": seed["center_course"], "center_id": seed[center]},
    )


def test_claim_holds_a_seat_as_pending(client, seed):
    r = _claim(client, student_headers(client), seed)
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["status"] == "Pending"
    assert body["center_id"] == seed["center_a"]
    assert body["next_payment_due"] is not None
    assert _seats(seed["center_a"]) == 1


def test_repeat_claim_reuses_row_and_seat(client, seed):
    headers = student_headers(client)
    first = _claim(client, headers, seed)
    second = _claim(client, headers, seed)
    assert second.status_code == 201, second.text
    assert second.json()["enrollment_id"] == first.json()["enrollment_id"]
    assert _seats(seed["center_a"]) == 1

    db = TestingSessionLocal()
    try:
        assert db.query(Enrollment).filter(Enrollment.course_id == seed["center_course"]).count() == 1
    finally:
        db.close()


def test_claim_at_another_center_is_location_locked(client, seed):
    headers = student_headers(client)
    _claim(client, headers, seed)
    r = _claim(client, headers, seed, center="center_b")
    assert r.status_code == 422
    assert r.json()["code"] == "VALIDATION_ERROR"
    assert _seats(seed["center_b"]) == 0


def test_claim_full_center_is_rejected(client, seed):
    assert _claim(client, student_headers(client, 1), seed, center="center_b").status_code == 201
    r = _claim(client, student_headers(client, 2), seed, center="center_b")
    assert r.status_code == 409
    assert r.json()["code"] == "CENTER_LOCKED"
    assert r.json()["detail"] == "This center is no longer accepting enrollments"
    assert _seats(seed["center_b"]) == 1


def test_claim_unknown_course_and_wrong_course_type(client, seed):
    headers = student_headers(client)
    r = client.post(
        "/enrollments/centers",
        headers=headers,
        json={"course_id": 999_999, "center_id": seed["center_a"]},
    )
    assert r.status_code == 404
    assert r.json()["code"] == "COURSE_NOT_FOUND"

    r = client.post(
        "/enrollments/centers",
        headers=headers,
        json={"course_id": seed["online_course"], "center_id": seed["center_a"]},
    )
    assert r.status_code == 422


def test_claim_requires_login(client, seed):
    r = client.post(
        "/enrollments/centers",
        json={"course_id": seed["center_course"], "center_id": seed["center_a"]},
    )
    assert r.status_code == 401


def test_claim_when_already_active(client, seed):
    headers = student_headers(client)
    enrollment_id = _claim(client, headers, seed).json()["enrollment_id"]
    db = TestingSessionLocal()
    try:
        db.get(Enrollment, enrollment_id).status = EnrollmentStatus.ACTIVE
        db.commit()
    finally:
        db.close()

    r = _claim(client, headers, seed)
    assert r.status_code == 409
    assert r.json()["code"] == "ALREADY_ENROLLED"
    assert _seats(seed["center_a"]) == 1


def test_online_purchase_and_my_enrollments(client, seed):
    headers = student_headers(client)
    r = client.post("/enrollments", headers=headers, json={"course_id": seed["online_course"]})
    assert r.status_code == 201, r.text
    assert r.json()["status"] == "Pending"
    assert r.json()["center_id"] is None
    assert r.json()["next_payment_due"] is None

    r = client.post("/enrollments", headers=headers, json={"course_id": seed["center_course"]})
    assert r.status_code == 422

    mine = client.get("/enrollments/me", headers=headers)
    assert mine.status_code == 200
    assert [e["course_id"] for e in mine.json()] == [seed["online_course"]]


def test_initiate_payment_stores_gateway_ids(client, seed, gateway):
    headers = student_headers(client)
    enrollment_id = _claim(client, headers, seed).json()["enrollment_id"]

    r = client.post(f"/enrollments/{enrollment_id}/pay", headers=headers, json={})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["payment_id"] == "pay_0001"
    assert body["reference"].startswith(f"INFRASTRUCTURE_BASED_{enrollment_id[:8]}_")
    assert body["payment_link"] == "https://pay.example.com/pay_0001"

    amount, phone, reference, _ = gateway.collected[0]
    assert amount == 5000
    assert phone == "237670000001"
    assert reference == body["reference"]

    db = TestingSessionLocal()
    try:
        enrollment = db.get(Enrollment, enrollment_id)
        assert enrollment.transaction_id == "pay_0001"
        assert enrollment.payment_reference == body["reference"]
    finally:
        db.close()


def test_initiate_payment_rules(client, seed, gateway):
    owner = student_headers(client, 1)
    enrollment_id = _claim(client, owner, seed).json()["enrollment_id"]

    r = client.post(f"/enrollments/{enrollment_id}/pay", headers=student_headers(client, 2), json={})
    assert r.status_code == 403

    r = client.post(
        f"/enrollments/{enrollment_id}/pay", headers=owner, json={"phone_number": "12345"}
    )
    assert r.status_code == 422

    gateway.unavailable = True
    r = client.post(f"/enrollments/{enrollment_id}/pay", headers=owner, json={})
    assert r.status_code == 502
    assert r.json()["code"] == "UPSTREAM_PAYMENT_ERROR"

    db = TestingSessionLocal()
    try:
        assert db.get(Enrollment, enrollment_id).transaction_id is None
    finally:
        db.close()
