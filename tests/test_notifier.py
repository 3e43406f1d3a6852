import resend

from centerlms.core import config
from centerlms.services.notifier import EmailNotifier, LogNotifier, NoticeKind, get_notifier

PAYLOAD = {
    "student_name": "Student One",
    "student_email": "student1@example.com",
    "course_name": "Web Development Bootcamp",
    "center_name": "Buea Tech Hub",
    "amount": 5000,
    "next_payment_due": "18 November 2026",
    "pay_url": "http://localhost:8000/enrollment/abc/pay",
    "days_remaining": 2,
}


def test_email_notifier_sends_through_resend(monkeypatch):
    sent = []

    def fake_send(params):
        sent.append(params)
        return {"id": "email_1"}

    monkeypatch.setattr(resend.Emails, "send", fake_send)
    EmailNotifier("re_test_key", "noreply@example.com").send(
        NoticeKind.PAYMENT_WARNING, "student1@example.com", PAYLOAD
    )

    assert resend.api_key == "re_test_key"
    assert len(sent) == 1
    assert sent[0]["from"] == "noreply@example.com"
    assert sent[0]["to"] == ["student1@example.com"]
    assert sent[0]["subject"] == "Payment due in 2 day(s): Web Development Bootcamp"
    assert "Buea Tech Hub" in sent[0]["html"]


def test_provider_errors_do_not_reach_the_caller(monkeypatch):
    def down(params):
        raise RuntimeError("provider unavailable")

    monkeypatch.setattr(resend.Emails, "send", down)
    EmailNotifier("re_test_key", "noreply@example.com").send(
        NoticeKind.PAYMENT_WARNING, "student1@example.com", PAYLOAD
    )


def test_without_api_key_notices_are_only_logged(monkeypatch):
    monkeypatch.setattr(config, "EMAIL_API_KEY", "")
    assert isinstance(get_notifier(), LogNotifier)
    monkeypatch.setattr(config, "EMAIL_API_KEY", "re_live")
    assert isinstance(get_notifier(), EmailNotifier)
