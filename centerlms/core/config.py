import os
from datetime import timedelta
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent.parent

DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE_DIR}/center_lms.db")

# DEV defaults: override every secret through the environment in production.
SECRET_KEY = os.getenv("SECRET_KEY", "change-me-in-production")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE = timedelta(minutes=60)

CURRENCY = "XAF"

# Center billing policy
BILLING_PERIOD = timedelta(days=int(os.getenv("BILLING_PERIOD_DAYS", "30")))
PAYMENT_WARNING_DAYS = 3  # warn when the next payment is due within 3 days
REENROLLMENT_GRACE_DAYS = 30  # ejected students may pay back in within 30 days

# Platform subscription gate
TRIAL_DAYS = 7
SUBSCRIPTION_PRICE = 1000
SUBSCRIPTION_PERIOD = timedelta(days=30)
SUBSCRIPTION_WARNING_DAYS = 3
EXCLUDED_ROLES = ("admin", "staff")

# Payment gateway
PAYMENT_GATEWAY_URL = os.getenv("PAYMENT_GATEWAY_URL", "https://api.pay.mynkwa.com")
PAYMENT_GATEWAY_API_KEY = os.getenv("PAYMENT_GATEWAY_API_KEY", "")
PAYMENT_GATEWAY_TIMEOUT = 30.0
# base64 DER body or full PEM of the gateway's RSA public key
PAYMENT_WEBHOOK_PUBLIC_KEY = os.getenv("PAYMENT_WEBHOOK_PUBLIC_KEY", "")
PAYMENT_CALLBACK_URL = os.getenv("PAYMENT_CALLBACK_URL", "")

# Email delivery through Resend; empty key logs instead of sending
EMAIL_API_KEY = os.getenv("EMAIL_API_KEY", "")
EMAIL_FROM = os.getenv("EMAIL_FROM", "noreply@resend.dev")
SUPPORT_EMAIL = os.getenv("SUPPORT_EMAIL", "support@example.com")
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000")

CRON_SECRET = os.getenv("CRON_SECRET", "")

RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"
