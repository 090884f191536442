import os

from dotenv import load_dotenv

# Load .env (VS Code terminals sometimes don't inject env vars)
load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./promo_engine.db")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Bounded wait for any single store round-trip (busy timeout / statement timeout)
STORE_TIMEOUT_SECONDS = float(os.getenv("STORE_TIMEOUT_SECONDS", "5"))
# Max wait for the in-process per-code lock before giving up with a conflict
LOCK_TIMEOUT_SECONDS = float(os.getenv("LOCK_TIMEOUT_SECONDS", "10"))
# Compare-and-swap attempts per redemption before surfacing a conflict
REDEEM_MAX_RETRIES = int(os.getenv("REDEEM_MAX_RETRIES", "5"))
# Base delay between attempts; doubles each retry, jittered, capped at one second
RETRY_BACKOFF_SECONDS = float(os.getenv("RETRY_BACKOFF_SECONDS", "0.02"))

# Used when the salon-commission-settings document has not been saved yet
SALON_COMMISSION_EARLY_PERCENT = float(os.getenv("SALON_COMMISSION_EARLY_PERCENT", "0"))
SALON_COMMISSION_FINAL_PERCENT = float(os.getenv("SALON_COMMISSION_FINAL_PERCENT", "10"))

BOOKING_URL = os.getenv("BOOKING_URL", "http://localhost:3000/booking")

# Email delivery; anything but "1" logs notifications instead of sending them
EMAIL_ENABLED = os.getenv("EMAIL_ENABLED", "0") == "1"
SMTP_HOST = os.getenv("SMTP_HOST", "localhost")
SMTP_PORT = int(os.getenv("SMTP_PORT", "465"))
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
FROM_EMAIL = os.getenv("FROM_EMAIL", SMTP_USER or "noreply@localhost")
