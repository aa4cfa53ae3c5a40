"""
Docketwise Sync Configuration
"""
import os
from pathlib import Path

from dotenv import dotenv_values

# Load environment variables from .env file
_env_path = Path(__file__).parent / ".env"
if _env_path.exists():
    for key, value in dotenv_values(_env_path).items():
        if value and not os.environ.get(key):  # Set if value exists and env not already set
            os.environ[key] = value


def _int_env(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


# Base paths
BASE_DIR = Path(__file__).parent

# Docketwise API / OAuth
DOCKETWISE_API_URL = os.getenv("DOCKETWISE_API_URL", "https://app.docketwise.com/api/v1")
DOCKETWISE_OAUTH_TOKEN_URL = os.getenv(
    "DOCKETWISE_OAUTH_TOKEN_URL", "https://app.docketwise.com/oauth/token"
)
DOCKETWISE_CLIENT_ID = os.getenv("DOCKETWISE_CLIENT_ID", "")
DOCKETWISE_CLIENT_SECRET = os.getenv("DOCKETWISE_CLIENT_SECRET", "")
# Static token override, mostly for local runs
DOCKETWISE_ACCESS_TOKEN = os.getenv("DOCKETWISE_ACCESS_TOKEN")

# Rate limiting (Docketwise allows 120 requests/minute)
RATE_LIMIT_DELAY_SECONDS = 0.6
RATE_LIMIT_STATUSES = (419, 429)
MAX_RETRIES = 3
RATE_LIMIT_RETRY_DELAY_SECONDS = 120
HTTP_TIMEOUT_SECONDS = 30.0

# Pagination
PAGE_SIZE = 200
MATTER_MAX_PAGES = 20
USER_MAX_PAGES = 20
CONTACT_MAX_PAGES = 50

# Batching
MATTER_UPSERT_BATCH_SIZE = 50
CONTACT_UPSERT_BATCH_SIZE = 50
DETAILS_BATCH_SIZE = 100
BATCH_TRANSACTION_TIMEOUT_MS = 60000

# Redis
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
REFERENCE_CACHE_TTL_SECONDS = 86400

# SMTP
SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = _int_env("SMTP_PORT", 587)
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
EMAIL_FROM = os.getenv("EMAIL_FROM") or SMTP_USER
SMTP_MAX_CONNECTIONS = 3
SMTP_MAX_MESSAGES_PER_CONNECTION = 100
SMTP_RATE_LIMIT_PER_SECOND = 5

APP_URL = os.getenv("APP_URL", "http://localhost:3000")

# Email queue
EMAIL_MAX_ATTEMPTS = 3
EMAIL_MAX_CONCURRENT = 3
EMAIL_RETRY_DELAY_SECONDS = 5
EMAIL_JOB_RETENTION_SECONDS = 3600

# Notifications
DEADLINE_THRESHOLDS = (7, 3, 1, 0)
DEADLINE_ALERT_WINDOW_DAYS = 7
NOTIFICATION_REPLAY_SECONDS = 300

# Team members whose email contains one of these are contractors unless
# their team type was set explicitly.
CONTRACTOR_EMAIL_MARKERS = tuple(
    m.strip() for m in os.getenv("CONTRACTOR_EMAIL_MARKERS", "@contractor,@external").split(",")
    if m.strip()
)
