import os
from dotenv import load_dotenv

# Load .env only in development
load_dotenv()

# --- CONFIGURATION ---
MONGO_URI = os.environ.get("MONGO_URI")
if not MONGO_URI:
    print("ERROR: MONGO_URI environment variable is missing!")
    raise ValueError("MONGO_URI environment variable is required")

SECRET_KEY = os.environ.get("SECRET_KEY")
if not SECRET_KEY:
    raise ValueError("SECRET_KEY environment variable is required")

FLASK_ENV = os.environ.get("FLASK_ENV", "development")

# Zains (external accounting API)
URL_API_ZAINS = os.environ.get("URL_API_ZAINS", "").strip()
URL_API_ZAINS_PRODUCTION = os.environ.get("URL_API_ZAINS_PRODUCTION", "").strip()
URL_API_ZAINS_STAGING = os.environ.get("URL_API_ZAINS_STAGING", "").strip()
API_KEY_ZAINS = os.environ.get("API_KEY_ZAINS", "").strip()
IS_PRODUCTION = os.environ.get("IS_PRODUCTION", "")
ZAINS_TIMEOUT = int(os.environ.get("ZAINS_TIMEOUT", "30"))
ZAINS_PATIENT_BATCH_SIZE = int(os.environ.get("ZAINS_PATIENT_BATCH_SIZE", "20"))
ZAINS_TRANSACTION_BATCH_SIZE = int(os.environ.get("ZAINS_TRANSACTION_BATCH_SIZE", "50"))

# Worker host (browser automation runs there, never on the web tier)
RAILWAY_SERVICE_URL = os.environ.get("RAILWAY_SERVICE_URL", "").strip().rstrip('/')
WORKER_TIMEOUT_SECONDS = int(os.environ.get("WORKER_TIMEOUT_SECONDS", "10"))

# GitHub Actions fallback trigger
GITHUB_ACTIONS_TOKEN = os.environ.get("GITHUB_ACTIONS_TOKEN", "").strip()
GITHUB_REPO = os.environ.get("GITHUB_REPO", "").strip()
GITHUB_REF = os.environ.get("GITHUB_REF", "main").strip() or "main"
GITHUB_WORKFLOW_FILE = "scrap-queue.yml"

# Shared secret for cron / worker callbacks. Unset means open (local dev).
CRON_SECRET = os.environ.get("CRON_SECRET", "").strip()

# Worker service
WORKER_PORT = int(os.environ.get("PORT", "3001"))
PROCESS_LIMIT = int(os.environ.get("PROCESS_LIMIT", "6"))
IDLE_TIMEOUT = int(os.environ.get("IDLE_TIMEOUT", "300"))
SCRAPER_COMMAND = os.environ.get("SCRAPER_COMMAND", "").strip()
SCRAPER_TIMEOUT = int(os.environ.get("SCRAPER_TIMEOUT", "900"))

# Queue housekeeping
COMPLETED_RETENTION_DAYS = 7
FAILED_RETENTION_DAYS = 30
STALE_PROCESSING_HOURS = int(os.environ.get("STALE_PROCESSING_HOURS", "6"))

LOCAL_TIMEZONE = "Asia/Jakarta"


def is_production_env():
    value = (IS_PRODUCTION or "").strip().lower()
    return value in ("true", "1", "yes")
