import os
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"true", "1", "yes"}


DB_URL = os.getenv("DB_URL", "sqlite:///./studyhub.db")
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

STORE_MAX_RETRIES = max(0, int(os.getenv("STORE_MAX_RETRIES", "3")))
STORE_RETRY_BASE_DELAY = float(os.getenv("STORE_RETRY_BASE_DELAY", "0.1"))
STORE_CAS_ATTEMPTS = max(1, int(os.getenv("STORE_CAS_ATTEMPTS", "50")))
STORE_TIMEOUT_SECONDS = int(os.getenv("STORE_TIMEOUT_SECONDS", "5"))


def connect_args_for(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"check_same_thread": False, "timeout": STORE_TIMEOUT_SECONDS}
    return {"connect_timeout": STORE_TIMEOUT_SECONDS}


DB_CONNECT_ARGS = connect_args_for(DB_URL)

# Identity authority (Supabase-compatible auth API)
IDENTITY_URL = os.getenv("IDENTITY_URL", "").rstrip("/")
IDENTITY_SERVICE_KEY = os.getenv("IDENTITY_SERVICE_KEY", "")
IDENTITY_JWT_SECRET = os.getenv("IDENTITY_JWT_SECRET", "")
IDENTITY_JWT_AUDIENCE = os.getenv("IDENTITY_JWT_AUDIENCE", "")
IDENTITY_TIMEOUT_SECONDS = float(os.getenv("IDENTITY_TIMEOUT_SECONDS", "10"))

# Public listing shows files still waiting for approval
LIST_UNAPPROVED_FILES = _flag("LIST_UNAPPROVED_FILES", "true")

RATE_LIMIT_PER_MINUTE = int(os.getenv("RATE_LIMIT_PER_MINUTE", "60"))
REDIS_URL = os.getenv("REDIS_URL", "")

# Enables POST /admin/bootstrap when set
BOOTSTRAP_KEY = os.getenv("BOOTSTRAP_KEY")
