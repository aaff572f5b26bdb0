# credit_engine/core/config.py
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv

# ================== ENV ==================

ROOT_DIR = Path(__file__).resolve().parents[2]
load_dotenv(ROOT_DIR / "credit_engine/.env", override=False)

def env(*names: str, default: Optional[str] = None) -> str:
    for n in names:
        v = os.environ.get(n)
        if v is not None and str(v).strip() != "":
            return v
    if default is not None:
        return default
    raise KeyError(f"Missing required env var. Tried: {', '.join(names)}")

def env_int(name: str, default: int) -> int:
    return int(env(name, default=str(default)))

def env_float(name: str, default: float) -> float:
    return float(env(name, default=str(default)))

# ================== JWT ==================

JWT_SECRET = os.environ.get("JWT_SECRET", "default_secret_key")
JWT_ALGORITHM = "HS256"
JWT_EXPIRATION_HOURS = int(os.environ.get("JWT_EXPIRATION_HOURS", "24"))

# ================== DATABASE ==================
# SQLite for local development, MySQL in production

DATABASE_URL = os.environ.get("DATABASE_URL", "")

def get_database_url() -> str:
    """Get database URL - supports SQLite or MySQL."""
    if DATABASE_URL:
        return DATABASE_URL

    mysql_host = os.environ.get("MYSQL_HOST")
    if mysql_host:
        mysql_port = int(os.environ.get("MYSQL_PORT", "3306"))
        mysql_user = os.environ.get("MYSQL_USER", "root")
        mysql_password = os.environ.get("MYSQL_PASSWORD", "")
        mysql_db = os.environ.get("MYSQL_DB", "credit_engine")
        return f"mysql+aiomysql://{mysql_user}:{mysql_password}@{mysql_host}:{mysql_port}/{mysql_db}?charset=utf8mb4"

    db_path = ROOT_DIR / "credit_engine" / "credit_engine.db"
    return f"sqlite+aiosqlite:///{db_path}"

# Retries for lock / deadlock / busy errors before a ledger write gives up
LEDGER_MAX_ATTEMPTS = env_int("LEDGER_MAX_ATTEMPTS", 5)

# ================== CREDITS ==================

FREE_CREDITS_ON_SIGNUP = env_int("FREE_CREDITS_ON_SIGNUP", 50)
ASSIGNMENT_DOWNLOAD_COST = env_int("ASSIGNMENT_DOWNLOAD_COST", 3)

# ================== PAYMENTS ==================

PAYMENT_GATEWAY = env("PAYMENT_GATEWAY", default="zenopay").lower()
ZENOPAY_API_KEY = os.environ.get("ZENOPAY_API_KEY", "").strip()
ZENOPAY_BASE_URL = env("ZENOPAY_BASE_URL", default="https://zenoapi.com/api/payments").rstrip("/")
ZENOPAY_TIMEOUT_SECONDS = env_float("ZENOPAY_TIMEOUT_SECONDS", 15.0)
# Falls back to the gateway API key, which is what ZenoPay echoes on callbacks
PAYMENT_WEBHOOK_SECRET = os.environ.get("PAYMENT_WEBHOOK_SECRET", "").strip()
FRONTEND_URL = env("FRONTEND_URL", default="http://localhost:3000").rstrip("/")

PAYMENT_POLL_INTERVAL_SECONDS = env_float("PAYMENT_POLL_INTERVAL_SECONDS", 3.0)
PAYMENT_POLL_MAX_ATTEMPTS = env_int("PAYMENT_POLL_MAX_ATTEMPTS", 20)

# ================== LOGGING ==================

LOG_DIR = os.getenv("LOG_DIR", "logs")


@dataclass(frozen=True)
class Settings:
    """Snapshot of the environment handed to create_app() and the services."""
    database_url: str = field(default_factory=get_database_url)
    jwt_secret: str = JWT_SECRET
    signup_bonus: int = FREE_CREDITS_ON_SIGNUP
    download_cost: int = ASSIGNMENT_DOWNLOAD_COST
    ledger_max_attempts: int = LEDGER_MAX_ATTEMPTS
    payment_gateway: str = PAYMENT_GATEWAY
    zenopay_api_key: str = ZENOPAY_API_KEY
    zenopay_base_url: str = ZENOPAY_BASE_URL
    zenopay_timeout_seconds: float = ZENOPAY_TIMEOUT_SECONDS
    webhook_secret: str = PAYMENT_WEBHOOK_SECRET
    frontend_url: str = FRONTEND_URL
    poll_interval_seconds: float = PAYMENT_POLL_INTERVAL_SECONDS
    poll_max_attempts: int = PAYMENT_POLL_MAX_ATTEMPTS
    log_dir: str = LOG_DIR

    @property
    def effective_webhook_secret(self) -> str:
        return self.webhook_secret or self.zenopay_api_key


def get_settings() -> Settings:
    return Settings()
