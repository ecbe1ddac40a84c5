import os
from dotenv import load_dotenv

load_dotenv()


def _csv(name: str) -> list[str] | None:
    raw = os.getenv(name, "")
    values = [v.strip() for v in raw.split(",") if v.strip()]
    return values or None


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./entregacerta.db")
SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change-in-production")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 480))
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin123")
CORS_ORIGINS = _csv("CORS_ORIGINS") or ["http://localhost:5173", "http://localhost:3000"]

NFE_LOOKUP_URL = os.getenv("NFE_LOOKUP_URL", "https://brasilapi.com.br/api/nfe/v1")
NFE_LOOKUP_TIMEOUT = 10  # seconds

# Console polling, in seconds
ADMIN_POLL_INTERVAL = float(os.getenv("ADMIN_POLL_INTERVAL", 5))
DRIVER_POLL_INTERVAL = float(os.getenv("DRIVER_POLL_INTERVAL", 10))
LOCATION_REPORT_INTERVAL = float(os.getenv("LOCATION_REPORT_INTERVAL", 15))

# FAILED invoices stay editable for re-dispatch unless this is set
LOCK_FAILED_INVOICES = _flag("LOCK_FAILED_INVOICES")

# Overrides for the infCpl address classifier (comma-separated)
ADDRESS_KEYWORDS = _csv("ADDRESS_KEYWORDS")
NOISE_KEYWORDS = _csv("NOISE_KEYWORDS")
