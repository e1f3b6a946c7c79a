"""Shared portal configuration pulled from environment variables."""
import os

def _bool_env(name: str, default: str = "false") -> bool:
    value = os.getenv(name, default)
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}

def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default

BRAND_NAME = os.getenv("BRAND_NAME", "Cohort Portal")
PUBLIC_SITE_URL = os.getenv("PUBLIC_SITE_URL", "http://localhost:8080").rstrip("/")
BASE_PATH = os.getenv("BASE_PATH", "")

ADMIN_ACCESS_CODE = os.getenv("ADMIN_ACCESS_CODE", "letmein")

DEFAULT_CREDITS_PER_TOOL = _int_env("DEFAULT_CREDITS_PER_TOOL", 10)
INVITE_CODE_DEFAULT_MAX_USES = _int_env("INVITE_CODE_DEFAULT_MAX_USES", 50)

PUBLIC_REGISTRATION_ENABLED = _bool_env("PUBLIC_REGISTRATION_ENABLED", "true")
REG_NOTIFY_ENABLED = _bool_env("REG_NOTIFY_ENABLED", "true")
REG_NOTIFY_TO = os.getenv("REG_NOTIFY_TO", "")
