"""Small request/form helpers shared by the blueprints."""
from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, List, Optional

from flask import current_app, request


def resolve_db_engine():
    try:
        engine = current_app.config.get("DB_ENGINE")  # type: ignore[attr-defined]
    except RuntimeError:
        engine = None

    if engine is None:
        try:
            from main import ENGINE as default_engine  # type: ignore
        except ImportError:
            default_engine = None
        engine = default_engine

    return engine


def _s(value: Any, limit: int = 2000) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    if not value:
        return None
    return value[:limit]


def form_bool(name: str, default: bool = False) -> bool:
    if name not in request.form:
        return default
    return (request.form.get(name) or "").strip().lower() in {"1", "true", "yes", "y", "on"}


def form_int(name: str) -> Optional[int]:
    raw = _s(request.form.get(name))
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be a whole number") from None


def form_date(name: str) -> Optional[date]:
    raw = _s(request.form.get(name))
    if raw is None:
        return None
    try:
        return datetime.strptime(raw, "%Y-%m-%d").date()
    except ValueError:
        raise ValueError(f"{name} must be a date (YYYY-MM-DD)") from None


def form_datetime(name: str) -> Optional[datetime]:
    """Parse an <input type=datetime-local> (or plain date) value as UTC."""
    raw = _s(request.form.get(name))
    if raw is None:
        return None
    for fmt in ("%Y-%m-%dT%H:%M", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d"):
        try:
            return datetime.strptime(raw, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    raise ValueError(f"{name} must be a date/time")


def form_list(name: str) -> List[str]:
    """Multi-select values, or a comma-separated single field."""
    values = [v.strip() for v in request.form.getlist(name) if v and v.strip()]
    if len(values) == 1 and "," in values[0]:
        values = [v.strip() for v in values[0].split(",") if v.strip()]
    return values


def wants_json() -> bool:
    if request.is_json:
        return True
    best = request.accept_mimetypes.best_match(["application/json", "text/html"])
    return best == "application/json" and request.accept_mimetypes[best] > request.accept_mimetypes["text/html"]


def csv_text_from_request() -> str:
    """Uploaded ``csv_file`` wins over pasted ``csv_text``."""
    upload = request.files.get("csv_file")
    if upload and upload.filename:
        return upload.read().decode("utf-8-sig", errors="replace")
    return request.form.get("csv_text") or ""
