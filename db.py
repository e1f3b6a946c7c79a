"""Database engine and table definitions shared by the portal."""
from __future__ import annotations

import logging
import os
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    select,
)
from sqlalchemy.engine import URL, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

log = logging.getLogger(__name__)

_SQLITE_FALLBACK_URL = "sqlite:///local.db"


class StoreError(Exception):
    """Raised when a database read or write fails."""


# ───────────────────────────────────────────────────────────────
# Engine (DSN-first, SQLite fallback)
# ───────────────────────────────────────────────────────────────
def _is_dsn(s: str) -> bool:
    if not s:
        return False
    s = s.strip().lower()
    return s.startswith("postgresql://") or s.startswith("postgresql+psycopg2://") or s.startswith("sqlite:")


def sqlalchemy_url() -> str | URL:
    # 1) DATABASE_URL wins as given, whatever the driver
    db_url = (os.getenv("DATABASE_URL") or "").strip()
    if db_url:
        return db_url

    # 2) Full DSN via INSTANCE_CONNECTION_NAME
    inst = os.getenv("INSTANCE_CONNECTION_NAME", "")
    if _is_dsn(inst):
        return inst

    # 3) Standard TCP params
    user = os.getenv("DB_USER")
    pwd = os.getenv("DB_PASS") or os.getenv("DB_PASSWORD")
    name = os.getenv("DB_NAME")
    host = os.getenv("DB_HOST")
    port = os.getenv("DB_PORT")
    if host and user and pwd and name:
        return URL.create(
            drivername="postgresql+psycopg2",
            username=user,
            password=pwd,
            host=host,
            port=int(port) if port else None,
            database=name,
        )

    # 4) Cloud SQL unix socket style (project:region:instance)
    if inst and user and pwd and name:
        return URL.create(
            drivername="postgresql+psycopg2",
            username=user,
            password=pwd,
            host=None,
            database=name,
            query={"host": f"/cloudsql/{inst}"},
        )

    # 5) Fallback: local SQLite
    return _SQLITE_FALLBACK_URL


def create_db_engine(url: str | URL | None = None) -> Engine:
    """Build an engine; SQLite engines get foreign keys and their tables."""
    url = url or sqlalchemy_url()
    if str(url).startswith("sqlite"):
        kwargs: dict[str, Any] = {"future": True, "connect_args": {"check_same_thread": False}}
        if str(url) in {"sqlite://", "sqlite:///:memory:"}:
            kwargs["poolclass"] = StaticPool
        eng = create_engine(url, **kwargs)

        @event.listens_for(eng, "connect")
        def _enable_foreign_keys(dbapi_conn, _record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        metadata.create_all(eng, checkfirst=True)
        return eng
    return create_engine(url, pool_pre_ping=True, pool_recycle=1800, future=True)


# ───────────────────────────────────────────────────────────────
# Helpers
# ───────────────────────────────────────────────────────────────
def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ───────────────────────────────────────────────────────────────
# Tables
# ───────────────────────────────────────────────────────────────
metadata = MetaData()

cohorts = Table(
    "cohorts",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("description", Text),
    Column("status", String(20), nullable=False, default="Draft"),
    Column("start_date", Date),
    Column("end_date", Date),
    Column("sidebar_label", String(120)),
    Column("icon", String(60)),
    Column("sort_order", Integer, nullable=False, default=0),
    Column("product_type", String(60)),
    Column("payment_product_id", String(120)),
    Column("onboarding_config", JSON),
    Column("created_at", DateTime(timezone=True)),
    Column("updated_at", DateTime(timezone=True)),
)

weeks = Table(
    "weeks",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("cohort_id", String(36), ForeignKey("cohorts.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("title", String(255), nullable=False),
    Column("description", Text),
    Column("sort_order", Integer, nullable=False, default=0),
    Column("is_visible", Boolean, nullable=False, default=True),
    Column("created_at", DateTime(timezone=True)),
    Column("updated_at", DateTime(timezone=True)),
)

lessons = Table(
    "lessons",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("week_id", String(36), ForeignKey("weeks.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("title", String(255), nullable=False),
    Column("description", Text),
    Column("sort_order", Integer, nullable=False, default=0),
    Column("is_visible", Boolean, nullable=False, default=True),
    Column("created_at", DateTime(timezone=True)),
    Column("updated_at", DateTime(timezone=True)),
)

content_items = Table(
    "content_items",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("lesson_id", String(36), ForeignKey("lessons.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("title", String(255), nullable=False),
    Column("content_type", String(30), nullable=False),
    Column("embed_url", Text),
    Column("ai_tool_slug", String(120)),
    Column("content_text", Text),
    Column("credentials_data", JSON),
    Column("description", Text),
    Column("sort_order", Integer, nullable=False, default=0),
    Column("is_visible", Boolean, nullable=False, default=True),
    Column("created_at", DateTime(timezone=True)),
    Column("updated_at", DateTime(timezone=True)),
)

action_items = Table(
    "action_items",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("week_id", String(36), ForeignKey("weeks.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("text", Text, nullable=False),
    Column("description", Text),
    Column("video_url", Text),
    Column("sort_order", Integer, nullable=False, default=0),
    Column("assigned_to_email", String(255)),
    Column("is_visible", Boolean, nullable=False, default=True),
    Column("created_at", DateTime(timezone=True)),
    Column("updated_at", DateTime(timezone=True)),
)

students = Table(
    "students",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("name", String(255)),
    Column("company", String(255)),
    Column("status", String(20), nullable=False, default="Onboarding"),
    Column("access_level", String(40), nullable=False, default="Full Access"),
    Column("purchase_date", Date),
    Column("onboarding_completed_at", DateTime(timezone=True)),
    Column("slack_invited", Boolean, nullable=False, default=False),
    Column("slack_invited_at", DateTime(timezone=True)),
    Column("calendar_added", Boolean, nullable=False, default=False),
    Column("calendar_added_at", DateTime(timezone=True)),
    Column("notes", Text),
    Column("created_at", DateTime(timezone=True)),
    Column("updated_at", DateTime(timezone=True)),
)

student_cohorts = Table(
    "student_cohorts",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("student_id", String(36), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("cohort_id", String(36), ForeignKey("cohorts.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("role", String(20), nullable=False, default="student"),
    Column("access_level", String(40)),
    Column("enrollment_source", String(60)),
    Column("enrollment_metadata", JSON),
    Column("joined_at", DateTime(timezone=True)),
    Column("onboarding_completed_at", DateTime(timezone=True)),
    UniqueConstraint("student_id", "cohort_id", name="uq_student_cohort"),
)

invite_codes = Table(
    "invite_codes",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("code", String(64), nullable=False, unique=True),
    Column("cohort_id", String(36), ForeignKey("cohorts.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("max_uses", Integer),
    Column("use_count", Integer, nullable=False, default=0),
    Column("status", String(20), nullable=False, default="Active"),
    Column("expires_at", DateTime(timezone=True)),
    Column("access_level", String(40)),
    Column("tool_grants", JSON),
    Column("content_grants", JSON),
    Column("created_at", DateTime(timezone=True)),
)

redeemed_codes = Table(
    "redeemed_codes",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("student_id", String(36), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("code", String(64), nullable=False),
    Column("redeemed_at", DateTime(timezone=True)),
    UniqueConstraint("student_id", "code", name="uq_student_code"),
)

ai_tools = Table(
    "ai_tools",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("slug", String(120), nullable=False, unique=True),
    Column("name", String(255), nullable=False),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", DateTime(timezone=True)),
)

student_tool_credits = Table(
    "student_tool_credits",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("student_id", String(36), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("tool_id", String(36), ForeignKey("ai_tools.id", ondelete="CASCADE"), nullable=False),
    Column("credits_total", Integer, nullable=False, default=0),
    Column("credits_used", Integer, nullable=False, default=0),
    Column("granted_by_code", String(64)),
    Column("created_at", DateTime(timezone=True)),
    UniqueConstraint("student_id", "tool_id", "granted_by_code", name="uq_student_tool_code"),
)

student_content_grants = Table(
    "student_content_grants",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("student_id", String(36), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("week_id", String(36), ForeignKey("weeks.id", ondelete="CASCADE"), nullable=False),
    Column("granted_by_code", String(64)),
    Column("created_at", DateTime(timezone=True)),
    UniqueConstraint("student_id", "week_id", name="uq_student_week"),
)

student_surveys = Table(
    "student_surveys",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("student_id", String(36), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, unique=True),
    Column("company_name", String(255)),
    Column("website", String(255)),
    Column("industry", String(120)),
    Column("company_size", String(20)),
    Column("role_title", String(255)),
    Column("primary_goal", Text),
    Column("biggest_challenges", JSON),
    Column("linkedin_experience", String(20)),
    Column("target_audience", Text),
    Column("current_lead_gen_methods", JSON),
    Column("monthly_outreach_volume", String(20)),
    Column("tools_currently_using", JSON),
    Column("completed_at", DateTime(timezone=True)),
    Column("created_at", DateTime(timezone=True)),
    Column("updated_at", DateTime(timezone=True)),
)

lesson_progress = Table(
    "lesson_progress",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("student_id", String(36), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("lesson_id", String(36), ForeignKey("lessons.id", ondelete="CASCADE"), nullable=False),
    Column("completed_at", DateTime(timezone=True)),
    UniqueConstraint("student_id", "lesson_id", name="uq_student_lesson"),
)

settings = Table(
    "settings",
    metadata,
    Column("key", String(120), primary_key=True),
    Column("value", JSON),
    Column("updated_at", DateTime(timezone=True)),
)


# ───────────────────────────────────────────────────────────────
# Row helpers shared by the store modules
# ───────────────────────────────────────────────────────────────
def fetch_rows(engine: Engine, stmt) -> list[dict[str, Any]]:
    try:
        with engine.connect() as conn:
            return [dict(r) for r in conn.execute(stmt).mappings().all()]
    except SQLAlchemyError as exc:
        log.exception("DB read failed")
        raise StoreError(str(exc)) from exc


def fetch_row(engine: Engine, stmt) -> Optional[dict[str, Any]]:
    try:
        with engine.connect() as conn:
            row = conn.execute(stmt).mappings().first()
    except SQLAlchemyError as exc:
        log.exception("DB read failed")
        raise StoreError(str(exc)) from exc
    return dict(row) if row else None


def insert_row(engine: Engine, table: Table, values: dict[str, Any], columns) -> dict[str, Any]:
    """Insert one row and read it back through the table's column allow-list."""
    values = dict(values)
    values.setdefault("id", new_id())
    now = utcnow()
    if "created_at" in table.c:
        values.setdefault("created_at", now)
    if "updated_at" in table.c:
        values.setdefault("updated_at", now)
    try:
        with engine.begin() as conn:
            conn.execute(table.insert().values(**values))
            row = conn.execute(select(*columns).where(table.c.id == values["id"])).mappings().first()
    except SQLAlchemyError as exc:
        log.warning("Insert into %s failed: %s", table.name, exc)
        raise StoreError(str(exc)) from exc
    return dict(row)


def update_row(
    engine: Engine,
    table: Table,
    row_id: str,
    updates: dict[str, Any],
    allowed,
    columns,
) -> dict[str, Any]:
    """Apply only the allow-listed keys of ``updates`` and return the fresh row."""
    data = {k: v for k, v in updates.items() if k in allowed}
    if "updated_at" in table.c:
        data["updated_at"] = utcnow()
    try:
        with engine.begin() as conn:
            if data:
                result = conn.execute(table.update().where(table.c.id == row_id).values(**data))
                if result.rowcount == 0:
                    raise StoreError(f"{table.name} {row_id} not found")
            row = conn.execute(select(*columns).where(table.c.id == row_id)).mappings().first()
    except SQLAlchemyError as exc:
        log.warning("Update of %s %s failed: %s", table.name, row_id, exc)
        raise StoreError(str(exc)) from exc
    if row is None:
        raise StoreError(f"{table.name} {row_id} not found")
    return dict(row)


def delete_row(engine: Engine, table: Table, row_id: str) -> None:
    try:
        with engine.begin() as conn:
            conn.execute(table.delete().where(table.c.id == row_id))
    except SQLAlchemyError as exc:
        log.warning("Delete from %s failed: %s", table.name, exc)
        raise StoreError(str(exc)) from exc


def reorder_rows(engine: Engine, table: Table, parent_column, parent_id: str, ordered_ids) -> None:
    """Set sort_order to each id's position, scoped to one parent."""
    try:
        with engine.begin() as conn:
            for index, row_id in enumerate(ordered_ids):
                conn.execute(
                    table.update()
                    .where(table.c.id == row_id)
                    .where(parent_column == parent_id)
                    .values(sort_order=index)
                )
    except SQLAlchemyError as exc:
        log.warning("Reorder of %s failed: %s", table.name, exc)
        raise StoreError(str(exc)) from exc
