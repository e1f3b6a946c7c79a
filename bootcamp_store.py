"""Student roster, invite codes, grants, surveys and settings persistence."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from db import (
    StoreError,
    ai_tools,
    cohorts,
    delete_row,
    fetch_row,
    fetch_rows,
    insert_row,
    invite_codes,
    new_id,
    redeemed_codes,
    settings,
    student_content_grants,
    student_surveys,
    student_tool_credits,
    students,
    update_row,
    utcnow,
)

log = logging.getLogger(__name__)

ACCESS_LEVELS = ("Full Access", "Sprint + AI Tools", "Curriculum Only", "Lead Magnet")
STUDENT_STATUSES = ("Onboarding", "Active", "Completed", "Paused", "Churned")

STUDENT_FIELDS = (
    "email",
    "name",
    "company",
    "status",
    "access_level",
    "purchase_date",
    "onboarding_completed_at",
    "slack_invited",
    "slack_invited_at",
    "calendar_added",
    "calendar_added_at",
    "notes",
)
INVITE_CODE_FIELDS = (
    "code",
    "cohort_id",
    "max_uses",
    "status",
    "expires_at",
    "access_level",
    "tool_grants",
    "content_grants",
)
SURVEY_FIELDS = (
    "company_name",
    "website",
    "industry",
    "company_size",
    "role_title",
    "primary_goal",
    "biggest_challenges",
    "linkedin_experience",
    "target_audience",
    "current_lead_gen_methods",
    "monthly_outreach_volume",
    "tools_currently_using",
)

_STUDENT_COLUMNS = [students.c.id, students.c.created_at, students.c.updated_at] + [
    students.c[f] for f in STUDENT_FIELDS
]
_INVITE_COLUMNS = [invite_codes.c.id, invite_codes.c.use_count, invite_codes.c.created_at] + [
    invite_codes.c[f] for f in INVITE_CODE_FIELDS
]
_SURVEY_COLUMNS = [
    student_surveys.c.id,
    student_surveys.c.student_id,
    student_surveys.c.completed_at,
] + [student_surveys.c[f] for f in SURVEY_FIELDS]
_TOOL_COLUMNS = [ai_tools.c.id, ai_tools.c.slug, ai_tools.c.name, ai_tools.c.is_active]

ENROLLMENT_CONFIG_KEY = "enrollment_config"


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


# ───────────────────────────────────────────────────────────────
# Students
# ───────────────────────────────────────────────────────────────
def fetch_students(
    engine: Engine,
    search: Optional[str] = None,
    status: Optional[str] = None,
) -> List[Dict[str, Any]]:
    stmt = select(*_STUDENT_COLUMNS).order_by(students.c.created_at.desc())
    if status:
        stmt = stmt.where(students.c.status == status)
    if search:
        like = f"%{search.strip().lower()}%"
        stmt = stmt.where(
            or_(
                func.lower(students.c.email).like(like),
                func.lower(func.coalesce(students.c.name, "")).like(like),
                func.lower(func.coalesce(students.c.company, "")).like(like),
            )
        )
    return fetch_rows(engine, stmt)


def fetch_student(engine: Engine, student_id: str) -> Optional[Dict[str, Any]]:
    return fetch_row(engine, select(*_STUDENT_COLUMNS).where(students.c.id == student_id))


def fetch_student_by_email(engine: Engine, email: str) -> Optional[Dict[str, Any]]:
    return fetch_row(engine, select(*_STUDENT_COLUMNS).where(students.c.email == normalize_email(email)))


def fetch_student_emails(engine: Engine) -> List[str]:
    return [r["email"] for r in fetch_rows(engine, select(students.c.email))]


def create_student(engine: Engine, data: Dict[str, Any]) -> Dict[str, Any]:
    values = {k: v for k, v in data.items() if k in STUDENT_FIELDS}
    values["email"] = normalize_email(values.get("email"))
    if not values["email"]:
        raise StoreError("Email is required")
    values.setdefault("status", "Onboarding")
    values.setdefault("access_level", "Full Access")
    return insert_row(engine, students, values, _STUDENT_COLUMNS)


def update_student(engine: Engine, student_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
    updates = dict(updates)
    if "email" in updates:
        updates["email"] = normalize_email(updates["email"])
        if not updates["email"]:
            raise StoreError("Email is required")
    return update_row(engine, students, student_id, updates, STUDENT_FIELDS, _STUDENT_COLUMNS)


def delete_student(engine: Engine, student_id: str) -> None:
    delete_row(engine, students, student_id)


def mark_slack_invited(engine: Engine, student_id: str) -> Dict[str, Any]:
    return update_student(engine, student_id, {"slack_invited": True, "slack_invited_at": utcnow()})


def mark_calendar_added(engine: Engine, student_id: str) -> Dict[str, Any]:
    return update_student(engine, student_id, {"calendar_added": True, "calendar_added_at": utcnow()})


def complete_student_onboarding(engine: Engine, student_id: str) -> Dict[str, Any]:
    return update_student(engine, student_id, {"onboarding_completed_at": utcnow(), "status": "Active"})


def student_stats(rows: List[Dict[str, Any]]) -> Dict[str, int]:
    """Header counters for the roster page."""
    stats = {"total": len(rows), "slack_pending": 0, "calendar_pending": 0}
    for status in STUDENT_STATUSES:
        stats[status.lower()] = 0
    for row in rows:
        key = (row.get("status") or "").lower()
        if key in stats:
            stats[key] += 1
        if not row.get("slack_invited"):
            stats["slack_pending"] += 1
        if not row.get("calendar_added"):
            stats["calendar_pending"] += 1
    return stats


# ───────────────────────────────────────────────────────────────
# Invite codes
# ───────────────────────────────────────────────────────────────
def fetch_invite_codes(engine: Engine, cohort_id: Optional[str] = None) -> List[Dict[str, Any]]:
    stmt = (
        select(*_INVITE_COLUMNS, cohorts.c.name.label("cohort_name"))
        .join(cohorts, cohorts.c.id == invite_codes.c.cohort_id)
        .order_by(invite_codes.c.created_at.desc())
    )
    if cohort_id:
        stmt = stmt.where(invite_codes.c.cohort_id == cohort_id)
    return fetch_rows(engine, stmt)


def fetch_invite_code(engine: Engine, code_id: str) -> Optional[Dict[str, Any]]:
    return fetch_row(engine, select(*_INVITE_COLUMNS).where(invite_codes.c.id == code_id))


def fetch_invite_code_by_code(engine: Engine, code: str) -> Optional[Dict[str, Any]]:
    return fetch_row(engine, select(*_INVITE_COLUMNS).where(invite_codes.c.code == (code or "").strip().upper()))


def create_invite_code(engine: Engine, data: Dict[str, Any]) -> Dict[str, Any]:
    values = {k: v for k, v in data.items() if k in INVITE_CODE_FIELDS}
    values["code"] = (values.get("code") or "").strip().upper()
    if not values["code"]:
        raise StoreError("Code is required")
    if not values.get("cohort_id"):
        raise StoreError("Cohort is required")
    values.setdefault("status", "Active")
    values["use_count"] = 0
    try:
        return insert_row(engine, invite_codes, values, _INVITE_COLUMNS)
    except StoreError as exc:
        if isinstance(exc.__cause__, IntegrityError):
            raise StoreError(f"Code {values['code']} already exists") from exc
        raise


def update_invite_code(engine: Engine, code_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
    return update_row(engine, invite_codes, code_id, updates, INVITE_CODE_FIELDS, _INVITE_COLUMNS)


def delete_invite_code(engine: Engine, code_id: str) -> None:
    delete_row(engine, invite_codes, code_id)


def increment_invite_code_usage(engine: Engine, code: str) -> bool:
    """Bump use_count unless the code is already at its cap.

    Single conditional UPDATE so two redemptions racing for the last seat
    cannot both succeed. Returns False when no row was updated.
    """
    stmt = (
        invite_codes.update()
        .where(invite_codes.c.code == code.strip().upper())
        .where(or_(invite_codes.c.max_uses.is_(None), invite_codes.c.use_count < invite_codes.c.max_uses))
        .values(use_count=invite_codes.c.use_count + 1)
    )
    try:
        with engine.begin() as conn:
            return conn.execute(stmt).rowcount > 0
    except SQLAlchemyError as exc:
        log.warning("Incrementing usage of %s failed: %s", code, exc)
        raise StoreError(str(exc)) from exc


def release_invite_code_usage(engine: Engine, code: str) -> None:
    """Give back a seat claimed by a registration that then failed."""
    stmt = (
        invite_codes.update()
        .where(invite_codes.c.code == code.strip().upper())
        .where(invite_codes.c.use_count > 0)
        .values(use_count=invite_codes.c.use_count - 1)
    )
    try:
        with engine.begin() as conn:
            conn.execute(stmt)
    except SQLAlchemyError as exc:
        raise StoreError(str(exc)) from exc


# ───────────────────────────────────────────────────────────────
# Redemptions and grants
# ───────────────────────────────────────────────────────────────
def has_redeemed_code(engine: Engine, student_id: str, code: str) -> bool:
    stmt = (
        select(redeemed_codes.c.id)
        .where(redeemed_codes.c.student_id == student_id)
        .where(redeemed_codes.c.code == code.strip().upper())
    )
    return fetch_row(engine, stmt) is not None


def record_redeemed_code(engine: Engine, student_id: str, code: str) -> None:
    try:
        with engine.begin() as conn:
            conn.execute(
                redeemed_codes.insert().values(
                    id=new_id(), student_id=student_id, code=code.strip().upper(), redeemed_at=utcnow()
                )
            )
    except SQLAlchemyError as exc:
        raise StoreError(str(exc)) from exc


def fetch_redeemed_codes(engine: Engine, student_id: str) -> List[str]:
    rows = fetch_rows(
        engine,
        select(redeemed_codes.c.code)
        .where(redeemed_codes.c.student_id == student_id)
        .order_by(redeemed_codes.c.redeemed_at),
    )
    return [r["code"] for r in rows]


def grant_tool_credits(engine: Engine, student_id: str, tool_id: str, credits: int, code: Optional[str]) -> None:
    """Upsert the credit row for (student, tool, code); a repeat grant resets the total."""
    match = (
        (student_tool_credits.c.student_id == student_id)
        & (student_tool_credits.c.tool_id == tool_id)
        & (
            student_tool_credits.c.granted_by_code.is_(None)
            if code is None
            else student_tool_credits.c.granted_by_code == code
        )
    )
    try:
        with engine.begin() as conn:
            existing = conn.execute(select(student_tool_credits.c.id).where(match)).first()
            if existing:
                conn.execute(
                    student_tool_credits.update()
                    .where(student_tool_credits.c.id == existing.id)
                    .values(credits_total=int(credits))
                )
            else:
                conn.execute(
                    student_tool_credits.insert().values(
                        id=new_id(),
                        student_id=student_id,
                        tool_id=tool_id,
                        credits_total=int(credits),
                        credits_used=0,
                        granted_by_code=code,
                        created_at=utcnow(),
                    )
                )
    except SQLAlchemyError as exc:
        raise StoreError(str(exc)) from exc


def grant_content_access(engine: Engine, student_id: str, week_id: str, code: Optional[str]) -> None:
    pair = (student_content_grants.c.student_id == student_id) & (student_content_grants.c.week_id == week_id)
    try:
        with engine.begin() as conn:
            if conn.execute(select(student_content_grants.c.id).where(pair)).first() is None:
                conn.execute(
                    student_content_grants.insert().values(
                        id=new_id(),
                        student_id=student_id,
                        week_id=week_id,
                        granted_by_code=code,
                        created_at=utcnow(),
                    )
                )
    except SQLAlchemyError as exc:
        raise StoreError(str(exc)) from exc


def fetch_student_grants(engine: Engine, student_id: str) -> Dict[str, Any]:
    credit_rows = fetch_rows(
        engine,
        select(
            student_tool_credits.c.credits_total,
            student_tool_credits.c.credits_used,
            student_tool_credits.c.granted_by_code,
            ai_tools.c.slug,
            ai_tools.c.name,
        )
        .join(ai_tools, ai_tools.c.id == student_tool_credits.c.tool_id)
        .where(student_tool_credits.c.student_id == student_id),
    )
    week_rows = fetch_rows(
        engine,
        select(student_content_grants.c.week_id).where(student_content_grants.c.student_id == student_id),
    )
    return {
        "tool_credits": credit_rows,
        "week_ids": [r["week_id"] for r in week_rows],
        "redeemed_codes": fetch_redeemed_codes(engine, student_id),
    }


# ───────────────────────────────────────────────────────────────
# AI tools
# ───────────────────────────────────────────────────────────────
def fetch_ai_tools(engine: Engine, active_only: bool = False) -> List[Dict[str, Any]]:
    stmt = select(*_TOOL_COLUMNS).order_by(ai_tools.c.name)
    if active_only:
        stmt = stmt.where(ai_tools.c.is_active.is_(True))
    return fetch_rows(engine, stmt)


def tool_ids_by_slug(engine: Engine) -> Dict[str, str]:
    return {t["slug"]: t["id"] for t in fetch_ai_tools(engine)}


def create_ai_tool(engine: Engine, slug: str, name: str, is_active: bool = True) -> Dict[str, Any]:
    slug = (slug or "").strip().lower()
    if not slug or not (name or "").strip():
        raise StoreError("Slug and name are required")
    return insert_row(engine, ai_tools, {"slug": slug, "name": name.strip(), "is_active": is_active}, _TOOL_COLUMNS)


def set_ai_tool_active(engine: Engine, tool_id: str, is_active: bool) -> Dict[str, Any]:
    return update_row(engine, ai_tools, tool_id, {"is_active": is_active}, ("is_active",), _TOOL_COLUMNS)


# ───────────────────────────────────────────────────────────────
# Surveys
# ───────────────────────────────────────────────────────────────
def fetch_survey(engine: Engine, student_id: str) -> Optional[Dict[str, Any]]:
    return fetch_row(engine, select(*_SURVEY_COLUMNS).where(student_surveys.c.student_id == student_id))


def fetch_surveys(engine: Engine) -> List[Dict[str, Any]]:
    stmt = (
        select(*_SURVEY_COLUMNS, students.c.email, students.c.name)
        .join(students, students.c.id == student_surveys.c.student_id)
        .order_by(student_surveys.c.completed_at.desc())
    )
    return fetch_rows(engine, stmt)


def save_survey(engine: Engine, student_id: str, answers: Dict[str, Any]) -> Dict[str, Any]:
    """Upsert the student's survey and stamp completed_at."""
    values = {k: v for k, v in answers.items() if k in SURVEY_FIELDS}
    now = utcnow()
    values["completed_at"] = now
    values["updated_at"] = now
    try:
        with engine.begin() as conn:
            existing = conn.execute(
                select(student_surveys.c.id).where(student_surveys.c.student_id == student_id)
            ).first()
            if existing:
                conn.execute(
                    student_surveys.update().where(student_surveys.c.student_id == student_id).values(**values)
                )
            else:
                conn.execute(
                    student_surveys.insert().values(id=new_id(), student_id=student_id, created_at=now, **values)
                )
            row = conn.execute(
                select(*_SURVEY_COLUMNS).where(student_surveys.c.student_id == student_id)
            ).mappings().first()
    except SQLAlchemyError as exc:
        log.warning("Saving survey for %s failed: %s", student_id, exc)
        raise StoreError(str(exc)) from exc
    return dict(row)


# ───────────────────────────────────────────────────────────────
# Settings (key -> JSON)
# ───────────────────────────────────────────────────────────────
def get_setting(engine: Engine, key: str, default: Any = None) -> Any:
    row = fetch_row(engine, select(settings.c.value).where(settings.c.key == key))
    if row is None or row["value"] is None:
        return default
    return row["value"]


def set_setting(engine: Engine, key: str, value: Any) -> None:
    try:
        with engine.begin() as conn:
            exists = conn.execute(select(settings.c.key).where(settings.c.key == key)).first()
            if exists:
                conn.execute(settings.update().where(settings.c.key == key).values(value=value, updated_at=utcnow()))
            else:
                conn.execute(settings.insert().values(key=key, value=value, updated_at=utcnow()))
    except SQLAlchemyError as exc:
        raise StoreError(str(exc)) from exc


def get_enrollment_config(engine: Engine) -> Dict[str, Any]:
    config = get_setting(engine, ENROLLMENT_CONFIG_KEY, {}) or {}
    config.setdefault("products", {})
    return config


def save_enrollment_config(engine: Engine, config: Dict[str, Any]) -> None:
    set_setting(engine, ENROLLMENT_CONFIG_KEY, {"products": dict(config.get("products") or {})})
