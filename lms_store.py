"""Curriculum and enrollment persistence (cohorts, weeks, lessons, items)."""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from db import (
    StoreError,
    action_items,
    cohorts,
    content_items,
    delete_row,
    fetch_row,
    fetch_rows,
    insert_row,
    lesson_progress,
    lessons,
    new_id,
    reorder_rows,
    student_cohorts,
    update_row,
    utcnow,
    weeks,
)

log = logging.getLogger(__name__)

COHORT_STATUSES = ("Active", "Draft", "Archived")

COHORT_FIELDS = (
    "name",
    "description",
    "status",
    "start_date",
    "end_date",
    "sidebar_label",
    "icon",
    "sort_order",
    "product_type",
    "payment_product_id",
    "onboarding_config",
)
WEEK_FIELDS = ("title", "description", "sort_order", "is_visible")
LESSON_FIELDS = ("title", "description", "sort_order", "is_visible")
CONTENT_ITEM_FIELDS = (
    "title",
    "content_type",
    "embed_url",
    "ai_tool_slug",
    "content_text",
    "credentials_data",
    "description",
    "sort_order",
    "is_visible",
)
ACTION_ITEM_FIELDS = ("text", "description", "video_url", "sort_order", "assigned_to_email", "is_visible")
ENROLLMENT_FIELDS = ("role", "access_level", "enrollment_source", "enrollment_metadata", "onboarding_completed_at")

_COHORT_COLUMNS = [cohorts.c.id, cohorts.c.created_at, cohorts.c.updated_at] + [cohorts.c[f] for f in COHORT_FIELDS]
_WEEK_COLUMNS = [weeks.c.id, weeks.c.cohort_id] + [weeks.c[f] for f in WEEK_FIELDS]
_LESSON_COLUMNS = [lessons.c.id, lessons.c.week_id] + [lessons.c[f] for f in LESSON_FIELDS]
_CONTENT_COLUMNS = [content_items.c.id, content_items.c.lesson_id] + [content_items.c[f] for f in CONTENT_ITEM_FIELDS]
_ACTION_COLUMNS = [action_items.c.id, action_items.c.week_id] + [action_items.c[f] for f in ACTION_ITEM_FIELDS]
_ENROLLMENT_COLUMNS = [
    student_cohorts.c.id,
    student_cohorts.c.student_id,
    student_cohorts.c.cohort_id,
    student_cohorts.c.joined_at,
] + [student_cohorts.c[f] for f in ENROLLMENT_FIELDS]


def _only(values: Dict[str, Any], allowed: Iterable[str]) -> Dict[str, Any]:
    return {k: v for k, v in values.items() if k in allowed}


# -------------- Cohorts --------------
def fetch_cohorts(engine: Engine, status: Optional[str] = None) -> List[Dict[str, Any]]:
    stmt = select(*_COHORT_COLUMNS).order_by(cohorts.c.sort_order, cohorts.c.name)
    if status:
        stmt = stmt.where(cohorts.c.status == status)
    return fetch_rows(engine, stmt)


def fetch_cohort(engine: Engine, cohort_id: str) -> Optional[Dict[str, Any]]:
    return fetch_row(engine, select(*_COHORT_COLUMNS).where(cohorts.c.id == cohort_id))


def create_cohort(engine: Engine, data: Dict[str, Any]) -> Dict[str, Any]:
    values = _only(data, COHORT_FIELDS)
    if not (values.get("name") or "").strip():
        raise StoreError("Cohort name is required")
    values.setdefault("status", "Draft")
    return insert_row(engine, cohorts, values, _COHORT_COLUMNS)


def update_cohort(engine: Engine, cohort_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
    return update_row(engine, cohorts, cohort_id, updates, COHORT_FIELDS, _COHORT_COLUMNS)


def delete_cohort(engine: Engine, cohort_id: str) -> None:
    # Weeks, lessons, items, enrollments and invite codes go with it.
    delete_row(engine, cohorts, cohort_id)


def cohort_counts(engine: Engine) -> Dict[str, Dict[str, int]]:
    """Week and student counts per cohort id, for the cohort table."""
    week_stmt = select(weeks.c.cohort_id, func.count().label("n")).group_by(weeks.c.cohort_id)
    student_stmt = select(student_cohorts.c.cohort_id, func.count().label("n")).group_by(student_cohorts.c.cohort_id)
    counts: Dict[str, Dict[str, int]] = {}
    for row in fetch_rows(engine, week_stmt):
        counts.setdefault(row["cohort_id"], {"weeks": 0, "students": 0})["weeks"] = row["n"]
    for row in fetch_rows(engine, student_stmt):
        counts.setdefault(row["cohort_id"], {"weeks": 0, "students": 0})["students"] = row["n"]
    return counts


# -------------- Weeks --------------
def fetch_weeks(engine: Engine, cohort_id: str) -> List[Dict[str, Any]]:
    stmt = select(*_WEEK_COLUMNS).where(weeks.c.cohort_id == cohort_id).order_by(weeks.c.sort_order)
    return fetch_rows(engine, stmt)


def count_weeks(engine: Engine, cohort_id: str) -> int:
    stmt = select(func.count().label("n")).select_from(weeks).where(weeks.c.cohort_id == cohort_id)
    row = fetch_row(engine, stmt)
    return int(row["n"]) if row else 0


def create_week(engine: Engine, cohort_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    values = _only(data, WEEK_FIELDS)
    values["cohort_id"] = cohort_id
    return insert_row(engine, weeks, values, _WEEK_COLUMNS)


def update_week(engine: Engine, week_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
    return update_row(engine, weeks, week_id, updates, WEEK_FIELDS, _WEEK_COLUMNS)


def delete_week(engine: Engine, week_id: str) -> None:
    delete_row(engine, weeks, week_id)


def reorder_weeks(engine: Engine, cohort_id: str, ordered_ids: List[str]) -> None:
    reorder_rows(engine, weeks, weeks.c.cohort_id, cohort_id, ordered_ids)


# -------------- Lessons --------------
def fetch_lessons(engine: Engine, week_id: str) -> List[Dict[str, Any]]:
    stmt = select(*_LESSON_COLUMNS).where(lessons.c.week_id == week_id).order_by(lessons.c.sort_order)
    return fetch_rows(engine, stmt)


def create_lesson(engine: Engine, week_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    values = _only(data, LESSON_FIELDS)
    values["week_id"] = week_id
    return insert_row(engine, lessons, values, _LESSON_COLUMNS)


def update_lesson(engine: Engine, lesson_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
    return update_row(engine, lessons, lesson_id, updates, LESSON_FIELDS, _LESSON_COLUMNS)


def delete_lesson(engine: Engine, lesson_id: str) -> None:
    delete_row(engine, lessons, lesson_id)


def reorder_lessons(engine: Engine, week_id: str, ordered_ids: List[str]) -> None:
    reorder_rows(engine, lessons, lessons.c.week_id, week_id, ordered_ids)


# -------------- Content items --------------
def fetch_content_items(engine: Engine, lesson_id: str) -> List[Dict[str, Any]]:
    stmt = (
        select(*_CONTENT_COLUMNS)
        .where(content_items.c.lesson_id == lesson_id)
        .order_by(content_items.c.sort_order)
    )
    return fetch_rows(engine, stmt)


def fetch_content_item(engine: Engine, item_id: str) -> Optional[Dict[str, Any]]:
    return fetch_row(engine, select(*_CONTENT_COLUMNS).where(content_items.c.id == item_id))


def create_content_item(engine: Engine, lesson_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    values = _only(data, CONTENT_ITEM_FIELDS)
    values["lesson_id"] = lesson_id
    values.setdefault("content_type", "text")
    return insert_row(engine, content_items, values, _CONTENT_COLUMNS)


def update_content_item(engine: Engine, item_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
    return update_row(engine, content_items, item_id, updates, CONTENT_ITEM_FIELDS, _CONTENT_COLUMNS)


def delete_content_item(engine: Engine, item_id: str) -> None:
    delete_row(engine, content_items, item_id)


def reorder_content_items(engine: Engine, lesson_id: str, ordered_ids: List[str]) -> None:
    reorder_rows(engine, content_items, content_items.c.lesson_id, lesson_id, ordered_ids)


# -------------- Action items --------------
def create_action_item(engine: Engine, week_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    values = _only(data, ACTION_ITEM_FIELDS)
    values["week_id"] = week_id
    return insert_row(engine, action_items, values, _ACTION_COLUMNS)


def update_action_item(engine: Engine, item_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
    return update_row(engine, action_items, item_id, updates, ACTION_ITEM_FIELDS, _ACTION_COLUMNS)


def delete_action_item(engine: Engine, item_id: str) -> None:
    delete_row(engine, action_items, item_id)


# -------------- Curriculum tree --------------
def fetch_curriculum(engine: Engine, cohort_id: str, visible_only: bool = False) -> List[Dict[str, Any]]:
    """Return the cohort's weeks, each carrying ``lessons`` (with ``content_items``) and ``action_items``.

    Four queries regardless of size; children are grouped in Python.
    """
    week_stmt = select(*_WEEK_COLUMNS).where(weeks.c.cohort_id == cohort_id).order_by(weeks.c.sort_order)
    if visible_only:
        week_stmt = week_stmt.where(weeks.c.is_visible.is_(True))
    week_rows = fetch_rows(engine, week_stmt)
    week_ids = [w["id"] for w in week_rows]
    if not week_ids:
        return []

    lesson_stmt = (
        select(*_LESSON_COLUMNS)
        .where(lessons.c.week_id.in_(week_ids))
        .order_by(lessons.c.week_id, lessons.c.sort_order)
    )
    action_stmt = (
        select(*_ACTION_COLUMNS)
        .where(action_items.c.week_id.in_(week_ids))
        .order_by(action_items.c.week_id, action_items.c.sort_order)
    )
    if visible_only:
        lesson_stmt = lesson_stmt.where(lessons.c.is_visible.is_(True))
        action_stmt = action_stmt.where(action_items.c.is_visible.is_(True))
    lesson_rows = fetch_rows(engine, lesson_stmt)
    action_rows = fetch_rows(engine, action_stmt)

    item_rows: List[Dict[str, Any]] = []
    lesson_ids = [l["id"] for l in lesson_rows]
    if lesson_ids:
        item_stmt = (
            select(*_CONTENT_COLUMNS)
            .where(content_items.c.lesson_id.in_(lesson_ids))
            .order_by(content_items.c.lesson_id, content_items.c.sort_order)
        )
        if visible_only:
            item_stmt = item_stmt.where(content_items.c.is_visible.is_(True))
        item_rows = fetch_rows(engine, item_stmt)

    items_by_lesson: Dict[str, List[Dict[str, Any]]] = {}
    for item in item_rows:
        items_by_lesson.setdefault(item["lesson_id"], []).append(item)
    lessons_by_week: Dict[str, List[Dict[str, Any]]] = {}
    for lesson in lesson_rows:
        lesson["content_items"] = items_by_lesson.get(lesson["id"], [])
        lessons_by_week.setdefault(lesson["week_id"], []).append(lesson)
    actions_by_week: Dict[str, List[Dict[str, Any]]] = {}
    for action in action_rows:
        actions_by_week.setdefault(action["week_id"], []).append(action)

    for week in week_rows:
        week["lessons"] = lessons_by_week.get(week["id"], [])
        week["action_items"] = actions_by_week.get(week["id"], [])
    return week_rows


# -------------- Enrollments --------------
def fetch_enrollments_for_student(engine: Engine, student_id: str) -> List[Dict[str, Any]]:
    stmt = (
        select(*_ENROLLMENT_COLUMNS, cohorts.c.name.label("cohort_name"), cohorts.c.status.label("cohort_status"))
        .join(cohorts, cohorts.c.id == student_cohorts.c.cohort_id)
        .where(student_cohorts.c.student_id == student_id)
        .order_by(cohorts.c.sort_order, cohorts.c.name)
    )
    return fetch_rows(engine, stmt)


def fetch_enrollment_map(engine: Engine) -> Dict[str, List[str]]:
    """student id -> enrolled cohort ids, used by the roster table."""
    rows = fetch_rows(engine, select(student_cohorts.c.student_id, student_cohorts.c.cohort_id))
    result: Dict[str, List[str]] = {}
    for row in rows:
        result.setdefault(row["student_id"], []).append(row["cohort_id"])
    return result


def enroll_student(
    engine: Engine,
    student_id: str,
    cohort_id: str,
    *,
    role: str = "student",
    access_level: str = "Full Access",
    enrollment_source: Optional[str] = None,
    enrollment_metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Upsert on (student_id, cohort_id); enrolling twice leaves one row."""
    values = {
        "role": role,
        "access_level": access_level,
        "enrollment_source": enrollment_source,
        "enrollment_metadata": enrollment_metadata,
    }
    pair = (student_cohorts.c.student_id == student_id) & (student_cohorts.c.cohort_id == cohort_id)
    try:
        with engine.begin() as conn:
            existing = conn.execute(select(student_cohorts.c.id).where(pair)).first()
            if existing:
                conn.execute(student_cohorts.update().where(pair).values(**values))
            else:
                conn.execute(
                    student_cohorts.insert().values(
                        id=new_id(),
                        student_id=student_id,
                        cohort_id=cohort_id,
                        joined_at=utcnow(),
                        **values,
                    )
                )
            row = conn.execute(select(*_ENROLLMENT_COLUMNS).where(pair)).mappings().first()
    except SQLAlchemyError as exc:
        log.warning("Enroll %s in %s failed: %s", student_id, cohort_id, exc)
        raise StoreError(str(exc)) from exc
    return dict(row)


def unenroll_student(engine: Engine, student_id: str, cohort_id: str) -> None:
    try:
        with engine.begin() as conn:
            conn.execute(
                delete(student_cohorts)
                .where(student_cohorts.c.student_id == student_id)
                .where(student_cohorts.c.cohort_id == cohort_id)
            )
    except SQLAlchemyError as exc:
        log.warning("Unenroll %s from %s failed: %s", student_id, cohort_id, exc)
        raise StoreError(str(exc)) from exc


def complete_cohort_onboarding(engine: Engine, student_id: str, cohort_id: str) -> None:
    try:
        with engine.begin() as conn:
            conn.execute(
                student_cohorts.update()
                .where(student_cohorts.c.student_id == student_id)
                .where(student_cohorts.c.cohort_id == cohort_id)
                .values(onboarding_completed_at=utcnow())
            )
    except SQLAlchemyError as exc:
        raise StoreError(str(exc)) from exc


# -------------- Lesson progress --------------
def fetch_completed_lesson_ids(engine: Engine, student_id: str) -> List[str]:
    rows = fetch_rows(engine, select(lesson_progress.c.lesson_id).where(lesson_progress.c.student_id == student_id))
    return [r["lesson_id"] for r in rows]


def set_lesson_complete(engine: Engine, student_id: str, lesson_id: str, completed: bool) -> None:
    pair = (lesson_progress.c.student_id == student_id) & (lesson_progress.c.lesson_id == lesson_id)
    try:
        with engine.begin() as conn:
            if not completed:
                conn.execute(delete(lesson_progress).where(pair))
                return
            if conn.execute(select(lesson_progress.c.id).where(pair)).first() is None:
                conn.execute(
                    lesson_progress.insert().values(
                        id=new_id(), student_id=student_id, lesson_id=lesson_id, completed_at=utcnow()
                    )
                )
    except SQLAlchemyError as exc:
        raise StoreError(str(exc)) from exc
