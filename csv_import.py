"""CSV bulk import: curriculum rows into weeks/lessons/items, and student rosters.

Both importers run in two steps. Parsing and preview building are pure and
raise ``CsvFormatError`` before anything touches the database. The import
step then walks the preview sequentially, catching each creation on its own
so one bad row never stops the rest; failures come back in the result.
"""
from __future__ import annotations

import csv
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Dict, Iterable, List, Optional, Set

from sqlalchemy.engine import Engine

from bootcamp_store import (
    ACCESS_LEVELS,
    STUDENT_STATUSES,
    create_student,
    normalize_email,
)
from content_types import CONTENT_TYPES, detect_content_type, normalize_embed_url
from db import StoreError
from lms_store import create_content_item, create_lesson, create_week, enroll_student

log = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]


class CsvFormatError(ValueError):
    """The uploaded text is not a usable CSV for this importer."""


def _noop_progress(current: int, total: int, label: str) -> None:
    return None


# ───────────────────────────────────────────────────────────────
# Parsing
# ───────────────────────────────────────────────────────────────
def parse_csv_line(line: str) -> List[str]:
    """Split one CSV line, honouring double-quoted fields and ``""`` escapes.

    Field values are returned untouched (no trimming). Newlines inside
    quotes are not supported because callers split on ``\\n`` first.
    """
    return next(csv.reader([line])) or [""]


def _lines(text: str) -> List[str]:
    return [l.strip() for l in (text or "").replace("\r\n", "\n").split("\n") if l.strip()]


def _header_index(header: List[str], *names: str) -> int:
    for i, col in enumerate(header):
        if col in names:
            return i
    return -1


def _cell(cols: List[str], idx: int) -> str:
    if idx < 0 or idx >= len(cols):
        return ""
    return cols[idx].strip()


# ───────────────────────────────────────────────────────────────
# Curriculum CSV
# ───────────────────────────────────────────────────────────────
SAMPLE_CURRICULUM_CSV = """week,lesson,type,title,url,description
Week 1: Foundations,Getting Started,video,Welcome Video,https://www.youtube.com/watch?v=example,Introduction to the course
Week 1: Foundations,Getting Started,text,Course Overview,,This is the course overview text
Week 1: Foundations,Tool Setup,video,Setting Up Your Tools,https://www.loom.com/share/example,How to set up tools
Week 2: Outreach,Cold Email,video,Email Frameworks,https://www.youtube.com/watch?v=example2,Learn email frameworks
Week 2: Outreach,Cold Email,slide_deck,Email Templates,https://gamma.app/docs/example,Template slide deck
Week 2: Outreach,LinkedIn,video,LinkedIn Outreach,https://www.loom.com/share/example2,LinkedIn strategies
"""


@dataclass(frozen=True)
class CurriculumRow:
    week: str
    lesson: str
    title: str
    type: str = ""
    url: str = ""
    description: str = ""


@dataclass
class PreviewItem:
    title: str
    content_type: str
    url: str = ""
    description: str = ""


@dataclass
class PreviewLesson:
    title: str
    items: List[PreviewItem] = field(default_factory=list)


@dataclass
class PreviewWeek:
    title: str
    lessons: List[PreviewLesson] = field(default_factory=list)


@dataclass
class CurriculumPreview:
    weeks: List[PreviewWeek]

    @property
    def total_weeks(self) -> int:
        return len(self.weeks)

    @property
    def total_lessons(self) -> int:
        return sum(len(w.lessons) for w in self.weeks)

    @property
    def total_items(self) -> int:
        return sum(len(l.items) for w in self.weeks for l in w.lessons)

    @property
    def total_steps(self) -> int:
        return self.total_weeks + self.total_lessons + self.total_items


@dataclass
class ImportFailure:
    label: str
    reason: str


@dataclass
class CurriculumImportResult:
    weeks_created: int = 0
    lessons_created: int = 0
    items_created: int = 0
    failed: List[ImportFailure] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


def parse_curriculum_csv(text: str) -> List[CurriculumRow]:
    lines = _lines(text)
    if len(lines) < 2:
        return []

    header = [h.strip().lower() for h in parse_csv_line(lines[0])]
    week_idx = _header_index(header, "week")
    lesson_idx = _header_index(header, "lesson")
    title_idx = _header_index(header, "title")
    type_idx = _header_index(header, "type")
    url_idx = _header_index(header, "url")
    desc_idx = _header_index(header, "description")
    if week_idx == -1 or lesson_idx == -1 or title_idx == -1:
        raise CsvFormatError('CSV must have "week", "lesson", and "title" columns')

    rows: List[CurriculumRow] = []
    for line in lines[1:]:
        cols = parse_csv_line(line)
        if len(cols) < 3:
            continue
        row = CurriculumRow(
            week=_cell(cols, week_idx),
            lesson=_cell(cols, lesson_idx),
            title=_cell(cols, title_idx),
            type=_cell(cols, type_idx),
            url=_cell(cols, url_idx),
            description=_cell(cols, desc_idx),
        )
        if row.week and row.lesson and row.title:
            rows.append(row)
    return rows


def resolve_content_type(row: CurriculumRow) -> str:
    explicit = row.type.strip().lower()
    if explicit in CONTENT_TYPES:
        return explicit
    if explicit:
        log.warning("Unknown content type %r for %r; inferring from URL", row.type, row.title)
    return detect_content_type(row.url) if row.url else "text"


def build_curriculum_preview(rows: Iterable[CurriculumRow]) -> CurriculumPreview:
    """Group rows by week then lesson, keeping first-seen order."""
    weeks: Dict[str, Dict[str, PreviewLesson]] = {}
    for row in rows:
        lessons = weeks.setdefault(row.week, {})
        lesson = lessons.setdefault(row.lesson, PreviewLesson(title=row.lesson))
        lesson.items.append(
            PreviewItem(
                title=row.title,
                content_type=resolve_content_type(row),
                url=row.url,
                description=row.description,
            )
        )
    return CurriculumPreview(
        weeks=[PreviewWeek(title=title, lessons=list(lessons.values())) for title, lessons in weeks.items()]
    )


def _item_values(item: PreviewItem, sort_order: int) -> Dict[str, object]:
    values: Dict[str, object] = {
        "title": item.title,
        "content_type": item.content_type,
        "sort_order": sort_order,
        "is_visible": True,
    }
    if item.url:
        values["embed_url"] = normalize_embed_url(item.url)
    if item.content_type == "text" and not item.url:
        values["content_text"] = item.description or item.title
    if item.content_type != "text" and item.description:
        values["description"] = item.description
    return values


def import_curriculum_csv(
    engine: Engine,
    cohort_id: str,
    preview: CurriculumPreview,
    existing_week_count: int = 0,
    on_progress: Optional[ProgressCallback] = None,
) -> CurriculumImportResult:
    """Create the previewed tree under ``cohort_id``.

    New weeks are appended after ``existing_week_count``. A week or lesson
    that fails to create takes its children with it: they are listed in
    ``skipped`` and the progress counter still moves past them.
    """
    progress = on_progress or _noop_progress
    total = preview.total_steps
    current = 0
    result = CurriculumImportResult()
    log.info(
        "Importing %d weeks / %d lessons / %d items into cohort %s",
        preview.total_weeks,
        preview.total_lessons,
        preview.total_items,
        cohort_id,
    )

    for wi, week in enumerate(preview.weeks):
        progress(current, total, f"Creating week: {week.title}")
        try:
            created_week = create_week(
                engine,
                cohort_id,
                {"title": week.title, "sort_order": existing_week_count + wi, "is_visible": True},
            )
        except StoreError as exc:
            log.warning("Week %r failed: %s", week.title, exc)
            result.failed.append(ImportFailure(f"Week: {week.title}", str(exc)))
            current += 1
            for lesson in week.lessons:
                result.skipped.append(f"Lesson: {lesson.title}")
                result.skipped.extend(f"Item: {item.title}" for item in lesson.items)
                current += 1 + len(lesson.items)
            progress(current, total, f"Skipped week: {week.title}")
            continue
        result.weeks_created += 1
        current += 1

        for li, lesson in enumerate(week.lessons):
            progress(current, total, f"Creating lesson: {lesson.title}")
            try:
                created_lesson = create_lesson(
                    engine,
                    created_week["id"],
                    {"title": lesson.title, "sort_order": li, "is_visible": True},
                )
            except StoreError as exc:
                log.warning("Lesson %r failed: %s", lesson.title, exc)
                result.failed.append(ImportFailure(f"Lesson: {lesson.title}", str(exc)))
                result.skipped.extend(f"Item: {item.title}" for item in lesson.items)
                current += 1 + len(lesson.items)
                progress(current, total, f"Skipped lesson: {lesson.title}")
                continue
            result.lessons_created += 1
            current += 1

            for ci, item in enumerate(lesson.items):
                progress(current, total, f"Adding: {item.title}")
                try:
                    create_content_item(engine, created_lesson["id"], _item_values(item, ci))
                except StoreError as exc:
                    log.warning("Item %r failed: %s", item.title, exc)
                    result.failed.append(ImportFailure(f"Item: {item.title}", str(exc)))
                else:
                    result.items_created += 1
                current += 1

    progress(total, total, "Done!")
    log.info(
        "Curriculum import into %s finished: %d weeks, %d lessons, %d items, %d failed",
        cohort_id,
        result.weeks_created,
        result.lessons_created,
        result.items_created,
        len(result.failed),
    )
    return result


# ───────────────────────────────────────────────────────────────
# Student CSV
# ───────────────────────────────────────────────────────────────
SAMPLE_STUDENT_CSV = """email,name,company,purchase_date,access_level,status,notes
john@example.com,John Doe,Acme Corp,2025-12-01,Full Access,Active,Previous customer
jane@example.com,Jane Smith,Beta Inc,2026-01-15,Full Access,Onboarding,New student
"""

_DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%d.%m.%Y", "%Y/%m/%d")


@dataclass(frozen=True)
class StudentRow:
    email: str
    name: Optional[str] = None
    company: Optional[str] = None
    purchase_date: Optional[str] = None
    access_level: Optional[str] = None
    status: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class StudentPreview:
    students: List[StudentRow]
    duplicate_emails: Set[str]
    repeated: List[StudentRow] = field(default_factory=list)

    def is_duplicate(self, row: StudentRow) -> bool:
        return normalize_email(row.email) in self.duplicate_emails

    @property
    def new_count(self) -> int:
        return sum(1 for s in self.students if not self.is_duplicate(s))

    @property
    def dup_count(self) -> int:
        return sum(1 for s in self.students if self.is_duplicate(s))


@dataclass
class RowFailure:
    email: str
    reason: str


@dataclass
class StudentImportResult:
    created: int = 0
    failed: List[RowFailure] = field(default_factory=list)
    enroll_failed: List[RowFailure] = field(default_factory=list)


def parse_student_csv(text: str) -> List[StudentRow]:
    lines = _lines(text)
    if len(lines) < 2:
        return []

    header = [h.strip().lower() for h in parse_csv_line(lines[0])]
    email_idx = _header_index(header, "email")
    if email_idx == -1:
        raise CsvFormatError('CSV must have an "email" column')
    name_idx = _header_index(header, "name")
    company_idx = _header_index(header, "company")
    purchase_idx = _header_index(header, "purchase_date", "purchasedate")
    access_idx = _header_index(header, "access_level", "accesslevel")
    status_idx = _header_index(header, "status")
    notes_idx = _header_index(header, "notes")

    rows: List[StudentRow] = []
    for line in lines[1:]:
        cols = parse_csv_line(line)
        email = _cell(cols, email_idx)
        if not email:
            continue
        rows.append(
            StudentRow(
                email=email,
                name=_cell(cols, name_idx) or None,
                company=_cell(cols, company_idx) or None,
                purchase_date=_cell(cols, purchase_idx) or None,
                access_level=_cell(cols, access_idx) or None,
                status=_cell(cols, status_idx) or None,
                notes=_cell(cols, notes_idx) or None,
            )
        )
    return rows


def build_student_preview(rows: List[StudentRow], existing_emails: Iterable[str]) -> StudentPreview:
    """Flag rows whose email (case-insensitively) is already on the roster.

    Repeats of an email within the file itself are dropped after the first
    occurrence and listed in ``repeated``.
    """
    existing = {normalize_email(e) for e in existing_emails}
    seen: Set[str] = set()
    unique: List[StudentRow] = []
    repeated: List[StudentRow] = []
    for row in rows:
        key = normalize_email(row.email)
        if key in seen:
            repeated.append(row)
            continue
        seen.add(key)
        unique.append(row)
    duplicates = {normalize_email(r.email) for r in unique if normalize_email(r.email) in existing}
    return StudentPreview(students=unique, duplicate_emails=duplicates, repeated=repeated)


def parse_purchase_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(value.strip(), fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Unrecognised purchase date {value!r}")


def _student_values(row: StudentRow) -> Dict[str, object]:
    access_level = row.access_level or "Full Access"
    if access_level not in ACCESS_LEVELS:
        raise ValueError(f"Unknown access level {access_level!r}")
    status = row.status or "Onboarding"
    if status not in STUDENT_STATUSES:
        raise ValueError(f"Unknown status {status!r}")
    return {
        "email": row.email,
        "name": row.name,
        "company": row.company,
        "purchase_date": parse_purchase_date(row.purchase_date),
        "access_level": access_level,
        "status": status,
        "notes": row.notes,
    }


def import_students(
    engine: Engine,
    preview: StudentPreview,
    include_duplicates: bool = False,
    target_cohort_id: Optional[str] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> StudentImportResult:
    """Create each student, then enroll.

    With ``include_duplicates`` rows already on the roster are attempted too;
    the unique email constraint rejects them and they land in ``failed``.

    Creation and enrollment are caught separately: a student that was saved
    but could not be enrolled is reported in ``enroll_failed``, not ``failed``.
    """
    progress = on_progress or _noop_progress
    to_import = [s for s in preview.students if include_duplicates or not preview.is_duplicate(s)]
    total = len(to_import)
    result = StudentImportResult()

    for current, row in enumerate(to_import, start=1):
        progress(current, total, f"Importing {row.email}")
        try:
            student = create_student(engine, _student_values(row))
            result.created += 1
        except (StoreError, ValueError) as exc:
            log.warning("Student row %s failed: %s", row.email, exc)
            result.failed.append(RowFailure(row.email, str(exc) or "Creation failed"))
            continue

        if target_cohort_id and student.get("id"):
            try:
                enroll_student(engine, student["id"], target_cohort_id, enrollment_source="csv_import")
            except StoreError as exc:
                log.warning("Enrolling %s in %s failed: %s", row.email, target_cohort_id, exc)
                result.enroll_failed.append(RowFailure(row.email, str(exc) or "Enrollment failed"))

    log.info(
        "Student import finished: %d created, %d failed, %d enrollment errors",
        result.created,
        len(result.failed),
        len(result.enroll_failed),
    )
    return result
