"""Copy a curriculum tree from one cohort into another, or into a new cohort."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.engine import Engine

from db import StoreError
from lms_store import (
    count_weeks,
    create_action_item,
    create_cohort,
    create_content_item,
    create_lesson,
    create_week,
    fetch_cohort,
    fetch_curriculum,
)

log = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]

_COPIED_COHORT_FIELDS = ("start_date", "end_date", "sidebar_label", "icon", "sort_order", "product_type", "onboarding_config")
_COPIED_ITEM_FIELDS = (
    "title",
    "content_type",
    "embed_url",
    "ai_tool_slug",
    "content_text",
    "credentials_data",
    "description",
    "is_visible",
)
_COPIED_ACTION_FIELDS = ("text", "description", "video_url", "assigned_to_email", "is_visible")


@dataclass
class ImportStats:
    weeks: int = 0
    lessons: int = 0
    content: int = 0
    actions: int = 0
    skipped_lessons: int = 0
    skipped_content: int = 0

    @property
    def total_steps(self) -> int:
        return self.weeks + self.lessons + self.content + self.actions


@dataclass
class CopyResult:
    weeks_created: int = 0
    lessons_created: int = 0
    content_items_created: int = 0
    action_items_created: int = 0
    skipped_lessons: int = 0
    skipped_content: int = 0
    failed: List[Dict[str, str]] = field(default_factory=list)


def is_recording_only(lesson: Dict[str, Any]) -> bool:
    """A lesson titled like a recording whose items are all videos."""
    items = lesson.get("content_items") or []
    return (
        "recording" in (lesson.get("title") or "").lower()
        and len(items) > 0
        and all(item.get("content_type") == "video" for item in items)
    )


def _keep_lesson(lesson: Dict[str, Any], exclude_recordings: bool) -> bool:
    return not (exclude_recordings and is_recording_only(lesson))


def _keep_item(item: Dict[str, Any], exclude_recordings: bool) -> bool:
    return not (exclude_recordings and item.get("content_type") == "video")


def preview_cohort_import(curriculum: List[Dict[str, Any]], exclude_recordings: bool = True) -> ImportStats:
    """Count what an import would create and skip. Writes nothing."""
    stats = ImportStats()
    for week in curriculum:
        stats.weeks += 1
        for lesson in week.get("lessons") or []:
            items = lesson.get("content_items") or []
            if not _keep_lesson(lesson, exclude_recordings):
                stats.skipped_lessons += 1
                stats.skipped_content += len(items)
                continue
            stats.lessons += 1
            for item in items:
                if _keep_item(item, exclude_recordings):
                    stats.content += 1
                else:
                    stats.skipped_content += 1
        stats.actions += len(week.get("action_items") or [])
    return stats


def _copy_tree(
    engine: Engine,
    curriculum: List[Dict[str, Any]],
    target_cohort_id: str,
    exclude_recordings: bool,
    first_week_order: int,
    on_progress: Optional[ProgressCallback],
) -> CopyResult:
    stats = preview_cohort_import(curriculum, exclude_recordings)
    total = stats.total_steps
    result = CopyResult(skipped_lessons=stats.skipped_lessons, skipped_content=stats.skipped_content)
    current = 0

    def step(label: str) -> None:
        nonlocal current
        current += 1
        if on_progress:
            on_progress(current, total, label)

    def fail(label: str, exc: Exception) -> None:
        log.warning("Copy of %s failed: %s", label, exc)
        result.failed.append({"label": label, "reason": str(exc)})

    for wi, week in enumerate(curriculum):
        kept_lessons = [l for l in week.get("lessons") or [] if _keep_lesson(l, exclude_recordings)]
        try:
            new_week = create_week(
                engine,
                target_cohort_id,
                {
                    "title": week["title"],
                    "description": week.get("description"),
                    "sort_order": first_week_order + wi,
                    "is_visible": week.get("is_visible", True),
                },
            )
        except StoreError as exc:
            fail(f"Week: {week['title']}", exc)
            # Children can't be created without their week; move the counter past them.
            for lesson in kept_lessons:
                current += 1 + sum(
                    1 for i in lesson.get("content_items") or [] if _keep_item(i, exclude_recordings)
                )
            current += len(week.get("action_items") or [])
            step(f"Skipped week: {week['title']}")
            continue
        result.weeks_created += 1
        step(f"Week: {week['title']}")

        for li, lesson in enumerate(kept_lessons):
            items = [i for i in lesson.get("content_items") or [] if _keep_item(i, exclude_recordings)]
            try:
                new_lesson = create_lesson(
                    engine,
                    new_week["id"],
                    {
                        "title": lesson["title"],
                        "description": lesson.get("description"),
                        "sort_order": li,
                        "is_visible": lesson.get("is_visible", True),
                    },
                )
            except StoreError as exc:
                fail(f"Lesson: {lesson['title']}", exc)
                current += len(items)
                step(f"Skipped lesson: {lesson['title']}")
                continue
            result.lessons_created += 1
            step(f"Lesson: {lesson['title']}")

            for ci, item in enumerate(items):
                values = {k: item.get(k) for k in _COPIED_ITEM_FIELDS}
                values["sort_order"] = ci
                try:
                    create_content_item(engine, new_lesson["id"], values)
                except StoreError as exc:
                    fail(f"Item: {item['title']}", exc)
                else:
                    result.content_items_created += 1
                step(f"Content: {item['title']}")

        for ai, action in enumerate(week.get("action_items") or []):
            values = {k: action.get(k) for k in _COPIED_ACTION_FIELDS}
            values["sort_order"] = ai
            try:
                create_action_item(engine, new_week["id"], values)
            except StoreError as exc:
                fail(f"Action: {action['text']}", exc)
            else:
                result.action_items_created += 1
            step(f"Action: {action['text']}")

    return result


def import_curriculum_from_cohort(
    engine: Engine,
    source_cohort_id: str,
    target_cohort_id: str,
    exclude_recordings: bool = True,
    on_progress: Optional[ProgressCallback] = None,
) -> CopyResult:
    """Append the source cohort's curriculum after the target's existing weeks."""
    if source_cohort_id == target_cohort_id:
        raise StoreError("Source and target cohort must differ")
    curriculum = fetch_curriculum(engine, source_cohort_id)
    start = count_weeks(engine, target_cohort_id)
    log.info(
        "Importing curriculum %s -> %s (exclude_recordings=%s, %d weeks)",
        source_cohort_id,
        target_cohort_id,
        exclude_recordings,
        len(curriculum),
    )
    return _copy_tree(engine, curriculum, target_cohort_id, exclude_recordings, start, on_progress)


def duplicate_cohort(
    engine: Engine,
    source_cohort_id: str,
    name: str,
    description: Optional[str] = None,
    status: str = "Draft",
) -> Dict[str, Any]:
    """Create a new cohort with the source's settings and a full copy of its curriculum.

    The payment product link is not carried over so two cohorts never sell
    the same product.
    """
    source = fetch_cohort(engine, source_cohort_id)
    if source is None:
        raise StoreError(f"Cohort {source_cohort_id} not found")
    data = {k: source.get(k) for k in _COPIED_COHORT_FIELDS}
    data.update(
        {
            "name": name,
            "description": description if description is not None else source.get("description"),
            "status": status or "Draft",
        }
    )
    cohort = create_cohort(engine, data)
    result = _copy_tree(engine, fetch_curriculum(engine, source_cohort_id), cohort["id"], False, 0, None)
    log.info(
        "Duplicated cohort %s as %s (%d weeks, %d lessons, %d items)",
        source_cohort_id,
        cohort["id"],
        result.weeks_created,
        result.lessons_created,
        result.content_items_created,
    )
    cohort["copy_result"] = result
    return cohort
