"""Reconcile a student's cohort memberships with the set chosen on the edit form."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.engine import Engine

from bootcamp_store import create_student, update_student
from db import StoreError
from lms_store import enroll_student, fetch_enrollments_for_student, unenroll_student

log = logging.getLogger(__name__)


class StudentSaveError(Exception):
    """Creating or updating the student profile failed; nothing was changed."""


class EnrollmentSyncError(Exception):
    """One or more enroll/unenroll calls failed.

    ``failures`` holds ``(action, cohort_id, message)`` tuples; the calls that
    succeeded before and after each failure are kept.
    """

    def __init__(self, failures: List[Tuple[str, str, str]]):
        self.failures = failures
        detail = "; ".join(f"{action} {cohort_id}: {msg}" for action, cohort_id, msg in failures)
        super().__init__(detail or "Enrollment sync failed")


@dataclass
class SyncResult:
    enrolled: List[str] = field(default_factory=list)
    unenrolled: List[str] = field(default_factory=list)


@dataclass
class SaveOutcome:
    student: Dict[str, Any]
    sync: Optional[SyncResult] = None
    warning: Optional[str] = None


def diff_enrollments(current: Iterable[str], desired: Iterable[str]) -> Tuple[List[str], List[str]]:
    """Return ``(to_enroll, to_unenroll)``, each in input order, without repeats."""
    current_list = list(dict.fromkeys(current))
    desired_list = list(dict.fromkeys(desired))
    current_set = set(current_list)
    desired_set = set(desired_list)
    to_enroll = [cid for cid in desired_list if cid not in current_set]
    to_unenroll = [cid for cid in current_list if cid not in desired_set]
    return to_enroll, to_unenroll


def sync_enrollments(
    engine: Engine,
    student_id: str,
    current: Sequence[str],
    desired: Sequence[str],
) -> SyncResult:
    """Enroll into the added cohorts, then unenroll from the removed ones.

    Cohorts present in both sets are not touched. Every delta is attempted;
    if any failed, ``EnrollmentSyncError`` is raised once at the end.
    """
    to_enroll, to_unenroll = diff_enrollments(current, desired)
    result = SyncResult()
    failures: List[Tuple[str, str, str]] = []

    for cohort_id in to_enroll:
        try:
            enroll_student(engine, student_id, cohort_id)
        except StoreError as exc:
            log.warning("Enroll %s -> %s failed: %s", student_id, cohort_id, exc)
            failures.append(("enroll", cohort_id, str(exc)))
        else:
            result.enrolled.append(cohort_id)

    for cohort_id in to_unenroll:
        try:
            unenroll_student(engine, student_id, cohort_id)
        except StoreError as exc:
            log.warning("Unenroll %s -> %s failed: %s", student_id, cohort_id, exc)
            failures.append(("unenroll", cohort_id, str(exc)))
        else:
            result.unenrolled.append(cohort_id)

    if failures:
        raise EnrollmentSyncError(failures)
    return result


def save_student_with_enrollments(
    engine: Engine,
    student_id: Optional[str],
    changes: Dict[str, Any],
    desired_cohort_ids: Sequence[str],
) -> SaveOutcome:
    """Save the profile, then reconcile memberships.

    Two separate steps with no transaction spanning them: if the profile
    save fails, ``StudentSaveError`` is raised and enrollments are left
    alone. If only the sync fails, the saved profile stands and the outcome
    carries a warning.
    """
    try:
        if student_id:
            student = update_student(engine, student_id, changes)
        else:
            student = create_student(engine, changes)
    except StoreError as exc:
        raise StudentSaveError(str(exc)) from exc

    try:
        current = [row["cohort_id"] for row in fetch_enrollments_for_student(engine, student["id"])]
        sync = sync_enrollments(engine, student["id"], current, desired_cohort_ids)
    except (EnrollmentSyncError, StoreError) as exc:
        return SaveOutcome(student=student, warning=f"Student saved but enrollment failed: {exc}")
    return SaveOutcome(student=student, sync=sync)
