"""Learner-facing bootcamp blueprint: sign-in, dashboard, curriculum, onboarding."""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

from flask import (
    Blueprint,
    abort,
    flash,
    jsonify,
    redirect,
    render_template,
    request,
    session,
    url_for,
)

from bootcamp_store import (
    SURVEY_FIELDS,
    complete_student_onboarding,
    fetch_student,
    fetch_student_by_email,
    fetch_student_grants,
    fetch_survey,
    save_survey,
)
from client_state import ClientState, SessionBackend
from content_types import CONTENT_TYPE_LABELS, EMBED_TYPES
from db import StoreError
from invite_codes import CodeAlreadyRedeemed, InviteCodeError, redeem_code
from lms_store import (
    complete_cohort_onboarding,
    fetch_cohort,
    fetch_completed_lesson_ids,
    fetch_curriculum,
    fetch_enrollments_for_student,
    set_lesson_complete,
)
from onboarding import OnboardingWizard, booking_view
from web_helpers import _s, resolve_db_engine, wants_json

bootcamp_bp = Blueprint("bootcamp", __name__, template_folder="templates")

log = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

SURVEY_LIST_FIELDS = ("biggest_challenges", "current_lead_gen_methods", "tools_currently_using")
COMPANY_SIZES = ("1", "2-10", "11-50", "51-200", "200+")
LINKEDIN_EXPERIENCE = ("none", "beginner", "intermediate", "advanced")
OUTREACH_VOLUMES = ("0-100", "100-500", "500-2000", "2000+")
CHALLENGE_CHOICES = (
    "Finding leads",
    "Writing copy",
    "Getting replies",
    "Booking meetings",
    "Scaling outreach",
)
LEAD_GEN_CHOICES = ("Cold email", "LinkedIn", "Referrals", "Paid ads", "Content", "Events")
TOOL_CHOICES = ("Clay", "Apollo", "Instantly", "Smartlead", "HubSpot", "Lemlist")


def _engine():
    engine = resolve_db_engine()
    if engine is None:
        abort(503)
    return engine


def _state() -> ClientState:
    return ClientState(SessionBackend(session))


def _current_student(engine) -> Optional[Dict[str, Any]]:
    student_id = session.get("student_id")
    if not student_id:
        return None
    student = fetch_student(engine, student_id)
    if student is None:
        session.pop("student_id", None)
    return student


def _require_student(engine):
    student = _current_student(engine)
    if student is None:
        flash("Please sign in with your registered email.", "error")
    return student


def _enrollment(engine, student_id: str, cohort_id: str) -> Optional[Dict[str, Any]]:
    for row in fetch_enrollments_for_student(engine, student_id):
        if row["cohort_id"] == cohort_id:
            return row
    return None


def _needs_onboarding(cohort: Dict[str, Any], enrollment: Dict[str, Any]) -> bool:
    config = cohort.get("onboarding_config") or {}
    return bool(config.get("enabled")) and enrollment.get("onboarding_completed_at") is None


def _survey_answers_from_form() -> Dict[str, Any]:
    answers: Dict[str, Any] = {}
    for name in SURVEY_FIELDS:
        if name in SURVEY_LIST_FIELDS:
            answers[name] = [v for v in request.form.getlist(name) if v.strip()]
        else:
            answers[name] = _s(request.form.get(name))
    return answers


# ───────────────────────────────────────────────────────────────
# Sign-in
# ───────────────────────────────────────────────────────────────
@bootcamp_bp.get("/signin")
def signin_page():
    return render_template("bootcamp/signin.html", code=request.args.get("code") or "")


@bootcamp_bp.post("/signin")
def signin():
    engine = _engine()
    email = (_s(request.form.get("email"), 255) or "").lower()
    code = _s(request.form.get("code"), 64)
    if not _EMAIL_RE.match(email):
        flash("Please enter a valid email address.", "error")
        return redirect(url_for("bootcamp.signin_page"))
    student = fetch_student_by_email(engine, email)
    if student is None:
        flash("We couldn't find that email. Register with your invite code first.", "error")
        return redirect(url_for("bootcamp.signin_page"))
    session["student_id"] = student["id"]
    if code:
        return redirect(url_for("register.page", code=code))
    return redirect(url_for("bootcamp.dashboard"))


@bootcamp_bp.get("/logout")
def logout():
    session.pop("student_id", None)
    flash("Signed out.", "success")
    return redirect(url_for("bootcamp.signin_page"))


@bootcamp_bp.post("/theme")
def toggle_theme():
    theme = _state().toggle_theme()
    if request.is_json:
        return jsonify({"ok": True, "theme": theme})
    return redirect(request.referrer or url_for("bootcamp.dashboard"))


# ───────────────────────────────────────────────────────────────
# Dashboard and curriculum
# ───────────────────────────────────────────────────────────────
@bootcamp_bp.get("/")
def dashboard():
    engine = _engine()
    student = _require_student(engine)
    if student is None:
        return redirect(url_for("bootcamp.signin_page"))
    enrollments = fetch_enrollments_for_student(engine, student["id"])
    state = _state()
    active_id = state.pick_active_cohort([e["cohort_id"] for e in enrollments])
    return render_template(
        "bootcamp/dashboard.html",
        student=student,
        enrollments=enrollments,
        active_cohort_id=active_id,
        grants=fetch_student_grants(engine, student["id"]),
        theme=state.theme,
    )


@bootcamp_bp.get("/cohorts/<cohort_id>")
def cohort_page(cohort_id: str):
    engine = _engine()
    student = _require_student(engine)
    if student is None:
        return redirect(url_for("bootcamp.signin_page"))
    enrollment = _enrollment(engine, student["id"], cohort_id)
    cohort = fetch_cohort(engine, cohort_id)
    if enrollment is None or cohort is None:
        abort(404)
    if _needs_onboarding(cohort, enrollment):
        return redirect(url_for("bootcamp.onboarding_page", cohort_id=cohort_id))

    state = _state()
    state.active_cohort_id = cohort_id
    weeks = fetch_curriculum(engine, cohort_id, visible_only=True)
    completed = set(fetch_completed_lesson_ids(engine, student["id"]))
    total_lessons = sum(len(w["lessons"]) for w in weeks)
    done = sum(1 for w in weeks for l in w["lessons"] if l["id"] in completed)
    return render_template(
        "bootcamp/cohort.html",
        student=student,
        cohort=cohort,
        weeks=weeks,
        completed=completed,
        progress_percent=round(done / total_lessons * 100) if total_lessons else 0,
        content_types=CONTENT_TYPE_LABELS,
        embed_types=EMBED_TYPES,
        theme=state.theme,
    )


@bootcamp_bp.post("/lessons/<lesson_id>/complete")
def toggle_lesson_complete(lesson_id: str):
    engine = _engine()
    student = _current_student(engine)
    if student is None:
        return jsonify({"ok": False, "error": "Not signed in"}), 401
    payload = request.get_json(silent=True) or {}
    completed = bool(payload.get("completed", request.form.get("completed") == "1"))
    try:
        set_lesson_complete(engine, student["id"], lesson_id, completed)
    except StoreError as exc:
        log.warning("Lesson progress update failed: %s", exc)
        if not wants_json():
            flash("Could not save progress.", "error")
            return redirect(request.referrer or url_for("bootcamp.dashboard"))
        return jsonify({"ok": False, "error": "Could not save progress"}), 500
    if not wants_json():
        return redirect(request.referrer or url_for("bootcamp.dashboard"))
    return jsonify({"ok": True, "lesson_id": lesson_id, "completed": completed})


# ───────────────────────────────────────────────────────────────
# Onboarding wizard
# ───────────────────────────────────────────────────────────────
def _render_onboarding(student, cohort, wizard: OnboardingWizard, survey: Optional[Dict[str, Any]]):
    return render_template(
        "bootcamp/onboarding.html",
        student=student,
        cohort=cohort,
        wizard=wizard,
        survey=survey or {},
        booking=booking_view(wizard.config, survey),
        company_sizes=COMPANY_SIZES,
        linkedin_levels=LINKEDIN_EXPERIENCE,
        outreach_volumes=OUTREACH_VOLUMES,
        challenge_choices=CHALLENGE_CHOICES,
        lead_gen_choices=LEAD_GEN_CHOICES,
        tool_choices=TOOL_CHOICES,
    )


@bootcamp_bp.get("/cohorts/<cohort_id>/onboarding")
def onboarding_page(cohort_id: str):
    engine = _engine()
    student = _require_student(engine)
    if student is None:
        return redirect(url_for("bootcamp.signin_page"))
    cohort = fetch_cohort(engine, cohort_id)
    if cohort is None or _enrollment(engine, student["id"], cohort_id) is None:
        abort(404)
    wizard = OnboardingWizard(cohort.get("onboarding_config"), _state().onboarding_index(cohort_id))
    return _render_onboarding(student, cohort, wizard, fetch_survey(engine, student["id"]))


@bootcamp_bp.post("/cohorts/<cohort_id>/onboarding")
def onboarding_step(cohort_id: str):
    engine = _engine()
    student = _require_student(engine)
    if student is None:
        return redirect(url_for("bootcamp.signin_page"))
    cohort = fetch_cohort(engine, cohort_id)
    if cohort is None or _enrollment(engine, student["id"], cohort_id) is None:
        abort(404)

    state = _state()
    wizard = OnboardingWizard(cohort.get("onboarding_config"), state.onboarding_index(cohort_id))
    if request.form.get("action") == "back":
        wizard.go_back()
        state.set_onboarding_index(cohort_id, wizard.index)
        return redirect(url_for("bootcamp.onboarding_page", cohort_id=cohort_id))

    if wizard.current_step == "survey":
        try:
            save_survey(engine, student["id"], _survey_answers_from_form())
        except StoreError as exc:
            log.warning("Survey save failed for %s: %s", student["id"], exc)
            flash("Could not save your answers. Please try again.", "error")
            return redirect(url_for("bootcamp.onboarding_page", cohort_id=cohort_id))

    if wizard.go_next():
        try:
            complete_cohort_onboarding(engine, student["id"], cohort_id)
            if student.get("onboarding_completed_at") is None:
                complete_student_onboarding(engine, student["id"])
        except StoreError as exc:
            log.warning("Completing onboarding failed for %s: %s", student["id"], exc)
            flash("Could not finish onboarding. Please try again.", "error")
            return redirect(url_for("bootcamp.onboarding_page", cohort_id=cohort_id))
        state.clear_onboarding(cohort_id)
        flash("You're all set!", "success")
        return redirect(url_for("bootcamp.cohort_page", cohort_id=cohort_id))

    state.set_onboarding_index(cohort_id, wizard.index)
    return redirect(url_for("bootcamp.onboarding_page", cohort_id=cohort_id))


@bootcamp_bp.post("/survey")
def submit_survey():
    engine = _engine()
    student = _current_student(engine)
    if student is None:
        return jsonify({"ok": False, "error": "Not signed in"}), 401
    if request.is_json:
        answers = request.get_json(silent=True) or {}
    else:
        answers = _survey_answers_from_form()
    try:
        saved = save_survey(engine, student["id"], answers)
    except StoreError as exc:
        log.warning("Survey save failed for %s: %s", student["id"], exc)
        return jsonify({"ok": False, "error": "Could not save survey"}), 500
    return jsonify({"ok": True, "completed_at": saved["completed_at"]})


# ───────────────────────────────────────────────────────────────
# Code redemption
# ───────────────────────────────────────────────────────────────
@bootcamp_bp.post("/redeem")
def redeem():
    engine = _engine()
    student = _require_student(engine)
    if student is None:
        return redirect(url_for("bootcamp.signin_page"))
    code = (_s(request.form.get("code"), 64) or "").upper()
    if not code:
        flash("Enter a code to redeem.", "error")
        return redirect(url_for("bootcamp.dashboard"))
    try:
        result = redeem_code(engine, student["id"], code)
    except CodeAlreadyRedeemed:
        flash("You have already redeemed this code.", "error")
    except InviteCodeError as exc:
        flash(str(exc), "error")
    except StoreError:
        log.exception("Code redemption failed for %s", student["id"])
        flash("Sorry, something went wrong redeeming your code.", "error")
    else:
        parts: List[str] = []
        if result["tools_unlocked"]:
            parts.append(f"{len(result['tools_unlocked'])} tool(s)")
        if result["weeks_unlocked"]:
            parts.append(f"{len(result['weeks_unlocked'])} week(s)")
        if result["access_upgraded"]:
            parts.append("Full Access")
        flash(f"Code redeemed: {', '.join(parts) or 'cohort access'} unlocked.", "success")
    return redirect(url_for("bootcamp.dashboard"))
