"""Admin bootcamp blueprint: student roster, student CSV import, invite codes, surveys, settings."""
from __future__ import annotations

import logging
from typing import Any, Dict, List

from flask import (
    Blueprint,
    Response,
    abort,
    flash,
    jsonify,
    redirect,
    render_template,
    request,
    url_for,
)

from admin import admin_required
from bootcamp_store import (
    ACCESS_LEVELS,
    STUDENT_STATUSES,
    create_ai_tool,
    create_invite_code,
    delete_invite_code,
    delete_student,
    fetch_ai_tools,
    fetch_invite_code,
    fetch_invite_codes,
    fetch_student,
    fetch_student_emails,
    fetch_student_grants,
    fetch_students,
    fetch_survey,
    fetch_surveys,
    get_enrollment_config,
    mark_calendar_added,
    mark_slack_invited,
    save_enrollment_config,
    set_ai_tool_active,
    student_stats,
    update_invite_code,
)
from course_settings import DEFAULT_CREDITS_PER_TOOL, INVITE_CODE_DEFAULT_MAX_USES, PUBLIC_SITE_URL
from csv_import import (
    SAMPLE_STUDENT_CSV,
    CsvFormatError,
    build_student_preview,
    import_students,
    parse_student_csv,
)
from db import StoreError
from drafts import Draft
from enrollment import StudentSaveError, save_student_with_enrollments
from invite_codes import (
    display_status,
    generate_invite_code,
    join_link,
    register_link,
    sanitize_custom_code,
    toggled_status,
)
from lms_store import fetch_cohorts, fetch_enrollment_map, fetch_enrollments_for_student, fetch_weeks
from web_helpers import (
    _s,
    csv_text_from_request,
    form_bool,
    form_date,
    form_datetime,
    form_int,
    form_list,
    resolve_db_engine,
    wants_json,
)

admin_bootcamp_bp = Blueprint("admin_bootcamp", __name__, template_folder="templates")

log = logging.getLogger(__name__)

_EDITABLE_STUDENT_FIELDS = ("email", "name", "company", "status", "access_level", "purchase_date", "notes")


def _engine():
    engine = resolve_db_engine()
    if engine is None:
        abort(503)
    return engine


def _respond(payload: Dict[str, Any], endpoint: str, status: int = 200):
    """JSON for fetch() callers, flash + redirect for plain form posts."""
    if wants_json():
        return jsonify(payload), status
    if payload.get("ok"):
        flash(payload.get("message") or "Saved.", "success")
    else:
        flash(payload.get("error") or "Something went wrong.", "error")
    return redirect(url_for(endpoint))


def _student_form() -> Dict[str, Any]:
    email = _s(request.form.get("email"), 255)
    if not email or "@" not in email:
        raise ValueError("A valid email is required")
    status = _s(request.form.get("status")) or "Onboarding"
    if status not in STUDENT_STATUSES:
        raise ValueError(f"Unknown status {status}")
    access_level = _s(request.form.get("access_level")) or "Full Access"
    if access_level not in ACCESS_LEVELS:
        raise ValueError(f"Unknown access level {access_level}")
    return {
        "email": email.lower(),
        "name": _s(request.form.get("name"), 255),
        "company": _s(request.form.get("company"), 255),
        "status": status,
        "access_level": access_level,
        "purchase_date": form_date("purchase_date"),
        "notes": _s(request.form.get("notes"), 5000),
    }


# ───────────────────────────────────────────────────────────────
# Students
# ───────────────────────────────────────────────────────────────
@admin_bootcamp_bp.get("/")
@admin_required
def index():
    return redirect(url_for("admin_bootcamp.students_page"))


@admin_bootcamp_bp.get("/students")
@admin_required
def students_page():
    engine = _engine()
    search = _s(request.args.get("q"))
    status = _s(request.args.get("status"))
    try:
        students = fetch_students(engine, search=search, status=status)
        enrollment_map = fetch_enrollment_map(engine)
        cohorts = fetch_cohorts(engine)
    except StoreError as exc:
        flash(f"Could not load students: {exc}", "error")
        students, enrollment_map, cohorts = [], {}, []
    return render_template(
        "admin/students.html",
        students=students,
        enrollment_map=enrollment_map,
        cohorts=cohorts,
        cohort_names={c["id"]: c["name"] for c in cohorts},
        stats=student_stats(students),
        statuses=STUDENT_STATUSES,
        access_levels=ACCESS_LEVELS,
        search=search or "",
        status=status or "",
    )


@admin_bootcamp_bp.get("/students/<student_id>")
@admin_required
def student_detail(student_id: str):
    engine = _engine()
    student = fetch_student(engine, student_id)
    if student is None:
        return jsonify({"ok": False, "error": "Student not found"}), 404
    return jsonify(
        {
            "ok": True,
            "student": student,
            "enrollments": fetch_enrollments_for_student(engine, student_id),
            "grants": fetch_student_grants(engine, student_id),
            "survey": fetch_survey(engine, student_id),
        }
    )


def _save_student(student_id: str | None):
    engine = _engine()
    desired = form_list("cohort_ids")
    try:
        submitted = _student_form()
    except ValueError as exc:
        flash(str(exc), "error")
        return redirect(url_for("admin_bootcamp.students_page"))

    if student_id:
        current = fetch_student(engine, student_id)
        if current is None:
            abort(404)
        changes = Draft(current, _EDITABLE_STUDENT_FIELDS).apply(submitted).changes()
    else:
        changes = submitted

    try:
        outcome = save_student_with_enrollments(engine, student_id, changes, desired)
    except StudentSaveError as exc:
        flash(f"Failed to save student: {exc}", "error")
        return redirect(url_for("admin_bootcamp.students_page"))

    if outcome.warning:
        flash(outcome.warning, "warning")
    else:
        flash("Student saved.", "success")
    return redirect(url_for("admin_bootcamp.students_page"))


@admin_bootcamp_bp.post("/students")
@admin_required
def create_student_view():
    return _save_student(None)


@admin_bootcamp_bp.post("/students/<student_id>")
@admin_required
def update_student_view(student_id: str):
    return _save_student(student_id)


@admin_bootcamp_bp.post("/students/<student_id>/delete")
@admin_required
def delete_student_view(student_id: str):
    if request.form.get("confirm") != "yes":
        flash("Deletion not confirmed.", "error")
        return redirect(url_for("admin_bootcamp.students_page"))
    try:
        delete_student(_engine(), student_id)
    except StoreError as exc:
        flash(f"Could not delete student: {exc}", "error")
    else:
        flash("Student deleted.", "success")
    return redirect(url_for("admin_bootcamp.students_page"))


@admin_bootcamp_bp.post("/students/<student_id>/slack")
@admin_required
def mark_slack(student_id: str):
    try:
        student = mark_slack_invited(_engine(), student_id)
    except StoreError as exc:
        return _respond({"ok": False, "error": str(exc)}, "admin_bootcamp.students_page", 500)
    return _respond(
        {"ok": True, "slack_invited": student["slack_invited"], "message": "Marked as invited to Slack."},
        "admin_bootcamp.students_page",
    )


@admin_bootcamp_bp.post("/students/<student_id>/calendar")
@admin_required
def mark_calendar(student_id: str):
    try:
        student = mark_calendar_added(_engine(), student_id)
    except StoreError as exc:
        return _respond({"ok": False, "error": str(exc)}, "admin_bootcamp.students_page", 500)
    return _respond(
        {"ok": True, "calendar_added": student["calendar_added"], "message": "Marked as added to the calendar."},
        "admin_bootcamp.students_page",
    )


# ───────────────────────────────────────────────────────────────
# Student CSV import
# ───────────────────────────────────────────────────────────────
@admin_bootcamp_bp.get("/students/import/sample")
@admin_required
def student_csv_sample():
    return Response(
        SAMPLE_STUDENT_CSV,
        mimetype="text/csv",
        headers={"Content-Disposition": "attachment; filename=student-import-sample.csv"},
    )


def _render_student_import(**ctx):
    ctx.setdefault("preview", None)
    ctx.setdefault("csv_text", "")
    ctx.setdefault("result", None)
    ctx.setdefault("cohorts", fetch_cohorts(_engine()))
    return render_template("admin/student_import.html", **ctx)


@admin_bootcamp_bp.get("/students/import")
@admin_required
def student_import_page():
    return _render_student_import()


@admin_bootcamp_bp.post("/students/import/preview")
@admin_required
def student_import_preview():
    engine = _engine()
    csv_text = csv_text_from_request()
    try:
        rows = parse_student_csv(csv_text)
    except CsvFormatError as exc:
        flash(str(exc), "error")
        return _render_student_import(csv_text=csv_text), 400
    if not rows:
        flash('No valid rows found. Check that your CSV has an "email" column.', "error")
        return _render_student_import(csv_text=csv_text), 400
    preview = build_student_preview(rows, fetch_student_emails(engine))
    return _render_student_import(preview=preview, csv_text=csv_text)


@admin_bootcamp_bp.post("/students/import/commit")
@admin_required
def student_import_commit():
    engine = _engine()
    csv_text = request.form.get("csv_text") or ""
    try:
        rows = parse_student_csv(csv_text)
    except CsvFormatError as exc:
        flash(str(exc), "error")
        return redirect(url_for("admin_bootcamp.student_import_page"))
    preview = build_student_preview(rows, fetch_student_emails(engine))
    result = import_students(
        engine,
        preview,
        include_duplicates=form_bool("include_duplicates"),
        target_cohort_id=_s(request.form.get("target_cohort_id")),
    )
    summary = f"Created {result.created}, failed {len(result.failed)}"
    if result.enroll_failed:
        summary += f", {len(result.enroll_failed)} enrollment errors"
    flash(summary, "error" if result.failed or result.enroll_failed else "success")
    return _render_student_import(preview=preview, result=result)


# ───────────────────────────────────────────────────────────────
# Invite codes
# ───────────────────────────────────────────────────────────────
def _tool_grants_form() -> List[Dict[str, Any]]:
    slugs = request.form.getlist("tool_slug")
    credits = request.form.getlist("tool_credits")
    grants = []
    for i, slug in enumerate(slugs):
        slug = (slug or "").strip()
        if not slug:
            continue
        raw = credits[i] if i < len(credits) else ""
        try:
            amount = int(raw) if raw.strip() else DEFAULT_CREDITS_PER_TOOL
        except ValueError:
            raise ValueError(f"Credits for {slug} must be a whole number") from None
        grants.append({"tool_slug": slug, "credits": amount})
    return grants


@admin_bootcamp_bp.get("/invite-codes")
@admin_required
def invite_codes_page():
    engine = _engine()
    cohort_filter = _s(request.args.get("cohort"))
    try:
        codes = fetch_invite_codes(engine, cohort_filter)
        cohorts = fetch_cohorts(engine)
        tools = fetch_ai_tools(engine, active_only=True)
    except StoreError as exc:
        flash(f"Could not load invite codes: {exc}", "error")
        codes, cohorts, tools = [], [], []
    for code in codes:
        code["display_status"] = display_status(code)
        code["register_link"] = register_link(PUBLIC_SITE_URL, code["code"])
    weeks_by_cohort = {c["id"]: fetch_weeks(engine, c["id"]) for c in cohorts}
    return render_template(
        "admin/invite_codes.html",
        codes=codes,
        cohorts=cohorts,
        tools=tools,
        weeks_by_cohort=weeks_by_cohort,
        access_levels=ACCESS_LEVELS,
        default_max_uses=INVITE_CODE_DEFAULT_MAX_USES,
        cohort_filter=cohort_filter or "",
    )


@admin_bootcamp_bp.post("/invite-codes")
@admin_required
def create_invite_code_view():
    engine = _engine()
    try:
        custom = sanitize_custom_code(request.form.get("custom_code"))
        access_level = _s(request.form.get("access_level"))
        if access_level and access_level not in ACCESS_LEVELS:
            raise ValueError(f"Unknown access level {access_level}")
        max_uses = form_int("max_uses")
        if max_uses is not None and max_uses < 1:
            raise ValueError("Max uses must be at least 1")
        code = create_invite_code(
            engine,
            {
                "code": custom or generate_invite_code(),
                "cohort_id": _s(request.form.get("cohort_id")),
                "max_uses": max_uses,
                "expires_at": form_datetime("expires_at"),
                "access_level": access_level,
                "tool_grants": _tool_grants_form(),
                "content_grants": form_list("content_grants"),
            },
        )
    except (ValueError, StoreError) as exc:
        flash(f"Could not create invite code: {exc}", "error")
        return redirect(url_for("admin_bootcamp.invite_codes_page"))
    flash(f"Invite code {code['code']} created.", "success")
    return redirect(url_for("admin_bootcamp.invite_codes_page"))


@admin_bootcamp_bp.post("/invite-codes/<code_id>/toggle")
@admin_required
def toggle_invite_code(code_id: str):
    engine = _engine()
    code = fetch_invite_code(engine, code_id)
    if code is None:
        return _respond({"ok": False, "error": "Invite code not found"}, "admin_bootcamp.invite_codes_page", 404)
    try:
        updated = update_invite_code(engine, code_id, {"status": toggled_status(code["status"])})
    except StoreError as exc:
        return _respond({"ok": False, "error": str(exc)}, "admin_bootcamp.invite_codes_page", 500)
    return _respond(
        {
            "ok": True,
            "status": updated["status"],
            "display_status": display_status(updated),
            "message": f"Code {updated['code']} is now {updated['status']}.",
        },
        "admin_bootcamp.invite_codes_page",
    )


@admin_bootcamp_bp.post("/invite-codes/<code_id>/delete")
@admin_required
def delete_invite_code_view(code_id: str):
    if request.form.get("confirm") != "yes":
        flash("Deletion not confirmed.", "error")
        return redirect(url_for("admin_bootcamp.invite_codes_page"))
    try:
        delete_invite_code(_engine(), code_id)
    except StoreError as exc:
        flash(f"Could not delete invite code: {exc}", "error")
    else:
        flash("Invite code deleted.", "success")
    return redirect(url_for("admin_bootcamp.invite_codes_page"))


# ───────────────────────────────────────────────────────────────
# Surveys and settings
# ───────────────────────────────────────────────────────────────
@admin_bootcamp_bp.get("/surveys")
@admin_required
def surveys_page():
    try:
        surveys = fetch_surveys(_engine())
    except StoreError as exc:
        flash(f"Could not load surveys: {exc}", "error")
        surveys = []
    return render_template("admin/surveys.html", surveys=surveys)


@admin_bootcamp_bp.get("/settings")
@admin_required
def settings_page():
    engine = _engine()
    config = get_enrollment_config(engine)
    products = [
        dict(p, key=key, join_link=join_link(PUBLIC_SITE_URL, key))
        for key, p in sorted(config["products"].items())
    ]
    return render_template(
        "admin/settings.html",
        products=products,
        cohorts=fetch_cohorts(engine),
        tools=fetch_ai_tools(engine),
    )


@admin_bootcamp_bp.post("/settings/enrollment")
@admin_required
def save_enrollment_settings():
    engine = _engine()
    keys = request.form.getlist("product_key")
    names = request.form.getlist("product_name")
    cohort_ids = request.form.getlist("active_cohort_id")
    codes = request.form.getlist("active_invite_code")
    products: Dict[str, Dict[str, Any]] = {}
    for i, key in enumerate(keys):
        key = sanitize_custom_code(key).lower()
        if not key:
            continue
        products[key] = {
            "name": (names[i] if i < len(names) else "").strip() or key,
            "active_cohort_id": (cohort_ids[i] if i < len(cohort_ids) else "") or None,
            "active_invite_code": sanitize_custom_code(codes[i] if i < len(codes) else "") or None,
        }
    try:
        save_enrollment_config(engine, {"products": products})
    except StoreError as exc:
        flash(f"Could not save enrollment settings: {exc}", "error")
    else:
        flash("Enrollment settings saved.", "success")
    return redirect(url_for("admin_bootcamp.settings_page"))


@admin_bootcamp_bp.post("/settings/tools")
@admin_required
def create_tool_view():
    try:
        create_ai_tool(_engine(), request.form.get("slug") or "", request.form.get("name") or "")
    except StoreError as exc:
        flash(f"Could not add tool: {exc}", "error")
    else:
        flash("Tool added.", "success")
    return redirect(url_for("admin_bootcamp.settings_page"))


@admin_bootcamp_bp.post("/settings/tools/<tool_id>/toggle")
@admin_required
def toggle_tool_view(tool_id: str):
    try:
        tool = set_ai_tool_active(_engine(), tool_id, form_bool("is_active"))
    except StoreError as exc:
        return _respond({"ok": False, "error": str(exc)}, "admin_bootcamp.settings_page", 500)
    return _respond({"ok": True, "is_active": tool["is_active"], "message": "Tool updated."}, "admin_bootcamp.settings_page")
