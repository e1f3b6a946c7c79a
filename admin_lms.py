"""Admin LMS blueprint: cohorts, curriculum editing, CSV and cross-cohort import."""
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
from content_types import (
    CONTENT_TYPE_LABELS,
    CONTENT_TYPES,
    content_item_to_embed_url,
    detect_content_type,
    extract_ai_tool_slug,
    extract_text_content,
    normalize_embed_url,
    parse_credentials_from_text,
)
from csv_import import (
    SAMPLE_CURRICULUM_CSV,
    CsvFormatError,
    build_curriculum_preview,
    import_curriculum_csv,
    parse_curriculum_csv,
)
from curriculum_copy import duplicate_cohort, import_curriculum_from_cohort, is_recording_only, preview_cohort_import
from db import StoreError
from drafts import Draft
from lms_store import (
    ACTION_ITEM_FIELDS,
    COHORT_FIELDS,
    COHORT_STATUSES,
    CONTENT_ITEM_FIELDS,
    LESSON_FIELDS,
    WEEK_FIELDS,
    cohort_counts,
    count_weeks,
    create_action_item,
    create_cohort,
    create_content_item,
    create_lesson,
    create_week,
    delete_action_item,
    delete_cohort,
    delete_content_item,
    delete_lesson,
    delete_week,
    fetch_cohort,
    fetch_cohorts,
    fetch_content_item,
    fetch_content_items,
    fetch_curriculum,
    fetch_lessons,
    fetch_weeks,
    reorder_content_items,
    reorder_lessons,
    reorder_weeks,
    update_action_item,
    update_cohort,
    update_content_item,
    update_lesson,
    update_week,
)
from onboarding import STEP_VOCABULARY
from web_helpers import _s, csv_text_from_request, form_bool, form_date, form_int, form_list, resolve_db_engine

admin_lms_bp = Blueprint("admin_lms", __name__, template_folder="templates")

log = logging.getLogger(__name__)


def _engine():
    engine = resolve_db_engine()
    if engine is None:
        abort(503)
    return engine


def _cohort_or_404(engine, cohort_id: str) -> Dict[str, Any]:
    cohort = fetch_cohort(engine, cohort_id)
    if cohort is None:
        abort(404)
    return cohort


def _back_to_curriculum(cohort_id: str):
    return redirect(url_for("admin_lms.curriculum", cohort_id=cohort_id))


# ───────────────────────────────────────────────────────────────
# Form parsing
# ───────────────────────────────────────────────────────────────
def _cohort_form() -> Dict[str, Any]:
    status = _s(request.form.get("status")) or "Draft"
    if status not in COHORT_STATUSES:
        raise ValueError(f"Unknown status {status}")
    return {
        "name": _s(request.form.get("name"), 255),
        "description": _s(request.form.get("description")),
        "status": status,
        "start_date": form_date("start_date"),
        "end_date": form_date("end_date"),
        "sidebar_label": _s(request.form.get("sidebar_label"), 120),
        "icon": _s(request.form.get("icon"), 60),
        "sort_order": form_int("sort_order") or 0,
        "product_type": _s(request.form.get("product_type"), 60),
        "payment_product_id": _s(request.form.get("payment_product_id"), 120),
    }


def _content_item_form() -> Dict[str, Any]:
    """Build content item columns from the smart URL field plus explicit overrides."""
    url = _s(request.form.get("url")) or ""
    content_type = _s(request.form.get("content_type")) or detect_content_type(url)
    if content_type not in CONTENT_TYPES:
        raise ValueError(f"Unknown content type {content_type}")
    title = _s(request.form.get("title"), 255)
    if not title:
        raise ValueError("Title is required")

    values: Dict[str, Any] = {
        "title": title,
        "content_type": content_type,
        "description": _s(request.form.get("description")),
        "is_visible": form_bool("is_visible", True),
        "embed_url": None,
        "ai_tool_slug": None,
        "content_text": None,
        "credentials_data": None,
    }
    body = _s(request.form.get("content_text"), 20000)
    if content_type == "ai_tool":
        values["ai_tool_slug"] = extract_ai_tool_slug(url) or _s(request.form.get("ai_tool_slug"), 120)
    elif content_type == "text":
        values["content_text"] = extract_text_content(url) or body or values["description"] or title
    elif content_type == "credentials":
        values["credentials_data"] = parse_credentials_from_text(body or "")
        if values["credentials_data"] is None:
            raise ValueError("Credentials need a login URL, username or password line")
    else:
        if not url:
            raise ValueError("A URL is required for this content type")
        values["embed_url"] = normalize_embed_url(url)
    return values


def _action_item_form() -> Dict[str, Any]:
    text = _s(request.form.get("text"), 2000)
    if not text:
        raise ValueError("Action item text is required")
    return {
        "text": text,
        "description": _s(request.form.get("description")),
        "video_url": _s(request.form.get("video_url")),
        "assigned_to_email": _s(request.form.get("assigned_to_email"), 255),
        "is_visible": form_bool("is_visible", True),
    }


def _ordered_ids() -> List[str]:
    if request.is_json:
        return [str(i) for i in (request.get_json(silent=True) or {}).get("ids") or []]
    return form_list("ids")


# ───────────────────────────────────────────────────────────────
# Cohorts
# ───────────────────────────────────────────────────────────────
@admin_lms_bp.get("/")
@admin_required
def cohorts_page():
    engine = _engine()
    try:
        cohorts = fetch_cohorts(engine)
        counts = cohort_counts(engine)
    except StoreError as exc:
        flash(f"Could not load cohorts: {exc}", "error")
        cohorts, counts = [], {}
    return render_template(
        "admin/lms_cohorts.html",
        cohorts=cohorts,
        counts=counts,
        statuses=COHORT_STATUSES,
    )


@admin_lms_bp.post("/cohorts")
@admin_required
def create_cohort_view():
    engine = _engine()
    try:
        data = _cohort_form()
        if not data["name"]:
            raise ValueError("Name is required")
        cohort = create_cohort(engine, data)
    except (ValueError, StoreError) as exc:
        flash(f"Could not create cohort: {exc}", "error")
        return redirect(url_for("admin_lms.cohorts_page"))
    flash(f"Cohort {cohort['name']} created.", "success")
    return redirect(url_for("admin_lms.cohorts_page"))


@admin_lms_bp.post("/cohorts/<cohort_id>")
@admin_required
def update_cohort_view(cohort_id: str):
    engine = _engine()
    cohort = _cohort_or_404(engine, cohort_id)
    try:
        draft = Draft(cohort, COHORT_FIELDS).apply(_cohort_form())
        if not draft.values.get("name"):
            raise ValueError("Name is required")
        saved = draft.submit(lambda changes: update_cohort(engine, cohort_id, changes))
    except (ValueError, StoreError) as exc:
        flash(f"Could not save cohort: {exc}", "error")
        return redirect(url_for("admin_lms.cohorts_page"))
    flash("Cohort saved." if saved else "No changes to save.", "success")
    return redirect(url_for("admin_lms.cohorts_page"))


@admin_lms_bp.post("/cohorts/<cohort_id>/delete")
@admin_required
def delete_cohort_view(cohort_id: str):
    engine = _engine()
    if request.form.get("confirm") != "yes":
        flash("Deletion not confirmed.", "error")
        return redirect(url_for("admin_lms.cohorts_page"))
    try:
        delete_cohort(engine, cohort_id)
    except StoreError as exc:
        flash(f"Could not delete cohort: {exc}", "error")
    else:
        flash("Cohort deleted.", "success")
    return redirect(url_for("admin_lms.cohorts_page"))


@admin_lms_bp.post("/cohorts/<cohort_id>/duplicate")
@admin_required
def duplicate_cohort_view(cohort_id: str):
    engine = _engine()
    source = _cohort_or_404(engine, cohort_id)
    name = _s(request.form.get("name"), 255) or f"{source['name']} (Copy)"
    status = _s(request.form.get("status")) or "Draft"
    if status not in COHORT_STATUSES:
        status = "Draft"
    try:
        cohort = duplicate_cohort(engine, cohort_id, name, _s(request.form.get("description")), status)
    except StoreError as exc:
        flash(f"Could not duplicate cohort: {exc}", "error")
        return redirect(url_for("admin_lms.cohorts_page"))
    result = cohort["copy_result"]
    if result.failed:
        flash(f"Cohort duplicated with {len(result.failed)} errors.", "error")
    else:
        flash(f"Cohort duplicated as {cohort['name']}.", "success")
    return redirect(url_for("admin_lms.curriculum", cohort_id=cohort["id"]))


@admin_lms_bp.post("/cohorts/<cohort_id>/onboarding")
@admin_required
def save_onboarding_config(cohort_id: str):
    engine = _engine()
    _cohort_or_404(engine, cohort_id)
    steps = [s for s in form_list("steps") if s in STEP_VOCABULARY] or ["welcome", "complete"]
    config = {
        "enabled": form_bool("enabled"),
        "welcome_message": _s(request.form.get("welcome_message")),
        "welcome_video_url": _s(request.form.get("welcome_video_url")),
        "survey_enabled": form_bool("survey_enabled"),
        "calcom_enabled": form_bool("calcom_enabled"),
        "calcom_booking_url": _s(request.form.get("calcom_booking_url")),
        "calcom_qualify_field": _s(request.form.get("calcom_qualify_field"), 120),
        "calcom_qualify_values": form_list("calcom_qualify_values") or None,
        "steps": steps,
    }
    try:
        update_cohort(engine, cohort_id, {"onboarding_config": config})
    except StoreError as exc:
        flash(f"Could not save onboarding settings: {exc}", "error")
    else:
        flash("Onboarding settings saved.", "success")
    return _back_to_curriculum(cohort_id)


# ───────────────────────────────────────────────────────────────
# Curriculum
# ───────────────────────────────────────────────────────────────
@admin_lms_bp.get("/cohorts/<cohort_id>/curriculum")
@admin_required
def curriculum(cohort_id: str):
    engine = _engine()
    cohort = _cohort_or_404(engine, cohort_id)
    try:
        weeks = fetch_curriculum(engine, cohort_id)
    except StoreError as exc:
        flash(f"Could not load curriculum: {exc}", "error")
        weeks = []
    return render_template(
        "admin/lms_curriculum.html",
        cohort=cohort,
        weeks=weeks,
        content_types=CONTENT_TYPE_LABELS,
        step_vocabulary=STEP_VOCABULARY,
        item_url=content_item_to_embed_url,
        onboarding=cohort.get("onboarding_config") or {},
    )


@admin_lms_bp.post("/cohorts/<cohort_id>/weeks")
@admin_required
def create_week_view(cohort_id: str):
    engine = _engine()
    title = _s(request.form.get("title"), 255)
    if not title:
        flash("Week title is required.", "error")
        return _back_to_curriculum(cohort_id)
    try:
        create_week(
            engine,
            cohort_id,
            {
                "title": title,
                "description": _s(request.form.get("description")),
                "sort_order": count_weeks(engine, cohort_id),
                "is_visible": form_bool("is_visible", True),
            },
        )
    except StoreError as exc:
        flash(f"Could not add week: {exc}", "error")
    return _back_to_curriculum(cohort_id)


@admin_lms_bp.post("/cohorts/<cohort_id>/weeks/reorder")
@admin_required
def reorder_weeks_view(cohort_id: str):
    try:
        reorder_weeks(_engine(), cohort_id, _ordered_ids())
    except StoreError as exc:
        return jsonify({"ok": False, "error": str(exc)}), 500
    return jsonify({"ok": True})


@admin_lms_bp.post("/weeks/<week_id>")
@admin_required
def update_week_view(week_id: str):
    engine = _engine()
    cohort_id = request.form.get("cohort_id") or ""
    submitted = {
        "title": _s(request.form.get("title"), 255),
        "description": _s(request.form.get("description")),
        "is_visible": form_bool("is_visible", False),
    }
    current = next((w for w in fetch_weeks(engine, cohort_id) if w["id"] == week_id), None)
    if current is None:
        abort(404)
    try:
        Draft(current, WEEK_FIELDS).apply(submitted).submit(lambda ch: update_week(engine, week_id, ch))
    except StoreError as exc:
        flash(f"Could not save week: {exc}", "error")
    return _back_to_curriculum(cohort_id)


@admin_lms_bp.post("/weeks/<week_id>/delete")
@admin_required
def delete_week_view(week_id: str):
    cohort_id = request.form.get("cohort_id") or ""
    try:
        delete_week(_engine(), week_id)
    except StoreError as exc:
        flash(f"Could not delete week: {exc}", "error")
    return _back_to_curriculum(cohort_id)


@admin_lms_bp.post("/weeks/<week_id>/lessons")
@admin_required
def create_lesson_view(week_id: str):
    engine = _engine()
    cohort_id = request.form.get("cohort_id") or ""
    title = _s(request.form.get("title"), 255)
    if not title:
        flash("Lesson title is required.", "error")
        return _back_to_curriculum(cohort_id)
    try:
        create_lesson(
            engine,
            week_id,
            {
                "title": title,
                "description": _s(request.form.get("description")),
                "sort_order": len(fetch_lessons(engine, week_id)),
                "is_visible": form_bool("is_visible", True),
            },
        )
    except StoreError as exc:
        flash(f"Could not add lesson: {exc}", "error")
    return _back_to_curriculum(cohort_id)


@admin_lms_bp.post("/weeks/<week_id>/lessons/reorder")
@admin_required
def reorder_lessons_view(week_id: str):
    try:
        reorder_lessons(_engine(), week_id, _ordered_ids())
    except StoreError as exc:
        return jsonify({"ok": False, "error": str(exc)}), 500
    return jsonify({"ok": True})


@admin_lms_bp.post("/lessons/<lesson_id>")
@admin_required
def update_lesson_view(lesson_id: str):
    engine = _engine()
    cohort_id = request.form.get("cohort_id") or ""
    week_id = request.form.get("week_id") or ""
    current = next((l for l in fetch_lessons(engine, week_id) if l["id"] == lesson_id), None)
    if current is None:
        abort(404)
    submitted = {
        "title": _s(request.form.get("title"), 255),
        "description": _s(request.form.get("description")),
        "is_visible": form_bool("is_visible", False),
    }
    try:
        Draft(current, LESSON_FIELDS).apply(submitted).submit(lambda ch: update_lesson(engine, lesson_id, ch))
    except StoreError as exc:
        flash(f"Could not save lesson: {exc}", "error")
    return _back_to_curriculum(cohort_id)


@admin_lms_bp.post("/lessons/<lesson_id>/delete")
@admin_required
def delete_lesson_view(lesson_id: str):
    cohort_id = request.form.get("cohort_id") or ""
    try:
        delete_lesson(_engine(), lesson_id)
    except StoreError as exc:
        flash(f"Could not delete lesson: {exc}", "error")
    return _back_to_curriculum(cohort_id)


@admin_lms_bp.post("/lessons/<lesson_id>/items")
@admin_required
def create_content_item_view(lesson_id: str):
    engine = _engine()
    cohort_id = request.form.get("cohort_id") or ""
    try:
        values = _content_item_form()
        values["sort_order"] = len(fetch_content_items(engine, lesson_id))
        create_content_item(engine, lesson_id, values)
    except (ValueError, StoreError) as exc:
        flash(f"Could not add content: {exc}", "error")
    return _back_to_curriculum(cohort_id)


@admin_lms_bp.post("/lessons/<lesson_id>/items/reorder")
@admin_required
def reorder_content_items_view(lesson_id: str):
    try:
        reorder_content_items(_engine(), lesson_id, _ordered_ids())
    except StoreError as exc:
        return jsonify({"ok": False, "error": str(exc)}), 500
    return jsonify({"ok": True})


@admin_lms_bp.post("/items/<item_id>")
@admin_required
def update_content_item_view(item_id: str):
    engine = _engine()
    cohort_id = request.form.get("cohort_id") or ""
    current = fetch_content_item(engine, item_id)
    if current is None:
        abort(404)
    try:
        draft = Draft(current, CONTENT_ITEM_FIELDS).apply(_content_item_form())
        draft.submit(lambda ch: update_content_item(engine, item_id, ch))
    except (ValueError, StoreError) as exc:
        flash(f"Could not save content: {exc}", "error")
    return _back_to_curriculum(cohort_id)


@admin_lms_bp.post("/items/<item_id>/delete")
@admin_required
def delete_content_item_view(item_id: str):
    cohort_id = request.form.get("cohort_id") or ""
    try:
        delete_content_item(_engine(), item_id)
    except StoreError as exc:
        flash(f"Could not delete content: {exc}", "error")
    return _back_to_curriculum(cohort_id)


@admin_lms_bp.get("/detect-type")
@admin_required
def detect_type():
    url = request.args.get("url") or ""
    return jsonify({"content_type": detect_content_type(url), "embed_url": normalize_embed_url(url)})


@admin_lms_bp.post("/weeks/<week_id>/actions")
@admin_required
def create_action_item_view(week_id: str):
    engine = _engine()
    cohort_id = request.form.get("cohort_id") or ""
    try:
        values = _action_item_form()
        values["sort_order"] = form_int("sort_order") or 0
        create_action_item(engine, week_id, values)
    except (ValueError, StoreError) as exc:
        flash(f"Could not add action item: {exc}", "error")
    return _back_to_curriculum(cohort_id)


@admin_lms_bp.post("/actions/<item_id>")
@admin_required
def update_action_item_view(item_id: str):
    engine = _engine()
    cohort_id = request.form.get("cohort_id") or ""
    try:
        values = _action_item_form()
        update_action_item(engine, item_id, {k: v for k, v in values.items() if k in ACTION_ITEM_FIELDS})
    except (ValueError, StoreError) as exc:
        flash(f"Could not save action item: {exc}", "error")
    return _back_to_curriculum(cohort_id)


@admin_lms_bp.post("/actions/<item_id>/delete")
@admin_required
def delete_action_item_view(item_id: str):
    cohort_id = request.form.get("cohort_id") or ""
    try:
        delete_action_item(_engine(), item_id)
    except StoreError as exc:
        flash(f"Could not delete action item: {exc}", "error")
    return _back_to_curriculum(cohort_id)


# ───────────────────────────────────────────────────────────────
# CSV import
# ───────────────────────────────────────────────────────────────
@admin_lms_bp.get("/import-csv/sample")
@admin_required
def curriculum_csv_sample():
    return Response(
        SAMPLE_CURRICULUM_CSV,
        mimetype="text/csv",
        headers={"Content-Disposition": "attachment; filename=course-import-sample.csv"},
    )


@admin_lms_bp.get("/cohorts/<cohort_id>/import-csv")
@admin_required
def csv_import_page(cohort_id: str):
    cohort = _cohort_or_404(_engine(), cohort_id)
    return render_template("admin/lms_csv_import.html", cohort=cohort, preview=None, csv_text="", result=None)


@admin_lms_bp.post("/cohorts/<cohort_id>/import-csv/preview")
@admin_required
def csv_import_preview(cohort_id: str):
    cohort = _cohort_or_404(_engine(), cohort_id)
    csv_text = csv_text_from_request()
    try:
        rows = parse_curriculum_csv(csv_text)
    except CsvFormatError as exc:
        flash(str(exc), "error")
        return render_template("admin/lms_csv_import.html", cohort=cohort, preview=None, csv_text=csv_text, result=None), 400
    if not rows:
        flash("No valid rows found. Check that your CSV has week, lesson, and title columns.", "error")
        return render_template("admin/lms_csv_import.html", cohort=cohort, preview=None, csv_text=csv_text, result=None), 400
    return render_template(
        "admin/lms_csv_import.html",
        cohort=cohort,
        preview=build_curriculum_preview(rows),
        csv_text=csv_text,
        content_types=CONTENT_TYPE_LABELS,
        result=None,
    )


@admin_lms_bp.post("/cohorts/<cohort_id>/import-csv/commit")
@admin_required
def csv_import_commit(cohort_id: str):
    engine = _engine()
    cohort = _cohort_or_404(engine, cohort_id)
    csv_text = request.form.get("csv_text") or ""
    try:
        preview = build_curriculum_preview(parse_curriculum_csv(csv_text))
    except CsvFormatError as exc:
        flash(str(exc), "error")
        return redirect(url_for("admin_lms.csv_import_page", cohort_id=cohort_id))
    try:
        existing = count_weeks(engine, cohort_id)
    except StoreError as exc:
        flash(f"Import failed: {exc}", "error")
        return redirect(url_for("admin_lms.csv_import_page", cohort_id=cohort_id))

    result = import_curriculum_csv(engine, cohort_id, preview, existing)
    if result.failed:
        flash(f"Import finished with {len(result.failed)} errors.", "error")
    else:
        flash(
            f"Imported {result.weeks_created} weeks, {result.lessons_created} lessons, "
            f"{result.items_created} content items.",
            "success",
        )
    return render_template(
        "admin/lms_csv_import.html",
        cohort=cohort,
        preview=preview,
        csv_text="",
        result=result,
    )


# ───────────────────────────────────────────────────────────────
# Cross-cohort import
# ───────────────────────────────────────────────────────────────
@admin_lms_bp.get("/cohorts/<cohort_id>/import-cohort")
@admin_required
def cohort_import_page(cohort_id: str):
    engine = _engine()
    target = _cohort_or_404(engine, cohort_id)
    source_id = request.args.get("source") or ""
    exclude = request.args.get("exclude_recordings", "1") != "0"
    try:
        sources = [c for c in fetch_cohorts(engine) if c["id"] != cohort_id]
        source = next((c for c in sources if c["id"] == source_id), None)
        curriculum_tree = fetch_curriculum(engine, source_id) if source else []
    except StoreError as exc:
        flash(f"Could not load cohorts: {exc}", "error")
        sources, source, curriculum_tree = [], None, []
    stats = preview_cohort_import(curriculum_tree, exclude) if source else None
    return render_template(
        "admin/lms_cohort_import.html",
        target=target,
        sources=sources,
        source=source,
        curriculum=curriculum_tree,
        stats=stats,
        exclude_recordings=exclude,
        is_recording_only=is_recording_only,
        result=None,
    )


@admin_lms_bp.post("/cohorts/<cohort_id>/import-cohort")
@admin_required
def cohort_import_commit(cohort_id: str):
    engine = _engine()
    target = _cohort_or_404(engine, cohort_id)
    source_id = request.form.get("source") or ""
    exclude = form_bool("exclude_recordings", False)
    if not fetch_cohort(engine, source_id):
        flash("Choose a source cohort.", "error")
        return redirect(url_for("admin_lms.cohort_import_page", cohort_id=cohort_id))
    try:
        result = import_curriculum_from_cohort(engine, source_id, cohort_id, exclude)
    except StoreError as exc:
        flash(f"Import failed: {exc}", "error")
        return redirect(url_for("admin_lms.cohort_import_page", cohort_id=cohort_id, source=source_id))
    if result.failed:
        flash(f"Import finished with {len(result.failed)} errors.", "error")
    else:
        flash(
            f"Imported {result.weeks_created} weeks, {result.lessons_created} lessons, "
            f"{result.content_items_created} content items, {result.action_items_created} action items.",
            "success",
        )
    return render_template(
        "admin/lms_cohort_import.html",
        target=target,
        sources=[],
        source=None,
        curriculum=[],
        stats=None,
        exclude_recordings=exclude,
        is_recording_only=is_recording_only,
        result=result,
    )
