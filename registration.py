# registration.py (Blueprint: register)
# Invite-code self registration and product join links, with an admin
# notification email after a successful registration.

import logging

from flask import Blueprint, abort, flash, redirect, render_template, request, session, url_for

from course_settings import PUBLIC_REGISTRATION_ENABLED
from db import StoreError
from invite_codes import (
    CodeAlreadyRedeemed,
    EmailAlreadyRegistered,
    InviteCodeError,
    redeem_code,
    register_student,
    resolve_join_product,
    validate_invite_code,
)
from lms_store import fetch_cohort, fetch_enrollments_for_student
from notifications import notify_registration
from web_helpers import _s, resolve_db_engine

register_bp = Blueprint("register", __name__, template_folder="templates")

logger = logging.getLogger(__name__)


def _engine():
    engine = resolve_db_engine()
    if engine is None:
        abort(503)
    return engine


def _render(code: str, error: str | None = None, cohort=None, form_data=None, status: int = 200):
    return (
        render_template(
            "bootcamp/register.html",
            code=code,
            error=error,
            cohort=cohort,
            form_data=form_data or {},
        ),
        status,
    )


# ───────────────────────────────────────────────────────────────
# Views
# ───────────────────────────────────────────────────────────────
@register_bp.get("/register")
def page():
    engine = _engine()
    code = (_s(request.args.get("code"), 64) or "").upper()

    # Signed-in students redeem straight away; a repeat visit to the same
    # link is not an error.
    student_id = session.get("student_id")
    if student_id and code:
        try:
            result = redeem_code(engine, student_id, code)
        except CodeAlreadyRedeemed:
            pass
        except InviteCodeError as exc:
            flash(str(exc), "error")
        except StoreError:
            logger.exception("Code redemption failed for %s", student_id)
            flash("Sorry, something went wrong redeeming your code.", "error")
        else:
            unlocked = len(result["tools_unlocked"]) + len(result["weeks_unlocked"])
            flash(f"Code {code} redeemed. {unlocked} item(s) unlocked.", "success")
        return redirect(url_for("bootcamp.dashboard"))

    if not PUBLIC_REGISTRATION_ENABLED:
        return _render(code, error="Registration is currently closed.", status=403)
    if not code:
        return _render(code)
    try:
        valid = validate_invite_code(engine, code)
    except InviteCodeError as exc:
        return _render(code, error=str(exc), status=404)
    return _render(code, cohort=fetch_cohort(engine, valid["cohort_id"]))


@register_bp.post("/register")
def submit():
    engine = _engine()
    code = (_s(request.form.get("code"), 64) or "").upper()
    email = _s(request.form.get("email"), 255) or ""
    name = _s(request.form.get("name"), 255)
    form_data = {"email": email, "name": name or ""}

    if not PUBLIC_REGISTRATION_ENABLED:
        return _render(code, error="Registration is currently closed.", status=403)
    try:
        student = register_student(engine, email, code, name=name)
    except ValueError as exc:
        return _render(code, error=str(exc), form_data=form_data, status=400)
    except EmailAlreadyRegistered:
        flash("That email is already registered. Sign in to redeem the code.", "error")
        return redirect(url_for("bootcamp.signin_page", code=code))
    except InviteCodeError as exc:
        return _render(code, error=str(exc), form_data=form_data, status=400)
    except StoreError:
        logger.exception("Registration failed for %s", email)
        return _render(
            code,
            error="Sorry, something went wrong saving your registration.",
            form_data=form_data,
            status=500,
        )

    try:
        enrollments = fetch_enrollments_for_student(engine, student["id"])
        notify_registration(student, code, enrollments[0]["cohort_name"] if enrollments else None)
    except Exception:
        logger.exception("Post-commit registration email block failed unexpectedly")

    session["student_id"] = student["id"]
    flash("Welcome! Your registration is complete.", "success")
    return redirect(url_for("bootcamp.dashboard"))


@register_bp.get("/join")
def join():
    engine = _engine()
    product_key = (_s(request.args.get("product"), 120) or "").lower()
    product = resolve_join_product(engine, product_key) if product_key else None
    if product is None:
        return _render("", error="This enrollment link is not active.", status=404)
    return redirect(url_for("register.page", code=product["active_invite_code"]))
