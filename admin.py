"""Admin sign-in and the landing page linking the LMS and bootcamp areas."""
from __future__ import annotations

import hmac
import logging
from functools import wraps

from flask import Blueprint, flash, jsonify, redirect, render_template, request, session, url_for

from course_settings import ADMIN_ACCESS_CODE
from web_helpers import wants_json

admin_bp = Blueprint("admin", __name__, template_folder="templates")

log = logging.getLogger(__name__)


def admin_required(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        if not session.get("is_admin"):
            if wants_json():
                return jsonify({"ok": False, "error": "Admin sign-in required"}), 401
            flash("Please sign in with the admin access code.", "error")
            return redirect(url_for("admin.signin", next=request.path))
        return view(*args, **kwargs)

    return wrapper


@admin_bp.get("/signin")
def signin():
    return render_template("admin/signin.html", next_url=request.args.get("next") or "")


@admin_bp.post("/signin")
def signin_submit():
    code = (request.form.get("access_code") or "").strip()
    next_url = request.form.get("next") or ""
    if code and hmac.compare_digest(code, ADMIN_ACCESS_CODE):
        session["is_admin"] = True
        flash("Signed in.", "success")
        if next_url.startswith("/") and not next_url.startswith("//"):
            return redirect(next_url)
        return redirect(url_for("admin.home"))
    log.warning("Rejected admin sign-in from %s", request.remote_addr)
    flash("Invalid admin access code.", "error")
    return redirect(url_for("admin.signin"))


@admin_bp.get("/logout")
def logout():
    session.pop("is_admin", None)
    flash("Signed out.", "success")
    return redirect(url_for("admin.signin"))


@admin_bp.get("/")
@admin_required
def home():
    return render_template("admin/home.html")
