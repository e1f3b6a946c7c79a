"""Invite codes: derived display state, generation, links and redemption."""
from __future__ import annotations

import logging
import re
import secrets
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from sqlalchemy.engine import Engine

from bootcamp_store import (
    create_student,
    fetch_invite_code_by_code,
    fetch_student_by_email,
    get_enrollment_config,
    grant_content_access,
    grant_tool_credits,
    has_redeemed_code,
    increment_invite_code_usage,
    normalize_email,
    record_redeemed_code,
    release_invite_code_usage,
    tool_ids_by_slug,
    update_student,
)
from db import StoreError, as_utc, utcnow
from lms_store import enroll_student, fetch_cohort

log = logging.getLogger(__name__)

CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 8

_CUSTOM_CODE_STRIP = re.compile(r"[^A-Z0-9_-]")


class InviteCodeError(Exception):
    """The code is unknown, disabled, expired or out of seats."""


class CodeAlreadyRedeemed(InviteCodeError):
    pass


class EmailAlreadyRegistered(Exception):
    pass


# ───────────────────────────────────────────────────────────────
# Derived state
# ───────────────────────────────────────────────────────────────
def is_expired(code: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    expires_at = as_utc(code.get("expires_at"))
    if expires_at is None:
        return False
    return (now or utcnow()) > expires_at


def is_maxed_out(code: Dict[str, Any]) -> bool:
    max_uses = code.get("max_uses")
    if max_uses is None:
        return False
    return int(code.get("use_count") or 0) >= int(max_uses)


def display_status(code: Dict[str, Any], now: Optional[datetime] = None) -> str:
    """Expired, then Maxed Out, then whatever is stored."""
    if is_expired(code, now):
        return "Expired"
    if is_maxed_out(code):
        return "Maxed Out"
    return code.get("status") or "Active"


def toggled_status(status: str) -> str:
    return "Disabled" if status == "Active" else "Active"


# ───────────────────────────────────────────────────────────────
# Generation and links
# ───────────────────────────────────────────────────────────────
def generate_invite_code(length: int = CODE_LENGTH) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def sanitize_custom_code(raw: Optional[str]) -> str:
    return _CUSTOM_CODE_STRIP.sub("", (raw or "").upper())


def register_link(base_url: str, code: str) -> str:
    return f"{base_url.rstrip('/')}/bootcamp/register?code={quote(code)}"


def join_link(base_url: str, product_key: str) -> str:
    return f"{base_url.rstrip('/')}/bootcamp/join?product={quote(product_key)}"


def resolve_join_product(engine: Engine, product_key: str) -> Optional[Dict[str, Any]]:
    """Look up a product in the enrollment config; None when it isn't sellable right now."""
    product = (get_enrollment_config(engine).get("products") or {}).get(product_key)
    if not product or not product.get("active_invite_code"):
        return None
    return dict(product, key=product_key)


# ───────────────────────────────────────────────────────────────
# Redemption
# ───────────────────────────────────────────────────────────────
def validate_invite_code(engine: Engine, code: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Return the stored code if it can be redeemed, else raise InviteCodeError."""
    row = fetch_invite_code_by_code(engine, code or "")
    if row is None or row.get("status") != "Active":
        raise InviteCodeError("Invalid or expired invite code")
    if is_expired(row, now):
        raise InviteCodeError("Invalid or expired invite code")
    if is_maxed_out(row):
        raise InviteCodeError("This invite code has reached its maximum uses")
    return row


def _apply_grants(engine: Engine, student_id: str, code: Dict[str, Any]) -> Dict[str, List[str]]:
    tools_unlocked: List[str] = []
    tool_grants = code.get("tool_grants") or []
    if tool_grants:
        tool_ids = tool_ids_by_slug(engine)
        for grant in tool_grants:
            slug = grant.get("tool_slug")
            tool_id = tool_ids.get(slug)
            if tool_id is None:
                log.warning("Tool not found for slug %s (code %s)", slug, code["code"])
                continue
            grant_tool_credits(engine, student_id, tool_id, int(grant.get("credits") or 0), code["code"])
            tools_unlocked.append(slug)

    weeks_unlocked: List[str] = []
    for week_id in code.get("content_grants") or []:
        grant_content_access(engine, student_id, week_id, code["code"])
        weeks_unlocked.append(week_id)
    return {"tools_unlocked": tools_unlocked, "weeks_unlocked": weeks_unlocked}


def register_student(engine: Engine, email: str, code: str, name: Optional[str] = None) -> Dict[str, Any]:
    """Self-registration: claim a seat, create the student, enroll, grant."""
    email = normalize_email(email)
    if not email or "@" not in email:
        raise ValueError("A valid email address is required")
    valid = validate_invite_code(engine, code)
    if fetch_student_by_email(engine, email):
        raise EmailAlreadyRegistered("Email already registered")
    cohort = fetch_cohort(engine, valid["cohort_id"])
    if cohort is None:
        raise InviteCodeError("Cohort not found")

    if not increment_invite_code_usage(engine, valid["code"]):
        raise InviteCodeError("This invite code has reached its maximum uses")
    access_level = valid.get("access_level") or "Full Access"
    try:
        student = create_student(
            engine,
            {"email": email, "name": name, "status": "Onboarding", "access_level": access_level},
        )
    except StoreError:
        release_invite_code_usage(engine, valid["code"])
        raise

    enroll_student(
        engine,
        student["id"],
        cohort["id"],
        access_level=access_level,
        enrollment_source="invite_code",
        enrollment_metadata={"code": valid["code"]},
    )
    _apply_grants(engine, student["id"], valid)
    record_redeemed_code(engine, student["id"], valid["code"])
    log.info("Registered %s into cohort %s with code %s", email, cohort["name"], valid["code"])
    return student


def redeem_code(engine: Engine, student_id: str, code: str) -> Dict[str, Any]:
    """Redeem a code for a signed-in student; raises CodeAlreadyRedeemed on repeats."""
    valid = validate_invite_code(engine, code)
    if has_redeemed_code(engine, student_id, valid["code"]):
        raise CodeAlreadyRedeemed("Code already redeemed")
    if not increment_invite_code_usage(engine, valid["code"]):
        raise InviteCodeError("This invite code has reached its maximum uses")

    result: Dict[str, Any] = _apply_grants(engine, student_id, valid)
    result["access_upgraded"] = False
    if valid.get("access_level") == "Full Access":
        update_student(engine, student_id, {"access_level": "Full Access"})
        result["access_upgraded"] = True
    enroll_student(
        engine,
        student_id,
        valid["cohort_id"],
        access_level=valid.get("access_level") or "Full Access",
        enrollment_source="invite_code",
        enrollment_metadata={"code": valid["code"]},
    )
    record_redeemed_code(engine, student_id, valid["code"])
    log.info("Student %s redeemed %s", student_id, valid["code"])
    return result
