"""Per-cohort onboarding wizard: step sequence and booking qualification."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from content_types import normalize_embed_url

STEP_VOCABULARY = ("welcome", "video", "survey", "booking", "complete")
DEFAULT_STEPS = ["welcome", "complete"]

NO_CALL_MESSAGE = (
    "Thanks for sharing! You're all set to start the program. "
    "Our team will reach out if we think a call would help."
)


def normalize_config(config: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    config = dict(config or {})
    config.setdefault("enabled", False)
    config["steps"] = list(config.get("steps") or DEFAULT_STEPS)
    return config


def _step_available(step: str, config: Dict[str, Any]) -> bool:
    if step not in STEP_VOCABULARY:
        return False
    if step == "video":
        return bool(config.get("welcome_video_url"))
    if step == "survey":
        return bool(config.get("survey_enabled"))
    if step == "booking":
        return bool(config.get("calcom_enabled"))
    return True


def build_steps(config: Optional[Dict[str, Any]]) -> List[str]:
    """Configured steps minus unknown names and features that are switched off."""
    config = normalize_config(config)
    steps = [s for s in config["steps"] if _step_available(s, config)]
    return steps or list(DEFAULT_STEPS)


def qualifies_for_booking(config: Optional[Dict[str, Any]], answers: Optional[Dict[str, Any]]) -> bool:
    config = config or {}
    field = config.get("calcom_qualify_field")
    values = config.get("calcom_qualify_values")
    if not field or values is None:
        return True
    return (answers or {}).get(field) in values


def booking_view(config: Optional[Dict[str, Any]], answers: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    config = config or {}
    url = config.get("calcom_booking_url")
    if url and qualifies_for_booking(config, answers):
        return {"qualified": True, "booking_url": url, "message": None}
    return {"qualified": False, "booking_url": None, "message": NO_CALL_MESSAGE}


class OnboardingWizard:
    """Linear walk over the cohort's onboarding steps.

    Holds no I/O; the learner view keeps ``index`` in the session and
    rebuilds the wizard on every request.
    """

    def __init__(self, config: Optional[Dict[str, Any]], index: int = 0):
        self.config = normalize_config(config)
        self.steps = build_steps(self.config)
        self.index = max(0, min(int(index or 0), len(self.steps) - 1))

    @property
    def current_step(self) -> str:
        return self.steps[self.index]

    @property
    def is_last_step(self) -> bool:
        return self.index == len(self.steps) - 1

    @property
    def progress_percent(self) -> int:
        return round((self.index + 1) / len(self.steps) * 100)

    @property
    def welcome_video_embed(self) -> str:
        return normalize_embed_url(self.config.get("welcome_video_url"))

    def go_next(self) -> bool:
        """Advance one step; returns True when the wizard was already on its last step."""
        if self.is_last_step:
            return True
        self.index += 1
        return False

    def go_back(self) -> None:
        if self.index > 0:
            self.index -= 1
