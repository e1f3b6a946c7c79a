"""Per-visitor UI state (active cohort, theme, onboarding position) behind a key-value backend."""
from __future__ import annotations

from typing import Any, Dict, List, MutableMapping, Optional

THEMES = ("light", "dark")

_PREFIX = "portal."


class MemoryBackend:
    """Dict-backed store, used in tests and scripts."""

    def __init__(self, data: Optional[Dict[str, Any]] = None):
        self.data: Dict[str, Any] = dict(data or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.data[key] = value

    def delete(self, key: str) -> None:
        self.data.pop(key, None)


class SessionBackend:
    """Store on the Flask session (or any mutable mapping)."""

    def __init__(self, session: MutableMapping[str, Any]):
        self.session = session

    def get(self, key: str, default: Any = None) -> Any:
        return self.session.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.session[key] = value

    def delete(self, key: str) -> None:
        self.session.pop(key, None)


class ClientState:
    def __init__(self, backend):
        self.backend = backend

    def _get(self, name: str, default: Any = None) -> Any:
        return self.backend.get(_PREFIX + name, default)

    def _set(self, name: str, value: Any) -> None:
        self.backend.set(_PREFIX + name, value)

    # active cohort
    @property
    def active_cohort_id(self) -> Optional[str]:
        return self._get("active_cohort_id")

    @active_cohort_id.setter
    def active_cohort_id(self, cohort_id: Optional[str]) -> None:
        if cohort_id:
            self._set("active_cohort_id", cohort_id)
        else:
            self.backend.delete(_PREFIX + "active_cohort_id")

    def pick_active_cohort(self, enrolled_ids: List[str]) -> Optional[str]:
        """Keep the stored cohort if still enrolled, otherwise fall back to the first."""
        current = self.active_cohort_id
        if current in enrolled_ids:
            return current
        self.active_cohort_id = enrolled_ids[0] if enrolled_ids else None
        return self.active_cohort_id

    # theme
    @property
    def theme(self) -> str:
        value = self._get("theme", "light")
        return value if value in THEMES else "light"

    def toggle_theme(self) -> str:
        new = "light" if self.theme == "dark" else "dark"
        self._set("theme", new)
        return new

    # onboarding position, per cohort
    def onboarding_index(self, cohort_id: str) -> int:
        return int((self._get("onboarding", {}) or {}).get(cohort_id, 0))

    def set_onboarding_index(self, cohort_id: str, index: int) -> None:
        positions = dict(self._get("onboarding", {}) or {})
        positions[cohort_id] = int(index)
        self._set("onboarding", positions)

    def clear_onboarding(self, cohort_id: str) -> None:
        positions = dict(self._get("onboarding", {}) or {})
        positions.pop(cohort_id, None)
        self._set("onboarding", positions)
