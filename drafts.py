"""Edit-form drafts: load a row, apply submitted fields locally, save only what changed."""
from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, Optional


class Draft:
    """Local copy of a stored row.

    Nothing here writes to the database; ``submit`` hands the changed
    columns to the caller's save function, or skips the call when there
    are none.
    """

    def __init__(self, original: Optional[Dict[str, Any]], fields: Iterable[str]):
        self.fields = tuple(fields)
        self.original = {f: (original or {}).get(f) for f in self.fields}
        self.values = dict(self.original)

    def apply(self, submitted: Dict[str, Any]) -> "Draft":
        for key, value in submitted.items():
            if key in self.fields:
                self.values[key] = value
        return self

    def changes(self) -> Dict[str, Any]:
        return {k: v for k, v in self.values.items() if v != self.original.get(k)}

    @property
    def is_dirty(self) -> bool:
        return bool(self.changes())

    def submit(self, save: Callable[[Dict[str, Any]], Any]) -> Any:
        changes = self.changes()
        if not changes:
            return None
        result = save(changes)
        self.original.update(changes)
        return result
