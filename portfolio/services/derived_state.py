"""
Derivation state of the derived sub-objects (capability, value realization).

Each JSON sub-object records who produced it last:

    NOT_SET       — absent or empty; always regenerable
    AUTO_DERIVED  — ``derived: true`` + ``derived_at``; regenerable
    USER_EDITED   — ``derived: false`` + ``edited_at``; preserved

Derivers call ``mark_auto_derived``; user-facing PUT routes call
``mark_user_edited``. ``state_of`` is the only reader.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum


class DerivationState(str, Enum):
    NOT_SET = "not_set"
    AUTO_DERIVED = "auto_derived"
    USER_EDITED = "user_edited"


@dataclass(frozen=True)
class DerivedStatus:
    state: DerivationState
    at: str | None = None

    @property
    def regenerable(self) -> bool:
        return self.state != DerivationState.USER_EDITED

    def to_dict(self) -> dict:
        return {"state": self.state.value, "at": self.at}


def _stamp(now: datetime | None) -> str:
    return (now or datetime.now(timezone.utc)).isoformat()


def state_of(obj: dict | None) -> DerivedStatus:
    if not obj:
        return DerivedStatus(DerivationState.NOT_SET)
    if obj.get("derived") is True:
        return DerivedStatus(DerivationState.AUTO_DERIVED, obj.get("derived_at"))
    return DerivedStatus(DerivationState.USER_EDITED, obj.get("edited_at"))


def mark_auto_derived(obj: dict, now: datetime | None = None) -> dict:
    obj["derived"] = True
    obj["derived_at"] = _stamp(now)
    obj.pop("edited_at", None)
    return obj


def mark_user_edited(obj: dict, now: datetime | None = None) -> dict:
    obj["derived"] = False
    obj["edited_at"] = _stamp(now)
    return obj


def can_regenerate(obj: dict | None, overwrite: bool = False) -> bool:
    """Regenerate when forced, or while nobody has edited the object."""
    return overwrite or state_of(obj).regenerable
