"""Client / engagement service.

Transaction policy: functions flush only; blueprints commit.

An engagement pins its TOM preset. While ``is_locked`` is set the preset
and phase graph cannot change (ConflictError → 409). At most one
engagement is the default; new use cases without an ``engagement_id``
join it.
"""
import logging
from typing import Any

from portfolio.core.exceptions import ConflictError, NotFoundError, ValidationError
from portfolio.models import db
from portfolio.models.client import Client, Engagement
from portfolio.services import tom

logger = logging.getLogger(__name__)

CURRENCIES = {"GBP", "USD", "EUR"}
PRESETS = set(tom.DEFAULT_TOM_CONFIG["preset_profiles"]) | {"custom"}
_LOCKED_FIELDS = ("tom_preset_id", "tom_phases_json")


def _validate_enum(value, allowed, field_name: str) -> str | None:
    if value and value not in allowed:
        return f"Invalid {field_name}: '{value}'. Allowed: {sorted(allowed)}"
    return None


def list_clients() -> list[Client]:
    return Client.query.order_by(Client.name).all()


def create_client(data: dict[str, Any]) -> Client:
    name = (data.get("name") or "").strip()
    issues = []
    if not name:
        issues.append("name is required")
    err = _validate_enum(data.get("currency"), CURRENCIES, "currency")
    if err:
        issues.append(err)
    if issues:
        raise ValidationError("Invalid client", issues=issues)

    client = Client(name=name, currency=data.get("currency") or "GBP")
    db.session.add(client)
    db.session.flush()
    logger.info("Client created: %s (%s)", client.name, client.id)
    return client


def _validate_engagement(data: dict) -> list[str]:
    issues = []
    err = _validate_enum(data.get("tom_preset_id"), PRESETS, "tom_preset_id")
    if err:
        issues.append(err)
    phases = data.get("tom_phases_json")
    if phases is not None:
        if not isinstance(phases, list) or not all(isinstance(p, dict) and p.get("id") for p in phases):
            issues.append("tom_phases_json must be a list of phases with ids")
    return issues


def _clear_other_defaults(engagement: Engagement) -> None:
    (Engagement.query
     .filter(Engagement.id != engagement.id, Engagement.is_default.is_(True))
     .update({"is_default": False}, synchronize_session="fetch"))


def create_engagement(client_id: int, data: dict[str, Any]) -> Engagement:
    client = db.session.get(Client, client_id)
    if client is None:
        raise NotFoundError(resource="Client", resource_id=client_id)
    issues = _validate_engagement(data)
    if not (data.get("name") or "").strip():
        issues.insert(0, "name is required")
    if issues:
        raise ValidationError("Invalid engagement", issues=issues)

    engagement = Engagement(
        client_id=client.id,
        name=data["name"].strip(),
        tom_preset_id=data.get("tom_preset_id"),
        tom_phases_json=data.get("tom_phases_json"),
        is_locked=bool(data.get("is_locked", False)),
        is_default=bool(data.get("is_default", False)),
    )
    db.session.add(engagement)
    db.session.flush()
    if engagement.is_default:
        _clear_other_defaults(engagement)
    logger.info("Engagement created: %s for client %s preset=%s", engagement.id, client.id, engagement.tom_preset_id)
    return engagement


def update_engagement(engagement: Engagement, data: dict[str, Any]) -> Engagement:
    issues = _validate_engagement(data)
    if issues:
        raise ValidationError("Invalid engagement", issues=issues)

    unlocking = data.get("is_locked") is False
    if engagement.is_locked and not unlocking:
        for name in _LOCKED_FIELDS:
            if name in data and data[name] != getattr(engagement, name):
                raise ConflictError("Engagement", name, "locked")

    for name in ("name", "tom_preset_id", "tom_phases_json", "is_locked", "is_default"):
        if name in data:
            setattr(engagement, name, data[name])
    db.session.flush()
    if engagement.is_default:
        _clear_other_defaults(engagement)
    logger.info("Engagement updated: %s", engagement.id)
    return engagement
