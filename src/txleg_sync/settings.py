"""Operator-editable sync settings.

Values are stored as strings in ``admin_settings`` with a declared type, and
fall back to the defaults below (which come from :mod:`txleg_sync.config`).
The sync loop never reads this table directly: :func:`resolve_sync_config`
coerces everything once into a frozen :class:`SyncConfig`.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from . import config
from .errors import SettingValueError
from .tables import AdminSetting, SettingType

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class SettingDefinition:
    key: str
    value: str
    type: SettingType
    category: str
    description: str


DEFAULT_SETTINGS: list[SettingDefinition] = [
    SettingDefinition(
        "SESSION_CODE",
        config.SESSION_CODE,
        SettingType.STRING,
        "session",
        "Texas Legislature session code (e.g. 89R for 89th Regular)",
    ),
    SettingDefinition(
        "SESSION_NAME",
        config.SESSION_NAME,
        SettingType.STRING,
        "session",
        "Full name of the legislative session",
    ),
    SettingDefinition(
        "MAX_BILLS_PER_SYNC",
        str(config.MAX_BILLS_PER_SYNC),
        SettingType.NUMBER,
        "sync",
        "Maximum number of bills per partial sync run",
    ),
    SettingDefinition(
        "BATCH_DELAY_MS",
        str(config.BATCH_DELAY_MS),
        SettingType.NUMBER,
        "sync",
        "Pause between groups of requests, in milliseconds",
    ),
    SettingDefinition(
        "SYNC_ENABLED",
        "true" if config.SYNC_ENABLED else "false",
        SettingType.BOOLEAN,
        "sync",
        "Kill switch: when false every sync attempt fails immediately",
    ),
    SettingDefinition(
        "BILL_TYPES",
        json.dumps(config.BILL_TYPES),
        SettingType.JSON,
        "sync",
        "Ordered list of bill types to sync",
    ),
]

_DEFAULTS_BY_KEY = {d.key: d for d in DEFAULT_SETTINGS}


# ── Coercion ─────────────────────────────────────────────────────────────────


def coerce_setting(key: str, raw: str, setting_type: SettingType) -> Any:
    """Parse a stored string according to its declared type.

    Raises :class:`SettingValueError` if the string doesn't fit the type.
    """
    if setting_type is SettingType.NUMBER:
        try:
            number = float(raw)
        except (TypeError, ValueError):
            raise SettingValueError(f"{key}: {raw!r} is not a number") from None
        return int(number) if number.is_integer() else number
    if setting_type is SettingType.BOOLEAN:
        lowered = str(raw).strip().lower()
        if lowered not in ("true", "false"):
            raise SettingValueError(f"{key}: {raw!r} is not 'true' or 'false'")
        return lowered == "true"
    if setting_type is SettingType.JSON:
        try:
            return json.loads(raw)
        except (TypeError, json.JSONDecodeError):
            raise SettingValueError(f"{key}: value is not valid JSON") from None
    return raw


def _validate_bill_types(value: Any) -> list[str]:
    if not isinstance(value, list) or not value:
        raise SettingValueError("BILL_TYPES must be a non-empty JSON list")
    types = [str(t).strip().upper() for t in value]
    unknown = [t for t in types if t not in config.VALID_BILL_TYPES]
    if unknown:
        raise SettingValueError(f"Unknown bill types: {', '.join(unknown)}")
    return types


# ── Read / write ─────────────────────────────────────────────────────────────


def get_setting(db: Session, key: str) -> Any:
    """Stored value (or default) for *key*, coerced to its type; ``None`` if unknown."""
    row = db.scalar(select(AdminSetting).where(AdminSetting.key == key))
    if row is not None:
        return coerce_setting(key, row.value, row.type)
    default = _DEFAULTS_BY_KEY.get(key)
    if default is None:
        return None
    return coerce_setting(key, default.value, default.type)


def set_setting(db: Session, key: str, value: Any, updated_by: str | None = None) -> AdminSetting:
    """Create or update a setting after validating it against its declared type.

    *value* may be a Python value or its string form.  The caller commits.
    """
    default = _DEFAULTS_BY_KEY.get(key)
    setting_type = default.type if default else SettingType.STRING

    if isinstance(value, str):
        raw = value
    elif isinstance(value, bool):
        raw = "true" if value else "false"
    elif setting_type is SettingType.JSON:
        raw = json.dumps(value)
    else:
        raw = str(value)

    parsed = coerce_setting(key, raw, setting_type)
    if key == "BILL_TYPES":
        raw = json.dumps(_validate_bill_types(parsed))
    elif setting_type is SettingType.NUMBER and parsed < 0:
        raise SettingValueError(f"{key} must not be negative")

    row = db.scalar(select(AdminSetting).where(AdminSetting.key == key))
    if row is None:
        row = AdminSetting(
            key=key,
            value=raw,
            type=setting_type,
            category=default.category if default else "general",
            description=default.description if default else None,
            updated_by=updated_by,
        )
        db.add(row)
    else:
        row.value = raw
        row.updated_by = updated_by
    db.flush()
    LOGGER.info("Setting %s updated%s", key, f" by {updated_by}" if updated_by else "")
    return row


def list_settings(db: Session, category: str | None = None) -> dict[str, list[dict[str, Any]]]:
    """Stored settings merged over defaults, grouped by category."""
    stmt = select(AdminSetting).order_by(AdminSetting.key)
    if category:
        stmt = stmt.where(AdminSetting.category == category)
    stored = {row.key: row for row in db.scalars(stmt)}

    grouped: dict[str, list[dict[str, Any]]] = {}
    for default in DEFAULT_SETTINGS:
        if category and default.category != category:
            continue
        row = stored.pop(default.key, None)
        entry = {
            "key": default.key,
            "value": row.value if row else default.value,
            "type": default.type.value,
            "category": default.category,
            "description": default.description,
            "updatedBy": row.updated_by if row else None,
            "isDefault": row is None,
        }
        grouped.setdefault(default.category, []).append(entry)
    # Keys stored without a default definition.
    for row in stored.values():
        grouped.setdefault(row.category, []).append(
            {
                "key": row.key,
                "value": row.value,
                "type": row.type.value,
                "category": row.category,
                "description": row.description,
                "updatedBy": row.updated_by,
                "isDefault": False,
            }
        )
    return grouped


# ── Resolved configuration ───────────────────────────────────────────────────


@dataclass(frozen=True)
class SyncConfig:
    """Everything the sync loop needs, typed and fixed for one run."""

    session_code: str
    session_name: str
    bill_types: tuple[str, ...]
    max_bills_per_sync: int
    batch_delay_ms: int
    sync_enabled: bool
    batch_size: int = config.BATCH_SIZE
    rate_limit_every: int = config.RATE_LIMIT_EVERY

    @property
    def batch_delay_s(self) -> float:
        return self.batch_delay_ms / 1000.0


def resolve_sync_config(
    db: Session,
    *,
    session_code: str | None = None,
    session_name: str | None = None,
    bill_types: list[str] | tuple[str, ...] | None = None,
    max_bills: int | None = None,
    batch_delay_ms: int | None = None,
    batch_size: int | None = None,
) -> SyncConfig:
    """Resolve overrides > stored settings > defaults into a :class:`SyncConfig`."""
    types = bill_types if bill_types else get_setting(db, "BILL_TYPES")
    return SyncConfig(
        session_code=session_code or get_setting(db, "SESSION_CODE") or config.SESSION_CODE,
        session_name=session_name or get_setting(db, "SESSION_NAME") or config.SESSION_NAME,
        bill_types=tuple(_validate_bill_types(list(types))),
        max_bills_per_sync=int(max_bills or get_setting(db, "MAX_BILLS_PER_SYNC") or 100),
        batch_delay_ms=int(
            batch_delay_ms if batch_delay_ms is not None else get_setting(db, "BATCH_DELAY_MS")
        ),
        sync_enabled=bool(get_setting(db, "SYNC_ENABLED")),
        batch_size=batch_size or config.BATCH_SIZE,
    )
