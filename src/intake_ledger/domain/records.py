"""
Ledger record domain models.

This module defines the canonical schema for every record kind the ledger
stores, the settings singleton, and the audit log entry. Models accept both
snake_case (store rows) and camelCase (backup documents) keys and silently
drop unknown keys such as a remote ``user_id``.
"""

from collections.abc import Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from intake_ledger.utils.exceptions import ValidationError
from intake_ledger.utils.ids import generate_record_id
from intake_ledger.utils.timezone_utils import now_ms

MAX_NOTE_LENGTH = 500
MAX_AUDIT_DETAILS_LENGTH = 100
MAX_SOURCE_LENGTH = 200
MAX_AMOUNT_ESTIMATE_LENGTH = 50

# Sanity ceilings, not clinical ranges.
MAX_INTAKE_AMOUNT = 100_000
MAX_WEIGHT_KG = 500
MAX_SYSTOLIC = 300
MAX_DIASTOLIC = 250
MAX_HEART_RATE = 300


class StorageMode(str, Enum):
    """Backend a client is currently operating against."""

    LOCAL = "local"
    SERVER = "server"


class RecordKind(str, Enum):
    """Enumeration of record collections."""

    INTAKE = "intake"
    WEIGHT = "weight"
    BLOOD_PRESSURE = "blood_pressure"
    EATING = "eating"
    URINATION = "urination"


class IntakeType(str, Enum):
    """Intake tag: water in ml, salt in mg."""

    WATER = "water"
    SALT = "salt"


class BodyPosition(str, Enum):
    """Body position during a blood pressure reading."""

    SITTING = "sitting"
    STANDING = "standing"


class Arm(str, Enum):
    """Arm used for a blood pressure reading."""

    LEFT = "left"
    RIGHT = "right"


class AuditAction(str, Enum):
    """Closed set of audited actions."""

    DATA_EXPORT = "data_export"
    DATA_IMPORT = "data_import"
    DATA_CLEAR = "data_clear"
    DATA_PURGE = "data_purge"
    STORAGE_MIGRATION = "storage_migration"
    SETTINGS_CHANGE = "settings_change"


def clean_text(value: Any, max_length: int) -> Any:
    """Trim free text, cap its length and map blanks to None."""
    if not isinstance(value, str):
        return value
    value = value.strip()[:max_length]
    return value or None


class LedgerRecord(BaseModel):
    """
    Fields shared by every ledger record.

    ``timestamp`` is an instant in milliseconds since the epoch; no time zone
    is stored.
    """

    id: str = Field(default_factory=generate_record_id, min_length=1, strict=True)
    timestamp: int = Field(default_factory=now_ms, ge=0, strict=True)
    note: str | None = None

    model_config = ConfigDict(
        use_enum_values=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore",
    )

    @field_validator("note", mode="before")
    @classmethod
    def _clean_note(cls, value: Any) -> Any:
        return clean_text(value, MAX_NOTE_LENGTH)

    def to_document(self) -> dict[str, Any]:
        """Serialize for backup documents (camelCase, absent optionals omitted)."""
        return self.model_dump(by_alias=True, exclude_none=True)

    def to_row(self) -> dict[str, Any]:
        """Serialize for store rows (snake_case column names)."""
        return self.model_dump()


class IntakeRecord(LedgerRecord):
    """Water (ml) or salt (mg) intake."""

    type: IntakeType
    amount: float = Field(gt=0, le=MAX_INTAKE_AMOUNT, strict=True)
    source: str | None = Field("manual", max_length=MAX_SOURCE_LENGTH)

    @field_serializer("amount")
    def _serialize_amount(self, amount: float) -> int | float:
        return int(amount) if float(amount).is_integer() else amount


class WeightRecord(LedgerRecord):
    """Body weight in kilograms."""

    weight: float = Field(gt=0, le=MAX_WEIGHT_KG, strict=True)


class BloodPressureRecord(LedgerRecord):
    """Blood pressure reading in mmHg with optional heart rate in BPM."""

    systolic: int = Field(ge=1, le=MAX_SYSTOLIC, strict=True)
    diastolic: int = Field(ge=1, le=MAX_DIASTOLIC, strict=True)
    heart_rate: int | None = Field(None, ge=1, le=MAX_HEART_RATE, strict=True)
    position: BodyPosition
    arm: Arm


class EatingRecord(LedgerRecord):
    """Meal event marker."""


class UrinationRecord(LedgerRecord):
    """Urination event marker with an optional free-text size estimate."""

    amount_estimate: str | None = None

    @field_validator("amount_estimate", mode="before")
    @classmethod
    def _clean_estimate(cls, value: Any) -> Any:
        return clean_text(value, MAX_AMOUNT_ESTIMATE_LENGTH)


class AuditLogEntry(BaseModel):
    """A single audited action."""

    id: str = Field(default_factory=generate_record_id, min_length=1)
    timestamp: int = Field(default_factory=now_ms, ge=0)
    action: AuditAction
    details: str | None = None

    model_config = ConfigDict(use_enum_values=True, populate_by_name=True, extra="ignore")

    @field_validator("details", mode="before")
    @classmethod
    def _cap_details(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value[:MAX_AUDIT_DETAILS_LENGTH] or None
        return value


class LedgerSettings(BaseModel):
    """
    Per-user (remote) or per-device (local) settings singleton.

    Only these fields are ever exported; anything else a caller keeps next to
    them (API keys, PIN material) never reaches a backup document.
    """

    water_limit: int = Field(1000, ge=100, le=10_000)
    salt_limit: int = Field(1500, ge=100, le=10_000)
    water_increment: int = Field(250, ge=10, le=1000)
    salt_increment: int = Field(250, ge=10, le=1000)
    day_start_hour: int = Field(2, ge=0, le=23)
    data_retention_days: int = Field(90, ge=0, le=365)
    updated_at: int | None = None

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel, extra="ignore")

    def to_document(self) -> dict[str, Any]:
        """Sanitized snapshot for backup documents."""
        return self.model_dump(by_alias=True, exclude={"updated_at"})


RECORD_MODELS: dict[RecordKind, type[LedgerRecord]] = {
    RecordKind.INTAKE: IntakeRecord,
    RecordKind.WEIGHT: WeightRecord,
    RecordKind.BLOOD_PRESSURE: BloodPressureRecord,
    RecordKind.EATING: EatingRecord,
    RecordKind.URINATION: UrinationRecord,
}

# Fields a caller may change in place; id and intake type are fixed at creation.
UPDATABLE_FIELDS: dict[RecordKind, frozenset[str]] = {
    RecordKind.INTAKE: frozenset({"amount", "timestamp", "note", "source"}),
    RecordKind.WEIGHT: frozenset({"weight", "timestamp", "note"}),
    RecordKind.BLOOD_PRESSURE: frozenset(
        {"systolic", "diastolic", "heart_rate", "position", "arm", "timestamp", "note"}
    ),
    RecordKind.EATING: frozenset({"timestamp", "note"}),
    RecordKind.URINATION: frozenset({"timestamp", "amount_estimate", "note"}),
}


def describe_validation_error(error: PydanticValidationError) -> str:
    """Flatten a pydantic error into a single readable line."""
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "record"
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)


def build_record(kind: RecordKind, payload: Mapping[str, Any] | LedgerRecord) -> LedgerRecord:
    """
    Validate a payload into the model for ``kind``.

    Args:
        kind: Record kind.
        payload: Mapping in either key style, or an already-built record.

    Returns:
        Validated record.

    Raises:
        ValidationError: If the payload does not match the record shape.
    """
    model = RECORD_MODELS[kind]
    if isinstance(payload, model):
        return payload
    if isinstance(payload, LedgerRecord):
        payload = payload.to_row()

    try:
        return model.model_validate(dict(payload))
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid {kind.value} record: {describe_validation_error(e)}") from e


def apply_changes(
    kind: RecordKind, record: LedgerRecord, changes: Mapping[str, Any]
) -> LedgerRecord:
    """
    Produce a new validated record with ``changes`` applied.

    Args:
        kind: Record kind.
        record: Current record.
        changes: Field changes keyed by snake_case or camelCase names.

    Returns:
        Updated record (the input is left untouched).

    Raises:
        ValidationError: If a field is not updatable or the result is invalid.
    """
    model = RECORD_MODELS[kind]
    names = {to_camel(name): name for name in model.model_fields}
    names.update({name: name for name in model.model_fields})

    normalized: dict[str, Any] = {}
    for key, value in changes.items():
        name = names.get(key)
        if name is None or name not in UPDATABLE_FIELDS[kind]:
            raise ValidationError(f"Field '{key}' cannot be updated on {kind.value} records")
        normalized[name] = value

    return build_record(kind, {**record.to_row(), **normalized})
