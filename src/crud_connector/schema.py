"""Per-resource field policy applied by backend adapters.

A schema is optional. When an adapter has one it validates incoming payloads,
fills in defaults on create and coerces stored values back to their declared
Python types (SQLite, for example, hands booleans back as 0/1).
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from crud_connector.config import IDENTIFIER_RE
from crud_connector.errors import ValidationError

ID_FIELD = "id"

_TYPE_NAMES: dict[type, str] = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
}


@dataclass(frozen=True, slots=True)
class FieldSpec:
    """Declaration of one record field.

    Attributes:
        name: Field name; must be a plain identifier.
        type: One of ``str``, ``int``, ``float`` or ``bool``.
        required: Whether create must supply a non-empty value.
        default: Value applied on create when the field is absent.
        nullable: Whether ``None`` is an acceptable value.
    """

    name: str
    type: type = str
    required: bool = False
    default: Any = None
    nullable: bool = True

    def __post_init__(self) -> None:
        if not IDENTIFIER_RE.match(self.name) or self.name == ID_FIELD:
            raise ValueError(f"Invalid field name: {self.name!r}")
        if self.type not in _TYPE_NAMES:
            raise ValueError(f"Unsupported field type for {self.name!r}: {self.type!r}")

    def check(self, value: Any) -> None:
        """Validate a single value against this field.

        Raises:
            ValidationError: If the value has the wrong type or is empty when required.
        """
        if value is None:
            if self.required or not self.nullable:
                raise ValidationError(f"{self.name} must not be null", field=self.name)
            return
        if self.type is bool:
            ok = isinstance(value, bool)
        elif self.type is int:
            ok = isinstance(value, int) and not isinstance(value, bool)
        elif self.type is float:
            ok = isinstance(value, int | float) and not isinstance(value, bool)
        else:
            ok = isinstance(value, str)
        if not ok:
            raise ValidationError(
                f"{self.name} must be a {_TYPE_NAMES[self.type]}", field=self.name
            )
        if self.required and self.type is str and not value.strip():
            raise ValidationError(f"{self.name} must not be empty", field=self.name)

    def coerce(self, value: Any) -> Any:
        """Convert a stored value back to the declared type."""
        if value is None:
            return None
        if self.type is bool and isinstance(value, int):
            return bool(value)
        if self.type is float and isinstance(value, int) and not isinstance(value, bool):
            return float(value)
        return value


@dataclass(frozen=True, slots=True)
class RecordSchema:
    """Field policy for one table or collection.

    Attributes:
        fields: Declared fields, in column order.
        strict: Reject payload keys that are not declared.
    """

    fields: tuple[FieldSpec, ...]
    strict: bool = True
    _by_name: dict[str, FieldSpec] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", tuple(self.fields))
        by_name = {spec.name: spec for spec in self.fields}
        if len(by_name) != len(self.fields):
            raise ValueError("Duplicate field names in schema")
        object.__setattr__(self, "_by_name", by_name)

    @classmethod
    def of(cls, *fields: FieldSpec, strict: bool = True) -> RecordSchema:
        """Build a schema from field specs."""
        return cls(fields=tuple(fields), strict=strict)

    @property
    def names(self) -> tuple[str, ...]:
        """Declared field names, in order."""
        return tuple(spec.name for spec in self.fields)

    def get(self, name: str) -> FieldSpec | None:
        """Look up a field spec by name."""
        return self._by_name.get(name)

    def _check_known(self, keys: Iterable[str]) -> None:
        if not self.strict:
            return
        for key in keys:
            if key not in self._by_name:
                raise ValidationError(f"Unknown field: {key}", field=key)

    def prepare_create(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        """Validate a create payload and apply defaults.

        Returns:
            A new dict in schema field order, followed by any undeclared keys
            when the schema is not strict.

        Raises:
            ValidationError: If a required field is missing or a value is invalid.
        """
        self._check_known(payload)
        record: dict[str, Any] = {}
        for spec in self.fields:
            if spec.name in payload:
                value = payload[spec.name]
            elif spec.required:
                raise ValidationError(f"{spec.name} is required", field=spec.name)
            else:
                value = spec.default
            spec.check(value)
            record[spec.name] = value
        for key, value in payload.items():
            if key not in record:
                record[key] = value
        return record

    def prepare_update(self, partial: Mapping[str, Any]) -> dict[str, Any]:
        """Validate the fields named in a partial update.

        Raises:
            ValidationError: If a named field is unknown or invalid.
        """
        self._check_known(partial)
        for key, value in partial.items():
            spec = self._by_name.get(key)
            if spec is not None:
                spec.check(value)
        return dict(partial)

    def check_filter(self, filter: Mapping[str, Any]) -> None:
        """Reject filter keys that name neither the id nor a declared field.

        Raises:
            ValidationError: If a key is unknown and the schema is strict.
        """
        self._check_known(key for key in filter if key != ID_FIELD)

    def coerce(self, record: Mapping[str, Any]) -> dict[str, Any]:
        """Convert a stored record's values back to their declared types."""
        result = dict(record)
        for key, value in record.items():
            spec = self._by_name.get(key)
            if spec is not None:
                result[key] = spec.coerce(value)
        return result


TODO_SCHEMA = RecordSchema.of(
    FieldSpec("title", str, required=True, nullable=False),
    FieldSpec("completed", bool, default=False, nullable=False),
)
"""The to-do resource served by the REST facade: a required title and a completion flag."""


__all__ = [
    "FieldSpec",
    "ID_FIELD",
    "RecordSchema",
    "TODO_SCHEMA",
]
