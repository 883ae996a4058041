"""Map declared column types to abstract input-field kinds."""

import enum


class FieldKind(str, enum.Enum):
    """Kind of input a form renderer should use for a column."""

    TEXT = "text"
    TEXTAREA = "textarea"
    INTEGER = "integer"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    DATE = "date"
    TIME = "time"
    DATETIME = "datetime"
    JSON = "json"
    UUID = "uuid"
    ARRAY = "array"


_EXACT = {
    "smallint": FieldKind.INTEGER,
    "integer": FieldKind.INTEGER,
    "bigint": FieldKind.INTEGER,
    "numeric": FieldKind.DECIMAL,
    "decimal": FieldKind.DECIMAL,
    "real": FieldKind.DECIMAL,
    "double precision": FieldKind.DECIMAL,
    "money": FieldKind.DECIMAL,
    "boolean": FieldKind.BOOLEAN,
    "date": FieldKind.DATE,
    "json": FieldKind.JSON,
    "jsonb": FieldKind.JSON,
    "uuid": FieldKind.UUID,
    "text": FieldKind.TEXTAREA,
    "xml": FieldKind.TEXTAREA,
    "array": FieldKind.ARRAY,
}


def field_kind(data_type: str) -> FieldKind:
    """Return the field kind for an information_schema data_type."""
    declared = (data_type or "").strip().lower()
    if declared in _EXACT:
        return _EXACT[declared]
    if declared.endswith("[]"):
        return FieldKind.ARRAY
    if declared.startswith("timestamp"):
        return FieldKind.DATETIME
    if declared.startswith("time"):
        return FieldKind.TIME
    return FieldKind.TEXT
