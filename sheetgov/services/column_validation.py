"""
Column spec normalisation and row-data validation.

A sheet's ``columns`` JSON is a list of column specs. ``normalise_columns``
canonicalises specs when a sheet is defined; ``validate_row_data`` checks a
row payload against them and returns a new mapping in column order with each
value coerced to the column type's canonical Python form:

    text / textarea / email / phone  -> str
    number / currency                -> int or float
    date                             -> ISO-8601 date string
    boolean                          -> bool
    enum                             -> str (one of ``enum_values``)

``None`` and ``""`` are "empty" for every type.
"""

from __future__ import annotations

import re
from datetime import date, datetime

from email_validator import EmailNotValidError, validate_email

from sheetgov.core.exceptions import MissingRequiredFields, ValidationError
from sheetgov.models.sheet import COLUMN_TYPES

_PHONE_RE = re.compile(r"^\+?[0-9 ()\-]{5,20}$")
_KEY_RE = re.compile(r"^[a-z][a-z0-9_]*$")

_VALIDATION_KEYS = ("min_length", "max_length", "min", "max", "pattern", "enum_values")


def is_empty(value) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


# ── Column specs ─────────────────────────────────────────────────────────────


def normalise_columns(columns: list[dict]) -> list[dict]:
    """Validate and canonicalise a list of column specs.

    Raises ValidationError when the list is empty, a key repeats, a type is
    unknown or an enum column has no values.
    """
    if not isinstance(columns, list) or not columns:
        raise ValidationError("A sheet needs at least one column", details={"columns": "required"})

    normalised = []
    seen: set[str] = set()
    errors: dict[str, str] = {}
    for position, raw in enumerate(columns):
        if not isinstance(raw, dict):
            errors[f"columns[{position}]"] = "must be an object"
            continue
        key = str(raw.get("key") or "").strip().lower()
        if not _KEY_RE.match(key):
            errors[f"columns[{position}].key"] = "must start with a letter and use a-z, 0-9 or _"
            continue
        if key in seen:
            errors[f"columns[{position}].key"] = f"duplicate column key '{key}'"
            continue
        seen.add(key)

        col_type = raw.get("type", "text")
        if col_type not in COLUMN_TYPES:
            errors[key] = f"unknown column type '{col_type}'"
            continue

        validation = {k: v for k, v in (raw.get("validation") or {}).items() if k in _VALIDATION_KEYS}
        if col_type == "enum" and not validation.get("enum_values"):
            errors[key] = "enum columns need validation.enum_values"
            continue
        if "pattern" in validation:
            try:
                re.compile(validation["pattern"])
            except re.error as exc:
                errors[key] = f"invalid pattern: {exc}"
                continue

        normalised.append({
            "key": key,
            "label": raw.get("label") or key.replace("_", " ").title(),
            "type": col_type,
            "required": bool(raw.get("required", False)),
            "unique": bool(raw.get("unique", False)),
            "default_value": raw.get("default_value"),
            "validation": validation,
            "display_order": int(raw.get("display_order", position)),
            "hidden": bool(raw.get("hidden", False)),
            "read_only": bool(raw.get("read_only", False)),
            "allow_edit": bool(raw.get("allow_edit", True)),
            "width": raw.get("width"),
        })

    if errors:
        raise ValidationError("Invalid column definitions", details=errors)
    return normalised


# ── Values ───────────────────────────────────────────────────────────────────


def _coerce(column: dict, value):
    """Return the canonical value or raise ValueError with a user-facing reason."""
    col_type = column["type"]
    rules = column.get("validation") or {}

    if col_type in ("number", "currency"):
        if isinstance(value, bool):
            raise ValueError("must be a number")
        if isinstance(value, str):
            try:
                value = float(value.strip().replace(",", ""))
            except ValueError:
                raise ValueError("must be a number") from None
        if not isinstance(value, (int, float)):
            raise ValueError("must be a number")
        if isinstance(value, float) and value.is_integer() and col_type == "number":
            value = int(value)
        if rules.get("min") is not None and value < rules["min"]:
            raise ValueError(f"must be at least {rules['min']}")
        if rules.get("max") is not None and value > rules["max"]:
            raise ValueError(f"must be at most {rules['max']}")
        return value

    if col_type == "boolean":
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in ("true", "false", "yes", "no", "1", "0"):
            return value.strip().lower() in ("true", "yes", "1")
        raise ValueError("must be true or false")

    if col_type == "date":
        if isinstance(value, datetime):
            return value.date().isoformat()
        if isinstance(value, date):
            return value.isoformat()
        try:
            return date.fromisoformat(str(value)[:10]).isoformat()
        except ValueError:
            raise ValueError("must be a date (YYYY-MM-DD)") from None

    if col_type == "enum":
        allowed = rules.get("enum_values") or []
        if value not in allowed:
            raise ValueError(f"must be one of: {', '.join(map(str, allowed))}")
        return value

    # text, textarea, email, phone
    if not isinstance(value, str):
        value = str(value)
    value = value.strip()
    if col_type == "email":
        try:
            value = validate_email(value, check_deliverability=False).normalized
        except EmailNotValidError:
            raise ValueError("must be a valid email address") from None
    if col_type == "phone" and not _PHONE_RE.match(value):
        raise ValueError("must be a valid phone number")
    if rules.get("min_length") is not None and len(value) < rules["min_length"]:
        raise ValueError(f"must be at least {rules['min_length']} characters")
    if rules.get("max_length") is not None and len(value) > rules["max_length"]:
        raise ValueError(f"must be at most {rules['max_length']} characters")
    if rules.get("pattern") and not re.fullmatch(rules["pattern"], value):
        raise ValueError("has an invalid format")
    return value


def validate_row_data(
    columns: list[dict],
    data: dict,
    *,
    existing: dict | None = None,
    creating: bool = False,
) -> dict:
    """Validate ``data`` against ``columns`` and return the merged row mapping.

    On create, missing keys take the column's ``default_value``. On update,
    ``data`` is a partial mapping merged over ``existing``. Required columns
    must be non-empty in the merged result.

    Raises:
        ValidationError: unknown keys or type/constraint failures.
        MissingRequiredFields: required columns left empty.
    """
    if not isinstance(data, dict):
        raise ValidationError("Row data must be an object")

    by_key = {c["key"]: c for c in columns}
    unknown = sorted(k for k in data if k not in by_key)
    if unknown:
        raise ValidationError(
            "Unknown columns in row data",
            details={k: "not a column of this sheet" for k in unknown},
        )

    errors: dict[str, str] = {}
    merged: dict = {}
    for column in columns:
        key = column["key"]
        if key in data:
            value = data[key]
        elif existing is not None and key in existing:
            value = existing[key]
        elif creating and column.get("default_value") is not None:
            value = column["default_value"]
        else:
            value = None

        if is_empty(value):
            merged[key] = None
            continue
        if key not in data and existing is not None and key in existing:
            # Stored values were validated when written
            merged[key] = value
            continue
        try:
            merged[key] = _coerce(column, value)
        except ValueError as exc:
            errors[key] = f"{column['label']} {exc}"

    if errors:
        raise ValidationError("Row data failed validation", details=errors)

    missing = [c["label"] for c in columns if c.get("required") and is_empty(merged.get(c["key"]))]
    if missing:
        raise MissingRequiredFields(missing)

    return merged


def diff_row_data(old: dict, new: dict) -> list[dict]:
    """Field-level changes between two row mappings, in ``new``'s key order."""
    changes = []
    for key, value in new.items():
        previous = (old or {}).get(key)
        if previous != value:
            changes.append({"field": key, "old_value": previous, "new_value": value})
    return changes
