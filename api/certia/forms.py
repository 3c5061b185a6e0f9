"""Form-data checking against a template's field list.

Values are typed by the field they belong to: text/textarea/email are
strings, number is int or float, date is an ISO `YYYY-MM-DD` string,
checkbox is a boolean and select is one of the field's options.
"""

import math
import re
from datetime import date
from typing import Any, Dict, List

from .errors import ValidationError
from .schemas import FieldSpec

_TRUTHY = {"true", "on", "1", "yes"}
_FALSY = {"false", "off", "0", "no", ""}
_ISO_DATE = re.compile(r"\d{4}-\d{2}-\d{2}\Z", re.ASCII)


def _is_blank(value: Any) -> bool:
    return value is None or value is False or (isinstance(value, str) and not value.strip())


def coerce_value(field: FieldSpec, value: Any) -> Any:
    """Return the normalized value or raise ValueError."""
    if field.type == "checkbox":
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in _TRUTHY | _FALSY:
            return value.strip().lower() in _TRUTHY
        raise ValueError("expected a boolean")
    if isinstance(value, (dict, list)):
        raise ValueError("expected a scalar value")
    if field.type == "number":
        if isinstance(value, bool):
            raise ValueError("expected a number")
        if isinstance(value, int):
            return value
        if isinstance(value, float):
            number = value
        else:
            text = str(value).strip()
            try:
                return int(text)
            except ValueError:
                number = float(text)
        if not math.isfinite(number):
            raise ValueError("expected a finite number")
        return number
    text = str(value).strip() if not isinstance(value, str) else value
    if field.type == "date":
        text = text.strip()
        if not _ISO_DATE.match(text):
            raise ValueError("expected a date as YYYY-MM-DD")
        date.fromisoformat(text)
        return text
    if field.type == "email":
        local, sep, domain = text.strip().partition("@")
        if not sep or not local or "." not in domain:
            raise ValueError("expected an email address")
        return text.strip()
    if field.type == "select":
        if text not in field.options:
            raise ValueError(f"expected one of {', '.join(field.options)}")
        return text
    return text


def validate_form_data(fields: List[FieldSpec], form_data: Dict[str, Any]) -> Dict[str, Any]:
    if not form_data:
        raise ValidationError("form_data must not be empty")
    by_id = {f.id: f for f in fields}
    problems = []
    unknown = sorted(set(form_data) - set(by_id))
    if unknown:
        problems.append(f"unknown fields: {', '.join(unknown)}")
    cleaned: Dict[str, Any] = {}
    for field in sorted(fields, key=lambda f: f.order):
        value = form_data.get(field.id)
        if _is_blank(value):
            if field.required:
                problems.append(f"{field.id}: required")
            elif field.id in form_data:
                cleaned[field.id] = value
            continue
        try:
            cleaned[field.id] = coerce_value(field, value)
        except ValueError as exc:
            problems.append(f"{field.id}: {exc}")
    if problems:
        raise ValidationError("invalid form_data: " + "; ".join(problems))
    return cleaned


def display_values(fields: List[FieldSpec], form_data: Dict[str, Any]) -> Dict[str, Any]:
    """Values for rendering; anything that no longer fits its field renders empty."""
    out: Dict[str, Any] = {}
    for field in fields:
        value = (form_data or {}).get(field.id)
        if value is None:
            out[field.id] = False if field.type == "checkbox" else ""
            continue
        try:
            out[field.id] = coerce_value(field, value)
        except ValueError:
            out[field.id] = False if field.type == "checkbox" else ""
    return out
