"""
Common utility functions for the case orchestration core.

Provides nested lookups into open metadata maps, template interpolation,
operator evaluation and calendar helpers.
"""

import calendar
import math
import re
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional, Union

from .choices import ConditionOperator

_MISSING = object()
_PLACEHOLDER_RE = re.compile(r'\{([^}]+)\}')


def get_nested_value(data: Any, path: str, default: Any = None) -> Any:
    """
    Resolve a dot separated path inside nested mappings.

    Args:
        data: Root mapping (or object exposing attributes)
        path: Dot separated path such as ``task.assignedTo.role``
        default: Value returned when any segment is missing

    Returns:
        The resolved value or ``default``
    """
    current = data
    for key in path.split('.'):
        if current is None:
            return default
        if isinstance(current, Mapping):
            current = current.get(key, _MISSING)
        else:
            current = getattr(current, key, _MISSING)
        if current is _MISSING:
            return default
    return current


def interpolate_template(template: str, data: Mapping[str, Any]) -> str:
    """
    Replace ``{path}`` placeholders with values looked up in ``data``.

    Unresolved placeholders are left verbatim.
    """
    def _replace(match):
        value = get_nested_value(data, match.group(1), _MISSING)
        if value is _MISSING or value is None:
            return match.group(0)
        return str(value)

    return _PLACEHOLDER_RE.sub(_replace, template)


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float, Decimal)):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _compare(actual: Any, expected: Any) -> Optional[int]:
    """Three-way compare for numbers and datetimes; None when incomparable."""
    if isinstance(actual, (datetime, date)) and isinstance(expected, (datetime, date)):
        try:
            return (actual > expected) - (actual < expected)
        except TypeError:
            return None
    left, right = _as_number(actual), _as_number(expected)
    if left is None or right is None:
        return None
    return (left > right) - (left < right)


def evaluate_operator(actual: Any, operator: Union[str, ConditionOperator], expected: Any = None) -> bool:
    """
    Apply a condition operator to a resolved field value.

    Unknown operators and incomparable operands evaluate to ``False``.
    """
    operator = str(operator)

    if operator == ConditionOperator.EQUALS:
        return actual == expected
    if operator == ConditionOperator.NOT_EQUALS:
        return actual != expected
    if operator == ConditionOperator.CONTAINS:
        if isinstance(actual, str):
            return isinstance(expected, str) and expected in actual
        if isinstance(actual, (list, tuple, set, frozenset)):
            return expected in actual
        return False
    if operator == ConditionOperator.EXISTS:
        return actual is not None
    if operator == ConditionOperator.NOT_EXISTS:
        return actual is None
    if operator == ConditionOperator.GREATER_THAN:
        result = _compare(actual, expected)
        return result is not None and result > 0
    if operator == ConditionOperator.LESS_THAN:
        result = _compare(actual, expected)
        return result is not None and result < 0
    if operator == ConditionOperator.IN:
        return isinstance(expected, (list, tuple, set, frozenset)) and actual in expected
    if operator == ConditionOperator.NOT_IN:
        return isinstance(expected, (list, tuple, set, frozenset)) and actual not in expected
    if operator == ConditionOperator.MATCHES_PATTERN:
        if actual is None or not isinstance(expected, str):
            return False
        try:
            return re.search(expected, str(actual)) is not None
        except re.error:
            return False
    return False


def safe_divide(numerator: Union[int, float], denominator: Union[int, float], default: float = 0.0) -> float:
    """Divide, returning ``default`` when the denominator is zero."""
    if not denominator:
        return default
    return numerator / denominator


def days_until(moment: datetime, now: datetime) -> int:
    """Whole days until ``moment``, rounded up; negative when in the past."""
    return math.ceil((moment - now).total_seconds() / 86400)


def add_months(moment: datetime, months: int, day: Optional[int] = None) -> datetime:
    """
    Shift ``moment`` by a number of calendar months.

    The day of month is clamped to the length of the target month.

    Args:
        moment: Anchor datetime
        months: Months to add (may be negative)
        day: Preferred day of month; defaults to the anchor's day
    """
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return moment.replace(year=year, month=month, day=min(day or moment.day, last_day))


def add_years(moment: datetime, years: int, month: Optional[int] = None, day: Optional[int] = None) -> datetime:
    """Shift ``moment`` by whole years, clamping 29 February and short months."""
    year = moment.year + years
    month = month or moment.month
    last_day = calendar.monthrange(year, month)[1]
    return moment.replace(year=year, month=month, day=min(day or moment.day, last_day))


def truncate_history(history: list, limit: int) -> None:
    """Drop the oldest entries so that ``history`` holds at most ``limit``."""
    overflow = len(history) - limit
    if overflow > 0:
        del history[:overflow]


def format_duration(duration: timedelta) -> str:
    """
    Format a timedelta as a short human readable string.
    """
    total_seconds = int(duration.total_seconds())
    sign = '-' if total_seconds < 0 else ''
    total_seconds = abs(total_seconds)

    days, remainder = divmod(total_seconds, 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes = remainder // 60

    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes or not parts:
        parts.append(f"{minutes}m")
    return sign + ' '.join(parts)


def merge_metadata(*sources: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Shallow merge of metadata dicts, later sources winning."""
    merged: Dict[str, Any] = {}
    for source in sources:
        if source:
            merged.update(source)
    return merged
