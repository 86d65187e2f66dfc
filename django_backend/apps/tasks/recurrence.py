"""
Recurrence expansion.

Occurrences are always computed from the series anchor (the first
occurrence's scheduled time): the k-th candidate is the anchor advanced by
``k * interval`` units of the rule's type. Skipped exception dates do not
shift later occurrences.
"""

import logging
from datetime import datetime, timedelta
from typing import Iterator, List, Optional

from apps.common.conf import get_setting
from apps.common.utils import add_months, add_years
from apps.tasks.choices import RecurrenceType
from apps.tasks.entities import RecurrenceRule

logger = logging.getLogger(__name__)


def _weekly_by_day(rule: RecurrenceRule, anchor: datetime, days: set) -> Iterator[datetime]:
    anchor_week = anchor.date() - timedelta(days=anchor.weekday())
    offset = 1
    while True:
        candidate = anchor + timedelta(days=offset)
        week_index = (candidate.date() - anchor_week).days // 7
        if week_index % rule.interval == 0 and candidate.weekday() in days:
            yield candidate
        offset += 1


def iter_occurrences(rule: RecurrenceRule, anchor: datetime) -> Iterator[datetime]:
    """
    Yield every candidate occurrence after ``anchor`` in chronological order.

    The generator is unbounded; callers stop it with an end date or an
    iteration limit. Weekly rules with ``days_of_week`` use Python weekday
    numbers (0 is Monday) and fire on those days in every ``interval``-th
    week counted from the anchor's week.
    """
    interval = max(1, rule.interval)

    if rule.type == RecurrenceType.WEEKLY and rule.days_of_week:
        days = {day for day in rule.days_of_week if 0 <= day <= 6}
        if days:
            yield from _weekly_by_day(rule, anchor, days)
            return

    step = 1
    while True:
        units = step * interval
        if rule.type == RecurrenceType.DAILY:
            yield anchor + timedelta(days=units)
        elif rule.type == RecurrenceType.WEEKLY:
            yield anchor + timedelta(weeks=units)
        elif rule.type == RecurrenceType.MONTHLY:
            yield add_months(anchor, units, day=rule.day_of_month)
        else:
            yield add_years(anchor, units, month=rule.month_of_year, day=rule.day_of_month)
        step += 1


def next_occurrence(
    rule: RecurrenceRule,
    anchor: datetime,
    after: Optional[datetime] = None,
    max_iterations: Optional[int] = None,
) -> Optional[datetime]:
    """
    Find the first occurrence strictly later than ``after``.

    Args:
        rule: Recurrence rule of the series
        anchor: Scheduled time of the series' first occurrence
        after: Cursor; defaults to the anchor itself
        max_iterations: Upper bound on candidates examined past the cursor

    Returns:
        The next occurrence, or None when the series has ended, every
        candidate within the bound was an exception, or the bound was hit
    """
    after = after or anchor
    limit = max_iterations or get_setting('MAX_RECURRENCE_ITERATIONS')
    examined = 0

    for candidate in iter_occurrences(rule, anchor):
        if rule.end_date and candidate > rule.end_date:
            return None
        if candidate <= after:
            continue
        examined += 1
        if examined > limit:
            logger.warning(
                f"Recurrence expansion stopped after {limit} candidates (anchor {anchor.isoformat()})"
            )
            return None
        if rule.is_exception(candidate):
            logger.debug(f"Skipping recurrence exception {candidate.date().isoformat()}")
            continue
        return candidate
    return None


def expand_occurrences(rule: RecurrenceRule, anchor: datetime, count: int) -> List[datetime]:
    """
    Return up to ``count`` upcoming occurrences after the anchor.

    The anchor itself is the first occurrence of the series, so at most
    ``max_occurrences - 1`` further dates are returned.
    """
    if rule.max_occurrences:
        count = min(count, rule.max_occurrences - 1)
    occurrences = []
    cursor = anchor
    while len(occurrences) < count:
        cursor = next_occurrence(rule, anchor, after=cursor)
        if cursor is None:
            break
        occurrences.append(cursor)
    return occurrences
