"""Repetition rules for scheduled tasks.

A rule is a short string stored next to each task:

    d <n>            every n days (1..400)
    w <days>         on the given weekdays, 1=Monday .. 7=Sunday (e.g. 'w 1,3,5')
    m <days> [mons]  on the given days of month; -1 is the last day and -2
                     the day before it; an optional month list narrows it
                     down (e.g. 'm 1,-1' or 'm 15 3,6,9,12')
    y                every year on the same month/day

Dates travel as 8-digit ``YYYYMMDD`` strings. Nothing in this module reads
the clock: callers always pass the reference date in.
"""
from __future__ import annotations

import calendar
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import FrozenSet, Optional, Union

from dateutil.relativedelta import relativedelta

DATE_FORMAT = '%Y%m%d'

MAX_DAILY_INTERVAL = 400
LAST_DAY = -1
SECOND_TO_LAST_DAY = -2
ALL_MONTHS = frozenset(range(1, 13))

# Longest gap between two matches of any valid monthly rule is 'm 29 2'
# across a skipped century leap year (8 years).
MONTHLY_SCAN_LIMIT_DAYS = 366 * 9

# ASCII digits only; int() also accepts '1_0' and non-ASCII digits
_INT_RE = re.compile(r'[+-]?[0-9]+')


class RecurrenceError(ValueError):
    """Base class for rule and date errors; the message is client-facing."""


class InvalidDateFormat(RecurrenceError):
    pass


class UnknownRuleKind(RecurrenceError):
    pass


class MissingRuleParameter(RecurrenceError):
    pass


class InvalidRuleParameter(RecurrenceError):
    pass


class ComputationFailure(RecurrenceError):
    pass


class RuleKind(str, Enum):
    DAILY = 'd'
    WEEKLY = 'w'
    MONTHLY = 'm'
    YEARLY = 'y'


@dataclass(frozen=True)
class Daily:
    interval_days: int
    kind = RuleKind.DAILY


@dataclass(frozen=True)
class Weekly:
    # ISO weekday numbers, 1=Monday .. 7=Sunday
    weekdays: FrozenSet[int]
    kind = RuleKind.WEEKLY


@dataclass(frozen=True)
class Monthly:
    days: FrozenSet[int]
    months: FrozenSet[int] = ALL_MONTHS
    kind = RuleKind.MONTHLY

    def matches(self, d: date) -> bool:
        if d.month not in self.months:
            return False
        if d.day in self.days:
            return True
        last = calendar.monthrange(d.year, d.month)[1]
        if LAST_DAY in self.days and d.day == last:
            return True
        # the day after a second-to-last day is the last day of the month
        if SECOND_TO_LAST_DAY in self.days and d.day == last - 1:
            return True
        return False


@dataclass(frozen=True)
class Yearly:
    kind = RuleKind.YEARLY


RepetitionRule = Union[Daily, Weekly, Monthly, Yearly]


def format_date(d: date) -> str:
    return d.strftime(DATE_FORMAT)


def parse_date(value: str) -> date:
    """Parse a ``YYYYMMDD`` string into a date.

    Only the exact 8-digit form is accepted; strptime alone would also take
    unpadded values like '2024111'.
    """
    if not isinstance(value, str) or len(value) != 8 or not value.isascii() or not value.isdigit():
        raise InvalidDateFormat('invalid date format')
    try:
        return datetime.strptime(value, DATE_FORMAT).date()
    except ValueError:
        raise InvalidDateFormat('invalid date format')


def _parse_int(text: str) -> int:
    if not _INT_RE.fullmatch(text):
        raise ValueError(text)
    return int(text)


def _as_date(value: Union[date, datetime]) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def _parse_int_list(text: str, what: str, low: int, high: int, *, exclude: tuple = ()) -> FrozenSet[int]:
    values = set()
    for part in text.split(','):
        part = part.strip()
        if not part:
            raise InvalidRuleParameter(f'empty {what} in list')
        try:
            n = _parse_int(part)
        except ValueError:
            raise InvalidRuleParameter(f'invalid {what}: {part}')
        if n < low or n > high or n in exclude:
            raise InvalidRuleParameter(f'invalid {what}: {n}')
        values.add(n)
    return frozenset(values)


def parse_rule(rule_text: str) -> RepetitionRule:
    """Parse a repetition rule string into a typed rule.

    Raises a RecurrenceError subclass describing the first problem found.
    """
    tokens = (rule_text or '').split()
    if not tokens:
        raise UnknownRuleKind('unknown rule: empty')
    head, params = tokens[0], tokens[1:]
    try:
        kind = RuleKind(head)
    except ValueError:
        raise UnknownRuleKind(f'unknown rule: {head}')

    if kind is RuleKind.YEARLY:
        if params:
            raise InvalidRuleParameter('y rule takes no parameters')
        return Yearly()

    if not params:
        raise MissingRuleParameter(f'invalid {kind.value} rule: missing parameter')

    if kind is RuleKind.DAILY:
        if len(params) > 1:
            raise InvalidRuleParameter('d rule takes a single interval')
        try:
            n = _parse_int(params[0])
        except ValueError:
            raise InvalidRuleParameter(f'invalid interval: {params[0]}')
        if n < 1 or n > MAX_DAILY_INTERVAL:
            raise InvalidRuleParameter('interval days out of range')
        return Daily(n)

    if kind is RuleKind.WEEKLY:
        if len(params) > 1:
            raise InvalidRuleParameter('w rule takes a single weekday list')
        return Weekly(_parse_int_list(params[0], 'weekday', 1, 7))

    # monthly
    if len(params) > 2:
        raise InvalidRuleParameter('m rule takes a day list and an optional month list')
    days = _parse_int_list(params[0], 'day', SECOND_TO_LAST_DAY, 31, exclude=(0,))
    months = ALL_MONTHS
    if len(params) == 2:
        months = _parse_int_list(params[1], 'month', 1, 12)
    return Monthly(days, months)


def _next_daily(now: date, start: date, rule: Daily) -> date:
    step = rule.interval_days
    if start > now:
        return start + timedelta(days=step)
    # jump straight to the first multiple of the interval past now
    steps = (now - start).days // step + 1
    return start + timedelta(days=steps * step)


def _next_yearly(now: date, start: date) -> date:
    # measure every candidate from start so Feb 29 comes back in leap years
    years = 1
    candidate = start + relativedelta(years=years)
    while candidate <= now:
        years += 1
        candidate = start + relativedelta(years=years)
    return candidate


def _next_weekly(now: date, rule: Weekly) -> date:
    current = now + timedelta(days=1)
    while current.isoweekday() not in rule.weekdays:
        current += timedelta(days=1)
    return current


def _next_monthly(now: date, start: date, rule: Monthly) -> date:
    # days on or before now can never match, so begin the scan after it
    current = max(start, now + timedelta(days=1))
    for _ in range(MONTHLY_SCAN_LIMIT_DAYS):
        if rule.matches(current):
            return current
        current += timedelta(days=1)
    raise ComputationFailure('m rule never matches a calendar date')


def next_occurrence(now: Union[date, datetime], start: Union[date, str], rule: Union[RepetitionRule, str]) -> date:
    """Return the next date for ``rule`` strictly after ``now``.

    Daily and yearly rules step from ``start``; when ``start`` is already in
    the future they still advance it once. Weekly rules ignore ``start`` and
    search from the day after ``now``. Monthly rules scan forward from
    ``start`` but only accept days after ``now``.
    """
    if isinstance(start, str):
        start = parse_date(start)
    if isinstance(rule, str):
        rule = parse_rule(rule)
    ref = _as_date(now)

    try:
        if isinstance(rule, Daily):
            return _next_daily(ref, start, rule)
        if isinstance(rule, Yearly):
            return _next_yearly(ref, start)
        if isinstance(rule, Weekly):
            return _next_weekly(ref, rule)
        if isinstance(rule, Monthly):
            return _next_monthly(ref, start, rule)
    except RecurrenceError:
        raise
    except (OverflowError, ValueError) as e:
        # stepping past 9999-12-31
        raise ComputationFailure('date out of range') from e
    raise ComputationFailure(f'unsupported rule: {rule!r}')


def next_date(now: Union[date, datetime], start: str, repeat: str) -> str:
    """String form of next_occurrence: ``YYYYMMDD`` in, ``YYYYMMDD`` out."""
    return format_date(next_occurrence(now, start, repeat))


def normalize_date(start: Optional[str], repeat: Optional[str], today: date, now: Union[date, datetime]) -> str:
    """Resolve the date a task should be stored with.

    Empty or 'today' means today. Dates from today onward are kept as given.
    Past dates move to the rule's next occurrence, or to today when the task
    does not repeat.
    """
    today_str = format_date(today)
    if not start or start == 'today':
        start = today_str
    parse_date(start)

    # zero-padded fixed-width strings compare like the dates they encode
    if start >= today_str:
        return start
    if repeat:
        return next_date(now, start, repeat)
    return today_str
