"""Recurrence rules for repeating tasks.

A schedule phrase such as ``Every Sunday`` or ``every 2 months on the last
Friday`` is parsed into :class:`RuleOptions`, an immutable description of an
RFC 5545 RRULE. Raw ``RRULE:`` text is read with ``rrulestr`` and written
with ``str(rrule)``; occurrences are computed with ``dateutil.rrule``.

:class:`RecurrenceAdapter` wraps one rule for a task line. Its facet setters
keep the rule consistent (a day of month excludes weekday lists and so on)
and call an ``on_change`` hook so the owner can re-render the phrase.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from datetime import date, datetime, time
from enum import Enum
from itertools import islice
from typing import Callable

from dateutil import parser as date_parser
from dateutil.rrule import (
    DAILY,
    FREQNAMES,
    HOURLY,
    MINUTELY,
    MONTHLY,
    SECONDLY,
    WEEKLY,
    YEARLY,
    rrule,
    rrulestr,
    weekday,
)

from .errors import RecurrenceConfigError

logger = logging.getLogger(__name__)


class Frequency(str, Enum):
    """Frequencies a task may repeat with."""

    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


_FREQ_CODES = {
    "YEARLY": YEARLY,
    "MONTHLY": MONTHLY,
    "WEEKLY": WEEKLY,
    "DAILY": DAILY,
    "HOURLY": HOURLY,
    "MINUTELY": MINUTELY,
    "SECONDLY": SECONDLY,
}

_FREQ_UNITS = {"DAILY": "day", "WEEKLY": "week", "MONTHLY": "month", "YEARLY": "year"}

WEEKDAY_NAMES = (
    "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday",
)
MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)
WORKDAYS = (0, 1, 2, 3, 4)


# ---------------------------------------------------------------------------
# Rule value
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RuleOptions:
    """The facets of a recurrence rule.

    Weekdays are indexed from Monday (0) to Sunday (6), months from 1 to 12.
    ``bynweekday`` holds ``(ordinal, weekday)`` pairs such as ``(-1, 4)`` for
    the last Friday of the period. ``wkst``, ``bysetpos``, ``byyearday`` and
    ``byweekno`` only come from raw RRULE text; no phrase expresses them.
    """

    freq: str
    interval: int = 1
    byweekday: tuple[int, ...] = ()
    bynweekday: tuple[tuple[int, int], ...] = ()
    bymonthday: tuple[int, ...] = ()
    bymonth: tuple[int, ...] = ()
    count: int | None = None
    until: date | None = None
    wkst: int | None = None
    bysetpos: tuple[int, ...] = ()
    byyearday: tuple[int, ...] = ()
    byweekno: tuple[int, ...] = ()

    def to_string(self) -> str:
        """Serialize to the ``RRULE:`` line dateutil writes for this rule."""
        return rule_string(build_rrule(self, date.today()))


def build_rrule(options: RuleOptions, start: date) -> rrule:
    """Build the dateutil rule for ``options`` starting at midnight of ``start``."""
    byweekday = [weekday(d) for d in options.byweekday]
    byweekday += [weekday(d, n) for n, d in options.bynweekday]
    until = None
    if options.until is not None:
        until = datetime.combine(options.until, time())
    return rrule(
        _FREQ_CODES[options.freq],
        dtstart=datetime.combine(start, time()),
        interval=options.interval,
        wkst=options.wkst,
        count=options.count,
        until=until,
        bysetpos=options.bysetpos or None,
        bymonth=options.bymonth or None,
        bymonthday=options.bymonthday or None,
        byyearday=options.byyearday or None,
        byweekno=options.byweekno or None,
        byweekday=byweekday or None,
    )


def rule_string(rule: rrule) -> str:
    # str(rule) leads with a DTSTART line; the start is the document's date
    return str(rule).splitlines()[-1]


# ---------------------------------------------------------------------------
# Raw RRULE strings
# ---------------------------------------------------------------------------

_TIME_PARTS = ("byhour", "byminute", "bysecond", "byeaster")


def options_from_rule(rule: rrule) -> RuleOptions:
    """Read the facets back off a dateutil rule.

    Uses the attributes ``rrule.replace()`` copies. Explicit BYxxx parts are
    kept in ``_original_rule``, so values dateutil fills in from the start
    date are not mistaken for facets.
    """
    given = rule._original_rule
    unsupported = [name.upper() for name in _TIME_PARTS if given.get(name)]
    if unsupported:
        raise RecurrenceConfigError(
            f"Unsupported rule parts: {', '.join(unsupported)}"
        )
    plain: list[int] = []
    nth: list[tuple[int, int]] = []
    for wd in given.get("byweekday") or ():
        if wd.n:
            nth.append((wd.n, wd.weekday))
        else:
            plain.append(wd.weekday)
    return RuleOptions(
        freq=FREQNAMES[rule._freq],
        interval=rule._interval,
        byweekday=tuple(plain),
        bynweekday=tuple(nth),
        bymonthday=tuple(given.get("bymonthday") or ()),
        bymonth=tuple(given.get("bymonth") or ()),
        count=rule._count,
        until=rule._until.date() if rule._until else None,
        wkst=rule._wkst or None,
        bysetpos=tuple(given.get("bysetpos") or ()),
        byyearday=tuple(given.get("byyearday") or ()),
        byweekno=tuple(given.get("byweekno") or ()),
    )


def parse_rrule_string(text: str, start: date | None = None) -> RuleOptions:
    """Parse ``RRULE:FREQ=WEEKLY;BYDAY=SU`` style text with ``rrulestr``."""
    dtstart = datetime.combine(start or date.today(), time())
    try:
        rule = rrulestr(text.strip().rstrip(";"), dtstart=dtstart, ignoretz=True)
    except (ValueError, KeyError, TypeError) as e:
        raise RecurrenceConfigError(f"Malformed rule {text!r}: {e}") from e
    if not isinstance(rule, rrule):
        raise RecurrenceConfigError(f"Expected a single rule, got {text!r}")
    return _validated(options_from_rule(rule))


# ---------------------------------------------------------------------------
# Natural language phrases
# ---------------------------------------------------------------------------

RE_WORD = re.compile(r"[a-z0-9]+")
RE_UNTIL = re.compile(r"\buntil\s+(.+)$")
RE_FOR_COUNT = re.compile(r"\bfor\s+(\d+)\s*(?:times?|occurrences?)?$")
RE_ORDINAL = re.compile(r"^(\d{1,2})(?:st|nd|rd|th)?$")

_WEEKDAY_WORDS: dict[str, int] = {}
for _i, _name in enumerate(WEEKDAY_NAMES):
    _lower = _name.lower()
    _WEEKDAY_WORDS[_lower] = _i
    _WEEKDAY_WORDS[_lower + "s"] = _i
    _WEEKDAY_WORDS[_lower[:3]] = _i
_WEEKDAY_WORDS.update({"tues": 1, "weds": 2, "thur": 3, "thurs": 3})

_MONTH_WORDS: dict[str, int] = {}
for _i, _name in enumerate(MONTH_NAMES, start=1):
    _MONTH_WORDS[_name.lower()] = _i
    _MONTH_WORDS[_name.lower()[:3]] = _i
_MONTH_WORDS["sept"] = 9

_ORDINAL_WORDS = {
    "first": 1, "second": 2, "third": 3, "fourth": 4, "fifth": 5, "last": -1,
}

_FREQ_WORDS = {
    "daily": "DAILY",
    "weekly": "WEEKLY",
    "monthly": "MONTHLY",
    "yearly": "YEARLY",
    "annually": "YEARLY",
}

_UNIT_WORDS = {
    "day": "DAILY",
    "days": "DAILY",
    "week": "WEEKLY",
    "weeks": "WEEKLY",
    "month": "MONTHLY",
    "months": "MONTHLY",
    "year": "YEARLY",
    "years": "YEARLY",
}


def parse_phrase(text: str) -> RuleOptions:
    """Parse a schedule phrase into rule options.

    Raises:
        RecurrenceConfigError: if the phrase is not understood.
    """
    stripped = text.strip()
    if not stripped:
        raise RecurrenceConfigError("Empty schedule")
    if stripped.upper().startswith(("RRULE:", "FREQ=")):
        return parse_rrule_string(stripped)

    phrase = stripped.lower()
    until: date | None = None
    count: int | None = None

    m = RE_UNTIL.search(phrase)
    if m:
        try:
            until = date_parser.parse(m.group(1)).date()
        except (ValueError, OverflowError) as e:
            raise RecurrenceConfigError(f"Cannot read until date {m.group(1)!r}") from e
        phrase = phrase[: m.start()].strip()

    m = RE_FOR_COUNT.search(phrase)
    if m:
        count = int(m.group(1))
        phrase = phrase[: m.start()].strip()

    options = _PhraseParser(RE_WORD.findall(phrase)).parse()
    return _validated(replace(options, count=count, until=until))


class _PhraseParser:
    """Recursive descent over the words of a schedule phrase."""

    def __init__(self, words: list[str]) -> None:
        self.words = words
        self.pos = 0

    def peek(self, offset: int = 0) -> str | None:
        i = self.pos + offset
        return self.words[i] if i < len(self.words) else None

    def take(self) -> str:
        word = self.peek()
        if word is None:
            raise RecurrenceConfigError("Schedule ends unexpectedly")
        self.pos += 1
        return word

    def accept(self, *choices: str) -> str | None:
        if self.peek() in choices:
            return self.take()
        return None

    def parse(self) -> RuleOptions:
        self.accept("every", "each")
        options = self._head()
        while self.peek() is not None:
            options = self._modifier(options)
        return options

    def _head(self) -> RuleOptions:
        word = self.take()
        if word in _FREQ_WORDS:
            return RuleOptions(freq=_FREQ_WORDS[word])
        if word in _UNIT_WORDS:
            return RuleOptions(freq=_UNIT_WORDS[word])
        if word == "other" or word.isdigit():
            interval = 2 if word == "other" else int(word)
            unit = self.take()
            if unit not in _UNIT_WORDS:
                raise RecurrenceConfigError(f"Expected a unit after {word!r}, got {unit!r}")
            return RuleOptions(freq=_UNIT_WORDS[unit], interval=interval)
        if word in ("weekday", "weekdays"):
            return RuleOptions(freq="WEEKLY", byweekday=WORKDAYS)
        if word in _WEEKDAY_WORDS:
            self.pos -= 1
            return RuleOptions(freq="WEEKLY", byweekday=self._weekday_list())
        if word in _MONTH_WORDS:
            self.pos -= 1
            options = RuleOptions(freq="YEARLY", bymonth=self._month_list())
            if self.peek() is not None and _ordinal(self.peek()) is not None:
                options = replace(options, bymonthday=(self._day_number(),))
            return options
        raise RecurrenceConfigError(f"Unrecognised schedule word {word!r}")

    def _modifier(self, options: RuleOptions) -> RuleOptions:
        word = self.take()
        if word == "in":
            return replace(options, bymonth=options.bymonth + self._month_list())
        if word != "on":
            raise RecurrenceConfigError(f"Unexpected {word!r} in schedule")

        self.accept("the")
        nxt = self.peek()
        if nxt in ("weekday", "weekdays"):
            self.take()
            return replace(options, byweekday=options.byweekday + WORKDAYS)
        if nxt in _WEEKDAY_WORDS:
            return replace(options, byweekday=options.byweekday + self._weekday_list())
        if nxt in _MONTH_WORDS:
            options = replace(options, bymonth=options.bymonth + self._month_list())
            if self.peek() is not None and _ordinal(self.peek()) is not None:
                options = replace(
                    options, bymonthday=options.bymonthday + (self._day_number(),)
                )
            return options
        if nxt is not None and _ordinal(nxt) is not None:
            return self._ordinal_list(options)
        raise RecurrenceConfigError(f"Unexpected {nxt!r} after 'on'")

    def _ordinal_list(self, options: RuleOptions) -> RuleOptions:
        monthdays = list(options.bymonthday)
        nth = list(options.bynweekday)
        while True:
            self.accept("the")
            n = _ordinal(self.take())
            if n is None:
                raise RecurrenceConfigError("Expected an ordinal")
            if self.peek() in _WEEKDAY_WORDS:
                nth.append((n, _WEEKDAY_WORDS[self.take()]))
            else:
                self.accept("day", "days")
                monthdays.append(n)
            if self.accept("and") is None:
                break
        return replace(options, bymonthday=tuple(monthdays), bynweekday=tuple(nth))

    def _weekday_list(self) -> tuple[int, ...]:
        days = [_WEEKDAY_WORDS[self.take()]]
        while self.peek() == "and" and self.peek(1) in _WEEKDAY_WORDS or (
            self.peek() in _WEEKDAY_WORDS
        ):
            self.accept("and")
            days.append(_WEEKDAY_WORDS[self.take()])
        return tuple(days)

    def _month_list(self) -> tuple[int, ...]:
        word = self.take()
        if word not in _MONTH_WORDS:
            raise RecurrenceConfigError(f"Expected a month, got {word!r}")
        months = [_MONTH_WORDS[word]]
        while self.peek() == "and" and self.peek(1) in _MONTH_WORDS or (
            self.peek() in _MONTH_WORDS
        ):
            self.accept("and")
            months.append(_MONTH_WORDS[self.take()])
        return tuple(months)

    def _day_number(self) -> int:
        n = _ordinal(self.take())
        if n is None or n < 1:
            raise RecurrenceConfigError("Expected a day of the month")
        return n


def _ordinal(word: str) -> int | None:
    if word in _ORDINAL_WORDS:
        return _ORDINAL_WORDS[word]
    m = RE_ORDINAL.match(word)
    return int(m.group(1)) if m else None


def _validated(options: RuleOptions) -> RuleOptions:
    if options.interval < 1:
        raise RecurrenceConfigError("Interval must be at least 1")
    if options.count is not None and options.until is not None:
        raise RecurrenceConfigError("A schedule cannot have both a count and an end date")
    if options.count is not None and options.count < 1:
        raise RecurrenceConfigError("Count must be at least 1")
    for m in options.bymonth:
        if not 1 <= m <= 12:
            raise RecurrenceConfigError(f"Invalid month {m}")
    for d in options.bymonthday:
        if d == 0 or not -31 <= d <= 31:
            raise RecurrenceConfigError(f"Invalid day of month {d}")
    for d in options.byweekday:
        if not 0 <= d <= 6:
            raise RecurrenceConfigError(f"Invalid weekday {d}")
    # ordinals count weeks of the month, or of the year for yearly rules
    limit = 53 if options.freq == "YEARLY" else 5
    for n, d in options.bynweekday:
        if n == 0 or not -limit <= n <= limit or not 0 <= d <= 6:
            raise RecurrenceConfigError(f"Invalid weekday of month ({n}, {d})")
    return options


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def render_text(options: RuleOptions) -> str | None:
    """Render options as a phrase parse_phrase accepts, or None if impossible."""
    unit = _FREQ_UNITS.get(options.freq)
    if unit is None:
        return None
    if options.wkst or options.bysetpos or options.byyearday or options.byweekno:
        return None

    day_items: list[str] = []
    for d in options.bymonthday:
        if d == -1:
            day_items.append("last day")
        elif d > 0:
            day_items.append(_ordinal_suffix(d))
        else:
            return None
    for n, d in options.bynweekday:
        if n == -1:
            day_items.append(f"last {WEEKDAY_NAMES[d]}")
        elif n > 0:
            day_items.append(f"{_ordinal_suffix(n)} {WEEKDAY_NAMES[d]}")
        else:
            return None

    if (
        options.freq == "WEEKLY"
        and options.interval == 1
        and sorted(options.byweekday) == list(WORKDAYS)
        and not (options.bymonth or day_items)
    ):
        text = "every weekday"
    else:
        if options.interval == 1:
            text = f"every {unit}"
        else:
            text = f"every {options.interval} {unit}s"
        if options.bymonth:
            text += " in " + _join([MONTH_NAMES[m - 1] for m in options.bymonth])
        if options.byweekday:
            text += " on " + _join([WEEKDAY_NAMES[d] for d in options.byweekday])
        if day_items:
            text += " on the " + _join(day_items)

    if options.count is not None:
        text += f" for {options.count} times"
    if options.until is not None:
        text += f" until {options.until.isoformat()}"
    return text


def _ordinal_suffix(n: int) -> str:
    if 10 <= n % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")
    return f"{n}{suffix}"


def _join(items: list[str]) -> str:
    if len(items) == 1:
        return items[0]
    return ", ".join(items[:-1]) + " and " + items[-1]


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


class RecurrenceAdapter:
    """A task's recurrence rule with facet accessors.

    ``start`` is the date the rule is anchored to, normally the date of the
    document holding the task. An adapter built from an unparseable phrase is
    kept around so the task can report it, but ``is_valid()`` is False and
    it yields no occurrences.
    """

    def __init__(
        self,
        options: RuleOptions | None,
        start: date,
        on_change: Callable[[], None] | None = None,
        source: str = "",
    ) -> None:
        self._options = options
        self._start = start
        self._on_change = on_change
        self.source = source

    @classmethod
    def from_text(
        cls,
        text: str,
        start: date | None = None,
        on_change: Callable[[], None] | None = None,
    ) -> RecurrenceAdapter:
        start = start or date.today()
        options: RuleOptions | None
        try:
            options = parse_phrase(text)
            build_rrule(options, start)
        except (RecurrenceConfigError, ValueError) as e:
            logger.debug("Invalid schedule %r: %s", text, e)
            options = None
        return cls(options, start, on_change, source=text)

    @classmethod
    def invalid(cls, source: str, start: date | None = None) -> RecurrenceAdapter:
        return cls(None, start or date.today(), source=source)

    def __repr__(self) -> str:
        return f"RecurrenceAdapter({self.to_string() or self.source!r})"

    @property
    def start(self) -> date:
        return self._start

    @property
    def options(self) -> RuleOptions | None:
        return self._options

    def is_valid(self) -> bool:
        return self._options is not None

    def to_string(self) -> str:
        return rule_string(self.as_rrule()) if self._options is not None else ""

    def __str__(self) -> str:
        return self.to_string()

    def to_text(self) -> str:
        """Human readable phrase, or the RRULE form if no phrase expresses it."""
        if self._options is None:
            return self.source.strip()
        text = render_text(self._options)
        return text if text is not None else self.to_string()

    def as_rrule(self) -> rrule:
        if self._options is None:
            raise RecurrenceConfigError(f"Invalid schedule {self.source!r}")
        return build_rrule(self._options, self._start)

    def next(self, count: int) -> list[date]:
        """The next ``count`` occurrence dates strictly after the start date."""
        if count <= 0 or not self.is_valid():
            return []
        rule = self.as_rrule()
        after = datetime.combine(self._start, time.max)
        upcoming = (dt for dt in rule if dt > after)
        return [dt.date() for dt in islice(upcoming, count)]

    def after(self, day: date) -> date | None:
        """First occurrence strictly after the end of ``day``."""
        if not self.is_valid():
            return None
        found = self.as_rrule().after(datetime.combine(day, time.max))
        return found.date() if found is not None else None

    def last_occurrence(self) -> date | None:
        """Final date of a rule with a count or end date; None if it never ends."""
        if self._options is None:
            return None
        if self._options.count is None and self._options.until is None:
            return None
        occurrences = list(self.as_rrule())
        return occurrences[-1].date() if occurrences else None

    def pinned_text(self) -> str:
        """Phrase for a copy of the task in another document.

        A copy's rule starts at its own document's date, so a count would
        start over there. The count is replaced by the date it runs out on.
        """
        if self._options is None or self._options.count is None:
            return self.to_text()
        last = self.last_occurrence()
        if last is None:
            return self.to_text()
        options = replace(self._options, count=None, until=last)
        text = render_text(options)
        return text if text is not None else options.to_string()

    # ------------------------------------------------------------------
    # Facets
    # ------------------------------------------------------------------

    def _update(self, **changes) -> None:
        base = self._options or RuleOptions(freq=Frequency.DAILY.value)
        self._options = _validated(replace(base, **changes))
        if self._on_change is not None:
            self._on_change()

    @property
    def frequency(self) -> Frequency:
        freq = self._options.freq if self._options is not None else None
        try:
            return Frequency(freq)
        except ValueError:
            raise RecurrenceConfigError(
                f"Invalid frequency {freq} in repetition"
            ) from None

    @frequency.setter
    def frequency(self, value: Frequency | str) -> None:
        try:
            freq = Frequency(value)
        except ValueError:
            raise RecurrenceConfigError(
                f"Invalid frequency {value} requested"
            ) from None
        self._update(
            freq=freq.value,
            byweekday=(),
            bynweekday=(),
            bymonthday=(),
            bymonth=(),
            bysetpos=(),
            byyearday=(),
            byweekno=(),
        )

    @property
    def interval(self) -> int:
        return self._options.interval if self._options is not None else 1

    @interval.setter
    def interval(self, n: int | None) -> None:
        new = n or 1
        if new != self.interval:
            self._update(interval=new)

    @property
    def days_of_week(self) -> list[int]:
        return list(self._options.byweekday) if self._options is not None else []

    def set_days_of_week(self, ids: list[int]) -> None:
        self._update(
            byweekday=tuple(sorted(set(ids))), bynweekday=(), bymonthday=()
        )

    @property
    def day_of_month(self) -> int | None:
        if self._options is None or not self._options.bymonthday:
            return None
        return self._options.bymonthday[0]

    @day_of_month.setter
    def day_of_month(self, n: int) -> None:
        self._update(bymonthday=(n,), byweekday=(), bynweekday=())

    @property
    def last_day_of_month(self) -> bool:
        return self.day_of_month == -1

    @last_day_of_month.setter
    def last_day_of_month(self, value: bool) -> None:
        if value:
            self._update(bymonthday=(-1,), byweekday=(), bynweekday=())
        else:
            self._update(bymonthday=())

    @property
    def weekdays_of_month(self) -> list[tuple[int, int]]:
        """``(week ordinal, weekday)`` pairs, e.g. ``(2, 1)`` for the 2nd Tuesday."""
        return list(self._options.bynweekday) if self._options is not None else []

    def set_weekdays_of_month(self, selected: list[tuple[int, int]]) -> None:
        self._update(bynweekday=tuple(selected), bymonthday=(), byweekday=())

    @property
    def months_of_year(self) -> list[int]:
        return list(self._options.bymonth) if self._options is not None else []

    def set_months_of_year(self, ids: list[int]) -> None:
        self._update(bymonth=tuple(sorted(set(ids))))
