"""Tests for recurrence phrases, rules and the adapter facets."""

from __future__ import annotations

from datetime import date

import pytest

from slated.errors import RecurrenceConfigError
from slated.recurrence import (
    Frequency,
    RecurrenceAdapter,
    RuleOptions,
    parse_phrase,
    parse_rrule_string,
    render_text,
)

START = date(2020, 12, 31)  # a Thursday


@pytest.mark.parametrize(
    "phrase,rule",
    [
        ("Every Sunday", "RRULE:FREQ=WEEKLY;BYDAY=SU"),
        ("every day", "RRULE:FREQ=DAILY"),
        ("daily", "RRULE:FREQ=DAILY"),
        ("every other day", "RRULE:FREQ=DAILY;INTERVAL=2"),
        ("every 3 days", "RRULE:FREQ=DAILY;INTERVAL=3"),
        ("weekly", "RRULE:FREQ=WEEKLY"),
        ("every 2 weeks on Monday and Friday", "RRULE:FREQ=WEEKLY;INTERVAL=2;BYDAY=MO,FR"),
        ("every weekday", "RRULE:FREQ=WEEKLY;BYDAY=MO,TU,WE,TH,FR"),
        ("every month on the 15th", "RRULE:FREQ=MONTHLY;BYMONTHDAY=15"),
        ("every month on the last day", "RRULE:FREQ=MONTHLY;BYMONTHDAY=-1"),
        ("every 2 months on the last Friday", "RRULE:FREQ=MONTHLY;INTERVAL=2;BYDAY=-1FR"),
        ("monthly on the 1st and 15th", "RRULE:FREQ=MONTHLY;BYMONTHDAY=1,15"),
        ("every year in January on the 1st", "RRULE:FREQ=YEARLY;BYMONTH=1;BYMONTHDAY=1"),
        ("every March 3rd", "RRULE:FREQ=YEARLY;BYMONTH=3;BYMONTHDAY=3"),
        ("annually", "RRULE:FREQ=YEARLY"),
        ("every day for 3 times", "RRULE:FREQ=DAILY;COUNT=3"),
        ("every day until 2021-01-05", "RRULE:FREQ=DAILY;UNTIL=20210105T000000"),
    ],
)
def test_phrases(phrase, rule):
    assert parse_phrase(phrase).to_string() == rule


@pytest.mark.parametrize(
    "phrase",
    ["", "sometimes", "every 0 days", "every 2", "every day for 2 times until 2021-01-01",
     "every month on the 40th", "every week on the banana"],
)
def test_bad_phrases(phrase):
    with pytest.raises(RecurrenceConfigError):
        parse_phrase(phrase)


def test_raw_rule_strings():
    assert parse_phrase("RRULE:FREQ=WEEKLY;BYDAY=SU").byweekday == (6,)
    options = parse_rrule_string("FREQ=MONTHLY;INTERVAL=2;BYDAY=2TU")
    assert options == RuleOptions(freq="MONTHLY", interval=2, bynweekday=((2, 1),))


def test_raw_rule_unsupported_part():
    with pytest.raises(RecurrenceConfigError):
        parse_rrule_string("RRULE:FREQ=DAILY;BYHOUR=9")
    with pytest.raises(RecurrenceConfigError):
        parse_rrule_string("RRULE:FREQ=SOMETIMES")


@pytest.mark.parametrize(
    "text,rule,first,phrase",
    [
        ("RRULE:FREQ=WEEKLY;WKST=SU;BYDAY=SU", "RRULE:FREQ=WEEKLY;WKST=SU;BYDAY=SU",
         date(2021, 1, 3), None),
        ("FREQ=MONTHLY;BYDAY=MO,TU,WE,TH,FR;BYSETPOS=-1",
         "RRULE:FREQ=MONTHLY;BYSETPOS=-1;BYDAY=MO,TU,WE,TH,FR", date(2021, 1, 29), None),
        ("RRULE:FREQ=YEARLY;BYYEARDAY=100", "RRULE:FREQ=YEARLY;BYYEARDAY=100",
         date(2021, 4, 10), None),
        ("RRULE:FREQ=YEARLY;BYWEEKNO=1;BYDAY=MO", "RRULE:FREQ=YEARLY;BYWEEKNO=1;BYDAY=MO",
         date(2021, 1, 4), None),
        ("rrule:freq=daily;interval=3;", "RRULE:FREQ=DAILY;INTERVAL=3",
         date(2021, 1, 3), "every 3 days"),
    ],
)
def test_full_rrule_syntax(text, rule, first, phrase):
    r = RecurrenceAdapter.from_text(text, START)
    assert r.is_valid()
    assert r.to_string() == rule
    assert r.after(START) == first
    # rules no phrase can express are shown as the rule itself
    assert r.to_text() == (phrase or rule)


def test_raw_rule_round_trips_through_text():
    rule = "RRULE:FREQ=MONTHLY;BYSETPOS=-1;BYDAY=MO,TU,WE,TH,FR"
    assert parse_phrase(parse_phrase(rule).to_string()) == parse_phrase(rule)


def test_start_date_defaults_are_not_facets():
    # dateutil fills BYDAY from the start date internally; it must not leak out
    options = parse_rrule_string("RRULE:FREQ=WEEKLY", START)
    assert options == RuleOptions(freq="WEEKLY")


@pytest.mark.parametrize(
    "phrase,text",
    [
        ("Every Sunday", "every week on Sunday"),
        ("every weekday", "every weekday"),
        ("every 2 months on the last Friday", "every 2 months on the last Friday"),
        ("every year in January on the 1st", "every year in January on the 1st"),
        ("every 2 weeks on Monday, Wednesday and Friday",
         "every 2 weeks on Monday, Wednesday and Friday"),
        ("every day for 3 times", "every day for 3 times"),
        ("every day until 2021-01-05", "every day until 2021-01-05"),
    ],
)
def test_rendered_text_round_trips(phrase, text):
    options = parse_phrase(phrase)
    assert render_text(options) == text
    assert parse_phrase(text) == options


def test_render_text_not_expressible():
    assert render_text(RuleOptions(freq="HOURLY")) is None


class TestAdapter:
    def test_from_text(self):
        r = RecurrenceAdapter.from_text("Every Sunday", START)
        assert r.is_valid()
        assert r.to_text() == "every week on Sunday"
        assert r.to_string() == "RRULE:FREQ=WEEKLY;BYDAY=SU"
        assert str(r) == r.to_string()

    def test_invalid_phrase(self):
        r = RecurrenceAdapter.from_text("whenever I feel like it", START)
        assert not r.is_valid()
        assert r.to_string() == ""
        assert r.next(3) == []
        assert r.after(START) is None
        assert r.to_text() == "whenever I feel like it"

    def test_next_is_strictly_after_start(self):
        r = RecurrenceAdapter.from_text("every day", START)
        assert r.next(2) == [date(2021, 1, 1), date(2021, 1, 2)]
        r = RecurrenceAdapter.from_text("Every Sunday", START)
        assert r.next(2) == [date(2021, 1, 3), date(2021, 1, 10)]

    def test_after(self):
        r = RecurrenceAdapter.from_text("Every Sunday", START)
        assert r.after(date(2021, 1, 3)) == date(2021, 1, 10)
        r = RecurrenceAdapter.from_text("every month on the last Friday", START)
        assert r.after(START) == date(2021, 1, 29)

    def test_rule_that_ended(self):
        r = RecurrenceAdapter.from_text("every day until 2021-01-01", START)
        assert r.after(date(2021, 1, 1)) is None
        assert r.next(5) == [date(2021, 1, 1)]

    def test_frequency_not_supported(self):
        r = RecurrenceAdapter.from_text("RRULE:FREQ=HOURLY", START)
        assert r.is_valid()
        with pytest.raises(RecurrenceConfigError):
            r.frequency

    def test_frequency_reset_clears_facets(self):
        changes = []
        r = RecurrenceAdapter.from_text("Every Sunday", START, on_change=lambda: changes.append(1))
        assert r.frequency is Frequency.WEEKLY
        r.frequency = Frequency.MONTHLY
        assert r.to_string() == "RRULE:FREQ=MONTHLY"
        assert changes == [1]

    def test_interval_coerced_and_only_fires_on_change(self):
        changes = []
        r = RecurrenceAdapter.from_text("every week", START, on_change=lambda: changes.append(1))
        r.interval = 0
        r.interval = None
        assert r.interval == 1
        assert changes == []
        r.interval = 2
        assert r.interval == 2
        assert changes == [1]

    def test_mutually_exclusive_day_facets(self):
        r = RecurrenceAdapter.from_text("every month", START)
        r.set_days_of_week([0, 2])
        assert r.days_of_week == [0, 2]
        r.day_of_month = 15
        assert r.day_of_month == 15
        assert r.days_of_week == []
        r.set_weekdays_of_month([(2, 1)])
        assert r.weekdays_of_month == [(2, 1)]
        assert r.day_of_month is None
        assert r.to_text() == "every month on the 2nd Tuesday"
        r.last_day_of_month = True
        assert r.last_day_of_month
        assert r.weekdays_of_month == []
        r.last_day_of_month = False
        assert r.day_of_month is None

    def test_months_of_year(self):
        r = RecurrenceAdapter.from_text("every year", START)
        r.set_months_of_year([6, 1, 6])
        assert r.months_of_year == [1, 6]
        assert r.to_text() == "every year in January and June"

    def test_invalid_mutation_rejected(self):
        r = RecurrenceAdapter.from_text("every month", START)
        with pytest.raises(RecurrenceConfigError):
            r.day_of_month = 42

    def test_last_occurrence(self):
        assert RecurrenceAdapter.from_text("every day", START).last_occurrence() is None
        r = RecurrenceAdapter.from_text("every day for 2 times", START)
        assert r.last_occurrence() == date(2021, 1, 1)
        r = RecurrenceAdapter.from_text("Every Sunday for 2 times", START)
        assert r.last_occurrence() == date(2021, 1, 10)

    def test_pinned_text_turns_count_into_end_date(self):
        r = RecurrenceAdapter.from_text("every day for 2 times", START)
        assert r.pinned_text() == "every day until 2021-01-01"
        # the start date is itself the last weekday of December
        r = RecurrenceAdapter.from_text(
            "RRULE:FREQ=MONTHLY;BYSETPOS=-1;BYDAY=MO,TU,WE,TH,FR;COUNT=2", START
        )
        assert r.pinned_text() == (
            "RRULE:FREQ=MONTHLY;UNTIL=20210129T000000;BYSETPOS=-1;BYDAY=MO,TU,WE,TH,FR"
        )

    def test_pinned_text_without_count(self):
        assert RecurrenceAdapter.from_text("Every Sunday", START).pinned_text() == "every week on Sunday"
