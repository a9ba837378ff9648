"""
Unit tests for appointment date/time parsing and classification.
These run without a database or network.
"""
import logging
from datetime import datetime

import pytest

from appointment_schedule import (
    DateFormat,
    ParseError,
    canonical_schedule,
    classify_appointments,
    detect_date_format,
    parse_appointment_datetime,
    parse_calendar_date,
    select_nearest_appointment,
)

NOW = datetime(2025, 4, 15, 10, 0, 0)


class TestDateFormatDetection:

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("15/04/2025", DateFormat.SLASH),
            ("2025-04-15", DateFormat.DASH),
            ("15.04.2025", DateFormat.INVALID),
            ("20250415", DateFormat.INVALID),
            ("", DateFormat.INVALID),
            (None, DateFormat.INVALID),
        ],
    )
    def test_detects_separator(self, value, expected):
        assert detect_date_format(value) is expected


class TestParseAppointmentDatetime:

    def test_slash_and_dash_formats_agree(self):
        assert parse_appointment_datetime("15/04/2025", "14:30") == parse_appointment_datetime("2025-04-15", "14:30")

    def test_pads_single_digit_hour_and_minute(self):
        assert parse_appointment_datetime("2025-04-15", "9:5") == datetime(2025, 4, 15, 9, 5, 0)

    def test_seconds_default_to_zero(self):
        assert parse_appointment_datetime("1/2/2025", "08:00").second == 0

    def test_accepts_explicit_seconds(self):
        assert parse_appointment_datetime("2025-04-15", "08:00:30") == datetime(2025, 4, 15, 8, 0, 30)

    def test_result_is_naive_local_time(self):
        assert parse_appointment_datetime("2025-04-15", "08:00").tzinfo is None

    def test_strips_surrounding_whitespace(self):
        assert parse_appointment_datetime(" 2025-04-15 ", " 08:00 ") == datetime(2025, 4, 15, 8, 0)

    @pytest.mark.parametrize(
        "date_value, time_value",
        [
            (None, "10:00"),
            ("2025-04-15", None),
            ("", "10:00"),
            ("2025-04-15", ""),
            ("15.04.2025", "10:00"),
            ("2025-13-01", "10:00"),
            ("30/02/2025", "10:00"),
            ("2025-04-15", "25:99"),
            ("2025-04-15", "10"),
            ("2025-04-15", "ten:30"),
            ("2025-04", "10:00"),
            ("aa/bb/cccc", "10:00"),
        ],
    )
    def test_invalid_values_raise_parse_error(self, date_value, time_value):
        with pytest.raises(ParseError) as excinfo:
            parse_appointment_datetime(date_value, time_value)
        assert excinfo.value.date_value == date_value
        assert excinfo.value.time_value == time_value

    def test_parse_error_is_a_value_error(self):
        with pytest.raises(ValueError):
            parse_appointment_datetime("2025/04", "10:00")

    def test_parse_calendar_date_is_midnight(self):
        assert parse_calendar_date("15/04/2025") == datetime(2025, 4, 15, 0, 0)


class TestCanonicalSchedule:

    @pytest.mark.parametrize(
        "date_value, time_value",
        [
            ("2030-04-15", "09:00"),
            ("15/04/2030", "09:00"),
            ("2030-04-15", "09:00:00"),
            ("15/4/2030", "9:0"),
        ],
    )
    def test_same_instant_has_one_key(self, date_value, time_value):
        assert canonical_schedule(date_value, time_value) == ("2030-04-15", "09:00")

    def test_invalid_slot_raises_parse_error(self):
        with pytest.raises(ParseError):
            canonical_schedule("2030-04-15", "25:99")


class TestClassifyAppointments:

    def test_mixed_formats_example(self):
        afternoon = {"id": "a", "date": "2025-04-15", "time": "14:30"}
        morning = {"id": "b", "date": "15/04/2025", "time": "09:00"}

        partition = classify_appointments([afternoon, morning], now=NOW)

        assert partition.upcoming == [afternoon]
        assert partition.past == [morning]
        assert select_nearest_appointment([afternoon, morning], now=NOW) is afternoon

    def test_exactly_now_is_upcoming(self):
        record = {"id": "now", "date": "2025-04-15", "time": "10:00"}
        partition = classify_appointments([record], now=NOW)
        assert partition.upcoming == [record]
        assert partition.past == []

    def test_preserves_input_order(self):
        records = [
            {"id": "3", "date": "2025-05-01", "time": "09:00"},
            {"id": "1", "date": "2025-04-01", "time": "09:00"},
            {"id": "4", "date": "16/04/2025", "time": "08:00"},
            {"id": "2", "date": "2025-04-10", "time": "09:00"},
        ]
        partition = classify_appointments(records, now=NOW)
        assert [r["id"] for r in partition.upcoming] == ["3", "4"]
        assert [r["id"] for r in partition.past] == ["1", "2"]

    def test_classification_is_idempotent(self):
        records = [
            {"id": "a", "date": "2025-04-15", "time": "14:30"},
            {"id": "b", "date": "15/04/2025", "time": "09:00"},
            {"id": "c", "date": "2025-04-15", "time": "25:99"},
        ]
        assert classify_appointments(records, now=NOW) == classify_appointments(records, now=NOW)

    def test_malformed_record_is_dropped_and_logged(self, caplog):
        good_future = {"id": "ok1", "date": "2025-04-16", "time": "10:00"}
        bad = {"id": "bad", "date": "2025-04-16", "time": "25:99"}
        good_past = {"id": "ok2", "date": "2025-04-14", "time": "10:00"}

        with caplog.at_level(logging.WARNING, logger="appointment_schedule"):
            partition = classify_appointments([good_future, bad, good_past], now=NOW)

        assert partition.upcoming == [good_future]
        assert partition.past == [good_past]
        assert "bad" in caplog.text

    def test_records_missing_fields_are_dropped(self):
        partition = classify_appointments([{"id": "x"}, {"id": "y", "date": "2025-04-16"}], now=NOW)
        assert partition.upcoming == []
        assert partition.past == []

    def test_accepts_attribute_records(self):
        class Record:
            def __init__(self, date, time):
                self.id = "obj"
                self.date = date
                self.time = time

        record = Record("2025-04-20", "11:00")
        assert classify_appointments([record], now=NOW).upcoming == [record]

    def test_empty_input(self):
        partition = classify_appointments([], now=NOW)
        assert partition.upcoming == [] and partition.past == []

    def test_non_list_input_raises(self):
        with pytest.raises(TypeError):
            classify_appointments({"date": "2025-04-15", "time": "10:00"}, now=NOW)


class TestSelectNearestAppointment:

    def test_picks_smallest_positive_delta(self):
        records = [
            {"id": "far", "date": "2025-06-01", "time": "09:00"},
            {"id": "near", "date": "16/04/2025", "time": "08:00"},
            {"id": "past", "date": "2025-04-15", "time": "09:59"},
        ]
        assert select_nearest_appointment(records, now=NOW)["id"] == "near"

    def test_tie_keeps_first_in_input_order(self):
        first = {"id": "first", "date": "2025-04-20", "time": "10:00"}
        second = {"id": "second", "date": "20/04/2025", "time": "10:00"}
        assert select_nearest_appointment([first, second], now=NOW) is first

    def test_exactly_now_is_selected(self):
        record = {"id": "now", "date": "15/04/2025", "time": "10:00"}
        later = {"id": "later", "date": "2025-04-15", "time": "10:01"}
        assert select_nearest_appointment([later, record], now=NOW) is record

    def test_returns_none_when_nothing_upcoming(self):
        records = [{"id": "past", "date": "2025-04-14", "time": "10:00"}]
        assert select_nearest_appointment(records, now=NOW) is None
        assert select_nearest_appointment([], now=NOW) is None

    def test_skips_unparseable_records(self):
        records = [
            {"id": "bad", "date": "2025-04-15", "time": "25:99"},
            {"id": "good", "date": "2025-04-15", "time": "11:00"},
        ]
        assert select_nearest_appointment(records, now=NOW)["id"] == "good"

    def test_non_list_input_raises(self):
        with pytest.raises(TypeError):
            select_nearest_appointment(None, now=NOW)
