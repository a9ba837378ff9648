"""
Unit tests for deterministic server helpers.
These import server.py but never touch the database or network.
"""
import pytest
from fastapi import HTTPException

from server import (
    build_time_slots,
    normalize_hhmm,
    normalize_health_data_type,
    normalize_yyyy_mm_dd,
    require_canonical_schedule,
)


class TestNormalizeHhmm:

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("8:00", "08:00"),
            ("08:05", "08:05"),
            ("9:5", "09:05"),
            (" 21:30 ", "21:30"),
            ("25:00", "25:00"),
            ("noon", "noon"),
            ("", ""),
        ],
    )
    def test_normalizes_valid_times_only(self, value, expected):
        assert normalize_hhmm(value) == expected


class TestHealthDataHelpers:

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("bloodPressure", "blood_pressure"),
            ("blood_pressure", "blood_pressure"),
            ("heartRate", "heart_rate"),
            ("glucose", "glucose"),
            ("Weight", "weight"),
            ("mood", None),
            ("", None),
            (None, None),
        ],
    )
    def test_health_data_type(self, value, expected):
        assert normalize_health_data_type(value) == expected

    def test_date_bounds_must_be_iso(self):
        assert normalize_yyyy_mm_dd("2025-04-15") == "2025-04-15"
        assert normalize_yyyy_mm_dd("15/04/2025") is None


class TestTimeSlots:

    def test_half_hour_slots_skip_lunch(self):
        slots = build_time_slots(set())
        times = [s["time"] for s in slots]
        assert len(slots) == 18
        assert times[0] == "08:00" and times[-1] == "17:30"
        assert "12:00" not in times and "12:30" not in times
        assert [s["id"] for s in slots] == list(range(1, 19))
        assert all(s["available"] for s in slots)

    def test_booked_times_are_unavailable(self):
        slots = {s["time"]: s["available"] for s in build_time_slots({"09:00", "14:30"})}
        assert slots["09:00"] is False
        assert slots["14:30"] is False
        assert slots["09:30"] is True


class TestCanonicalBookingKey:

    def test_both_date_formats_share_one_slot(self):
        assert require_canonical_schedule("2030-04-15", "09:00") == require_canonical_schedule("15/04/2030", "09:00")
        assert require_canonical_schedule("2030-04-15", "09:00:00") == ("2030-04-15", "09:00")

    def test_unparseable_slot_is_a_400(self):
        with pytest.raises(HTTPException) as excinfo:
            require_canonical_schedule("2030-04-15", "25:99")
        assert excinfo.value.status_code == 400
