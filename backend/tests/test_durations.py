"""Tests for durations.py: descriptor duration parsing."""

import pytest

from durations import format_duration, parse_duration
from error_handler import ConfigurationError


@pytest.mark.parametrize("value,expected", [
    ("250ms", 0.25),
    ("30s", 30.0),
    ("5m", 300.0),
    ("6h", 21600.0),
    ("1d", 86400.0),
    ("1500", 1.5),
    (1500, 1.5),
    ("0s", 0.0),
])
def test_parse_duration(value, expected):
    assert parse_duration(value) == pytest.approx(expected)


@pytest.mark.parametrize("value", ["", "5 minutes", "1w", "-5s", "1.5h", "h", None, 2.5, True, -1])
def test_parse_duration_rejects_invalid(value):
    with pytest.raises(ConfigurationError):
        parse_duration(value)


def test_error_names_the_field():
    with pytest.raises(ConfigurationError) as exc_info:
        parse_duration("soon", field="syncTitleDetails.timeout")
    assert "syncTitleDetails.timeout" in str(exc_info.value)
    assert exc_info.value.http_status == 400


def test_format_duration_uses_largest_whole_unit():
    assert format_duration(86400) == "1d"
    assert format_duration(7200) == "2h"
    assert format_duration(90) == "90s"
    assert format_duration(0.25) == "250ms"
    assert format_duration(0) == "0ms"
