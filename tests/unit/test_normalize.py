"""Unit tests for wh40k_etl.normalize."""

from datetime import datetime, timedelta, timezone

from wh40k_etl.normalize import (
    dash_to_none,
    format_marker,
    parse_marker,
    text,
    to_bool_int,
    to_int,
    trim,
)


# ---------------------------------------------------------------------------
# trim / text
# ---------------------------------------------------------------------------

class TestTrim:
    def test_strips_whitespace(self):
        assert trim("  Adeptus Astartes  ") == "Adeptus Astartes"

    def test_empty_string_returns_none(self):
        assert trim("") is None

    def test_whitespace_only_returns_none(self):
        assert trim("   ") is None

    def test_none_returns_none(self):
        assert trim(None) is None

    def test_text_keeps_html(self):
        assert text(' <b>"Deep Strike"</b> ') == '<b>"Deep Strike"</b>'


# ---------------------------------------------------------------------------
# to_int
# ---------------------------------------------------------------------------

class TestToInt:
    def test_plain(self):
        assert to_int("42") == 42

    def test_leading_zeros(self):
        assert to_int("000000042") == 42

    def test_integral_decimal(self):
        assert to_int("3.0") == 3

    def test_signed(self):
        assert to_int("-7") == -7

    def test_non_numeric_is_none(self):
        assert to_int("abc") is None

    def test_fractional_is_none(self):
        assert to_int("3.5") is None

    def test_empty_is_none(self):
        assert to_int("") is None

    def test_none_is_none(self):
        assert to_int(None) is None

    def test_int_passthrough(self):
        assert to_int(5) == 5


# ---------------------------------------------------------------------------
# to_bool_int
# ---------------------------------------------------------------------------

class TestToBoolInt:
    def test_true_lowercase(self):
        assert to_bool_int("true") == 1

    def test_true_any_case(self):
        assert to_bool_int("TRUE") == 1
        assert to_bool_int(" True ") == 1

    def test_false(self):
        assert to_bool_int("false") == 0

    def test_empty(self):
        assert to_bool_int("") == 0

    def test_none(self):
        assert to_bool_int(None) == 0

    def test_other_values_are_zero(self):
        assert to_bool_int("yes") == 0
        assert to_bool_int("1") == 0


# ---------------------------------------------------------------------------
# dash_to_none
# ---------------------------------------------------------------------------

class TestDashToNone:
    def test_dash(self):
        assert dash_to_none("-") is None

    def test_padded_dash(self):
        assert dash_to_none(" - ") is None

    def test_value_kept(self):
        assert dash_to_none("4+") == "4+"

    def test_empty(self):
        assert dash_to_none("") is None


# ---------------------------------------------------------------------------
# parse_marker / format_marker
# ---------------------------------------------------------------------------

class TestParseMarker:
    def test_zulu(self):
        assert parse_marker("2024-05-01T00:00:00Z") == datetime(2024, 5, 1, tzinfo=timezone.utc)

    def test_space_separated_naive_is_utc(self):
        assert parse_marker("2024-05-01 12:30:00") == datetime(
            2024, 5, 1, 12, 30, tzinfo=timezone.utc
        )

    def test_offset_converted_to_utc(self):
        ts = parse_marker("2024-05-01T02:00:00+02:00")
        assert ts == datetime(2024, 5, 1, tzinfo=timezone.utc)
        assert ts.utcoffset() == timedelta(0)

    def test_one_digit_fraction(self):
        assert parse_marker("2024-05-01T10:00:00.1Z") == datetime(
            2024, 5, 1, 10, 0, 0, 100000, tzinfo=timezone.utc
        )

    def test_long_fraction_truncated_to_microseconds(self):
        assert parse_marker("2024-05-01 10:00:00.12345678") == datetime(
            2024, 5, 1, 10, 0, 0, 123456, tzinfo=timezone.utc
        )

    def test_garbage_is_none(self):
        assert parse_marker("not a date") is None

    def test_none(self):
        assert parse_marker(None) is None


class TestFormatMarker:
    def test_zulu_suffix(self):
        assert format_marker(datetime(2024, 5, 1, tzinfo=timezone.utc)) == "2024-05-01T00:00:00Z"

    def test_keeps_sub_second_precision(self):
        ts = datetime(2024, 5, 1, 0, 0, 0, 123456, tzinfo=timezone.utc)
        assert parse_marker(format_marker(ts)) == ts

    def test_naive_treated_as_utc(self):
        assert format_marker(datetime(2024, 5, 1)) == "2024-05-01T00:00:00Z"
