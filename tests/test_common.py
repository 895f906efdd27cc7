"""
Tests for eld_integration_hub.common quarter and geography helpers.
"""

from datetime import date

import pytest
from pydantic import ValidationError

from eld_integration_hub.common.geo import (
    bounding_box,
    extract_state,
    haversine_km,
    haversine_miles,
    jurisdiction_name,
)
from eld_integration_hub.common.quarters import (
    Quarter,
    format_quarter,
    month_to_quarter,
    parse_quarter,
    previous_quarter,
    quarter_date_range,
    quarter_for_date,
    quarter_months,
)


class TestQuarters:
    """Test quarter parsing and arithmetic."""

    def test_parse_is_lenient_about_case_and_padding(self) -> None:
        assert parse_quarter(' 2024-q3 ') == Quarter(year=2024, number=3)

    @pytest.mark.parametrize('value', ['2024-Q0', '2024-Q5', '2024Q1', 'Q1-2024', ''])
    def test_parse_rejects_malformed(self, value: str) -> None:
        with pytest.raises(ValueError, match='Invalid quarter'):
            parse_quarter(value)

    def test_quarter_bounds(self) -> None:
        """Should know the first, middle and last day of the quarter."""
        quarter: Quarter = parse_quarter('2024-Q1')

        assert quarter.period_keys() == ('2024-01', '2024-02', '2024-03')
        assert quarter.start_date == date(2024, 1, 1)
        assert quarter.end_date == date(2024, 3, 31)
        assert quarter.mid_date == date(2024, 2, 15)
        assert quarter_months('2024-Q4') == ('2024-10', '2024-12')
        assert quarter_date_range('2023-Q1') == (date(2023, 1, 1), date(2023, 3, 31))

    def test_previous_rolls_over_year(self) -> None:
        assert str(previous_quarter('2024-Q1')) == '2023-Q4'
        assert str(parse_quarter('2024-Q3').previous()) == '2024-Q2'

    def test_month_to_quarter(self) -> None:
        assert month_to_quarter('2024-05') == '2024-Q2'
        assert month_to_quarter('2024-12') == '2024-Q4'
        with pytest.raises(ValueError, match='out of range'):
            month_to_quarter('2024-13')

    def test_quarter_for_date(self) -> None:
        assert quarter_for_date(date(2024, 9, 30)) == Quarter(year=2024, number=3)
        assert format_quarter(2025, 1) == '2025-Q1'

    def test_number_validated(self) -> None:
        with pytest.raises(ValidationError):
            Quarter(year=2024, number=5)


class TestGeo:
    """Test distance, bounds and address helpers."""

    def test_one_degree_of_longitude_at_equator(self) -> None:
        assert haversine_km(0, 0, 0, 1) == pytest.approx(111.19, abs=0.01)
        assert haversine_miles(0, 0, 0, 1) == pytest.approx(69.1, abs=0.01)

    def test_same_point_is_zero(self) -> None:
        assert haversine_km(32.78, -96.8, 32.78, -96.8) == 0.0

    def test_bounding_box(self) -> None:
        box = bounding_box([(30.0, -100.0), (40.0, -90.0)])

        assert box is not None
        assert (box.southwest.lat, box.southwest.lng) == (30.0, -100.0)
        assert (box.center.lat, box.center.lng) == (35.0, -95.0)
        assert bounding_box([]) is None

    @pytest.mark.parametrize(
        ('address', 'expected'),
        [
            ('123 Main St, Dallas, TX 75201', 'TX'),
            ('Exit 12, Tulsa, OK, USA', 'OK'),
            ('Interstate 70, Kansas', 'KS'),
            ('Route 50, West Virginia', 'WV'),
            ('Somewhere in the ocean', None),
            (None, None),
        ],
    )
    def test_extract_state(self, address: str | None, expected: str | None) -> None:
        assert extract_state(address) == expected

    def test_jurisdiction_name(self) -> None:
        assert jurisdiction_name('tx') == 'Texas'
        assert jurisdiction_name('ZZ') == 'ZZ'
