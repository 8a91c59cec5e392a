"""
Attribution Aggregation Tests (Unit)
====================================

WHAT: Unit tests for the pure report math: summary, groupings, daily buckets, funnel, date window.
WHY: Reports must stay lossless and zero-guarded for any lead set, including empty ones.

NOTE:
These tests live outside `backend/app/tests/` to avoid loading the integration-test
`conftest.py`; leads are plain SimpleNamespace objects, no database involved.

REFERENCES:
- backend/app/services/attribution_engine.py
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

from app.exceptions import InvalidDateRangeError
from app.models import LeadStatusEnum
from app.services.attribution_engine import (
    build_report,
    default_date_window,
    funnel_analysis,
    group_by_campaign,
    group_by_source,
    group_by_timeframe,
    group_conversions_by_channel,
    parse_report_range,
    summarize,
)


def lead(status="NEW", source=None, medium=None, campaign=None, order_value=None,
         created_at=datetime(2024, 6, 1, 10), conversion_date=None):
    return SimpleNamespace(
        status=status,
        utm_source=source,
        utm_medium=medium,
        utm_campaign=campaign,
        order_value=order_value,
        created_at=created_at,
        conversion_date=conversion_date,
    )


SCENARIO = [
    lead(status="NEW"),
    lead(status="CONVERTED", order_value=299),
    lead(status="CONVERTED", order_value=399),
    lead(status="CONTACTED"),
]


def test_summary_scenario() -> None:
    summary = summarize(SCENARIO)

    assert summary.total_leads == 4
    assert summary.converted_leads == 2
    assert summary.conversion_rate == 50
    assert summary.total_revenue == 698
    assert summary.average_order_value == 349


def test_summary_accepts_enum_status_and_decimal_values() -> None:
    leads = [lead(status=LeadStatusEnum.converted, order_value=Decimal("10.50"))]

    summary = summarize(leads)

    assert summary.converted_leads == 1
    assert summary.total_revenue == 10.5


def test_empty_input_is_all_zero() -> None:
    summary = summarize([])

    assert summary.total_leads == 0
    assert summary.conversion_rate == 0
    assert summary.average_order_value == 0
    assert group_by_source([]) == []
    assert [stage.leads for stage in funnel_analysis([])] == [0, 0, 0, 0]
    assert all(stage.drop_off_rate == 0 for stage in funnel_analysis([]))


def test_converted_without_order_value_counts_as_zero_revenue() -> None:
    summary = summarize([lead(status="CONVERTED", order_value=None)])

    assert summary.converted_leads == 1
    assert summary.total_revenue == 0
    assert summary.average_order_value == 0


def test_non_iterable_input_raises() -> None:
    with pytest.raises(TypeError):
        summarize(None)


def test_group_by_source_defaults_and_partition() -> None:
    leads = [
        lead(source="facebook", medium="paid-social", status="CONVERTED", order_value=100),
        lead(source="facebook", medium="paid-social"),
        lead(source=None, medium=None, status="CONVERTED", order_value=50),
        lead(source="google", medium=None),
    ]

    groups = {(g.source, g.medium): g for g in group_by_source(leads)}

    assert set(groups) == {("facebook", "paid-social"), ("direct", "organic"), ("google", "organic")}
    fb = groups[("facebook", "paid-social")]
    assert (fb.leads, fb.conversions, fb.conversion_rate, fb.revenue, fb.average_order_value) == (2, 1, 50, 100, 100)
    assert sum(g.leads for g in groups.values()) == len(leads)
    assert sum(g.conversions for g in groups.values()) == summarize(leads).converted_leads


def test_group_by_campaign_keys_include_campaign() -> None:
    leads = [
        lead(source="facebook", medium="paid-social", campaign="Summer"),
        lead(source="facebook", medium="paid-social", campaign="Winter"),
        lead(source="facebook", medium="paid-social"),
    ]

    keys = [(g.campaign, g.source, g.medium) for g in group_by_campaign(leads)]

    assert keys == [
        ("Summer", "facebook", "paid-social"),
        ("Winter", "facebook", "paid-social"),
        ("none", "facebook", "paid-social"),
    ]


def test_timeframe_covers_every_day_in_range() -> None:
    days = group_by_timeframe([], datetime(2024, 6, 1), datetime(2024, 6, 30, 23, 59, 59))

    assert len(days) == 30
    assert days[0].date == "2024-06-01"
    assert days[-1].date == "2024-06-30"
    assert all(d.leads == 0 and d.conversions == 0 for d in days)


def test_timeframe_uses_creation_and_conversion_dates_separately() -> None:
    leads = [
        lead(
            status="CONVERTED",
            order_value=120,
            created_at=datetime(2024, 6, 1, 10),
            conversion_date=datetime(2024, 6, 3, 18),
        ),
        # Converted after the range: lead counted, conversion dropped
        lead(
            status="CONVERTED",
            order_value=80,
            created_at=datetime(2024, 6, 2, 10),
            conversion_date=datetime(2024, 7, 9),
        ),
        # Created before the range
        lead(created_at=datetime(2024, 5, 20)),
    ]

    days = {d.date: d for d in group_by_timeframe(leads, datetime(2024, 6, 1), datetime(2024, 6, 3, 23, 59))}

    assert (days["2024-06-01"].leads, days["2024-06-01"].conversions) == (1, 0)
    assert (days["2024-06-02"].leads, days["2024-06-02"].conversions) == (1, 0)
    assert (days["2024-06-03"].leads, days["2024-06-03"].conversions, days["2024-06-03"].revenue) == (0, 1, 120)


def test_timeframe_buckets_aware_datetimes_in_utc() -> None:
    # 2024-06-02 01:00 at +03:00 is 2024-06-01 22:00 UTC
    created = datetime(2024, 6, 2, 1, 0, tzinfo=timezone(timedelta(hours=3)))

    days = {d.date: d for d in group_by_timeframe([lead(created_at=created)], datetime(2024, 6, 1), datetime(2024, 6, 2))}

    assert days["2024-06-01"].leads == 1
    assert days["2024-06-02"].leads == 0


def test_funnel_one_lead_per_stage() -> None:
    stages = funnel_analysis([lead(status=s) for s in ("NEW", "CONTACTED", "QUALIFIED", "CONVERTED")])

    assert [s.stage for s in stages] == ["Lead Generated", "Contacted", "Qualified", "Converted"]
    assert [s.leads for s in stages] == [4, 3, 2, 1]
    assert [s.conversion_rate for s in stages] == [100, 75, 50, 25]
    assert [s.drop_off_rate for s in stages] == [0, 25, 50, 75]


def test_funnel_counts_closed_as_contacted_and_qualified() -> None:
    stages = funnel_analysis([lead(status="CLOSED")])

    assert [s.leads for s in stages] == [1, 1, 1, 0]


def test_channel_conversions_skip_unconverted() -> None:
    channels = group_conversions_by_channel([
        lead(status="CONVERTED", source="facebook", medium="paid-social", campaign="Summer", order_value=10),
        lead(status="CONVERTED", source="facebook", medium="paid-social", campaign="Summer", order_value=5),
        lead(status="NEW", source="facebook", medium="paid-social", campaign="Summer"),
    ])

    assert len(channels) == 1
    assert (channels[0].conversions, channels[0].revenue) == (2, 15)


def test_default_date_window() -> None:
    now = datetime(2024, 6, 30, 12, 0)

    assert default_date_window(now) == (datetime(2024, 5, 31, 12, 0), now)


def test_parse_report_range_date_only_bounds() -> None:
    start, end = parse_report_range("2024-06-01", "2024-06-30")

    assert start == datetime(2024, 6, 1, 0, 0, 0)
    assert end == datetime(2024, 6, 30, 23, 59, 59, 999999)


def test_parse_report_range_normalizes_timezones() -> None:
    start, _ = parse_report_range("2024-06-01T03:00:00+03:00", "2024-06-02T00:00:00Z")

    assert start == datetime(2024, 6, 1, 0, 0, 0)


def test_parse_report_range_defaults() -> None:
    now = datetime(2024, 6, 30, 12, 0)

    assert parse_report_range(None, None, now=now, window_days=7) == (datetime(2024, 6, 23, 12, 0), now)


def test_parse_report_range_to_only_reaches_back_one_window() -> None:
    start, end = parse_report_range(None, "2024-05-01", now=datetime(2024, 7, 1, 12), window_days=30)

    assert end == datetime(2024, 5, 1, 23, 59, 59, 999999)
    assert start == end - timedelta(days=30)


def test_parse_report_range_from_only_runs_to_now() -> None:
    now = datetime(2024, 7, 1, 12)

    assert parse_report_range("2024-06-01", None, now=now) == (datetime(2024, 6, 1), now)


def test_parse_report_range_future_from_only_is_empty_window() -> None:
    start, end = parse_report_range("2024-08-01", None, now=datetime(2024, 7, 1, 12))

    assert start == end == datetime(2024, 8, 1)
    assert [d.date for d in group_by_timeframe([], start, end)] == ["2024-08-01"]


def test_parse_report_range_to_only_near_minimum_date() -> None:
    start, end = parse_report_range(None, "0001-01-05", now=datetime(2024, 7, 1))

    assert start == datetime.min
    assert end.date().isoformat() == "0001-01-05"


def test_parse_report_range_rejects_huge_span() -> None:
    with pytest.raises(InvalidDateRangeError):
        parse_report_range("0001-01-01", "9999-12-31")


def test_timeframe_stops_at_last_representable_day() -> None:
    days = group_by_timeframe([], datetime(9999, 12, 30), datetime.max)

    assert [d.date for d in days] == ["9999-12-30", "9999-12-31"]


@pytest.mark.parametrize("date_from,date_to", [("2024-13-01", None), ("yesterday", None), ("2024-06-30", "2024-06-01")])
def test_parse_report_range_rejects_bad_input(date_from, date_to) -> None:
    with pytest.raises(InvalidDateRangeError):
        parse_report_range(date_from, date_to, now=datetime(2024, 7, 1))


def test_build_report_date_range_is_utc() -> None:
    report = build_report(SCENARIO, datetime(2024, 6, 1), datetime(2024, 6, 2, 23, 59, 59))
    data = report.model_dump(by_alias=True)

    assert data["dateRange"]["from"] == datetime(2024, 6, 1, tzinfo=timezone.utc)
    assert len(data["byTimeframe"]) == 2
    assert sum(row["leads"] for row in data["bySource"]) == 4
