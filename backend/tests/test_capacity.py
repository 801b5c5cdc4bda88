from decimal import Decimal
from types import SimpleNamespace

import pytest

from duka.services.capacity import (
    build_capacity_report, capacity_node, category_usage, status_for, utilization,
)


def test_utilization_example():
    percent, misconfigured, over = utilization(6500, 10000)
    assert percent == 65.0
    assert not misconfigured and not over
    assert status_for(percent) == "normal"


@pytest.mark.parametrize("used,expected", [
    (7000, "normal"),
    (7001, "warning"),
    (9000, "warning"),
    (9001, "alert"),
    (10000, "alert"),
])
def test_status_thresholds(used, expected):
    percent, _, _ = utilization(used, 10000)
    assert status_for(percent) == expected


@pytest.mark.parametrize("capacity", [0, None, Decimal("0"), -5])
def test_zero_capacity_is_flagged_not_raised(capacity):
    percent, misconfigured, over = utilization(120, capacity)
    assert percent == 0.0
    assert misconfigured
    assert not over


def test_over_capacity_is_clamped():
    node = capacity_node(1, "Shelf", 100, 130)
    assert node.utilization == 100.0
    assert node.over_capacity
    assert node.status == "alert"
    assert node.used == Decimal("130")


def test_utilization_stays_in_range():
    for used in (0, 1, 33, 99, 100, 250, -4):
        percent, _, _ = utilization(used, 100)
        assert 0 <= percent <= 100


def test_rounding_to_two_places():
    percent, _, _ = utilization(1, 3)
    assert percent == 33.33


def test_category_usage_shares():
    rows = [(2, "Snacks", 10), (1, "Drinks", 30), (None, None, 0)]
    usage = category_usage(rows)
    assert [u.category_name for u in usage] == ["Drinks", "Snacks", "未分类"]
    assert usage[0].share == 75.0
    assert usage[1].share == 25.0
    assert usage[2].share == 0.0


def test_capacity_report_does_not_mutate():
    zone = SimpleNamespace(id=1, name="Dry", capacity=Decimal("800"), capacity_used=Decimal("600"))
    unit = SimpleNamespace(id=2, name="Shelf A", capacity=Decimal("0"), capacity_used=Decimal("10"))
    location = SimpleNamespace(
        id=9, name="Main", total_capacity=Decimal("10000"), capacity_used=Decimal("6500"),
        zones=[zone], units=[unit],
    )
    report = build_capacity_report(location, [(1, "Drinks", 50)])

    assert report.warehouse.utilization == 65.0
    assert report.warehouse.status == "normal"
    assert report.zones[0].utilization == 75.0
    assert report.zones[0].status == "warning"
    assert report.units[0].misconfigured
    assert report.categories[0].share == 100.0
    assert location.capacity_used == Decimal("6500")
    assert zone.capacity_used == Decimal("600")
