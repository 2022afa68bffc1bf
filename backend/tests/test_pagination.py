from datetime import datetime, timezone
from types import SimpleNamespace

import httpx
import pytest

from restocking_report import restocking
from restocking_report.restocking import PAGE_SIZE, fetch_orders_in_range

from shopify_fakes import FakeShopify, line_item, order, product, variant

pytestmark = pytest.mark.anyio

START = datetime(2024, 1, 1, tzinfo=timezone.utc)
END = datetime(2024, 1, 31, 23, 59, 59, 999000, tzinfo=timezone.utc)


def _in_window(day: int, qty: int = 1):
    return order(f"2024-01-{day:02d}T12:00:00Z", line_item(qty, product(), variant()))


async def test_follows_cursor_until_last_page():
    fake = FakeShopify([
        [_in_window(30), _in_window(29)],
        [_in_window(20)],
        [_in_window(5), order("2023-12-31T23:59:59Z")],
    ])

    result = await fetch_orders_in_range(fake.client(), START, END, page_delay=0)

    assert fake.cursors == [None, "page-1", "page-2"]
    assert all(r["variables"]["first"] == PAGE_SIZE for r in fake.requests)
    assert result.pages_fetched == 3
    assert [o["createdAt"] for o in result.orders] == [
        "2024-01-30T12:00:00Z",
        "2024-01-29T12:00:00Z",
        "2024-01-20T12:00:00Z",
        "2024-01-05T12:00:00Z",
    ]
    assert result.complete
    assert result.error is None


async def test_filters_newer_and_older_orders_out():
    fake = FakeShopify([[
        order("2024-02-01T00:00:00Z"),
        order("2024-01-31T23:59:59.999Z"),
        order("2024-01-01T00:00:00Z"),
        order("2023-12-31T23:59:59.999Z"),
        order(None),
    ]])

    result = await fetch_orders_in_range(fake.client(), START, END, page_delay=0)

    assert [o["createdAt"] for o in result.orders] == ["2024-01-31T23:59:59.999Z", "2024-01-01T00:00:00Z"]


async def test_stops_at_order_cap():
    fake = FakeShopify([[_in_window(20)] * 4 for _ in range(5)])

    result = await fetch_orders_in_range(fake.client(), START, END, page_delay=0, max_orders=5)

    assert len(result.orders) == 5
    assert result.pages_fetched == 2
    assert result.capped
    assert not result.complete


async def test_default_cap_never_exceeds_one_thousand_orders():
    fake = FakeShopify([[_in_window(15)] * PAGE_SIZE for _ in range(25)])

    result = await fetch_orders_in_range(fake.client(), START, END, page_delay=0)

    assert len(result.orders) == 1000
    assert result.pages_fetched == 20
    assert len(fake.requests) == 20


@pytest.mark.parametrize(
    "failure, expected",
    [
        (httpx.Response(500, text="oops"), "HTTP 500"),
        (httpx.Response(200, json={"errors": [{"message": "Field 'bogus' doesn't exist"}]}), "GraphQL errors"),
        (httpx.ConnectError("connection refused"), "Shopify request failed"),
        (httpx.Response(429), "throttling"),
    ],
)
async def test_failed_page_keeps_partial_results(failure, expected):
    fake = FakeShopify([[_in_window(30), _in_window(29)], [_in_window(10)], [_in_window(2)]], failures={1: failure})

    result = await fetch_orders_in_range(fake.client(), START, END, page_delay=0)

    assert len(result.orders) == 2
    assert result.pages_fetched == 1
    assert expected in result.error
    assert not result.complete
    # no retry
    assert len(fake.requests) == 2


async def test_missing_orders_connection_aborts():
    fake = FakeShopify([[_in_window(30)]], failures={0: httpx.Response(200, json={"data": {}})})

    result = await fetch_orders_in_range(fake.client(), START, END, page_delay=0)

    assert result.orders == []
    assert result.pages_fetched == 0
    assert "orders connection" in result.error


async def test_waits_between_pages_only(monkeypatch):
    waits = []

    async def fake_sleep(seconds):
        waits.append(seconds)

    monkeypatch.setattr(restocking, "asyncio", SimpleNamespace(sleep=fake_sleep))
    fake = FakeShopify([[_in_window(30)], [_in_window(20)], [_in_window(10)]])

    await fetch_orders_in_range(fake.client(), START, END, page_delay=0.3)

    assert waits == [0.3, 0.3]


async def test_scans_past_window_start_by_default():
    fake = FakeShopify([
        [_in_window(3), order("2023-12-30T10:00:00Z")],
        [order("2023-12-20T10:00:00Z")],
        [order("2023-12-10T10:00:00Z")],
    ])

    result = await fetch_orders_in_range(fake.client(), START, END, page_delay=0)

    assert result.pages_fetched == 3
    assert not result.stopped_at_window_start


async def test_early_exit_once_page_reaches_window_start():
    fake = FakeShopify([
        [_in_window(3), order("2023-12-30T10:00:00Z")],
        [order("2023-12-20T10:00:00Z")],
    ])

    result = await fetch_orders_in_range(fake.client(), START, END, page_delay=0, stop_at_window_start=True)

    assert result.pages_fetched == 1
    assert result.stopped_at_window_start
    assert len(result.orders) == 1
    assert result.complete


async def test_non_string_created_at_is_skipped():
    fake = FakeShopify([[order(1704844800), order({"at": "2024-01-10"}), _in_window(9)]])

    result = await fetch_orders_in_range(fake.client(), START, END, page_delay=0)

    assert [o["createdAt"] for o in result.orders] == ["2024-01-09T12:00:00Z"]
    assert result.complete


async def test_malformed_edges_keep_partial_results():
    bad_page = httpx.Response(200, json={
        "data": {"orders": {"edges": "oops", "pageInfo": {"hasNextPage": True, "endCursor": "page-2"}}},
    })
    fake = FakeShopify([[_in_window(30)], [_in_window(20)]], failures={1: bad_page})

    result = await fetch_orders_in_range(fake.client(), START, END, page_delay=0)

    assert len(result.orders) == 1
    assert result.pages_fetched == 1
    assert "malformed" in result.error
    assert not result.complete


async def test_non_dict_edges_and_nodes_are_skipped():
    page = httpx.Response(200, json={
        "data": {"orders": {
            "edges": [None, "edge", {"node": "order"}, {"node": _in_window(12)}],
            "pageInfo": {"hasNextPage": False, "endCursor": None},
        }},
    })
    fake = FakeShopify([[]], failures={0: page})

    result = await fetch_orders_in_range(fake.client(), START, END, page_delay=0)

    assert len(result.orders) == 1
    assert result.error is None
