"""Restocking report pipeline.

fetch (paginate orders newest-first) -> filter by createdAt window ->
flatten line items -> aggregate per (product, variant, sku) -> sort by SKU.

Shopify's order search does not take a createdAt range the way REST does, so
the window is applied here, page by page.
"""
import asyncio
import os
from datetime import datetime, timezone, tzinfo
from typing import Any, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import HTTPException
from pyuca import Collator

from .logs import log_event
from .schemas import AggregateRow, FlatRow, OrderFetchResult, RestockingReport
from .shopify_client import AdminGraphQL

NOT_AVAILABLE = "N/A"
MISSING_STOCK = "-"
UNKNOWN_LOCATION = "Unknown"

_COLLATOR = Collator()


def _bool_env(name: str, default: bool = False) -> bool:
    v = (os.environ.get(name) or "").strip().lower()
    if not v:
        return default
    return v in ("1", "true", "yes", "on")


PAGE_SIZE = 50
MAX_MATCHED_ORDERS = int(os.environ.get("REPORT_MAX_ORDERS", "1000").strip() or 1000)
PAGE_DELAY_SECONDS = float(os.environ.get("REPORT_PAGE_DELAY_SECONDS", "0.3").strip() or 0.3)
STOP_AT_WINDOW_START = _bool_env("REPORT_STOP_AT_WINDOW_START", default=False)
REPORT_TIMEZONE = os.environ.get("REPORT_TIMEZONE", "").strip()

ORDERS_QUERY = """
query RestockingReportOrders($first: Int!, $cursor: String) {
  orders(first: $first, after: $cursor, sortKey: CREATED_AT, reverse: true) {
    edges {
      cursor
      node {
        createdAt
        lineItems(first: 50) {
          edges {
            node {
              quantity
              product { title vendor productType }
              variant {
                title
                sku
                inventoryItem {
                  inventoryLevels(first: 5) {
                    edges {
                      node {
                        quantities(names: "available") { name quantity }
                        location { name }
                      }
                    }
                  }
                }
              }
            }
          }
        }
      }
    }
    pageInfo { hasNextPage endCursor }
  }
}
"""


# ---------- Dates ----------
def report_timezone() -> Optional[tzinfo]:
    """Configured zone for form dates, or None for the server's local zone."""
    if not REPORT_TIMEZONE:
        return None
    try:
        return ZoneInfo(REPORT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        log_event("restocking_report", event="invalid_timezone", timezone=REPORT_TIMEZONE, fallback="server_local")
        return None


def parse_form_datetime(value: Optional[str], tz: Optional[tzinfo] = None) -> Optional[datetime]:
    """Parse a ``datetime-local`` value (``2024-01-01T10:00``) into an aware datetime.

    Naive values are read in ``tz`` (server local time when None). Returns
    None for anything unparseable.
    """
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=tz) if tz is not None else dt.astimezone()
    return dt


def end_of_minute(dt: datetime) -> datetime:
    return dt.replace(second=59, microsecond=999000)


def parse_shopify_timestamp(s: Any) -> Optional[datetime]:
    if not s or not isinstance(s, str):
        return None
    st = s.strip()
    if st.endswith("Z"):
        st = st[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(st)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


# ---------- Fetch ----------
async def fetch_orders_in_range(
    client: AdminGraphQL,
    start: datetime,
    end: datetime,
    *,
    page_size: int = PAGE_SIZE,
    max_orders: int = MAX_MATCHED_ORDERS,
    page_delay: float = PAGE_DELAY_SECONDS,
    stop_at_window_start: bool = STOP_AT_WINDOW_START,
) -> OrderFetchResult:
    """Collect order nodes created within [start, end], newest first.

    Stops when Shopify reports no further page, when ``max_orders`` matches
    are collected, or when a page fails or comes back malformed. A failure
    never raises: the orders gathered so far are returned with ``error`` set.
    """
    result = OrderFetchResult()
    cursor: Optional[str] = None

    while True:
        try:
            data = await client.graphql(ORDERS_QUERY, {"first": page_size, "cursor": cursor})
        except HTTPException as he:
            result.error = str(he.detail)
            log_event(
                "restocking_report",
                event="page_fetch_failed",
                page=result.pages_fetched + 1,
                status=he.status_code,
                detail=result.error,
                matched_so_far=len(result.orders),
            )
            break

        connection = data.get("orders")
        if not isinstance(connection, dict):
            result.error = "Shopify response did not include an orders connection"
            log_event("restocking_report", event="page_malformed", page=result.pages_fetched + 1)
            break
        edges = connection.get("edges") or []
        if not isinstance(edges, list):
            result.error = "Shopify returned a malformed orders page"
            log_event("restocking_report", event="page_malformed", page=result.pages_fetched + 1)
            break
        result.pages_fetched += 1

        saw_older = False
        for edge in edges:
            node = edge.get("node") if isinstance(edge, dict) else None
            if not isinstance(node, dict):
                continue
            created = parse_shopify_timestamp(node.get("createdAt"))
            if created is None:
                continue
            if created < start:
                saw_older = True
                continue
            if created <= end:
                result.orders.append(node)
                if len(result.orders) >= max_orders:
                    result.capped = True
                    break

        if result.capped:
            log_event("restocking_report", event="order_cap_reached", max_orders=max_orders, pages=result.pages_fetched)
            break

        page_info = connection.get("pageInfo")
        if not isinstance(page_info, dict):
            page_info = {}
        cursor = page_info.get("endCursor")
        if not page_info.get("hasNextPage") or not cursor:
            break
        if stop_at_window_start and saw_older:
            result.stopped_at_window_start = True
            break

        if page_delay > 0:
            await asyncio.sleep(page_delay)

    return result


# ---------- Flatten + aggregate ----------
def _available_quantity(level: Dict[str, Any]):
    for q in level.get("quantities") or []:
        if (q or {}).get("name") == "available":
            qty = q.get("quantity")
            return MISSING_STOCK if qty is None else qty
    return MISSING_STOCK


def flatten_orders(orders: List[Dict[str, Any]]) -> Tuple[List[FlatRow], List[str]]:
    """One row per line item, plus every location name seen (first-seen order)."""
    rows: List[FlatRow] = []
    location_names: List[str] = []

    for order in orders:
        for li_edge in (order.get("lineItems") or {}).get("edges") or []:
            li = (li_edge or {}).get("node") or {}
            product = li.get("product") or {}
            variant = li.get("variant") or {}
            levels = ((variant.get("inventoryItem") or {}).get("inventoryLevels") or {}).get("edges") or []

            locations: Dict[str, Any] = {}
            for lvl_edge in levels:
                level = (lvl_edge or {}).get("node") or {}
                loc = (level.get("location") or {}).get("name") or UNKNOWN_LOCATION
                if loc not in location_names:
                    location_names.append(loc)
                locations[loc] = _available_quantity(level)

            rows.append(FlatRow(
                product_title=product.get("title") or NOT_AVAILABLE,
                variant_title=variant.get("title") or NOT_AVAILABLE,
                sku=variant.get("sku") or NOT_AVAILABLE,
                vendor=product.get("vendor") or NOT_AVAILABLE,
                product_type=product.get("productType") or NOT_AVAILABLE,
                net_items_sold=int(li.get("quantity") or 0),
                locations=locations,
            ))

    return rows, location_names


def sku_sort_key(sku: str) -> Tuple[int, ...]:
    """Unicode Collation Algorithm key (DUCET), the root-locale order browsers use for ``localeCompare``."""
    return _COLLATOR.sort_key(sku)


def aggregate_rows(rows: List[FlatRow]) -> List[AggregateRow]:
    """Sum quantities per (product_title, variant_title, sku); stock is last-write-wins per location."""
    grouped: Dict[Tuple[str, str, str], AggregateRow] = {}
    for row in rows:
        key = (row.product_title, row.variant_title, row.sku)
        agg = grouped.get(key)
        if agg is None:
            agg = AggregateRow(
                product_title=row.product_title,
                variant_title=row.variant_title,
                sku=row.sku,
                vendor=row.vendor,
                product_type=row.product_type,
                net_items_sold=0,
                locations={},
            )
            grouped[key] = agg
        agg.net_items_sold += row.net_items_sold
        agg.locations.update(row.locations)

    return sorted(grouped.values(), key=lambda r: sku_sort_key(r.sku))


# ---------- Report ----------
def format_generated_at(dt: datetime) -> str:
    hour = dt.hour % 12 or 12
    return f"{dt.month}/{dt.day}/{dt.year}, {hour}:{dt:%M:%S} {dt:%p}"


async def build_restocking_report(
    client: AdminGraphQL,
    start_date: str,
    end_date: str,
    *,
    tz: Optional[tzinfo] = None,
    **fetch_options: Any,
) -> RestockingReport:
    tz = tz if tz is not None else report_timezone()
    start = parse_form_datetime(start_date, tz)
    end = parse_form_datetime(end_date, tz)

    warnings: List[str] = []
    if start is None:
        warnings.append("Invalid start date")
    if end is None:
        warnings.append("Invalid end date")

    if warnings:
        # No order can match an unparseable bound; skip the store scan
        fetched = OrderFetchResult()
    else:
        fetched = await fetch_orders_in_range(client, start, end_of_minute(end), **fetch_options)
        if fetched.error:
            warnings.append(f"Stopped fetching after {fetched.pages_fetched} page(s): {fetched.error}")
        if fetched.capped:
            warnings.append(f"Only the {len(fetched.orders)} newest matching orders were included")

    rows, location_names = flatten_orders(fetched.orders)
    aggregated = aggregate_rows(rows)

    log_event(
        "restocking_report",
        event="report_built",
        shop=client.shop,
        start_date=start_date,
        end_date=end_date,
        orders=len(fetched.orders),
        pages=fetched.pages_fetched,
        rows=len(aggregated),
        complete=fetched.complete,
    )

    return RestockingReport(
        rows=aggregated,
        location_names=location_names,
        generated_at=format_generated_at(datetime.now(tz) if tz is not None else datetime.now()),
        start_date=start_date,
        end_date=end_date,
        orders_matched=len(fetched.orders),
        pages_fetched=fetched.pages_fetched,
        complete=fetched.complete and not warnings,
        warnings=warnings,
    )
