from typing import List

from .restocking import MISSING_STOCK
from .schemas import RestockingReport

FIXED_COLUMNS = [
    "Product Title",
    "Variant Title",
    "SKU",
    "Vendor",
    "Product Type",
    "Net Items Sold",
]


def table_header(report: RestockingReport) -> List[str]:
    # Locations keep discovery order; they are not sorted
    return FIXED_COLUMNS + list(report.location_names)


def table_rows(report: RestockingReport) -> List[List[str]]:
    out: List[List[str]] = []
    for r in report.rows:
        cells = [r.product_title, r.variant_title, r.sku, r.vendor, r.product_type, str(r.net_items_sold)]
        for loc in report.location_names:
            cells.append(str(r.locations.get(loc, MISSING_STOCK)))
        out.append(cells)
    return out
