from restocking_report.presenter import FIXED_COLUMNS, table_header, table_rows
from restocking_report.schemas import AggregateRow, RestockingReport


def _report(rows, location_names):
    return RestockingReport(
        rows=rows,
        location_names=location_names,
        generated_at="1/1/2024, 9:00:00 AM",
        start_date="2024-01-01T00:00",
        end_date="2024-01-01T23:59",
    )


def test_header_appends_locations_in_discovery_order():
    report = _report([], ["Warehouse B", "Warehouse A"])
    assert table_header(report) == FIXED_COLUMNS + ["Warehouse B", "Warehouse A"]
    assert FIXED_COLUMNS[-1] == "Net Items Sold"


def test_missing_location_cells_show_a_dash():
    row = AggregateRow(
        product_title="Mug",
        variant_title="Blue",
        sku="ABC123",
        vendor="Acme",
        product_type="Kitchen",
        net_items_sold=8,
        locations={"Warehouse A": 10},
    )
    report = _report([row], ["Warehouse A", "Warehouse B"])

    assert table_rows(report) == [["Mug", "Blue", "ABC123", "Acme", "Kitchen", "8", "10", "-"]]
