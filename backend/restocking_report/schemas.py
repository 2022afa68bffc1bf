from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

# Stock value per location: the "available" quantity, or "-" when Shopify sent none
StockValue = Union[int, str]


class FlatRow(BaseModel):
    product_title: str
    variant_title: str
    sku: str
    vendor: str
    product_type: str
    net_items_sold: int = 0
    locations: Dict[str, StockValue] = {}


class AggregateRow(FlatRow):
    """All flattened rows sharing (product_title, variant_title, sku)."""


class OrderFetchResult(BaseModel):
    orders: List[Dict[str, Any]] = []
    pages_fetched: int = 0
    capped: bool = False
    stopped_at_window_start: bool = False
    error: Optional[str] = None

    @property
    def complete(self) -> bool:
        # The cap truncates the dataset just like an error does
        return self.error is None and not self.capped


class RestockingReport(BaseModel):
    rows: List[AggregateRow] = []
    location_names: List[str] = []
    generated_at: str
    start_date: str
    end_date: str
    orders_matched: int = 0
    pages_fetched: int = 0
    complete: bool = True
    warnings: List[str] = []


class ReportRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    start_date: str = Field(..., alias="startDate")
    end_date: str = Field(..., alias="endDate")
