"""
Module: warehouse_kernel.selectors.stock_selector
Responsibility: Read models over the stock ledger: filtered stock listings and
    per-product / per-location summaries.
Architecture position: Kernel > Selectors (read-only).
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select

from warehouse_kernel.domain.values import Page
from warehouse_kernel.models.catalog import Location, Product
from warehouse_kernel.models.stock import StockRow
from warehouse_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class StockFilter:
    """Filters for ``list_stock``.  ``in_stock_only`` hides zero rows."""

    product_id: UUID | None = None
    location_id: UUID | None = None
    warehouse_id: UUID | None = None
    min_qty: int | None = None
    max_qty: int | None = None
    in_stock_only: bool = True


@dataclass(frozen=True)
class StockView:
    product_id: UUID
    sku: str
    product_name: str
    location_id: UUID
    barcode: str
    warehouse_id: UUID
    quantity: int
    updated_at: datetime | None


@dataclass(frozen=True)
class ProductStockSummary:
    product_id: UUID
    total_quantity: int
    locations: tuple[StockView, ...]


class StockSelector(BaseSelector):
    """Stock listings for rendering by the request layer."""

    @staticmethod
    def _base_query():
        return (
            select(
                StockRow.product_id,
                Product.sku,
                Product.name,
                StockRow.location_id,
                Location.barcode,
                Location.warehouse_id,
                StockRow.quantity,
                StockRow.updated_at,
            )
            .join(Product, Product.id == StockRow.product_id)
            .join(Location, Location.id == StockRow.location_id)
        )

    @staticmethod
    def _to_view(row) -> StockView:
        return StockView(
            product_id=row.product_id,
            sku=row.sku,
            product_name=row.name,
            location_id=row.location_id,
            barcode=row.barcode,
            warehouse_id=row.warehouse_id,
            quantity=row.quantity,
            updated_at=row.updated_at,
        )

    def list_stock(
        self,
        filters: StockFilter | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> Page[StockView]:
        f = filters or StockFilter()
        stmt = self._base_query()
        if f.product_id is not None:
            stmt = stmt.where(StockRow.product_id == f.product_id)
        if f.location_id is not None:
            stmt = stmt.where(StockRow.location_id == f.location_id)
        if f.warehouse_id is not None:
            stmt = stmt.where(Location.warehouse_id == f.warehouse_id)
        if f.min_qty is not None:
            stmt = stmt.where(StockRow.quantity >= f.min_qty)
        if f.max_qty is not None:
            stmt = stmt.where(StockRow.quantity <= f.max_qty)
        if f.in_stock_only:
            stmt = stmt.where(StockRow.quantity > 0)
        stmt = stmt.order_by(Product.sku, Location.barcode)
        return self._paginate(stmt, self._to_view, page, limit, scalars=False)

    def product_summary(self, product_id: UUID) -> ProductStockSummary:
        rows = self.session.execute(
            self._base_query()
            .where(StockRow.product_id == product_id, StockRow.quantity > 0)
            .order_by(Location.barcode)
        )
        views = tuple(self._to_view(row) for row in rows)
        return ProductStockSummary(
            product_id=product_id,
            total_quantity=sum(v.quantity for v in views),
            locations=views,
        )

    def location_contents(self, location_id: UUID) -> tuple[StockView, ...]:
        rows = self.session.execute(
            self._base_query()
            .where(StockRow.location_id == location_id, StockRow.quantity > 0)
            .order_by(Product.sku)
        )
        return tuple(self._to_view(row) for row in rows)

    def total_quantity(self, product_id: UUID, warehouse_id: UUID | None = None) -> int:
        stmt = select(func.coalesce(func.sum(StockRow.quantity), 0)).where(
            StockRow.product_id == product_id
        )
        if warehouse_id is not None:
            stmt = stmt.join(Location, Location.id == StockRow.location_id).where(
                Location.warehouse_id == warehouse_id
            )
        return int(self.session.execute(stmt).scalar_one())
