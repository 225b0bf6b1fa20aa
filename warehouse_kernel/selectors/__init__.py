"""Read-only selectors for the warehouse kernel."""

from warehouse_kernel.selectors.audit_selector import AuditEntry, AuditFilter, AuditSelector
from warehouse_kernel.selectors.base import BaseSelector
from warehouse_kernel.selectors.document_selector import DocumentFilter, DocumentSelector
from warehouse_kernel.selectors.stock_selector import (
    ProductStockSummary,
    StockFilter,
    StockSelector,
    StockView,
)

__all__ = [
    "AuditEntry",
    "AuditFilter",
    "AuditSelector",
    "BaseSelector",
    "DocumentFilter",
    "DocumentSelector",
    "ProductStockSummary",
    "StockFilter",
    "StockSelector",
    "StockView",
]
