"""ORM models for the warehouse kernel."""

from warehouse_kernel.models.audit_record import AuditAction, AuditRecord
from warehouse_kernel.models.catalog import Location, Product, Warehouse
from warehouse_kernel.models.document import Document, DocumentLine
from warehouse_kernel.models.inventory_count import CountLine, InventoryCount
from warehouse_kernel.models.sequence import SequenceCounter
from warehouse_kernel.models.stock import StockMovement, StockRow

__all__ = [
    "AuditAction",
    "AuditRecord",
    "CountLine",
    "Document",
    "DocumentLine",
    "InventoryCount",
    "Location",
    "Product",
    "SequenceCounter",
    "StockMovement",
    "StockRow",
    "Warehouse",
]
