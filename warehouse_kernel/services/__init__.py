"""Services for the warehouse kernel (write side)."""

from warehouse_kernel.services.auditor_service import AuditRecorder
from warehouse_kernel.services.catalog_service import CatalogService
from warehouse_kernel.services.count_service import CountCompletion, CountService
from warehouse_kernel.services.document_service import DEFAULT_NUMBER_PREFIXES, DocumentService
from warehouse_kernel.services.ledger_service import LedgerDiscrepancy, StockLedger
from warehouse_kernel.services.sequence_service import SequenceService

__all__ = [
    "AuditRecorder",
    "CatalogService",
    "CountCompletion",
    "CountService",
    "DEFAULT_NUMBER_PREFIXES",
    "DocumentService",
    "LedgerDiscrepancy",
    "SequenceService",
    "StockLedger",
]
