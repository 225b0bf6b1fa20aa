"""
Warehouse kernel -- stock ledger, movement documents and inventory counts.

The kernel turns DRAFT movement documents into durable, consistent changes
to on-hand quantities.  Services never commit: the caller (usually the
``WarehouseEngine`` facade) owns transaction boundaries.
"""

__version__ = "0.3.0"
