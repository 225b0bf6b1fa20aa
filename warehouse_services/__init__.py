"""
warehouse_services -- transactional facade and access control over the kernel.

    from warehouse_config import get_active_config
    from warehouse_services import Actor, WarehouseEngine

    engine = WarehouseEngine(get_active_config())
    doc = engine.create_document(actor, DocumentType.RECEIPT, warehouse_id)
"""

from warehouse_services.access import Actor, check_permission
from warehouse_services.engine import KernelServices, WarehouseEngine

__all__ = ["Actor", "KernelServices", "WarehouseEngine", "check_permission"]
