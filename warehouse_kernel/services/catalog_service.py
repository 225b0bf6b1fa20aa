"""
CatalogService -- warehouses, products and locations.

Responsibility:
    Registers reference data, deactivates it (never deletes), changes
    location status, and resolves scanned codes: a product code is an EAN
    (exact) or a SKU (case-insensitive) among active products; a location
    barcode is normalised to upper case and must look like ``A1-01-02-03``.

Architecture position:
    Kernel > Services.  DocumentService and CountService use the lookup
    helpers to build resolver inputs.

Failure modes:
    - DuplicateCodeError, InvalidCodeFormatError on registration.
    - LocationStatusLockedError when COUNTING is involved in a status change.
    - ProductNotFoundError, LocationNotFoundError, WarehouseNotFoundError on
      lookups.
"""

import re
from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from warehouse_kernel.domain.values import LocationRef, LocationStatus, ProductRef
from warehouse_kernel.exceptions import (
    DuplicateCodeError,
    InvalidCodeFormatError,
    LocationNotFoundError,
    LocationStatusLockedError,
    ProductNotFoundError,
    WarehouseNotFoundError,
)
from warehouse_kernel.logging_config import get_logger
from warehouse_kernel.models.audit_record import AuditAction
from warehouse_kernel.models.catalog import Location, Product, Warehouse
from warehouse_kernel.services.auditor_service import AuditRecorder

logger = get_logger("services.catalog")

WAREHOUSE_CODE_RE = re.compile(r"^[A-Z0-9]{2,4}$")
LOCATION_BARCODE_RE = re.compile(r"^[A-Z0-9]{2,4}-\d{2}-\d{2}-\d{2}$")
EAN_RE = re.compile(r"^(\d{8}|\d{13})$")


def normalize_barcode(barcode: str) -> str:
    return barcode.strip().upper()


class CatalogService:
    """
    Reference data service.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(self, session: Session, auditor: AuditRecorder):
        self._session = session
        self._auditor = auditor

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def _ensure_unique(self, model, column, value, entity_type: str, field: str) -> None:
        exists = self._session.execute(
            select(model.id).where(column == value)
        ).first()
        if exists is not None:
            raise DuplicateCodeError(entity_type, field, value)

    def create_warehouse(
        self,
        code: str,
        name: str,
        actor_id: UUID,
        address: str | None = None,
    ) -> Warehouse:
        code = code.strip().upper()
        if not WAREHOUSE_CODE_RE.match(code):
            raise InvalidCodeFormatError("warehouse code", code, "2-4 letters or digits")
        self._ensure_unique(Warehouse, Warehouse.code, code, "Warehouse", "code")

        warehouse = Warehouse(
            code=code, name=name, address=address, is_active=True, created_by_id=actor_id
        )
        self._session.add(warehouse)
        self._session.flush()

        self._auditor.record(
            AuditAction.WAREHOUSE_CREATED,
            entity_type="Warehouse",
            entity_id=warehouse.id,
            actor_id=actor_id,
            after={"code": code, "name": name},
        )
        logger.info("warehouse_created", extra={"warehouse_id": str(warehouse.id), "code": code})
        return warehouse

    def create_product(
        self,
        sku: str,
        name: str,
        actor_id: UUID,
        ean: str | None = None,
        unit: str = "pcs",
    ) -> Product:
        sku = sku.strip()
        if not sku:
            raise InvalidCodeFormatError("SKU", sku, "non-empty string")
        duplicate = self._session.execute(
            select(Product.id).where(func.upper(Product.sku) == sku.upper())
        ).first()
        if duplicate is not None:
            raise DuplicateCodeError("Product", "sku", sku)
        if ean is not None:
            ean = ean.strip()
            if not EAN_RE.match(ean):
                raise InvalidCodeFormatError("EAN", ean, "8 or 13 digits")
            self._ensure_unique(Product, Product.ean, ean, "Product", "ean")

        product = Product(
            sku=sku, ean=ean, name=name, unit=unit, is_active=True, created_by_id=actor_id
        )
        self._session.add(product)
        self._session.flush()

        self._auditor.record(
            AuditAction.PRODUCT_CREATED,
            entity_type="Product",
            entity_id=product.id,
            actor_id=actor_id,
            after={"sku": sku, "ean": ean, "name": name},
            product_id=product.id,
        )
        logger.info("product_created", extra={"product_id": str(product.id), "sku": sku})
        return product

    def deactivate_product(self, product_id: UUID, actor_id: UUID) -> Product:
        product = self._session.get(Product, product_id)
        if product is None:
            raise ProductNotFoundError(str(product_id))
        if not product.is_active:
            return product

        product.is_active = False
        product.updated_by_id = actor_id
        self._session.flush()

        self._auditor.record(
            AuditAction.PRODUCT_DEACTIVATED,
            entity_type="Product",
            entity_id=product.id,
            actor_id=actor_id,
            before={"is_active": True},
            after={"is_active": False},
            product_id=product.id,
        )
        return product

    def create_location(
        self,
        warehouse_id: UUID,
        barcode: str,
        actor_id: UUID,
        zone: str | None = None,
    ) -> Location:
        warehouse = self.get_warehouse(warehouse_id)
        barcode = normalize_barcode(barcode)
        if not LOCATION_BARCODE_RE.match(barcode):
            raise InvalidCodeFormatError("location barcode", barcode, "XX-00-00-00")
        self._ensure_unique(Location, Location.barcode, barcode, "Location", "barcode")

        location = Location(
            warehouse_id=warehouse.id,
            barcode=barcode,
            zone=zone,
            status=LocationStatus.ACTIVE,
            created_by_id=actor_id,
        )
        self._session.add(location)
        self._session.flush()

        self._auditor.record(
            AuditAction.LOCATION_CREATED,
            entity_type="Location",
            entity_id=location.id,
            actor_id=actor_id,
            after={"barcode": barcode, "warehouse_id": warehouse.id, "zone": zone},
            location_id=location.id,
        )
        logger.info("location_created", extra={"location_id": str(location.id), "barcode": barcode})
        return location

    def set_location_status(
        self,
        location_id: UUID,
        status: LocationStatus,
        actor_id: UUID,
        reason: str | None = None,
    ) -> Location:
        """
        Block, deactivate or re-activate a location.

        COUNTING belongs to inventory counts: it cannot be set here, and a
        location frozen by an open count stays frozen until that count ends.
        """
        location = self.get_location(location_id)
        previous = location.status
        if LocationStatus.COUNTING in (status, previous):
            raise LocationStatusLockedError(
                str(location.id),
                previous.value,
                status.value,
                "COUNTING is set and released only by inventory counts",
            )
        if previous == status:
            return location

        location.status = status
        location.block_reason = reason if status == LocationStatus.BLOCKED else None
        location.updated_by_id = actor_id
        self._session.flush()

        self._auditor.record(
            AuditAction.LOCATION_STATUS_CHANGED,
            entity_type="Location",
            entity_id=location.id,
            actor_id=actor_id,
            before={"status": previous},
            after={"status": status, "reason": reason},
            location_id=location.id,
        )
        logger.info(
            "location_status_changed",
            extra={"location_id": str(location.id), "from": previous.value, "to": status.value},
        )
        return location

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_warehouse(self, warehouse_id: UUID, active_only: bool = True) -> Warehouse:
        warehouse = self._session.get(Warehouse, warehouse_id)
        if warehouse is None or (active_only and not warehouse.is_active):
            raise WarehouseNotFoundError(str(warehouse_id))
        return warehouse

    def get_location(self, location_id: UUID) -> Location:
        location = self._session.get(Location, location_id)
        if location is None:
            raise LocationNotFoundError(str(location_id))
        return location

    def find_product_by_code(self, code: str) -> Product:
        """Resolve a scanned EAN or SKU to an active product."""
        code = code.strip()
        product = self._session.execute(
            select(Product).where(Product.ean == code, Product.is_active.is_(True))
        ).scalar_one_or_none()
        if product is None:
            product = self._session.execute(
                select(Product).where(
                    func.upper(Product.sku) == code.upper(),
                    Product.is_active.is_(True),
                )
            ).scalar_one_or_none()
        if product is None:
            raise ProductNotFoundError(code)
        return product

    def find_location_by_barcode(self, barcode: str) -> Location:
        normalized = normalize_barcode(barcode)
        location = self._session.execute(
            select(Location).where(Location.barcode == normalized)
        ).scalar_one_or_none()
        if location is None:
            raise LocationNotFoundError(normalized)
        return location

    def product_refs(self, product_ids: Iterable[UUID]) -> dict[UUID, ProductRef]:
        ids = {pid for pid in product_ids if pid is not None}
        if not ids:
            return {}
        products = self._session.execute(select(Product).where(Product.id.in_(ids))).scalars()
        return {p.id: p.to_ref() for p in products}

    def location_refs(self, location_ids: Iterable[UUID]) -> dict[UUID, LocationRef]:
        ids = {lid for lid in location_ids if lid is not None}
        if not ids:
            return {}
        locations = self._session.execute(
            select(Location).where(Location.id.in_(ids)).execution_options(populate_existing=True)
        ).scalars()
        return {loc.id: loc.to_ref() for loc in locations}
