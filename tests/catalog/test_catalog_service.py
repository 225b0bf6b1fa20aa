"""Reference data: warehouses, products, locations and scanner lookups."""

from uuid import uuid4

import pytest
from sqlalchemy import select

from warehouse_kernel.domain.values import LocationStatus
from warehouse_kernel.exceptions import (
    DuplicateCodeError,
    InvalidCodeFormatError,
    LocationNotFoundError,
    LocationStatusLockedError,
    ProductNotFoundError,
    WarehouseNotFoundError,
)
from warehouse_kernel.models.audit_record import AuditAction, AuditRecord


class TestWarehouses:
    def test_code_is_normalized(self, catalog, actor_id):
        warehouse = catalog.create_warehouse(" wh2 ", "Overflow", actor_id)
        assert warehouse.code == "WH2"

    @pytest.mark.parametrize("code", ["W", "WAREH", "W-1"])
    def test_bad_code_rejected(self, catalog, actor_id, code):
        with pytest.raises(InvalidCodeFormatError):
            catalog.create_warehouse(code, "Bad", actor_id)

    def test_duplicate_code_rejected(self, catalog, warehouse, actor_id):
        with pytest.raises(DuplicateCodeError) as exc_info:
            catalog.create_warehouse("wh1", "Again", actor_id)
        assert exc_info.value.field == "code"

    def test_unknown_warehouse(self, catalog):
        with pytest.raises(WarehouseNotFoundError):
            catalog.get_warehouse(uuid4())


class TestProducts:
    def test_sku_unique_case_insensitive(self, catalog, product, actor_id):
        with pytest.raises(DuplicateCodeError):
            catalog.create_product("sku-001", "Clone", actor_id)

    @pytest.mark.parametrize("ean", ["123", "12345678901", "ABCDEFGH"])
    def test_bad_ean_rejected(self, catalog, actor_id, ean):
        with pytest.raises(InvalidCodeFormatError):
            catalog.create_product("SKU-009", "Thing", actor_id, ean=ean)

    def test_duplicate_ean_rejected(self, catalog, product, actor_id):
        with pytest.raises(DuplicateCodeError):
            catalog.create_product("SKU-010", "Thing", actor_id, ean="5901234123457")

    def test_blank_sku_rejected(self, catalog, actor_id):
        with pytest.raises(InvalidCodeFormatError):
            catalog.create_product("   ", "Nothing", actor_id)

    def test_find_by_ean_or_sku(self, catalog, product):
        assert catalog.find_product_by_code("5901234123457").id == product.id
        assert catalog.find_product_by_code(" sku-001 ").id == product.id

    def test_deactivated_product_not_found_by_code(self, session, catalog, product, actor_id):
        catalog.deactivate_product(product.id, actor_id)
        assert product.is_active is False
        with pytest.raises(ProductNotFoundError):
            catalog.find_product_by_code("SKU-001")

        deactivations = session.execute(
            select(AuditRecord).where(AuditRecord.action == AuditAction.PRODUCT_DEACTIVATED)
        ).scalars().all()
        assert len(deactivations) == 1

    def test_deactivate_twice_records_once(self, session, catalog, product, actor_id):
        catalog.deactivate_product(product.id, actor_id)
        catalog.deactivate_product(product.id, actor_id)
        deactivations = session.execute(
            select(AuditRecord).where(AuditRecord.action == AuditAction.PRODUCT_DEACTIVATED)
        ).scalars().all()
        assert len(deactivations) == 1


class TestLocations:
    def test_barcode_normalized(self, catalog, warehouse, actor_id):
        location = catalog.create_location(warehouse.id, " wh1-03-02-01", actor_id)
        assert location.barcode == "WH1-03-02-01"
        assert location.status == LocationStatus.ACTIVE

    @pytest.mark.parametrize("barcode", ["WH1-1-1-1", "WH1-01-01", "WH1_01_01_01"])
    def test_bad_barcode_rejected(self, catalog, warehouse, actor_id, barcode):
        with pytest.raises(InvalidCodeFormatError):
            catalog.create_location(warehouse.id, barcode, actor_id)

    def test_duplicate_barcode_rejected(self, catalog, warehouse, loc_a, actor_id):
        with pytest.raises(DuplicateCodeError):
            catalog.create_location(warehouse.id, "wh1-01-01-01", actor_id)

    def test_find_by_scanned_barcode(self, catalog, loc_a):
        assert catalog.find_location_by_barcode(" wh1-01-01-01 ").id == loc_a.id
        with pytest.raises(LocationNotFoundError):
            catalog.find_location_by_barcode("WH1-99-99-99")

    def test_block_and_unblock(self, catalog, loc_a, actor_id):
        blocked = catalog.set_location_status(
            loc_a.id, LocationStatus.BLOCKED, actor_id, reason="rack damaged"
        )
        assert blocked.status == LocationStatus.BLOCKED
        assert blocked.block_reason == "rack damaged"

        active = catalog.set_location_status(loc_a.id, LocationStatus.ACTIVE, actor_id)
        assert active.status == LocationStatus.ACTIVE
        assert active.block_reason is None

    def test_counting_status_reserved_for_counts(self, catalog, loc_a, actor_id):
        with pytest.raises(LocationStatusLockedError) as exc_info:
            catalog.set_location_status(loc_a.id, LocationStatus.COUNTING, actor_id)
        assert exc_info.value.code == "LOCATION_STATUS_LOCKED"
        assert exc_info.value.requested == "COUNTING"

    def test_refs_snapshot_reference_data(self, catalog, product, loc_a):
        products = catalog.product_refs([product.id, None])
        locations = catalog.location_refs([loc_a.id])
        assert products[product.id].sku == "SKU-001"
        assert locations[loc_a.id].barcode == "WH1-01-01-01"
        assert catalog.product_refs([]) == {}
