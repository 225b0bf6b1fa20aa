"""
Module: warehouse_kernel.models.catalog
Responsibility: ORM persistence for reference data: warehouses, products and
    storage locations.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/values.py only.

Invariants enforced:
    - Reference data is never physically deleted; it is deactivated
      (``is_active`` / ``LocationStatus.INACTIVE``) so historic documents
      keep resolvable references.
    - SKU, EAN, location barcode and warehouse code are unique.
    - Barcodes and warehouse codes are stored upper case.
"""

from uuid import UUID

from sqlalchemy import Boolean, Enum as SAEnum, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from warehouse_kernel.db.base import TrackedBase, UUIDString
from warehouse_kernel.domain.values import LocationRef, LocationStatus, ProductRef


class Warehouse(TrackedBase):
    """A physical site owning a set of locations."""

    __tablename__ = "warehouses"

    code: Mapped[str] = mapped_column(String(4), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    locations: Mapped[list["Location"]] = relationship(
        back_populates="warehouse",
        lazy="select",
    )

    def __repr__(self) -> str:
        return f"<Warehouse {self.code}>"


class Product(TrackedBase):
    """
    A stock-keeping unit.

    Scanner lookups resolve either the EAN (exact) or the SKU
    (case-insensitive) among active products.
    """

    __tablename__ = "products"

    __table_args__ = (
        Index("idx_product_active", "is_active"),
    )

    sku: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    ean: Mapped[str | None] = mapped_column(String(13), nullable=True, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    unit: Mapped[str] = mapped_column(String(10), nullable=False, default="pcs")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def to_ref(self) -> ProductRef:
        return ProductRef(id=self.id, sku=self.sku, is_active=self.is_active)

    def __repr__(self) -> str:
        return f"<Product {self.sku}>"


class Location(TrackedBase):
    """
    A storage slot inside a warehouse, addressed by a barcode such as
    ``A1-01-02-03`` (warehouse-rack-shelf-level).
    """

    __tablename__ = "locations"

    __table_args__ = (
        Index("idx_location_warehouse", "warehouse_id"),
        Index("idx_location_status", "status"),
    )

    barcode: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)

    warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("warehouses.id"),
        nullable=False,
    )

    zone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    status: Mapped[LocationStatus] = mapped_column(
        SAEnum(LocationStatus, native_enum=False, length=10),
        nullable=False,
        default=LocationStatus.ACTIVE,
    )

    block_reason: Mapped[str | None] = mapped_column(String(200), nullable=True)

    warehouse: Mapped["Warehouse"] = relationship(back_populates="locations")

    def to_ref(self) -> LocationRef:
        return LocationRef(
            id=self.id,
            barcode=self.barcode,
            warehouse_id=self.warehouse_id,
            status=self.status,
        )

    @property
    def is_usable(self) -> bool:
        return self.status == LocationStatus.ACTIVE

    def __repr__(self) -> str:
        return f"<Location {self.barcode} status={self.status.value}>"
