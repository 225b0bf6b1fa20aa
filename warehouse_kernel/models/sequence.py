"""Named counter rows, locked and incremented by SequenceService."""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from warehouse_kernel.db.base import Base


class SequenceCounter(Base):
    __tablename__ = "sequence_counters"

    # "audit_record", "RECEIPT:2024", "COUNT:2024", ...
    name: Mapped[str] = mapped_column(String(60), unique=True)
    current_value: Mapped[int] = mapped_column(default=0)
