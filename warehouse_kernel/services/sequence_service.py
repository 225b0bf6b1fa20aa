"""
Strictly increasing counters backed by locked rows.

Audit records take their ``seq`` from here, and documents and inventory
counts take their numbers (``RCV/2024/0001``, ``INV/2024/0003``).  Each
counter is one row in ``sequence_counters``.  Allocation locks that row, so
two transactions can never be handed the same value.  Values are never
derived from ``max(...) + 1`` over the numbered table.

A value taken by a transaction that later rolls back is released with it,
so numbers stay dense in the committed history.

The first allocation on a counter inserts its row.  If two transactions do
that at once, the loser's insert fails with IntegrityError inside a
savepoint.  It then locks the winner's row and carries on.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from warehouse_kernel.logging_config import get_logger
from warehouse_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    """Allocates counter values inside the caller's transaction. Never commits."""

    AUDIT_RECORD = "audit_record"

    def __init__(self, session: Session):
        self._session = session

    def _locked(self, name: str) -> SequenceCounter | None:
        stmt = (
            select(SequenceCounter)
            .where(SequenceCounter.name == name)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self._session.execute(stmt).scalar_one_or_none()

    def _insert_first(self, name: str) -> bool:
        """Insert the counter at 1. False if a concurrent transaction got there first."""
        savepoint = self._session.begin_nested()
        try:
            self._session.add(SequenceCounter(name=name, current_value=1))
            self._session.flush()
        except IntegrityError:
            savepoint.rollback()
            logger.debug("sequence_counter_race", extra={"sequence_name": name})
            return False
        savepoint.commit()
        return True

    def next_value(self, name: str) -> int:
        counter = self._locked(name)
        if counter is None:
            if self._insert_first(name):
                value = 1
                logger.debug("sequence_allocated", extra={"sequence_name": name, "value": value})
                return value
            counter = self._locked(name)
            if counter is None:
                raise RuntimeError(f"Sequence counter {name!r} vanished after a creation race")

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated", extra={"sequence_name": name, "value": counter.current_value}
        )
        return counter.current_value

    def next_number(self, prefix: str, scope: str, year: int) -> str:
        """``{prefix}/{year}/{n:04d}``; ``n`` restarts each year for each scope."""
        return f"{prefix}/{year}/{self.next_value(f'{scope}:{year}'):04d}"
