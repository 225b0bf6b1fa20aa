"""
Module: warehouse_kernel.selectors.base
Responsibility: Base class for read-only query selectors and the shared
    pagination helper.
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    domain/values.py.  MUST NOT import from services/.

Invariants enforced:
    - Read-only: selectors never add, flush, delete or commit.
    - Selectors return frozen DTOs, not ORM instances.
"""

from abc import ABC
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from warehouse_kernel.domain.values import Page

T = TypeVar("T")

DEFAULT_PAGE_LIMIT = 20
MAX_PAGE_LIMIT = 100


class BaseSelector(ABC):
    """
    Base class for all selectors.

    Contract:
        Accepts a Session owned by the caller and performs read-only queries.
    """

    def __init__(
        self,
        session: Session,
        default_limit: int = DEFAULT_PAGE_LIMIT,
        max_limit: int = MAX_PAGE_LIMIT,
    ):
        self.session = session
        self._default_limit = default_limit
        self._max_limit = max_limit

    def _paginate(
        self,
        stmt: Select,
        to_dto: Callable[..., T],
        page: int = 1,
        limit: int | None = None,
        scalars: bool = True,
    ) -> Page[T]:
        """
        Run ``stmt`` for one page and count the full result.

        ``page`` is 1-based; ``limit`` is clamped to [1, max_limit].
        """
        page = max(page, 1)
        limit = min(max(limit or self._default_limit, 1), self._max_limit)

        total = self.session.execute(
            select(func.count()).select_from(stmt.order_by(None).subquery())
        ).scalar_one()

        result = self.session.execute(stmt.offset((page - 1) * limit).limit(limit))
        rows = result.scalars() if scalars else result
        return Page(
            items=tuple(to_dto(row) for row in rows),
            page=page,
            limit=limit,
            total=total,
        )
