"""
BaseService -- common constructor for kernel services.

Every service receives the caller's SQLAlchemy ``Session`` and a ``Clock``.
Services call ``session.flush()`` and never ``commit()`` or ``rollback()``;
the caller owns the transaction, so a sale can span the gate, costing and
the ledger and still roll back as one unit.
"""

from abc import ABC
from typing import Generic, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session

from inventory_kernel.db.base import Base
from inventory_kernel.domain.clock import Clock, SystemClock

ModelType = TypeVar("ModelType", bound=Base)

# Actor recorded on rows the kernel creates on its own behalf
SYSTEM_ACTOR_ID = UUID(int=0)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Non-goals:
        - Does NOT manage transaction lifecycle.
        - Read-only queries belong in ``inventory_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self._clock = clock or SystemClock()

    @property
    def clock(self) -> Clock:
        return self._clock
