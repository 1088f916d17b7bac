"""
Module: inventory_kernel.selectors.base
Responsibility: Base class for read-only query selectors.  Selectors are the
    read side next to the services: stock status, low-stock lists, movement
    history and summaries.
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    domain DTOs.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Read-only: selectors never add, delete, flush or commit.
    - Selectors return frozen DTOs, not ORM instances.
    - The caller owns the session and its transaction scope.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from inventory_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """
    Abstract base class for all selectors.

    Non-goals:
        - Defines no query methods; subclasses implement them.
    """

    def __init__(self, session: Session):
        self.session = session
