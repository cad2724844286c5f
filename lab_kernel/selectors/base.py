"""
Module: lab_kernel.selectors.base
Responsibility: Shared base for read-side query objects.
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    domain/ value types.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Selectors never add, delete, flush or commit; the caller's session and
      transaction are used as given.
    - Public reads return DTOs or ids.  Methods that hand back ORM rows exist
      only for services that go on to lock or modify them.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from lab_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """Read-only queries against one model, inside the caller's session."""

    def __init__(self, session: Session):
        self.session = session
