"""
Module: workflow_kernel.selectors.base
Responsibility: Base class for read-only query selectors.  Selectors are
    the query side of the kernel: listings, sweeps, history and reports.
Architecture position: Kernel > Selectors.  May import from db/, models/
    and domain/.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Read-only: selectors never add, delete, flush or commit.
    - DTO return convention: public methods return frozen domain DTOs or
      plain values, never ORM instances.
    - Session ownership: the caller owns the session and its transaction.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseSelector(ABC):
    """
    Abstract base class for all selectors.

    Non-goals:
        - BaseSelector defines no queries; subclasses implement them.
    """

    def __init__(self, session: Session):
        self.session = session
