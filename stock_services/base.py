"""
BaseService -- abstract base for stock services that write through a
caller-owned session.

Invariants enforced:
    - Services flush within the caller's transaction and never commit or
      roll back themselves.  Entry points that own a transaction
      (``auto_commit=True``) do so explicitly and are documented as such.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseService(ABC):
    """
    Abstract base class for flush-only services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.
    """

    def __init__(self, session: Session):
        self.session = session
