"""
BaseService -- abstract base for all workflow services that write.

Responsibility:
    Provides the common constructor and session-handling contract.
    Concrete services receive a SQLAlchemy ``Session`` and use
    ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    Transaction boundaries: services flush within the caller's
    transaction and never commit or roll back themselves.  The caller
    (API handler, scheduler, CLI or test harness) owns commit/rollback,
    so a step action, its history rows, its audit entries and its
    notification succeed or fail together.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseService(ABC):
    """
    Abstract base class for write services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read-only query helpers -- those belong
          in ``workflow_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session
