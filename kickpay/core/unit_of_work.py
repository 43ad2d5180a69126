"""
Unit of work - accumulate writes, commit them atomically.

Service methods that belong to a larger transaction return an *operation*
(a callable taking the open session) instead of committing themselves.
The caller stages the operations it needs and commits them together:

    uow = UnitOfWork(session_factory)
    uow.stage(dunning_service.add_op(record, "retry"))
    uow.stage(lambda s: ...)
    results = uow.commit()

Either every staged operation is applied or none is.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, List

from sqlmodel import Session

logger = logging.getLogger(__name__)

Operation = Callable[[Session], Any]


class UnitOfWork:
    def __init__(self, session_factory: Callable):
        self._session_factory = session_factory
        self._ops: List[Operation] = []

    def stage(self, op: Operation) -> "UnitOfWork":
        self._ops.append(op)
        return self

    def extend(self, ops: List[Operation]) -> "UnitOfWork":
        self._ops.extend(ops)
        return self

    def __len__(self) -> int:
        return len(self._ops)

    def commit(self) -> list:
        """Run every staged operation in one transaction and return their results."""
        ops, self._ops = self._ops, []
        results: list = []
        with self._session_factory() as session:
            try:
                for op in ops:
                    results.append(op(session))
                    session.flush()
                session.commit()
            except Exception:
                session.rollback()
                logger.debug("unit_of_work_rolled_back", extra={"ops": len(ops)})
                raise
        return results
