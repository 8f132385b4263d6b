"""Compensation stack used to undo a partially committed ADD."""

from __future__ import annotations

import logging
from typing import Any, Callable, List, Tuple

LOG = logging.getLogger(__name__)


class CompensationStack:
    """Record undo actions as steps commit and replay them in reverse.

    A failing compensation is logged and the remaining ones still run; the
    caller keeps raising its original error.
    """

    def __init__(self) -> None:
        self._actions: List[Tuple[str, Callable[[], Any]]] = []

    def push(self, description: str, action: Callable[[], Any]) -> None:
        self._actions.append((description, action))

    def __len__(self) -> int:
        return len(self._actions)

    def unwind(self) -> List[str]:
        """Run every recorded action, newest first; return the failed ones."""

        failed: List[str] = []
        while self._actions:
            description, action = self._actions.pop()
            LOG.debug("rollback: %s", description)
            try:
                action()
            except Exception:
                LOG.exception("rollback step '%s' failed", description)
                failed.append(description)
        return failed

    def discard(self) -> None:
        """Forget the recorded actions once the whole procedure committed."""

        self._actions.clear()
