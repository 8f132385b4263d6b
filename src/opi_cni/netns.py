"""Network namespace handles.

Entering a network namespace with ``setns(2)`` changes the state of the
calling thread only.  :meth:`NetNamespace.do` therefore runs the callable on a
dedicated thread that enters the namespace, runs exactly that callable and
exits; nothing else ever runs on it.
"""

from __future__ import annotations

import logging
import os
import threading
from typing import Any, Callable, Dict, Optional

from pyroute2 import netns

from .errors import NamespaceError, NamespaceNotFound

LOG = logging.getLogger(__name__)


class NetNamespace:
    def __init__(self, path: str, fd: int) -> None:
        self._path = path
        self._fd: Optional[int] = fd

    @classmethod
    def open(cls, path: str) -> "NetNamespace":
        if not path:
            raise NamespaceNotFound("network namespace path is empty")
        try:
            fd = os.open(path, os.O_RDONLY)
        except FileNotFoundError as exc:
            raise NamespaceNotFound(f"network namespace {path} does not exist") from exc
        except OSError as exc:
            raise NamespaceError(f"failed to open netns {path}: {exc}") from exc
        return cls(path, fd)

    @property
    def path(self) -> str:
        return self._path

    @property
    def fd(self) -> int:
        if self._fd is None:
            raise NamespaceError(f"netns handle for {self._path} is closed")
        return self._fd

    def do(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run ``func`` inside the namespace and return its result."""

        target = f"/proc/self/fd/{self.fd}"
        outcome: Dict[str, Any] = {}

        def _run() -> None:
            try:
                netns.setns(target, flags=0)
            except OSError as exc:
                outcome["error"] = NamespaceError(f"failed to enter netns {self._path}: {exc}")
                return
            try:
                outcome["result"] = func(*args, **kwargs)
            except Exception as exc:  # re-raised in the calling thread
                outcome["error"] = exc

        worker = threading.Thread(target=_run, name=f"netns:{self._path}", daemon=True)
        worker.start()
        worker.join()

        if "error" in outcome:
            raise outcome["error"]
        return outcome.get("result")

    def close(self) -> None:
        if self._fd is not None:
            os.close(self._fd)
            self._fd = None

    def __enter__(self) -> "NetNamespace":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
