"""Durable key/value storage for state shared between plugin invocations.

Each ADD and DEL runs in its own short-lived process, so anything a later
invocation needs (allocation claims, cached configurations) must live outside
process memory.  :class:`StateStore` is the contract; :class:`FileStateStore`
keeps one file per key below a state directory.
"""

from __future__ import annotations

import errno
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from .errors import StateError

LOG = logging.getLogger(__name__)

DEFAULT_STATE_DIR = Path("/var/lib/cni/opi")


class StateStore(ABC):
    """Minimal durable store visible across processes."""

    @abstractmethod
    def get(self, key: str) -> Optional[bytes]:
        """Return the value stored under ``key`` or ``None``."""

    @abstractmethod
    def put(self, key: str, value: bytes) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""

    @abstractmethod
    def create(self, key: str, value: bytes) -> bool:
        """Store ``value`` only if ``key`` is absent; return ``False`` otherwise."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove ``key``; removing an absent key is a no-op."""


class FileStateStore(StateStore):
    """Store each key as a file in ``state_dir``.

    ``put`` writes through a temporary file and ``os.replace`` so readers never
    observe partial content.  ``create`` relies on ``O_CREAT | O_EXCL`` which
    is atomic across processes on local filesystems.
    """

    def __init__(self, state_dir: Path = DEFAULT_STATE_DIR) -> None:
        self._state_dir = Path(state_dir)

    @property
    def state_dir(self) -> Path:
        return self._state_dir

    def _path(self, key: str) -> Path:
        if not key or "/" in key or key in (".", ".."):
            raise StateError(f"invalid state key {key!r}")
        return self._state_dir / key

    def _ensure_dir(self) -> None:
        try:
            self._state_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        except OSError as exc:
            raise StateError(f"failed to create state dir {self._state_dir}: {exc}") from exc

    def get(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StateError(f"failed to read {path}: {exc}") from exc

    def put(self, key: str, value: bytes) -> None:
        self._ensure_dir()
        path = self._path(key)
        tmp = path.with_name(f".{path.name}.tmp.{os.getpid()}")
        try:
            tmp.write_bytes(value)
            os.replace(tmp, path)
        except OSError as exc:
            tmp.unlink(missing_ok=True)
            raise StateError(f"failed to write {path}: {exc}") from exc
        LOG.debug("stored state %s", path)

    def create(self, key: str, value: bytes) -> bool:
        self._ensure_dir()
        path = self._path(key)
        try:
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        except FileExistsError:
            return False
        except OSError as exc:
            raise StateError(f"failed to create {path}: {exc}") from exc
        with os.fdopen(fd, "wb") as fh:
            fh.write(value)
        LOG.debug("created state %s", path)
        return True

    def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            if exc.errno == errno.ENOENT:  # pragma: no cover - raced with another DEL
                return
            raise StateError(f"failed to remove {path}: {exc}") from exc
        LOG.debug("removed state %s", path)
