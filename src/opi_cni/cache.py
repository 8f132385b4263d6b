"""Cache of resolved configurations so DEL can run without re-resolving."""

from __future__ import annotations

import json
import logging
from typing import Optional

from .config import NetConf
from .store import StateStore

LOG = logging.getLogger(__name__)


def cache_key(container_id: str, ifname: str) -> str:
    return f"{container_id}-{ifname}"


class AttachmentCache:
    def __init__(self, store: StateStore) -> None:
        self._store = store

    def put(self, container_id: str, ifname: str, conf: NetConf) -> None:
        payload = json.dumps(conf.to_dict(), sort_keys=True).encode("utf-8")
        self._store.put(cache_key(container_id, ifname), payload)

    def get(self, container_id: str, ifname: str) -> Optional[NetConf]:
        """Return the cached configuration, or ``None`` if absent or unreadable."""

        key = cache_key(container_id, ifname)
        raw = self._store.get(key)
        if raw is None:
            return None
        try:
            return NetConf.from_dict(json.loads(raw))
        except (AttributeError, TypeError, ValueError) as exc:
            LOG.warning("ignoring unreadable cached config %s: %s", key, exc)
            return None

    def delete(self, container_id: str, ifname: str) -> None:
        self._store.delete(cache_key(container_id, ifname))
