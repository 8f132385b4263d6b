from pathlib import Path

from opi_cni.errors import StateError
from opi_cni.store import FileStateStore


def test_put_get_delete(tmp_path: Path):
    store = FileStateStore(tmp_path / "state")

    store.put("key", b"value")

    assert store.get("key") == b"value"
    store.delete("key")
    assert store.get("key") is None


def test_delete_missing_key_is_noop(tmp_path: Path):
    store = FileStateStore(tmp_path)

    store.delete("missing")

    assert store.get("missing") is None


def test_create_is_exclusive(tmp_path: Path):
    store = FileStateStore(tmp_path)

    assert store.create("0000:af:06.0", b"/var/run/netns/a") is True
    assert store.create("0000:af:06.0", b"/var/run/netns/b") is False
    assert store.get("0000:af:06.0") == b"/var/run/netns/a"


def test_put_replaces_value(tmp_path: Path):
    store = FileStateStore(tmp_path)

    store.put("key", b"first")
    store.put("key", b"second")

    assert store.get("key") == b"second"
    assert sorted(p.name for p in tmp_path.iterdir()) == ["key"]


def test_rejects_path_like_keys(tmp_path: Path):
    store = FileStateStore(tmp_path)

    try:
        store.put("../escape", b"x")
    except StateError:
        pass
    else:
        raise AssertionError("path-like key did not raise StateError")
