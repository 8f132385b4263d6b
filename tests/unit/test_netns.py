import threading
from pathlib import Path

import pytest

from opi_cni.errors import NamespaceError, NamespaceNotFound
from opi_cni.netns import NetNamespace


@pytest.fixture
def ns_file(tmp_path: Path) -> Path:
    path = tmp_path / "pod-a"
    path.write_text("")
    return path


def test_open_missing_namespace(tmp_path: Path):
    with pytest.raises(NamespaceNotFound):
        NetNamespace.open(str(tmp_path / "gone"))


def test_open_empty_path():
    with pytest.raises(NamespaceNotFound):
        NetNamespace.open("")


def test_close_releases_handle(ns_file: Path):
    handle = NetNamespace.open(str(ns_file))
    assert handle.path == str(ns_file)

    handle.close()
    handle.close()

    with pytest.raises(NamespaceError):
        handle.fd


def test_do_runs_on_dedicated_thread(monkeypatch, ns_file: Path):
    entered = []
    monkeypatch.setattr(
        "opi_cni.netns.netns.setns",
        lambda target, flags=0: entered.append((target, threading.get_ident())),
    )

    with NetNamespace.open(str(ns_file)) as handle:
        fd = handle.fd
        result = handle.do(lambda a, b=0: (a + b, threading.get_ident()), 1, b=2)

    value, worker = result
    assert value == 3
    assert worker != threading.get_ident()
    assert entered == [(f"/proc/self/fd/{fd}", worker)]


def test_do_propagates_errors(monkeypatch, ns_file: Path):
    monkeypatch.setattr("opi_cni.netns.netns.setns", lambda target, flags=0: None)

    def boom():
        raise ValueError("boom")

    with NetNamespace.open(str(ns_file)) as handle:
        with pytest.raises(ValueError, match="boom"):
            handle.do(boom)


def test_do_reports_setns_failure(monkeypatch, ns_file: Path):
    def refuse(target, flags=0):
        raise PermissionError("operation not permitted")

    monkeypatch.setattr("opi_cni.netns.netns.setns", refuse)
    called = []

    with NetNamespace.open(str(ns_file)) as handle:
        with pytest.raises(NamespaceError):
            handle.do(called.append, 1)

    assert called == []
