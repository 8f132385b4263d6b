from pathlib import Path

from opi_cni.cache import AttachmentCache
from opi_cni.config import NetConf, VfState
from opi_cni.store import FileStateStore


def test_cache_roundtrip(tmp_path: Path):
    cache = AttachmentCache(FileStateStore(tmp_path))
    conf = NetConf(
        cni_version="1.0.0",
        name="xpu-net",
        device_id="0000:af:06.0",
        master="ens1f0",
        vf_id=3,
        logical_bridges=["lb-10", "lb-20"],
        xpu_infra_mgr_conn="10.0.0.5:50151",
        ipam={"type": "host-local", "subnet": "10.56.0.0/16"},
        orig_vf_state=VfState(host_ifname="ens1f0v3", admin_mac="00:00:00:00:00:00"),
        bridge_port_name="bp-1",
    )

    cache.put("c1", "net1", conf)
    loaded = cache.get("c1", "net1")

    assert loaded == conf
    assert (tmp_path / "c1-net1").exists()


def test_missing_entry_returns_none(tmp_path: Path):
    cache = AttachmentCache(FileStateStore(tmp_path))

    assert cache.get("c1", "net1") is None


def test_unreadable_entry_returns_none(tmp_path: Path):
    (tmp_path / "c1-net1").write_text("{not json")
    cache = AttachmentCache(FileStateStore(tmp_path))

    assert cache.get("c1", "net1") is None


def test_delete_is_idempotent(tmp_path: Path):
    cache = AttachmentCache(FileStateStore(tmp_path))
    cache.put("c1", "net1", NetConf(device_id="0000:af:06.0"))

    cache.delete("c1", "net1")
    cache.delete("c1", "net1")

    assert cache.get("c1", "net1") is None
