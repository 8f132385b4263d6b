import json
import os
from pathlib import Path

import pytest

from opi_cni.errors import MappingError, ResolutionError
from opi_cni.vf import SriovManager, lookup_mac_for_pci

PF_PCI = "0000:af:00.0"
VF_PCI = "0000:af:06.0"
DPDK_PCI = "0000:af:06.1"


def build_sysfs(root: Path) -> Path:
    """Lay out a PF with two VFs, one kernel netdev and one bound to vfio-pci."""

    devices = root / "bus" / "pci" / "devices"
    drivers = root / "bus" / "pci" / "drivers"
    (drivers / "iavf").mkdir(parents=True)
    (drivers / "vfio-pci").mkdir(parents=True)

    pf = devices / PF_PCI
    (pf / "net" / "ens1f0").mkdir(parents=True)
    for pci, index, driver in ((VF_PCI, 3, "iavf"), (DPDK_PCI, 4, "vfio-pci")):
        vf = devices / pci
        vf.mkdir(parents=True)
        os.symlink(pf, vf / "physfn")
        os.symlink(vf, pf / f"virtfn{index}")
        os.symlink(drivers / driver, vf / "driver")
    (devices / VF_PCI / "net" / "ens1f0v3").mkdir(parents=True)
    return root


def test_identify_returns_pf_and_index(tmp_path: Path):
    manager = SriovManager(sysfs_root=build_sysfs(tmp_path))

    assert manager.identify(VF_PCI) == ("ens1f0", 3)
    assert manager.identify(DPDK_PCI) == ("ens1f0", 4)


def test_identify_unknown_device(tmp_path: Path):
    manager = SriovManager(sysfs_root=build_sysfs(tmp_path))

    with pytest.raises(ResolutionError):
        manager.identify("0000:00:01.0")


def test_link_names(tmp_path: Path):
    manager = SriovManager(sysfs_root=build_sysfs(tmp_path))

    assert manager.link_names(VF_PCI) == ["ens1f0v3"]
    assert manager.link_names(DPDK_PCI) == []


def test_has_dpdk_driver(tmp_path: Path):
    manager = SriovManager(sysfs_root=build_sysfs(tmp_path))

    assert manager.has_dpdk_driver(DPDK_PCI)
    assert not manager.has_dpdk_driver(VF_PCI)
    assert not manager.has_dpdk_driver("0000:00:01.0")


def test_lookup_mac_for_pci(tmp_path: Path):
    mapping = tmp_path / "pci_to_mac.json"
    mapping.write_text(json.dumps({DPDK_PCI: "02:11:22:33:44:55"}))

    assert lookup_mac_for_pci(DPDK_PCI, str(mapping)) == "02:11:22:33:44:55"


@pytest.mark.parametrize(
    "content",
    [None, "{not json", json.dumps(["a"]), json.dumps({VF_PCI: "02:11:22:33:44:55"})],
)
def test_lookup_mac_for_pci_failures(tmp_path: Path, content):
    mapping = tmp_path / "pci_to_mac.json"
    if content is not None:
        mapping.write_text(content)

    with pytest.raises(MappingError):
        lookup_mac_for_pci(DPDK_PCI, str(mapping))


def test_lookup_mac_requires_mapping_path():
    with pytest.raises(MappingError):
        lookup_mac_for_pci(DPDK_PCI, "")
