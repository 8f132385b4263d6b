import grpc
import pytest

from opi_cni import proto
from opi_cni.bridge_port import BridgePortClient, build_create_request, mac_to_bytes
from opi_cni.config import NetConf
from opi_cni.errors import NotReady, RemoteError, RemoteUnavailable

MAC = "aa:bb:cc:dd:ee:01"


def test_access_port_for_single_bridge():
    request = build_create_request(NetConf(logical_bridge="lb-10"), MAC)

    spec = request.bridge_port.spec
    assert spec.ptype == proto.ACCESS
    assert list(spec.logical_bridges) == ["lb-10"]
    assert spec.mac_address == bytes.fromhex("aabbccddee01")


def test_trunk_port_for_bridge_list():
    request = build_create_request(NetConf(logical_bridges=["lb-10", "lb-20"]), MAC)

    spec = request.bridge_port.spec
    assert spec.ptype == proto.TRUNK
    assert list(spec.logical_bridges) == ["lb-10", "lb-20"]


def test_mac_to_bytes_rejects_garbage():
    with pytest.raises(ValueError):
        mac_to_bytes("not-a-mac")


def test_create_and_delete(infra_manager):
    fake, target = infra_manager
    conf = NetConf(logical_bridge="lb-10", xpu_infra_mgr_conn=target)
    client = BridgePortClient(target, timeout=5)

    name = client.create(conf, MAC)

    assert name == "bp-1"
    assert conf.bridge_port_name == "bp-1"
    assert list(fake.ports["bp-1"].logical_bridges) == ["lb-10"]

    client.delete(name)
    assert fake.ports == {}
    assert fake.deleted == ["bp-1"]


def test_create_not_up_raises_not_ready_but_records_name(infra_manager):
    fake, target = infra_manager
    fake.oper_status = proto.BP_OPER_STATUS_DOWN
    conf = NetConf(logical_bridge="lb-10")
    client = BridgePortClient(target, timeout=5)

    with pytest.raises(NotReady):
        client.create(conf, MAC)

    assert conf.bridge_port_name == "bp-1"


def test_create_remote_failure_is_remote_error(infra_manager):
    fake, target = infra_manager
    fake.create_error = grpc.StatusCode.INVALID_ARGUMENT
    client = BridgePortClient(target, timeout=5)

    with pytest.raises(RemoteError):
        client.create(NetConf(logical_bridge="lb-10"), MAC)


def test_delete_not_found_is_success(infra_manager):
    fake, target = infra_manager
    client = BridgePortClient(target, timeout=5)

    client.delete("bp-unknown")

    assert fake.deleted == []


def test_delete_without_name_makes_no_call():
    def no_channel(target):
        raise AssertionError("no channel should be opened")

    client = BridgePortClient("127.0.0.1:1", channel_factory=no_channel)

    client.delete("")


def test_empty_target_is_unavailable():
    client = BridgePortClient("")

    with pytest.raises(RemoteUnavailable):
        client.create(NetConf(logical_bridge="lb-10"), MAC)


def test_unreachable_target_is_unavailable():
    client = BridgePortClient("127.0.0.1:1", timeout=2)

    with pytest.raises(RemoteUnavailable):
        client.delete("bp-1")
