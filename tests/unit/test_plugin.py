import io
import json
import sys
from pathlib import Path

import pytest

from opi_cni.config import AttachmentResult, IpamResult, IPConfig, Route
from opi_cni.errors import CODE_INVALID_ENV, AlreadyAllocated, OpiCniError
from opi_cni_plugin.config import CONFIG_ENV, PluginConfig, load_config
from opi_cni_plugin.main import cmd_args_from_env, main, run
from opi_cni_plugin.result import format_error, format_result, version_info


def test_load_config(tmp_path: Path):
    config_path = tmp_path / "plugin.yaml"
    config_path.write_text(
        """
state_dir: /run/opi-state
conf_search_paths:
  - /etc/opi/opi.conf
rpc_timeout: 5
logging:
  level: debug
  file: /var/log/opi-cni.log
"""
    )

    config = load_config(config_path)

    assert config.state_dir == Path("/run/opi-state")
    assert config.conf_search_paths == [Path("/etc/opi/opi.conf")]
    assert config.rpc_timeout == 5.0
    assert config.ipam_timeout == 60.0
    assert config.logging.level == "DEBUG"
    assert config.logging.file == Path("/var/log/opi-cni.log")


def test_load_config_defaults_when_missing(tmp_path: Path, monkeypatch):
    monkeypatch.setenv(CONFIG_ENV, str(tmp_path / "absent.yaml"))

    assert load_config() == PluginConfig()


def test_load_config_rejects_invalid(tmp_path: Path):
    config_path = tmp_path / "plugin.yaml"
    config_path.write_text("conf_search_paths: /etc/opi/opi.conf\n")

    with pytest.raises(ValueError):
        load_config(config_path)


def build_result() -> AttachmentResult:
    return AttachmentResult(
        ifname="net1",
        sandbox="/var/run/netns/pod-a",
        mac="aa:bb:cc:dd:ee:01",
        ipam=IpamResult(
            ips=[IPConfig("10.1.0.5/24", "10.1.0.1")],
            routes=[Route("0.0.0.0/0")],
        ),
    )


def test_format_result_current_version():
    payload = format_result(build_result(), "1.0.0")

    assert payload["cniVersion"] == "1.0.0"
    assert payload["interfaces"] == [
        {"name": "net1", "mac": "aa:bb:cc:dd:ee:01", "sandbox": "/var/run/netns/pod-a"}
    ]
    assert payload["ips"] == [{"address": "10.1.0.5/24", "gateway": "10.1.0.1", "interface": 0}]
    assert payload["routes"] == [{"dst": "0.0.0.0/0"}]


def test_format_result_legacy_version_carries_ip_version():
    payload = format_result(build_result(), "0.3.1")

    assert payload["ips"][0]["version"] == "4"


def test_format_result_without_ipam():
    payload = format_result(AttachmentResult("net1", "/var/run/netns/pod-a", "aa:bb:cc:dd:ee:01"), "")

    assert payload["cniVersion"] == "1.0.0"
    assert "ips" not in payload


def test_format_error():
    exc = AlreadyAllocated("pci address 0000:af:06.0 is already allocated", step="resolve")

    payload = format_error(exc, "1.0.0")

    assert payload == {
        "cniVersion": "1.0.0",
        "code": 11,
        "msg": "resolve: pci address 0000:af:06.0 is already allocated",
    }
    assert format_error(RuntimeError("boom"), "")["code"] == 999


def test_version_info():
    assert "1.0.0" in version_info()["supportedVersions"]


class FakeDriver:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def add(self, cmd_args):
        self.calls.append(("ADD", cmd_args))
        if self.error:
            raise self.error
        return build_result()

    def delete(self, cmd_args):
        self.calls.append(("DEL", cmd_args))

    def check(self, cmd_args):
        self.calls.append(("CHECK", cmd_args))


ENV = {
    "CNI_CONTAINERID": "ctr1",
    "CNI_NETNS": "/var/run/netns/pod-a",
    "CNI_IFNAME": "net1",
    "CNI_ARGS": "MAC=02:00:00:00:00:01",
    "CNI_PATH": "/opt/cni/bin",
}
STDIN = json.dumps({"cniVersion": "0.4.0", "deviceID": "0000:af:06.0"}).encode()


def test_run_add_prints_result():
    driver = FakeDriver()
    out = io.StringIO()

    assert run("ADD", ENV, STDIN, out, driver) == 0

    payload = json.loads(out.getvalue())
    assert payload["cniVersion"] == "0.4.0"
    assert payload["interfaces"][0]["name"] == "net1"
    _, cmd_args = driver.calls[0]
    assert cmd_args.args == "MAC=02:00:00:00:00:01"
    assert cmd_args.stdin_data == STDIN


def test_run_del_prints_nothing():
    out = io.StringIO()

    assert run("DEL", {"CNI_CONTAINERID": "ctr1", "CNI_IFNAME": "net1"}, STDIN, out, FakeDriver()) == 0
    assert out.getvalue() == ""


def test_run_reports_driver_error():
    out = io.StringIO()
    driver = FakeDriver(AlreadyAllocated("pci address 0000:af:06.0 is already allocated", step="resolve"))

    assert run("ADD", ENV, STDIN, out, driver) == 1

    payload = json.loads(out.getvalue())
    assert payload["code"] == 11
    assert payload["msg"].startswith("resolve: ")


def test_run_unknown_command():
    out = io.StringIO()

    assert run("RESET", ENV, STDIN, out, FakeDriver()) == 1
    assert json.loads(out.getvalue())["code"] == CODE_INVALID_ENV


def test_missing_environment():
    with pytest.raises(OpiCniError) as excinfo:
        cmd_args_from_env("ADD", {"CNI_CONTAINERID": "ctr1"}, b"")

    assert excinfo.value.code == CODE_INVALID_ENV
    assert "CNI_NETNS" in str(excinfo.value)


@pytest.mark.parametrize(
    "stdin, expected",
    [(b'{"cniVersion": "0.4.0"}', "0.4.0"), (b"", "1.0.0")],
)
def test_version_answers_in_requested_version(monkeypatch, capsys, stdin, expected):
    monkeypatch.setenv("CNI_COMMAND", "VERSION")
    monkeypatch.setattr(sys, "stdin", io.TextIOWrapper(io.BytesIO(stdin)))

    assert main([]) == 0

    payload = json.loads(capsys.readouterr().out)
    assert payload["cniVersion"] == expected
    assert "0.4.0" in payload["supportedVersions"]
