"""Protobuf messages of the xPU infra manager BridgePortService.

Only the messages used by :mod:`opi_cni.bridge_port` are described.  They are
registered in a private descriptor pool from a ``FileDescriptorProto`` built
here, which keeps the wire format identical to the upstream
``opi_api.network.evpn_gw.v1alpha1`` definitions without shipping generated
``*_pb2`` modules.
"""

from __future__ import annotations

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory

PACKAGE = "opi_api.network.evpn_gw.v1alpha1"
SERVICE = f"{PACKAGE}.BridgePortService"
CREATE_METHOD = f"/{SERVICE}/CreateBridgePort"
DELETE_METHOD = f"/{SERVICE}/DeleteBridgePort"

_FDP = descriptor_pb2.FieldDescriptorProto


def _add_enum(fdp: descriptor_pb2.FileDescriptorProto, name: str, values) -> None:
    enum = fdp.enum_type.add(name=name)
    for number, value in enumerate(values):
        enum.value.add(name=value, number=number)


def _add_message(fdp: descriptor_pb2.FileDescriptorProto, name: str, fields) -> None:
    message = fdp.message_type.add(name=name)
    for number, (field_name, field_type, type_name, repeated) in enumerate(fields, start=1):
        field = message.field.add(
            name=field_name,
            number=number,
            type=field_type,
            label=_FDP.LABEL_REPEATED if repeated else _FDP.LABEL_OPTIONAL,
        )
        if type_name:
            field.type_name = f".{PACKAGE}.{type_name}"


def _build_file() -> descriptor_pb2.FileDescriptorProto:
    fdp = descriptor_pb2.FileDescriptorProto(
        name="opi_cni/l2_xpu_infra_mgr.proto",
        package=PACKAGE,
        syntax="proto3",
    )
    _add_enum(fdp, "BridgePortType", ("BRIDGE_PORT_TYPE_UNSPECIFIED", "ACCESS", "TRUNK"))
    _add_enum(
        fdp,
        "BPOperStatus",
        ("BP_OPER_STATUS_UNSPECIFIED", "BP_OPER_STATUS_UP", "BP_OPER_STATUS_DOWN"),
    )
    _add_message(
        fdp,
        "BridgePortSpec",
        [
            ("mac_address", _FDP.TYPE_BYTES, None, False),
            ("ptype", _FDP.TYPE_ENUM, "BridgePortType", False),
            ("logical_bridges", _FDP.TYPE_STRING, None, True),
        ],
    )
    _add_message(
        fdp,
        "BridgePortStatus",
        [("oper_status", _FDP.TYPE_ENUM, "BPOperStatus", False)],
    )
    _add_message(
        fdp,
        "BridgePort",
        [
            ("name", _FDP.TYPE_STRING, None, False),
            ("spec", _FDP.TYPE_MESSAGE, "BridgePortSpec", False),
            ("status", _FDP.TYPE_MESSAGE, "BridgePortStatus", False),
        ],
    )
    _add_message(
        fdp,
        "CreateBridgePortRequest",
        [
            ("bridge_port_id", _FDP.TYPE_STRING, None, False),
            ("bridge_port", _FDP.TYPE_MESSAGE, "BridgePort", False),
        ],
    )
    _add_message(
        fdp,
        "DeleteBridgePortRequest",
        [
            ("name", _FDP.TYPE_STRING, None, False),
            ("allow_missing", _FDP.TYPE_BOOL, None, False),
        ],
    )
    return fdp


_POOL = descriptor_pool.DescriptorPool()
_POOL.Add(_build_file())


def _message(name: str):
    return message_factory.GetMessageClass(_POOL.FindMessageTypeByName(f"{PACKAGE}.{name}"))


def _enum_value(enum_name: str, value: str) -> int:
    return _POOL.FindEnumTypeByName(f"{PACKAGE}.{enum_name}").values_by_name[value].number


BridgePort = _message("BridgePort")
BridgePortSpec = _message("BridgePortSpec")
BridgePortStatus = _message("BridgePortStatus")
CreateBridgePortRequest = _message("CreateBridgePortRequest")
DeleteBridgePortRequest = _message("DeleteBridgePortRequest")

ACCESS = _enum_value("BridgePortType", "ACCESS")
TRUNK = _enum_value("BridgePortType", "TRUNK")
BP_OPER_STATUS_UP = _enum_value("BPOperStatus", "BP_OPER_STATUS_UP")
BP_OPER_STATUS_DOWN = _enum_value("BPOperStatus", "BP_OPER_STATUS_DOWN")
