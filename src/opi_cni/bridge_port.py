"""gRPC client for bridge ports on the xPU infra manager.

A bridge port binds the MAC address of a VF to one (ACCESS) or several
(TRUNK) logical bridges served by the smart-NIC control plane.  Each call
opens its own channel and closes it on return; calls are bounded by a fixed
deadline and never retried here, the container runtime retries the whole
operation instead.
"""

from __future__ import annotations

import logging
from typing import Callable

import grpc
from google.protobuf import empty_pb2

from . import proto
from .config import NetConf
from .errors import ConfigError, NotReady, RemoteError, RemoteUnavailable

LOG = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0

_UNAVAILABLE_CODES = (grpc.StatusCode.UNAVAILABLE, grpc.StatusCode.DEADLINE_EXCEEDED)


def mac_to_bytes(mac: str) -> bytes:
    """Convert ``aa:bb:cc:dd:ee:ff`` into its six raw bytes."""

    parts = mac.replace("-", ":").split(":")
    if len(parts) != 6:
        raise ValueError(f"invalid MAC address {mac!r}")
    return bytes(int(part, 16) for part in parts)


def build_create_request(conf: NetConf, mac: str):
    if conf.logical_bridge:
        ptype = proto.ACCESS
        bridges = [conf.logical_bridge]
    else:
        ptype = proto.TRUNK
        bridges = list(conf.logical_bridges)

    try:
        raw_mac = mac_to_bytes(mac)
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc
    spec = proto.BridgePortSpec(
        mac_address=raw_mac,
        ptype=ptype,
        logical_bridges=bridges,
    )
    return proto.CreateBridgePortRequest(bridge_port=proto.BridgePort(spec=spec))


class BridgePortClient:
    """Create and delete bridge ports on the infra manager at ``target``.

    Parameters
    ----------
    target:
        ``host:port`` of the infra manager (``xpu_infra_mgr_conn``).
    timeout:
        Deadline in seconds applied to every round trip.
    channel_factory:
        Callable returning a :class:`grpc.Channel`; the transport is not
        authenticated at this layer.
    """

    def __init__(
        self,
        target: str,
        timeout: float = DEFAULT_TIMEOUT,
        channel_factory: Callable[[str], grpc.Channel] = grpc.insecure_channel,
    ) -> None:
        self._target = target
        self._timeout = timeout
        self._channel_factory = channel_factory

    def _open(self) -> grpc.Channel:
        if not self._target:
            raise RemoteUnavailable("xpu_infra_mgr_conn netconf field cannot be empty")
        return self._channel_factory(self._target)

    def _translate(self, exc: grpc.RpcError, action: str) -> Exception:
        code = exc.code() if hasattr(exc, "code") else None
        details = exc.details() if hasattr(exc, "details") else str(exc)
        msg = f"error occurred while {action} at {self._target}: {code} {details}"
        if code in _UNAVAILABLE_CODES:
            return RemoteUnavailable(msg)
        return RemoteError(msg)

    def create(self, conf: NetConf, mac: str) -> str:
        """Create the bridge port for ``mac`` and return its name.

        The returned name is stored on ``conf`` before the operational status
        is checked, so a port that comes up not ready can still be deleted.
        """

        request = build_create_request(conf, mac)
        with self._open() as channel:
            call = channel.unary_unary(
                proto.CREATE_METHOD,
                request_serializer=proto.CreateBridgePortRequest.SerializeToString,
                response_deserializer=proto.BridgePort.FromString,
            )
            try:
                bridge_port = call(request, timeout=self._timeout)
            except grpc.RpcError as exc:
                raise self._translate(exc, "creating bridge port") from exc

        conf.bridge_port_name = bridge_port.name
        LOG.info(
            "created bridge port %s (mac=%s bridges=%s)",
            bridge_port.name,
            mac,
            list(request.bridge_port.spec.logical_bridges),
        )
        if bridge_port.status.oper_status != proto.BP_OPER_STATUS_UP:
            raise NotReady(f"the status of created bridge port {bridge_port.name} is not UP")
        return bridge_port.name

    def delete(self, name: str) -> None:
        """Delete bridge port ``name``; an absent port counts as deleted."""

        if not name:
            LOG.debug("no bridge port recorded, nothing to delete")
            return

        with self._open() as channel:
            call = channel.unary_unary(
                proto.DELETE_METHOD,
                request_serializer=proto.DeleteBridgePortRequest.SerializeToString,
                response_deserializer=empty_pb2.Empty.FromString,
            )
            try:
                call(proto.DeleteBridgePortRequest(name=name), timeout=self._timeout)
            except grpc.RpcError as exc:
                if hasattr(exc, "code") and exc.code() == grpc.StatusCode.NOT_FOUND:
                    LOG.info("bridge port %s already gone", name)
                    return
                raise self._translate(exc, f"deleting bridge port {name}") from exc
        LOG.info("deleted bridge port %s", name)
