from concurrent import futures

import grpc
import pytest
from google.protobuf import empty_pb2

from opi_cni import proto


class FakeInfraManager:
    """In-process BridgePortService keeping ports in a dict."""

    def __init__(self):
        self.ports = {}
        self.created = 0
        self.deleted = []
        self.oper_status = proto.BP_OPER_STATUS_UP
        self.create_error = None

    def create(self, request, context):
        if self.create_error is not None:
            context.abort(self.create_error, "create rejected")
        self.created += 1
        name = f"bp-{self.created}"
        self.ports[name] = request.bridge_port.spec
        return proto.BridgePort(
            name=name,
            spec=request.bridge_port.spec,
            status=proto.BridgePortStatus(oper_status=self.oper_status),
        )

    def delete(self, request, context):
        if request.name not in self.ports:
            context.abort(grpc.StatusCode.NOT_FOUND, f"{request.name} not found")
        del self.ports[request.name]
        self.deleted.append(request.name)
        return empty_pb2.Empty()


@pytest.fixture
def infra_manager():
    fake = FakeInfraManager()
    handlers = {
        "CreateBridgePort": grpc.unary_unary_rpc_method_handler(
            fake.create,
            request_deserializer=proto.CreateBridgePortRequest.FromString,
            response_serializer=proto.BridgePort.SerializeToString,
        ),
        "DeleteBridgePort": grpc.unary_unary_rpc_method_handler(
            fake.delete,
            request_deserializer=proto.DeleteBridgePortRequest.FromString,
            response_serializer=empty_pb2.Empty.SerializeToString,
        ),
    }
    server = grpc.server(futures.ThreadPoolExecutor(max_workers=2))
    server.add_generic_rpc_handlers(
        (grpc.method_handlers_generic_handler(proto.SERVICE, handlers),)
    )
    port = server.add_insecure_port("127.0.0.1:0")
    server.start()
    yield fake, f"127.0.0.1:{port}"
    server.stop(None)

