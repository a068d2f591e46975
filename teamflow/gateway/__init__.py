from .base import GatewayInvoker, RpcCall, RpcError, RpcResult, RpcTimeoutError, rpc
from .factory import build_gateway
from .mock import MockGateway

__all__ = [
    "GatewayInvoker",
    "MockGateway",
    "RpcCall",
    "RpcError",
    "RpcResult",
    "RpcTimeoutError",
    "build_gateway",
    "rpc",
]
