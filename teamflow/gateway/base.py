from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

RPC_TIMEOUT_PREFIX = "RPC timeout"


@dataclass(frozen=True)
class RpcResult:
    success: bool
    result: Any = None
    error: str | None = None

    @classmethod
    def ok(cls, result: Any = None) -> RpcResult:
        return cls(success=True, result=result)

    @classmethod
    def failure(cls, error: str) -> RpcResult:
        return cls(success=False, error=error)


@dataclass(frozen=True)
class RpcCall:
    method: str
    params: dict[str, Any] = field(default_factory=dict)
    timeout_ms: int | None = None


class GatewayInvoker(Protocol):
    async def invoke(self, method: str, params: dict[str, Any] | None = None, timeout_ms: int | None = None) -> RpcResult:
        """Return the gateway's {success, result | error} envelope; never raise for remote failures."""
        raise NotImplementedError


class RpcError(RuntimeError):
    """A gateway call came back with success=false."""

    recoverable = False

    def __init__(self, method: str, message: str | None = None) -> None:
        self.method = method
        super().__init__(message or f"RPC failed: {method}")


class RpcTimeoutError(RpcError):
    """The gateway call timed out; safe to retry (dispatch keeps its idempotency key)."""

    recoverable = True


def is_rpc_timeout(error: str | None) -> bool:
    return bool(error) and error.startswith(RPC_TIMEOUT_PREFIX)


async def rpc(gateway: GatewayInvoker, method: str, params: dict[str, Any] | None = None, timeout_ms: int | None = None) -> Any:
    """Invoke and unwrap: return `result` or raise RpcError/RpcTimeoutError."""
    res = await gateway.invoke(method, params, timeout_ms)
    if not res.success:
        if is_rpc_timeout(res.error):
            raise RpcTimeoutError(method, res.error)
        raise RpcError(method, res.error or None)
    return res.result
