from __future__ import annotations

from typing import Any

import httpx

from .base import RPC_TIMEOUT_PREFIX, RpcResult


class HttpGateway:
    """
    Gateway RPC over HTTP: POST {method, params, timeoutMs} to `<base_url>/rpc`.
    The server answers with the same {success, result | error} envelope the engine consumes.
    """

    def __init__(
        self,
        *,
        base_url: str,
        token: str | None = None,
        timeout_s: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout_s = timeout_s
        self._client = client or httpx.AsyncClient(timeout=timeout_s)

    async def invoke(self, method: str, params: dict[str, Any] | None = None, timeout_ms: int | None = None) -> RpcResult:
        payload: dict[str, Any] = {"method": method, "params": params or {}}
        if timeout_ms is not None:
            payload["timeoutMs"] = timeout_ms
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        timeout = timeout_ms / 1000 if timeout_ms is not None else self.timeout_s
        try:
            r = await self._client.post(f"{self.base_url}/rpc", json=payload, headers=headers, timeout=timeout)
            r.raise_for_status()
            data = r.json()
        except httpx.TimeoutException:
            return RpcResult.failure(f"{RPC_TIMEOUT_PREFIX}: {method}")
        except httpx.HTTPError as e:
            return RpcResult.failure(f"{type(e).__name__}: {e}")
        except ValueError:
            return RpcResult.failure(f"Invalid JSON from gateway for {method}")

        if not isinstance(data, dict):
            return RpcResult.failure(f"Invalid gateway response for {method}")
        if data.get("success"):
            return RpcResult.ok(data.get("result"))
        return RpcResult.failure(str(data.get("error") or f"RPC failed: {method}"))

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> HttpGateway:
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()
