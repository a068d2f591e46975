from __future__ import annotations

from teamflow.config import Settings

from .base import GatewayInvoker
from .http import HttpGateway
from .mock import MockGateway


def build_gateway(settings: Settings) -> GatewayInvoker:
    backend = settings.gateway_backend
    if backend == "mock":
        return MockGateway()
    if backend == "http":
        if not settings.gateway_url:
            raise RuntimeError("TEAMFLOW_GATEWAY_URL is not set but TEAMFLOW_GATEWAY_BACKEND=http")
        return HttpGateway(base_url=settings.gateway_url, token=settings.gateway_token)
    raise ValueError(f"Unknown TEAMFLOW_GATEWAY_BACKEND={backend!r}, expected: mock|http")
