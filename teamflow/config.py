from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    gateway_backend: str

    gateway_url: str
    gateway_token: str | None

    wait_slice_ms: int
    idle_timeout_ms: int
    rpc_timeout_buffer_ms: int
    history_limit: int

    report_retries: int
    log_dir: Path
    roles_metadata_path: Path = Path("ROLES_METADATA.md")


def load_settings() -> Settings:
    # Allow users to keep secrets in a local `.env` (not committed).
    load_dotenv(override=False)

    def getenv(key: str, default: str | None = None) -> str | None:
        v = os.getenv(key)
        if v is None or v == "":
            return default
        return v

    def getint(key: str, default: int) -> int:
        raw = getenv(key, str(default)) or str(default)
        try:
            value = int(raw)
        except ValueError:
            raise ValueError(f"{key} must be an integer, got {raw!r}") from None
        if value < 0:
            raise ValueError(f"{key} must be >= 0, got {value}")
        return value

    gateway_backend = (getenv("TEAMFLOW_GATEWAY_BACKEND", "mock") or "mock").strip().lower()
    gateway_url = getenv("TEAMFLOW_GATEWAY_URL", "http://127.0.0.1:18789") or ""
    gateway_token = getenv("TEAMFLOW_GATEWAY_TOKEN", None)

    return Settings(
        gateway_backend=gateway_backend,
        gateway_url=gateway_url,
        gateway_token=gateway_token,
        wait_slice_ms=getint("TEAMFLOW_WAIT_SLICE_MS", 30_000),
        idle_timeout_ms=getint("TEAMFLOW_IDLE_TIMEOUT_MS", 180_000),
        rpc_timeout_buffer_ms=getint("TEAMFLOW_RPC_TIMEOUT_BUFFER_MS", 5_000),
        history_limit=getint("TEAMFLOW_HISTORY_LIMIT", 20),
        report_retries=getint("TEAMFLOW_REPORT_RETRIES", 1),
        log_dir=Path(getenv("TEAMFLOW_LOG_DIR", "logs") or "logs").resolve(),
        roles_metadata_path=Path(getenv("TEAMFLOW_ROLES_METADATA_PATH", "ROLES_METADATA.md") or "ROLES_METADATA.md").resolve(),
    )
