"""
pytest configuration for teamflow tests.

Async code is driven with asyncio.run() inside plain tests; the gateway is the
in-memory MockGateway, scripted per test where a specific remote answer matters.
"""

from pathlib import Path

import pytest

from teamflow.config import Settings
from teamflow.gateway import MockGateway
from teamflow.schema import SubagentSummary, Team
from teamflow.subagents import DraftTimeouts
from teamflow.team.orchestrator import WaitPolicy


@pytest.fixture
def gateway():
    return MockGateway()


@pytest.fixture
def fast_policy():
    """Wait policy with tiny slices so timeout paths finish immediately."""
    return WaitPolicy(wait_slice_ms=10, idle_timeout_ms=60_000, rpc_timeout_buffer_ms=5, history_limit=20)


@pytest.fixture
def fast_timeouts():
    return DraftTimeouts(chat_send_ms=10, history_read_ms=200, history_after_wait_ms=200, history_poll_interval_s=0.001)


@pytest.fixture
def settings(tmp_path: Path):
    return Settings(
        gateway_backend="mock",
        gateway_url="http://127.0.0.1:18789",
        gateway_token=None,
        wait_slice_ms=10,
        idle_timeout_ms=60_000,
        rpc_timeout_buffer_ms=5,
        history_limit=20,
        report_retries=1,
        log_dir=tmp_path / "logs",
    )


@pytest.fixture
def team():
    return Team(id="t1", name="Alpha", controller_id="lead", member_ids=["lead", "dev"])


@pytest.fixture
def agents():
    return [
        SubagentSummary(id="lead", name="Lead", model="m-large"),
        SubagentSummary(id="dev", name="Dev"),
    ]
