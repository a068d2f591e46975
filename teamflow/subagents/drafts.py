from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field

from teamflow.gateway.agent_runs import AgentRunError, wait_agent_run
from teamflow.gateway.base import GatewayInvoker, RpcError, rpc
from teamflow.gateway.sessions import delete_session, fetch_latest_assistant_text, list_agents, send_chat_message
from teamflow.schema.draft import SUBAGENT_TARGET_FILES, DraftByFile, DraftRoleMetadata, PreviewDiffByFile
from teamflow.team.orchestrator import WaitPolicy
from teamflow.team.roles import RolesMetadataFile, upsert_role_metadata
from teamflow.utils.line_diff import build_line_diff

from .prompt import FORMAT_RETRY_MESSAGE, DraftParseError, build_subagent_prompt_payload, extract_chat_send_output, parse_draft_payload

logger = logging.getLogger(__name__)

DRAFT_RPC_TIMEOUT_BUFFER_MS = 10_000


class DraftError(RuntimeError):
    pass


class DraftApplyError(DraftError):
    """Writing a draft stopped at `failed`; files in `applied` were already written."""

    def __init__(self, applied: list[str], failed: str, reason: str) -> None:
        self.applied = list(applied)
        self.failed = failed
        super().__init__(f"Failed to apply {failed} after {len(applied)} file(s): {reason}")


@dataclass(frozen=True)
class DraftTimeouts:
    chat_send_ms: int = 30_000
    history_read_ms: int = 180_000
    history_after_wait_ms: int = 15_000
    history_poll_interval_s: float = 0.5


@dataclass
class AgentDraftState:
    draft_by_file: DraftByFile = field(default_factory=dict)
    preview_diff_by_file: PreviewDiffByFile = field(default_factory=dict)
    session_key: str | None = None
    prompt: str = ""
    generating: bool = False
    applying: bool = False
    apply_success: bool = False
    role_metadata: DraftRoleMetadata | None = None
    raw_output: str = ""
    error: str | None = None
    persisted_by_file: dict[str, str] | None = None


def build_draft_session_key(agent_id: str) -> str:
    return f"agent:{agent_id}:subagent-draft"


class DraftStore:
    """
    Per-agent draft lifecycle: generate -> preview -> apply | cancel.

    State is partitioned by agent id. Only `apply_draft` writes agent files; previews are
    computed locally. Callers serialize operations for the same agent, except that a second
    concurrent `generate_draft` is rejected here.
    """

    def __init__(
        self,
        gateway: GatewayInvoker,
        *,
        policy: WaitPolicy | None = None,
        timeouts: DraftTimeouts | None = None,
        roles: RolesMetadataFile | None = None,
    ) -> None:
        self.gateway = gateway
        self.policy = policy or WaitPolicy(rpc_timeout_buffer_ms=DRAFT_RPC_TIMEOUT_BUFFER_MS)
        self.timeouts = timeouts or DraftTimeouts()
        self.roles = roles
        self._states: dict[str, AgentDraftState] = {}

    def state(self, agent_id: str) -> AgentDraftState:
        return self._states.setdefault(agent_id, AgentDraftState())

    async def load_persisted_files(self, agent_id: str) -> dict[str, str]:
        async def load(name: str) -> str:
            try:
                result = await rpc(self.gateway, "agents.files.get", {"agentId": agent_id, "name": name})
            except RpcError as e:
                logger.warning("agents.files.get failed agentId=%s name=%s error=%s", agent_id, name, e)
                return ""
            file = result.get("file") if isinstance(result, dict) else None
            content = file.get("content") if isinstance(file, dict) else None
            if content is None and isinstance(result, dict):
                content = result.get("content")
            return content if isinstance(content, str) else ""

        contents = await asyncio.gather(*(load(name) for name in SUBAGENT_TARGET_FILES))
        persisted = dict(zip(SUBAGENT_TARGET_FILES, contents))
        self.state(agent_id).persisted_by_file = persisted
        return persisted

    # -- generation -------------------------------------------------------

    async def _read_draft_from_history(self, session_key: str, timeout_ms: int) -> str:
        started = time.monotonic()
        while (time.monotonic() - started) * 1000 < timeout_ms:
            output = await fetch_latest_assistant_text(self.gateway, session_key=session_key, limit=self.policy.history_limit)
            if output:
                return output
            await asyncio.sleep(self.timeouts.history_poll_interval_s)
        raise DraftError("Timed out waiting for draft output")

    async def _send_draft_message(self, session_key: str, message: str) -> str:
        result = await send_chat_message(
            self.gateway,
            session_key=session_key,
            message=message,
            deliver=False,
            idempotency_key=str(uuid.uuid4()),
            timeout_ms=self.timeouts.chat_send_ms + self.policy.rpc_timeout_buffer_ms,
        )
        output = extract_chat_send_output(result)
        if output is not None:
            return output

        run_id = result.get("runId") if isinstance(result, dict) else None
        run_id = run_id.strip() if isinstance(run_id, str) else ""
        if not run_id:
            return await self._read_draft_from_history(session_key, self.timeouts.history_read_ms)
        await wait_agent_run(
            self.gateway,
            run_id=run_id,
            session_key=session_key,
            wait_slice_ms=self.policy.wait_slice_ms,
            idle_timeout_ms=self.policy.idle_timeout_ms,
            rpc_timeout_buffer_ms=self.policy.rpc_timeout_buffer_ms,
            history_limit=self.policy.history_limit,
            log_prefix="subagents.draft",
        )
        return await self._read_draft_from_history(session_key, self.timeouts.history_after_wait_ms)

    async def generate_draft(self, agent_id: str, prompt: str) -> DraftByFile:
        """
        Ask the agent's draft session for new versions of its target files.

        The first round in a session carries the persisted files as baseline; later rounds
        iterate on the previous draft in the same session. One format retry is sent when the
        output does not parse.
        """
        state = self.state(agent_id)
        trimmed = prompt.strip()
        if not trimmed:
            raise DraftError("Prompt cannot be empty")
        if state.generating:
            state.error = "Draft generation already in progress for this agent"
            raise DraftError(state.error)

        state.generating = True
        state.error = None
        state.raw_output = ""
        state.apply_success = False
        existing_key = state.session_key
        session_key = existing_key or build_draft_session_key(agent_id)
        state.session_key = session_key
        try:
            if existing_key:
                persisted: dict[str, str] = {}
            else:
                persisted = state.persisted_by_file or await self.load_persisted_files(agent_id)

            payload = build_subagent_prompt_payload(trimmed, persisted)
            output = await self._send_draft_message(session_key, payload.as_message())
            state.raw_output = output
            try:
                parsed = parse_draft_payload(output)
            except DraftParseError as e:
                logger.warning("draft output unparsable agentId=%s error=%s, retrying once", agent_id, e)
                output = await self._send_draft_message(session_key, FORMAT_RETRY_MESSAGE)
                state.raw_output = output
                parsed = parse_draft_payload(output)
        except DraftError as e:
            state.error = str(e)
            raise
        except (RpcError, AgentRunError, DraftParseError) as e:
            state.error = str(e) or "Failed to generate draft"
            raise DraftError(state.error) from e
        finally:
            state.generating = False

        state.draft_by_file = parsed.draft_by_file
        state.role_metadata = parsed.role_metadata
        state.preview_diff_by_file = {}
        state.prompt = trimmed
        state.raw_output = ""
        flagged = [name for name, f in parsed.draft_by_file.items() if f.needs_review]
        logger.info("draft ready agentId=%s files=%d needsReview=%s", agent_id, len(parsed.draft_by_file), flagged)
        return state.draft_by_file

    # -- preview / apply / cancel ----------------------------------------

    def generate_preview_diff_by_file(self, agent_id: str, persisted_content_by_file: dict[str, str]) -> PreviewDiffByFile:
        state = self.state(agent_id)
        state.preview_diff_by_file = {
            name: build_line_diff(persisted_content_by_file[name], draft.content)
            for name, draft in state.draft_by_file.items()
            if name in persisted_content_by_file
        }
        return state.preview_diff_by_file

    async def apply_draft(self, agent_id: str) -> list[str]:
        """Write every draft file in target-file order. Stops at the first failure without rollback."""
        state = self.state(agent_id)
        names = [name for name in SUBAGENT_TARGET_FILES if name in state.draft_by_file]
        if not names:
            raise DraftError("No draft content to apply")
        if state.applying:
            raise DraftError("Draft apply already in progress for this agent")

        flagged = [name for name in names if state.draft_by_file[name].needs_review]
        if flagged:
            logger.warning("applying files flagged for review agentId=%s files=%s", agent_id, flagged)

        state.applying = True
        state.apply_success = False
        state.error = None
        applied: list[str] = []
        try:
            for name in names:
                params = {"agentId": agent_id, "name": name, "content": state.draft_by_file[name].content}
                try:
                    await rpc(self.gateway, "agents.files.set", params)
                except RpcError as e:
                    logger.error("apply failed agentId=%s name=%s applied=%s error=%s", agent_id, name, applied, e)
                    state.error = str(e)
                    raise DraftApplyError(applied, name, str(e)) from e
                applied.append(name)
        finally:
            state.applying = False

        if state.role_metadata is not None:
            await self._upsert_role_metadata(agent_id, state.role_metadata)

        state.draft_by_file = {}
        state.preview_diff_by_file = {}
        state.persisted_by_file = None
        state.role_metadata = None
        state.apply_success = True
        logger.info("draft applied agentId=%s files=%s", agent_id, applied)
        return applied

    async def _upsert_role_metadata(self, agent_id: str, metadata: DraftRoleMetadata) -> None:
        # Auxiliary document: failures are logged and never fail the apply.
        if self.roles is None:
            return
        try:
            agents = await list_agents(self.gateway)
            if not agents:
                return
            self.roles.write(upsert_role_metadata(self.roles.read(), agents, agent_id, metadata))
        except (RpcError, OSError) as e:
            logger.warning("roles metadata update failed agentId=%s error=%s", agent_id, e)

    async def cancel_draft(self, agent_id: str) -> None:
        state = self.state(agent_id)
        remote_error: str | None = None
        if state.session_key:
            try:
                await delete_session(self.gateway, key=state.session_key, delete_transcript=True)
            except RpcError as e:
                logger.warning("draft session cleanup failed agentId=%s key=%s error=%s", agent_id, state.session_key, e)
                remote_error = str(e) or "Failed to cleanup draft session"

        state.draft_by_file = {}
        state.preview_diff_by_file = {}
        state.session_key = None
        state.prompt = ""
        state.raw_output = ""
        state.role_metadata = None
        state.applying = False
        state.apply_success = False
        state.error = remote_error
