from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import uuid
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from teamflow.chains.turn_graph import TurnState, build_turn_graph
from teamflow.config import Settings, load_settings
from teamflow.gateway import GatewayInvoker, RpcError, build_gateway
from teamflow.gateway.agent_runs import AgentRunError
from teamflow.gateway.sessions import list_agents
from teamflow.schema import TEAM_PHASES, SubagentSummary, Team, TeamContext
from teamflow.subagents import DraftError, DraftStore
from teamflow.team.binding import filter_missing_agents
from teamflow.team.orchestrator import WaitPolicy
from teamflow.team.roles import RolesMetadataFile
from teamflow.team.room import TeamRoom
from teamflow.utils.line_diff import LineDiffEntry, build_line_diff
from teamflow.utils.run_log import append_snapshot, init_run_log, make_run_id

logger = logging.getLogger("teamflow")

_DIFF_STYLE = {"add": ("green", "+"), "remove": ("red", "-"), "keep": ("dim", " ")}


def _setup_logging(console: Console, verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, rich_tracebacks=True)],
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _print_diff(console: Console, title: str, entries: list[LineDiffEntry]) -> None:
    console.rule(title)
    for e in entries:
        style, mark = _DIFF_STYLE[e.type]
        console.print(f"{mark} {e.value}", style=style, markup=False, highlight=False)


async def _list_agents(gateway: GatewayInvoker) -> list[SubagentSummary]:
    try:
        return await list_agents(gateway)
    except RpcError as e:
        logger.warning("agents.list failed, members fall back to raw ids: %s", e)
        return []


async def _close(gateway: GatewayInvoker) -> None:
    aclose = getattr(gateway, "aclose", None)
    if aclose is not None:
        await aclose()


# -- run ------------------------------------------------------------------


async def _cmd_run(args: argparse.Namespace, settings: Settings, console: Console) -> int:
    members = [m.strip() for m in args.members.split(",") if m.strip()]
    if not members:
        console.print("[bold red]--members is empty[/bold red]")
        return 2

    team = Team(id=args.team, name=args.team, controller_id=members[0], member_ids=members)
    room = TeamRoom(team=team, context=TeamContext(goal=args.goal or ""))
    for phase in args.to or []:
        res = room.transition_to(phase)
        if not res.ok:
            console.print(f"[bold red]{res.error}[/bold red]")
            return 2

    gateway = build_gateway(settings)
    policy = WaitPolicy.from_settings(settings)
    do_log = not args.no_log
    log_paths = init_run_log(settings.log_dir, make_run_id()) if do_log else None
    try:
        agents = await _list_agents(gateway)
        missing = filter_missing_agents(members, [a.id for a in agents]) if agents else []
        if missing:
            logger.warning("members not registered with the gateway: %s", ", ".join(missing))
        graph = build_turn_graph(gateway=gateway, room=room, agents=agents, policy=policy)
        for agent_id in members:
            state = TurnState(
                team_id=team.id,
                agent_id=agent_id,
                task_id=args.task or "",
                session_key=room.session_key_for(agent_id),
                phase=room.phase,
                raw_message=args.message,
                idempotency_key=f"{team.id}:{agent_id}:{uuid.uuid4()}",
                max_retries=settings.report_retries,
            )
            if log_paths:
                append_snapshot(log_paths, state, extra={"event": "start"})
            last: TurnState = state
            try:
                async for step in graph.astream(state, stream_mode="values"):
                    last = TurnState.model_validate(step)
                    if log_paths:
                        append_snapshot(log_paths, last, extra={"event": "step"})
            except (RpcError, AgentRunError) as e:
                logger.error("turn failed agentId=%s error=%s", agent_id, e)
                if log_paths:
                    append_snapshot(log_paths, last, extra={"event": "exception", "error": str(e)})
                console.print(f"[bold red]{agent_id}[/bold red]: {e}")
                continue
            if log_paths:
                append_snapshot(log_paths, last, extra={"event": "final"})
            _print_turn(console, last)
    finally:
        await _close(gateway)

    console.rule("room")
    console.print(f"[bold]phase[/bold]: {room.phase}")
    console.print(f"[bold]reports[/bold]: {len(room.reports)}")
    if log_paths:
        console.print(f"[bold]run_log[/bold]: {log_paths.jsonl_path}")
    for e in room.events[-12:]:
        console.print(f"- {e.get('type')} :: {e.get('message')}")
    return 0


def _print_turn(console: Console, state: TurnState) -> None:
    console.rule(f"{state.agent_id} ({state.phase})")
    console.print(f"[bold]runId[/bold]: {state.run_id}")
    if state.report:
        console.print_json(data=state.report.to_payload())
    else:
        console.print(f"[bold red]no report[/bold red]: {state.error}")
    if state.forbidden_tools:
        console.print(f"[bold yellow]forbidden tools[/bold yellow]: {', '.join(state.forbidden_tools)}")
    for e in state.trace:
        console.print(f"- {e.get('node')} :: {e.get('message')}")


# -- diff -----------------------------------------------------------------


def _cmd_diff(args: argparse.Namespace, console: Console) -> int:
    original = Path(args.original).read_text(encoding="utf-8")
    updated = Path(args.updated).read_text(encoding="utf-8")
    _print_diff(console, f"{args.original} -> {args.updated}", build_line_diff(original, updated))
    return 0


# -- draft ----------------------------------------------------------------


async def _cmd_draft(args: argparse.Namespace, settings: Settings, console: Console) -> int:
    gateway = build_gateway(settings)
    roles = RolesMetadataFile(settings.roles_metadata_path)
    store = DraftStore(gateway, policy=WaitPolicy.from_settings(settings), roles=roles)
    try:
        try:
            drafts = await store.generate_draft(args.agent, args.prompt)
        except DraftError as e:
            console.print(f"[bold red]draft failed[/bold red]: {e}")
            await store.cancel_draft(args.agent)
            return 1

        persisted = await store.load_persisted_files(args.agent)
        previews = store.generate_preview_diff_by_file(args.agent, persisted)
        for name, entries in previews.items():
            draft = drafts[name]
            flag = " (needs review)" if draft.needs_review else ""
            _print_diff(console, f"{name} (confidence {draft.confidence:.2f}){flag}", entries)

        if not args.apply:
            await store.cancel_draft(args.agent)
            console.print("draft discarded (pass --apply to write it)")
            return 0
        try:
            applied = await store.apply_draft(args.agent)
        except DraftError as e:
            console.print(f"[bold red]apply failed[/bold red]: {e}")
            return 1
        console.print(f"[bold green]applied[/bold green]: {', '.join(applied)}")
        return 0
    finally:
        await _close(gateway)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="teamflow")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p_run = sub.add_parser("run", help="run one turn for every team member and collect their reports")
    p_run.add_argument("message", type=str, help="message sent to every member")
    p_run.add_argument("--team", default="team-1")
    p_run.add_argument("--members", required=True, help="comma separated agent ids, first one is the controller")
    p_run.add_argument("--goal", default="")
    p_run.add_argument("--task", default="", help="task id used as the report default")
    p_run.add_argument(
        "--to",
        action="append",
        choices=TEAM_PHASES,
        help="walk the phase machine before the turn (repeatable, applied in order)",
    )
    p_run.add_argument("--no-log", action="store_true", help="do not write logs/run_*.jsonl")

    p_diff = sub.add_parser("diff", help="line diff between two files")
    p_diff.add_argument("original")
    p_diff.add_argument("updated")

    p_draft = sub.add_parser("draft", help="generate and preview agent file drafts")
    p_draft.add_argument("agent")
    p_draft.add_argument("prompt")
    p_draft.add_argument("--apply", action="store_true", help="write the draft instead of discarding it")
    return parser


def main(argv: list[str] | None = None) -> int:
    # Best-effort fix for terminals defaulting to a legacy codepage.
    try:
        sys.stdout.reconfigure(encoding="utf-8")
        sys.stderr.reconfigure(encoding="utf-8")
    except (AttributeError, ValueError):
        pass

    args = build_parser().parse_args(argv)
    console = Console()
    _setup_logging(console, args.verbose)

    if args.command == "diff":
        return _cmd_diff(args, console)

    settings = load_settings()
    if args.command == "run":
        return asyncio.run(_cmd_run(args, settings, console))
    return asyncio.run(_cmd_draft(args, settings, console))


if __name__ == "__main__":
    raise SystemExit(main())
