"""CLI commands for the journey mapper."""

import asyncio
import json
import logging
import re
import sys

import click

from journey_mapper.config import settings


class SecretRedactingFilter(logging.Filter):
    """Filter to redact sensitive information from logs."""

    # Patterns for common secrets
    SECRET_PATTERNS = [
        (re.compile(r"(api[_-]?key[\s:=]+)[\w-]{20,}", re.IGNORECASE), r"\1[REDACTED]"),
        (re.compile(r"(token[\s:=]+)[\w-]{20,}", re.IGNORECASE), r"\1[REDACTED]"),
        (re.compile(r"(password[\s:=]+)\S+", re.IGNORECASE), r"\1[REDACTED]"),
        (re.compile(r"(secret[\s:=]+)\S+", re.IGNORECASE), r"\1[REDACTED]"),
        (re.compile(r"(bearer\s+)[\w-]+", re.IGNORECASE), r"\1[REDACTED]"),
        (re.compile(r"(x-api-key[\s:]+)[\w-]+", re.IGNORECASE), r"\1[REDACTED]"),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        """Redact secrets from log messages."""
        if isinstance(record.msg, str):
            for pattern, replacement in self.SECRET_PATTERNS:
                record.msg = pattern.sub(replacement, record.msg)
        return True


# Configure logging with secret redaction
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logging.getLogger().addFilter(SecretRedactingFilter())
logger = logging.getLogger(__name__)

# Slash commands accepted inside the interactive interview loop
SLASH_COMMANDS = {
    "/next": "next",
    "/back": "back",
    "/correct": "correct",
    "/pause": "pause",
    "/summary": "summary",
    "/status": "status",
    "/help": "help",
    "/done": "done",
}


def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
def cli(verbose: bool) -> None:
    """Journey Mapper CLI."""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


@cli.command(name="init-db")
def init_database() -> None:
    """Create tables and seed counters and the project row."""
    asyncio.run(_init_database())


async def _prepare() -> list[str]:
    """Create tables and seed counters and the project row. Safe to repeat."""
    from journey_mapper.db.database import init_db
    from journey_mapper.knowledge import IdAllocator, KnowledgeStore, ProjectTracker

    await init_db()
    store = KnowledgeStore()
    return await ProjectTracker(store, IdAllocator(store)).seed()


async def _init_database() -> None:
    """Async implementation of init-db command."""
    created = await _prepare()
    click.echo("Database initialized successfully!")
    if created:
        click.echo(f"Seeded: {', '.join(created)}")
    else:
        click.echo("Nothing to seed, everything already exists.")


# =============================================================================
# INTERVIEW COMMANDS
# =============================================================================


@cli.command()
@click.option("--sme-id", help="Interview an already registered SME")
@click.option("--name", help="Full name of a new SME")
@click.option("--role", default="", help="Role of a new SME")
@click.option("--department", default="", help="Department of a new SME")
@click.option("--stages", help="Comma-separated journey stages the new SME owns")
@click.option("--systems", help="Comma-separated systems the new SME uses")
@click.option("--interviewer", default="", help="Interviewer user id")
def interview(
    sme_id: str | None,
    name: str | None,
    role: str,
    department: str,
    stages: str | None,
    systems: str | None,
    interviewer: str,
) -> None:
    """Start an interview session and chat in the terminal."""
    profile = {
        "full_name": name,
        "role": role,
        "department": department,
        "journey_stages_owned": _split_csv(stages),
        "systems_used": _split_csv(systems),
    }
    asyncio.run(_interview(sme_id, profile, interviewer))


async def _interview(sme_id: str | None, profile: dict, interviewer: str) -> None:
    """Async implementation of interview command."""
    from journey_mapper.exceptions import JourneyMapperError
    from journey_mapper.interview import create_interview_service
    from journey_mapper.llm.exceptions import LLMError

    await _prepare()
    service = await create_interview_service()
    try:
        opened = await service.start_session(
            sme_id=sme_id, sme_profile=profile, interviewer_id=interviewer
        )
    except (JourneyMapperError, LLMError) as e:
        click.echo(f"Could not start session: {e}", err=True)
        sys.exit(1)

    click.echo(f"Session {opened.session_id} with {opened.sme_id}")
    click.echo(f"Stage: {opened.conversation_state.get('current_stage')}\n")
    click.echo(f"Agent: {opened.opening_message}\n")
    await _chat_loop(service, opened.session_id, interviewer)


async def _chat_loop(service, session_id: str, actor_id: str) -> None:
    """Read lines from the terminal until the session is paused or closed."""
    from journey_mapper.exceptions import JourneyMapperError
    from journey_mapper.llm.exceptions import LLMError

    while True:
        try:
            line = click.prompt("You", prompt_suffix="> ").strip()
        except click.Abort:
            click.echo("\nPausing session.")
            await service.pause_session(session_id)
            break
        if not line:
            continue

        command, _, argument = line.partition(" ")
        try:
            if command in SLASH_COMMANDS:
                result = await service.quick_action(
                    session_id, SLASH_COMMANDS[command], actor_id, record_id=argument.strip() or None
                )
                if _echo_action(result):
                    break
            else:
                turn = await service.send_message(session_id, line, actor_id)
                _echo_turn(turn)
        except (JourneyMapperError, LLMError) as e:
            click.echo(f"Error: {e}", err=True)

    await service.wait_for_background()


def _echo_turn(turn) -> None:
    click.echo(f"\nAgent: {turn.reply}\n")
    for category, results in turn.created_records.to_dict().items():
        for result in results:
            if result.get("error"):
                click.echo(f"  ! {category}: {result['error']}")
            elif result.get("record_id"):
                click.echo(f"  + {category} {result['action']}: {result['record_id']}")
    for conflict_id in turn.conflict_ids:
        click.echo(f"  ! conflict logged: {conflict_id}")


def _echo_action(result: dict) -> bool:
    """Print a quick-action result. Returns True when the loop should end."""
    action = result["action"]
    if "turn" in result:
        _echo_turn(result["turn"])
        return False
    if action == "pause":
        click.echo(result["message"])
        return True
    if action == "summary":
        for key, value in result["summary"].items():
            click.echo(f"  {key}: {value}")
        return False
    if action == "status":
        click.echo(f"Project completion: {result['completion_ratio']:.0%}")
        for key, value in result["completion"].items():
            click.echo(f"  {key}: {value}")
        return False
    if action == "help":
        for command in result["commands"]:
            click.echo(f"  /{command['action']}: {command['description']}")
        return False

    closed = result["closed"]
    click.echo(f"\nSession {closed.session_id} closed after {closed.duration_minutes} minute(s).")
    click.echo(f"\n{closed.summary}")
    return True


@cli.command()
@click.argument("session_id")
@click.option("--history/--no-history", default=True, help="Print the transcript before continuing")
def resume(session_id: str, history: bool) -> None:
    """Resume a paused or active session."""
    asyncio.run(_resume(session_id, history))


async def _resume(session_id: str, history: bool) -> None:
    """Async implementation of resume command."""
    from journey_mapper.exceptions import JourneyMapperError
    from journey_mapper.interview import create_interview_service

    await _prepare()
    service = await create_interview_service()
    try:
        transcript = await service.resume_session(session_id)
    except JourneyMapperError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if transcript.session.status == "closed":
        click.echo(f"Session {session_id} is closed.")
        click.echo(transcript.session.summary or "")
        return

    if history:
        for message in transcript.messages:
            speaker = "Agent" if message.role == "agent" else "You"
            click.echo(f"{speaker}: {message.content}\n")
    click.echo(f"Stage: {transcript.conversation_state.get('current_stage', '')}")
    await _chat_loop(service, session_id, transcript.session.interviewer_user_id or "")


@cli.command()
def sessions() -> None:
    """List interview sessions, newest first."""
    asyncio.run(_sessions())


async def _sessions() -> None:
    """Async implementation of sessions command."""
    from journey_mapper.interview import InterviewService
    from journey_mapper.knowledge import IdAllocator, KnowledgeStore
    from journey_mapper.llm import LLMGateway, OllamaLLM

    await _prepare()
    store = KnowledgeStore()
    # Listing never calls the LLM
    service = InterviewService(store, IdAllocator(store), LLMGateway(OllamaLLM()))
    rows = await service.list_sessions()
    if not rows:
        click.echo("No sessions yet.")
        return
    for row in rows:
        click.echo(
            f"  {row['session_id']}  {row['status']:<7} {row['method']:<17} "
            f"{row['sme_name'] or row['sme_id']} ({row['current_stage']})"
        )


# =============================================================================
# KNOWLEDGE COMMANDS
# =============================================================================


@cli.command()
def smes() -> None:
    """List registered SMEs."""
    asyncio.run(_smes())


async def _smes() -> None:
    """Async implementation of smes command."""
    from journey_mapper.knowledge import IdAllocator, KnowledgeStore, SmeRegistry

    await _prepare()
    store = KnowledgeStore()
    for sme in await SmeRegistry(store, IdAllocator(store)).list_smes():
        stages = ", ".join(sme.journey_stages_owned or [])
        click.echo(f"  {sme.sme_id}  {sme.interview_status:<11} {sme.full_name} [{stages}]")


@cli.command()
def recalculate() -> None:
    """Recalculate project completion."""
    asyncio.run(_recalculate())


async def _recalculate() -> None:
    """Async implementation of recalculate command."""
    from journey_mapper.knowledge import IdAllocator, KnowledgeStore, ProjectTracker

    await _prepare()
    store = KnowledgeStore()
    state = await ProjectTracker(store, IdAllocator(store)).recalculate()
    click.echo(f"Project {state.project_id}: {state.completion_ratio:.0%} of journey stages mapped")
    for key, value in state.completion.items():
        click.echo(f"  {key}: {value}")


@cli.command()
@click.argument("report_type", type=click.Choice(
    ["journey-map", "process-inventory", "tech-ecosystem", "gap-register", "conflict-log", "executive-summary"]
))
@click.option("--output", "-o", type=click.Path(), help="Write the report JSON to a file")
def report(report_type: str, output: str | None) -> None:
    """Generate a report as JSON."""
    asyncio.run(_report(report_type, output))


async def _report(report_type: str, output: str | None) -> None:
    """Async implementation of report command."""
    from journey_mapper.knowledge import KnowledgeStore, Reporter
    from journey_mapper.llm import LLMGateway, get_llm
    from journey_mapper.llm.exceptions import LLMProviderNotConfiguredError

    await _prepare()
    gateway = None
    if report_type == "executive-summary":
        try:
            gateway = LLMGateway(await get_llm())
        except LLMProviderNotConfiguredError as e:
            logger.warning(f"No LLM available, using plain summary: {e}")

    data = await Reporter(KnowledgeStore(), gateway).generate(report_type)
    text = json.dumps(data, indent=2, default=str)
    if output:
        with open(output, "w") as f:
            f.write(text)
        click.echo(f"Report written to {output}")
    else:
        click.echo(text)


@cli.command(name="validate-sme")
@click.argument("sme_id")
def validate_sme(sme_id: str) -> None:
    """Mark an SME's captured knowledge as validated."""
    asyncio.run(_validate_sme(sme_id))


async def _validate_sme(sme_id: str) -> None:
    """Async implementation of validate-sme command."""
    from journey_mapper.exceptions import NotFoundError
    from journey_mapper.knowledge import IdAllocator, KnowledgeStore, SmeRegistry

    await _prepare()
    store = KnowledgeStore()
    try:
        sme = await SmeRegistry(store, IdAllocator(store)).validate(sme_id)
    except NotFoundError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(f"{sme.sme_id} ({sme.full_name}) validated")


@cli.command(name="resolve-conflict")
@click.argument("conflict_id")
@click.option("--notes", "-n", required=True, help="How the conflict was resolved")
@click.option("--by", "resolved_by", default="", help="Who resolved it")
def resolve_conflict(conflict_id: str, notes: str, resolved_by: str) -> None:
    """Mark a conflict as resolved."""
    asyncio.run(_resolve_conflict(conflict_id, notes, resolved_by))


async def _resolve_conflict(conflict_id: str, notes: str, resolved_by: str) -> None:
    """Async implementation of resolve-conflict command."""
    from journey_mapper.exceptions import NotFoundError
    from journey_mapper.interview import ConflictDetector
    from journey_mapper.knowledge import IdAllocator, KnowledgeStore

    await _prepare()
    store = KnowledgeStore()
    try:
        conflict = await ConflictDetector(store, IdAllocator(store)).resolve_conflict(
            conflict_id, notes, resolved_by
        )
    except NotFoundError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(f"{conflict.conflict_id} {conflict.resolution_status}")


@cli.command(name="check-llm")
def check_llm() -> None:
    """Check that the configured LLM provider is reachable."""
    asyncio.run(_check_llm())


async def _check_llm() -> None:
    """Async implementation of check-llm command."""
    from journey_mapper.llm import get_llm
    from journey_mapper.llm.exceptions import LLMError

    try:
        llm = await get_llm()
    except LLMError as e:
        click.echo(f"No LLM available: {e}", err=True)
        sys.exit(1)
    healthy = await llm.check_health()
    click.echo(f"Provider: {llm.provider_name} ({settings.LLM_PROVIDER or 'auto'})")
    click.echo(f"Healthy: {healthy}")
    if not healthy:
        sys.exit(1)


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
