"""Click CLI: loads config and a scenario, runs the conversation live, saves the transcript."""

import asyncio
import json
import logging
import sys
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from config.config_loader import AppConfig, load_config
from roundtable.credentials import CredentialSource, EnvCredentials
from roundtable.engine import ConversationEngine, run_conversation
from roundtable.errors import ConfigurationError
from roundtable.healthcheck import run_health_checks
from roundtable.models import TurnEvent
from roundtable.output import EXPORT_FORMATS, console, print_event, print_stats, save_to_file
from roundtable.providers.base import AIProvider, ProviderError
from roundtable.providers.registry import build_providers, close_providers
from roundtable.scenario import Scenario, load_scenario
from roundtable.stats import conversation_stats
from roundtable.store import InMemoryStore
from roundtable.turns import MAX_TURNS

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def _scenario_providers(scenario: Scenario, providers: dict[str, AIProvider]) -> dict[str, AIProvider]:
    """The subset of providers the scenario's personas actually use."""
    return {p.provider: providers[p.provider] for p in scenario.personas if p.provider in providers}


async def _print_health(providers: dict[str, AIProvider], credentials: CredentialSource) -> list[str]:
    """Run health checks, print a table, and return the names that failed."""
    results = await run_health_checks(providers, credentials)

    table = Table(title="Providers")
    table.add_column("Provider")
    table.add_column("Status")
    table.add_column("Models", justify="right")
    failed: list[str] = []
    for name in sorted(results):
        ok, count = results[name]
        status = "[green]OK[/green]" if ok else "[red]FAIL[/red]"
        table.add_row(name, status, str(count) if ok else "-")
        if not ok:
            failed.append(name)
    console.print(table)
    return failed


async def _run(
    scenario: Scenario,
    config: AppConfig,
    providers: dict[str, AIProvider],
    credentials: CredentialSource,
    max_turns: int | None,
    output_dir: Path,
    export_format: str,
    events_path: Path | None = None,
) -> Path:
    """Run one scenario to completion and return the saved transcript path.

    With ``events_path`` set, every turn event is also appended there as one
    JSON object per line.
    """
    store = InMemoryStore()
    for persona in scenario.personas:
        store.add_persona(persona)
    conversation = store.create_conversation(
        title=scenario.title,
        topic=scenario.topic,
        mode=scenario.mode,
        persona_ids=[p.id for p in scenario.personas],
    )
    engine = await ConversationEngine.load(conversation.id, store, providers, credentials, config.prompts)

    console.print(f"\n[bold cyan]Roundtable[/bold cyan]: {escape(scenario.title)} ({scenario.mode})")
    console.print(f"Personas: {', '.join(p.name for p in scenario.personas)}")
    console.print(f"Topic: [italic]{escape(scenario.topic[:80])}{'...' if len(scenario.topic) > 80 else ''}[/italic]\n")

    event_log = None
    if events_path is not None:
        events_path.parent.mkdir(parents=True, exist_ok=True)
        event_log = events_path.open("a", encoding="utf-8")

    def on_event(event: TurnEvent) -> None:
        print_event(event)
        if event_log is not None:
            event_log.write(json.dumps(event.as_dict(), ensure_ascii=False) + "\n")
            event_log.flush()

    try:
        completed = await run_conversation(engine, max_turns=max_turns, on_event=on_event)
        logger.info("Conversation finished after %d turns", completed)
    finally:
        if event_log is not None:
            event_log.close()
        # Completed turns are saved even when the run is interrupted
        messages = await store.list_messages(conversation.id)
        if len(messages) >= MAX_TURNS:
            store.set_status(conversation.id, "completed")
        saved = save_to_file(conversation, messages, output_dir, fmt=export_format)
        console.print(f"\n[dim]Saved to: {saved}[/dim]")
        print_stats(conversation_stats(messages))
    return saved


async def _main_async(
    scenario: Scenario | None,
    config: AppConfig,
    max_turns: int | None,
    output_dir: Path,
    export_format: str,
    check_only: bool,
    skip_health_check: bool,
    events_path: Path | None = None,
) -> None:
    providers = build_providers(config)
    credentials = EnvCredentials(config.providers)
    try:
        if check_only:
            await _print_health(providers, credentials)
            return

        if not skip_health_check:
            failed = await _print_health(_scenario_providers(scenario, providers), credentials)
            if failed and not click.confirm(f"{', '.join(failed)} failed the check. Continue anyway?", default=False):
                sys.exit(1)

        await _run(scenario, config, providers, credentials, max_turns, output_dir, export_format, events_path)
    finally:
        await close_providers(providers)


@click.command()
@click.argument("scenario_file", required=False, type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--turns", default=None, type=click.IntRange(min=1), help="Stop after N turns (default: run to the message cap)")
@click.option("--output", "output_path", default=None, help="Output directory (default: from config)")
@click.option("--format", "export_format", default=None, type=click.Choice(EXPORT_FORMATS), help="Transcript format")
@click.option("--events", "events_path", default=None, type=click.Path(dir_okay=False, path_type=Path), help="Also append every turn event to this file as JSON lines")
@click.option("--check", "check_only", is_flag=True, help="Validate provider keys, list model counts, and exit")
@click.option("--skip-health-check", is_flag=True, default=False, help="Skip the key check at startup")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
def main(
    scenario_file: Path | None,
    turns: int | None,
    output_path: str | None,
    export_format: str | None,
    events_path: Path | None,
    check_only: bool,
    skip_health_check: bool,
    verbose: bool,
) -> None:
    """Roundtable -- multi-persona, multi-provider conversations.

    \b
    Examples:
      roundtable scenarios/remote-work.md
      roundtable scenarios/remote-work.md --turns 4 --format json
      roundtable scenarios/remote-work.md --events run.jsonl
      roundtable --check
    """
    load_dotenv()
    _setup_logging(verbose)

    try:
        config = load_config()
    except (FileNotFoundError, ValueError) as exc:
        console.print(f"[bold red]Config error:[/bold red] {escape(str(exc))}")
        sys.exit(1)

    scenario: Scenario | None = None
    if not check_only:
        if scenario_file is None:
            console.print("[bold red]Error:[/bold red] Provide a SCENARIO_FILE or --check.")
            sys.exit(1)
        try:
            scenario = load_scenario(scenario_file, config.personas)
        except ConfigurationError as exc:
            console.print(f"[bold red]Scenario error:[/bold red] {escape(str(exc))}")
            sys.exit(1)

    try:
        asyncio.run(
            _main_async(
                scenario=scenario,
                config=config,
                max_turns=turns,
                output_dir=Path(output_path) if output_path else config.defaults.output_dir,
                export_format=export_format or config.defaults.export_format,
                check_only=check_only,
                skip_health_check=skip_health_check,
                events_path=events_path,
            )
        )
    except (ConfigurationError, ProviderError) as exc:
        console.print(f"[bold red]Error:[/bold red] {escape(str(exc))}")
        sys.exit(1)
    except KeyboardInterrupt:
        # The in-flight turn was dropped; completed turns were already saved
        console.print("\n[yellow]Interrupted.[/yellow]")
        sys.exit(130)


if __name__ == "__main__":
    main()
