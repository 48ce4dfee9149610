"""Click CLI: config loading, provider selection, dialogue, and output."""

import asyncio
import dataclasses
import logging
import sys
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from config.config_loader import LANGUAGES, AgentConfig, AppConfig, ConfigError, ConsensusConfig, load_config
from yui_council.agents import build_participants
from yui_council.facilitator import Facilitator
from yui_council.healthcheck import HealthStatus, run_health_checks
from yui_council.interaction_log import JsonInteractionLogger
from yui_council.models import DialogueResult, Question, RoundRecord
from yui_council.output import print_conclusion, print_round_summary, save_to_file
from yui_council.providers.anthropic import AnthropicProvider
from yui_council.providers.base import AIProvider
from yui_council.providers.gemini import GeminiProvider
from yui_council.providers.openai_provider import OpenAIProvider
from yui_council.providers.xai import XAIProvider
from yui_council.question_file import parse_question_file
from yui_council.router import DialogueError, DynamicDialogueRouter
from yui_council.storage import JsonSessionStore

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

# Keyed by the `sdk` field of each model entry in settings.yaml.
PROVIDER_CLASSES: dict[str, type[AIProvider]] = {
    "anthropic": AnthropicProvider,
    "openai": OpenAIProvider,
    "google-genai": GeminiProvider,
    "xai": XAIProvider,
}

_MIN_AGENTS = 2


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _build_all_providers(config: AppConfig) -> dict[str, AIProvider]:
    """Build all available providers. Returns dict keyed by provider name."""
    providers: dict[str, AIProvider] = {}
    for name in sorted(config.available_providers):
        model_cfg = config.models[name]
        provider_cls = PROVIDER_CLASSES.get(model_cfg.sdk)
        if provider_cls is None:
            logger.warning("Provider '%s' uses unknown sdk '%s', skipping", name, model_cfg.sdk)
            continue
        try:
            providers[name] = provider_cls(model_cfg)
        except Exception as exc:
            logger.warning("Failed to instantiate provider '%s': %s", name, exc)
    return providers


def _health_table(statuses: dict[str, HealthStatus], agents: list[AgentConfig]) -> Table:
    table = Table(title="Provider health", title_justify="left")
    table.add_column("Provider")
    table.add_column("Model")
    table.add_column("Status")
    table.add_column("Latency", justify="right")
    table.add_column("Voices")
    for name in sorted(statuses):
        status = statuses[name]
        voices = ", ".join(a.id for a in agents if a.provider == name) or "-"
        if status.ok:
            label = "[green]OK[/green]"
        else:
            label = f"[red]FAIL[/red] {escape(status.error.splitlines()[0][:80]) if status.error else 'unknown error'}"
        table.add_row(name, status.model, label, f"{status.latency_sec:.1f}s", voices)
    return table


def _check_and_filter_providers(
    all_providers: dict[str, AIProvider],
    agents: list[AgentConfig],
) -> dict[str, AIProvider]:
    """Ping every provider and drop the ones that fail.

    Agents voiced by a failed provider sit the dialogue out. Asks before continuing
    without them; exits if the user declines or fewer than two agents keep a voice.
    """
    statuses = asyncio.run(run_health_checks(all_providers))
    console.print(_health_table(statuses, agents))

    failed = sorted(name for name, status in statuses.items() if not status.ok)
    if not failed:
        console.print()
        return all_providers

    working = {n: p for n, p in all_providers.items() if n not in failed}
    voiced = [a.id for a in agents if a.provider in working]
    if len(voiced) < _MIN_AGENTS:
        console.print(
            f"\n[bold red]Error:[/bold red] Only {len(voiced)} agent(s) have a working provider; "
            f"a dialogue needs at least {_MIN_AGENTS}."
        )
        sys.exit(1)

    silenced = [a.id for a in agents if a.provider in failed]
    console.print(f"\n[yellow]Agents without a working provider:[/yellow] {', '.join(silenced) or 'none'}")
    if not click.confirm(f"Continue with {', '.join(voiced)}?", default=True):
        sys.exit(0)

    console.print()
    return working


def _split_ids(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def _resolve(cli_value, file_value, default):
    """CLI flag > frontmatter > config default."""
    if cli_value is not None:
        return cli_value
    if file_value is not None:
        return file_value
    return default


async def _run_dialogue(
    question: Question,
    config: AppConfig,
    providers: dict[str, AIProvider],
    agent_ids: list[str],
    language: str,
    consensus_config: ConsensusConfig,
    save_session: bool,
) -> DialogueResult:
    """Build the participants and router, run one dialogue, and return the result."""
    participants = build_participants(config.agents, providers, agent_ids or None)
    if len(participants) < _MIN_AGENTS:
        raise DialogueError(
            f"Need at least {_MIN_AGENTS} agents with a working provider, got {len(participants)}. "
            "Check API keys in .env or adjust --agents."
        )

    interaction_logger = JsonInteractionLogger(config.defaults.log_dir) if save_session else None
    session_store = JsonSessionStore(config.defaults.session_dir) if save_session else None
    facilitator_provider = providers.get(config.defaults.facilitator) if config.defaults.facilitator else None
    if config.defaults.facilitator and facilitator_provider is None:
        logger.warning("Facilitator provider '%s' unavailable, using rule-based facilitation",
                       config.defaults.facilitator)

    facilitator = Facilitator(
        config.prompts,
        consensus_config=consensus_config,
        facilitator_config=config.facilitator,
        provider=facilitator_provider,
        interaction_logger=interaction_logger,
    )
    router = DynamicDialogueRouter(
        participants,
        config.prompts,
        facilitator,
        consensus_config=consensus_config,
        session_store=session_store,
        interaction_logger=interaction_logger,
        language=language,
    )

    console.print(
        f"\n[bold cyan]Yui Council[/bold cyan] - {len(participants)} agents, "
        f"up to {consensus_config.max_rounds + 1} rounds [{language}]"
    )
    console.print(f"Agents: {', '.join(p.display_name for p in participants)}")
    console.print(f"Question: [italic]{question.text[:80]}{'...' if len(question.text) > 80 else ''}[/italic]\n")

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("Running dialogue rounds...", total=None)

        def on_round_complete(record: RoundRecord) -> None:
            progress.print(
                f"[green]OK[/green] Round {record.number} complete "
                f"({len(record.messages)} messages, consensus {record.overall_consensus:.1f})"
            )
            next_step = "Running dialogue rounds..." if record.should_continue else "Voting and finalizing..."
            progress.update(task, description=next_step)

        result = await router.run(question, on_round_complete=on_round_complete)

    for record in result.rounds:
        print_round_summary(record)
    print_conclusion(result)
    return result


@click.command()
@click.argument("question", required=False)
@click.option("--file", "question_file", type=click.Path(exists=True, dir_okay=False),
              help="Read question from .md file (frontmatter: language, max_rounds, agents)")
@click.option("--agents", default=None, help="Comma-separated agent ids (default: all configured)")
@click.option("--max-rounds", default=None, type=click.IntRange(min=1),
              help="Round limit before forced convergence (default: from config)")
@click.option("--language", default=None, type=click.Choice(LANGUAGES), help="Dialogue language")
@click.option("--output", "output_path", default=None, help="Output directory (default: from config)")
@click.option("--no-save-session", is_flag=True, default=False,
              help="Do not write session state or interaction logs")
@click.option("--skip-health-check", is_flag=True, default=False,
              help="Skip the API connectivity check at startup")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
def main(
    question: str | None,
    question_file: str | None,
    agents: str | None,
    max_rounds: int | None,
    language: str | None,
    output_path: str | None,
    no_save_session: bool,
    skip_health_check: bool,
    verbose: bool,
) -> None:
    """Yui Council -- multi-agent dialogue that converges by consensus.

    \b
    Examples:
      yui-council "What does it mean to live a good life?"
      yui-council "How should cities adapt to heat waves?" --max-rounds 6
      yui-council "AIと創造性について" --language ja --agents eiro-001,kanshi-001,yui-000
      yui-council --file question.md
    """
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")

    load_dotenv()
    _setup_logging(verbose)

    try:
        config = load_config()
        if question_file:
            parsed = parse_question_file(Path(question_file))
        else:
            parsed = None
    except (FileNotFoundError, ConfigError) as exc:
        console.print(f"[bold red]Config error:[/bold red] {escape(str(exc))}")
        sys.exit(1)

    if parsed is not None:
        question_obj = Question(text=parsed.text, source=question_file)
    elif question:
        question_obj = Question(text=question, source="cli")
    else:
        console.print("[bold red]Error:[/bold red] Provide a QUESTION argument or --file.")
        sys.exit(1)

    effective_language = _resolve(language, parsed.language if parsed else None, config.defaults.language)
    effective_rounds = _resolve(max_rounds, parsed.max_rounds if parsed else None, config.consensus.max_rounds)
    agent_ids = _split_ids(agents) or (parsed.agents if parsed else [])
    effective_output = Path(output_path) if output_path else config.defaults.output_dir
    consensus_config = dataclasses.replace(config.consensus, max_rounds=effective_rounds)

    all_providers = _build_all_providers(config)
    if not all_providers:
        console.print("[bold red]Error:[/bold red] No providers available. Check API keys in .env.")
        sys.exit(1)

    if not skip_health_check:
        all_providers = _check_and_filter_providers(all_providers, config.agents)

    try:
        result = asyncio.run(
            _run_dialogue(
                question=question_obj,
                config=config,
                providers=all_providers,
                agent_ids=agent_ids,
                language=effective_language,
                consensus_config=consensus_config,
                save_session=not no_save_session,
            )
        )
    except (DialogueError, ConfigError) as exc:
        console.print(f"[bold red]Error:[/bold red] {escape(str(exc))}")
        sys.exit(1)

    slug = Path(question_file).stem if question_file else None
    saved_path = save_to_file(result, effective_output, slug_override=slug)
    console.print(f"\n[dim]Saved to: {saved_path}[/dim]")
    if not no_save_session:
        console.print(f"[dim]Session: {result.session_id}[/dim]")


if __name__ == "__main__":
    main()
