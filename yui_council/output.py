"""Rich console output and markdown file save for dialogue results."""

import logging
import re
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from yui_council.consensus import is_ready
from yui_council.models import DialogueResult, RoundRecord

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

_REASON_LABELS = {
    "natural_consensus": "natural consensus",
    "high_satisfaction": "high satisfaction",
    "max_rounds": "maximum rounds reached",
    "facilitator_decision": "facilitator decision",
}


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len] or "dialogue"


def _preview(content: str, words: int = 50) -> str:
    """Return first N words of a message."""
    all_words = content.split()
    preview = " ".join(all_words[:words])
    if len(all_words) > words:
        preview += "..."
    return preview


def consensus_table(record: RoundRecord) -> Table:
    table = Table(title=f"Consensus (overall {record.overall_consensus:.1f}/10)", show_lines=False)
    table.add_column("Agent")
    table.add_column("Satisfaction", justify="right")
    table.add_column("Ready", justify="center")
    table.add_column("More points", justify="center")
    table.add_column("Note", style="dim")
    for indicator in record.consensus:
        table.add_row(
            indicator.agent_id,
            str(indicator.satisfaction_level),
            "yes" if is_ready(indicator) else "no",
            "yes" if indicator.has_additional_points else "no",
            "estimated" if indicator.estimated else _preview(indicator.reasoning, 8),
        )
    return table


def print_round_summary(record: RoundRecord) -> None:
    """Print agent message previews and the consensus table for one round."""
    console.print(Rule(f"[bold cyan]Round {record.number} Summary[/bold cyan]"))
    for message in record.messages:
        console.print(
            Panel(
                _preview(message.content),
                title=f"[bold]{message.agent_name}[/bold] ({message.agent_id})",
                border_style="dim",
            )
        )
    console.print(consensus_table(record))
    if record.pattern:
        console.print(Text(f"Dialogue pattern: {record.pattern}", style="yellow"))
    if record.action:
        target = f" -> {record.action.target}" if record.action.target else ""
        console.print(Text(f"Facilitator: {record.action.type}{target} ({record.action.reason})", style="magenta"))


def print_conclusion(result: DialogueResult) -> None:
    """Print the final conclusion using Rich markdown."""
    console.print(Rule("[bold green]Council Conclusion[/bold green]"))
    console.print(
        Text(
            f"Finalized by: {', '.join(result.finalizers)} | "
            f"Duration: {result.total_duration_sec:.1f}s | "
            f"Rounds: {len(result.rounds)} | "
            f"Converged: {_REASON_LABELS.get(result.convergence_reason, result.convergence_reason)}",
            style="dim",
        )
    )
    console.print(Markdown(result.conclusion))


def save_to_file(result: DialogueResult, output_dir: Path, slug_override: str | None = None) -> Path:
    """Save the full dialogue transcript as a markdown file.

    Args:
        result: The completed DialogueResult.
        output_dir: Directory to save the file in.
        slug_override: If provided, use this as the filename stem instead of
            deriving one from the question text. Useful for question files.

    Returns:
        Path to the saved file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    slug = slug_override if slug_override is not None else _slug(result.question.text)
    filepath = output_dir / f"{timestamp}_{slug}.md"

    lines: list[str] = [
        f"# Yui Council Dialogue: {result.question.text[:80]}",
        "",
        f"**Date:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"**Session:** {result.session_id}",
        f"**Language:** {result.language}",
        f"**Rounds:** {len(result.rounds)}",
        f"**Convergence:** {_REASON_LABELS.get(result.convergence_reason, result.convergence_reason)}",
        f"**Finalizers:** {', '.join(result.finalizers)}",
        f"**Duration:** {result.total_duration_sec:.1f}s",
        f"**Source:** {result.question.source}",
        "",
        "---",
        "",
    ]

    for record in result.rounds:
        lines += [f"## Round {record.number}", ""]
        for message in record.messages:
            lines += [f"### {message.agent_name} ({message.agent_id})", "", message.content, ""]
        lines += [
            f"**Consensus:** {record.overall_consensus:.1f}/10",
            "",
            "| Agent | Satisfaction | Ready | Estimated |",
            "|---|---|---|---|",
        ]
        lines += [
            f"| {c.agent_id} | {c.satisfaction_level} | {'yes' if is_ready(c) else 'no'} | "
            f"{'yes' if c.estimated else 'no'} |"
            for c in record.consensus
        ]
        if record.instruction:
            lines += ["", f"*Facilitator instruction ({record.instruction.trigger_reason}):* "
                      f"{record.instruction.content}"]
        lines.append("")

    lines += ["## Votes", ""]
    for vote in result.votes:
        choice = vote.voted_agent or "(no valid vote)"
        lines.append(f"- **{vote.voter_id}** -> {choice}: {vote.reasoning or ''}".rstrip())
    lines.append("")

    for output in result.finalizer_outputs:
        if output.role != "single":
            lines += [f"### {output.agent_id} ({output.role})", "", output.content, ""]

    lines += ["## Conclusion", "", result.conclusion, ""]

    filepath.write_text("\n".join(lines), encoding="utf-8")
    logger.info("Dialogue saved to: %s", filepath)
    return filepath
