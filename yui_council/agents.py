"""Participant descriptors: tagged agent data bound to the provider that voices it."""

import logging
from dataclasses import dataclass

from config.config_loader import AgentConfig
from yui_council.providers.base import AIProvider

logger = logging.getLogger(__name__)

_STYLE_HINTS = {
    "logical": "Reason step by step from first principles and make your premises explicit.",
    "analytical": "Look for patterns, structure and evidence; quantify where you can.",
    "critical": "Probe weak assumptions and ambiguities, but stay constructive.",
    "intuitive": "Offer creative, practical angles that others may have missed.",
    "emotive": "Attend to the human and emotional side of the question with curiosity.",
}


@dataclass
class Participant:
    profile: AgentConfig
    provider: AIProvider

    @property
    def id(self) -> str:
        return self.profile.id

    @property
    def name(self) -> str:
        return self.profile.name

    @property
    def style(self) -> str:
        return self.profile.style

    @property
    def display_name(self) -> str:
        if self.profile.furigana:
            return f"{self.profile.name} ({self.profile.furigana})"
        return self.profile.name


def build_personality(profile: AgentConfig) -> str:
    """System prompt for an agent. Style only changes wording, never control flow."""
    parts = [f"You are {profile.name} ({profile.id}), a participant with a {profile.style} style."]
    if profile.personality:
        parts.append(profile.personality)
    hint = _STYLE_HINTS.get(profile.style)
    if hint:
        parts.append(hint)
    return "\n".join(parts)


def build_participants(
    agents: list[AgentConfig],
    providers: dict[str, AIProvider],
    selected_ids: list[str] | None = None,
) -> list[Participant]:
    """Bind each configured agent to its provider, preserving config order.

    Agents whose provider is unavailable are skipped with a warning.
    """
    wanted = set(selected_ids) if selected_ids else None
    participants: list[Participant] = []
    for agent in agents:
        if wanted is not None and agent.id not in wanted:
            continue
        provider = providers.get(agent.provider)
        if provider is None:
            logger.warning("Agent %s skipped: provider '%s' not available", agent.id, agent.provider)
            continue
        participants.append(Participant(profile=agent, provider=provider))
    if wanted is not None:
        unknown = wanted - {a.id for a in agents}
        if unknown:
            logger.warning("Unknown agent ids ignored: %s", ", ".join(sorted(unknown)))
    return participants
