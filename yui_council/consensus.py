"""Consensus indicator arithmetic shared by the parser, facilitator and router."""

import math

from yui_council.models import ConsensusIndicator

EARLY_EXIT_REASONING = "Early exit - estimated based on {count} actual responses"
ERROR_REASONING = "Error occurred during consensus gathering: {error}"


def clamp_satisfaction(value: float) -> int:
    """Clamp a self-reported satisfaction to the 0-10 integer scale."""
    if math.isnan(value):
        return 5
    return int(round(min(10.0, max(0.0, value))))


def is_ready(indicator: ConsensusIndicator) -> bool:
    """Effective readiness: critical points always override an explicit 'ready'."""
    return indicator.ready_to_move and not indicator.has_additional_points


def wants_to_continue(indicator: ConsensusIndicator) -> bool:
    return not indicator.ready_to_move or indicator.has_additional_points


def average_satisfaction(consensus: list[ConsensusIndicator]) -> float:
    if not consensus:
        return 0.0
    return sum(c.satisfaction_level for c in consensus) / len(consensus)


def ready_count(consensus: list[ConsensusIndicator]) -> int:
    return sum(1 for c in consensus if is_ready(c))


def has_strict_majority(count: int, total: int) -> bool:
    """True when count > total / 2 (3 of 5, 3 of 4, 2 of 3)."""
    return total > 0 and count * 2 > total


def calculate_overall_consensus(consensus: list[ConsensusIndicator]) -> float:
    """Weighted score: 80% average satisfaction, 20% readiness ratio scaled to 10."""
    if not consensus:
        return 0.0
    ready_ratio = ready_count(consensus) / len(consensus)
    return round(0.8 * average_satisfaction(consensus) + 0.2 * ready_ratio * 10, 1)


def default_indicator(agent_id: str, reasoning: str) -> ConsensusIndicator:
    """Safe default used for unparseable text and failed agent calls."""
    return ConsensusIndicator(
        agent_id=agent_id,
        satisfaction_level=5,
        has_additional_points=False,
        ready_to_move=False,
        reasoning=reasoning,
    )


def error_indicator(agent_id: str, error: str) -> ConsensusIndicator:
    return default_indicator(agent_id, ERROR_REASONING.format(error=error))


def estimated_indicator(agent_id: str, actual: list[ConsensusIndicator]) -> ConsensusIndicator:
    """Filler record for an agent skipped by early exit.

    Satisfaction is the rounded mean of the real responses; the record is never
    ready and never carries a veto.
    """
    satisfaction = clamp_satisfaction(average_satisfaction(actual)) if actual else 5
    return ConsensusIndicator(
        agent_id=agent_id,
        satisfaction_level=satisfaction,
        has_additional_points=False,
        ready_to_move=False,
        reasoning=EARLY_EXIT_REASONING.format(count=len(actual)),
        estimated=True,
    )
