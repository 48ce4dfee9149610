"""Facilitator decision policy: convergence, dialogue patterns, interventions, vote resolution.

Module-level functions are pure and take their thresholds from ConsensusConfig /
FacilitatorConfig. The Facilitator class wraps the two AI-assisted steps
(suggesting interventions, breaking vote ties) and always falls back to the
deterministic rules when the collaborator fails.
"""

import logging
import re
from collections import Counter
from datetime import datetime, timezone

from config.config_loader import ConsensusConfig, FacilitatorConfig, PromptsConfig
from yui_council.agents import Participant
from yui_council.completion import complete
from yui_council.consensus import (
    average_satisfaction,
    calculate_overall_consensus,
    has_strict_majority,
    is_ready,
    ready_count,
)
from yui_council.interaction_log import InteractionLogger, record_interaction
from yui_council.models import (
    ConsensusIndicator,
    DynamicInstruction,
    FacilitatorAction,
    Message,
    Question,
    RagDissonance,
    Vote,
)
from yui_council.parsing import parse_facilitator_suggestions
from yui_council.prompts import build_facilitator_prompt, build_tie_break_prompt
from yui_council.providers.base import AIProvider

logger = logging.getLogger(__name__)

FACILITATOR_ID = "facilitator"
FACILITATOR_PERSONALITY = (
    "You are a neutral dialogue facilitator. You never argue a position yourself; "
    "you only observe and suggest how the discussion can improve."
)

PATTERN_TONES = {
    "easy_consensus": "deconstructive",
    "dialogue_gap": "exploratory",
    "topic_stagnation": "integrative",
}

_INSTRUCTIONS = {
    "en": {
        "easy_consensus": (
            "Agreement came very quickly. Do not close the discussion too early: examine the "
            "hidden assumptions behind the consensus and argue the strongest opposing view."
        ),
        "dialogue_gap": (
            "The dialogue has stalled. Explore a new angle, a concrete example, or a question "
            "nobody has raised yet."
        ),
        "topic_stagnation": (
            "The discussion is circling the same points. Integrate what has been said so far "
            "and propose the perspective that moves it to the next stage."
        ),
        "rag_similarity": (
            "This dialogue closely resembles a past conclusion ({source}): {summary} "
            "Question whether that conclusion really holds here before agreeing with it."
        ),
    },
    "ja": {
        "easy_consensus": (
            "合意がとても早く形成されました。早急に閉じないでください。"
            "合意の背後にある前提を検討し、最も強い反対意見をあえて論じてください。"
        ),
        "dialogue_gap": (
            "対話が行き詰まりました。新しい視点や具体例、まだ誰も触れていない問いから探索してください。"
        ),
        "topic_stagnation": (
            "議論が同じ論点を循環しています。これまでの洞察を統合し、次の段階へ進む視点を示してください。"
        ),
        "rag_similarity": (
            "この対話は過去の結論（{source}）とよく似ています：{summary} "
            "同意する前に、その結論がここでも本当に成り立つのか問い直してください。"
        ),
    },
}

_STOPWORDS = {
    "the", "and", "for", "that", "this", "with", "are", "was", "but", "not", "you", "your",
    "our", "can", "have", "has", "from", "they", "their", "what", "which", "will", "would",
    "should", "could", "about", "there", "been", "also", "more", "than", "into", "its",
    "it's", "these", "those", "we're", "i'm", "just", "like", "because", "very", "how",
    "いる", "ある", "する", "こと", "もの", "これ", "それ", "ため", "よう",
}
_WORD_RE = re.compile(r"[a-z][a-z'\-]{2,}|[一-龯ァ-ヶー]{2,}")
_AGENT_ID_RE = re.compile(r"[A-Za-z][A-Za-z0-9]*-\d+")

# Fallback suggestion priorities.
_LOW_SATISFACTION_PRIORITY = 8
_LEAST_ACTIVE_PRIORITY = 8
_ADDITIONAL_POINTS_PRIORITY = 7
_OPEN_QUESTIONS_PRIORITY = 6
_SUMMARIZE_PRIORITY = 5
_DEFAULT_SHIFT_PRIORITY = 4


# --- convergence -------------------------------------------------------------

def late_round_bar(round_number: int, config: ConsensusConfig) -> float:
    """Average-satisfaction bar for late rounds, relaxing toward convergence_threshold."""
    late_start = config.mid_round_limit + 1
    relaxed = config.late_round_start_bar - config.late_round_bar_step * max(0, round_number - late_start)
    return max(config.convergence_threshold, relaxed)


def should_continue_dialogue(
    consensus: list[ConsensusIndicator],
    round_number: int,
    overall_consensus: float | None = None,
    config: ConsensusConfig | None = None,
) -> bool:
    """Decide whether another round should run after round_number (0-based).

    Forced stop at max_rounds beats everything; otherwise any agent with
    additional points vetoes convergence, early rounds always continue, mid rounds
    need near-unanimous high satisfaction, late rounds need a ready majority.
    """
    cfg = config or ConsensusConfig()
    if round_number >= cfg.max_rounds:
        logger.info("Round %d reached max_rounds=%d, stopping", round_number, cfg.max_rounds)
        return False
    if not consensus:
        return True
    if any(c.has_additional_points for c in consensus):
        return True
    if round_number <= cfg.early_round_limit:
        return True

    avg = average_satisfaction(consensus)
    ready = ready_count(consensus)

    if round_number <= cfg.mid_round_limit:
        return not (avg >= cfg.mid_round_bar and ready == len(consensus))

    # overall_consensus only labels the stop reason; it never gates convergence.
    converged = avg >= late_round_bar(round_number, cfg) and has_strict_majority(ready, len(consensus))
    return not converged


def classify_convergence_reason(
    consensus: list[ConsensusIndicator],
    round_number: int,
    overall_consensus: float | None = None,
    forced: bool = False,
    config: ConsensusConfig | None = None,
) -> str:
    """User-facing label for why the dialogue stopped. Does not affect the decision."""
    cfg = config or ConsensusConfig()
    if forced:
        return "max_rounds"
    overall = calculate_overall_consensus(consensus) if overall_consensus is None else overall_consensus
    if consensus and (
        average_satisfaction(consensus) >= cfg.natural_consensus_bar
        and has_strict_majority(ready_count(consensus), len(consensus))
    ):
        return "natural_consensus"
    if overall >= cfg.high_satisfaction_bar and round_number >= 3:
        return "high_satisfaction"
    return "facilitator_decision"


# --- dialogue patterns ---------------------------------------------------------

def extract_keywords(text: str, limit: int = 5) -> list[str]:
    """First `limit` distinct content words of a text, stopwords removed."""
    keywords: list[str] = []
    for word in _WORD_RE.findall(text.lower()):
        if word in _STOPWORDS or word in keywords:
            continue
        keywords.append(word)
        if len(keywords) >= limit:
            break
    return keywords


def keyword_overlap(first: set[str], second: set[str]) -> float:
    if not first or not second:
        return 0.0
    return len(first & second) / len(first | second)


def detect_topic_stagnation(messages: list[Message], window: int = 3, threshold: float = 0.6) -> bool:
    """True when the last `window` agent messages reuse the keywords of the window before."""
    agent_messages = [m for m in messages if m.role == "agent"]
    if len(agent_messages) < window * 2:
        return False
    recent = agent_messages[-window:]
    previous = agent_messages[-2 * window:-window]
    recent_words = {w for m in recent for w in extract_keywords(m.content, limit=8)}
    previous_words = {w for m in previous for w in extract_keywords(m.content, limit=8)}
    return keyword_overlap(recent_words, previous_words) >= threshold


def detect_dialogue_pattern(
    messages: list[Message],
    consensus: list[ConsensusIndicator],
    round_number: int,
    consensus_config: ConsensusConfig | None = None,
    facilitator_config: FacilitatorConfig | None = None,
) -> str | None:
    """Classify the round as easy_consensus, dialogue_gap, topic_stagnation or None."""
    if not consensus:
        return None
    ccfg = consensus_config or ConsensusConfig()
    fcfg = facilitator_config or FacilitatorConfig()

    avg = average_satisfaction(consensus)
    no_additional = not any(c.has_additional_points for c in consensus)

    if (
        round_number <= ccfg.early_round_limit
        and avg >= fcfg.easy_consensus_bar
        and no_additional
        and all(is_ready(c) for c in consensus)
    ):
        return "easy_consensus"
    if avg < fcfg.dialogue_gap_bar and no_additional:
        return "dialogue_gap"
    if detect_topic_stagnation(messages, fcfg.stagnation_window, fcfg.stagnation_overlap):
        return "topic_stagnation"
    return None


def generate_dynamic_instruction(
    pattern: str | None,
    language: str = "en",
    rag_dissonance: RagDissonance | None = None,
) -> DynamicInstruction | None:
    """Tone-tagged nudge for the next round, or None when nothing was detected."""
    texts = _INSTRUCTIONS.get(language, _INSTRUCTIONS["en"])
    generated_at = datetime.now(timezone.utc).isoformat()

    if pattern in PATTERN_TONES:
        return DynamicInstruction(
            content=texts[pattern],
            tone=PATTERN_TONES[pattern],
            trigger_reason=pattern,
            generated_at=generated_at,
            rag_dissonance=rag_dissonance,
        )
    if rag_dissonance is not None:
        return DynamicInstruction(
            content=texts["rag_similarity"].format(
                source=rag_dissonance.source, summary=rag_dissonance.summary
            ),
            tone="deconstructive",
            trigger_reason="rag_similarity",
            generated_at=generated_at,
            rag_dissonance=rag_dissonance,
        )
    return None


# --- interventions ---------------------------------------------------------------

def fallback_suggestions(
    consensus: list[ConsensusIndicator],
    messages: list[Message],
    participants: list[Participant],
    config: ConsensusConfig | None = None,
) -> list[FacilitatorAction]:
    """Consensus-aware rule-based suggestions used when no AI suggestion is available."""
    cfg = config or ConsensusConfig()
    real = [c for c in consensus if not c.estimated]
    actions: list[FacilitatorAction] = []

    unsatisfied = [c for c in real if c.satisfaction_level < cfg.min_satisfaction_level]
    if unsatisfied:
        lowest = min(unsatisfied, key=lambda c: c.satisfaction_level)
        actions.append(FacilitatorAction(
            type="clarification",
            target=lowest.agent_id,
            reason=f"Satisfaction {lowest.satisfaction_level}/10 suggests unresolved confusion",
            priority=_LOW_SATISFACTION_PRIORITY,
        ))

    with_points = [c for c in real if c.has_additional_points]
    if with_points:
        actions.append(FacilitatorAction(
            type="deep_dive",
            target=with_points[0].agent_id,
            reason="Critical points remain that need to be explored",
            priority=_ADDITIONAL_POINTS_PRIORITY,
        ))

    counts = Counter(m.agent_id for m in messages if m.role == "agent")
    if participants:
        activity = {p.id: counts.get(p.id, 0) for p in participants}
        if max(activity.values()) > min(activity.values()):
            quiet = min(activity, key=activity.get)
            actions.append(FacilitatorAction(
                type="deep_dive",
                target=quiet,
                reason="Least active participant; invite their perspective",
                priority=_LEAST_ACTIVE_PRIORITY,
            ))

    askers = [c for c in real if c.questions_for_others]
    if askers:
        actions.append(FacilitatorAction(
            type="perspective_shift",
            reason=f"Open question from {askers[0].agent_id}: {askers[0].questions_for_others[0]}",
            priority=_OPEN_QUESTIONS_PRIORITY,
        ))

    if real and average_satisfaction(real) >= 7:
        summarizer = next((p.id for p in participants if p.style == "logical"), None)
        actions.append(FacilitatorAction(
            type="summarize",
            target=summarizer,
            reason="Satisfaction is high; consolidate the points of agreement",
            priority=_SUMMARIZE_PRIORITY,
        ))

    if not actions:
        actions.append(FacilitatorAction(
            type="perspective_shift",
            reason="Broaden the discussion with a perspective not yet considered",
            priority=_DEFAULT_SHIFT_PRIORITY,
        ))

    return sorted(actions, key=lambda a: a.priority, reverse=True)


def select_action(
    actions: list[FacilitatorAction],
    round_number: int,
    last_intervention_round: int | None,
    cooldown: int,
) -> FacilitatorAction | None:
    """Highest-priority non-conclude action, or None while the cooldown is running."""
    if last_intervention_round is not None and round_number - last_intervention_round < cooldown:
        return None
    candidates = [a for a in actions if a.type != "conclude"]
    if not candidates:
        return None
    return max(candidates, key=lambda a: a.priority)


# --- votes ---------------------------------------------------------------------

def tally_votes(votes: list[Vote], valid_agent_ids: list[str]) -> dict[str, int]:
    """Count valid first-choice votes, ordered like valid_agent_ids."""
    counts = Counter(
        v.voted_agent for v in votes
        if v.voted_agent in valid_agent_ids and v.voted_agent != v.voter_id
    )
    return {agent_id: counts[agent_id] for agent_id in valid_agent_ids if counts[agent_id]}


def top_candidates(counts: dict[str, int]) -> list[str]:
    if not counts:
        return []
    best = max(counts.values())
    return [agent_id for agent_id, count in counts.items() if count == best]


class Facilitator:
    """AI-assisted facilitator steps with deterministic fallbacks. Holds no session state."""

    def __init__(
        self,
        prompts: PromptsConfig,
        consensus_config: ConsensusConfig | None = None,
        facilitator_config: FacilitatorConfig | None = None,
        provider: AIProvider | None = None,
        interaction_logger: InteractionLogger | None = None,
    ) -> None:
        self._prompts = prompts
        self.consensus_config = consensus_config or ConsensusConfig()
        self.facilitator_config = facilitator_config or FacilitatorConfig()
        self._provider = provider
        self._interaction_logger = interaction_logger

    async def suggest_actions(
        self,
        question: Question,
        round_number: int,
        consensus: list[ConsensusIndicator],
        messages: list[Message],
        participants: list[Participant],
        session_id: str = "",
    ) -> list[FacilitatorAction]:
        """Ask the facilitator model for interventions; fall back to the rules."""
        if self._provider is None or not self._prompts.facilitator:
            return fallback_suggestions(consensus, messages, participants, self.consensus_config)

        prompt = build_facilitator_prompt(
            self._prompts, question, round_number, consensus, messages, [p.id for p in participants]
        )
        result = await complete(self._provider, prompt, FACILITATOR_PERSONALITY, round_number)
        record_interaction(
            self._interaction_logger, session_id, "facilitator", FACILITATOR_ID, FACILITATOR_ID,
            round_number, prompt, result,
        )
        if not result.success:
            logger.warning("Failed to parse facilitator suggestions, using fallback: %s", result.error)
            return fallback_suggestions(consensus, messages, participants, self.consensus_config)

        return parse_facilitator_suggestions(
            result.content,
            self.facilitator_config.action_priority,
            known_agents=participants,
        )

    async def analyze_finalize_votes(
        self,
        votes: list[Vote],
        valid_agent_ids: list[str],
        question: Question | None = None,
        session_id: str = "",
    ) -> list[str]:
        """Resolve finalizer(s) from votes. Never raises, never returns an unknown id.

        A strict plurality wins outright. Ties go to an AI judgment restricted to the
        tied candidates, falling back to all tied candidates. With no valid votes the
        first valid agent is chosen.
        """
        valid = list(dict.fromkeys(valid_agent_ids))
        if not valid:
            logger.error("No valid agents to select a finalizer from")
            return []

        counts = tally_votes(votes, valid)
        if not counts:
            logger.warning("No valid finalizer votes, defaulting to %s", valid[0])
            return [valid[0]]

        top = top_candidates(counts)
        if len(top) == 1:
            logger.info("Finalizer selected by plurality: %s (%d votes)", top[0], counts[top[0]])
            return top

        logger.info("Finalizer vote tied between %s", ", ".join(top))
        chosen = await self._break_tie(top, votes, question, session_id)
        if chosen:
            logger.info("Tie broken in favour of %s", ", ".join(chosen))
            return chosen
        logger.info("Tie-break unavailable, keeping all tied candidates: %s", ", ".join(top))
        return top

    async def _break_tie(
        self,
        tied: list[str],
        votes: list[Vote],
        question: Question | None,
        session_id: str,
    ) -> list[str]:
        if self._provider is None or not self._prompts.tie_break:
            return []
        try:
            prompt = build_tie_break_prompt(
                self._prompts, question or Question(text="", source="unknown"), tied, votes
            )
            result = await complete(self._provider, prompt, FACILITATOR_PERSONALITY, 0)
            record_interaction(
                self._interaction_logger, session_id, "tie_break", FACILITATOR_ID, FACILITATOR_ID,
                0, prompt, result,
            )
        except Exception as exc:
            logger.warning("Tie-break call failed: %s", exc)
            return []
        if not result.success:
            logger.warning("Tie-break call failed: %s", result.error)
            return []

        by_key = {agent_id.lower(): agent_id for agent_id in tied}
        chosen: list[str] = []
        for token in _AGENT_ID_RE.findall(result.content):
            agent_id = by_key.get(token.lower())
            if agent_id and agent_id not in chosen:
                chosen.append(agent_id)
        if not chosen:
            logger.warning("Tie-break returned no valid candidate: %r", result.content[:200])
        return chosen
