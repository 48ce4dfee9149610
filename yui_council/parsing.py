"""Turn free-text agent output into consensus indicators, votes and facilitator actions.

Every function here is total: malformed text degrades to a safe default and a
logged warning, never an exception.
"""

import json
import logging
import re
from collections.abc import Iterable, Iterator, Mapping

from config.config_loader import ACTION_TYPES, DEFAULT_ACTION_PRIORITY
from yui_council.consensus import clamp_satisfaction, default_indicator
from yui_council.models import ConsensusIndicator, FacilitatorAction, VoteDetails

logger = logging.getLogger(__name__)

KnownAgents = Mapping[str, str] | Iterable

UNPARSEABLE_CONSENSUS = "Could not parse consensus response"
DEFAULT_ACTION_REASON = "General discussion improvement"

_FALLBACK_REASONS = {
    "deep_dive": "Explore the most promising open thread in more depth",
    "clarification": "Clarify terms and positions that are still ambiguous",
    "perspective_shift": "Look at the question from a perspective not yet taken",
    "summarize": "Summarize where the participants agree and disagree",
}


# --- consensus -------------------------------------------------------------

def _label_start(label: str) -> str:
    return rf"^[ \t*_#>\-]*(?:{label})[ \t*_]*[:：]"


def _label_re(label: str, stop_before: str | None = None) -> re.Pattern:
    """Single-line value, or with stop_before a multi-line value ending at the next such label."""
    if stop_before is None:
        return re.compile(rf"{_label_start(label)}[ \t]*(.*)$", re.IGNORECASE | re.MULTILINE)
    return re.compile(
        rf"{_label_start(label)}[ \t]*(.*?)(?={_label_start(stop_before)}|\Z)",
        re.IGNORECASE | re.MULTILINE | re.DOTALL,
    )


_SATISFACTION_LABEL = r"satisfaction(?:\s+level)?|満足度"
_INSIGHTS_LABEL = r"meaningful\s+insights"
_READY_LABEL = r"ready\s+to\s+(?:conclude|move(?:\s+on)?)"
_CRITICAL_LABEL = r"critical\s+points(?:\s+remaining)?"
_ADDITIONAL_LABEL = r"additional\s+points"
_QUESTIONS_LABEL = r"questions(?:\s+for\s+others)?"

_SATISFACTION_RE = _label_re(_SATISFACTION_LABEL)
_INSIGHTS_RE = _label_re(_INSIGHTS_LABEL)
_READY_RE = _label_re(_READY_LABEL)
_CRITICAL_RE = _label_re(_CRITICAL_LABEL)
_ADDITIONAL_RE = _label_re(_ADDITIONAL_LABEL)
_QUESTIONS_RE = _label_re(_QUESTIONS_LABEL)
_REASONING_RE = _label_re(
    r"reasoning|理由",
    stop_before="|".join((
        _SATISFACTION_LABEL, _INSIGHTS_LABEL, _READY_LABEL,
        _CRITICAL_LABEL, _ADDITIONAL_LABEL, _QUESTIONS_LABEL,
    )),
)
_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")
_NONE_VALUES = {"", "none", "no", "n/a", "-", "なし", "ありません"}


def _parse_flag(value: str) -> bool | None:
    cleaned = value.strip().strip("*_[]()").strip().lower()
    if cleaned.startswith(("yes", "true", "はい")):
        return True
    if cleaned.startswith(("no", "false", "いいえ")):
        return False
    return None


def _field(pattern: re.Pattern, text: str) -> str | None:
    match = pattern.search(text)
    return match.group(1).strip() if match else None


def _parse_questions(value: str) -> tuple[str, ...]:
    if value.strip().strip("[]").strip().lower() in _NONE_VALUES:
        return ()
    parts = re.split(r"[,;、；]", value.strip().strip("[]"))
    return tuple(p.strip() for p in parts if p.strip())


def parse_consensus_response(raw_text: str, agent_id: str) -> ConsensusIndicator:
    """Parse a labeled self-report into a ConsensusIndicator.

    "Critical points remaining: yes" (or "Additional points: yes") forces
    has_additional_points and clears readiness, whatever "Ready to conclude" said.
    """
    text = raw_text or ""
    satisfaction_raw = _field(_SATISFACTION_RE, text)
    insights_raw = _field(_INSIGHTS_RE, text)
    ready_raw = _field(_READY_RE, text)
    critical_raw = _field(_CRITICAL_RE, text)
    additional_raw = _field(_ADDITIONAL_RE, text)
    questions_raw = _field(_QUESTIONS_RE, text)
    reasoning_raw = _field(_REASONING_RE, text)

    if all(v is None for v in (satisfaction_raw, ready_raw, critical_raw, additional_raw, reasoning_raw)):
        logger.warning("Could not parse consensus response from %s, using default", agent_id)
        return default_indicator(agent_id, UNPARSEABLE_CONSENSUS)

    satisfaction = 5
    if satisfaction_raw is not None:
        number = _NUMBER_RE.search(satisfaction_raw)
        if number:
            satisfaction = clamp_satisfaction(float(number.group()))
        else:
            logger.warning("Unreadable satisfaction value from %s: %r", agent_id, satisfaction_raw)

    ready = _parse_flag(ready_raw) is True if ready_raw is not None else False
    has_additional = any(
        raw is not None and _parse_flag(raw) is True for raw in (critical_raw, additional_raw)
    )
    if has_additional:
        ready = False

    return ConsensusIndicator(
        agent_id=agent_id,
        satisfaction_level=satisfaction,
        has_additional_points=has_additional,
        ready_to_move=ready,
        questions_for_others=_parse_questions(questions_raw) if questions_raw is not None else (),
        reasoning=reasoning_raw or "",
        meaningful_insights=insights_raw is not None and _parse_flag(insights_raw) is True,
    )


# --- votes -----------------------------------------------------------------

_ID = r"(?<![A-Za-z0-9])([A-Za-z][A-Za-z0-9]*-\d+)(?![A-Za-z0-9])"
_HONORIFIC = r"(?:氏|さん|様|殿|くん|君)?"
_VOTE_VERB = r"(?:に|へ)\s*(?:投票|一票)"
_LABEL = r"(?:agent\s+vote|vote|投票先|投票)[ \t*_]*[:：]"

_LABEL_ID_RE = re.compile(rf"{_LABEL}\s*[*_`\s]*{_ID}", re.IGNORECASE)
_NATURAL_ID_RES = (
    re.compile(rf"{_ID}\s*[)）]?\s*{_HONORIFIC}\s*{_VOTE_VERB}", re.IGNORECASE),
    re.compile(rf"投票先\s*(?:は|:|：)[^\n。]*?{_ID}", re.IGNORECASE),
    re.compile(rf"(?:ふさわしい|適任|推薦したい|推したい)[^\n。]*?{_ID}", re.IGNORECASE),
    re.compile(
        rf"(?:vote\s+(?:for|goes\s+to)|i\s+(?:choose|select|nominate|pick))\s+[*_`\s]*{_ID}",
        re.IGNORECASE,
    ),
)
_SENTENCE_END_RE = re.compile(r"[。．.!?！？\n]")
_REASON_LABEL_RE = re.compile(
    r"^[ \t*_#>\-]*(?:理由|reasoning|reason|justification)[ \t*_]*[:：][ \t]*(.+)",
    re.IGNORECASE | re.MULTILINE | re.DOTALL,
)


def known_agent_map(known_agents: KnownAgents) -> dict[str, str | None]:
    """Normalise known agents to {agent_id: display name or None}.

    Accepts a mapping of id to name, or an iterable of ids or objects with
    ``id`` and ``name`` attributes.
    """
    if isinstance(known_agents, Mapping):
        return {str(k): (str(v) if v else None) for k, v in known_agents.items()}
    result: dict[str, str | None] = {}
    for item in known_agents:
        if isinstance(item, str):
            result[item] = None
        else:
            result[item.id] = getattr(item, "name", None)
    return result


def _name_res(name: str) -> tuple[re.Pattern, ...]:
    escaped = re.escape(name)
    return (
        re.compile(rf"{_LABEL}\s*[*_`\s]*{escaped}(?![㐀-鿿A-Za-z])", re.IGNORECASE),
        re.compile(
            rf"{escaped}(?:\s*[-‐－]\s*\d+)?\s*(?:[（(][^)）\n]*[)）])?\s*{_HONORIFIC}\s*{_VOTE_VERB}"
        ),
    )


def _vote_candidates(text: str, names: dict[str, str | None]) -> Iterator[tuple[str, re.Match]]:
    for match in _LABEL_ID_RE.finditer(text):
        yield match.group(1), match
    for pattern in _NATURAL_ID_RES:
        for match in pattern.finditer(text):
            yield match.group(1), match
    for agent_id, name in names.items():
        if not name:
            continue
        for pattern in _name_res(name):
            for match in pattern.finditer(text):
                yield agent_id, match


def _find_vote(
    raw_text: str,
    known_agents: KnownAgents,
    self_agent_id: str,
) -> tuple[str, re.Match] | None:
    names = known_agent_map(known_agents)
    canonical = {agent_id.lower(): agent_id for agent_id in names}
    self_key = (self_agent_id or "").lower()
    for candidate, match in _vote_candidates(raw_text or "", names):
        key = candidate.lower()
        if key == self_key:
            logger.debug("Ignoring self-vote by %s", self_agent_id)
            continue
        if key not in canonical:
            logger.debug("Ignoring vote for unknown agent %s", candidate)
            continue
        return canonical[key], match
    return None


def extract_vote(raw_text: str, known_agents: KnownAgents, self_agent_id: str) -> str | None:
    """Return the agent id voted for, or None for no valid vote.

    Labels ("投票: id", "Vote: id") win over natural phrasing ("idに投票します"),
    which wins over name-based forms ("観至に投票", "観至-001様に投票",
    "観至 (kanshi-001)に投票"). Self-votes and unknown ids are never returned.
    """
    found = _find_vote(raw_text, known_agents, self_agent_id)
    return found[0] if found else None


def _paragraph_around(text: str, start: int, end: int) -> str:
    para_start = text.rfind("\n\n", 0, start)
    para_start = 0 if para_start == -1 else para_start + 2
    para_end = text.find("\n\n", end)
    para_end = len(text) if para_end == -1 else para_end
    return text[para_start:para_end].strip()


def _sentence_around(text: str, start: int, end: int) -> str:
    sentence_start = 0
    for match in _SENTENCE_END_RE.finditer(text, 0, start):
        sentence_start = match.end()
    tail = _SENTENCE_END_RE.search(text, end)
    sentence_end = tail.end() if tail else len(text)
    return text[sentence_start:sentence_end].strip()


def _text_after_sentence(text: str, end: int) -> str | None:
    tail = _SENTENCE_END_RE.search(text, end)
    if not tail:
        return None
    remainder = text[tail.end():].strip()
    return remainder or None


def extract_vote_details(raw_text: str, self_agent_id: str, known_agents: KnownAgents) -> VoteDetails:
    """Like extract_vote, plus the paragraph holding the vote and a best-effort reason.

    Reasoning comes from a labeled "理由:"/"Reason:" block, else the prose after the
    declaring sentence, else the declaring sentence itself.
    """
    text = raw_text or ""
    labeled = _REASON_LABEL_RE.search(text)
    labeled_reason = labeled.group(1).strip() if labeled else None

    found = _find_vote(text, known_agents, self_agent_id)
    if found is None:
        return VoteDetails(voted_agent=None, reasoning=labeled_reason, vote_section=None)

    agent_id, match = found
    reasoning = (
        labeled_reason
        or _text_after_sentence(text, match.end())
        or _sentence_around(text, match.start(), match.end())
    )
    return VoteDetails(
        voted_agent=agent_id,
        reasoning=reasoning,
        vote_section=_paragraph_around(text, match.start(), match.end()),
    )


# --- facilitator suggestions -------------------------------------------------

_JSON_START_RE = re.compile(r"[\[{](?=\s*[\[{\"\]}\d-])")


def static_fallback_actions(action_priority: Mapping[str, int] | None = None) -> list[FacilitatorAction]:
    """Fixed fallback list from priority config. Never empty, never 'conclude'."""
    priority = {
        t: p for t, p in (action_priority or {}).items() if t in _FALLBACK_REASONS
    } or {t: DEFAULT_ACTION_PRIORITY[t] for t in _FALLBACK_REASONS}
    ordered = sorted(priority.items(), key=lambda item: item[1], reverse=True)
    return [FacilitatorAction(type=t, reason=_FALLBACK_REASONS[t], priority=p) for t, p in ordered]


def _load_json(text: str) -> tuple[object, str | None]:
    """Return (value, None) or (None, failure kind) where kind is 'missing' or an error."""
    stripped = text.strip()
    if not stripped:
        return None, "missing"
    try:
        return json.loads(stripped), None
    except json.JSONDecodeError:
        pass

    decoder = json.JSONDecoder()
    first_error: str | None = None
    for start in _JSON_START_RE.finditer(stripped):
        try:
            value, _ = decoder.raw_decode(stripped, start.start())
            return value, None
        except json.JSONDecodeError as exc:
            first_error = first_error or str(exc)
    return None, first_error or "missing"


def _normalise_action(
    item: dict,
    action_priority: Mapping[str, int],
    names: dict[str, str | None] | None,
) -> FacilitatorAction:
    action_type = str(item.get("type") or "summarize")
    if action_type not in ACTION_TYPES:
        logger.debug("Unknown facilitator action type %r, using summarize", action_type)
        action_type = "summarize"

    target = item.get("target")
    if target is not None:
        target = str(target)
        if names is not None and target not in names:
            target = None

    try:
        priority = int(item.get("priority"))
    except (TypeError, ValueError):
        priority = action_priority.get(action_type, 5)

    return FacilitatorAction(
        type=action_type,
        target=target,
        reason=str(item.get("reason") or DEFAULT_ACTION_REASON),
        priority=priority,
    )


def parse_facilitator_suggestions(
    raw_text: str,
    action_priority: Mapping[str, int] | None = None,
    known_agents: KnownAgents | None = None,
) -> list[FacilitatorAction]:
    """Parse a JSON array of suggested actions out of facilitator text.

    Accepts bare arrays, fenced blocks and arrays wrapped in prose. Anything else
    returns static_fallback_actions().
    """
    priority = dict(action_priority or DEFAULT_ACTION_PRIORITY)
    value, failure = _load_json(raw_text or "")

    if failure == "missing":
        logger.warning("No valid JSON found in response, using fallback")
        return static_fallback_actions(priority)
    if failure is not None:
        logger.warning("JSON parse failed: %s", failure)
        return static_fallback_actions(priority)
    if not isinstance(value, list):
        logger.warning("Invalid suggestions format, using fallback")
        return static_fallback_actions(priority)

    names = known_agent_map(known_agents) if known_agents is not None else None
    actions = [_normalise_action(item, priority, names) for item in value if isinstance(item, dict)]
    if not actions:
        logger.warning("Invalid suggestions format, using fallback")
        return static_fallback_actions(priority)
    return actions
