"""Fill the prompt templates from settings.yaml for each stage of the dialogue."""

from config.config_loader import PromptsConfig
from yui_council.agents import Participant
from yui_council.models import ConsensusIndicator, DynamicInstruction, FacilitatorAction, Message, Question, Vote

_LANGUAGE_INSTRUCTIONS = {
    "en": "Respond in English.",
    "ja": "日本語で回答してください。",
}

_ROLE_INSTRUCTIONS = {
    "foundation": (
        "Foundation building: lay out the core conclusion and the structure the "
        "following finalizers will build on."
    ),
    "integrator": (
        "Integration: bridge the previous output with perspectives it underweights, "
        "resolving tensions between them."
    ),
    "enricher": (
        "Enrichment: deepen the integrated conclusion with nuance, caveats and concrete "
        "next steps, producing the final comprehensive answer."
    ),
}

# Transcript window sent to agents each round.
_RECENT_MESSAGES = 12


def language_instruction(language: str) -> str:
    return _LANGUAGE_INSTRUCTIONS.get(language, _LANGUAGE_INSTRUCTIONS["en"])


def round_guidance(round_number: int) -> str:
    """Stage-appropriate framing for the round (0-based)."""
    if round_number <= 1:
        return "EARLY STAGE: share your initial perspective and explore the question broadly."
    if round_number <= 3:
        return "MID STAGE: engage with specific points others made and test them."
    if round_number <= 5:
        return "DEVELOPED STAGE: consolidate insights and surface what is still unresolved."
    return "MATURE STAGE: focus on synthesis and on whether the dialogue is ready to conclude."


def format_transcript(messages: list[Message], limit: int | None = None) -> str:
    selected = messages[-limit:] if limit else messages
    if not selected:
        return "(no messages yet)"
    return "\n\n".join(f"[{m.agent_name} / round {m.round_number}]\n{m.content}" for m in selected)


def format_facilitator_guidance(
    action: FacilitatorAction | None,
    instruction: DynamicInstruction | None,
    participant_id: str,
) -> str:
    lines: list[str] = []
    if instruction is not None:
        lines.append(f"Facilitator note ({instruction.tone}): {instruction.content}")
    if action is not None and action.type != "conclude":
        if action.target is None or action.target == participant_id:
            lines.append(f"Facilitator focus ({action.type.replace('_', ' ')}): {action.reason}")
    return "\n".join(lines) + ("\n" if lines else "")


def build_dialogue_prompt(
    prompts: PromptsConfig,
    participant: Participant,
    question: Question,
    round_number: int,
    messages: list[Message],
    language: str,
    action: FacilitatorAction | None = None,
    instruction: DynamicInstruction | None = None,
) -> str:
    return prompts.dialogue.format(
        agent_name=participant.name,
        question=question.text,
        round=round_number,
        round_guidance=round_guidance(round_number),
        transcript=format_transcript(messages, _RECENT_MESSAGES),
        facilitator_guidance=format_facilitator_guidance(action, instruction, participant.id),
        language_instruction=language_instruction(language),
    )


def build_consensus_prompt(
    prompts: PromptsConfig,
    participant: Participant,
    question: Question,
    round_number: int,
    messages: list[Message],
) -> str:
    return prompts.consensus.format(
        agent_name=participant.name,
        question=question.text,
        round=round_number,
        transcript=format_transcript(messages, _RECENT_MESSAGES),
    )


def format_candidates(participants: list[Participant], exclude: str | None = None) -> str:
    return "\n".join(
        f"- {p.id}: {p.display_name}, {p.style}" for p in participants if p.id != exclude
    )


def build_vote_prompt(
    prompts: PromptsConfig,
    participant: Participant,
    participants: list[Participant],
    question: Question,
    messages: list[Message],
    language: str,
) -> str:
    return prompts.vote.format(
        agent_name=participant.name,
        question=question.text,
        transcript=format_transcript(messages, _RECENT_MESSAGES),
        candidates=format_candidates(participants, exclude=participant.id),
        language_instruction=language_instruction(language),
    )


def format_vote_summary(votes: list[Vote]) -> str:
    if not votes:
        return "(no votes)"
    return "\n".join(
        f"- {v.voter_id} -> {v.voted_agent or 'no valid vote'}: {v.reasoning or ''}".rstrip()
        for v in votes
    )


def build_finalize_prompt(
    prompts: PromptsConfig,
    question: Question,
    messages: list[Message],
    votes: list[Vote],
    language: str,
) -> str:
    return prompts.finalize.format(
        question=question.text,
        transcript=format_transcript(messages),
        vote_summary=format_vote_summary(votes),
        language_instruction=language_instruction(language),
    )


def finalizer_role(index: int, total: int) -> str:
    """Role of the index-th finalizer in a collaborative sequence."""
    if total <= 1:
        return "single"
    if index == 0:
        return "foundation"
    if index == 1:
        return "integrator"
    return "enricher"


def build_finalize_step_prompt(
    prompts: PromptsConfig,
    question: Question,
    messages: list[Message],
    role: str,
    step: int,
    total_steps: int,
    previous_output: str,
    language: str,
) -> str:
    return prompts.finalize_step.format(
        question=question.text,
        transcript=format_transcript(messages),
        role=role,
        role_instruction=_ROLE_INSTRUCTIONS.get(role, ""),
        previous_output=previous_output or "(you are the first finalizer)",
        step=step,
        total_steps=total_steps,
        language_instruction=language_instruction(language),
    )


def format_consensus_summary(consensus: list[ConsensusIndicator]) -> str:
    return "\n".join(
        f"- {c.agent_id}: satisfaction {c.satisfaction_level}/10, "
        f"ready={'yes' if c.ready_to_move else 'no'}, "
        f"additional points={'yes' if c.has_additional_points else 'no'}"
        + (f", questions: {'; '.join(c.questions_for_others)}" if c.questions_for_others else "")
        for c in consensus
    )


def build_facilitator_prompt(
    prompts: PromptsConfig,
    question: Question,
    round_number: int,
    consensus: list[ConsensusIndicator],
    messages: list[Message],
    agent_ids: list[str],
) -> str:
    return prompts.facilitator.format(
        question=question.text,
        round=round_number,
        consensus_summary=format_consensus_summary(consensus),
        transcript=format_transcript(messages, _RECENT_MESSAGES),
        agent_ids=", ".join(agent_ids),
    )


def build_tie_break_prompt(
    prompts: PromptsConfig,
    question: Question,
    candidates: list[str],
    votes: list[Vote],
) -> str:
    return prompts.tie_break.format(
        question=question.text,
        candidates="\n".join(f"- {c}" for c in candidates),
        vote_summary=format_vote_summary(votes),
    )
