"""Dynamic dialogue router: rounds, consensus gathering, voting and finalization."""

import asyncio
import logging
import time
import uuid
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import asdict
from datetime import datetime, timezone
from enum import Enum

from config.config_loader import ConsensusConfig, PromptsConfig
from yui_council.agents import Participant, build_personality
from yui_council.announcements import convergence_message, voting_result_message, voting_start_message
from yui_council.completion import Completion, complete
from yui_council.consensus import (
    calculate_overall_consensus,
    error_indicator,
    estimated_indicator,
    has_strict_majority,
    ready_count,
    wants_to_continue,
)
from yui_council.facilitator import (
    Facilitator,
    classify_convergence_reason,
    detect_dialogue_pattern,
    generate_dynamic_instruction,
    select_action,
    should_continue_dialogue,
    tally_votes,
)
from yui_council.interaction_log import InteractionLogger, record_interaction
from yui_council.models import (
    ConsensusIndicator,
    DialogueResult,
    DynamicInstruction,
    FacilitatorAction,
    FinalizerOutput,
    Message,
    Question,
    RoundRecord,
    SessionRecord,
    Vote,
)
from yui_council.parsing import extract_vote_details, parse_consensus_response
from yui_council.prompts import (
    build_consensus_prompt,
    build_dialogue_prompt,
    build_finalize_prompt,
    build_finalize_step_prompt,
    build_vote_prompt,
    finalizer_role,
)
from yui_council.storage import SessionStore

logger = logging.getLogger(__name__)


class RouterState(Enum):
    INIT = "init"
    ROUND_ACTIVE = "round_active"
    VOTING = "voting"
    FINALIZING = "finalizing"
    DONE = "done"
    ERROR = "error"


class DialogueError(RuntimeError):
    """Unrecoverable session failure: no usable responses from any agent."""


class SequenceReset(Exception):
    """The running sequence was superseded by start_new_sequence()."""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class DynamicDialogueRouter:
    """Runs one dialogue session at a time. State is owned here and nowhere else.

    The transcript is append-only and every message is tagged with the round that
    was active when it was requested. start_new_sequence() discards the session;
    results that arrive afterwards for the old sequence are dropped.
    """

    def __init__(
        self,
        participants: list[Participant],
        prompts: PromptsConfig,
        facilitator: Facilitator,
        consensus_config: ConsensusConfig | None = None,
        session_store: SessionStore | None = None,
        interaction_logger: InteractionLogger | None = None,
        language: str = "en",
    ) -> None:
        self.participants = list(participants)
        self.facilitator = facilitator
        self.language = language
        self._prompts = prompts
        self._config = consensus_config or facilitator.consensus_config
        self._session_store = session_store
        self._interaction_logger = interaction_logger
        self._personalities = {p.id: build_personality(p.profile) for p in self.participants}
        self._sequence = 0

        self.state = RouterState.INIT
        self.session_id: str | None = None
        self.question: Question | None = None
        self.round_number = 0
        self.transcript: list[Message] = []
        self.consensus_history: list[list[ConsensusIndicator]] = []
        self.rounds: list[RoundRecord] = []
        self._created_at = _now()
        self._last_intervention_round: int | None = None
        self._error: str | None = None

    # --- lifecycle -------------------------------------------------------------

    def start_new_sequence(self) -> None:
        """Interrupt point: supersede the running sequence and clear session state."""
        self._sequence += 1
        logger.info("New sequence %d requested, discarding session %s", self._sequence, self.session_id)
        self._reset()

    def _reset(self) -> None:
        self.state = RouterState.INIT
        self.round_number = 0
        self.transcript = []
        self.consensus_history = []
        self.rounds = []
        self._last_intervention_round = None
        self._error = None

    def _set_state(self, state: RouterState) -> None:
        logger.debug("Session %s: %s -> %s", self.session_id, self.state.value, state.value)
        self.state = state

    def _ensure_current(self, token: int) -> None:
        if token != self._sequence:
            raise SequenceReset(f"Sequence {token} superseded by {self._sequence}")

    def _persist(self) -> None:
        if self._session_store is None or self.session_id is None:
            return
        record = SessionRecord(
            session_id=self.session_id,
            question=self.question.text if self.question else "",
            status=self.state.value,
            language=self.language,
            current_round=self.round_number,
            created_at=self._created_at,
            updated_at=_now(),
            messages=[asdict(m) for m in self.transcript],
            rounds=[asdict(r) for r in self.rounds],
            error=self._error,
        )
        try:
            self._session_store.save(record)
        except (OSError, ValueError) as exc:
            logger.warning("Could not persist session %s: %s", self.session_id, exc)

    async def _call(
        self,
        participant: Participant,
        prompt: str,
        stage: str,
        round_number: int,
        token: int,
    ) -> Completion:
        result = await complete(
            participant.provider, prompt, self._personalities.get(participant.id), round_number
        )
        self._ensure_current(token)
        record_interaction(
            self._interaction_logger, self.session_id or "", stage, participant.id, participant.name,
            round_number, prompt, result,
        )
        return result

    async def _call_all(self, calls: Iterable[Awaitable[Completion]]) -> list[Completion]:
        """Await calls concurrently, letting every one finish before a SequenceReset surfaces."""
        results = await asyncio.gather(*calls, return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return results

    # --- main loop -------------------------------------------------------------

    async def run(
        self,
        question: Question,
        session_id: str | None = None,
        on_round_complete: Callable[[RoundRecord], None] | None = None,
    ) -> DialogueResult:
        """Run INIT -> rounds -> VOTING -> FINALIZING -> DONE.

        Raises:
            ConfigError: If thresholds are invalid (before any agent is called).
            DialogueError: On total collaborator failure; the session ends in ERROR.
            SequenceReset: If start_new_sequence() was called while running.
        """
        self._config.validate()
        self.facilitator.facilitator_config.validate()

        self._reset()
        token = self._sequence
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self.question = question
        self._created_at = _now()
        start = time.monotonic()
        logger.info(
            "Session %s started with %d agents: %s",
            self.session_id, len(self.participants), question.text[:80],
        )

        try:
            if not self.participants:
                raise DialogueError("No agents available for the dialogue")
            self._persist()
            reason = await self._run_rounds(token, on_round_complete)
            finalizers, votes = await self.run_voting(token)
            outputs = await self.run_finalizing(finalizers, votes, token)
        except DialogueError as exc:
            if token == self._sequence:
                self._error = str(exc)
                self._set_state(RouterState.ERROR)
                self._persist()
            logger.error("Session %s failed: %s", self.session_id, exc)
            raise

        self._set_state(RouterState.DONE)
        self._persist()
        return DialogueResult(
            session_id=self.session_id,
            question=question,
            rounds=list(self.rounds),
            votes=votes,
            finalizers=finalizers,
            finalizer_outputs=outputs,
            conclusion=outputs[-1].content,
            convergence_reason=reason,
            total_duration_sec=time.monotonic() - start,
            language=self.language,
        )

    async def _run_rounds(
        self,
        token: int,
        on_round_complete: Callable[[RoundRecord], None] | None,
    ) -> str:
        action: FacilitatorAction | None = None
        instruction: DynamicInstruction | None = None
        fcfg = self.facilitator.facilitator_config

        while True:
            round_number = self.round_number
            self._set_state(RouterState.ROUND_ACTIVE)
            logger.info("Starting round %d with %d agents", round_number, len(self.participants))

            messages = await self.run_round(round_number, action, instruction, token)
            consensus = await self.gather_consensus(self.participants, self.transcript, round_number, token)
            self.consensus_history.append(consensus)

            overall = calculate_overall_consensus(consensus)
            should_continue = should_continue_dialogue(consensus, round_number, overall, self._config)

            pattern: str | None = None
            action = None
            instruction = None
            if should_continue:
                pattern = detect_dialogue_pattern(
                    self.transcript, consensus, round_number, self._config, fcfg
                )
                instruction = generate_dynamic_instruction(pattern, self.language)
                actions = await self.facilitator.suggest_actions(
                    self.question, round_number, consensus, self.transcript, self.participants,
                    session_id=self.session_id or "",
                )
                self._ensure_current(token)
                action = select_action(
                    actions, round_number, self._last_intervention_round, fcfg.intervention_cooldown
                )
                if action is not None:
                    self._last_intervention_round = round_number
                    action.dynamic_instruction = instruction

            record = RoundRecord(
                number=round_number,
                messages=messages,
                consensus=consensus,
                overall_consensus=overall,
                should_continue=should_continue,
                pattern=pattern,
                action=action,
                instruction=instruction,
            )
            self.rounds.append(record)
            logger.info(
                "Round %d complete: overall consensus %.1f, %s",
                round_number, overall, "continuing" if should_continue else "converged",
            )
            if pattern:
                logger.info("Round %d dialogue pattern: %s", round_number, pattern)

            self._persist()
            if on_round_complete:
                on_round_complete(record)

            if not should_continue:
                forced = round_number >= self._config.max_rounds
                reason = classify_convergence_reason(consensus, round_number, overall, forced, self._config)
                self.transcript.append(convergence_message(
                    reason, round_number, overall, ready_count(consensus), len(consensus), self.language
                ))
                logger.info("Session %s converged in round %d: %s", self.session_id, round_number, reason)
                return reason

            self.round_number += 1

    async def run_round(
        self,
        round_number: int,
        action: FacilitatorAction | None,
        instruction: DynamicInstruction | None,
        token: int,
    ) -> list[Message]:
        """Broadcast the transcript to every agent concurrently and append the replies in agent order."""
        snapshot = list(self.transcript)
        prompts = {
            p.id: build_dialogue_prompt(
                self._prompts, p, self.question, round_number, snapshot, self.language, action, instruction
            )
            for p in self.participants
        }
        results = await self._call_all(
            self._call(p, prompts[p.id], "dialogue", round_number, token) for p in self.participants
        )

        messages = [
            Message(
                agent_id=p.id,
                agent_name=p.name,
                round_number=round_number,
                role="agent",
                content=result.content.strip(),
                timestamp=_now(),
            )
            for p, result in zip(self.participants, results)
            if result.success
        ]
        if not messages:
            raise DialogueError(f"All agents failed in round {round_number}")
        if len(messages) < len(self.participants):
            logger.warning(
                "Round %d: only %d/%d agents responded", round_number, len(messages), len(self.participants)
            )
        self.transcript.extend(messages)
        return messages

    async def gather_consensus(
        self,
        participants: list[Participant],
        transcript: list[Message],
        round_number: int,
        token: int | None = None,
    ) -> list[ConsensusIndicator]:
        """Poll agents in order for their self-report, stopping early once a
        strict majority wants to continue.

        Skipped agents get estimated records. There is no early exit toward
        readiness: convergence always sees every agent's real answer.
        """
        token = self._sequence if token is None else token
        total = len(participants)
        results: list[ConsensusIndicator] = []
        valid: list[ConsensusIndicator] = []
        continuing = 0

        for index, participant in enumerate(participants):
            prompt = build_consensus_prompt(self._prompts, participant, self.question, round_number, transcript)
            result = await self._call(participant, prompt, "consensus", round_number, token)
            if result.success:
                indicator = parse_consensus_response(result.content, participant.id)
                valid.append(indicator)
            else:
                logger.warning("Consensus from %s failed: %s", participant.id, result.error)
                indicator = error_indicator(participant.id, result.error or "unknown error")
            results.append(indicator)

            if wants_to_continue(indicator):
                continuing += 1
            remaining = participants[index + 1:]
            if remaining and has_strict_majority(continuing, total):
                logger.info(
                    "Early exit in round %d: %d/%d want to continue, skipping %d agents",
                    round_number, continuing, total, len(remaining),
                )
                results.extend(estimated_indicator(p.id, valid) for p in remaining)
                break

        if not valid:
            raise DialogueError(f"No valid consensus responses in round {round_number}")
        return results

    # --- voting and finalization -------------------------------------------------

    async def run_voting(self, token: int) -> tuple[list[str], list[Vote]]:
        """Collect one vote per agent (self-votes rejected) and resolve the finalizer(s)."""
        self._set_state(RouterState.VOTING)
        round_number = self.round_number
        self.transcript.append(voting_start_message(round_number, self.language))
        self._persist()

        known = {p.id: p.name for p in self.participants}
        snapshot = list(self.transcript)
        results = await self._call_all(
            self._call(
                p,
                build_vote_prompt(self._prompts, p, self.participants, self.question, snapshot, self.language),
                "voting",
                round_number,
                token,
            )
            for p in self.participants
        )

        votes: list[Vote] = []
        failures = 0
        for participant, result in zip(self.participants, results):
            if not result.success:
                failures += 1
                votes.append(Vote(
                    voter_id=participant.id,
                    voted_agent=None,
                    reasoning=f"Error occurred during voting: {result.error}",
                    timestamp=_now(),
                ))
                continue
            details = extract_vote_details(result.content, participant.id, known)
            if details.voted_agent is None:
                logger.warning("No valid vote parsed from %s", participant.id)
            votes.append(Vote(
                voter_id=participant.id,
                voted_agent=details.voted_agent,
                reasoning=details.reasoning,
                timestamp=_now(),
                vote_section=details.vote_section,
            ))

        if failures == len(self.participants):
            raise DialogueError("All agents failed during voting")

        agent_ids = [p.id for p in self.participants]
        finalizers = await self.facilitator.analyze_finalize_votes(
            votes, agent_ids, self.question, session_id=self.session_id or ""
        )
        self._ensure_current(token)
        if not finalizers:
            raise DialogueError("No finalizer could be selected")

        self.transcript.append(voting_result_message(
            finalizers, tally_votes(votes, agent_ids), round_number, self.language
        ))
        logger.info("Finalizers selected: %s", ", ".join(finalizers))
        return finalizers, votes

    async def run_finalizing(self, finalizers: list[str], votes: list[Vote], token: int) -> list[FinalizerOutput]:
        """Single finalizer writes the conclusion; several run in sequence, each
        extending the previous output (foundation -> integrator -> enricher)."""
        self._set_state(RouterState.FINALIZING)
        self._persist()
        round_number = self.round_number
        by_id = {p.id: p for p in self.participants}
        chosen = [by_id[agent_id] for agent_id in finalizers if agent_id in by_id]
        outputs: list[FinalizerOutput] = []

        if len(chosen) == 1:
            prompt = build_finalize_prompt(self._prompts, self.question, self.transcript, votes, self.language)
            result = await self._call(chosen[0], prompt, "finalize", round_number, token)
            if result.success:
                outputs.append(FinalizerOutput(chosen[0].id, "single", result.content.strip()))
        else:
            previous = ""
            for index, participant in enumerate(chosen):
                role = finalizer_role(index, len(chosen))
                prompt = build_finalize_step_prompt(
                    self._prompts, self.question, self.transcript, role, index + 1, len(chosen),
                    previous, self.language,
                )
                result = await self._call(participant, prompt, "finalize", round_number, token)
                if not result.success:
                    logger.warning("Finalizer %s (%s) failed, keeping previous output", participant.id, role)
                    continue
                previous = result.content.strip()
                outputs.append(FinalizerOutput(participant.id, role, previous))

        if not outputs:
            raise DialogueError("All finalizers failed")

        for output in outputs:
            self.transcript.append(Message(
                agent_id=output.agent_id,
                agent_name=by_id[output.agent_id].name,
                round_number=round_number,
                role="finalizer",
                content=output.content,
                timestamp=_now(),
            ))
        return outputs
