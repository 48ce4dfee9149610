"""Tests for yui_council/router.py: state machine, early exit, voting, finalizing, resets."""

import asyncio
import logging
from collections.abc import Callable
from unittest.mock import AsyncMock

import pytest

from config.config_loader import ConfigError, ConsensusConfig
from yui_council.interaction_log import JsonInteractionLogger
from yui_council.models import ModelResponse
from yui_council.router import DialogueError, DynamicDialogueRouter, RouterState, SequenceReset
from yui_council.storage import InMemorySessionStore
from yui_council.providers.base import ProviderError
from tests.conftest import AGENT_IDS, consensus_text


def script(
    agent_providers,
    consensus: Callable[[str, int], str],
    vote: Callable[[str], str] | None = None,
    dialogue: Callable[[str, int], str] | None = None,
    finalize: Callable[[str, str], str] | None = None,
) -> None:
    """Script every agent's provider by stage (prompts start with a stage marker)."""
    for agent_id, provider in agent_providers.items():

        def handler(prompt: str, round_number: int, agent_id: str = agent_id) -> str:
            if prompt.startswith("DIALOGUE"):
                return dialogue(agent_id, round_number) if dialogue else f"{agent_id} thinks (round {round_number})"
            if prompt.startswith("CONSENSUS"):
                return consensus(agent_id, round_number)
            if prompt.startswith("VOTE"):
                return vote(agent_id) if vote else "No preference."
            if prompt.startswith(("FINALIZE", "STEP")):
                return finalize(agent_id, prompt) if finalize else f"{agent_id} conclusion"
            raise AssertionError(f"Unexpected prompt: {prompt[:40]}")

        provider.respond_with(handler)


def vote_for_kanshi(agent_id: str) -> str:
    if agent_id == "kanshi-001":
        return "投票: eiro-001\n理由: 構造が明確だった。"
    return "投票: kanshi-001\n理由: 前提を丁寧に検証していた。"


def ready_consensus(agent_id: str, round_number: int) -> str:
    return consensus_text(9, ready=True)


def continuing_consensus(agent_id: str, round_number: int) -> str:
    return consensus_text(4, ready=False, additional=True)


def fail(message: str):
    def _raise(*args):
        raise ProviderError("mock", message)
    return _raise


@pytest.fixture
def router(participants, sample_prompts_config, facilitator) -> DynamicDialogueRouter:
    return DynamicDialogueRouter(participants, sample_prompts_config, facilitator)


# --- consensus gathering ----------------------------------------------------------

async def test_early_exit_skips_remaining_agents(router, agent_providers, sample_question):
    script(agent_providers, consensus=continuing_consensus)
    router.question = sample_question

    results = await router.gather_consensus(router.participants, [], 0)

    assert [r.agent_id for r in results] == AGENT_IDS
    for agent_id in AGENT_IDS[:3]:
        assert len(agent_providers[agent_id].calls_for("CONSENSUS")) == 1
    for agent_id in AGENT_IDS[3:]:
        assert agent_providers[agent_id].calls_for("CONSENSUS") == []
    assert [r.estimated for r in results] == [False, False, False, True, True]
    assert all("estimated" in r.reasoning.lower() for r in results[3:])
    assert not any("estimated" in r.reasoning.lower() for r in results[:3])
    assert all(r.satisfaction_level == 4 and not r.ready_to_move for r in results[3:])


async def test_no_early_exit_when_agents_are_ready(router, agent_providers, sample_question):
    script(agent_providers, consensus=ready_consensus)
    router.question = sample_question

    results = await router.gather_consensus(router.participants, [], 0)

    assert all(len(agent_providers[a].calls_for("CONSENSUS")) == 1 for a in AGENT_IDS)
    assert not any(r.estimated for r in results)
    assert all(r.ready_to_move and r.satisfaction_level == 9 for r in results)


async def test_early_exit_waits_for_strict_majority(router, agent_providers, sample_question):
    answers = {
        "eiro-001": consensus_text(5, ready=False),
        "hekito-001": consensus_text(9, ready=True),
        "kanshi-001": consensus_text(5, ready=False),
        "yoga-001": consensus_text(5, ready=False),
        "yui-000": consensus_text(9, ready=True),
    }
    script(agent_providers, consensus=lambda agent_id, _: answers[agent_id])
    router.question = sample_question

    results = await router.gather_consensus(router.participants, [], 0)

    assert agent_providers["yoga-001"].calls_for("CONSENSUS")
    assert agent_providers["yui-000"].calls_for("CONSENSUS") == []
    assert [r.estimated for r in results] == [False, False, False, False, True]


async def test_consensus_failure_becomes_error_record(router, agent_providers, sample_question):
    script(agent_providers, consensus=ready_consensus)
    agent_providers["hekito-001"].respond_with(fail("503 Service Unavailable"))
    router.question = sample_question

    results = await router.gather_consensus(router.participants, [], 0)

    errored = results[1]
    assert errored.satisfaction_level == 5
    assert errored.ready_to_move is False
    assert errored.reasoning.startswith("Error occurred during consensus gathering:")


async def test_all_consensus_failures_raise(router, agent_providers, sample_question):
    for provider in agent_providers.values():
        provider.respond_with(fail("boom"))
    router.question = sample_question

    with pytest.raises(DialogueError):
        await router.gather_consensus(router.participants, [], 0)


# --- full runs ---------------------------------------------------------------

async def test_full_run_converges_and_finalizes(
    participants, sample_prompts_config, facilitator, agent_providers, sample_question
):
    script(agent_providers, consensus=ready_consensus, vote=vote_for_kanshi)
    store = InMemorySessionStore()
    router = DynamicDialogueRouter(participants, sample_prompts_config, facilitator, session_store=store)
    completed = []

    result = await router.run(sample_question, session_id="s-1", on_round_complete=completed.append)

    # Rounds 0-2 always continue; round 3 converges on unanimous 9/10.
    assert [r.number for r in result.rounds] == [0, 1, 2, 3]
    assert [r.number for r in completed] == [0, 1, 2, 3]
    assert result.convergence_reason == "natural_consensus"
    assert result.finalizers == ["kanshi-001"]
    assert result.finalizer_outputs[0].role == "single"
    assert result.conclusion == "kanshi-001 conclusion"
    assert router.state is RouterState.DONE
    assert [m.role for m in router.transcript[-4:]] == ["system", "system", "system", "finalizer"]
    assert all(len(r.messages) == 5 for r in result.rounds)
    assert all(m.round_number == r.number for r in result.rounds for m in r.messages)

    saved = store.load("s-1")
    assert saved.status == "done"
    assert len(saved.messages) == len(router.transcript)
    assert len(saved.rounds) == 4


async def test_easy_consensus_instruction_reaches_next_round(
    router, agent_providers, sample_question
):
    script(agent_providers, consensus=ready_consensus, vote=vote_for_kanshi)

    result = await router.run(sample_question)

    assert result.rounds[0].pattern == "easy_consensus"
    assert result.rounds[0].instruction.tone == "deconstructive"
    round_one_prompt = [p for p in agent_providers["eiro-001"].calls_for("DIALOGUE") if " round 1\n" in p]
    assert "Do not close the discussion too early" in round_one_prompt[0]


async def test_forced_stop_at_max_rounds(
    participants, sample_prompts_config, facilitator, agent_providers, sample_question
):
    script(agent_providers, consensus=continuing_consensus, vote=vote_for_kanshi)
    router = DynamicDialogueRouter(
        participants, sample_prompts_config, facilitator, consensus_config=ConsensusConfig(max_rounds=1)
    )

    result = await router.run(sample_question)

    assert len(result.rounds) == 2
    assert result.convergence_reason == "max_rounds"
    assert result.rounds[-1].should_continue is False


async def test_collaborative_finalizers_run_in_order(router, agent_providers, sample_question):
    def tied_votes(agent_id: str) -> str:
        return {"eiro-001": "Vote: kanshi-001", "kanshi-001": "Vote: eiro-001"}.get(agent_id, "Undecided.")

    script(agent_providers, consensus=ready_consensus, vote=tied_votes)

    result = await router.run(sample_question)

    assert result.finalizers == ["eiro-001", "kanshi-001"]
    assert [o.role for o in result.finalizer_outputs] == ["foundation", "integrator"]
    second_step = agent_providers["kanshi-001"].calls_for("STEP 2/2 integrator")
    assert second_step and "eiro-001 conclusion" in second_step[0]
    assert result.conclusion == "kanshi-001 conclusion"


async def test_failed_finalizer_step_is_skipped(router, agent_providers, sample_question):
    def tied_votes(agent_id: str) -> str:
        return {"eiro-001": "Vote: kanshi-001", "kanshi-001": "Vote: eiro-001"}.get(agent_id, "Undecided.")

    def finalize(agent_id: str, prompt: str) -> str:
        if agent_id == "eiro-001":
            raise ProviderError("mock", "overloaded")
        return f"{agent_id} conclusion"

    script(agent_providers, consensus=ready_consensus, vote=tied_votes, finalize=finalize)

    result = await router.run(sample_question)

    assert [o.agent_id for o in result.finalizer_outputs] == ["kanshi-001"]
    assert "(you are the first finalizer)" in agent_providers["kanshi-001"].calls_for("STEP")[0]


async def test_partial_dialogue_failure_continues(router, agent_providers, sample_question):
    def dialogue(agent_id: str, round_number: int) -> str:
        if agent_id == "yoga-001":
            raise ProviderError("mock", "bad gateway")
        return f"{agent_id} speaks"

    script(agent_providers, consensus=ready_consensus, vote=vote_for_kanshi, dialogue=dialogue)

    result = await router.run(sample_question)

    assert all(len(r.messages) == 4 for r in result.rounds)
    assert all(m.agent_id != "yoga-001" for r in result.rounds for m in r.messages)


# --- failures ----------------------------------------------------------------

async def test_total_dialogue_failure_sets_error_state(
    participants, sample_prompts_config, facilitator, agent_providers, sample_question
):
    for provider in agent_providers.values():
        provider.respond_with(fail("connection refused"))
    store = InMemorySessionStore()
    router = DynamicDialogueRouter(participants, sample_prompts_config, facilitator, session_store=store)

    with pytest.raises(DialogueError, match="All agents failed in round 0"):
        await router.run(sample_question, session_id="s-err")

    assert router.state is RouterState.ERROR
    saved = store.load("s-err")
    assert saved.status == "error"
    assert "All agents failed" in saved.error


async def test_total_voting_failure_raises(router, agent_providers, sample_question):
    def vote(agent_id: str) -> str:
        raise ProviderError("mock", "quota exceeded")

    script(agent_providers, consensus=ready_consensus, vote=vote)

    with pytest.raises(DialogueError, match="voting"):
        await router.run(sample_question)
    assert router.state is RouterState.ERROR


async def test_no_participants_is_an_error(sample_prompts_config, facilitator, sample_question):
    router = DynamicDialogueRouter([], sample_prompts_config, facilitator)
    with pytest.raises(DialogueError):
        await router.run(sample_question)
    assert router.state is RouterState.ERROR


async def test_invalid_thresholds_fail_before_any_call(
    participants, sample_prompts_config, facilitator, agent_providers, sample_question
):
    router = DynamicDialogueRouter(
        participants, sample_prompts_config, facilitator,
        consensus_config=ConsensusConfig(convergence_threshold=11),
    )
    with pytest.raises(ConfigError):
        await router.run(sample_question)
    assert all(p.generate.await_count == 0 for p in agent_providers.values())


async def test_persistence_failure_does_not_abort(
    participants, sample_prompts_config, facilitator, agent_providers, sample_question, caplog
):
    class BrokenStore(InMemorySessionStore):
        def save(self, record):
            raise OSError("disk full")

    script(agent_providers, consensus=ready_consensus, vote=vote_for_kanshi)
    router = DynamicDialogueRouter(participants, sample_prompts_config, facilitator, session_store=BrokenStore())

    with caplog.at_level(logging.WARNING):
        result = await router.run(sample_question)

    assert result.conclusion
    assert "Could not persist session" in caplog.text


async def test_interactions_are_logged_per_stage(
    participants, sample_prompts_config, facilitator, agent_providers, sample_question, tmp_path
):
    script(agent_providers, consensus=ready_consensus, vote=vote_for_kanshi)
    interaction_logger = JsonInteractionLogger(tmp_path / "logs")
    router = DynamicDialogueRouter(
        participants, sample_prompts_config, facilitator, interaction_logger=interaction_logger
    )

    result = await router.run(sample_question, session_id="s-log")

    dialogue = interaction_logger.load("s-log", "dialogue")
    assert len(dialogue) == 5 * len(result.rounds)
    assert {e["status"] for e in dialogue} == {"success"}
    assert len(interaction_logger.load("s-log", "voting")) == 5
    assert interaction_logger.load("s-log", "finalize")[0]["agent_id"] == "kanshi-001"


# --- sequence reset ----------------------------------------------------------------

async def test_start_new_sequence_discards_in_flight_results(
    router, agent_providers, sample_question
):
    def consensus(agent_id: str, round_number: int) -> str:
        router.start_new_sequence()
        return consensus_text(9, ready=True)

    script(agent_providers, consensus=consensus)

    with pytest.raises(SequenceReset):
        await router.run(sample_question)

    assert router.state is RouterState.INIT
    assert router.transcript == []
    assert router.rounds == []
    assert router.round_number == 0


async def test_reset_mid_round_waits_for_sibling_calls(router, agent_providers, sample_question):
    finished: list[str] = []

    for agent_id, provider in agent_providers.items():

        async def generate(prompt, round_number, system_prompt=None, timeout_sec=None, agent_id=agent_id):
            if agent_id == AGENT_IDS[0]:
                router.start_new_sequence()
            else:
                await asyncio.sleep(0.01)
            finished.append(agent_id)
            return ModelResponse(agent_id, "mock-model", round_number, "thoughts", 0.01, 1)

        provider.generate = AsyncMock(side_effect=generate)

    with pytest.raises(SequenceReset):
        await router.run(sample_question)

    assert sorted(finished) == sorted(AGENT_IDS)
    assert router.transcript == []


async def test_router_can_run_again_after_reset(router, agent_providers, sample_question):
    script(agent_providers, consensus=ready_consensus, vote=vote_for_kanshi)
    first = await router.run(sample_question)
    router.start_new_sequence()
    second = await router.run(sample_question)

    assert first.session_id != second.session_id
    assert len(second.rounds) == len(first.rounds)
    assert router.state is RouterState.DONE
