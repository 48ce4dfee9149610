"""Shared pytest fixtures."""

from collections.abc import Callable
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from config.config_loader import (
    DEFAULT_ACTION_PRIORITY,
    AgentConfig,
    AppConfig,
    ConsensusConfig,
    DefaultsConfig,
    FacilitatorConfig,
    ModelConfig,
    PromptsConfig,
)
from yui_council.agents import Participant
from yui_council.facilitator import Facilitator
from yui_council.models import ConsensusIndicator, Message, ModelResponse, Question
from yui_council.providers.base import AIProvider

AGENT_ROWS = [
    ("eiro-001", "慧露", "えいろ", "logical", "openai"),
    ("hekito-001", "碧統", "へきとう", "analytical", "gemini"),
    ("kanshi-001", "観至", "かんし", "critical", "claude"),
    ("yoga-001", "陽雅", "ようが", "intuitive", "grok"),
    ("yui-000", "結心", "ゆい", "emotive", "claude"),
]
AGENT_IDS = [row[0] for row in AGENT_ROWS]


def consensus_text(
    satisfaction: int | str = 7,
    ready: bool = False,
    additional: bool = False,
    reasoning: str = "Still thinking.",
    questions: str = "none",
) -> str:
    """A well-formed consensus self-report in the labeled format the prompts ask for."""
    yes_no = lambda flag: "yes" if flag else "no"  # noqa: E731
    return (
        f"Satisfaction: {satisfaction}\n"
        f"Meaningful insights: yes\n"
        f"Ready to conclude: {yes_no(ready)}\n"
        f"Critical points remaining: {yes_no(additional)}\n"
        f"Additional points: {yes_no(additional)}\n"
        f"Questions: {questions}\n"
        f"Reasoning: {reasoning}"
    )


def indicator(
    agent_id: str,
    satisfaction: int = 7,
    ready: bool = False,
    additional: bool = False,
    **kwargs,
) -> ConsensusIndicator:
    return ConsensusIndicator(
        agent_id=agent_id,
        satisfaction_level=satisfaction,
        has_additional_points=additional,
        ready_to_move=ready,
        **kwargs,
    )


def message(agent_id: str, content: str, round_number: int = 0, role: str = "agent") -> Message:
    return Message(
        agent_id=agent_id,
        agent_name=agent_id,
        round_number=round_number,
        role=role,
        content=content,
        timestamp="2026-01-01T00:00:00+00:00",
    )


class MockProvider(AIProvider):
    """Test double AIProvider."""

    def __init__(self, provider_name: str = "mock", response_content: str = "Mock response") -> None:
        self._name = provider_name
        self._response_content = response_content
        self._config = ModelConfig(
            name=provider_name,
            sdk="mock",
            model="mock-model",
            api_key_env="MOCK_API_KEY",
            timeout_sec=30,
            max_tokens=1024,
        )
        # Shadow the class method with an AsyncMock at the instance level.
        # ABC check passes because generate is defined in the class body below.
        self.generate = AsyncMock(  # type: ignore[assignment]
            return_value=ModelResponse(
                provider=provider_name,
                model="mock-model",
                round_number=0,
                content=response_content,
                latency_sec=0.1,
                token_count=10,
            )
        )

    def name(self) -> str:
        return self._name

    def model_string(self) -> str:
        return "mock-model"

    async def generate(  # type: ignore[override]
        self,
        prompt: str,
        round_number: int,
        system_prompt: str | None = None,
        timeout_sec: float | None = None,
    ) -> ModelResponse:
        """Default implementation; replaced by AsyncMock in __init__."""
        return ModelResponse(
            provider=self._name,
            model="mock-model",
            round_number=round_number,
            content=self._response_content,
            latency_sec=0.1,
            token_count=10,
        )

    def respond_with(self, handler: Callable[[str, int], str]) -> None:
        """Route every call through handler(prompt, round_number) -> content.

        A handler may raise (e.g. ProviderError) to simulate a failed call.
        """

        async def _side_effect(
            prompt: str, round_number: int, system_prompt: str | None = None, timeout_sec: float | None = None
        ):
            return ModelResponse(
                provider=self._name,
                model="mock-model",
                round_number=round_number,
                content=handler(prompt, round_number),
                latency_sec=0.1,
                token_count=10,
            )

        self.generate = AsyncMock(side_effect=_side_effect)  # type: ignore[assignment]

    def calls_for(self, stage_marker: str) -> list[str]:
        """Prompts of calls whose prompt starts with the given stage marker."""
        return [
            call.args[0] for call in self.generate.call_args_list
            if call.args and call.args[0].startswith(stage_marker)
        ]


@pytest.fixture
def sample_model_config() -> ModelConfig:
    return ModelConfig(
        name="test_model",
        sdk="test",
        model="test-model-1",
        api_key_env="TEST_API_KEY",
        timeout_sec=30,
        max_tokens=1024,
        base_url=None,
    )


@pytest.fixture
def sample_prompts_config() -> PromptsConfig:
    # Each template starts with a stage marker so scripted providers can tell calls apart.
    return PromptsConfig(
        dialogue=(
            "DIALOGUE {agent_name} round {round}\n{round_guidance}\nQ: {question}\n"
            "{facilitator_guidance}{transcript}\n{language_instruction}"
        ),
        consensus="CONSENSUS {agent_name} round {round}\nQ: {question}\n{transcript}",
        vote=(
            "VOTE {agent_name}\nQ: {question}\nCandidates:\n{candidates}\n{transcript}\n"
            "{language_instruction}"
        ),
        finalize="FINALIZE\nQ: {question}\nVotes:\n{vote_summary}\n{transcript}\n{language_instruction}",
        finalize_step=(
            "STEP {step}/{total_steps} {role}\n{role_instruction}\nQ: {question}\n"
            "Previous:\n{previous_output}\n{transcript}\n{language_instruction}"
        ),
        facilitator=(
            "FACILITATE round {round}\nQ: {question}\n{consensus_summary}\n{transcript}\n"
            "Agents: {agent_ids}\nYour JSON array:"
        ),
        tie_break="TIEBREAK\nQ: {question}\nTied:\n{candidates}\n{vote_summary}",
    )


@pytest.fixture
def consensus_config() -> ConsensusConfig:
    return ConsensusConfig()


@pytest.fixture
def facilitator_config() -> FacilitatorConfig:
    return FacilitatorConfig(action_priority=dict(DEFAULT_ACTION_PRIORITY))


@pytest.fixture
def agent_configs() -> list[AgentConfig]:
    return [
        AgentConfig(id=agent_id, name=name, furigana=furigana, style=style, provider=provider)
        for agent_id, name, furigana, style, provider in AGENT_ROWS
    ]


@pytest.fixture
def agent_providers() -> dict[str, MockProvider]:
    """One provider per agent, keyed by agent id, so each agent can be scripted independently."""
    return {agent_id: MockProvider(agent_id) for agent_id in AGENT_IDS}


@pytest.fixture
def participants(agent_configs, agent_providers) -> list[Participant]:
    return [Participant(profile=cfg, provider=agent_providers[cfg.id]) for cfg in agent_configs]


@pytest.fixture
def facilitator(sample_prompts_config, consensus_config, facilitator_config) -> Facilitator:
    """Rule-based facilitator (no provider)."""
    return Facilitator(sample_prompts_config, consensus_config, facilitator_config)


@pytest.fixture
def sample_defaults_config(tmp_path: Path) -> DefaultsConfig:
    return DefaultsConfig(
        output_dir=tmp_path / "output",
        session_dir=tmp_path / "sessions",
        log_dir=tmp_path / "logs",
        language="en",
        facilitator="claude",
    )


@pytest.fixture
def sample_app_config(
    sample_defaults_config: DefaultsConfig,
    sample_prompts_config: PromptsConfig,
    agent_configs: list[AgentConfig],
) -> AppConfig:
    model_cfg = ModelConfig(
        name="claude",
        sdk="anthropic",
        model="claude-sonnet-4-20250514",
        api_key_env="ANTHROPIC_API_KEY",
        timeout_sec=60,
        max_tokens=4096,
    )
    return AppConfig(
        defaults=sample_defaults_config,
        models={"claude": model_cfg},
        prompts=sample_prompts_config,
        agents=agent_configs,
        available_providers={"claude"},
    )


@pytest.fixture
def sample_question() -> Question:
    return Question(text="What makes a conversation meaningful?", source="cli")


@pytest.fixture
def mock_provider() -> MockProvider:
    return MockProvider()
