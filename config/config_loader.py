"""Load settings.yaml into typed dataclasses. Validates thresholds and API keys at startup."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"

ACTION_TYPES = ("deep_dive", "clarification", "perspective_shift", "summarize", "conclude")
AGENT_STYLES = ("logical", "analytical", "critical", "intuitive", "emotive")
LANGUAGES = ("en", "ja")

DEFAULT_ACTION_PRIORITY: dict[str, int] = {
    "deep_dive": 8,
    "clarification": 7,
    "perspective_shift": 6,
    "summarize": 5,
    "conclude": 9,
}


class ConfigError(ValueError):
    """Raised when settings are present but invalid."""


@dataclass
class ModelConfig:
    name: str
    sdk: str
    model: str
    api_key_env: str
    timeout_sec: int
    max_tokens: int
    base_url: str | None = None


@dataclass
class AgentConfig:
    id: str
    name: str
    furigana: str
    style: str
    provider: str
    personality: str = ""


@dataclass
class ConsensusConfig:
    """Round-banded convergence thresholds. Rounds are 0-based."""

    convergence_threshold: float = 7.0
    max_rounds: int = 20
    min_satisfaction_level: int = 6
    early_round_limit: int = 2
    mid_round_limit: int = 4
    mid_round_bar: float = 8.5
    late_round_start_bar: float = 8.0
    late_round_bar_step: float = 0.5
    natural_consensus_bar: float = 8.0
    high_satisfaction_bar: float = 7.0

    def validate(self) -> None:
        """Raise ConfigError if any threshold is out of range or out of order."""
        for label, value in (
            ("convergence_threshold", self.convergence_threshold),
            ("mid_round_bar", self.mid_round_bar),
            ("late_round_start_bar", self.late_round_start_bar),
            ("natural_consensus_bar", self.natural_consensus_bar),
            ("high_satisfaction_bar", self.high_satisfaction_bar),
        ):
            if not 0 <= value <= 10:
                raise ConfigError(f"{label} must be within 0-10, got {value}")
        if not 0 <= self.min_satisfaction_level <= 10:
            raise ConfigError(
                f"min_satisfaction_level must be within 0-10, got {self.min_satisfaction_level}"
            )
        if self.max_rounds < 1:
            raise ConfigError(f"max_rounds must be at least 1, got {self.max_rounds}")
        if self.late_round_bar_step < 0:
            raise ConfigError("late_round_bar_step must not be negative")
        if not 0 <= self.early_round_limit <= self.mid_round_limit:
            raise ConfigError(
                f"early_round_limit ({self.early_round_limit}) must not exceed "
                f"mid_round_limit ({self.mid_round_limit})"
            )


@dataclass
class FacilitatorConfig:
    action_priority: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_ACTION_PRIORITY))
    intervention_cooldown: int = 2
    easy_consensus_bar: float = 8.0
    dialogue_gap_bar: float = 5.0
    stagnation_window: int = 3
    stagnation_overlap: float = 0.6

    def validate(self) -> None:
        unknown = set(self.action_priority) - set(ACTION_TYPES)
        if unknown:
            raise ConfigError(f"Unknown facilitator action types: {', '.join(sorted(unknown))}")
        if self.intervention_cooldown < 0:
            raise ConfigError("intervention_cooldown must not be negative")
        if self.stagnation_window < 1:
            raise ConfigError("stagnation_window must be at least 1")
        if not 0 < self.stagnation_overlap <= 1:
            raise ConfigError("stagnation_overlap must be within (0, 1]")


@dataclass
class PromptsConfig:
    dialogue: str
    consensus: str
    vote: str
    finalize: str
    finalize_step: str
    facilitator: str = ""
    tie_break: str = ""


@dataclass
class DefaultsConfig:
    output_dir: Path
    session_dir: Path = Path("./sessions")
    log_dir: Path = Path("./logs")
    language: str = "en"
    facilitator: str | None = None


@dataclass
class AppConfig:
    defaults: DefaultsConfig
    models: dict[str, ModelConfig]
    prompts: PromptsConfig
    agents: list[AgentConfig] = field(default_factory=list)
    consensus: ConsensusConfig = field(default_factory=ConsensusConfig)
    facilitator: FacilitatorConfig = field(default_factory=FacilitatorConfig)
    available_providers: set[str] = field(default_factory=set)


def _load_agents(agents_raw: list[dict]) -> list[AgentConfig]:
    agents: list[AgentConfig] = []
    seen: set[str] = set()
    for entry in agents_raw:
        agent = AgentConfig(
            id=str(entry["id"]),
            name=str(entry["name"]),
            furigana=str(entry.get("furigana", "")),
            style=str(entry["style"]),
            provider=str(entry["provider"]),
            personality=str(entry.get("personality", "")).strip(),
        )
        if agent.style not in AGENT_STYLES:
            raise ConfigError(f"Agent {agent.id}: unknown style '{agent.style}'")
        if agent.id in seen:
            raise ConfigError(f"Duplicate agent id: {agent.id}")
        seen.add(agent.id)
        agents.append(agent)
    return agents


def _load_consensus(raw: dict) -> ConsensusConfig:
    defaults = ConsensusConfig()
    cfg = ConsensusConfig(
        convergence_threshold=float(raw.get("convergence_threshold", defaults.convergence_threshold)),
        max_rounds=int(raw.get("max_rounds", defaults.max_rounds)),
        min_satisfaction_level=int(raw.get("min_satisfaction_level", defaults.min_satisfaction_level)),
        early_round_limit=int(raw.get("early_round_limit", defaults.early_round_limit)),
        mid_round_limit=int(raw.get("mid_round_limit", defaults.mid_round_limit)),
        mid_round_bar=float(raw.get("mid_round_bar", defaults.mid_round_bar)),
        late_round_start_bar=float(raw.get("late_round_start_bar", defaults.late_round_start_bar)),
        late_round_bar_step=float(raw.get("late_round_bar_step", defaults.late_round_bar_step)),
        natural_consensus_bar=float(raw.get("natural_consensus_bar", defaults.natural_consensus_bar)),
        high_satisfaction_bar=float(raw.get("high_satisfaction_bar", defaults.high_satisfaction_bar)),
    )
    cfg.validate()
    return cfg


def _load_facilitator(raw: dict) -> FacilitatorConfig:
    defaults = FacilitatorConfig()
    priority = dict(DEFAULT_ACTION_PRIORITY)
    priority.update({str(k): int(v) for k, v in raw.get("action_priority", {}).items()})
    cfg = FacilitatorConfig(
        action_priority=priority,
        intervention_cooldown=int(raw.get("intervention_cooldown", defaults.intervention_cooldown)),
        easy_consensus_bar=float(raw.get("easy_consensus_bar", defaults.easy_consensus_bar)),
        dialogue_gap_bar=float(raw.get("dialogue_gap_bar", defaults.dialogue_gap_bar)),
        stagnation_window=int(raw.get("stagnation_window", defaults.stagnation_window)),
        stagnation_overlap=float(raw.get("stagnation_overlap", defaults.stagnation_overlap)),
    )
    cfg.validate()
    return cfg


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing, ConfigError if thresholds,
    agents or language are invalid.
    Logs missing API keys but does not raise; callers check available_providers.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    defaults_raw = raw["defaults"]
    defaults = DefaultsConfig(
        output_dir=Path(defaults_raw["output_dir"]),
        session_dir=Path(defaults_raw.get("session_dir", "./sessions")),
        log_dir=Path(defaults_raw.get("log_dir", "./logs")),
        language=str(defaults_raw.get("language", "en")),
        facilitator=defaults_raw.get("facilitator"),
    )
    if defaults.language not in LANGUAGES:
        raise ConfigError(f"Unsupported language: {defaults.language}")

    prompts_raw = raw["prompts"]
    prompts = PromptsConfig(
        dialogue=prompts_raw["dialogue"],
        consensus=prompts_raw["consensus"],
        vote=prompts_raw["vote"],
        finalize=prompts_raw["finalize"],
        finalize_step=prompts_raw["finalize_step"],
        facilitator=prompts_raw.get("facilitator", ""),
        tie_break=prompts_raw.get("tie_break", ""),
    )

    models: dict[str, ModelConfig] = {}
    available_providers: set[str] = set()

    for provider_name, model_raw in raw["models"].items():
        model_cfg = ModelConfig(
            name=provider_name,
            sdk=model_raw["sdk"],
            model=model_raw["model"],
            api_key_env=model_raw["api_key_env"],
            timeout_sec=int(model_raw["timeout_sec"]),
            max_tokens=int(model_raw["max_tokens"]),
            base_url=model_raw.get("base_url"),
        )
        models[provider_name] = model_cfg

        api_key = os.environ.get(model_raw["api_key_env"], "").strip()
        if api_key:
            available_providers.add(provider_name)
            logger.info("Provider available: %s", provider_name)
        else:
            logger.info(
                "Provider skipped (no API key): %s (set %s in .env)",
                provider_name,
                model_raw["api_key_env"],
            )

    agents = _load_agents(raw.get("agents", []))
    for agent in agents:
        if agent.provider not in models:
            raise ConfigError(f"Agent {agent.id} uses unknown provider '{agent.provider}'")

    return AppConfig(
        defaults=defaults,
        models=models,
        prompts=prompts,
        agents=agents,
        consensus=_load_consensus(raw.get("consensus", {})),
        facilitator=_load_facilitator(raw.get("facilitator", {})),
        available_providers=available_providers,
    )
