"""Tests for config/config_loader.py."""

from pathlib import Path

import pytest
import yaml

from config.config_loader import (
    AppConfig,
    ConfigError,
    ConsensusConfig,
    FacilitatorConfig,
    ModelConfig,
    PromptsConfig,
    load_config,
)


def _settings(**overrides) -> dict:
    settings = {
        "defaults": {
            "output_dir": "./output",
            "session_dir": "./sessions",
            "log_dir": "./logs",
            "language": "ja",
            "facilitator": "claude",
        },
        "consensus": {"convergence_threshold": 7.5, "max_rounds": 8},
        "facilitator": {"intervention_cooldown": 3, "action_priority": {"deep_dive": 10}},
        "models": {
            "claude": {
                "sdk": "anthropic",
                "model": "claude-opus-4-6",
                "api_key_env": "TEST_CLAUDE_KEY",
                "timeout_sec": 120,
                "max_tokens": 8192,
            }
        },
        "agents": [
            {"id": "kanshi-001", "name": "観至", "furigana": "かんし", "style": "critical",
             "provider": "claude", "personality": "  Careful and precise.  "},
            {"id": "yui-000", "name": "結心", "style": "emotive", "provider": "claude"},
        ],
        "prompts": {
            "dialogue": "{agent_name}: {question}",
            "consensus": "{agent_name}: {question}",
            "vote": "{agent_name}: {candidates}",
            "finalize": "{question}\n{transcript}",
            "finalize_step": "{role}: {question}",
        },
    }
    for key, value in overrides.items():
        settings[key] = value
    return settings


def _write(tmp_path: Path, settings: dict) -> Path:
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.dump(settings, allow_unicode=True), encoding="utf-8")
    return path


@pytest.fixture
def minimal_settings(tmp_path: Path) -> Path:
    """Write a minimal valid settings.yaml to a temp path."""
    return _write(tmp_path, _settings())


def test_load_config_returns_app_config(minimal_settings):
    assert isinstance(load_config(minimal_settings), AppConfig)


def test_load_config_defaults(minimal_settings):
    config = load_config(minimal_settings)
    assert config.defaults.language == "ja"
    assert config.defaults.facilitator == "claude"
    assert isinstance(config.defaults.output_dir, Path)
    assert config.defaults.session_dir == Path("./sessions")


def test_load_config_models(minimal_settings):
    config = load_config(minimal_settings)
    assert isinstance(config.models["claude"], ModelConfig)
    assert config.models["claude"].model == "claude-opus-4-6"
    assert config.models["claude"].base_url is None


def test_load_config_prompts(minimal_settings):
    config = load_config(minimal_settings)
    assert isinstance(config.prompts, PromptsConfig)
    assert config.prompts.facilitator == ""
    assert config.prompts.tie_break == ""


def test_load_config_agents(minimal_settings):
    config = load_config(minimal_settings)
    assert [a.id for a in config.agents] == ["kanshi-001", "yui-000"]
    assert config.agents[0].personality == "Careful and precise."
    assert config.agents[1].furigana == ""


def test_load_config_consensus_and_facilitator(minimal_settings):
    config = load_config(minimal_settings)
    assert config.consensus.convergence_threshold == 7.5
    assert config.consensus.max_rounds == 8
    assert config.consensus.mid_round_bar == 8.5
    assert config.facilitator.intervention_cooldown == 3
    assert config.facilitator.action_priority["deep_dive"] == 10
    assert config.facilitator.action_priority["summarize"] == 5


def test_load_config_available_providers_with_key(minimal_settings, monkeypatch):
    monkeypatch.setenv("TEST_CLAUDE_KEY", "sk-test-key")
    assert "claude" in load_config(minimal_settings).available_providers


def test_load_config_no_available_providers_without_key(minimal_settings, monkeypatch):
    monkeypatch.delenv("TEST_CLAUDE_KEY", raising=False)
    assert "claude" not in load_config(minimal_settings).available_providers


def test_load_config_missing_file():
    with pytest.raises(FileNotFoundError):
        load_config(Path("/nonexistent/settings.yaml"))


@pytest.mark.parametrize("overrides", [
    {"consensus": {"convergence_threshold": 12}},
    {"consensus": {"max_rounds": 0}},
    {"consensus": {"min_satisfaction_level": -1}},
    {"consensus": {"early_round_limit": 5, "mid_round_limit": 4}},
    {"facilitator": {"action_priority": {"dance": 3}}},
    {"facilitator": {"stagnation_overlap": 0}},
])
def test_load_config_invalid_thresholds(tmp_path: Path, overrides):
    with pytest.raises(ConfigError):
        load_config(_write(tmp_path, _settings(**overrides)))


def test_load_config_rejects_unknown_language(tmp_path: Path):
    settings = _settings()
    settings["defaults"]["language"] = "fr"
    with pytest.raises(ConfigError, match="language"):
        load_config(_write(tmp_path, settings))


def test_load_config_rejects_bad_agents(tmp_path: Path):
    duplicate = _settings()
    duplicate["agents"].append(dict(duplicate["agents"][0]))
    with pytest.raises(ConfigError, match="Duplicate"):
        load_config(_write(tmp_path, duplicate))

    bad_style = _settings()
    bad_style["agents"][0]["style"] = "chaotic"
    with pytest.raises(ConfigError, match="style"):
        load_config(_write(tmp_path, bad_style))

    bad_provider = _settings()
    bad_provider["agents"][0]["provider"] = "mystery"
    with pytest.raises(ConfigError, match="provider"):
        load_config(_write(tmp_path, bad_provider))


def test_shipped_settings_load():
    config = load_config()
    assert len(config.agents) == 5
    assert {a.style for a in config.agents} == {"logical", "analytical", "critical", "intuitive", "emotive"}
    assert config.models["grok"].base_url == "https://api.x.ai/v1"
    assert "Your JSON array:" in config.prompts.facilitator


def test_default_configs_are_valid():
    ConsensusConfig().validate()
    FacilitatorConfig().validate()
