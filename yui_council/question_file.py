"""Question files: markdown with optional YAML frontmatter."""

from dataclasses import dataclass, field
from pathlib import Path

import frontmatter

from config.config_loader import LANGUAGES, ConfigError


@dataclass
class QuestionFile:
    text: str
    language: str | None = None
    max_rounds: int | None = None
    agents: list[str] = field(default_factory=list)


def _agent_list(value: object) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return [str(part).strip() for part in value if str(part).strip()]


def parse_question_file(file_path: Path) -> QuestionFile:
    """Parse a question file.

    Recognised frontmatter keys: language (en|ja), max_rounds (int) and agents
    (list or comma-separated ids). Unknown keys are ignored. Without frontmatter
    the whole file is the question.

    Raises:
        ConfigError: If a recognised key has an invalid value or the body is empty.
    """
    post = frontmatter.load(str(file_path))
    text = post.content.strip()
    if not text:
        raise ConfigError(f"Question file is empty: {file_path}")
    meta = dict(post.metadata)

    language = meta.get("language")
    if language is not None and language not in LANGUAGES:
        raise ConfigError(f"{file_path.name}: unsupported language '{language}'")

    max_rounds = meta.get("max_rounds")
    if max_rounds is not None:
        try:
            max_rounds = int(max_rounds)
        except (TypeError, ValueError):
            raise ConfigError(f"{file_path.name}: max_rounds must be an integer") from None

    return QuestionFile(
        text=text,
        language=language,
        max_rounds=max_rounds,
        agents=_agent_list(meta.get("agents")),
    )
