"""Interaction logger: one JSON array per session, stage and agent for later audit."""

import json
import logging
import re
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from yui_council.completion import Completion

logger = logging.getLogger(__name__)

STAGES = ("dialogue", "consensus", "facilitator", "voting", "tie_break", "finalize")


@dataclass
class InteractionEntry:
    id: str
    session_id: str
    stage: str
    agent_id: str
    agent_name: str
    round_number: int
    timestamp: str
    prompt: str
    output: str
    duration_sec: float
    status: str            # "success", "error", "timeout"
    error: str | None = None


class InteractionLogger(Protocol):
    def log(self, entry: InteractionEntry) -> None: ...


def _safe_part(value: str) -> str:
    return re.sub(r"[^\w.-]", "_", value) or "_"


class JsonInteractionLogger:
    """Appends entries to <log_dir>/<session_id>/<stage>/<agent_id>.json."""

    def __init__(self, log_dir: Path) -> None:
        self._log_dir = log_dir

    def path_for(self, session_id: str, stage: str, agent_id: str) -> Path:
        return self._log_dir / _safe_part(session_id) / _safe_part(stage) / f"{_safe_part(agent_id)}.json"

    def log(self, entry: InteractionEntry) -> None:
        path = self.path_for(entry.session_id, entry.stage, entry.agent_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        entries: list[dict] = []
        if path.exists():
            entries = json.loads(path.read_text(encoding="utf-8"))
        entries.append(asdict(entry))
        path.write_text(json.dumps(entries, ensure_ascii=False, indent=2), encoding="utf-8")

    def load(self, session_id: str, stage: str | None = None) -> list[dict]:
        """All entries for a session (optionally one stage), oldest first."""
        session_dir = self._log_dir / _safe_part(session_id)
        if not session_dir.exists():
            return []
        pattern = f"{_safe_part(stage)}/*.json" if stage else "*/*.json"
        entries: list[dict] = []
        for path in session_dir.glob(pattern):
            entries.extend(json.loads(path.read_text(encoding="utf-8")))
        return sorted(entries, key=lambda e: e["timestamp"])


def record_interaction(
    interaction_logger: InteractionLogger | None,
    session_id: str,
    stage: str,
    agent_id: str,
    agent_name: str,
    round_number: int,
    prompt: str,
    result: Completion,
) -> None:
    """Log one collaborator call. Logging failures are reported, never raised."""
    if interaction_logger is None:
        return
    entry = InteractionEntry(
        id=uuid.uuid4().hex,
        session_id=session_id,
        stage=stage,
        agent_id=agent_id,
        agent_name=agent_name,
        round_number=round_number,
        timestamp=datetime.now(timezone.utc).isoformat(),
        prompt=prompt,
        output=result.content,
        duration_sec=round(result.latency_sec, 3),
        status=result.status,
        error=result.error,
    )
    try:
        interaction_logger.log(entry)
    except Exception as exc:
        logger.warning("Interaction log failed for %s/%s/%s: %s", session_id, stage, agent_id, exc)
