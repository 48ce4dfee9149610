"""Session persistence collaborators: in-memory and JSON files on disk."""

import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Protocol

from yui_council.models import SessionRecord

logger = logging.getLogger(__name__)


class SessionStore(Protocol):
    def load(self, session_id: str) -> SessionRecord | None: ...

    def save(self, record: SessionRecord) -> None: ...

    def list_sessions(self) -> list[str]: ...

    def delete(self, session_id: str) -> bool: ...


class InMemorySessionStore:
    """Process-local store; each instance is independent."""

    def __init__(self) -> None:
        self._records: dict[str, dict] = {}

    def load(self, session_id: str) -> SessionRecord | None:
        raw = self._records.get(session_id)
        return SessionRecord(**json.loads(json.dumps(raw))) if raw is not None else None

    def save(self, record: SessionRecord) -> None:
        self._records[record.session_id] = asdict(record)

    def list_sessions(self) -> list[str]:
        return sorted(self._records)

    def delete(self, session_id: str) -> bool:
        return self._records.pop(session_id, None) is not None


class JsonSessionStore:
    """One <session_id>.json file per session under a directory."""

    def __init__(self, directory: Path) -> None:
        self._directory = directory

    def _path(self, session_id: str) -> Path:
        if not session_id or "/" in session_id or "\\" in session_id or session_id.startswith("."):
            raise ValueError(f"Invalid session id: {session_id!r}")
        return self._directory / f"{session_id}.json"

    def load(self, session_id: str) -> SessionRecord | None:
        path = self._path(session_id)
        if not path.exists():
            return None
        return SessionRecord(**json.loads(path.read_text(encoding="utf-8")))

    def save(self, record: SessionRecord) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        path = self._path(record.session_id)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(asdict(record), ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(path)
        logger.debug("Session saved: %s", path)

    def list_sessions(self) -> list[str]:
        if not self._directory.exists():
            return []
        return sorted(p.stem for p in self._directory.glob("*.json"))

    def delete(self, session_id: str) -> bool:
        path = self._path(session_id)
        if not path.exists():
            return False
        path.unlink()
        return True
