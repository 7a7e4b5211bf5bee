"""
Result history for the VoiceMatch analysis service.

After a successful comparison the engine hands the result to a
HistoryStore (for rankings and progress tracking kept elsewhere).
Recording failures are logged by the engine and never fail a request.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from voicematch.core.models import AnalysisResult


class HistoryStore(ABC):
    """Abstract sink for completed analyses (Strategy Pattern)."""

    @abstractmethod
    def record(self, result: AnalysisResult) -> None:
        """Persist one result."""
        pass


class JsonLinesHistoryStore(HistoryStore):
    """Appends one JSON object per analysis to a file."""

    def __init__(self, path: Path):
        """
        Initialize store.

        Args:
            path: JSON Lines file, created with its parent directory on first write
        """
        self.path = Path(path)
        self._lock = threading.Lock()
        self.logger = logging.getLogger("history")

    def record(self, result: AnalysisResult) -> None:
        entry = result.to_record()
        entry['recordedAt'] = datetime.now(timezone.utc).isoformat()
        line = json.dumps(entry, default=str)

        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, 'a', encoding='utf-8') as f:
                f.write(line + "\n")

        self.logger.debug(f"Recorded {result.user_clip_id} for {result.original_clip_id}")

    def read_all(self) -> List[Dict[str, Any]]:
        """All recorded entries, oldest first."""
        if not self.path.exists():
            return []
        with self._lock, open(self.path, 'r', encoding='utf-8') as f:
            return [json.loads(line) for line in f if line.strip()]


class InMemoryHistoryStore(HistoryStore):
    """Keeps results in a list."""

    def __init__(self):
        self.results: List[AnalysisResult] = []
        self._lock = threading.Lock()

    def record(self, result: AnalysisResult) -> None:
        with self._lock:
            self.results.append(result)


def create_history_store(config: Optional[Dict[str, Any]] = None) -> Optional[HistoryStore]:
    """
    Factory function to create a HistoryStore from the ``history`` config section.

    Returns:
        HistoryStore, or None when history is disabled
    """
    if config is None:
        config = {}

    if not config.get('enabled', False):
        return None
    return JsonLinesHistoryStore(Path(config.get('path', 'data/history.jsonl')))
