"""Document suggestions: turning streamed model output into edit proposals."""
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from artifact_engine.services.version_store import SuggestionRecord

logger = logging.getLogger(__name__)

SUGGESTION_FIELDS = ("originalText", "suggestedText", "description")


def parse_suggestion(line: str) -> Optional[Dict[str, str]]:
    """
    Parse one line of model output into a suggestion.

    Returns:
        Dict with originalText, suggestedText and description, or None when
        the line is not a complete suggestion (blank, Markdown fence, bad JSON,
        missing or non-string fields, empty originalText)
    """
    line = line.strip()
    if not line:
        return None
    try:
        parsed = json.loads(line)
    except json.JSONDecodeError:
        logger.debug(f"Skipping non-JSON suggestion line: {line[:80]}")
        return None
    if not isinstance(parsed, dict):
        return None

    suggestion = {field: parsed.get(field) for field in SUGGESTION_FIELDS}
    if not all(isinstance(value, str) for value in suggestion.values()):
        logger.debug(f"Skipping incomplete suggestion: {line[:80]}")
        return None
    if not suggestion["originalText"].strip():
        return None
    return suggestion


class SuggestionStreamParser:
    """
    Extracts complete suggestions from cumulative JSON-lines snapshots.

    Only lines terminated by a newline are parsed while the stream is open,
    so a suggestion is reported once, when it is complete. ``close`` parses
    whatever follows the last newline of the final snapshot.
    """

    def __init__(self):
        self._consumed = 0

    def feed(self, snapshot: str) -> List[Dict[str, str]]:
        end = snapshot.rfind("\n")
        if end < self._consumed:
            return []
        complete = snapshot[self._consumed:end]
        self._consumed = end + 1
        return self._parse(complete)

    def close(self, snapshot: str) -> List[Dict[str, str]]:
        tail = snapshot[self._consumed:]
        self._consumed = len(snapshot)
        return self._parse(tail)

    @staticmethod
    def _parse(chunk: str) -> List[Dict[str, str]]:
        found = []
        for line in chunk.split("\n"):
            suggestion = parse_suggestion(line)
            if suggestion is not None:
                found.append(suggestion)
        return found


@dataclass(frozen=True)
class SuggestionBatch:
    """Outcome of a suggest operation: the suggestions stored for one version."""
    id: str
    version_number: int
    suggestions: Tuple[SuggestionRecord, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "version_number": self.version_number,
            "suggestions": [suggestion.to_dict() for suggestion in self.suggestions],
        }
