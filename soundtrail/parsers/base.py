"""
Shared parser result type and helpers.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..models import ListeningEvent


@dataclass
class ParseResult:
    events: List[ListeningEvent]
    format: str
    total: int = 0
    filtered: int = 0
    warnings: List[str] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.events)


def make_event_id(fmt: str, batch_index: int, sequence: int, timestamp: int) -> str:
    """Reproducible id: the same record in the same file always gets the same id."""
    return f"{fmt}-{batch_index}-{sequence}-{timestamp}"


def raw_genres(record: Dict[str, Any], side_info: Optional[Dict[str, Any]] = None) -> List[str]:
    """
    Pick pre-existing genre tags off a raw record.

    Looks at `genres`/`genre` on the record, then `tags`/`genres` in the
    side-info bag. Cleanup happens later in the taxonomy pass.
    """
    candidates: List[Any] = []
    for source in (record, side_info or {}):
        for key in ('genres', 'genre', 'tags'):
            value = source.get(key)
            if value:
                candidates = value if isinstance(value, list) else [value]
                break
        if candidates:
            break
    return [c for c in candidates if isinstance(c, str) and c.strip()]
