"""Recent inscription history."""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone

from .state import StateStore

logger = logging.getLogger(__name__)

HISTORY_KEY = "inscription_history"
HISTORY_LIMIT = 5


@dataclass(frozen=True)
class InscriptionRecord:
    id: str
    file_name: str
    timestamp: str

    @classmethod
    def now(cls, inscription_id: str, file_name: str) -> "InscriptionRecord":
        return cls(
            id=inscription_id,
            file_name=file_name,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )


class InscriptionHistory:
    """Most-recent-first ring of the last five inscriptions."""

    def __init__(self, store: StateStore, limit: int = HISTORY_LIMIT):
        self.store = store
        self.limit = limit

    def records(self) -> list[InscriptionRecord]:
        records = []
        for entry in self.store.get(HISTORY_KEY, []) or []:
            try:
                records.append(
                    InscriptionRecord(
                        id=entry["id"],
                        file_name=entry["file_name"],
                        timestamp=entry["timestamp"],
                    ),
                )
            except (KeyError, TypeError):
                logger.warning("Skipping malformed history entry: %r", entry)
        return records

    def add(self, record: InscriptionRecord) -> list[InscriptionRecord]:
        """Prepend a record, dropping the oldest past the limit."""
        records = [record, *self.records()][: self.limit]
        self.store.set(HISTORY_KEY, [asdict(r) for r in records])
        logger.info("Recorded inscription %s (%s)", record.id, record.file_name)
        return records
