"""Durable activity history of terminal jobs (.activity.json)."""

import logging
from pathlib import Path
from typing import List

from pydantic import TypeAdapter, ValidationError

from imageforge.jobs.models import Job
from imageforge.storage.assets import atomic_write

logger = logging.getLogger(__name__)

ACTIVITY_FILE = ".activity.json"

_records = TypeAdapter(List[Job])


class ActivityLog:
    """Snapshot store for finished jobs.

    Only terminal jobs are written: in-flight jobs cannot be resumed after a
    restart. Each save rewrites the whole file.
    """

    def __init__(self, root: Path):
        self.path = Path(root) / ACTIVITY_FILE

    def save(self, jobs: List[Job]) -> bool:
        records = [job for job in jobs if job.is_terminal]
        try:
            data = _records.dump_json(records, indent=2)
            atomic_write(self.path, data)
        except (OSError, ValueError):
            logger.exception("Failed to save activity to %s", self.path)
            return False
        return True

    def load(self) -> List[Job]:
        if not self.path.exists():
            return []
        try:
            return _records.validate_json(self.path.read_bytes())
        except (OSError, ValidationError):
            logger.exception("Failed to load activity from %s", self.path)
            return []


def merge_activity(in_memory: List[Job], loaded: List[Job]) -> List[Job]:
    """Keep in-flight jobs at the head, followed by the loaded history."""
    in_flight = [job for job in in_memory if job.is_active]
    seen = {job.id for job in in_flight}
    return in_flight + [job for job in loaded if job.id not in seen]
