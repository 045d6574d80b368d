"""Job record data model for generation requests."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from imageforge.errors import InvalidTransition
from imageforge.models.options import AspectRatio, ModelOptions, StandardOptions
from imageforge.predictions.models import Prediction


def _now() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)

_ALLOWED = {
    JobStatus.PENDING: (JobStatus.RUNNING, JobStatus.FAILED, JobStatus.CANCELLED),
    JobStatus.RUNNING: (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED),
}


class Job(BaseModel):
    """Tracks the lifecycle of one user-visible generation request."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    model_id: str
    prompt: str
    aspect_ratio: AspectRatio = AspectRatio.R1_1
    image_count: int = 1
    options: ModelOptions = Field(default_factory=StandardOptions)
    status: JobStatus = JobStatus.PENDING
    created_at: datetime = Field(default_factory=_now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    output_paths: List[str] = Field(default_factory=list)
    thumbnail_paths: List[str] = Field(default_factory=list)
    reference_paths: List[str] = Field(default_factory=list)
    reference_hashes: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    request_params: Optional[Dict[str, Any]] = None

    # Live remote handles; meaningless after a restart, so never serialized.
    cancel_handles: List[Prediction] = Field(default_factory=list, exclude=True)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def is_active(self) -> bool:
        return self.status in (JobStatus.PENDING, JobStatus.RUNNING)

    @property
    def elapsed_seconds(self) -> Optional[float]:
        if self.started_at is None:
            return None
        end = self.completed_at or _now()
        return (end - self.started_at).total_seconds()

    @property
    def settings_summary(self) -> str:
        parts = [self.aspect_ratio.value]
        parts.extend(self.options.summary())
        if self.image_count > 1:
            parts.append(f"{self.image_count} images")
        return " · ".join(parts)

    def transition(self, target: JobStatus) -> None:
        """Move to target, stamping timestamps. Terminal states are final."""
        if target not in _ALLOWED.get(self.status, ()):
            raise InvalidTransition(self.status.value, target.value)
        self.status = target
        if target == JobStatus.RUNNING:
            self.started_at = _now()
        elif target.is_terminal:
            self.completed_at = _now()

    def mark_running(self) -> None:
        self.transition(JobStatus.RUNNING)

    def mark_completed(self, output_paths: List[str], thumbnail_paths: List[str]) -> None:
        self.transition(JobStatus.COMPLETED)
        self.output_paths = list(output_paths)
        self.thumbnail_paths = list(thumbnail_paths)

    def mark_failed(self, message: str) -> None:
        self.transition(JobStatus.FAILED)
        self.error = message

    def mark_cancelled(self) -> None:
        self.transition(JobStatus.CANCELLED)
        self.error = None


class JobEvent(BaseModel):
    """Status change notification delivered to ledger subscribers."""
    job_id: str
    status: JobStatus
    error: Optional[str] = None
