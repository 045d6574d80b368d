"""Wire models for remote predictions and file uploads."""

from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator


class PredictionStatus(str, Enum):
    STARTING = "starting"
    QUEUED = "queued"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            PredictionStatus.SUCCEEDED,
            PredictionStatus.FAILED,
            PredictionStatus.CANCELED,
        )


class PredictionURLs(BaseModel):
    get: str
    cancel: str
    stream: Optional[str] = None


class Prediction(BaseModel):
    """Handle for one remote prediction, refreshed from status responses."""
    id: str
    status: PredictionStatus
    urls: PredictionURLs
    output: List[str] = Field(default_factory=list)
    error: Optional[str] = None

    model_config = {"extra": "ignore"}

    @field_validator("output", mode="before")
    @classmethod
    def _output_as_list(cls, value: Any) -> List[Any]:
        # The service returns either a single address or a list of them.
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value

    @field_validator("error", mode="before")
    @classmethod
    def _error_as_text(cls, value: Any) -> Optional[str]:
        if value is None or isinstance(value, str):
            return value
        return str(value)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class FileURLs(BaseModel):
    get: str


class FileUpload(BaseModel):
    urls: FileURLs

    model_config = {"extra": "ignore"}
