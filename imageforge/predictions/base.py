"""Prediction client interface."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List

from imageforge.predictions.models import Prediction


class PredictionClient(ABC):
    """Abstract interface for a remote prediction service.

    Callers (the batch orchestrator and the job ledger) depend on this
    interface only, so tests can drive them with in-process fakes.
    """

    @abstractmethod
    async def upload_inputs(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Replace every bytes value in the payload with an uploaded address."""
        ...

    @abstractmethod
    async def create_prediction(self, model_ref: str, payload: Dict[str, Any]) -> Prediction:
        """Submit a prediction. Binary inputs are uploaded first."""
        ...

    @abstractmethod
    async def await_completion(self, prediction: Prediction) -> Prediction:
        """Drive a prediction to a successful terminal state or raise."""
        ...

    @abstractmethod
    async def download_outputs(self, prediction: Prediction) -> List[bytes]:
        """Fetch the bytes behind every output address, in output order."""
        ...

    @abstractmethod
    async def cancel(self, prediction: Prediction) -> None:
        """Best-effort cancellation. Never raises."""
        ...

    async def aclose(self) -> None:
        """Release transport resources."""
        return None
