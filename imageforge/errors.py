"""Error taxonomy for the generation pipeline."""

from typing import Optional


class GenerationError(Exception):
    """Base class for every failure a job can record as its error."""


class TransportError(GenerationError):
    """Non-2xx response from the remote service."""

    def __init__(self, code: int, body: str):
        self.code = code
        self.body = body
        super().__init__(f"HTTP {code}: {body}")


class NoOutputError(GenerationError):
    def __init__(self, message: str = "No image output received from the API."):
        super().__init__(message)


class GenerationFailed(GenerationError):
    """Remote-reported failure or cancellation."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(f"Generation failed: {message}")


class InvalidAddress(GenerationError):
    def __init__(self, address: Optional[str]):
        self.address = address
        super().__init__(f"Invalid address received: {address!r}")


class MissingCredential(GenerationError):
    def __init__(self, message: str = "No Replicate API token configured."):
        super().__init__(message)


class PredictionTimeout(GenerationError):
    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Generation timed out after {attempts} polling attempts.")


class UnknownModel(GenerationError):
    def __init__(self, model_id: str):
        self.model_id = model_id
        super().__init__(f"Model '{model_id}' not found in catalog")


class InvalidRequest(GenerationError):
    pass


class InvalidTransition(GenerationError):
    """A job status change that would break the lifecycle ordering."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move job from {current} to {target}")
