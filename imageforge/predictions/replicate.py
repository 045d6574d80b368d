"""Replicate-shaped HTTP prediction client.

Processing flow:
    1. Upload any binary inputs through POST /files and substitute the
       returned addresses into the input payload.
    2. POST /models/{model}/predictions.
    3. Follow the server-sent event feed when the prediction advertises one,
       falling back to fixed-interval polling of urls.get.
    4. Download the output addresses of a succeeded prediction.

Every authenticated call carries the bearer token; a missing token raises
MissingCredential before anything is sent.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from imageforge.config import Settings
from imageforge.errors import (
    GenerationFailed,
    InvalidAddress,
    MissingCredential,
    NoOutputError,
    PredictionTimeout,
    TransportError,
)
from imageforge.predictions.base import PredictionClient
from imageforge.predictions.models import FileUpload, Prediction, PredictionStatus

logger = logging.getLogger(__name__)

NO_REASON = "no reason given"


def check_address(address: Any) -> httpx.URL:
    """Parse an address returned by the service, rejecting anything non-HTTP."""
    if not isinstance(address, str) or not address:
        raise InvalidAddress(address)
    try:
        url = httpx.URL(address)
    except httpx.InvalidURL:
        raise InvalidAddress(address)
    if url.scheme not in ("http", "https") or not url.host:
        raise InvalidAddress(address)
    return url


def _raise_for_status(response: httpx.Response) -> None:
    if not response.is_success:
        raise TransportError(response.status_code, response.text or "Unknown error")


def _summarize_input(payload: Dict[str, Any]) -> str:
    parts = []
    for key in sorted(payload):
        value = payload[key]
        if isinstance(value, list):
            parts.append(f"{key}: [{len(value)} item(s)] {[str(v)[:80] for v in value]}")
        elif isinstance(value, bytes):
            parts.append(f"{key}: <{len(value)} bytes>")
        else:
            parts.append(f"{key}: {value}")
    return ", ".join(parts)


class ReplicateClient(PredictionClient):
    """Async client for the prediction service."""

    def __init__(
        self,
        api_token: str,
        base_url: str = "https://api.replicate.com/v1",
        poll_interval: float = 1.5,
        max_poll_attempts: int = 300,
        use_streaming: bool = True,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_token = api_token
        self._base_url = base_url.rstrip("/")
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts
        self.use_streaming = use_streaming
        self._http = httpx.AsyncClient(timeout=timeout, transport=transport)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "ReplicateClient":
        return cls(
            api_token=settings.replicate_api_token.get_secret_value(),
            base_url=settings.replicate_base_url,
            poll_interval=settings.poll_interval_seconds,
            max_poll_attempts=settings.max_poll_attempts,
            use_streaming=settings.use_streaming,
            timeout=settings.request_timeout_seconds,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Transport helpers
    # ------------------------------------------------------------------

    def _auth_headers(self) -> Dict[str, str]:
        if not self._api_token:
            raise MissingCredential()
        return {"Authorization": f"Bearer {self._api_token}"}

    async def _request(self, method: str, address: str, **kwargs) -> httpx.Response:
        url = check_address(address)
        headers = {**self._auth_headers(), **kwargs.pop("headers", {})}
        response = await self._http.request(method, url, headers=headers, **kwargs)
        _raise_for_status(response)
        return response

    # ------------------------------------------------------------------
    # Uploads
    # ------------------------------------------------------------------

    async def upload_file(self, data: bytes, filename: str) -> str:
        """Upload raw bytes and return the address the service serves them at."""
        logger.info("Uploading %s (%d bytes)", filename, len(data))
        response = await self._request(
            "POST",
            f"{self._base_url}/files",
            files={"content": (filename, data, "image/png")},
        )
        upload = FileUpload.model_validate(response.json())
        logger.debug("Upload %s returned %s", filename, upload.urls.get)
        return upload.urls.get

    async def upload_inputs(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        slots: List[Tuple[str, Optional[int], bytes]] = []
        for key, value in payload.items():
            if isinstance(value, bytes):
                slots.append((key, None, value))
            elif isinstance(value, list):
                slots.extend((key, i, v) for i, v in enumerate(value) if isinstance(v, bytes))
        if not slots:
            return payload

        addresses = await asyncio.gather(*(
            self.upload_file(data, f"reference_{n}.png")
            for n, (_, _, data) in enumerate(slots)
        ))

        resolved = {k: (list(v) if isinstance(v, list) else v) for k, v in payload.items()}
        for (key, index, _), address in zip(slots, addresses):
            if index is None:
                resolved[key] = address
            else:
                resolved[key][index] = address
        return resolved

    # ------------------------------------------------------------------
    # Predictions
    # ------------------------------------------------------------------

    async def create_prediction(self, model_ref: str, payload: Dict[str, Any]) -> Prediction:
        payload = await self.upload_inputs(payload)
        logger.info("Creating prediction for %s with input: %s", model_ref, _summarize_input(payload))
        response = await self._request(
            "POST",
            f"{self._base_url}/models/{model_ref}/predictions",
            json={"input": payload},
        )
        prediction = Prediction.model_validate(response.json())
        logger.info("Prediction %s created (%s)", prediction.id, prediction.status.value)
        return prediction

    async def get_prediction(self, prediction: Prediction) -> Prediction:
        response = await self._request("GET", prediction.urls.get)
        return Prediction.model_validate(response.json())

    async def await_completion(self, prediction: Prediction) -> Prediction:
        if self.use_streaming and prediction.urls.stream:
            final = await self._await_stream(prediction)
            if final is not None:
                return final
            logger.info("Stream for %s ended without a result, polling instead", prediction.id)
        return await self._poll(prediction)

    def _evaluate(self, current: Prediction) -> Optional[Prediction]:
        """Return the prediction if it succeeded, raise if it ended otherwise."""
        if current.status == PredictionStatus.SUCCEEDED:
            return current
        if current.status in (PredictionStatus.FAILED, PredictionStatus.CANCELED):
            raise GenerationFailed(current.error or NO_REASON)
        return None

    async def _poll(self, prediction: Prediction) -> Prediction:
        for attempt in range(self.max_poll_attempts):
            await asyncio.sleep(self.poll_interval)
            current = await self.get_prediction(prediction)
            logger.debug(
                "Poll %d for %s: %s", attempt + 1, prediction.id, current.status.value
            )
            final = self._evaluate(current)
            if final is not None:
                return final
        raise PredictionTimeout(self.max_poll_attempts)

    async def _await_stream(self, prediction: Prediction) -> Optional[Prediction]:
        """Follow the event feed. Returns None when polling should take over."""
        url = check_address(prediction.urls.stream)
        headers = {
            **self._auth_headers(),
            "Accept": "text/event-stream",
            "Cache-Control": "no-store",
        }
        try:
            async with self._http.stream("GET", url, headers=headers) as response:
                if not response.is_success:
                    logger.warning(
                        "Stream for %s answered HTTP %d", prediction.id, response.status_code
                    )
                    return None

                event: Optional[str] = None
                data: List[str] = []
                async for line in response.aiter_lines():
                    if line:
                        if line.startswith(":"):
                            continue
                        name, _, value = line.partition(":")
                        if value.startswith(" "):
                            value = value[1:]
                        if name == "event":
                            event = value
                        elif name == "data":
                            data.append(value)
                        continue

                    if event in ("done", "error"):
                        return await self._on_terminal_event(prediction, event, data)
                    event, data = None, []

                if event in ("done", "error"):
                    return await self._on_terminal_event(prediction, event, data)
        except httpx.HTTPError as exc:
            logger.warning("Stream for %s failed: %s", prediction.id, exc)
        return None

    async def _on_terminal_event(
        self, prediction: Prediction, event: str, data: List[str]
    ) -> Optional[Prediction]:
        if event == "error":
            raise GenerationFailed("\n".join(data) or NO_REASON)
        current = await self.get_prediction(prediction)
        return self._evaluate(current)

    async def cancel(self, prediction: Prediction) -> None:
        try:
            await self._request("POST", prediction.urls.cancel)
            logger.info("Cancel requested for %s", prediction.id)
        except (MissingCredential, InvalidAddress, TransportError, httpx.HTTPError) as exc:
            # The remote job may already be terminal.
            logger.debug("Cancel of %s ignored: %s", prediction.id, exc)

    # ------------------------------------------------------------------
    # Outputs
    # ------------------------------------------------------------------

    async def download_outputs(self, prediction: Prediction) -> List[bytes]:
        if not prediction.output:
            raise NoOutputError()
        images = []
        for address in prediction.output:
            url = check_address(address)
            response = await self._http.get(url)
            _raise_for_status(response)
            images.append(response.content)
        return images
